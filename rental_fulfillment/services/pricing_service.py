from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.rental_models import PricingTier
from services.errors import InvalidRangeError, NoPricingTierError


@dataclass(frozen=True)
class PriceQuote:
    total_price: Decimal
    price_per_day: Decimal
    rental_days: int
    tier_description: str | None = None

    def to_dict(self) -> dict:
        return {
            "totalPrice": float(self.total_price),
            "pricePerDay": float(self.price_per_day),
            "rentalDays": self.rental_days,
            "tierDescription": self.tier_description,
        }


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def rental_days(start_date: date | datetime, end_date: date | datetime) -> int:
    """Inclusive day count; both ends are truncated to midnight first."""
    start = _as_date(start_date)
    end = _as_date(end_date)
    if end < start:
        raise InvalidRangeError("End date cannot be before start date.", startDate=str(start), endDate=str(end))
    return (end - start).days + 1


def get_pricing_tiers(db: Session, unit_id: int) -> list[PricingTier]:
    return db.execute(
        select(PricingTier)
        .where(PricingTier.UnitID == unit_id)
        .order_by(PricingTier.MinDays)
    ).scalars().all()


def select_tier(tiers: list[PricingTier], days: int) -> PricingTier | None:
    for tier in tiers:
        if days >= int(tier.MinDays) and (tier.MaxDays is None or days <= int(tier.MaxDays)):
            return tier
    return None


def quote_price(db: Session, unit_id: int, start_date: date, end_date: date) -> PriceQuote:
    days = rental_days(start_date, end_date)
    tiers = get_pricing_tiers(db, unit_id)
    if not tiers:
        raise NoPricingTierError("No pricing tiers found for camera.", unitID=unit_id)

    tier = select_tier(tiers, days)
    if tier is None:
        raise NoPricingTierError(f"No pricing tier available for {days} days.", unitID=unit_id, rentalDays=days)

    price_per_day = Decimal(str(tier.PricePerDay))
    return PriceQuote(
        total_price=price_per_day * days,
        price_per_day=price_per_day,
        rental_days=days,
        tier_description=tier.Description,
    )
