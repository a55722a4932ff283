from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased, selectinload

from models.rental_models import Rental
from services.pricing_service import rental_days
from services.rental_states import BLOCKING_STATES, CALENDAR_STATES


def ranges_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    return start_a <= end_b and start_b <= end_a


def overlap_criteria(rental_cls, start_date, end_date) -> list:
    """WHERE criteria for an inclusive-day overlap against ``rental_cls`` rows."""
    return [rental_cls.StartDate <= end_date, rental_cls.EndDate >= start_date]


def blocking_rental_exists(
    unit_id_column,
    start_date,
    end_date,
    statuses: Iterable[str] = BLOCKING_STATES,
    exclude_rental_id=None,
):
    """Correlatable EXISTS clause: some other rental holds the unit over the range."""
    competitor = aliased(Rental)
    stmt = (
        select(competitor.RentalID)
        .where(competitor.UnitID == unit_id_column)
        .where(competitor.RentalStatus.in_(list(statuses)))
        .where(*overlap_criteria(competitor, start_date, end_date))
    )
    if exclude_rental_id is not None:
        stmt = stmt.where(competitor.RentalID != exclude_rental_id)
    return stmt.exists()


def is_available(
    db: Session,
    unit_id: int,
    start_date: date,
    end_date: date,
    blocking_statuses: Iterable[str] = BLOCKING_STATES,
    exclude_rental_id: int | None = None,
) -> bool:
    rental_days(start_date, end_date)  # rejects inverted ranges
    busy = db.execute(
        select(blocking_rental_exists(unit_id, start_date, end_date, blocking_statuses, exclude_rental_id))
    ).scalar()
    return not busy


def find_overlapping_rentals(
    db: Session,
    unit_id: int,
    start_date: date,
    end_date: date,
    statuses: Iterable[str] = BLOCKING_STATES,
    exclude_rental_id: int | None = None,
) -> list[Rental]:
    stmt = (
        select(Rental)
        .where(Rental.UnitID == unit_id)
        .where(Rental.RentalStatus.in_(list(statuses)))
        .where(*overlap_criteria(Rental, start_date, end_date))
        .order_by(Rental.StartDate, Rental.RentalID)
    )
    if exclude_rental_id is not None:
        stmt = stmt.where(Rental.RentalID != exclude_rental_id)
    return db.execute(stmt).scalars().all()


def calendar_bookings(
    db: Session,
    start_date: date,
    end_date: date,
    unit_id: int | None = None,
    statuses: Iterable[str] = CALENDAR_STATES,
) -> list[Rental]:
    rental_days(start_date, end_date)  # rejects inverted ranges
    stmt = (
        select(Rental)
        .options(selectinload(Rental.Unit), selectinload(Rental.Customer))
        .where(Rental.RentalStatus.in_(list(statuses)))
        .where(*overlap_criteria(Rental, start_date, end_date))
        .order_by(Rental.StartDate, Rental.RentalID)
    )
    if unit_id is not None:
        stmt = stmt.where(Rental.UnitID == unit_id)
    return db.execute(stmt).scalars().all()


def bookings_by_unit_month(db: Session, unit_id: int, month: int, year: int) -> list[Rental]:
    last_day = calendar.monthrange(year, month)[1]
    month_start = date(year, month, 1)
    month_end = date(year, month, last_day)
    return db.execute(
        select(Rental)
        .where(Rental.UnitID == unit_id)
        .where(*overlap_criteria(Rental, month_start, month_end))
        .order_by(Rental.StartDate)
    ).scalars().all()


def suggest_alternative_dates(
    db: Session,
    unit_id: int,
    start_date: date,
    end_date: date,
    limit: int = 5,
    search_days: int = 14,
    today: date | None = None,
) -> list[dict]:
    """Free windows of the same length near the requested one.

    Offsets step by the rental length from ``-search_days`` up to ``search_days``;
    windows starting before ``today`` are skipped.
    """
    days = rental_days(start_date, end_date)
    current = today or date.today()
    suggestions: list[dict] = []
    offset = -search_days
    while offset <= search_days and len(suggestions) < limit:
        if offset != 0:
            alt_start = start_date + timedelta(days=offset)
            alt_end = alt_start + timedelta(days=days - 1)
            if alt_start >= current and is_available(db, unit_id, alt_start, alt_end):
                suggestions.append({"startDate": alt_start, "endDate": alt_end, "offsetDays": offset})
        offset += days
    return suggestions
