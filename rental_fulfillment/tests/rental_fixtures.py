import os
import sys
import unittest
from datetime import date, datetime, timedelta
from decimal import Decimal
from pathlib import Path


os.environ.setdefault("RENTAL_DB_URL", "sqlite+pysqlite:///:memory:")

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.base import Base
from db.session import SessionLocalRental, engine_rental
from models.rental_models import Customer, PricingTier, Rental, Unit
from services.actors import Actor


ADMIN = Actor(actor_id=1, role="admin")
DEFAULT_TIERS = [(1, 3, "500.00", "Short rental"), (4, None, "400.00", "4+ days")]


class RentalDbTestCase(unittest.TestCase):
    """Fresh schema per test on the shared in-memory engine."""

    def setUp(self):
        Base.metadata.create_all(engine_rental)
        self.db = SessionLocalRental()
        self._created = datetime(2024, 1, 1, 9, 0, 0)
        self._serial = 0

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(engine_rental)

    def add_customer(self, first_name="Ana", last_name="Cruz") -> Customer:
        customer = Customer(FirstName=first_name, LastName=last_name, Email=f"{first_name.lower()}@example.com")
        self.db.add(customer)
        self.db.commit()
        return customer

    def customer_actor(self, customer: Customer) -> Actor:
        return Actor(actor_id=customer.CustomerID, role="customer")

    def add_unit(self, model_name="Fujifilm X100V", serial=None, status="available", tiers=DEFAULT_TIERS) -> Unit:
        self._serial += 1
        unit = Unit(ModelName=model_name, SerialNumber=serial or f"SN-{self._serial:04d}", CameraStatus=status)
        self.db.add(unit)
        self.db.flush()
        for min_days, max_days, price, description in tiers:
            self.db.add(
                PricingTier(
                    UnitID=unit.UnitID,
                    MinDays=min_days,
                    MaxDays=max_days,
                    PricePerDay=Decimal(price),
                    Description=description,
                )
            )
        self.db.commit()
        return unit

    def add_rental(
        self,
        unit: Unit,
        start: date,
        end: date,
        status="pending",
        customer: Customer | None = None,
        shipping=None,
        booking_type="registered_user",
        price_per_day="500.00",
    ) -> Rental:
        # Creation order drives first-come-first-served redistribution.
        self._created += timedelta(minutes=1)
        days = (end - start).days + 1
        rental = Rental(
            UnitID=unit.UnitID,
            CustomerID=customer.CustomerID if customer else None,
            CustomerName=f"{customer.FirstName} {customer.LastName}" if customer else "Walk-in",
            StartDate=start,
            EndDate=end,
            RentalStatus=status,
            ShippingStatus=shipping,
            PricePerDay=Decimal(price_per_day),
            TotalPrice=Decimal(price_per_day) * days,
            BookingType=booking_type,
            CreatedDate=self._created,
            UpdatedDate=self._created,
        )
        self.db.add(rental)
        self.db.commit()
        return rental

    def reload(self, rental_id: int) -> Rental:
        self.db.expire_all()
        return self.db.get(Rental, rental_id)
