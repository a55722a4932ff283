import sys
import unittest
from datetime import date
from pathlib import Path

from sqlalchemy import select

sys.path.insert(0, str(Path(__file__).resolve().parent))

from rental_fixtures import ADMIN, RentalDbTestCase

from models.rental_models import Rental
from services.conflict_service import confirm, detect_conflicts, redistribute_model, resolve_conflict, scan_conflicts
from services.rental_service import load_rental


MARCH_1 = date(2024, 3, 1)
MARCH_5 = date(2024, 3, 5)


class ConflictDetectionTests(RentalDbTestCase):
    def setUp(self):
        super().setUp()
        self.first = self.add_unit("Canon R6")
        self.second = self.add_unit("Canon R6")
        self.ana = self.add_customer()
        self.ben = self.add_customer("Ben", "Reyes")

    def test_pending_competitor_blocks_direct_confirm(self):
        a = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ana)
        b = self.add_rental(self.first, date(2024, 3, 5), date(2024, 3, 7), customer=self.ben)

        outcome = confirm(self.db, a.RentalID, ADMIN)

        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.error.code, "conflict")
        self.assertEqual([c["rentalID"] for c in outcome.error.conflicts], [b.RentalID])
        self.assertEqual([u["unitID"] for u in outcome.error.details["availableUnits"]], [self.second.UnitID])
        self.assertEqual(self.reload(a.RentalID).RentalStatus, "pending")

    def test_detection_ignores_other_units_and_closed_rentals(self):
        a = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ana)
        self.add_rental(self.second, MARCH_1, MARCH_5, customer=self.ben)
        self.add_rental(self.first, MARCH_1, MARCH_5, status="rejected")
        self.add_rental(self.first, MARCH_1, MARCH_5, status="cancelled")
        self.add_rental(self.first, date(2024, 3, 6), date(2024, 3, 8), status="confirmed")

        self.assertEqual(detect_conflicts(self.db, load_rental(self.db, a.RentalID)), [])
        self.assertTrue(confirm(self.db, a.RentalID, ADMIN).ok)

    def test_scan_lists_pending_rentals_with_blockers(self):
        blocker = self.add_rental(self.first, MARCH_1, MARCH_5, status="confirmed")
        waiting = self.add_rental(self.first, date(2024, 3, 4), date(2024, 3, 6), customer=self.ana)
        self.add_rental(self.second, MARCH_1, MARCH_5, customer=self.ben)

        outcome = scan_conflicts(self.db, ADMIN)

        self.assertTrue(outcome.ok, outcome.error)
        conflicts = outcome.data["conflicts"]
        self.assertEqual(len(conflicts), 1)
        self.assertEqual(conflicts[0]["rental"]["rentalID"], waiting.RentalID)
        self.assertEqual([c["rentalID"] for c in conflicts[0]["conflicts"]], [blocker.RentalID])


class ResolutionStrategyTests(RentalDbTestCase):
    def setUp(self):
        super().setUp()
        self.first = self.add_unit("Canon R6")
        self.second = self.add_unit("Canon R6")
        self.ana = self.add_customer()
        self.ben = self.add_customer("Ben", "Reyes")

    def test_confirm_anyway_over_pending_competitor(self):
        a = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ana)
        b = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ben)

        outcome = resolve_conflict(self.db, a.RentalID, "confirm_anyway", ADMIN)

        self.assertTrue(outcome.ok, outcome.error)
        self.assertEqual(outcome.data["rentalStatus"], "confirmed")
        self.assertEqual(self.reload(b.RentalID).RentalStatus, "pending")

    def test_confirm_anyway_cannot_double_book(self):
        a = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ana)
        b = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ben)
        self.assertTrue(resolve_conflict(self.db, a.RentalID, "confirm_anyway", ADMIN).ok)

        outcome = resolve_conflict(self.db, b.RentalID, "confirm_anyway", ADMIN)

        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.error.code, "conflict")
        self.assertEqual(outcome.step, "confirm")
        self.assertEqual(outcome.rental["rentalStatus"], "pending")
        self.assertEqual(self.reload(b.RentalID).RentalStatus, "pending")

    def test_transfer_moves_to_free_unit_then_confirms(self):
        self.add_rental(self.first, MARCH_1, MARCH_5, status="confirmed", customer=self.ana)
        b = self.add_rental(self.first, date(2024, 3, 3), date(2024, 3, 4), customer=self.ben)

        outcome = resolve_conflict(self.db, b.RentalID, "transfer", ADMIN)

        self.assertTrue(outcome.ok, outcome.error)
        self.assertEqual(outcome.data["unitID"], self.second.UnitID)
        self.assertEqual(outcome.data["unit"]["unitID"], self.second.UnitID)
        self.assertEqual(outcome.data["rentalStatus"], "confirmed")

    def test_transfer_to_explicit_target_must_be_same_model(self):
        other_model = self.add_unit("Sony A7")
        b = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ben)

        outcome = resolve_conflict(self.db, b.RentalID, "transfer", ADMIN, target_unit_id=other_model.UnitID)

        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.step, "transfer")
        self.assertEqual(outcome.error.code, "validation_error")
        self.assertEqual(outcome.rental["unitID"], self.first.UnitID)

    def test_transfer_failure_leaves_rental_in_place(self):
        self.add_rental(self.first, MARCH_1, MARCH_5, status="confirmed")
        self.add_rental(self.second, MARCH_1, MARCH_5, status="active")
        b = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ben)

        outcome = resolve_conflict(self.db, b.RentalID, "transfer", ADMIN)

        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.step, "transfer")
        self.assertEqual(outcome.error.code, "no_unit_available")
        self.assertEqual(outcome.rental["unitID"], self.first.UnitID)
        self.assertEqual(outcome.rental["rentalStatus"], "pending")

    def test_reject_competitors_then_confirm(self):
        a = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ana)
        b = self.add_rental(self.first, date(2024, 3, 2), date(2024, 3, 3), customer=self.ben)

        outcome = resolve_conflict(
            self.db, a.RentalID, "reject_competitors", ADMIN, reject_rental_ids=[b.RentalID], reason="Unit taken"
        )

        self.assertTrue(outcome.ok, outcome.error)
        self.assertEqual(outcome.data["rentalStatus"], "confirmed")
        competitor = self.reload(b.RentalID)
        self.assertEqual(competitor.RentalStatus, "rejected")
        self.assertEqual(competitor.RejectionReason, "Unit taken")

    def test_reject_competitors_cancels_confirmed_competitor(self):
        a = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ana)
        c = self.add_rental(self.first, MARCH_1, MARCH_5, status="confirmed", customer=self.ben)

        outcome = resolve_conflict(
            self.db, a.RentalID, "reject_competitors", ADMIN, reject_rental_ids=[c.RentalID], reason="Priority booking"
        )

        self.assertTrue(outcome.ok, outcome.error)
        self.assertEqual(self.reload(c.RentalID).RentalStatus, "cancelled")
        self.assertEqual(self.reload(a.RentalID).RentalStatus, "confirmed")

    def test_rejecting_the_rental_itself_stops_before_confirm(self):
        a = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ana)
        self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ben)

        outcome = resolve_conflict(
            self.db, a.RentalID, "reject_competitors", ADMIN, reject_rental_ids=[a.RentalID], reason="Duplicate"
        )

        self.assertTrue(outcome.ok, outcome.error)
        self.assertEqual(outcome.data["rentalStatus"], "rejected")

    def test_reject_competitors_needs_reason_and_rolls_back(self):
        a = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ana)
        b = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ben)

        outcome = resolve_conflict(self.db, a.RentalID, "reject_competitors", ADMIN, reject_rental_ids=[b.RentalID])

        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.step, "reject_competitors")
        self.assertEqual(self.reload(b.RentalID).RentalStatus, "pending")
        self.assertEqual(self.reload(a.RentalID).RentalStatus, "pending")

    def test_only_overlapping_rentals_can_be_rejected(self):
        a = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ana)
        far = self.add_rental(self.first, date(2024, 4, 1), date(2024, 4, 2), customer=self.ben)

        outcome = resolve_conflict(
            self.db, a.RentalID, "reject_competitors", ADMIN, reject_rental_ids=[far.RentalID], reason="x"
        )

        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.error.details["rentalIDs"], [far.RentalID])
        self.assertEqual(self.reload(far.RentalID).RentalStatus, "pending")

    def test_unknown_strategy_and_non_admin_are_refused(self):
        a = self.add_rental(self.first, MARCH_1, MARCH_5, customer=self.ana)
        self.assertEqual(resolve_conflict(self.db, a.RentalID, "coin_flip", ADMIN).error.code, "validation_error")
        customer = self.customer_actor(self.ana)
        self.assertEqual(resolve_conflict(self.db, a.RentalID, "confirm_anyway", customer).error.code, "not_authorized")


class RedistributionTests(RentalDbTestCase):
    def test_first_come_first_served_with_per_item_report(self):
        first = self.add_unit("Canon R6")
        second = self.add_unit("Canon R6")
        r1 = self.add_rental(first, MARCH_1, MARCH_5)
        r2 = self.add_rental(first, date(2024, 3, 3), date(2024, 3, 6))
        r3 = self.add_rental(first, date(2024, 3, 2), date(2024, 3, 4))

        outcome = redistribute_model(self.db, "Canon R6", ADMIN)

        self.assertTrue(outcome.ok, outcome.error)
        report = outcome.data
        self.assertEqual((report["total"], report["succeeded"], report["failed"]), (3, 2, 1))
        items = {item["rentalID"]: item for item in report["items"]}
        self.assertEqual((items[r1.RentalID]["action"], items[r1.RentalID]["toUnitID"]), ("confirmed", first.UnitID))
        self.assertEqual((items[r2.RentalID]["action"], items[r2.RentalID]["toUnitID"]), ("transferred", second.UnitID))
        self.assertFalse(items[r3.RentalID]["ok"])
        self.assertEqual(items[r3.RentalID]["failedStep"], "transfer")
        self.assertEqual(items[r3.RentalID]["rentalStatus"], "pending")
        self.assertEqual(items[r3.RentalID]["unitID"], first.UnitID)

    def test_redistribution_leaves_no_double_booking(self):
        units = [self.add_unit("Canon R6") for _ in range(2)]
        for _ in range(4):
            self.add_rental(units[0], MARCH_1, MARCH_5)

        outcome = redistribute_model(self.db, "Canon R6", ADMIN)

        self.assertEqual(outcome.data["succeeded"], 2)
        self.db.expire_all()
        held = self.db.execute(
            select(Rental.UnitID).where(Rental.RentalStatus.in_(["confirmed", "active"]))
        ).scalars().all()
        self.assertEqual(sorted(held), [units[0].UnitID, units[1].UnitID])

    def test_redistribution_is_admin_only(self):
        customer = self.add_customer()
        outcome = redistribute_model(self.db, "Canon R6", self.customer_actor(customer))
        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.error.code, "not_authorized")


if __name__ == "__main__":
    unittest.main()
