import sys
import unittest
from datetime import date, timedelta
from pathlib import Path

from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parent))

from rental_fixtures import RentalDbTestCase

import CamRental as app_module


ADMIN_HEADERS = {"X-Actor-ID": "1", "X-Actor-Role": "admin"}


class ApiFlowTests(RentalDbTestCase):
    def setUp(self):
        super().setUp()
        app_module.CALENDAR_CACHE.clear()
        self.client = TestClient(app_module.app)
        self.start = date.today() + timedelta(days=30)
        self.end = self.start + timedelta(days=3)
        self.unit = self.add_unit("Canon R6")
        self.ana = self.add_customer()
        self.ben = self.add_customer("Ben", "Reyes")

    def tearDown(self):
        app_module.app.dependency_overrides.clear()
        super().tearDown()

    def _customer_headers(self, customer):
        return {"X-Actor-ID": str(customer.CustomerID), "X-Actor-Role": "customer"}

    def _book(self, customer, **overrides):
        body = {"unitID": self.unit.UnitID, "startDate": str(self.start), "endDate": str(self.end)}
        body.update(overrides)
        return self.client.post("/api/rentals", json=body, headers=self._customer_headers(customer))

    def test_healthz(self):
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})
        self.assertEqual(self.client.get("/api/healthz").status_code, 200)

    def test_actor_headers_are_required(self):
        self.assertEqual(self.client.get("/api/rentals").status_code, 401)
        self.assertEqual(self.client.get("/api/rentals", headers={"X-Actor-Role": "customer"}).status_code, 401)
        self.assertEqual(
            self.client.get("/api/rentals", headers={"X-Actor-ID": "abc", "X-Actor-Role": "admin"}).status_code, 400
        )

    def test_booking_then_confirm(self):
        created = self._book(self.ana)
        self.assertEqual(created.status_code, 200, created.text)
        body = created.json()
        self.assertEqual(body["rentalStatus"], "pending")
        self.assertEqual(body["totalPrice"], 1600.0)
        self.assertEqual(body["warnings"], [])

        confirmed = self.client.post(f"/api/rentals/{body['rentalID']}/confirm", headers=ADMIN_HEADERS)
        self.assertEqual(confirmed.status_code, 200, confirmed.text)
        self.assertEqual(confirmed.json()["rentalStatus"], "confirmed")

        pending = self.client.get("/api/notifications/pending", headers=ADMIN_HEADERS).json()
        self.assertIn("RentalConfirmed", [n["notificationType"] for n in pending])

    def test_conflict_is_reported_as_409_and_resolved(self):
        first = self._book(self.ana).json()
        second = self._book(self.ben).json()
        spare = self.add_unit("Canon R6")

        response = self.client.post(f"/api/rentals/{first['rentalID']}/confirm", headers=ADMIN_HEADERS)
        self.assertEqual(response.status_code, 409)
        detail = response.json()["detail"]
        self.assertEqual(detail["code"], "conflict")
        self.assertEqual([c["rentalID"] for c in detail["conflicts"]], [second["rentalID"]])
        self.assertEqual(detail["conflicts"][0]["startDate"], str(self.start))

        resolved = self.client.post(
            f"/api/rentals/{first['rentalID']}/resolve-conflict",
            json={"strategy": "transfer", "targetUnitID": spare.UnitID},
            headers=ADMIN_HEADERS,
        )
        self.assertEqual(resolved.status_code, 200, resolved.text)
        self.assertEqual(resolved.json()["unitID"], spare.UnitID)

    def test_failed_resolution_names_the_step(self):
        first = self._book(self.ana).json()
        self._book(self.ben)
        response = self.client.post(
            f"/api/rentals/{first['rentalID']}/resolve-conflict",
            json={"strategy": "transfer"},
            headers=ADMIN_HEADERS,
        )
        self.assertEqual(response.status_code, 409)
        detail = response.json()["detail"]
        self.assertEqual(detail["code"], "no_unit_available")
        self.assertEqual(detail["failedStep"], "transfer")
        self.assertEqual(detail["rental"]["rentalStatus"], "pending")

    def test_customer_cannot_book_in_the_past(self):
        yesterday = date.today() - timedelta(days=1)
        response = self._book(self.ana, startDate=str(yesterday), endDate=str(yesterday))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"]["code"], "validation_error")

    def test_customer_cannot_confirm(self):
        created = self._book(self.ana).json()
        response = self.client.post(f"/api/rentals/{created['rentalID']}/confirm", headers=self._customer_headers(self.ana))
        self.assertEqual(response.status_code, 403)

    def test_cancel_after_dispatch_is_409(self):
        created = self._book(self.ana).json()
        rental_path = f"/api/rentals/{created['rentalID']}"
        self.client.post(f"{rental_path}/confirm", headers=ADMIN_HEADERS)
        for event in ["ready_to_ship", "in_transit_to_user"]:
            shipped = self.client.post(f"{rental_path}/shipping", json={"event": event}, headers=ADMIN_HEADERS)
            self.assertEqual(shipped.status_code, 200, shipped.text)

        response = self.client.post(
            f"{rental_path}/cancel", json={"reason": "Changed plans"}, headers=self._customer_headers(self.ana)
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["detail"]["code"], "cancellation_not_allowed")

    def test_missing_rental_is_404(self):
        response = self.client.get("/api/rentals/999", headers=ADMIN_HEADERS)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"]["code"], "not_found")

    def test_calendar_is_cached_until_a_mutation(self):
        params = {"startDate": str(self.start), "endDate": str(self.end)}
        self.assertEqual(self.client.get("/api/calendar", params=params, headers=ADMIN_HEADERS).json(), [])

        # Written behind the API's back, so the cached view stays stale.
        self.add_rental(self.unit, self.start, self.end, status="confirmed")
        self.assertEqual(self.client.get("/api/calendar", params=params, headers=ADMIN_HEADERS).json(), [])

        self._book(self.ana, startDate=str(self.end + timedelta(days=10)), endDate=str(self.end + timedelta(days=11)))
        calendar = self.client.get("/api/calendar", params=params, headers=ADMIN_HEADERS).json()
        self.assertEqual(len(calendar), 1)

    def test_calendar_is_admin_only(self):
        params = {"startDate": str(self.start), "endDate": str(self.end)}
        response = self.client.get("/api/calendar", params=params, headers=self._customer_headers(self.ana))
        self.assertEqual(response.status_code, 403)

    def test_quote_and_availability(self):
        params = {"startDate": str(self.start), "endDate": str(self.end)}
        quote = self.client.get(f"/api/units/{self.unit.UnitID}/quote", params=params)
        self.assertEqual(quote.status_code, 200)
        self.assertEqual(quote.json()["totalPrice"], 1600.0)

        self.add_rental(self.unit, self.start, self.end, status="confirmed")
        availability = self.client.get(f"/api/units/{self.unit.UnitID}/availability", params=params).json()
        self.assertFalse(availability["available"])
        self.assertTrue(availability["alternatives"])

        by_model = self.client.get("/api/models/Canon R6/availability", params=params).json()
        self.assertEqual(by_model["availableCount"], 0)

    def test_inverted_quote_range_is_400(self):
        params = {"startDate": str(self.end), "endDate": str(self.start)}
        response = self.client.get(f"/api/units/{self.unit.UnitID}/quote", params=params)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"]["code"], "invalid_range")

    def test_extension_request_and_approval(self):
        created = self._book(self.ana).json()
        self.client.post(f"/api/rentals/{created['rentalID']}/confirm", headers=ADMIN_HEADERS)

        requested = self.client.post(
            f"/api/rentals/{created['rentalID']}/extensions",
            json={"newEndDate": str(self.end + timedelta(days=2))},
            headers=self._customer_headers(self.ana),
        )
        self.assertEqual(requested.status_code, 200, requested.text)
        self.assertEqual(requested.json()["additionalPrice"], 800.0)

        decided = self.client.post(
            f"/api/extensions/{requested.json()['extensionID']}/decision",
            json={"decision": "approve"},
            headers=ADMIN_HEADERS,
        )
        self.assertEqual(decided.status_code, 200, decided.text)
        rental = self.client.get(f"/api/rentals/{created['rentalID']}", headers=self._customer_headers(self.ana)).json()
        self.assertEqual(rental["endDate"], str(self.end + timedelta(days=2)))


if __name__ == "__main__":
    unittest.main()
