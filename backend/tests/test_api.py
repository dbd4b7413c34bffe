import unittest
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from backend.config import Settings
from backend.main import create_app


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        self.client = TestClient(create_app(engine=engine, settings=Settings()))
        self.user_id = self.signup("saver@example.com")
        self.headers = {"x-user-id": str(self.user_id)}

    def signup(self, email: str, password: str = "s3cret") -> int:
        response = self.client.post("/auth/signup", json={"email": email, "password": password})
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()["id"]

    def add_payment(
        self, day: str, description: str, amount: str, category: str | None = None
    ) -> dict:
        response = self.client.post(
            "/payments",
            json={"date": day, "description": description, "amount": amount, "category": category},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def add_loan(self, **overrides) -> dict:
        body = {
            "name": "Car loan",
            "lender": "City Bank",
            "principalAmount": "12000",
            "interestRate": "12",
            "tenureMonths": 13,
            "emiAmount": "1000",
            "startDate": "2024-01-01",
        }
        body.update(overrides)
        response = self.client.post("/loans", json=body, headers=self.headers)
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def add_recurring(self, **overrides) -> dict:
        body = {
            "name": "Netflix Premium",
            "amount": "649",
            "frequency": "monthly",
            "startDate": "2024-01-01",
            "nextDueDate": "2024-02-01",
        }
        body.update(overrides)
        response = self.client.post("/recurring", json=body, headers=self.headers)
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()


class AuthTests(ApiTestCase):
    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_login_and_duplicate_signup(self) -> None:
        login = self.client.post(
            "/auth/login", json={"email": " Saver@Example.com ", "password": "s3cret"}
        )
        duplicate = self.client.post(
            "/auth/signup", json={"email": "saver@example.com", "password": "other"}
        )
        wrong = self.client.post(
            "/auth/login", json={"email": "saver@example.com", "password": "nope"}
        )

        self.assertEqual(login.status_code, 200)
        self.assertEqual(login.json()["id"], self.user_id)
        self.assertNotIn("hashedPassword", login.json())
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(wrong.status_code, 401)

    def test_identity_header_is_enforced(self) -> None:
        self.assertEqual(self.client.get("/payments").status_code, 401)
        self.assertEqual(
            self.client.get("/payments", headers={"x-user-id": "abc"}).status_code, 400
        )
        self.assertEqual(
            self.client.get("/payments", headers={"x-user-id": "999"}).status_code, 404
        )


class PaymentRouteTests(ApiTestCase):
    def test_create_list_and_filter_payments(self) -> None:
        created = self.add_payment("2024-01-05", "Groceries", "1520.50")
        self.add_payment("2024-02-05", "Fuel", "2000")

        self.assertEqual(created["description"], "Groceries")
        self.assertEqual(created["date"], "2024-01-05")
        self.assertIn("createdAt", created)

        listed = self.client.get("/payments", headers=self.headers).json()
        filtered = self.client.get(
            "/payments", params={"startDate": "2024-02-01"}, headers=self.headers
        ).json()

        self.assertEqual([p["description"] for p in listed], ["Fuel", "Groceries"])
        self.assertEqual([p["description"] for p in filtered], ["Fuel"])
        self.assertEqual(Decimal(str(listed[1]["amount"])), Decimal("1520.50"))

    def test_rejects_invalid_payment(self) -> None:
        response = self.client.post(
            "/payments",
            json={"date": "2024-01-05", "description": "  ", "amount": "10"},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Description required.")

    def test_delete_payment_scoped_to_user(self) -> None:
        payment = self.add_payment("2024-01-05", "Groceries", "100")
        other_headers = {"x-user-id": str(self.signup("other@example.com"))}

        foreign = self.client.delete(f"/payments/{payment['id']}", headers=other_headers)
        deleted = self.client.delete(f"/payments/{payment['id']}", headers=self.headers)
        again = self.client.delete(f"/payments/{payment['id']}", headers=self.headers)

        self.assertEqual(foreign.status_code, 404)
        self.assertEqual(deleted.json(), {"status": "deleted"})
        self.assertEqual(again.status_code, 404)


class LoanRouteTests(ApiTestCase):
    def test_create_defaults_remaining_amount_to_principal(self) -> None:
        loan = self.add_loan()

        self.assertEqual(loan["name"], "Car loan")
        self.assertEqual(Decimal(str(loan["remainingAmount"])), Decimal("12000"))
        self.assertTrue(loan["isActive"])
        self.assertNotIn("userId", loan)

    def test_partial_update_and_delete(self) -> None:
        loan = self.add_loan()

        updated = self.client.put(
            f"/loans/{loan['id']}",
            json={"remainingAmount": "8000", "notes": " prepaid "},
            headers=self.headers,
        )
        missing = self.client.put("/loans/999", json={"notes": "x"}, headers=self.headers)
        invalid = self.client.put(
            f"/loans/{loan['id']}", json={"tenureMonths": 0}, headers=self.headers
        )

        self.assertEqual(updated.status_code, 200, updated.text)
        self.assertEqual(Decimal(str(updated.json()["remainingAmount"])), Decimal("8000"))
        self.assertEqual(updated.json()["notes"], "prepaid")
        self.assertEqual(updated.json()["name"], "Car loan")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(invalid.status_code, 400)

        too_steep = self.client.put(
            f"/loans/{loan['id']}", json={"interestRate": "1000"}, headers=self.headers
        )
        self.assertEqual(too_steep.status_code, 400)
        self.assertEqual(too_steep.json()["detail"], "Interest rate cannot exceed 100%.")

        self.assertEqual(
            self.client.delete(f"/loans/{loan['id']}", headers=self.headers).status_code, 200
        )
        self.assertEqual(self.client.get("/loans", headers=self.headers).json(), [])

    def test_debt_optimizer_lists_active_loans(self) -> None:
        self.add_loan(name="Active")
        self.add_loan(name="Closed", isActive=False)

        loans = self.client.get("/debt-optimizer", headers=self.headers).json()

        self.assertEqual([loan["name"] for loan in loans], ["Active"])

    def test_payoff_plan(self) -> None:
        self.add_loan()

        plan = self.client.get("/debt-optimizer/plan", headers=self.headers).json()
        accelerated = self.client.get(
            "/debt-optimizer/plan", params={"extraMonthly": "5000"}, headers=self.headers
        ).json()
        rejected = self.client.get(
            "/debt-optimizer/plan", params={"extraMonthly": "-1"}, headers=self.headers
        )

        self.assertEqual(plan["loanCount"], 1)
        self.assertEqual(plan["recommended"], "avalanche")
        self.assertEqual(plan["avalanche"]["months"], 13)
        self.assertEqual(plan["snowball"]["months"], 13)
        self.assertGreater(Decimal(str(plan["avalanche"]["totalInterest"])), Decimal("0"))
        self.assertEqual(plan["avalanche"]["schedule"][-1]["month"], 13)
        self.assertEqual(accelerated["avalanche"]["months"], 3)
        self.assertEqual(accelerated["monthsSaved"], 10)
        self.assertEqual(rejected.status_code, 422)


class DetectionRouteTests(ApiTestCase):
    def test_sip_detection(self) -> None:
        for day in ("2024-01-01", "2024-01-31", "2024-03-01"):
            self.add_payment(day, "Index Fund SIP", "5000")
        self.add_payment("2024-01-15", "Dinner", "1800")

        suggestions = self.client.get("/sip-detection", headers=self.headers).json()

        self.assertEqual(len(suggestions), 1)
        self.assertEqual(suggestions[0]["description"], "Index Fund SIP")
        self.assertEqual(suggestions[0]["occurrences"], 3)
        self.assertEqual(suggestions[0]["intervalDays"], 30)

    def test_subscription_detection_skips_tracked_subscriptions(self) -> None:
        self.add_payment("2024-01-10", "Spotify", "119")
        self.add_payment("2024-02-10", "Spotify", "119")

        candidates = self.client.post("/subscriptions/detect", headers=self.headers).json()
        created = self.client.post(
            "/subscriptions",
            json={"name": "spotify", "amount": "119", "frequency": "monthly"},
            headers=self.headers,
        )
        after = self.client.post("/subscriptions/detect", headers=self.headers).json()

        self.assertEqual(
            [(c["name"], c["frequency"], c["category"], c["source"]) for c in candidates],
            [("Spotify", "Monthly", "Music", "payments")],
        )
        self.assertEqual(created.status_code, 200, created.text)
        self.assertEqual(created.json()["frequency"], "Monthly")
        self.assertEqual(after, [])
        self.assertEqual(len(self.client.get("/subscriptions", headers=self.headers).json()), 1)

    def test_subscription_detection_scans_active_recurring_payments(self) -> None:
        self.add_recurring()
        self.add_recurring(name="Rent", amount="25000")
        self.add_recurring(name="Spotify Premium", amount="119", isActive=False)

        candidates = self.client.post("/subscriptions/detect", headers=self.headers).json()

        self.assertEqual(
            [(c["name"], c["frequency"], c["source"]) for c in candidates],
            [("Netflix Premium", "Monthly", "recurring_payments")],
        )


class RecurringRouteTests(ApiTestCase):
    def test_create_list_update_and_delete(self) -> None:
        first = self.add_recurring(bank=" HDFC ", category="Entertainment")
        self.add_recurring(name="Insurance", amount="1200", frequency="Yearly", nextDueDate="2024-06-01")

        self.assertEqual(first["frequency"], "Monthly")
        self.assertEqual(first["bank"], "HDFC")
        self.assertEqual(first["nextDueDate"], "2024-02-01")
        self.assertTrue(first["isActive"])

        listed = self.client.get("/recurring", headers=self.headers).json()
        due_soon = self.client.get(
            "/recurring", params={"endDate": "2024-03-01"}, headers=self.headers
        ).json()
        self.assertEqual([r["name"] for r in listed], ["Netflix Premium", "Insurance"])
        self.assertEqual([r["name"] for r in due_soon], ["Netflix Premium"])

        updated = self.client.put(
            f"/recurring/{first['id']}",
            json={"amount": "799", "frequency": "weekly"},
            headers=self.headers,
        )
        self.assertEqual(updated.status_code, 200, updated.text)
        self.assertEqual(Decimal(str(updated.json()["amount"])), Decimal("799"))
        self.assertEqual(updated.json()["frequency"], "Weekly")

        deleted = self.client.delete(f"/recurring/{first['id']}", headers=self.headers)
        again = self.client.delete(f"/recurring/{first['id']}", headers=self.headers)
        self.assertEqual(deleted.json(), {"status": "deleted"})
        self.assertEqual(again.status_code, 404)

    def test_rejects_invalid_recurring_payments(self) -> None:
        base = {
            "name": "Gym",
            "amount": "999",
            "frequency": "monthly",
            "startDate": "2024-01-01",
            "nextDueDate": "2024-02-01",
        }
        quarterly = self.client.post(
            "/recurring", json={**base, "frequency": "quarterly"}, headers=self.headers
        )
        backwards = self.client.post(
            "/recurring", json={**base, "nextDueDate": "2023-12-01"}, headers=self.headers
        )
        missing = self.client.put("/recurring/999", json={"notes": "x"}, headers=self.headers)
        null_amount = self.client.put(
            f"/recurring/{self.add_recurring()['id']}", json={"amount": None}, headers=self.headers
        )

        self.assertEqual(quarterly.status_code, 400)
        self.assertEqual(backwards.status_code, 400)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(null_amount.status_code, 400)


class AnalyticsRouteTests(ApiTestCase):
    def test_spending_rollup(self) -> None:
        self.add_payment("2024-01-05", "Groceries", "100", category="Food")
        self.add_payment("2024-03-02", "Dinner", "250", category="Food")
        self.add_payment("2024-03-02", "Taxi", "80")
        self.add_payment("2023-06-01", "Old", "999", category="Food")

        body = self.client.get(
            "/analytics/spending", params={"asOf": "2024-03-20", "months": 3}, headers=self.headers
        ).json()

        self.assertEqual([m["month"] for m in body["months"]], ["2024-01", "2024-02", "2024-03"])
        march = body["months"][2]
        self.assertEqual(Decimal(str(march["total"])), Decimal("330"))
        self.assertEqual(
            {key: Decimal(str(value)) for key, value in march["categories"].items()},
            {"Food": Decimal("250"), "Uncategorized": Decimal("80")},
        )
        self.assertEqual(body["months"][1]["categories"], {})
        self.assertEqual(len(body["daily"]), 31)
        self.assertEqual(body["daily"][1]["day"], "2024-03-02")
        self.assertEqual(Decimal(str(body["daily"][1]["amount"])), Decimal("330"))

    def test_rejects_out_of_range_window(self) -> None:
        response = self.client.get(
            "/analytics/spending", params={"months": 0}, headers=self.headers
        )

        self.assertEqual(response.status_code, 422)


class CalculatorRouteTests(ApiTestCase):
    def test_emi_calculator(self) -> None:
        response = self.client.get(
            "/calculators/emi",
            params={"principal": "100000", "annualRate": "12", "tenureMonths": 12},
        )

        body = response.json()
        self.assertEqual(Decimal(str(body["emi"])).quantize(Decimal("0.01")), Decimal("8884.88"))
        self.assertEqual(
            Decimal(str(body["totalInterest"])).quantize(Decimal("0.01")), Decimal("6618.55")
        )

    def test_cagr_calculator_validates_inputs(self) -> None:
        ok = self.client.get(
            "/calculators/cagr", params={"initialValue": "100", "finalValue": "121", "years": "2"}
        )
        bad = self.client.get(
            "/calculators/cagr", params={"initialValue": "0", "finalValue": "121", "years": "2"}
        )

        self.assertEqual(Decimal(str(ok.json()["cagr"])).quantize(Decimal("0.01")), Decimal("10.00"))
        self.assertEqual(bad.status_code, 422)

    def test_calculators_reject_out_of_range_inputs(self) -> None:
        responses = [
            self.client.get(
                "/calculators/emi",
                params={"principal": "1000", "annualRate": "12", "tenureMonths": 1000000000},
            ),
            self.client.get(
                "/calculators/emi",
                params={"principal": "1000", "annualRate": "1000", "tenureMonths": 12},
            ),
            self.client.get(
                "/calculators/lump-sum",
                params={"principal": "1000", "years": "1e9", "annualReturn": "10"},
            ),
            self.client.get(
                "/calculators/sip",
                params={"monthlyAmount": "1000", "years": "1e9", "annualReturn": "12"},
            ),
        ]

        self.assertEqual([response.status_code for response in responses], [422, 422, 422, 422])

    def test_longest_supported_horizon_is_answered(self) -> None:
        response = self.client.get(
            "/calculators/sip",
            params={"monthlyAmount": "1000000000000", "years": "100", "annualReturn": "100"},
        )

        self.assertEqual(response.status_code, 200, response.text)
        self.assertGreater(Decimal(str(response.json()["maturityValue"])), Decimal("0"))


if __name__ == "__main__":
    unittest.main()
