from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import AuditLog, Branch
from finance.models import Expense
from inventory.models import Barcode, Product, Supplier
from sales.models import Client, Sale
from sales.services import SaleLine, register_sale


class FinanceTestMixin:
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.user_model = get_user_model()

        self.branch = Branch.objects.create(code="MAIN", name="Main Store")
        self.other_branch = Branch.objects.create(code="OTHER", name="Other Store")
        self.cashier = self.user_model.objects.create_user(
            username="cashier",
            password="pass1234",
            branch=self.branch,
            role="cashier",
        )
        self.supervisor = self.user_model.objects.create_user(
            username="supervisor",
            password="pass1234",
            branch=self.branch,
            role="supervisor",
        )

        self.supplier = Supplier.objects.create(branch=self.branch, name="Acme", tax_id="11.222")
        self.product = Product.objects.create(
            branch=self.branch,
            supplier=self.supplier,
            name="Widget",
            sell_price=Decimal("9.99"),
            cost_price=Decimal("4.00"),
            stock=10,
            lifetime_stock=10,
        )
        Barcode.objects.create(product=self.product, code="EAN555")
        self.buyer = Client.objects.create(branch=self.branch, name="Ana")

    def sell(self, quantity, total, status=Sale.Status.COMPLETED, payment_method="cash"):
        return register_sale(
            branch=self.branch,
            user=self.cashier,
            client=self.buyer,
            status=status,
            total=Decimal(total),
            payment_method=payment_method,
            items=[SaleLine(self.product.id, quantity, Decimal("9.99"))],
        )


class ExpenseApiTests(FinanceTestMixin, TestCase):
    def test_create_defaults_date_and_stamps_branch(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(
            "/api/v1/expenses/",
            {"name": "Rent", "value": "1200.00", "branch": str(self.other_branch.id)},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        expense = Expense.objects.get(id=response.json()["id"])
        self.assertEqual(expense.branch_id, self.branch.id)
        self.assertIsNotNone(expense.date)
        self.assertTrue(AuditLog.objects.filter(action="expense.create", entity_id=expense.id).exists())

    def test_value_must_be_at_least_one_cent(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post("/api/v1/expenses/", {"name": "Free lunch", "value": "0.00"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("value", response.json()["errors"])

    def test_expenses_cannot_be_edited(self):
        expense = Expense.objects.create(branch=self.branch, name="Power", value=Decimal("80.00"))
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.patch(f"/api/v1/expenses/{expense.id}/", {"value": "90.00"}, format="json")

        self.assertEqual(response.status_code, 405)

    def test_only_managers_delete(self):
        expense = Expense.objects.create(branch=self.branch, name="Power", value=Decimal("80.00"))

        self.client.force_authenticate(user=self.cashier)
        self.assertEqual(self.client.delete(f"/api/v1/expenses/{expense.id}/").status_code, 403)

        self.client.force_authenticate(user=self.supervisor)
        self.assertEqual(self.client.delete(f"/api/v1/expenses/{expense.id}/").status_code, 204)
        self.assertFalse(Expense.objects.filter(id=expense.id).exists())

    def test_list_is_newest_first_and_branch_scoped(self):
        now = timezone.now()
        older = Expense.objects.create(branch=self.branch, name="Old", value=Decimal("1.00"), date=now - timedelta(days=3))
        newer = Expense.objects.create(branch=self.branch, name="New", value=Decimal("1.00"), date=now)
        Expense.objects.create(branch=self.other_branch, name="Theirs", value=Decimal("1.00"))
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/expenses/")

        self.assertEqual([row["id"] for row in response.json()["results"]], [str(newer.id), str(older.id)])


class DashboardReportTests(FinanceTestMixin, TestCase):
    def test_window_totals_only_count_recent_completed_sales(self):
        self.sell(2, "19.98")
        self.sell(1, "9.99", status=Sale.Status.PENDING)
        old = self.sell(1, "9.99")
        Sale.objects.filter(id=old.id).update(date=timezone.now() - timedelta(days=10))
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/reports/dashboard/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(len(payload["series"]), 7)
        self.assertEqual(payload["series"][-1]["day"], timezone.now().date().isoformat())
        self.assertEqual(Decimal(str(payload["revenue_total"])), Decimal("19.98"))
        self.assertEqual(Decimal(str(payload["cost_total"])), Decimal("8.00"))
        self.assertEqual(Decimal(str(payload["profit"])), Decimal("11.98"))
        self.assertEqual(payload["new_clients"], 1)
        self.assertEqual(payload["sold_units"], 4)
        self.assertEqual(Decimal(str(payload["sell_through_percentage"])), Decimal("40.00"))
        self.assertEqual(len(payload["recent_sales"]), 1)

    def test_empty_days_are_zero_filled(self):
        self.client.force_authenticate(user=self.cashier)

        payload = self.client.get("/api/v1/reports/dashboard/").json()

        self.assertEqual(len(payload["series"]), 7)
        self.assertTrue(all(Decimal(str(row["revenue"])) == 0 for row in payload["series"]))
        self.assertEqual(payload["recent_sales"], [])


class FinancialReportTests(FinanceTestMixin, TestCase):
    def test_totals_combine_sales_and_expenses(self):
        self.sell(2, "19.98")
        self.sell(1, "9.99", status=Sale.Status.CANCELED)
        Expense.objects.create(branch=self.branch, name="Bags", value=Decimal("5.00"))
        Expense.objects.create(branch=self.other_branch, name="Theirs", value=Decimal("500.00"))
        self.client.force_authenticate(user=self.cashier)

        payload = self.client.get("/api/v1/reports/financial/").json()

        self.assertEqual(Decimal(str(payload["revenue"])), Decimal("19.98"))
        self.assertEqual(Decimal(str(payload["product_cost"])), Decimal("8.00"))
        self.assertEqual(Decimal(str(payload["operating_expenses"])), Decimal("5.00"))
        self.assertEqual(Decimal(str(payload["total_cost"])), Decimal("13.00"))
        self.assertEqual(Decimal(str(payload["net_profit"])), Decimal("6.98"))
        self.assertEqual(Decimal(str(payload["margin_pct"])), Decimal("34.93"))
        self.assertEqual(payload["sale_count"], 1)
        self.assertEqual(len(payload["series"]), 1)
        self.assertEqual(Decimal(str(payload["series"][0]["profit"])), Decimal("6.98"))

    def test_date_range_outside_activity_yields_zero_margin(self):
        self.sell(1, "9.99")
        self.client.force_authenticate(user=self.cashier)

        payload = self.client.get(
            "/api/v1/reports/financial/", {"date_from": "2000-01-01", "date_to": "2000-01-31"}
        ).json()

        self.assertEqual(Decimal(str(payload["revenue"])), Decimal("0"))
        self.assertEqual(Decimal(str(payload["margin_pct"])), Decimal("0"))
        self.assertEqual(payload["series"], [])

    def test_half_open_date_range_is_rejected(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/reports/financial/", {"date_from": "2024-01-01"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("date_range", response.json()["errors"])

    def test_impossible_calendar_date_is_rejected(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get(
            "/api/v1/reports/financial/", {"date_from": "2024-02-30", "date_to": "2024-03-01"}
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("date_range", response.json()["errors"])

    def test_malformed_date_is_rejected_instead_of_ignored(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/reports/financial/", {"date_from": "abc"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("date_range", response.json()["errors"])


class HistoryReportTests(FinanceTestMixin, TestCase):
    def test_feed_merges_every_event_type_newest_first(self):
        self.sell(1, "9.99")
        Expense.objects.create(branch=self.branch, name="Bags", value=Decimal("5.00"))
        self.client.force_authenticate(user=self.cashier)

        events = self.client.get("/api/v1/reports/history/").json()["results"]

        self.assertEqual(
            {event["type"] for event in events},
            {"SALE", "EXPENSE", "NEW_CLIENT", "NEW_SUPPLIER", "NEW_PRODUCT", "NEW_BARCODE"},
        )
        dates = [event["date"] for event in events]
        self.assertEqual(dates, sorted(dates, reverse=True))
        sale_event = next(event for event in events if event["type"] == "SALE")
        self.assertEqual(sale_event["title"], "Sale to Ana")
        self.assertEqual(sale_event["subtitle"], "1 items | Status: COMPLETED")
