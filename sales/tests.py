import uuid
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase
from rest_framework.test import APIClient

from core.models import AuditLog, Branch
from inventory.models import Barcode, Product, Supplier
from sales.models import Client, Sale, SaleItem, SoldBarcodeLog
from sales.services import SaleLine, SaleRegistrationError, register_sale, update_sale_status


class SalesTestMixin:
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

        self.supplier = Supplier.objects.create(branch=self.branch, name="Acme")
        self.product = Product.objects.create(
            branch=self.branch,
            supplier=self.supplier,
            name="Widget",
            sku="W-1",
            sell_price=Decimal("9.99"),
            cost_price=Decimal("4.00"),
            stock=10,
            lifetime_stock=10,
        )
        self.barcode = Barcode.objects.create(product=self.product, code="EAN123")
        self.buyer = Client.objects.create(branch=self.branch, name="Ana", phone="555-0101")

        other_supplier = Supplier.objects.create(branch=self.other_branch, name="Elsewhere")
        self.foreign_product = Product.objects.create(
            branch=self.other_branch,
            supplier=other_supplier,
            name="Foreign",
            sell_price=Decimal("1.00"),
            stock=1,
            lifetime_stock=1,
        )
        self.foreign_client = Client.objects.create(branch=self.other_branch, name="Bruno")

    def sale_payload(self, **overrides):
        payload = {
            "client": str(self.buyer.id),
            "status": "COMPLETED",
            "total": "9.99",
            "payment_method": "cash",
            "items": [
                {
                    "product": str(self.product.id),
                    "quantity": 1,
                    "unit_price": "9.99",
                    "barcode": str(self.barcode.id),
                }
            ],
        }
        payload.update(overrides)
        return payload

    def register(self, *lines, status=Sale.Status.COMPLETED, total=Decimal("9.99")):
        return register_sale(
            branch=self.branch,
            user=self.cashier,
            client=self.buyer,
            status=status,
            total=total,
            payment_method="cash",
            items=list(lines),
        )


class RegisterSaleServiceTests(SalesTestMixin, TestCase):
    def test_barcode_sale_consumes_unit_and_logs_it(self):
        sale = self.register(SaleLine(self.product.id, 1, Decimal("9.99"), self.barcode.id))

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 9)
        self.assertEqual(self.product.lifetime_stock, 10)
        self.assertFalse(Barcode.objects.filter(id=self.barcode.id).exists())

        logs = list(SoldBarcodeLog.objects.all())
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].barcode, "EAN123")
        self.assertEqual(logs[0].product_name, "Widget")
        self.assertEqual(logs[0].sale_id, sale.id)
        self.assertEqual(sale.items.get().recorded_barcode, "EAN123")

    def test_unknown_product_rolls_back_every_line(self):
        lines = [
            SaleLine(self.product.id, 2, Decimal("9.99"), self.barcode.id),
            SaleLine(uuid.uuid4(), 1, Decimal("1.00")),
        ]

        with self.assertRaises(SaleRegistrationError):
            self.register(*lines)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 10)
        self.assertEqual(Sale.objects.count(), 0)
        self.assertEqual(SaleItem.objects.count(), 0)
        self.assertEqual(SoldBarcodeLog.objects.count(), 0)
        self.assertTrue(Barcode.objects.filter(id=self.barcode.id).exists())

    def test_stock_can_go_negative(self):
        self.register(SaleLine(self.product.id, 15, Decimal("9.99")))

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, -5)

    def test_missing_barcode_is_skipped_with_warning(self):
        with self.assertLogs("sales.services", level="WARNING") as captured:
            sale = self.register(SaleLine(self.product.id, 1, Decimal("9.99"), uuid.uuid4()))

        self.assertIn("sale_barcode_missing", captured.output[0])
        self.assertIsNone(sale.items.get().recorded_barcode)
        self.assertEqual(SoldBarcodeLog.objects.count(), 0)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 9)

    def test_barcode_of_another_product_is_not_consumed(self):
        gadget = Product.objects.create(
            branch=self.branch,
            supplier=self.supplier,
            name="Gadget",
            sell_price=Decimal("5.00"),
            stock=3,
            lifetime_stock=3,
        )
        gadget_unit = Barcode.objects.create(product=gadget, code="GAD-1")

        with self.assertLogs("sales.services", level="WARNING") as captured:
            sale = self.register(SaleLine(self.product.id, 1, Decimal("9.99"), gadget_unit.id))

        self.assertIn("sale_barcode_missing", captured.output[0])
        self.assertIsNone(sale.items.get().recorded_barcode)
        self.assertTrue(Barcode.objects.filter(id=gadget_unit.id).exists())
        self.assertEqual(SoldBarcodeLog.objects.count(), 0)
        gadget.refresh_from_db()
        self.product.refresh_from_db()
        self.assertEqual(gadget.stock, 3)
        self.assertEqual(self.product.stock, 9)

    def test_sold_log_keeps_product_name_after_rename(self):
        self.register(SaleLine(self.product.id, 1, Decimal("9.99"), self.barcode.id))

        self.product.name = "Renamed Widget"
        self.product.save()

        self.assertEqual(SoldBarcodeLog.objects.get().product_name, "Widget")

    def test_status_changes_leave_stock_and_barcodes_alone(self):
        sale = self.register(SaleLine(self.product.id, 1, Decimal("9.99"), self.barcode.id))

        for status in (Sale.Status.CANCELED, Sale.Status.PENDING, Sale.Status.COMPLETED, Sale.Status.CANCELED):
            update_sale_status(sale, status)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 9)
        self.assertFalse(Barcode.objects.filter(code="EAN123").exists())
        self.assertEqual(Sale.objects.get(id=sale.id).status, Sale.Status.CANCELED)

    def test_identical_registration_twice_creates_two_sales(self):
        line = SaleLine(self.product.id, 2, Decimal("9.99"))

        self.register(line)
        self.register(line)

        self.product.refresh_from_db()
        self.assertEqual(Sale.objects.count(), 2)
        self.assertEqual(self.product.stock, 6)

    def test_lines_are_processed_in_order_with_the_same_product(self):
        second = Barcode.objects.create(product=self.product, code="EAN124")

        sale = self.register(
            SaleLine(self.product.id, 1, Decimal("9.99"), self.barcode.id),
            SaleLine(self.product.id, 1, Decimal("9.99"), second.id),
        )

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 8)
        self.assertEqual(sorted(sale.sold_barcodes.values_list("barcode", flat=True)), ["EAN123", "EAN124"])
        self.assertEqual(Barcode.objects.filter(product=self.product).count(), 0)


class SaleApiTests(SalesTestMixin, TestCase):
    def test_register_sale_end_to_end(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post("/api/v1/sales/", self.sale_payload(), format="json")

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["status"], "COMPLETED")
        self.assertEqual(payload["total"], "9.99")
        self.assertEqual(payload["user"], str(self.cashier.id))
        self.assertEqual(payload["items"][0]["recorded_barcode"], "EAN123")
        self.assertEqual(payload["sold_barcodes"][0]["barcode"], "EAN123")

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 9)
        self.assertFalse(Barcode.objects.filter(code="EAN123").exists())
        self.assertTrue(AuditLog.objects.filter(action="sale.create", entity_id=payload["id"]).exists())

    def test_double_submission_is_not_deduplicated(self):
        self.client.force_authenticate(user=self.cashier)
        payload = self.sale_payload(items=[{"product": str(self.product.id), "quantity": 1, "unit_price": "9.99"}])

        first = self.client.post("/api/v1/sales/", payload, format="json")
        second = self.client.post("/api/v1/sales/", payload, format="json")

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 201)
        self.assertNotEqual(first.json()["id"], second.json()["id"])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 8)

    def test_unknown_client_is_rejected_without_side_effects(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post("/api/v1/sales/", self.sale_payload(client=str(uuid.uuid4())), format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("client", response.json()["errors"])
        self.assertEqual(Sale.objects.count(), 0)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 10)

    def test_other_branch_client_and_product_are_rejected(self):
        self.client.force_authenticate(user=self.cashier)

        foreign_client = self.client.post(
            "/api/v1/sales/", self.sale_payload(client=str(self.foreign_client.id)), format="json"
        )
        foreign_product = self.client.post(
            "/api/v1/sales/",
            self.sale_payload(items=[{"product": str(self.foreign_product.id), "quantity": 1, "unit_price": "1.00"}]),
            format="json",
        )

        self.assertEqual(foreign_client.status_code, 400)
        self.assertEqual(foreign_product.status_code, 400)
        self.assertEqual(Sale.objects.count(), 0)

    def test_barcode_from_other_branch_is_left_untouched(self):
        foreign_unit = Barcode.objects.create(product=self.foreign_product, code="OTHER-1")
        self.client.force_authenticate(user=self.cashier)
        payload = self.sale_payload(
            items=[
                {
                    "product": str(self.product.id),
                    "quantity": 1,
                    "unit_price": "9.99",
                    "barcode": str(foreign_unit.id),
                }
            ]
        )

        response = self.client.post("/api/v1/sales/", payload, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertIsNone(response.json()["items"][0]["recorded_barcode"])
        self.assertEqual(response.json()["sold_barcodes"], [])
        self.assertTrue(Barcode.objects.filter(id=foreign_unit.id).exists())
        self.assertFalse(SoldBarcodeLog.objects.filter(barcode="OTHER-1").exists())

    def test_empty_items_and_zero_quantity_are_rejected(self):
        self.client.force_authenticate(user=self.cashier)

        empty = self.client.post("/api/v1/sales/", self.sale_payload(items=[]), format="json")
        zero = self.client.post(
            "/api/v1/sales/",
            self.sale_payload(items=[{"product": str(self.product.id), "quantity": 0, "unit_price": "9.99"}]),
            format="json",
        )

        self.assertEqual(empty.status_code, 400)
        self.assertEqual(zero.status_code, 400)
        self.assertEqual(Sale.objects.count(), 0)

    def test_stale_barcode_still_registers_sale(self):
        self.client.force_authenticate(user=self.cashier)
        payload = self.sale_payload(
            items=[{"product": str(self.product.id), "quantity": 1, "unit_price": "9.99", "barcode": str(uuid.uuid4())}]
        )

        response = self.client.post("/api/v1/sales/", payload, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertIsNone(response.json()["items"][0]["recorded_barcode"])
        self.assertEqual(response.json()["sold_barcodes"], [])

    def test_supervisor_changes_status_cashier_cannot(self):
        sale = self.register(SaleLine(self.product.id, 1, Decimal("9.99"), self.barcode.id))

        self.client.force_authenticate(user=self.cashier)
        denied = self.client.post(f"/api/v1/sales/{sale.id}/status/", {"status": "CANCELED"}, format="json")
        self.assertEqual(denied.status_code, 403)

        self.client.force_authenticate(user=self.supervisor)
        response = self.client.post(f"/api/v1/sales/{sale.id}/status/", {"status": "CANCELED"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "CANCELED")
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 9)
        self.assertTrue(AuditLog.objects.filter(action="sale.status.update", entity_id=sale.id).exists())

    def test_invalid_status_is_rejected(self):
        sale = self.register(SaleLine(self.product.id, 1, Decimal("9.99")))
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.post(f"/api/v1/sales/{sale.id}/status/", {"status": "REFUNDED"}, format="json")

        self.assertEqual(response.status_code, 400)

    def test_list_filters_by_status_and_hides_other_branches(self):
        completed = self.register(SaleLine(self.product.id, 1, Decimal("9.99")))
        self.register(SaleLine(self.product.id, 1, Decimal("9.99")), status=Sale.Status.PENDING)
        foreign_user = self.user_model.objects.create_user(username="x", password="pass1234", branch=self.other_branch)
        register_sale(
            branch=self.other_branch,
            user=foreign_user,
            client=self.foreign_client,
            status=Sale.Status.COMPLETED,
            total=Decimal("1.00"),
            payment_method="pix",
            items=[SaleLine(self.foreign_product.id, 1, Decimal("1.00"))],
        )
        self.client.force_authenticate(user=self.cashier)

        everything = self.client.get("/api/v1/sales/")
        filtered = self.client.get("/api/v1/sales/", {"status": "COMPLETED"})

        self.assertEqual(everything.json()["count"], 2)
        self.assertEqual([row["id"] for row in filtered.json()["results"]], [str(completed.id)])

    def test_retrieve_includes_items_and_sold_barcodes(self):
        sale = self.register(SaleLine(self.product.id, 1, Decimal("9.99"), self.barcode.id))
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get(f"/api/v1/sales/{sale.id}/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["items"][0]["product_name"], "Widget")
        self.assertEqual(response.json()["sold_barcodes"][0]["product_name"], "Widget")

    def test_catalog_and_sold_units(self):
        self.register(SaleLine(self.product.id, 3, Decimal("9.99")))
        self.client.force_authenticate(user=self.cashier)

        catalog = self.client.get("/api/v1/sales/catalog/", {"search": "EAN1"})
        sold = self.client.get("/api/v1/sales/sold-units/")

        self.assertEqual(catalog.status_code, 200)
        self.assertEqual([row["id"] for row in catalog.json()["results"]], [str(self.product.id)])
        self.assertEqual(catalog.json()["results"][0]["barcodes"][0]["code"], "EAN123")
        self.assertEqual(sold.json(), {"sold_units": 3})

    def test_sold_barcode_log_search(self):
        self.register(SaleLine(self.product.id, 1, Decimal("9.99"), self.barcode.id))
        self.client.force_authenticate(user=self.cashier)

        hit = self.client.get("/api/v1/sold-barcodes/", {"search": "ean12"})
        miss = self.client.get("/api/v1/sold-barcodes/", {"search": "999"})

        self.assertEqual(hit.json()["count"], 1)
        self.assertEqual(miss.json()["count"], 0)

    def test_product_with_sales_cannot_be_deleted(self):
        self.register(SaleLine(self.product.id, 1, Decimal("9.99"), self.barcode.id))
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.delete(f"/api/v1/products/{self.product.id}/")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "protected_record")
        self.assertEqual(SoldBarcodeLog.objects.get().product_name, "Widget")


class ClientApiTests(SalesTestMixin, TestCase):
    def test_create_defaults_to_active_and_is_branch_stamped(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(
            "/api/v1/clients/",
            {"name": "Carla", "phone": "555-0102", "branch": str(self.other_branch.id)},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        created = Client.objects.get(id=response.json()["id"])
        self.assertEqual(created.status, Client.Status.ACTIVE)
        self.assertEqual(created.branch_id, self.branch.id)

    def test_active_endpoint_returns_id_and_name_sorted(self):
        Client.objects.create(branch=self.branch, name="Aaron")
        Client.objects.create(branch=self.branch, name="Zed", status=Client.Status.INACTIVE)
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/clients/active/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["name"] for row in response.json()], ["Aaron", "Ana"])
        self.assertEqual(sorted(response.json()[0].keys()), ["id", "name"])

    def test_detail_includes_purchase_summary(self):
        self.register(SaleLine(self.product.id, 1, Decimal("9.99")), total=Decimal("9.99"))
        self.register(SaleLine(self.product.id, 2, Decimal("9.99")), total=Decimal("19.98"))
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get(f"/api/v1/clients/{self.buyer.id}/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total_spent"], "29.97")
        self.assertIsNotNone(response.json()["last_purchase_at"])

    def test_detail_without_sales(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get(f"/api/v1/clients/{self.buyer.id}/")

        self.assertEqual(response.json()["total_spent"], "0.00")
        self.assertIsNone(response.json()["last_purchase_at"])

    def test_client_with_sales_cannot_be_deleted(self):
        self.register(SaleLine(self.product.id, 1, Decimal("9.99")))
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.delete(f"/api/v1/clients/{self.buyer.id}/")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "protected_record")
        self.assertTrue(Client.objects.filter(id=self.buyer.id).exists())

    def test_cashier_cannot_delete_client(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.delete(f"/api/v1/clients/{self.buyer.id}/")

        self.assertEqual(response.status_code, 403)


class SalesReportTests(SalesTestMixin, TestCase):
    def test_sell_through(self):
        self.register(SaleLine(self.product.id, 1, Decimal("9.99"), self.barcode.id))
        self.register(SaleLine(self.product.id, 1, Decimal("9.99")), status=Sale.Status.CANCELED)
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/reports/sell-through/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["sold_units"], 2)
        self.assertEqual(payload["lifetime_stock"], 10)
        self.assertEqual(payload["current_stock"], 8)
        self.assertEqual(Decimal(str(payload["percentage"])), Decimal("20.00"))

    def test_grouped_reports_exclude_canceled_sales(self):
        self.register(SaleLine(self.product.id, 2, Decimal("9.99")), total=Decimal("19.98"))
        self.register(SaleLine(self.product.id, 5, Decimal("9.99")), status=Sale.Status.CANCELED, total=Decimal("49.95"))
        self.client.force_authenticate(user=self.cashier)

        top_products = self.client.get("/api/v1/reports/top-products/").json()["results"]
        top_clients = self.client.get("/api/v1/reports/top-clients/").json()["results"]
        methods = self.client.get("/api/v1/reports/payment-methods/").json()["results"]
        daily = self.client.get("/api/v1/reports/daily-sales/").json()["results"]

        self.assertEqual(top_products[0]["quantity"], 2)
        self.assertEqual(Decimal(str(top_products[0]["cost"])), Decimal("8.00"))
        self.assertEqual(top_clients[0]["sale_count"], 1)
        self.assertEqual(Decimal(str(top_clients[0]["total_spent"])), Decimal("19.98"))
        self.assertEqual(methods[0]["payment_method"], "cash")
        self.assertEqual(Decimal(str(methods[0]["percentage"])), Decimal("100.00"))
        self.assertEqual(sum(row["sale_count"] for row in daily), 1)

    def test_invalid_limit_is_rejected(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/reports/top-products/", {"limit": "0"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("limit", response.json()["errors"])
