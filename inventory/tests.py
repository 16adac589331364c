from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from core.models import AuditLog, Branch
from inventory.models import Barcode, Category, Product, Supplier
from inventory.services import decrement_stock, sell_through_percentage


class InventoryTestMixin:
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()

        self.branch_a = Branch.objects.create(code="A", name="Branch A")
        self.branch_b = Branch.objects.create(code="B", name="Branch B")

        self.supervisor_a = self.user_model.objects.create_user(
            username="supervisor-a",
            password="pass1234",
            branch=self.branch_a,
            role="supervisor",
        )
        self.cashier_a = self.user_model.objects.create_user(
            username="cashier-a",
            password="pass1234",
            branch=self.branch_a,
            role="cashier",
        )

        self.supplier_a = Supplier.objects.create(branch=self.branch_a, name="Acme Wholesale", tax_id="12.345")
        self.supplier_b = Supplier.objects.create(branch=self.branch_b, name="Other Supplier")
        self.category_a = Category.objects.create(branch=self.branch_a, name="Shirts", color="#ff0000")

        self.product_a = Product.objects.create(
            branch=self.branch_a,
            supplier=self.supplier_a,
            name="Blue Shirt",
            sku="SH-001",
            sell_price=Decimal("50.00"),
            cost_price=Decimal("20.00"),
            stock=3,
            lifetime_stock=3,
        )
        self.product_a.categories.add(self.category_a)
        self.product_b = Product.objects.create(
            branch=self.branch_b,
            supplier=self.supplier_b,
            name="Foreign Product",
            sell_price=Decimal("10.00"),
            stock=5,
            lifetime_stock=5,
        )
        Barcode.objects.create(product=self.product_a, code="7890001")
        Barcode.objects.create(product=self.product_b, code="7890999")


class ProductApiTests(InventoryTestMixin, TestCase):
    def test_user_cannot_read_other_branch_products(self):
        self.client.force_authenticate(user=self.cashier_a)

        response = self.client.get("/api/v1/products/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        ids = {item["id"] for item in payload["results"]}
        self.assertIn(str(self.product_a.id), ids)
        self.assertNotIn(str(self.product_b.id), ids)

    def test_create_product_sets_lifetime_stock_and_stores_barcodes(self):
        self.client.force_authenticate(user=self.supervisor_a)

        response = self.client.post(
            "/api/v1/products/",
            {
                "branch": str(self.branch_b.id),
                "supplier": str(self.supplier_a.id),
                "categories": [str(self.category_a.id)],
                "name": "Red Shirt",
                "sell_price": "45.00",
                "cost_price": "18.00",
                "stock": 4,
                "lifetime_stock": 999,
                "barcode_codes": [" EAN-1 ", "EAN-2", "   ", ""],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        created = Product.objects.get(id=response.json()["id"])
        self.assertEqual(created.branch_id, self.branch_a.id)
        self.assertEqual(created.stock, 4)
        self.assertEqual(created.lifetime_stock, 4)
        self.assertEqual(sorted(created.barcodes.values_list("code", flat=True)), ["EAN-1", "EAN-2"])
        self.assertEqual(list(created.categories.all()), [self.category_a])
        self.assertTrue(AuditLog.objects.filter(action="product.create", entity_id=created.id).exists())

    def test_update_replaces_barcodes_and_keeps_lifetime_stock(self):
        self.client.force_authenticate(user=self.supervisor_a)

        response = self.client.patch(
            f"/api/v1/products/{self.product_a.id}/",
            {"stock": 10, "barcode_codes": ["NEW-1"], "categories": []},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.product_a.refresh_from_db()
        self.assertEqual(self.product_a.stock, 10)
        self.assertEqual(self.product_a.lifetime_stock, 3)
        self.assertEqual(list(self.product_a.barcodes.values_list("code", flat=True)), ["NEW-1"])
        self.assertEqual(self.product_a.categories.count(), 0)

    def test_update_without_barcodes_keeps_existing_ones(self):
        self.client.force_authenticate(user=self.supervisor_a)

        response = self.client.patch(f"/api/v1/products/{self.product_a.id}/", {"name": "Navy Shirt"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(list(self.product_a.barcodes.values_list("code", flat=True)), ["7890001"])

    def test_create_rejects_barcode_active_on_another_product(self):
        self.client.force_authenticate(user=self.supervisor_a)

        response = self.client.post(
            "/api/v1/products/",
            {
                "supplier": str(self.supplier_a.id),
                "name": "Clone",
                "sell_price": "1.00",
                "stock": 1,
                "barcode_codes": ["7890001"],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("barcode_codes", response.json()["errors"])

    def test_create_rejects_supplier_from_other_branch(self):
        self.client.force_authenticate(user=self.supervisor_a)

        response = self.client.post(
            "/api/v1/products/",
            {"supplier": str(self.supplier_b.id), "name": "Leak", "sell_price": "1.00", "stock": 1},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("supplier", response.json()["errors"])

    def test_cashier_cannot_create_product(self):
        self.client.force_authenticate(user=self.cashier_a)

        response = self.client.post(
            "/api/v1/products/",
            {"supplier": str(self.supplier_a.id), "name": "Nope", "sell_price": "1.00", "stock": 1},
            format="json",
        )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")

    def test_search_matches_name_sku_and_barcode(self):
        self.client.force_authenticate(user=self.cashier_a)

        for term in ("blue", "SH-0", "90001"):
            response = self.client.get("/api/v1/products/", {"search": term})
            ids = [item["id"] for item in response.json()["results"]]
            self.assertEqual(ids, [str(self.product_a.id)], term)

        response = self.client.get("/api/v1/products/", {"search": "7890999"})
        self.assertEqual(response.json()["count"], 0)

    def test_filter_by_category(self):
        Product.objects.create(
            branch=self.branch_a,
            supplier=self.supplier_a,
            name="Uncategorized",
            sell_price=Decimal("1.00"),
        )
        self.client.force_authenticate(user=self.cashier_a)

        response = self.client.get("/api/v1/products/", {"category": str(self.category_a.id)})

        self.assertEqual([item["id"] for item in response.json()["results"]], [str(self.product_a.id)])

    def test_count_and_stock_totals_are_branch_scoped(self):
        self.client.force_authenticate(user=self.cashier_a)

        count = self.client.get("/api/v1/products/count/")
        totals = self.client.get("/api/v1/products/stock-totals/")

        self.assertEqual(count.json(), {"count": 1})
        self.assertEqual(totals.json(), {"lifetime_stock": 3, "current_stock": 3})

    def test_deleting_product_cascades_barcodes(self):
        self.client.force_authenticate(user=self.supervisor_a)

        response = self.client.delete(f"/api/v1/products/{self.product_a.id}/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(Barcode.objects.filter(code="7890001").exists())


class SupplierAndCategoryApiTests(InventoryTestMixin, TestCase):
    def test_supplier_list_includes_product_count_and_search(self):
        self.client.force_authenticate(user=self.cashier_a)

        response = self.client.get("/api/v1/suppliers/", {"search": "12.3"})

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]["product_count"], 1)

    def test_supplier_detail_lists_products(self):
        self.client.force_authenticate(user=self.cashier_a)

        response = self.client.get(f"/api/v1/suppliers/{self.supplier_a.id}/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([p["id"] for p in response.json()["products"]], [str(self.product_a.id)])

    def test_delete_supplier_with_products_is_rejected(self):
        self.client.force_authenticate(user=self.supervisor_a)

        response = self.client.delete(f"/api/v1/suppliers/{self.supplier_a.id}/")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "protected_record")
        self.assertTrue(Supplier.objects.filter(id=self.supplier_a.id).exists())

    def test_category_list_counts_products_newest_first(self):
        newer = Category.objects.create(branch=self.branch_a, name="Pants")
        self.client.force_authenticate(user=self.cashier_a)

        response = self.client.get("/api/v1/categories/")

        results = response.json()["results"]
        self.assertEqual([item["id"] for item in results], [str(newer.id), str(self.category_a.id)])
        self.assertEqual(results[1]["product_count"], 1)

    def test_category_create_is_audited(self):
        self.client.force_authenticate(user=self.supervisor_a)

        response = self.client.post("/api/v1/categories/", {"name": "Hats", "color": "#00ff00"}, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertTrue(AuditLog.objects.filter(action="category.create", actor=self.supervisor_a).exists())


class BarcodeApiTests(InventoryTestMixin, TestCase):
    def test_lookup_by_exact_code_is_branch_scoped(self):
        self.client.force_authenticate(user=self.cashier_a)

        own = self.client.get("/api/v1/barcodes/", {"code": "7890001"})
        foreign = self.client.get("/api/v1/barcodes/", {"code": "7890999"})

        self.assertEqual(own.json()["count"], 1)
        self.assertEqual(own.json()["results"][0]["product"]["id"], str(self.product_a.id))
        self.assertEqual(foreign.json()["count"], 0)

    def test_barcodes_are_read_only(self):
        self.client.force_authenticate(user=self.supervisor_a)

        response = self.client.post("/api/v1/barcodes/", {"code": "X"}, format="json")

        self.assertEqual(response.status_code, 405)


class StockServiceTests(InventoryTestMixin, TestCase):
    def test_decrement_has_no_floor(self):
        updated = decrement_stock(self.product_a.id, 5)

        self.product_a.refresh_from_db()
        self.assertEqual(updated, 1)
        self.assertEqual(self.product_a.stock, -2)
        self.assertEqual(self.product_a.lifetime_stock, 3)

    def test_sell_through_percentage(self):
        self.assertEqual(sell_through_percentage(0, 0), Decimal("0.00"))
        self.assertEqual(sell_through_percentage(1, 3), Decimal("33.33"))
        self.assertEqual(sell_through_percentage(2, 3), Decimal("66.67"))
