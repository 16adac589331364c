import json
import logging
import uuid
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from rest_framework.test import APIClient

from common.exceptions import DomainError, custom_exception_handler
from common.logging import JsonFormatter
from core.models import AuditLog, Branch
from inventory.models import Category, Product
from sales.models import Sale, SoldBarcodeLog
from sales.services import SaleRegistrationError


class BranchScopedCoreTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()

        self.branch_a = Branch.objects.create(code="CA", name="Core A")
        self.branch_b = Branch.objects.create(code="CB", name="Core B")

        self.user_a = self.user_model.objects.create_user(
            username="core-user-a",
            password="pass1234",
            branch=self.branch_a,
            role="supervisor",
        )

        self.category_a = Category.objects.create(branch=self.branch_a, name="Category A")
        self.category_b = Category.objects.create(branch=self.branch_b, name="Category B")

    def test_user_cannot_read_other_branch_records(self):
        self.client.force_authenticate(user=self.user_a)

        response = self.client.get("/api/v1/categories/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        ids = {item["id"] for item in payload["results"]}
        self.assertIn(str(self.category_a.id), ids)
        self.assertNotIn(str(self.category_b.id), ids)

    def test_other_branch_record_is_not_found(self):
        self.client.force_authenticate(user=self.user_a)

        response = self.client.get(f"/api/v1/categories/{self.category_b.id}/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_create_ignores_injected_branch(self):
        self.client.force_authenticate(user=self.user_a)

        response = self.client.post(
            "/api/v1/categories/",
            {"branch": str(self.branch_b.id), "name": "Injected"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        created = Category.objects.get(id=response.json()["id"])
        self.assertEqual(created.branch_id, self.branch_a.id)

    def test_user_without_branch_cannot_create_records(self):
        drifter = self.user_model.objects.create_user(username="drifter", password="pass1234", role="supervisor")
        self.client.force_authenticate(user=drifter)

        response = self.client.post("/api/v1/categories/", {"name": "Nowhere"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")

    def test_superuser_sees_every_branch(self):
        root = self.user_model.objects.create_superuser(username="root", password="pass1234", email="root@example.com")
        self.client.force_authenticate(user=root)

        response = self.client.get("/api/v1/categories/")

        self.assertEqual(response.json()["count"], 2)


class RolePermissionCoreTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.branch = Branch.objects.create(code="RP", name="Role Perm")
        self.cashier = self.user_model.objects.create_user(
            username="cashier-core",
            password="pass1234",
            branch=self.branch,
            role="cashier",
        )
        self.admin = self.user_model.objects.create_user(
            username="admin-core",
            password="pass1234",
            branch=self.branch,
            role="admin",
        )

    def test_cashier_cannot_manage_catalog_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.cashier)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post("/api/v1/categories/", {"name": "Cashier Category"}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_admin_can_manage_catalog(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/v1/categories/", {"name": "Admin Category"}, format="json")

        self.assertEqual(response.status_code, 201)

    def test_unauthenticated_requests_use_error_envelope(self):
        response = self.client.get("/api/v1/products/")

        self.assertEqual(response.status_code, 401)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["code", "errors", "message", "status"])
        self.assertEqual(payload["code"], "not_authenticated")
        self.assertEqual(payload["status"], 401)


class BranchAccessRoleTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()

        self.branch_a = Branch.objects.create(code="BA", name="Branch A")
        self.branch_b = Branch.objects.create(code="BB", name="Branch B")

        self.admin = self.user_model.objects.create_user(
            username="branch-admin",
            password="pass1234",
            branch=self.branch_a,
            role="admin",
        )
        self.cashier = self.user_model.objects.create_user(
            username="branch-cashier",
            password="pass1234",
            branch=self.branch_a,
            role="cashier",
        )

    def test_admin_can_list_multiple_branches(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/branches/")

        self.assertEqual(response.status_code, 200)
        ids = {item["id"] for item in response.json()["results"]}
        self.assertIn(str(self.branch_a.id), ids)
        self.assertIn(str(self.branch_b.id), ids)

    def test_non_admin_branch_scope_is_preserved(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/branches/")

        self.assertEqual(response.status_code, 200)
        ids = {item["id"] for item in response.json()["results"]}
        self.assertIn(str(self.branch_a.id), ids)
        self.assertNotIn(str(self.branch_b.id), ids)

    def test_cashier_cannot_create_branch(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post("/api/v1/branches/", {"code": "NEW", "name": "New"}, format="json")

        self.assertEqual(response.status_code, 403)

    def test_current_user_endpoint(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/me/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["role"], "cashier")
        self.assertEqual(response.json()["branch_name"], "Branch A")


class TokenTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.branch = Branch.objects.create(code="TK", name="Token Branch")
        self.user = get_user_model().objects.create_user(
            username="token-user",
            email="Token.User@Example.com",
            password="pass1234",
            branch=self.branch,
            role="supervisor",
        )

    def test_login_with_email_returns_role_claims(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "token.user@example.com", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        access = response.json()["access"]
        self.assertIn("refresh", response.json())

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")
        me = self.client.get("/api/v1/me/")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["username"], "token-user")

    def test_email_is_stored_lowercase(self):
        self.user.refresh_from_db()

        self.assertEqual(self.user.email, "token.user@example.com")

    def test_bad_credentials_are_rejected(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "token-user", "password": "wrong"},
            format="json",
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "authentication_failed")


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.branch = Branch.objects.create(code="AL", name="Audit")
        self.admin = self.user_model.objects.create_user(
            username="audit-admin",
            password="pass1234",
            branch=self.branch,
            role="admin",
        )

    def test_mutation_writes_audit_log_with_request_id(self):
        self.client.force_authenticate(user=self.admin)
        res = self.client.post(
            "/api/v1/categories/",
            {"name": "Audited"},
            format="json",
            HTTP_X_REQUEST_ID="req-123",
        )

        self.assertEqual(res.status_code, 201)
        self.assertEqual(res["X-Request-ID"], "req-123")
        log = AuditLog.objects.get(action="category.create", entity="category", request_id="req-123")
        self.assertEqual(log.after_snapshot["name"], "Audited")
        self.assertEqual(log.branch_id, self.branch.id)

    def test_update_and_delete_capture_snapshots(self):
        category = Category.objects.create(branch=self.branch, name="Before")
        self.client.force_authenticate(user=self.admin)

        self.client.patch(f"/api/v1/categories/{category.id}/", {"name": "After"}, format="json")
        self.client.delete(f"/api/v1/categories/{category.id}/")

        update = AuditLog.objects.get(action="category.update")
        self.assertEqual(update.before_snapshot["name"], "Before")
        self.assertEqual(update.after_snapshot["name"], "After")
        delete = AuditLog.objects.get(action="category.delete")
        self.assertEqual(delete.entity_id, category.id)
        self.assertIsNone(delete.after_snapshot)

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.create(action="test.action", entity="test", branch=self.branch, actor=self.admin)

        patch_res = self.client.patch(f"/api/v1/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_audit_log_filters(self):
        AuditLog.objects.create(action="sale.create", entity="sale", branch=self.branch, actor=self.admin)
        AuditLog.objects.create(action="client.create", entity="client", branch=self.branch, actor=self.admin)
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/", {"entity": "sale"})

        self.assertEqual([row["action"] for row in response.json()["results"]], ["sale.create"])


class HealthTests(TestCase):
    def test_healthz_and_readyz(self):
        client = APIClient()

        health = client.get("/api/v1/healthz/", HTTP_X_REQUEST_ID="probe-1")
        ready = client.get("/api/v1/readyz/")

        self.assertEqual(health.status_code, 200)
        self.assertEqual(health.json(), {"status": "ok", "request_id": "probe-1"})
        self.assertEqual(ready.status_code, 200)
        self.assertEqual(ready.json()["status"], "ready")


class ErrorEnvelopeTests(TestCase):
    def test_domain_error_is_rendered_with_its_details(self):
        exc = SaleRegistrationError("product_not_found", {"items": {"1": {"product": "missing"}}})

        with self.assertLogs("common.exceptions", level="WARNING"):
            response = custom_exception_handler(exc, {})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.data,
            {
                "code": "validation_error",
                "message": "Sale could not be registered.",
                "errors": {"items": {"1": {"product": "missing"}}},
                "status": 400,
            },
        )

    def test_domain_error_without_details_exposes_reason(self):
        response = custom_exception_handler(DomainError("closed_period"), {})

        self.assertEqual(response.data["code"], "domain_error")
        self.assertEqual(response.data["errors"], {"reason": "closed_period"})


class SeedDemoDataTests(TestCase):
    def test_seed_is_idempotent(self):
        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", stdout=StringIO())

        self.assertEqual(Branch.objects.filter(code="MAIN").count(), 1)
        self.assertEqual(Sale.objects.count(), 1)
        shirt = Product.objects.get(sku="SHIRT-BLUE-M")
        self.assertEqual(shirt.stock, 2)
        self.assertEqual(shirt.lifetime_stock, 3)
        self.assertEqual(shirt.barcodes.count(), 2)
        self.assertEqual(SoldBarcodeLog.objects.get().barcode, "7890000000011")


class JsonFormatterTests(TestCase):
    def test_structured_fields_are_serialized(self):
        sale_id = uuid.uuid4()
        record = logging.LogRecord("sales.services", logging.INFO, __file__, 1, "sale_registered", None, None)
        record.sale_id = sale_id
        record.line_count = 2

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["message"], "sale_registered")
        self.assertEqual(payload["sale_id"], str(sale_id))
        self.assertEqual(payload["line_count"], 2)
        self.assertEqual(payload["logger"], "sales.services")
