import json
import logging
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import OperationalError
from django.test import SimpleTestCase, TestCase
from rest_framework.test import APIClient

from common.logging import JsonFormatter
from core.models import AuditLog, Tenant
from inventory.models import Category


class TenantScopedCoreTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()

        self.tenant_a = Tenant.objects.create(code="TA", name="Tenant A")
        self.tenant_b = Tenant.objects.create(code="TB", name="Tenant B")

        self.admin_a = self.user_model.objects.create_user(
            username="core-admin-a",
            email="Admin.A@example.com",
            password="pass1234",
            tenant=self.tenant_a,
            role=self.user_model.Role.ADMIN,
        )
        self.staff_a = self.user_model.objects.create_user(
            username="core-staff-a",
            password="pass1234",
            tenant=self.tenant_a,
        )
        self.orphan = self.user_model.objects.create_user(username="core-orphan", password="pass1234")

        self.category_a = Category.objects.create(tenant=self.tenant_a, name="Sapphire", code="sp")
        self.category_b = Category.objects.create(tenant=self.tenant_b, name="Ruby", code="rb")

    def test_user_cannot_read_other_tenant_categories(self):
        self.client.force_authenticate(user=self.staff_a)

        response = self.client.get("/api/v1/categories/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        ids = {item["id"] for item in payload["results"]}
        self.assertIn(str(self.category_a.id), ids)
        self.assertNotIn(str(self.category_b.id), ids)

    def test_other_tenant_record_is_not_found_with_error_envelope(self):
        self.client.force_authenticate(user=self.admin_a)

        response = self.client.get(f"/api/v1/categories/{self.category_b.id}/")

        self.assertEqual(response.status_code, 404)
        payload = response.json()
        self.assertEqual(payload["code"], "not_found")
        self.assertEqual(payload["status"], 404)
        self.assertIn("message", payload)

    def test_admin_create_category_ignores_injected_tenant(self):
        self.client.force_authenticate(user=self.admin_a)

        response = self.client.post(
            "/api/v1/categories/",
            {"tenant": str(self.tenant_b.id), "name": "emerald", "code": "em"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        created = Category.objects.get(id=response.json()["id"])
        self.assertEqual(created.tenant_id, self.tenant_a.id)
        self.assertEqual(created.name, "EMERALD")
        self.assertTrue(
            AuditLog.objects.filter(action="category.create", entity_id=created.id, tenant=self.tenant_a).exists()
        )

    def test_staff_cannot_manage_categories(self):
        self.client.force_authenticate(user=self.staff_a)

        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.post("/api/v1/categories/", {"name": "Opal", "code": "op"}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")

    def test_user_without_tenant_sees_nothing_and_cannot_write(self):
        self.orphan.role = self.user_model.Role.ADMIN
        self.orphan.save(update_fields=["role"])
        self.client.force_authenticate(user=self.orphan)

        listing = self.client.get("/api/v1/categories/")
        created = self.client.post("/api/v1/categories/", {"name": "Opal", "code": "op"}, format="json")

        self.assertEqual(listing.status_code, 200)
        self.assertEqual(listing.json()["count"], 0)
        self.assertEqual(created.status_code, 400)
        self.assertEqual(created.json()["code"], "validation_error")

    def test_current_user_reports_tenant_and_role(self):
        self.client.force_authenticate(user=self.admin_a)

        response = self.client.get("/api/v1/me/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["role"], "admin")
        self.assertEqual(payload["tenant"]["code"], "TA")
        self.assertEqual(payload["email"], "admin.a@example.com")

    def test_token_obtain_accepts_email_in_username_field(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "ADMIN.A@example.com", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())
        self.assertIn("refresh", response.json())

    def test_token_obtain_rejects_bad_password(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "core-staff-a", "password": "wrong"},
            format="json",
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "authentication_failed")

    def test_anonymous_request_is_rejected(self):
        response = self.client.get("/api/v1/inventory/")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")

    def test_database_failure_is_reported_without_detail(self):
        self.client.force_authenticate(user=self.staff_a)
        failure = OperationalError("could not connect to server at db-primary.internal")

        with patch("inventory.views.scoped_queryset_for_user", side_effect=failure):
            with self.assertLogs("common.exceptions", level="ERROR"):
                response = self.client.get("/api/v1/categories/")

        self.assertEqual(response.status_code, 503)
        payload = response.json()
        self.assertEqual(payload["code"], "infrastructure_error")
        self.assertEqual(payload["message"], "The service is temporarily unavailable. Please retry later.")
        self.assertIsNone(payload["errors"])
        self.assertNotIn("db-primary", response.content.decode())

    def test_health_endpoints_echo_request_id(self):
        health = self.client.get("/healthz/", HTTP_X_REQUEST_ID="req-123")
        ready = self.client.get("/readyz/")

        self.assertEqual(health.status_code, 200)
        self.assertEqual(health.json(), {"status": "ok", "request_id": "req-123"})
        self.assertEqual(health["X-Request-ID"], "req-123")
        self.assertEqual(ready.status_code, 200)
        self.assertEqual(ready.json()["status"], "ready")


class JsonFormatterTests(SimpleTestCase):
    def test_context_fields_are_flattened_into_payload(self):
        record = logging.LogRecord("inventory.services", logging.INFO, __file__, 1, "sale_committed", None, None)
        record.tenant_id = "t-1"
        record.attempt = 2

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["message"], "sale_committed")
        self.assertEqual(payload["tenant_id"], "t-1")
        self.assertEqual(payload["attempt"], 2)
        self.assertNotIn("sale_id", payload)
