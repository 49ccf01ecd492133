import threading
import uuid
from decimal import Decimal
from unittest import skipUnless
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import connection, connections
from django.test import TestCase, TransactionTestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from common.errors import (
    AlreadyCancelled,
    AlreadySold,
    ConcurrentModification,
    InsufficientQuantity,
    InvalidQuantity,
    ItemDeleted,
    ShapeNotFound,
)
from core.models import AuditLog, Tenant
from inventory.models import Category, InventoryItem, ShapeBucket
from inventory.services import change_resting_status, create_inventory_item, mark_item_deleted, sellable_items
from sales import services
from sales.models import Invoice, SaleTransaction
from sales.services import (
    Customer,
    SaleLineRequest,
    next_invoice_number,
    sell_inventory,
    sell_whole_item,
    undo_sale,
)


def line(shape_name, pieces, weight, price=None):
    return SaleLineRequest(shape_name, pieces, Decimal(weight), Decimal(price) if price is not None else None)


class SalesFixtureMixin:
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()

        self.tenant = Tenant.objects.create(code="SL", name="Sales")
        self.admin = self.user_model.objects.create_user(
            username="sales-admin",
            password="pass1234",
            tenant=self.tenant,
            role=self.user_model.Role.ADMIN,
        )
        self.staff = self.user_model.objects.create_user(
            username="sales-staff",
            password="pass1234",
            tenant=self.tenant,
            role=self.user_model.Role.STAFF,
        )
        self.category = Category.objects.create(tenant=self.tenant, name="Diamond", code="dm")

    def single_item(self, serial, pieces=10, weight="5.000", **kwargs):
        return create_inventory_item(
            tenant=self.tenant,
            category=self.category,
            serial_number=serial,
            shape_mode="single",
            total_pieces=pieces,
            total_weight=Decimal(weight),
            **kwargs,
        )

    def mix_item(self, serial, shapes):
        return create_inventory_item(
            tenant=self.tenant,
            category=self.category,
            serial_number=serial,
            shape_mode="mix",
            shapes=[
                {"shape_name": name, "pieces": pieces, "weight": Decimal(weight)}
                for name, pieces, weight in shapes
            ],
        )

    def bucket(self, item, shape_name):
        row = ShapeBucket.objects.get(item=item, shape_name=shape_name)
        return row.available_pieces, row.available_weight

    def sell(self, item, lines, **kwargs):
        return sell_inventory(tenant=self.tenant, user=self.admin, inventory_id=item.id, lines=lines, **kwargs)


class SaleServiceTests(SalesFixtureMixin, TestCase):
    def test_single_sale_and_undo_round_trip(self):
        item = self.single_item("SG-1")

        sale = self.sell(item, [line(None, 4, "2.000", "150.00")])
        item.refresh_from_db()

        self.assertEqual((item.available_pieces, item.available_weight), (6, Decimal("3.000")))
        self.assertEqual(item.status, InventoryItem.Status.PARTIALLY_SOLD)
        self.assertEqual(sale.total_amount, Decimal("300.00"))
        self.assertEqual(sale.serial_number, "SG-1")

        undone = undo_sale(tenant=self.tenant, user=self.admin, sale_id=sale.id, reason="customer changed mind")
        item.refresh_from_db()

        self.assertTrue(undone.cancelled)
        self.assertEqual(undone.cancelled_by, self.admin)
        self.assertEqual((item.available_pieces, item.available_weight), (10, Decimal("5.000")))
        self.assertEqual(item.status, InventoryItem.Status.IN_STOCK)

    def test_mix_sale_and_undo_touch_only_named_buckets(self):
        item = self.mix_item(
            "MX-1",
            [("Round", 10, "5.000"), ("Oval", 5, "2.500"), ("Pear", 3, "1.200"), ("Heart", 2, "0.800")],
        )

        sale = self.sell(item, [line("Round", 4, "2.000"), line("Pear", 3, "1.200"), line("Round", 1, "0.500")])

        self.assertEqual(self.bucket(item, "Round"), (5, Decimal("2.500")))
        self.assertEqual(self.bucket(item, "Oval"), (5, Decimal("2.500")))
        self.assertEqual(self.bucket(item, "Pear"), (0, Decimal("0.000")))
        self.assertEqual(self.bucket(item, "Heart"), (2, Decimal("0.800")))
        item.refresh_from_db()
        self.assertEqual((item.available_pieces, item.available_weight), (12, Decimal("5.800")))
        self.assertEqual(sale.total_pieces, 8)
        self.assertEqual([row.shape_name for row in sale.lines.all()], ["Round", "Pear", "Round"])

        undo_sale(tenant=self.tenant, user=self.admin, sale_id=sale.id)

        self.assertEqual(self.bucket(item, "Round"), (10, Decimal("5.000")))
        self.assertEqual(self.bucket(item, "Pear"), (3, Decimal("1.200")))
        item.refresh_from_db()
        self.assertEqual((item.available_pieces, item.available_weight), (20, Decimal("9.500")))
        self.assertEqual(item.status, InventoryItem.Status.IN_STOCK)

    def test_undo_is_applied_once(self):
        item = self.single_item("SG-2")
        sale = self.sell(item, [line(None, 3, "1.000")])
        undo_sale(tenant=self.tenant, user=self.admin, sale_id=sale.id)

        with self.assertRaises(AlreadyCancelled):
            undo_sale(tenant=self.tenant, user=self.admin, sale_id=sale.id)

        item.refresh_from_db()
        self.assertEqual((item.available_pieces, item.available_weight), (10, Decimal("5.000")))

    def test_missing_shape_fails_whole_sale(self):
        item = self.mix_item("MX-2", [("Round", 10, "5.000"), ("Oval", 5, "2.500")])

        with self.assertRaises(ShapeNotFound):
            self.sell(item, [line("Round", 1, "0.500"), line("Emerald", 1, "0.500")])

        self.assertEqual(self.bucket(item, "Round"), (10, Decimal("5.000")))
        self.assertFalse(SaleTransaction.objects.filter(inventory_item=item).exists())

    def test_one_short_line_fails_whole_sale(self):
        item = self.mix_item("MX-3", [("Round", 10, "5.000"), ("Oval", 5, "2.500")])

        with self.assertRaises(InsufficientQuantity) as ctx:
            self.sell(item, [line("Round", 3, "1.500"), line("Oval", 6, "1.000")])

        self.assertEqual(ctx.exception.shape_name, "Oval")
        self.assertEqual(self.bucket(item, "Round"), (10, Decimal("5.000")))
        self.assertEqual(self.bucket(item, "Oval"), (5, Decimal("2.500")))
        item.refresh_from_db()
        self.assertEqual(item.version, 0)
        self.assertFalse(SaleTransaction.objects.exists())

    def test_selling_exact_availability_is_allowed_and_one_more_unit_is_not(self):
        item = self.single_item("SG-3")

        self.sell(item, [line(None, 7, "5.000")])
        with self.assertRaises(InsufficientQuantity):
            self.sell(item, [line(None, 3, "0.001")])
        self.sell(item, [line(None, 3, "0")])

        item.refresh_from_db()
        self.assertEqual((item.available_pieces, item.available_weight), (0, Decimal("0.000")))
        self.assertEqual(item.status, InventoryItem.Status.SOLD)

    def test_empty_lines_are_rejected(self):
        item = self.single_item("SG-4")

        with self.assertRaises(InvalidQuantity):
            self.sell(item, [])
        with self.assertRaises(InvalidQuantity):
            self.sell(item, [line(None, 0, "0")])

    def test_status_is_derived_from_quantities(self):
        full = self.single_item("SG-5", pieces=20, weight="20.000")
        partial = self.single_item("SG-6", pieces=20, weight="20.000")
        change_resting_status(tenant=self.tenant, item_id=partial.id, resting_status=InventoryItem.Status.PENDING)

        self.sell(full, [line(None, 20, "20.000")])
        sale = self.sell(partial, [line(None, 5, "5.000")])
        full.refresh_from_db()
        partial.refresh_from_db()

        self.assertEqual(full.status, InventoryItem.Status.SOLD)
        self.assertEqual(partial.status, InventoryItem.Status.PARTIALLY_SOLD)

        undo_sale(tenant=self.tenant, user=self.admin, sale_id=sale.id)
        partial.refresh_from_db()
        self.assertEqual(partial.status, InventoryItem.Status.PENDING)

    def test_sold_item_cannot_be_sold_again(self):
        item = self.single_item("SG-7", pieces=1, weight="1.000")
        self.sell(item, [line(None, 1, "1.000")])

        with self.assertRaises(AlreadySold):
            self.sell(item, [line(None, 0, "0.001")])

    def test_deleted_item_blocks_sale_and_undo(self):
        item = self.single_item("SG-8")
        sale = self.sell(item, [line(None, 1, "0.500")])
        item.refresh_from_db()
        mark_item_deleted(item, user=self.admin)

        with self.assertRaises(ItemDeleted):
            self.sell(item, [line(None, 1, "0.500")])
        with self.assertRaises(ItemDeleted):
            undo_sale(tenant=self.tenant, user=self.admin, sale_id=sale.id)

        sale.refresh_from_db()
        self.assertFalse(sale.cancelled)

    def test_open_whole_item_sale_keeps_item_off_the_sellable_list(self):
        item = self.single_item("SG-11", pieces=10, weight="5.000")
        partial = self.sell(item, [line(None, 2, "1.000")])
        sell_whole_item(tenant=self.tenant, user=self.admin, inventory_id=item.id, price=Decimal("900.00"))
        undo_sale(tenant=self.tenant, user=self.admin, sale_id=partial.id)

        item.refresh_from_db()
        self.assertEqual(item.status, InventoryItem.Status.PARTIALLY_SOLD)
        self.assertEqual((item.available_pieces, item.available_weight), (2, Decimal("1.000")))
        self.assertFalse(sellable_items().filter(pk=item.pk).exists())
        with self.assertRaises(AlreadySold):
            self.sell(item, [line(None, 1, "0.500")])

    def test_whole_item_sale_takes_everything_left(self):
        item = self.mix_item("MX-4", [("Round", 10, "5.000"), ("Oval", 5, "2.500"), ("Pear", 3, "1.200")])
        self.sell(item, [line("Pear", 3, "1.200")])

        sale = sell_whole_item(
            tenant=self.tenant,
            user=self.admin,
            inventory_id=item.id,
            price=Decimal("2500"),
            customer=Customer(name="Layla"),
        )
        item.refresh_from_db()

        self.assertTrue(sale.is_full_sale)
        self.assertEqual(sale.total_amount, Decimal("2500.00"))
        self.assertEqual(sale.total_pieces, 15)
        self.assertEqual(sorted(row.shape_name for row in sale.lines.all()), ["Oval", "Round"])
        self.assertEqual(item.status, InventoryItem.Status.SOLD)
        self.assertTrue(item.get_ledger().available.is_empty)

        with self.assertRaises(AlreadySold):
            sell_whole_item(tenant=self.tenant, user=self.admin, inventory_id=item.id, price=Decimal("1"))

        undo_sale(tenant=self.tenant, user=self.admin, sale_id=sale.id)
        self.assertEqual(self.bucket(item, "Round"), (10, Decimal("5.000")))
        self.assertEqual(self.bucket(item, "Pear"), (0, Decimal("0.000")))

    def test_stale_read_is_retried_and_cannot_oversell(self):
        item = self.single_item("SG-9", pieces=10, weight="10.000")
        stale = InventoryItem.objects.get(pk=item.pk)
        self.sell(item, [line(None, 6, "6.000")])

        real_loader = services.load_item_for_update
        calls = []

        def loader(*, tenant, item_id):
            calls.append(item_id)
            if len(calls) == 1:
                return stale
            return real_loader(tenant=tenant, item_id=item_id)

        with patch("sales.services.load_item_for_update", side_effect=loader):
            with self.assertLogs("sales.services", level="WARNING") as logs:
                with self.assertRaises(InsufficientQuantity):
                    self.sell(item, [line(None, 6, "6.000")])

        self.assertEqual(len(calls), 2)
        self.assertIn("sale_retry_stale_inventory", logs.output[0])
        item.refresh_from_db()
        self.assertEqual((item.available_pieces, item.available_weight), (4, Decimal("4.000")))
        self.assertEqual(SaleTransaction.objects.filter(inventory_item=item).count(), 1)

    @override_settings(INVENTORY_SALE_MAX_ATTEMPTS=2)
    def test_exhausted_retries_raise_concurrent_modification(self):
        item = self.single_item("SG-10")

        with patch.object(InventoryItem, "commit_quantities", return_value=False):
            with self.assertLogs("sales.services", level="WARNING") as logs:
                with self.assertRaises(ConcurrentModification):
                    self.sell(item, [line(None, 1, "1.000")])

        self.assertEqual(len(logs.output), 2)
        item.refresh_from_db()
        self.assertEqual(item.available_pieces, 10)
        self.assertFalse(SaleTransaction.objects.exists())

    @override_settings(INVOICE_NUMBER_PREFIX="GEM")
    def test_generated_invoice_numbers_are_sequential_per_year(self):
        item = self.single_item("SG-11")

        first = self.sell(item, [line(None, 1, "0.500")], generate_invoice_number=True)
        second = self.sell(item, [line(None, 1, "0.500")], generate_invoice_number=True)
        explicit = self.sell(item, [line(None, 1, "0.500")], invoice_number="HAND-7")

        year = timezone.now().year
        self.assertEqual(first.invoice_number, f"GEM-{year}-00001")
        self.assertEqual(second.invoice_number, f"GEM-{year}-00002")
        self.assertEqual(explicit.invoice_number, "HAND-7")
        self.assertEqual(next_invoice_number(self.tenant, year=2020), "GEM-2020-00001")


class SaleApiTests(SalesFixtureMixin, TestCase):
    def test_create_sale_through_api(self):
        item = self.mix_item("MX-20", [("Round", 10, "5.000"), ("Oval", 5, "2.500")])
        self.client.force_authenticate(user=self.staff)

        response = self.client.post(
            "/api/v1/sales/",
            {
                "inventory_id": str(item.id),
                "customer": {"name": "Omar", "email": "omar@example.com"},
                "currency": "eur",
                "lines": [
                    {"shape_name": "Round", "pieces": 2, "weight": "1.000", "price_per_unit": "200.00"},
                    {"shape_name": "Oval", "pieces": 1, "weight": "0.500", "price_per_unit": "300.00"},
                ],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["total_amount"], "350.00")
        self.assertEqual(payload["currency"], "EUR")
        self.assertEqual(payload["customer"]["name"], "Omar")
        self.assertEqual(payload["sold_by_username"], "sales-staff")
        self.assertEqual([row["shape_name"] for row in payload["lines"]], ["Round", "Oval"])
        self.assertTrue(AuditLog.objects.filter(action="sale.create", entity_id=payload["id"]).exists())

    def test_inventory_filter_must_be_a_uuid(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.get("/api/v1/sales/", {"inventory": "not-a-uuid"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("inventory", response.json()["errors"])

    def test_insufficient_quantity_uses_error_envelope(self):
        item = self.single_item("SG-20", pieces=2, weight="1.000")
        self.client.force_authenticate(user=self.staff)

        response = self.client.post(
            "/api/v1/sales/",
            {"inventory_id": str(item.id), "lines": [{"pieces": 3, "weight": "0.500"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload["code"], "insufficient_quantity")
        self.assertEqual(payload["errors"]["available"], {"pieces": 2, "weight": "1.000"})

    def test_whole_item_api_conflicts_on_second_attempt(self):
        item = self.single_item("SG-21")
        self.client.force_authenticate(user=self.staff)
        body = {"inventory_id": str(item.id), "price": "900.00"}

        first = self.client.post("/api/v1/sales/whole-item/", body, format="json")
        second = self.client.post("/api/v1/sales/whole-item/", body, format="json")

        self.assertEqual(first.status_code, 201)
        self.assertTrue(first.json()["is_full_sale"])
        self.assertEqual(first.json()["lines"][0]["price_per_unit"], None)
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["code"], "already_sold")

    def test_staff_cannot_undo_sales(self):
        item = self.single_item("SG-22")
        sale = self.sell(item, [line(None, 1, "1.000")])
        self.client.force_authenticate(user=self.staff)

        response = self.client.post(f"/api/v1/sales/{sale.id}/undo/", {}, format="json")

        self.assertEqual(response.status_code, 403)
        sale.refresh_from_db()
        self.assertFalse(sale.cancelled)

    def test_admin_undo_and_repeat_undo(self):
        item = self.single_item("SG-23")
        sale = self.sell(item, [line(None, 1, "1.000")])
        self.client.force_authenticate(user=self.admin)

        first = self.client.post(f"/api/v1/sales/{sale.id}/undo/", {"reason": "typo"}, format="json")
        second = self.client.post(f"/api/v1/sales/{sale.id}/undo/", {}, format="json")
        missing = self.client.post(f"/api/v1/sales/{uuid.uuid4()}/undo/", {}, format="json")
        malformed = self.client.post("/api/v1/sales/not-a-sale/undo/", {}, format="json")

        self.assertEqual(first.status_code, 200)
        self.assertTrue(first.json()["cancelled"])
        self.assertEqual(first.json()["cancel_reason"], "typo")
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["code"], "already_cancelled")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(malformed.status_code, 404)

    def test_list_hides_cancelled_sales_unless_asked(self):
        item = self.single_item("SG-24")
        kept = self.sell(item, [line(None, 1, "1.000")])
        cancelled = self.sell(item, [line(None, 1, "1.000")])
        undo_sale(tenant=self.tenant, user=self.admin, sale_id=cancelled.id)
        self.client.force_authenticate(user=self.staff)

        default = self.client.get("/api/v1/sales/")
        everything = self.client.get("/api/v1/sales/", {"include_cancelled": "true"})

        self.assertEqual([row["id"] for row in default.json()["results"]], [str(kept.id)])
        self.assertEqual(everything.json()["count"], 2)

    def test_generate_and_explicit_invoice_number_are_exclusive(self):
        item = self.single_item("SG-25")
        self.client.force_authenticate(user=self.staff)

        response = self.client.post(
            "/api/v1/sales/",
            {
                "inventory_id": str(item.id),
                "invoice_number": "X-1",
                "generate_invoice_number": True,
                "lines": [{"pieces": 1, "weight": "0.100"}],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("invoice_number", response.json()["errors"])


class InvoiceApiTests(SalesFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.item = self.single_item("SG-30", pieces=10, weight="10.000")
        buyer = Customer(name="Nadia", email="nadia@example.com")
        self.sale_a = self.sell(self.item, [line(None, 1, "1.000", "200.00")], customer=buyer)
        self.sale_b = self.sell(self.item, [line(None, 1, "1.500", "200.00")], customer=buyer)
        self.client.force_authenticate(user=self.admin)

    def test_invoice_bundles_sales_and_blocks_undo_until_deleted(self):
        response = self.client.post(
            "/api/v1/invoices/",
            {"sale_ids": [str(self.sale_a.id), str(self.sale_b.id)], "tax_rate": "0.1000"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["subtotal"], "500.00")
        self.assertEqual(payload["tax_amount"], "50.00")
        self.assertEqual(payload["total"], "550.00")
        self.assertEqual(payload["customer_name"], "Nadia")
        self.assertEqual(len(payload["lines"]), 2)
        self.sale_a.refresh_from_db()
        self.assertEqual(self.sale_a.invoice_number, payload["invoice_number"])

        blocked = self.client.post(f"/api/v1/sales/{self.sale_a.id}/undo/", {}, format="json")
        self.assertEqual(blocked.status_code, 400)
        self.assertEqual(blocked.json()["code"], "referential_integrity_violation")

        deleted = self.client.delete(f"/api/v1/invoices/{payload['id']}/")
        self.assertEqual(deleted.status_code, 204)
        self.assertFalse(Invoice.objects.exists())
        self.sale_a.refresh_from_db()
        self.assertIsNone(self.sale_a.invoice_number)

        undone = self.client.post(f"/api/v1/sales/{self.sale_a.id}/undo/", {}, format="json")
        self.assertEqual(undone.status_code, 200)

    def test_sale_can_only_be_on_one_invoice(self):
        self.client.post("/api/v1/invoices/", {"sale_ids": [str(self.sale_a.id)]}, format="json")

        response = self.client.post(
            "/api/v1/invoices/",
            {"sale_ids": [str(self.sale_a.id), str(self.sale_b.id)]},
            format="json",
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "duplicate_record")
        self.assertEqual(Invoice.objects.count(), 1)

    def test_invoice_rejects_mixed_buyers(self):
        other = self.sell(self.item, [line(None, 1, "1.000")], customer=Customer(name="Someone Else"))

        response = self.client.post(
            "/api/v1/invoices/",
            {"sale_ids": [str(self.sale_a.id), str(other.id)]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_invoice")

    def test_cancelled_sales_cannot_be_invoiced(self):
        undo_sale(tenant=self.tenant, user=self.admin, sale_id=self.sale_b.id)

        response = self.client.post("/api/v1/invoices/", {"sale_ids": [str(self.sale_b.id)]}, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "already_cancelled")

    def test_staff_cannot_create_invoices(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.post("/api/v1/invoices/", {"sale_ids": [str(self.sale_a.id)]}, format="json")

        self.assertEqual(response.status_code, 403)

    def _invoice_for_sale_a(self):
        response = self.client.post("/api/v1/invoices/", {"sale_ids": [str(self.sale_a.id)]}, format="json")
        return response.json()

    def test_locked_invoice_cannot_be_edited_or_deleted(self):
        invoice = self._invoice_for_sale_a()
        url = f"/api/v1/invoices/{invoice['id']}/"

        edited = self.client.patch(url, {"tax_rate": "0.2000", "notes": "net 30"}, format="json")
        locked = self.client.post(f"{url}lock/", {}, format="json")
        blocked_edit = self.client.patch(url, {"notes": "changed"}, format="json")
        blocked_delete = self.client.delete(url)
        blocked_undo = self.client.post(f"/api/v1/sales/{self.sale_a.id}/undo/", {}, format="json")

        self.assertEqual(edited.status_code, 200)
        self.assertEqual(edited.json()["tax_amount"], "40.00")
        self.assertEqual(edited.json()["total"], "240.00")
        self.assertEqual(edited.json()["notes"], "net 30")
        self.assertEqual(locked.status_code, 200)
        self.assertTrue(locked.json()["is_locked"])
        self.assertIsNotNone(locked.json()["locked_at"])
        self.assertEqual(locked.json()["status"], "unpaid")
        self.assertEqual(blocked_edit.status_code, 400)
        self.assertEqual(blocked_edit.json()["code"], "referential_integrity_violation")
        self.assertEqual(blocked_delete.status_code, 400)
        self.assertTrue(Invoice.objects.filter(pk=invoice["id"], notes="net 30").exists())
        self.assertEqual(blocked_undo.status_code, 400)
        self.sale_a.refresh_from_db()
        self.assertFalse(self.sale_a.cancelled)
        self.assertTrue(AuditLog.objects.filter(action="invoice.lock", entity_id=invoice["id"]).exists())

    def test_marking_an_invoice_paid_locks_it(self):
        invoice = self._invoice_for_sale_a()
        url = f"/api/v1/invoices/{invoice['id']}/"

        paid = self.client.post(f"{url}mark-paid/", {}, format="json")
        repeated = self.client.post(f"{url}mark-paid/", {}, format="json")
        blocked_delete = self.client.delete(url)

        self.assertEqual(invoice["status"], "unpaid")
        self.assertFalse(invoice["is_locked"])
        self.assertEqual(paid.status_code, 200)
        self.assertEqual(paid.json()["status"], "paid")
        self.assertTrue(paid.json()["is_locked"])
        self.assertEqual(repeated.json()["paid_at"], paid.json()["paid_at"])
        self.assertEqual(blocked_delete.status_code, 400)
        self.assertEqual(blocked_delete.json()["errors"]["status"], "paid")

    def test_staff_cannot_lock_invoices(self):
        invoice = self._invoice_for_sale_a()
        self.client.force_authenticate(user=self.staff)

        response = self.client.post(f"/api/v1/invoices/{invoice['id']}/lock/", {}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertFalse(Invoice.objects.get(pk=invoice["id"]).is_locked)


@skipUnless(connection.vendor == "postgresql", "row locks need a PostgreSQL test database")
class ConcurrentSaleTests(TransactionTestCase):
    def setUp(self):
        self.tenant = Tenant.objects.create(code="CC", name="Concurrency")
        self.user = get_user_model().objects.create_user(
            username="concurrency-admin",
            password="pass1234",
            tenant=self.tenant,
            role="admin",
        )
        category = Category.objects.create(tenant=self.tenant, name="Spinel", code="sn")
        self.item = create_inventory_item(
            tenant=self.tenant,
            category=category,
            serial_number="CC-1",
            shape_mode="single",
            total_pieces=10,
            total_weight=Decimal("10.000"),
        )

    def test_parallel_sales_never_oversell(self):
        barrier = threading.Barrier(2)
        outcomes = []

        def worker():
            try:
                barrier.wait()
                sell_inventory(
                    tenant=self.tenant,
                    user=self.user,
                    inventory_id=self.item.id,
                    lines=[line(None, 6, "6.000")],
                )
                outcomes.append("sold")
            except InsufficientQuantity:
                outcomes.append("insufficient")
            finally:
                connections.close_all()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(outcomes), ["insufficient", "sold"])
        self.item.refresh_from_db()
        self.assertEqual(self.item.available_pieces, 4)
