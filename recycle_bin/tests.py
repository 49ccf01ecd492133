from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from common.errors import ReferentialIntegrityViolation
from core.models import AuditLog, Tenant
from inventory.models import Category, InventoryItem, ShapeBucket
from inventory.services import create_inventory_item
from recycle_bin.models import RecycleBinEntry
from recycle_bin.services import purge_entries, soft_delete_category, soft_delete_inventory_item
from sales.models import SaleTransaction
from sales.services import SaleLineRequest, sell_inventory


class RecycleBinTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()

        self.tenant = Tenant.objects.create(code="RB", name="Recycle")
        self.other_tenant = Tenant.objects.create(code="RO", name="Recycle Other")
        self.admin = self.user_model.objects.create_user(
            username="bin-admin",
            password="pass1234",
            tenant=self.tenant,
            role=self.user_model.Role.ADMIN,
        )
        self.staff = self.user_model.objects.create_user(
            username="bin-staff",
            password="pass1234",
            tenant=self.tenant,
        )
        self.other_admin = self.user_model.objects.create_user(
            username="bin-other-admin",
            password="pass1234",
            tenant=self.other_tenant,
            role=self.user_model.Role.ADMIN,
        )
        self.category = Category.objects.create(tenant=self.tenant, name="Garnet", code="gn")
        self.item = create_inventory_item(
            tenant=self.tenant,
            category=self.category,
            serial_number="GN-1",
            shape_mode="mix",
            shapes=[
                {"shape_name": "Round", "pieces": 10, "weight": Decimal("5.000")},
                {"shape_name": "Cushion", "pieces": 4, "weight": Decimal("3.200")},
            ],
        )
        self.client.force_authenticate(user=self.admin)

    def _entry_for(self, obj):
        return RecycleBinEntry.objects.get(entity_id=obj.id)

    def test_category_delete_is_blocked_while_items_use_it(self):
        blocked = self.client.delete(f"/api/v1/categories/{self.category.id}/")
        self.client.delete(f"/api/v1/inventory/{self.item.id}/")
        allowed = self.client.delete(f"/api/v1/categories/{self.category.id}/")

        self.assertEqual(blocked.status_code, 400)
        self.assertEqual(blocked.json()["code"], "referential_integrity_violation")
        self.assertEqual(blocked.json()["errors"]["inventory_count"], 1)
        self.assertEqual(allowed.status_code, 204)
        self.category.refresh_from_db()
        self.assertTrue(self.category.is_deleted)
        self.assertEqual(RecycleBinEntry.objects.filter(tenant=self.tenant).count(), 2)
        self.assertTrue(AuditLog.objects.filter(action="category.delete", entity_id=self.category.id).exists())

    def test_item_restore_needs_its_category_back_first(self):
        soft_delete_inventory_item(self.item, user=self.admin)
        soft_delete_category(self.category, user=self.admin)
        item_entry = self._entry_for(self.item)
        category_entry = self._entry_for(self.category)

        blocked = self.client.post("/api/v1/recycle-bin/restore/", {"ids": [str(item_entry.id)]}, format="json")

        self.assertEqual(blocked.status_code, 400)
        self.assertEqual(blocked.json()["code"], "referential_integrity_violation")
        self.assertTrue(RecycleBinEntry.objects.filter(pk=item_entry.pk).exists())

        restored = self.client.post(
            "/api/v1/recycle-bin/restore/",
            {"ids": [str(item_entry.id), str(category_entry.id)]},
            format="json",
        )

        self.assertEqual(restored.status_code, 200)
        self.assertEqual(restored.json()["count"], 2)
        self.assertEqual(restored.json()["restored"][0]["entity_type"], "category")
        self.assertFalse(RecycleBinEntry.objects.exists())
        self.item.refresh_from_db()
        self.category.refresh_from_db()
        self.assertFalse(self.item.is_deleted)
        self.assertFalse(self.category.is_deleted)

    def test_restore_brings_back_partially_sold_mix_item_exactly(self):
        sale = sell_inventory(
            tenant=self.tenant,
            user=self.admin,
            inventory_id=self.item.id,
            lines=[SaleLineRequest("Cushion", 1, Decimal("0.800"))],
        )
        self.item.refresh_from_db()
        soft_delete_inventory_item(self.item, user=self.admin)

        response = self.client.post(
            "/api/v1/recycle-bin/restore/",
            {"ids": [str(self._entry_for(self.item).id)]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.item.refresh_from_db()
        self.assertEqual(self.item.status, InventoryItem.Status.PARTIALLY_SOLD)
        self.assertEqual((self.item.available_pieces, self.item.available_weight), (13, Decimal("7.400")))
        cushion = ShapeBucket.objects.get(item=self.item, shape_name="Cushion")
        self.assertEqual((cushion.available_pieces, cushion.available_weight), (3, Decimal("2.400")))
        self.assertEqual(list(self.item.sales.values_list("id", flat=True)), [sale.id])

        undo = self.client.post(f"/api/v1/sales/{sale.id}/undo/", {}, format="json")
        self.assertEqual(undo.status_code, 200)

    def test_restore_recreates_item_row_that_no_longer_exists(self):
        sale = sell_inventory(
            tenant=self.tenant,
            user=self.admin,
            inventory_id=self.item.id,
            lines=[SaleLineRequest("Round", 2, Decimal("1.000"))],
        )
        self.item.refresh_from_db()
        entry = soft_delete_inventory_item(self.item, user=self.admin)
        InventoryItem.objects.filter(pk=self.item.pk).delete()

        response = self.client.post("/api/v1/recycle-bin/restore/", {"ids": [str(entry.id)]}, format="json")

        self.assertEqual(response.status_code, 200)
        restored = InventoryItem.objects.get(pk=self.item.pk)
        self.assertFalse(restored.is_deleted)
        self.assertEqual(restored.serial_number, "GN-1")
        self.assertEqual(restored.status, InventoryItem.Status.PARTIALLY_SOLD)
        self.assertEqual((restored.available_pieces, restored.available_weight), (12, Decimal("7.200")))
        round_bucket = ShapeBucket.objects.get(item=restored, shape_name="Round")
        self.assertEqual((round_bucket.available_pieces, round_bucket.available_weight), (8, Decimal("4.000")))

        undo = self.client.post(f"/api/v1/sales/{sale.id}/undo/", {}, format="json")
        self.assertEqual(undo.status_code, 200)
        restored.refresh_from_db()
        self.assertEqual(restored.status, InventoryItem.Status.IN_STOCK)

    def test_restore_recreates_category_row_that_no_longer_exists(self):
        soft_delete_inventory_item(self.item, user=self.admin)
        soft_delete_category(self.category, user=self.admin)
        ids = [str(self._entry_for(self.item).id), str(self._entry_for(self.category).id)]
        InventoryItem.objects.filter(pk=self.item.pk).delete()
        Category.objects.filter(pk=self.category.pk).delete()

        response = self.client.post("/api/v1/recycle-bin/restore/", {"ids": ids}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 2)
        category = Category.objects.get(pk=self.category.pk)
        self.assertFalse(category.is_deleted)
        self.assertEqual((category.name, category.code, category.tenant_id), ("GARNET", "GN", self.tenant.id))
        item = InventoryItem.objects.get(pk=self.item.pk)
        self.assertEqual(item.category_id, category.id)
        self.assertEqual(item.shapes.count(), 2)
        self.assertFalse(RecycleBinEntry.objects.filter(tenant=self.tenant).exists())

    def test_restore_conflicts_with_newer_category_of_same_name(self):
        other = Category.objects.create(tenant=self.tenant, name="Topaz", code="tp")
        soft_delete_category(other, user=self.admin)
        Category.objects.create(tenant=self.tenant, name="topaz", code="t2")

        response = self.client.post(
            "/api/v1/recycle-bin/restore/",
            {"ids": [str(self._entry_for(other).id)]},
            format="json",
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "duplicate_record")

    def test_purge_keeps_sale_history(self):
        sale = sell_inventory(
            tenant=self.tenant,
            user=self.admin,
            inventory_id=self.item.id,
            lines=[SaleLineRequest("Round", 2, Decimal("1.000"))],
        )
        self.item.refresh_from_db()
        soft_delete_inventory_item(self.item, user=self.admin)

        response = self.client.post(
            "/api/v1/recycle-bin/purge/",
            {"ids": [str(self._entry_for(self.item).id)]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertFalse(InventoryItem.objects.filter(pk=self.item.pk).exists())
        self.assertFalse(ShapeBucket.objects.filter(item_id=self.item.pk).exists())
        kept = SaleTransaction.objects.get(pk=sale.pk)
        self.assertEqual(kept.serial_number, "GN-1")
        listing = self.client.get("/api/v1/sales/")
        self.assertEqual(listing.json()["results"][0]["serial_number"], "GN-1")

    def test_category_purge_waits_for_its_items(self):
        soft_delete_inventory_item(self.item, user=self.admin)
        soft_delete_category(self.category, user=self.admin)
        item_entry = self._entry_for(self.item)
        category_entry = self._entry_for(self.category)

        with self.assertRaises(ReferentialIntegrityViolation):
            purge_entries(tenant=self.tenant, entry_ids=[category_entry.id])

        purged = purge_entries(tenant=self.tenant, entry_ids=[category_entry.id, item_entry.id])

        self.assertEqual([row["entity_type"] for row in purged], ["inventory", "category"])
        self.assertFalse(Category.objects.filter(pk=self.category.pk).exists())

    def test_empty_only_touches_own_tenant(self):
        soft_delete_inventory_item(self.item, user=self.admin)
        foreign_category = Category.objects.create(tenant=self.other_tenant, name="Opal", code="op")
        soft_delete_category(foreign_category, user=self.other_admin)

        response = self.client.post("/api/v1/recycle-bin/empty/", {}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 1)
        self.assertFalse(RecycleBinEntry.objects.filter(tenant=self.tenant).exists())
        self.assertTrue(RecycleBinEntry.objects.filter(tenant=self.other_tenant).exists())

    def test_listing_is_scoped_and_filterable(self):
        soft_delete_inventory_item(self.item, user=self.admin)
        foreign_category = Category.objects.create(tenant=self.other_tenant, name="Opal", code="op")
        soft_delete_category(foreign_category, user=self.other_admin)
        foreign_entry = self._entry_for(foreign_category)

        listing = self.client.get("/api/v1/recycle-bin/", {"entity_type": "inventory"})
        invalid = self.client.get("/api/v1/recycle-bin/", {"entity_type": "sale"})
        foreign_restore = self.client.post(
            "/api/v1/recycle-bin/restore/",
            {"ids": [str(foreign_entry.id)]},
            format="json",
        )

        results = listing.json()["results"]
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]["display_name"], "GN-1")
        self.assertEqual(results[0]["deleted_by_username"], "bin-admin")
        self.assertEqual(invalid.status_code, 400)
        self.assertEqual(foreign_restore.status_code, 404)
        self.assertTrue(RecycleBinEntry.objects.filter(pk=foreign_entry.pk).exists())

    def test_staff_cannot_open_recycle_bin(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.get("/api/v1/recycle-bin/")

        self.assertEqual(response.status_code, 403)

    def test_expired_entries_are_purged_by_command(self):
        spare = Category.objects.create(tenant=self.tenant, name="Beryl", code="br")
        expired_item = create_inventory_item(
            tenant=self.tenant,
            category=spare,
            serial_number="BR-1",
            shape_mode="single",
            total_pieces=1,
            total_weight=Decimal("1.000"),
        )
        soft_delete_inventory_item(expired_item, user=self.admin)
        soft_delete_inventory_item(self.item, user=self.admin)
        soft_delete_category(self.category, user=self.admin)
        past = timezone.now() - timedelta(days=1)
        RecycleBinEntry.objects.filter(entity_id__in=[expired_item.id, self.category.id]).update(expires_at=past)

        out = StringIO()
        with self.assertLogs("recycle_bin.services", level="WARNING"):
            call_command("purge_recycle_bin", "--tenant-code", "RB", stdout=out)

        self.assertIn("Purged entries: 1", out.getvalue())
        self.assertIn("Skipped 1", out.getvalue())
        self.assertFalse(InventoryItem.objects.filter(pk=expired_item.pk).exists())
        self.assertTrue(Category.objects.filter(pk=self.category.pk).exists())
        self.assertTrue(RecycleBinEntry.objects.filter(entity_id=self.category.id).exists())

    def test_entries_expire_after_retention_period(self):
        with self.settings(RECYCLE_BIN_RETENTION_DAYS=7):
            entry = soft_delete_inventory_item(self.item, user=self.admin)

        self.assertEqual(entry.expires_at - entry.deleted_at, timedelta(days=7))
        self.assertEqual(entry.entity_data["shapes"][0]["shape_name"], "Round")
