from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.test import SimpleTestCase, TestCase
from rest_framework.test import APIClient

from common.errors import (
    DuplicateRecord,
    InsufficientQuantity,
    InvalidQuantity,
    InventoryConsistencyError,
    ItemDeleted,
    ReferentialIntegrityViolation,
    ShapeNotFound,
)
from core.models import AuditLog, Tenant
from inventory import ledger as ledger_lib
from inventory.ledger import Bucket, LedgerLine, Quantity, ShapeLedger
from inventory.models import Category, InventoryItem, Shape, ShapeBucket
from inventory.serializers import CategorySerializer
from inventory.services import create_inventory_item, create_shape, mark_item_deleted, resolve_shape_name
from recycle_bin.models import RecycleBinEntry
from sales.services import SaleLineRequest, sell_inventory, sell_whole_item


def qty(pieces, weight):
    return Quantity(pieces, Decimal(weight))


def mix_ledger(**shapes):
    return ShapeLedger.mix(
        [Bucket(name, qty(*amount), qty(*amount)) for name, amount in shapes.items()]
    )


class ShapeLedgerTests(SimpleTestCase):
    def test_single_reduce_to_exact_availability_sells_out(self):
        ledger = ShapeLedger.single(qty(10, "5.000"))

        ledger.reduce([LedgerLine(None, qty(10, "5.000"))])

        self.assertTrue(ledger.available.is_empty)
        self.assertEqual(ledger.derive_status(ledger_lib.IN_STOCK), ledger_lib.SOLD)

    def test_reduce_beyond_availability_leaves_ledger_untouched(self):
        ledger = ShapeLedger.single(qty(10, "5.000"))

        with self.assertRaises(InsufficientQuantity) as ctx:
            ledger.reduce([LedgerLine(None, qty(11, "1.000"))])

        self.assertEqual(ctx.exception.available, qty(10, "5.000"))
        self.assertEqual(ledger.available, qty(10, "5.000"))

    def test_weight_alone_can_exceed_availability(self):
        ledger = ShapeLedger.single(qty(10, "5.000"))

        with self.assertRaises(InsufficientQuantity):
            ledger.reduce([LedgerLine(None, qty(1, "5.001"))])

    def test_mix_reduce_is_all_or_nothing(self):
        ledger = mix_ledger(Round=(10, "5.000"), Oval=(5, "2.500"), Pear=(3, "1.200"))

        with self.assertRaises(InsufficientQuantity) as ctx:
            ledger.reduce(
                [
                    LedgerLine("Round", qty(4, "2.000")),
                    LedgerLine("Oval", qty(6, "1.000")),
                ]
            )

        self.assertEqual(ctx.exception.shape_name, "Oval")
        self.assertEqual(ledger.find_shape("Round").available, qty(10, "5.000"))
        self.assertEqual(ledger.available, qty(18, "8.700"))

    def test_lines_for_the_same_shape_are_checked_together(self):
        ledger = mix_ledger(Round=(5, "2.000"))

        with self.assertRaises(InsufficientQuantity):
            ledger.reduce([LedgerLine("Round", qty(3, "1.000")), LedgerLine("Round", qty(3, "0.500"))])

        self.assertEqual(ledger.find_shape("Round").available, qty(5, "2.000"))

    def test_unknown_shape_is_rejected(self):
        ledger = mix_ledger(Round=(5, "2.000"))

        with self.assertRaises(ShapeNotFound) as ctx:
            ledger.reduce([LedgerLine("Heart", qty(1, "0.100"))])

        self.assertEqual(ctx.exception.shape_name, "Heart")
        self.assertEqual(ctx.exception.details["shape"], "Heart")

    def test_single_item_accepts_its_own_label_only(self):
        ledger = ShapeLedger.single(qty(4, "1.000"), single_shape="Oval")

        ledger.reduce([LedgerLine("Oval", qty(1, "0.250"))])
        with self.assertRaises(ShapeNotFound):
            ledger.reduce([LedgerLine("Round", qty(1, "0.250"))])

        self.assertEqual(ledger.available, qty(3, "0.750"))

    def test_availability_lookup_by_shape(self):
        single = ShapeLedger.single(qty(4, "1.000"))
        mix = mix_ledger(Round=(10, "5.000"), Oval=(5, "2.500"))

        self.assertEqual(single.availability_of("anything"), qty(4, "1.000"))
        self.assertEqual(mix.availability_of("Oval"), qty(5, "2.500"))
        with self.assertRaises(ShapeNotFound):
            mix.availability_of("round")

    def test_restore_past_total_is_a_consistency_error(self):
        ledger = mix_ledger(Round=(5, "2.000"))
        ledger.reduce([LedgerLine("Round", qty(2, "1.000"))])

        with self.assertRaises(InventoryConsistencyError):
            ledger.restore([LedgerLine("Round", qty(3, "1.000"))])

        self.assertEqual(ledger.find_shape("Round").available, qty(3, "1.000"))

    def test_item_totals_are_bucket_sums(self):
        ledger = mix_ledger(Round=(10, "5.000"), Oval=(5, "2.500"), Pear=(3, "1.200"))
        ledger.reduce([LedgerLine("Pear", qty(3, "1.200"))])

        total, available = ledger.recompute_totals()

        self.assertEqual(total, qty(18, "8.700"))
        self.assertEqual(available, qty(15, "7.500"))
        self.assertTrue(ledger.find_shape("Pear").available.is_empty)

    def test_status_follows_quantities(self):
        total = qty(20, "10.000")

        self.assertEqual(ledger_lib.derive_status(total, total, ledger_lib.PENDING), ledger_lib.PENDING)
        self.assertEqual(
            ledger_lib.derive_status(qty(20, "9.990"), total, ledger_lib.IN_STOCK),
            ledger_lib.PARTIALLY_SOLD,
        )
        self.assertEqual(ledger_lib.derive_status(Quantity.zero(), total, ledger_lib.PENDING), ledger_lib.SOLD)

    def test_quantity_rejects_negative_and_fractional_pieces(self):
        with self.assertRaises(InvalidQuantity):
            Quantity(-1, Decimal("1"))
        with self.assertRaises(InvalidQuantity):
            Quantity(1, Decimal("-0.001"))
        with self.assertRaises(InvalidQuantity):
            Quantity(1.5, Decimal("1"))

    def test_weight_with_extra_decimal_places_is_rejected(self):
        with self.assertRaises(InvalidQuantity) as ctx:
            Quantity(1, Decimal("0.0004"))

        self.assertEqual(ctx.exception.details["weight"], "0.0004")
        self.assertEqual(Quantity(1, Decimal("2.50")).weight, Decimal("2.500"))
        self.assertEqual(Quantity(1, 0.125).weight, Decimal("0.125"))

    def test_duplicate_shape_names_are_rejected(self):
        with self.assertRaises(ValueError):
            ShapeLedger.mix([Bucket("Round", qty(1, "1"), qty(1, "1")), Bucket("Round", qty(2, "1"), qty(2, "1"))])


class InventoryModelTests(TestCase):
    def setUp(self):
        self.tenant = Tenant.objects.create(code="IM", name="Inventory Models")
        self.user = get_user_model().objects.create_user(
            username="inv-model-admin",
            password="pass1234",
            tenant=self.tenant,
            role="admin",
        )
        self.category = Category.objects.create(tenant=self.tenant, name="Diamond", code="dm")

    def test_mix_item_rows_match_the_ledger(self):
        item = create_inventory_item(
            tenant=self.tenant,
            category=self.category,
            serial_number="MX-100",
            shape_mode="mix",
            shapes=[
                {"shape_name": "Round", "pieces": 10, "weight": Decimal("5.000")},
                {"shape_name": "Oval", "pieces": 5, "weight": Decimal("2.500")},
            ],
        )

        item.reduce_quantity("Oval", 2, Decimal("1.000"))
        self.assertTrue(item.commit_quantities())
        item.refresh_from_db()

        oval = ShapeBucket.objects.get(item=item, shape_name="Oval")
        self.assertEqual((oval.available_pieces, oval.available_weight), (3, Decimal("1.500")))
        self.assertEqual((item.available_pieces, item.available_weight), (13, Decimal("6.500")))
        self.assertEqual(item.status, InventoryItem.Status.PARTIALLY_SOLD)
        self.assertEqual(item.version, 1)

    def test_restore_quantity_returns_stock_to_its_bucket(self):
        item = create_inventory_item(
            tenant=self.tenant,
            category=self.category,
            serial_number="MX-101",
            shape_mode="mix",
            shapes=[
                {"shape_name": "Pear", "pieces": 6, "weight": Decimal("3.000")},
                {"shape_name": "Heart", "pieces": 2, "weight": Decimal("1.000")},
            ],
        )
        item.reduce_quantity("Pear", 6, Decimal("3.000"))
        item.reduce_quantity("Heart", 2, Decimal("1.000"))
        self.assertEqual(item.status, InventoryItem.Status.SOLD)

        item.restore_quantity("Heart", 1, Decimal("0.500"))
        self.assertTrue(item.commit_quantities())
        item.refresh_from_db()

        self.assertEqual((item.available_pieces, item.available_weight), (1, Decimal("0.500")))
        self.assertEqual(item.status, InventoryItem.Status.PARTIALLY_SOLD)
        with self.assertRaises(InventoryConsistencyError):
            item.restore_quantity("Pear", 7, Decimal("0"))

    def test_shape_names_resolve_to_their_canonical_spelling(self):
        create_shape(tenant=self.tenant, name="Old Mine")
        other = Tenant.objects.create(code="IO", name="Other Models")

        self.assertEqual(resolve_shape_name(self.tenant, " rose  cut "), "Rose Cut")
        self.assertEqual(resolve_shape_name(self.tenant, "OLD MINE"), "Old Mine")
        with self.assertRaises(ShapeNotFound):
            resolve_shape_name(other, "Old Mine")
        with self.assertRaises(ShapeNotFound):
            resolve_shape_name(self.tenant, "")

    def test_stale_copy_cannot_commit(self):
        item = create_inventory_item(
            tenant=self.tenant,
            category=self.category,
            serial_number="SG-100",
            shape_mode="single",
            total_pieces=10,
            total_weight=Decimal("4.000"),
        )
        stale = InventoryItem.objects.get(pk=item.pk)

        item.reduce_quantity(None, 6, Decimal("2.000"))
        self.assertTrue(item.commit_quantities())
        stale.reduce_quantity(None, 6, Decimal("2.000"))

        self.assertFalse(stale.commit_quantities())
        item.refresh_from_db()
        self.assertEqual(item.available_pieces, 4)

    def test_deleted_item_cannot_be_reduced(self):
        item = create_inventory_item(
            tenant=self.tenant,
            category=self.category,
            serial_number="SG-101",
            shape_mode="single",
            total_pieces=2,
            total_weight=Decimal("1.000"),
        )
        mark_item_deleted(item, user=self.user)

        with self.assertRaises(ItemDeleted):
            item.reduce_quantity(None, 1, Decimal("0.500"))

    def test_empty_item_is_rejected(self):
        with self.assertRaises(InvalidQuantity):
            create_inventory_item(
                tenant=self.tenant,
                category=self.category,
                serial_number="SG-102",
                shape_mode="single",
            )

    def test_deleted_category_cannot_take_new_items(self):
        self.category.is_deleted = True
        self.category.save()

        with self.assertRaises(ReferentialIntegrityViolation):
            create_inventory_item(
                tenant=self.tenant,
                category=self.category,
                serial_number="SG-103",
                shape_mode="single",
                total_pieces=1,
                total_weight=Decimal("1.000"),
            )


class InventoryApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()

        self.tenant_a = Tenant.objects.create(code="IA", name="Inventory A")
        self.tenant_b = Tenant.objects.create(code="IB", name="Inventory B")

        self.admin_a = self.user_model.objects.create_user(
            username="inv-admin-a",
            password="pass1234",
            tenant=self.tenant_a,
            role=self.user_model.Role.ADMIN,
        )
        self.staff_a = self.user_model.objects.create_user(
            username="inv-staff-a",
            password="pass1234",
            tenant=self.tenant_a,
            role=self.user_model.Role.STAFF,
        )

        self.category_a = Category.objects.create(tenant=self.tenant_a, name="Sapphire", code="sp")
        self.category_b = Category.objects.create(tenant=self.tenant_b, name="Ruby", code="rb")

    def _create_single(self, serial, pieces=10, weight="5.000", tenant=None, category=None):
        return create_inventory_item(
            tenant=tenant or self.tenant_a,
            category=category or self.category_a,
            serial_number=serial,
            shape_mode="single",
            total_pieces=pieces,
            total_weight=Decimal(weight),
        )

    def test_create_single_item(self):
        self.client.force_authenticate(user=self.staff_a)

        response = self.client.post(
            "/api/v1/inventory/",
            {
                "category": str(self.category_a.id),
                "serial_number": "SP-001",
                "shape_mode": "single",
                "single_shape": "Oval",
                "total_pieces": 12,
                "total_weight": "6.250",
                "location": "Safe 1",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["available_pieces"], 12)
        self.assertEqual(payload["available_weight"], "6.250")
        self.assertEqual(payload["status"], "in_stock")
        self.assertEqual(payload["shapes"], [])
        item = InventoryItem.objects.get(id=payload["id"])
        self.assertEqual(item.tenant_id, self.tenant_a.id)
        self.assertTrue(AuditLog.objects.filter(action="inventory.create", entity_id=item.id).exists())

    def test_create_mix_item_totals_are_shape_sums(self):
        self.client.force_authenticate(user=self.staff_a)

        response = self.client.post(
            "/api/v1/inventory/",
            {
                "category": str(self.category_a.id),
                "serial_number": "MX-001",
                "shape_mode": "mix",
                "shapes": [
                    {"shape_name": "Round", "pieces": 10, "weight": "5.000"},
                    {"shape_name": "Oval", "pieces": 5, "weight": "2.500"},
                    {"shape_name": "Pear", "pieces": 3, "weight": "1.200"},
                ],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["total_pieces"], 18)
        self.assertEqual(payload["total_weight"], "8.700")
        self.assertEqual([shape["shape_name"] for shape in payload["shapes"]], ["Round", "Oval", "Pear"])

    def test_mix_item_requires_unique_shapes(self):
        self.client.force_authenticate(user=self.staff_a)

        missing = self.client.post(
            "/api/v1/inventory/",
            {"category": str(self.category_a.id), "serial_number": "MX-002", "shape_mode": "mix"},
            format="json",
        )
        duplicated = self.client.post(
            "/api/v1/inventory/",
            {
                "category": str(self.category_a.id),
                "serial_number": "MX-003",
                "shape_mode": "mix",
                "shapes": [
                    {"shape_name": "Round", "pieces": 1, "weight": "1.000"},
                    {"shape_name": "Round", "pieces": 2, "weight": "1.000"},
                ],
            },
            format="json",
        )

        self.assertEqual(missing.status_code, 400)
        self.assertIn("shapes", missing.json()["errors"])
        self.assertEqual(duplicated.status_code, 400)
        self.assertFalse(InventoryItem.objects.filter(serial_number__in=["MX-002", "MX-003"]).exists())

    def test_duplicate_serial_number_conflicts(self):
        self._create_single("SP-010")
        self.client.force_authenticate(user=self.staff_a)

        response = self.client.post(
            "/api/v1/inventory/",
            {
                "category": str(self.category_a.id),
                "serial_number": "SP-010",
                "shape_mode": "single",
                "total_pieces": 1,
                "total_weight": "1.000",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "duplicate_record")

    def test_cannot_create_item_in_other_tenant_category(self):
        self.client.force_authenticate(user=self.staff_a)

        response = self.client.post(
            "/api/v1/inventory/",
            {
                "category": str(self.category_b.id),
                "serial_number": "SP-011",
                "shape_mode": "single",
                "total_pieces": 1,
                "total_weight": "1.000",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("category", response.json()["errors"])

    def test_list_is_scoped_and_filterable(self):
        own = self._create_single("SP-020")
        self._create_single("SP-021", pieces=1, weight="0.500")
        foreign = self._create_single("RB-020", tenant=self.tenant_b, category=self.category_b)
        self.client.force_authenticate(user=self.staff_a)

        listing = self.client.get("/api/v1/inventory/")
        searched = self.client.get("/api/v1/inventory/", {"search": "020"})

        ids = {item["id"] for item in listing.json()["results"]}
        self.assertEqual(len(ids), 2)
        self.assertNotIn(str(foreign.id), ids)
        self.assertEqual([item["id"] for item in searched.json()["results"]], [str(own.id)])

    def test_sellable_excludes_sold_and_deleted_items(self):
        available = self._create_single("SP-030")
        partial = self._create_single("SP-031")
        sold = self._create_single("SP-032")
        deleted = self._create_single("SP-033")
        sell_inventory(
            tenant=self.tenant_a,
            user=self.admin_a,
            inventory_id=partial.id,
            lines=[SaleLineRequest(None, 1, Decimal("0.500"))],
        )
        sell_whole_item(tenant=self.tenant_a, user=self.admin_a, inventory_id=sold.id, price=Decimal("100"))
        mark_item_deleted(deleted, user=self.admin_a)
        self.client.force_authenticate(user=self.staff_a)

        response = self.client.get("/api/v1/inventory/sellable/")

        self.assertEqual(response.status_code, 200)
        ids = {item["id"] for item in response.json()["results"]}
        self.assertEqual(ids, {str(available.id), str(partial.id)})

    def test_resting_status_changes_only_before_any_sale(self):
        item = self._create_single("SP-040")
        self.client.force_authenticate(user=self.staff_a)

        pending = self.client.post(f"/api/v1/inventory/{item.id}/status/", {"resting_status": "pending"}, format="json")
        sell_inventory(
            tenant=self.tenant_a,
            user=self.admin_a,
            inventory_id=item.id,
            lines=[SaleLineRequest(None, 2, Decimal("1.000"))],
        )
        blocked = self.client.post(f"/api/v1/inventory/{item.id}/status/", {"resting_status": "in_stock"}, format="json")

        self.assertEqual(pending.status_code, 200)
        self.assertEqual(pending.json()["status"], "pending")
        self.assertEqual(blocked.status_code, 400)
        self.assertEqual(blocked.json()["code"], "invalid_status_transition")
        item.refresh_from_db()
        self.assertEqual(item.status, InventoryItem.Status.PARTIALLY_SOLD)
        self.assertEqual(item.resting_status, InventoryItem.Status.PENDING)

    def test_sold_is_not_a_settable_status(self):
        item = self._create_single("SP-041")
        self.client.force_authenticate(user=self.staff_a)

        response = self.client.post(f"/api/v1/inventory/{item.id}/status/", {"resting_status": "sold"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")

    def test_update_changes_details_but_never_quantities(self):
        item = self._create_single("SP-050")
        self.client.force_authenticate(user=self.staff_a)

        response = self.client.patch(
            f"/api/v1/inventory/{item.id}/",
            {"location": "Vault 2", "available_pieces": 0, "status": "sold", "length": "4.20"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        item.refresh_from_db()
        self.assertEqual(item.location, "Vault 2")
        self.assertEqual(item.length, Decimal("4.20"))
        self.assertEqual(item.available_pieces, 10)
        self.assertEqual(item.status, InventoryItem.Status.IN_STOCK)
        self.assertTrue(AuditLog.objects.filter(action="inventory.update", entity_id=item.id).exists())

    def test_staff_cannot_delete_items(self):
        item = self._create_single("SP-060")
        self.client.force_authenticate(user=self.staff_a)

        response = self.client.delete(f"/api/v1/inventory/{item.id}/")

        self.assertEqual(response.status_code, 403)
        item.refresh_from_db()
        self.assertFalse(item.is_deleted)

    def test_delete_moves_item_to_recycle_bin(self):
        item = self._create_single("SP-061")
        self.client.force_authenticate(user=self.admin_a)

        response = self.client.delete(f"/api/v1/inventory/{item.id}/")
        detail = self.client.get(f"/api/v1/inventory/{item.id}/")

        self.assertEqual(response.status_code, 204)
        self.assertEqual(detail.status_code, 404)
        entry = RecycleBinEntry.objects.get(entity_id=item.id)
        self.assertEqual(entry.entity_data["serial_number"], "SP-061")
        self.assertEqual(entry.tenant_id, self.tenant_a.id)
        item.refresh_from_db()
        self.assertTrue(item.is_deleted)

    def test_category_name_must_be_unique_among_active_categories(self):
        self.client.force_authenticate(user=self.admin_a)

        response = self.client.post("/api/v1/categories/", {"name": " sapphire ", "code": "s2"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("name", response.json()["errors"])

    def test_category_filter_must_be_a_uuid(self):
        self._create_single("SP-070")
        self.client.force_authenticate(user=self.staff_a)

        invalid = self.client.get("/api/v1/inventory/", {"category": "nope"})
        valid = self.client.get("/api/v1/inventory/", {"category": str(self.category_a.id)})

        self.assertEqual(invalid.status_code, 400)
        self.assertEqual(invalid.json()["code"], "validation_error")
        self.assertIn("category", invalid.json()["errors"])
        self.assertEqual(valid.json()["count"], 1)

    def test_serial_number_lost_to_concurrent_create_conflicts(self):
        with patch.object(InventoryItem.objects, "create", side_effect=IntegrityError("uniq_item_tenant_serial")):
            with self.assertRaises(DuplicateRecord) as ctx:
                self._create_single("SP-071")

        self.assertEqual(ctx.exception.details["serial_number"], "SP-071")
        self.assertFalse(InventoryItem.objects.filter(serial_number="SP-071").exists())

    def test_category_name_lost_to_concurrent_create_conflicts(self):
        serializer = CategorySerializer(
            data={"name": "Emerald", "code": "em"},
            context={"request": SimpleNamespace(user=self.admin_a)},
        )
        self.assertTrue(serializer.is_valid())
        Category.objects.create(tenant=self.tenant_a, name="EMERALD", code="e2")

        with self.assertRaises(DuplicateRecord):
            serializer.save(tenant=self.tenant_a)

        self.assertEqual(Category.objects.filter(tenant=self.tenant_a, name="EMERALD").count(), 1)

    def test_registered_shape_can_be_stocked(self):
        self.client.force_authenticate(user=self.staff_a)
        body = {
            "category": str(self.category_a.id),
            "serial_number": "SP-080",
            "shape_mode": "mix",
            "shapes": [
                {"shape_name": "cabochon", "pieces": 3, "weight": "1.500"},
                {"shape_name": "round", "pieces": 2, "weight": "0.500"},
            ],
        }

        unknown = self.client.post("/api/v1/inventory/", body, format="json")
        created = self.client.post("/api/v1/shapes/", {"name": "  Cabochon "}, format="json")
        stocked = self.client.post("/api/v1/inventory/", body, format="json")
        names = self.client.get("/api/v1/shapes/names/")

        self.assertEqual(unknown.status_code, 400)
        self.assertEqual(unknown.json()["code"], "shape_not_found")
        self.assertEqual(unknown.json()["errors"]["shape"], "cabochon")
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["name"], "Cabochon")
        self.assertEqual(stocked.status_code, 201)
        self.assertEqual([shape["shape_name"] for shape in stocked.json()["shapes"]], ["Cabochon", "Round"])
        self.assertIn("Cabochon", names.json()["results"])
        self.assertIn("Rose Cut", names.json()["results"])
        self.assertTrue(AuditLog.objects.filter(action="shape.create", entity_id=created.json()["id"]).exists())

    def test_shape_names_are_unique_per_tenant_ignoring_case(self):
        Shape.objects.create(tenant=self.tenant_b, name="Cabochon")
        self.client.force_authenticate(user=self.staff_a)

        first = self.client.post("/api/v1/shapes/", {"name": "Cabochon"}, format="json")
        duplicate = self.client.post("/api/v1/shapes/", {"name": "CABOCHON"}, format="json")
        standard = self.client.post("/api/v1/shapes/", {"name": "round"}, format="json")
        blank = self.client.post("/api/v1/shapes/", {"name": "   "}, format="json")
        listing = self.client.get("/api/v1/shapes/")

        self.assertEqual(first.status_code, 201)
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["code"], "duplicate_record")
        self.assertEqual(standard.status_code, 409)
        self.assertEqual(blank.status_code, 400)
        self.assertEqual([row["name"] for row in listing.json()["results"]], ["Cabochon"])

    def test_shape_in_use_cannot_be_deleted(self):
        shape = create_shape(tenant=self.tenant_a, name="Cabochon")
        item = create_inventory_item(
            tenant=self.tenant_a,
            category=self.category_a,
            serial_number="SP-082",
            shape_mode="single",
            single_shape="cabochon",
            total_pieces=1,
            total_weight=Decimal("1.000"),
        )
        url = f"/api/v1/shapes/{shape.id}/"

        self.client.force_authenticate(user=self.staff_a)
        staff_delete = self.client.delete(url)
        self.client.force_authenticate(user=self.admin_a)
        blocked = self.client.delete(url)
        mark_item_deleted(item, user=self.admin_a)
        deleted = self.client.delete(url)

        self.assertEqual(item.single_shape, "Cabochon")
        self.assertEqual(staff_delete.status_code, 403)
        self.assertEqual(blocked.status_code, 400)
        self.assertEqual(blocked.json()["code"], "referential_integrity_violation")
        self.assertEqual(deleted.status_code, 204)
        shape.refresh_from_db()
        self.assertTrue(shape.is_deleted)
        self.assertEqual(shape.deleted_by, self.admin_a)
        self.assertTrue(AuditLog.objects.filter(action="shape.delete", entity_id=shape.id).exists())
