import logging
from contextlib import contextmanager
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Exists, F, OuterRef, Q
from django.utils import timezone

from common.audit import json_safe
from common.errors import (
    ConcurrentModification,
    DuplicateRecord,
    InvalidQuantity,
    InvalidShape,
    InvalidStatusTransition,
    ItemDeleted,
    NotFound,
    ReferentialIntegrityViolation,
    ShapeNotFound,
)
from inventory import ledger as ledger_lib
from inventory.ledger import Bucket, Quantity, ShapeLedger
from inventory.models import Category, InventoryItem, Shape, ShapeBucket, ShapeName
from sales.models import SaleTransaction

logger = logging.getLogger(__name__)

DETAIL_FIELDS = (
    "purchase_code",
    "sale_code",
    "certification",
    "location",
    "description",
    "length",
    "width",
    "height",
    "dimension_unit",
    "weight_unit",
)

ITEM_SNAPSHOT_FIELDS = (
    "serial_number",
    "shape_mode",
    "single_shape",
    "total_pieces",
    "total_weight",
    "available_pieces",
    "available_weight",
    "status",
    "resting_status",
    "version",
) + DETAIL_FIELDS

CATEGORY_SNAPSHOT_FIELDS = ("name", "code", "description")

SELLABLE_STATUSES = (
    InventoryItem.Status.IN_STOCK,
    InventoryItem.Status.PENDING,
    InventoryItem.Status.PARTIALLY_SOLD,
)


@contextmanager
def duplicate_on_conflict(message, **details):
    """Report a unique constraint lost to a concurrent writer as a duplicate."""
    try:
        with transaction.atomic():
            yield
    except IntegrityError as exc:
        raise DuplicateRecord(message, details=details) from exc


def sale_max_attempts():
    return max(int(getattr(settings, "INVENTORY_SALE_MAX_ATTEMPTS", 3)), 1)


def active_items(queryset=None):
    queryset = InventoryItem.objects.all() if queryset is None else queryset
    return queryset.filter(is_deleted=False)


def sellable_items(queryset=None):
    """Active items with stock left and no open whole-item sale holding them."""
    open_full_sale = SaleTransaction.objects.filter(inventory_item=OuterRef("pk"), is_full_sale=True, cancelled=False)
    return active_items(queryset).filter(status__in=SELLABLE_STATUSES).exclude(Exists(open_full_sale))


def _standard_shape(name):
    folded = name.casefold()
    for standard in ShapeName.values:
        if standard.casefold() == folded:
            return standard
    return None


def resolve_shape_name(tenant, name):
    """Canonical spelling of a standard or tenant-defined shape, or ``ShapeNotFound``."""
    cleaned = " ".join((name or "").split())
    standard = _standard_shape(cleaned) if cleaned else None
    if standard:
        return standard
    shape = Shape.objects.filter(tenant=tenant, is_deleted=False, name__iexact=cleaned).first() if cleaned else None
    if shape is None:
        raise ShapeNotFound(name, message=f'Shape "{name}" is not a standard or registered shape.')
    return shape.name


def available_shape_names(tenant):
    custom = Shape.objects.filter(tenant=tenant, is_deleted=False).values_list("name", flat=True)
    return sorted([*ShapeName.values, *custom], key=str.casefold)


def create_shape(*, tenant, name):
    cleaned = " ".join((name or "").split())
    if not cleaned:
        raise InvalidShape("Shape name cannot be blank.")
    clash = Shape.objects.filter(tenant=tenant, is_deleted=False, name__iexact=cleaned).exists()
    if clash or _standard_shape(cleaned):
        raise DuplicateRecord("A shape with this name already exists.", details={"name": cleaned})
    with duplicate_on_conflict("A shape with this name already exists.", name=cleaned):
        shape = Shape.objects.create(tenant=tenant, name=cleaned)
    logger.info("shape_created", extra={"tenant_id": tenant.id, "shape_id": shape.id})
    return shape


def delete_shape(shape, *, user):
    """Retire a tenant shape once no active item stocks it."""
    in_use = (
        active_items()
        .filter(tenant_id=shape.tenant_id)
        .filter(Q(single_shape=shape.name) | Q(shapes__shape_name=shape.name))
        .exists()
    )
    if in_use:
        raise ReferentialIntegrityViolation(
            "Shape is used by active inventory and cannot be deleted.",
            details={"shape": shape.name},
        )
    now = timezone.now()
    Shape.objects.filter(pk=shape.pk).update(is_deleted=True, deleted_at=now, deleted_by=user, updated_at=now)
    logger.info("shape_deleted", extra={"tenant_id": shape.tenant_id, "shape_id": shape.id})
    return shape


def load_item_for_update(*, tenant, item_id):
    """Fresh, row-locked copy of an item in the tenant, deleted or not."""
    try:
        return InventoryItem.objects.select_for_update().get(tenant=tenant, pk=item_id)
    except InventoryItem.DoesNotExist:
        raise NotFound("Inventory item not found.", details={"inventory_id": str(item_id)}) from None


def build_ledger(*, shape_mode, total_pieces=0, total_weight=0, shapes=None, single_shape=None):
    if shape_mode == ledger_lib.MIX:
        if not shapes:
            raise InvalidQuantity("A mix item needs at least one shape.")
        buckets = []
        for shape in shapes:
            quantity = Quantity(shape["pieces"], shape["weight"])
            buckets.append(Bucket(shape["shape_name"], quantity, quantity))
        try:
            ledger = ShapeLedger.mix(buckets)
        except ValueError as exc:
            raise InvalidQuantity(str(exc)) from None
    else:
        ledger = ShapeLedger.single(Quantity(total_pieces, total_weight), single_shape=single_shape)

    if ledger.total.is_empty:
        raise InvalidQuantity("An inventory item must stock at least one piece or some weight.")
    return ledger


def create_inventory_item(
    *,
    tenant,
    category,
    serial_number,
    shape_mode,
    total_pieces=0,
    total_weight=0,
    shapes=None,
    single_shape=None,
    resting_status=InventoryItem.Status.IN_STOCK,
    **details,
):
    if category.tenant_id != tenant.id or category.is_deleted:
        raise ReferentialIntegrityViolation("Category is not active.", details={"category_id": str(category.id)})
    if resting_status not in ledger_lib.RESTING_STATUSES:
        raise InvalidStatusTransition(f"New items start as one of {', '.join(ledger_lib.RESTING_STATUSES)}.")

    if shape_mode == ledger_lib.MIX:
        shapes = [{**shape, "shape_name": resolve_shape_name(tenant, shape["shape_name"])} for shape in shapes or []]
    elif single_shape:
        single_shape = resolve_shape_name(tenant, single_shape)

    ledger = build_ledger(
        shape_mode=shape_mode,
        total_pieces=total_pieces,
        total_weight=total_weight,
        shapes=shapes,
        single_shape=single_shape,
    )
    total = ledger.total
    unknown = set(details) - set(DETAIL_FIELDS)
    if unknown:
        raise TypeError(f"Unexpected inventory fields: {sorted(unknown)}")

    with transaction.atomic():
        locked_category = Category.objects.select_for_update().filter(pk=category.pk, is_deleted=False).first()
        if locked_category is None:
            raise ReferentialIntegrityViolation("Category is not active.", details={"category_id": str(category.id)})
        if InventoryItem.objects.filter(tenant=tenant, serial_number=serial_number).exists():
            raise DuplicateRecord("An item with this serial number already exists.", details={"serial_number": serial_number})
        with duplicate_on_conflict("An item with this serial number already exists.", serial_number=serial_number):
            item = InventoryItem.objects.create(
                tenant=tenant,
                category=locked_category,
                serial_number=serial_number,
                shape_mode=shape_mode,
                single_shape=single_shape if shape_mode == ledger_lib.SINGLE else None,
                total_pieces=total.pieces,
                total_weight=total.weight,
                available_pieces=total.pieces,
                available_weight=total.weight,
                resting_status=resting_status,
                status=ledger.derive_status(resting_status),
                **details,
            )
        if shape_mode == ledger_lib.MIX:
            ShapeBucket.objects.bulk_create(
                [
                    ShapeBucket(
                        item=item,
                        shape_name=bucket.shape_name,
                        position=position,
                        total_pieces=bucket.total.pieces,
                        total_weight=bucket.total.weight,
                        available_pieces=bucket.total.pieces,
                        available_weight=bucket.total.weight,
                    )
                    for position, bucket in enumerate(ledger.buckets)
                ]
            )

    logger.info(
        "inventory_created",
        extra={"tenant_id": tenant.id, "inventory_id": item.id},
    )
    return item


def update_inventory_details(item, changes):
    """Write descriptive fields only; quantity columns are left to the version-checked path."""
    unknown = set(changes) - set(DETAIL_FIELDS)
    if unknown:
        raise TypeError(f"Only descriptive fields can be updated, got {sorted(unknown)}")
    if item.is_deleted:
        raise ItemDeleted(details={"inventory_id": str(item.id)})
    if changes:
        InventoryItem.objects.filter(pk=item.pk).update(**changes, updated_at=timezone.now())
    item.refresh_from_db()
    return item


def change_resting_status(*, tenant, item_id, resting_status):
    with transaction.atomic():
        item = load_item_for_update(tenant=tenant, item_id=item_id)
        if item.is_deleted:
            raise ItemDeleted(details={"inventory_id": str(item.id)})
        if item.status not in ledger_lib.RESTING_STATUSES:
            raise InvalidStatusTransition(
                "Status can only change while nothing has been sold from the item.",
                details={"status": item.status},
            )
        try:
            item.set_resting_status(resting_status)
        except ValueError as exc:
            raise InvalidStatusTransition(str(exc)) from None
        if not item.commit_quantities():
            raise ConcurrentModification()

    logger.info(
        "inventory_status_changed",
        extra={"tenant_id": tenant.id, "inventory_id": item.id},
    )
    return item


def mark_item_deleted(item, *, user):
    """Flip the delete flag through the version check so in-flight sales re-read the item."""
    now = timezone.now()
    updated = InventoryItem.objects.filter(pk=item.pk, version=item.version, is_deleted=False).update(
        is_deleted=True,
        deleted_at=now,
        deleted_by=user,
        version=F("version") + 1,
        updated_at=now,
    )
    if not updated:
        raise ConcurrentModification()
    item.is_deleted = True
    item.deleted_at = now
    item.deleted_by = user
    item.version += 1
    return item


def snapshot_item(item):
    data = {
        "id": str(item.id),
        "tenant_id": str(item.tenant_id),
        "category_id": str(item.category_id),
        "created_at": item.created_at,
    }
    for field in ITEM_SNAPSHOT_FIELDS:
        data[field] = getattr(item, field)
    data["shapes"] = [
        {
            "shape_name": row.shape_name,
            "position": row.position,
            "total_pieces": row.total_pieces,
            "total_weight": row.total_weight,
            "available_pieces": row.available_pieces,
            "available_weight": row.available_weight,
        }
        for row in item.shapes.order_by("position", "shape_name")
    ]
    return json_safe(data)


def rebuild_item_from_snapshot(*, tenant, data):
    """Re-create or reactivate an item from its recycle-bin snapshot."""
    category = Category.objects.filter(tenant=tenant, pk=data["category_id"]).first()
    if category is None or category.is_deleted:
        raise ReferentialIntegrityViolation(
            "Restore the item's category before restoring the item.",
            details={"category_id": data["category_id"]},
        )

    values = {field: data.get(field) for field in ITEM_SNAPSHOT_FIELDS if field != "version"}
    for field in ("total_weight", "available_weight"):
        values[field] = Decimal(str(values[field]))
    for field in ("length", "width", "height"):
        if values.get(field) is not None:
            values[field] = Decimal(str(values[field]))
    for field in DETAIL_FIELDS:
        if values.get(field) is None and field not in ("length", "width", "height"):
            values.pop(field)

    existing = InventoryItem.objects.select_for_update().filter(pk=data["id"]).first()
    if existing is not None:
        item = existing
        for field, value in values.items():
            setattr(item, field, value)
        item.version += 1
    else:
        if InventoryItem.objects.filter(tenant=tenant, serial_number=values["serial_number"]).exists():
            raise DuplicateRecord(
                "Another item now uses this serial number.",
                details={"serial_number": values["serial_number"]},
            )
        item = InventoryItem(id=data["id"], tenant=tenant, version=int(data.get("version") or 0), **values)
    item.category = category
    item.is_deleted = False
    item.deleted_at = None
    item.deleted_by = None
    item.save()

    item.shapes.all().delete()
    ShapeBucket.objects.bulk_create(
        [
            ShapeBucket(
                item=item,
                shape_name=shape["shape_name"],
                position=shape.get("position", position),
                total_pieces=shape["total_pieces"],
                total_weight=Decimal(str(shape["total_weight"])),
                available_pieces=shape["available_pieces"],
                available_weight=Decimal(str(shape["available_weight"])),
            )
            for position, shape in enumerate(data.get("shapes") or [])
        ]
    )

    item.refresh_from_db()
    ledger = item.get_ledger()
    ledger.check_invariants()
    status = ledger.derive_status(item.resting_status)
    if status != item.status:
        item.status = status
        item.save(update_fields=["status", "updated_at"])
    return item


def snapshot_category(category):
    data = {
        "id": str(category.id),
        "tenant_id": str(category.tenant_id),
        "created_at": category.created_at,
    }
    for field in CATEGORY_SNAPSHOT_FIELDS:
        data[field] = getattr(category, field)
    return json_safe(data)


def rebuild_category_from_snapshot(*, tenant, data):
    name = (data.get("name") or "").strip().upper()
    clash = Category.objects.filter(tenant=tenant, name=name, is_deleted=False).exclude(pk=data["id"])
    if clash.exists():
        raise DuplicateRecord("An active category with this name already exists.", details={"name": name})

    values = {field: data.get(field) or "" for field in CATEGORY_SNAPSHOT_FIELDS}
    values.update(is_deleted=False, deleted_at=None, deleted_by=None)
    category, _ = Category.objects.update_or_create(pk=data["id"], tenant=tenant, defaults=values)
    return category
