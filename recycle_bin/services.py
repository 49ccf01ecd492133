"""Soft-delete lifecycle for inventory items and categories.

Deleting moves a full snapshot into the bin and flags the row; restoring
rebuilds the row from that snapshot; purging removes the row for good. Each
call is one transaction.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from common.errors import ItemDeleted, NotFound, ReferentialIntegrityViolation
from inventory.models import Category, InventoryItem
from inventory.services import (
    load_item_for_update,
    mark_item_deleted,
    rebuild_category_from_snapshot,
    rebuild_item_from_snapshot,
    snapshot_category,
    snapshot_item,
)
from recycle_bin.models import RecycleBinEntry

logger = logging.getLogger(__name__)

# Items go before categories so a category purged in the same batch is no longer referenced.
PURGE_ORDER = {RecycleBinEntry.EntityType.INVENTORY: 0, RecycleBinEntry.EntityType.CATEGORY: 1}
# Categories come back first so items restored in the same batch can reattach.
RESTORE_ORDER = {RecycleBinEntry.EntityType.CATEGORY: 0, RecycleBinEntry.EntityType.INVENTORY: 1}


def retention_days():
    return int(getattr(settings, "RECYCLE_BIN_RETENTION_DAYS", 30))


def _add_entry(*, tenant, entity_type, entity_id, entity_data, user, now):
    return RecycleBinEntry.objects.create(
        tenant=tenant,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_data=entity_data,
        deleted_by=user if getattr(user, "is_authenticated", False) else None,
        deleted_at=now,
        expires_at=now + timedelta(days=retention_days()),
    )


def soft_delete_inventory_item(item, *, user):
    """Snapshot the item, then flag it deleted; items with sales may be deleted."""
    now = timezone.now()
    with transaction.atomic():
        locked = load_item_for_update(tenant=item.tenant, item_id=item.id)
        if locked.is_deleted:
            raise ItemDeleted(details={"inventory_id": str(locked.id)})
        snapshot = snapshot_item(locked)
        mark_item_deleted(locked, user=user)
        entry = _add_entry(
            tenant=locked.tenant,
            entity_type=RecycleBinEntry.EntityType.INVENTORY,
            entity_id=locked.id,
            entity_data=snapshot,
            user=user,
            now=now,
        )

    logger.info(
        "recycle_bin_add",
        extra={"tenant_id": entry.tenant_id, "entry_id": entry.id, "entity_type": entry.entity_type, "entity_id": entry.entity_id},
    )
    return entry


def soft_delete_category(category, *, user):
    now = timezone.now()
    with transaction.atomic():
        locked = Category.objects.select_for_update().filter(pk=category.pk, is_deleted=False).first()
        if locked is None:
            raise NotFound("Category not found.", details={"category_id": str(category.pk)})
        in_use = InventoryItem.objects.filter(category=locked, is_deleted=False).count()
        if in_use:
            raise ReferentialIntegrityViolation(
                "Category is still used by inventory items.",
                details={"category_id": str(locked.id), "inventory_count": in_use},
            )
        snapshot = snapshot_category(locked)
        Category.objects.filter(pk=locked.pk).update(
            is_deleted=True,
            deleted_at=now,
            deleted_by=user if getattr(user, "is_authenticated", False) else None,
            updated_at=now,
        )
        entry = _add_entry(
            tenant=locked.tenant,
            entity_type=RecycleBinEntry.EntityType.CATEGORY,
            entity_id=locked.id,
            entity_data=snapshot,
            user=user,
            now=now,
        )

    logger.info(
        "recycle_bin_add",
        extra={"tenant_id": entry.tenant_id, "entry_id": entry.id, "entity_type": entry.entity_type, "entity_id": entry.entity_id},
    )
    return entry


def _locked_entries(*, tenant, entry_ids):
    entry_ids = list(dict.fromkeys(str(entry_id) for entry_id in entry_ids))
    entries = list(RecycleBinEntry.objects.select_for_update().filter(tenant=tenant, pk__in=entry_ids))
    missing = set(entry_ids) - {str(entry.id) for entry in entries}
    if missing:
        raise NotFound("Recycle bin entry not found.", details={"entry_ids": sorted(missing)})
    return entries


def restore_entries(*, tenant, entry_ids):
    """Rebuild every entity from its snapshot and drop the entries; all or nothing."""
    restored = []
    with transaction.atomic():
        entries = _locked_entries(tenant=tenant, entry_ids=entry_ids)
        for entry in sorted(entries, key=lambda entry: RESTORE_ORDER[entry.entity_type]):
            if entry.entity_type == RecycleBinEntry.EntityType.CATEGORY:
                rebuild_category_from_snapshot(tenant=tenant, data=entry.entity_data)
            else:
                rebuild_item_from_snapshot(tenant=tenant, data=entry.entity_data)
            restored.append({"id": str(entry.id), "entity_type": entry.entity_type, "entity_id": str(entry.entity_id)})
            entry.delete()

    for row in restored:
        logger.info(
            "recycle_bin_restore",
            extra={"tenant_id": tenant.id, "entry_id": row["id"], "entity_type": row["entity_type"], "entity_id": row["entity_id"]},
        )
    return restored


def _purge_entry(entry):
    if entry.entity_type == RecycleBinEntry.EntityType.INVENTORY:
        InventoryItem.objects.filter(pk=entry.entity_id, is_deleted=True).delete()
    else:
        if InventoryItem.objects.filter(category_id=entry.entity_id).exists():
            raise ReferentialIntegrityViolation(
                "Purge the category's inventory items first.",
                details={"category_id": str(entry.entity_id)},
            )
        Category.objects.filter(pk=entry.entity_id, is_deleted=True).delete()
    entry.delete()


def purge_entries(*, tenant, entry_ids):
    purged = []
    with transaction.atomic():
        entries = _locked_entries(tenant=tenant, entry_ids=entry_ids)
        for entry in sorted(entries, key=lambda entry: PURGE_ORDER[entry.entity_type]):
            purged.append({"id": str(entry.id), "entity_type": entry.entity_type, "entity_id": str(entry.entity_id)})
            _purge_entry(entry)

    for row in purged:
        logger.info(
            "recycle_bin_purge",
            extra={"tenant_id": tenant.id, "entry_id": row["id"], "entity_type": row["entity_type"], "entity_id": row["entity_id"]},
        )
    return purged


def empty_bin(*, tenant):
    entry_ids = RecycleBinEntry.objects.filter(tenant=tenant).values_list("id", flat=True)
    return purge_entries(tenant=tenant, entry_ids=list(entry_ids))


def purge_expired_entries(*, now=None, tenant=None):
    """Purge entries past their expiry; a blocked entry is logged and left for the next run."""
    now = now or timezone.now()
    expired = RecycleBinEntry.objects.filter(expires_at__lte=now)
    if tenant is not None:
        expired = expired.filter(tenant=tenant)

    purged = 0
    skipped = 0
    for entry in sorted(expired, key=lambda entry: (PURGE_ORDER[entry.entity_type], entry.expires_at)):
        try:
            with transaction.atomic():
                locked = RecycleBinEntry.objects.select_for_update().filter(pk=entry.pk).first()
                if locked is None:
                    continue
                _purge_entry(locked)
        except ReferentialIntegrityViolation:
            skipped += 1
            logger.warning(
                "recycle_bin_expiry_blocked",
                extra={"tenant_id": entry.tenant_id, "entry_id": entry.id, "entity_type": entry.entity_type, "entity_id": entry.entity_id},
            )
            continue
        purged += 1

    logger.info("recycle_bin_expired_purged", extra={"tenant_id": getattr(tenant, "id", None)})
    return purged, skipped
