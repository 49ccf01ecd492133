import uuid
from decimal import Decimal

from django.db import models
from django.db.models import F, Q
from django.db.models.functions import Lower
from django.utils import timezone

from common.errors import ItemDeleted
from core.models import Tenant, User
from inventory import ledger as ledger_lib
from inventory.ledger import Bucket, LedgerLine, Quantity, ShapeLedger


class ShapeName(models.TextChoices):
    """Standard cuts every tenant can stock; tenants register others as ``Shape`` rows."""

    ROUND = "Round", "Round"
    OVAL = "Oval", "Oval"
    EMERALD = "Emerald", "Emerald"
    PRINCESS = "Princess", "Princess"
    MARQUISE = "Marquise", "Marquise"
    PEAR = "Pear", "Pear"
    CUSHION = "Cushion", "Cushion"
    ASSCHER = "Asscher", "Asscher"
    RADIANT = "Radiant", "Radiant"
    HEART = "Heart", "Heart"
    BAGUETTE = "Baguette", "Baguette"
    TRILLION = "Trillion", "Trillion"
    BRIOLETTE = "Briolette", "Briolette"
    ROSE_CUT = "Rose Cut", "Rose Cut"


class Shape(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT)
    name = models.CharField(max_length=32)
    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["tenant", "is_deleted"], name="shape_tenant_deleted_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                F("tenant"),
                Lower("name"),
                condition=Q(is_deleted=False),
                name="uniq_active_shape_name",
            ),
        ]

    def __str__(self):
        return self.name


class Category(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT)
    name = models.CharField(max_length=100)
    code = models.CharField(max_length=10)
    description = models.CharField(max_length=500, blank=True, default="")
    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["tenant", "is_deleted"], name="category_tenant_deleted_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "name"],
                condition=Q(is_deleted=False),
                name="uniq_active_category_name",
            ),
        ]

    def save(self, *args, **kwargs):
        self.name = (self.name or "").strip().upper()
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)

    def __str__(self):
        return self.name


class InventoryItem(models.Model):
    class ShapeMode(models.TextChoices):
        SINGLE = ledger_lib.SINGLE, "Single"
        MIX = ledger_lib.MIX, "Mix"

    class Status(models.TextChoices):
        IN_STOCK = ledger_lib.IN_STOCK, "In Stock"
        PENDING = ledger_lib.PENDING, "Pending"
        PARTIALLY_SOLD = ledger_lib.PARTIALLY_SOLD, "Partially Sold"
        SOLD = ledger_lib.SOLD, "Sold"

    class WeightUnit(models.TextChoices):
        CARAT = "carat", "Carat"
        GRAM = "gram", "Gram"

    class DimensionUnit(models.TextChoices):
        MM = "mm", "mm"
        CM = "cm", "cm"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT)
    category = models.ForeignKey(Category, on_delete=models.PROTECT, related_name="items")
    serial_number = models.CharField(max_length=64)
    shape_mode = models.CharField(max_length=8, choices=ShapeMode.choices, default=ShapeMode.SINGLE)
    single_shape = models.CharField(max_length=32, null=True, blank=True)
    total_pieces = models.PositiveIntegerField(default=0)
    total_weight = models.DecimalField(max_digits=12, decimal_places=3, default=Decimal("0"))
    available_pieces = models.PositiveIntegerField(default=0)
    available_weight = models.DecimalField(max_digits=12, decimal_places=3, default=Decimal("0"))
    weight_unit = models.CharField(max_length=8, choices=WeightUnit.choices, default=WeightUnit.CARAT)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.IN_STOCK)
    resting_status = models.CharField(max_length=16, choices=Status.choices, default=Status.IN_STOCK)
    purchase_code = models.CharField(max_length=64, blank=True, default="")
    sale_code = models.CharField(max_length=64, blank=True, default="")
    certification = models.CharField(max_length=255, blank=True, default="")
    location = models.CharField(max_length=255, blank=True, default="")
    description = models.TextField(blank=True, default="")
    length = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    width = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    height = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    dimension_unit = models.CharField(max_length=2, choices=DimensionUnit.choices, default=DimensionUnit.MM)
    version = models.PositiveIntegerField(default=0)
    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["tenant", "is_deleted", "status"], name="item_tenant_deleted_status_idx"),
            models.Index(fields=["category", "is_deleted"], name="item_category_deleted_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["tenant", "serial_number"], name="uniq_item_tenant_serial"),
            models.CheckConstraint(
                condition=Q(available_pieces__lte=F("total_pieces")),
                name="item_available_pieces_le_total",
            ),
            models.CheckConstraint(
                condition=Q(available_weight__gte=0) & Q(available_weight__lte=F("total_weight")),
                name="item_available_weight_le_total",
            ),
        ]

    def __str__(self):
        return self.serial_number

    @property
    def is_mix(self):
        return self.shape_mode == self.ShapeMode.MIX

    def get_ledger(self) -> ShapeLedger:
        """Ledger over the item's current rows; cached until the next ``refresh_from_db``."""
        cached = getattr(self, "_ledger", None)
        if cached is not None:
            return cached

        if self.is_mix:
            rows = list(self.shapes.order_by("position", "shape_name"))
            ledger = ShapeLedger.mix(
                [
                    Bucket(
                        row.shape_name,
                        Quantity(row.total_pieces, row.total_weight),
                        Quantity(row.available_pieces, row.available_weight),
                    )
                    for row in rows
                ]
            )
            self._bucket_rows = rows
        else:
            ledger = ShapeLedger.single(
                Quantity(self.total_pieces, self.total_weight),
                Quantity(self.available_pieces, self.available_weight),
                single_shape=self.single_shape,
            )
            self._bucket_rows = []
        self._ledger = ledger
        return ledger

    def refresh_from_db(self, *args, **kwargs):
        self._ledger = None
        self._bucket_rows = []
        super().refresh_from_db(*args, **kwargs)

    def reduce_quantity(self, shape_name, pieces, weight):
        self.reduce_lines([LedgerLine(shape_name, Quantity(pieces, weight))])

    def restore_quantity(self, shape_name, pieces, weight):
        self.restore_lines([LedgerLine(shape_name, Quantity(pieces, weight))])

    def reduce_lines(self, lines):
        """Validate every line, then decrement; nothing changes if any line fails."""
        if self.is_deleted:
            raise ItemDeleted(details={"inventory_id": str(self.id)})
        ledger = self.get_ledger()
        ledger.reduce(lines)
        self._sync_from_ledger(ledger)

    def restore_lines(self, lines):
        ledger = self.get_ledger()
        ledger.restore(lines)
        ledger.check_invariants()
        self._sync_from_ledger(ledger)

    def set_resting_status(self, resting_status):
        if resting_status not in ledger_lib.RESTING_STATUSES:
            raise ValueError(f"Resting status must be one of {ledger_lib.RESTING_STATUSES}.")
        self.resting_status = resting_status
        self._sync_from_ledger(self.get_ledger())

    def _sync_from_ledger(self, ledger):
        total, available = ledger.recompute_totals()
        if self.is_mix:
            self.total_pieces = total.pieces
            self.total_weight = total.weight
        self.available_pieces = available.pieces
        self.available_weight = available.weight
        self.status = ledger.derive_status(self.resting_status)

    def commit_quantities(self) -> bool:
        """Write quantity state only if no one else has written since this copy was read.

        Returns False on a stale copy; the caller re-reads and re-validates.
        """
        now = timezone.now()
        updated = InventoryItem.objects.filter(pk=self.pk, version=self.version).update(
            total_pieces=self.total_pieces,
            total_weight=self.total_weight,
            available_pieces=self.available_pieces,
            available_weight=self.available_weight,
            status=self.status,
            resting_status=self.resting_status,
            version=F("version") + 1,
            updated_at=now,
        )
        if not updated:
            return False

        ledger = self.get_ledger()
        for row, bucket in zip(self._bucket_rows, ledger.buckets):
            if not bucket.changed:
                continue
            ShapeBucket.objects.filter(pk=row.pk).update(
                available_pieces=bucket.available.pieces,
                available_weight=bucket.available.weight,
            )
            row.available_pieces = bucket.available.pieces
            row.available_weight = bucket.available.weight
            bucket.changed = False

        self.version += 1
        self.updated_at = now
        return True


class ShapeBucket(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    item = models.ForeignKey(InventoryItem, on_delete=models.CASCADE, related_name="shapes")
    shape_name = models.CharField(max_length=32)
    position = models.PositiveSmallIntegerField(default=0)
    total_pieces = models.PositiveIntegerField(default=0)
    total_weight = models.DecimalField(max_digits=12, decimal_places=3, default=Decimal("0"))
    available_pieces = models.PositiveIntegerField(default=0)
    available_weight = models.DecimalField(max_digits=12, decimal_places=3, default=Decimal("0"))

    class Meta:
        ordering = ["position", "shape_name"]
        constraints = [
            models.UniqueConstraint(fields=["item", "shape_name"], name="uniq_bucket_item_shape"),
            models.CheckConstraint(
                condition=Q(available_pieces__lte=F("total_pieces")),
                name="bucket_available_pieces_le_total",
            ),
            models.CheckConstraint(
                condition=Q(available_weight__gte=0) & Q(available_weight__lte=F("total_weight")),
                name="bucket_available_weight_le_total",
            ),
        ]
