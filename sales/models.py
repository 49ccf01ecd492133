import uuid
from decimal import Decimal

from django.db import models

from core.models import Tenant, User
from inventory.ledger import LedgerLine, Quantity
from inventory.models import InventoryItem


class SaleTransaction(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT)
    # Sales outlive a purged item; the serial number snapshot keeps them readable.
    inventory_item = models.ForeignKey(
        InventoryItem,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name="sales",
    )
    serial_number = models.CharField(max_length=64)
    shape_mode = models.CharField(max_length=8, choices=InventoryItem.ShapeMode.choices)
    is_full_sale = models.BooleanField(default=False)
    customer_name = models.CharField(max_length=255, blank=True, default="")
    customer_email = models.EmailField(blank=True, default="")
    customer_phone = models.CharField(max_length=64, blank=True, default="")
    currency = models.CharField(max_length=3, default="USD")
    total_pieces = models.PositiveIntegerField()
    total_weight = models.DecimalField(max_digits=12, decimal_places=3)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    invoice_number = models.CharField(max_length=64, null=True, blank=True)
    sold_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    sold_at = models.DateTimeField(auto_now_add=True)
    cancelled = models.BooleanField(default=False)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    cancel_reason = models.CharField(max_length=500, blank=True, default="")
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["tenant", "cancelled", "sold_at"], name="sale_tenant_cancelled_idx"),
            models.Index(fields=["inventory_item", "cancelled"], name="sale_item_cancelled_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["inventory_item"],
                condition=models.Q(is_full_sale=True, cancelled=False),
                name="uniq_open_full_sale_per_item",
            ),
        ]

    def __str__(self):
        return f"{self.serial_number} ({self.total_pieces} pcs)"

    def ledger_lines(self):
        return [
            LedgerLine(line.shape_name, Quantity(line.pieces, line.weight))
            for line in self.lines.order_by("position")
        ]


class SaleLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sale = models.ForeignKey(SaleTransaction, on_delete=models.CASCADE, related_name="lines")
    position = models.PositiveSmallIntegerField(default=0)
    shape_name = models.CharField(max_length=32, null=True, blank=True)
    pieces = models.PositiveIntegerField()
    weight = models.DecimalField(max_digits=12, decimal_places=3)
    price_per_unit = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    line_total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))

    class Meta:
        ordering = ["position"]


class InvoiceCounter(models.Model):
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE)
    year = models.PositiveSmallIntegerField()
    last_value = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["tenant", "year"], name="uniq_invoice_counter_tenant_year"),
        ]


class Invoice(models.Model):
    class Status(models.TextChoices):
        UNPAID = "unpaid", "Unpaid"
        PAID = "paid", "Paid"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT)
    invoice_number = models.CharField(max_length=64)
    customer_name = models.CharField(max_length=255, blank=True, default="")
    customer_email = models.EmailField(blank=True, default="")
    customer_phone = models.CharField(max_length=64, blank=True, default="")
    currency = models.CharField(max_length=3, default="USD")
    subtotal = models.DecimalField(max_digits=14, decimal_places=2)
    tax_rate = models.DecimalField(max_digits=6, decimal_places=4, default=Decimal("0"))
    tax_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=14, decimal_places=2)
    notes = models.TextField(blank=True, default="")
    status = models.CharField(max_length=8, choices=Status.choices, default=Status.UNPAID)
    paid_at = models.DateTimeField(null=True, blank=True)
    # Locked invoices reject edits and deletion.
    is_locked = models.BooleanField(default=False)
    locked_at = models.DateTimeField(null=True, blank=True)
    locked_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["tenant", "created_at"], name="invoice_tenant_created_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["tenant", "invoice_number"], name="uniq_invoice_number"),
        ]


class InvoiceLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="lines")
    sale = models.OneToOneField(SaleTransaction, on_delete=models.PROTECT, related_name="invoice_line")
    amount = models.DecimalField(max_digits=14, decimal_places=2)
