import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from common.errors import (
    AlreadyCancelled,
    AlreadySold,
    ConcurrentModification,
    DuplicateRecord,
    InvalidInvoice,
    InvalidQuantity,
    ItemDeleted,
    NotFound,
    ReferentialIntegrityViolation,
)
from inventory import ledger as ledger_lib
from inventory.ledger import LedgerLine, Quantity, to_weight
from inventory.services import load_item_for_update, sale_max_attempts
from sales.models import Invoice, InvoiceCounter, InvoiceLine, SaleLine, SaleTransaction

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")


def _to_money(value):
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


class StaleInventory(Exception):
    """The version-checked write lost to another writer; the attempt is rolled back."""


@dataclass(frozen=True)
class SaleLineRequest:
    shape_name: str | None
    pieces: int
    weight: Decimal
    price_per_unit: Decimal | None = None

    def ledger_line(self):
        return LedgerLine(self.shape_name or None, Quantity(self.pieces, self.weight))

    @property
    def line_total(self):
        if self.price_per_unit is None:
            return Decimal("0.00")
        return _to_money(to_weight(self.weight) * Decimal(self.price_per_unit))


@dataclass(frozen=True)
class Customer:
    name: str = ""
    email: str = ""
    phone: str = ""


def next_invoice_number(tenant, *, year=None):
    """Atomically take the next number from the tenant's counter for the year."""
    year = year or timezone.now().year
    with transaction.atomic():
        counter, _ = InvoiceCounter.objects.select_for_update().get_or_create(tenant=tenant, year=year)
        InvoiceCounter.objects.filter(pk=counter.pk).update(last_value=F("last_value") + 1)
        counter.refresh_from_db(fields=["last_value"])
    prefix = getattr(settings, "INVOICE_NUMBER_PREFIX", "INV")
    return f"{prefix}-{year}-{counter.last_value:05d}"


def ensure_item_sellable(item):
    if item.is_deleted:
        raise ItemDeleted(details={"inventory_id": str(item.id)})
    if item.status == ledger_lib.SOLD:
        raise AlreadySold(details={"inventory_id": str(item.id)})
    open_full_sale = SaleTransaction.objects.filter(inventory_item_id=item.id, is_full_sale=True, cancelled=False)
    if open_full_sale.exists():
        raise AlreadySold(details={"inventory_id": str(item.id)})


def remaining_stock_lines(item):
    """One line per bucket that still has stock, covering everything available."""
    lines = []
    for bucket in item.get_ledger().buckets:
        if bucket.available.is_empty:
            continue
        lines.append(SaleLineRequest(bucket.shape_name, bucket.available.pieces, bucket.available.weight))
    return lines


def _validate_requested_lines(lines):
    if not lines:
        raise InvalidQuantity("A sale needs at least one line.")
    for line in lines:
        if line.ledger_line().quantity.is_empty:
            raise InvalidQuantity("Each sale line must sell some pieces or weight.")
        if line.price_per_unit is not None and Decimal(line.price_per_unit) < 0:
            raise InvalidQuantity("Price per unit cannot be negative.")


def _record_sale(*, item, user, lines, customer, currency, invoice_number, is_full_sale, flat_amount):
    ledger_lines = [line.ledger_line() for line in lines]
    total_pieces = sum(line.quantity.pieces for line in ledger_lines)
    total_weight = sum((line.quantity.weight for line in ledger_lines), Decimal("0"))
    if flat_amount is not None:
        total_amount = _to_money(flat_amount)
    else:
        total_amount = _to_money(sum((line.line_total for line in lines), Decimal("0")))

    sale = SaleTransaction.objects.create(
        tenant_id=item.tenant_id,
        inventory_item=item,
        serial_number=item.serial_number,
        shape_mode=item.shape_mode,
        is_full_sale=is_full_sale,
        customer_name=customer.name,
        customer_email=customer.email,
        customer_phone=customer.phone,
        currency=currency,
        total_pieces=total_pieces,
        total_weight=total_weight,
        total_amount=total_amount,
        invoice_number=invoice_number,
        sold_by=user if getattr(user, "is_authenticated", False) else None,
    )
    SaleLine.objects.bulk_create(
        [
            SaleLine(
                sale=sale,
                position=position,
                shape_name=ledger_line.shape_name if item.is_mix else None,
                pieces=ledger_line.quantity.pieces,
                weight=ledger_line.quantity.weight,
                price_per_unit=line.price_per_unit,
                line_total=line.line_total,
            )
            for position, (line, ledger_line) in enumerate(zip(lines, ledger_lines))
        ]
    )
    return sale


def _commit_sale(
    *,
    tenant,
    user,
    inventory_id,
    plan_lines,
    customer=None,
    currency="USD",
    invoice_number=None,
    generate_invoice_number=False,
    is_full_sale=False,
    flat_amount=None,
):
    customer = customer or Customer()
    attempts = sale_max_attempts()
    for attempt in range(1, attempts + 1):
        try:
            with transaction.atomic():
                item = load_item_for_update(tenant=tenant, item_id=inventory_id)
                ensure_item_sellable(item)
                lines = plan_lines(item)
                _validate_requested_lines(lines)
                item.reduce_lines([line.ledger_line() for line in lines])
                if not item.commit_quantities():
                    raise StaleInventory()
                if generate_invoice_number:
                    invoice_number = next_invoice_number(tenant)
                sale = _record_sale(
                    item=item,
                    user=user,
                    lines=lines,
                    customer=customer,
                    currency=currency,
                    invoice_number=invoice_number or None,
                    is_full_sale=is_full_sale,
                    flat_amount=flat_amount,
                )
        except StaleInventory:
            logger.warning(
                "sale_retry_stale_inventory",
                extra={"tenant_id": tenant.id, "inventory_id": inventory_id, "attempt": attempt},
            )
            continue
        except IntegrityError as exc:
            if is_full_sale:
                raise AlreadySold(details={"inventory_id": str(inventory_id)}) from exc
            raise

        logger.info(
            "sale_committed",
            extra={"tenant_id": tenant.id, "inventory_id": item.id, "sale_id": sale.id, "attempt": attempt},
        )
        return sale

    raise ConcurrentModification(details={"inventory_id": str(inventory_id), "attempts": attempts})


def sell_inventory(
    *,
    tenant,
    user,
    inventory_id,
    lines,
    customer=None,
    currency="USD",
    invoice_number=None,
    generate_invoice_number=False,
):
    """Sell the requested shape lines from one item as a single all-or-nothing unit.

    Every line is checked against a fresh read of the item before anything is
    decremented. A lost version check re-reads and re-validates, so a request
    that no longer fits surfaces ``InsufficientQuantity`` instead of overselling.
    """
    lines = list(lines)
    _validate_requested_lines(lines)
    return _commit_sale(
        tenant=tenant,
        user=user,
        inventory_id=inventory_id,
        plan_lines=lambda item: lines,
        customer=customer,
        currency=currency,
        invoice_number=invoice_number,
        generate_invoice_number=generate_invoice_number,
    )


def sell_whole_item(
    *,
    tenant,
    user,
    inventory_id,
    price,
    customer=None,
    currency="USD",
    invoice_number=None,
    generate_invoice_number=False,
):
    if Decimal(price) < 0:
        raise InvalidQuantity("Price cannot be negative.")
    return _commit_sale(
        tenant=tenant,
        user=user,
        inventory_id=inventory_id,
        plan_lines=remaining_stock_lines,
        customer=customer,
        currency=currency,
        invoice_number=invoice_number,
        generate_invoice_number=generate_invoice_number,
        is_full_sale=True,
        flat_amount=price,
    )


def undo_sale(*, tenant, user, sale_id, reason=""):
    """Put a sale's snapshot quantities back on its item exactly once."""
    attempts = sale_max_attempts()
    for attempt in range(1, attempts + 1):
        try:
            with transaction.atomic():
                sale = SaleTransaction.objects.select_for_update().filter(tenant=tenant, pk=sale_id).first()
                if sale is None:
                    raise NotFound("Sale not found.", details={"sale_id": str(sale_id)})
                if sale.cancelled:
                    raise AlreadyCancelled(details={"sale_id": str(sale.id)})
                if InvoiceLine.objects.filter(sale=sale).exists():
                    raise ReferentialIntegrityViolation(
                        "Remove the sale from its invoice before undoing it.",
                        details={"sale_id": str(sale.id)},
                    )

                item = load_item_for_update(tenant=tenant, item_id=sale.inventory_item_id)
                if item.is_deleted:
                    raise ItemDeleted(
                        "Restore the inventory item from the recycle bin before undoing its sales.",
                        details={"inventory_id": str(item.id)},
                    )
                item.restore_lines(sale.ledger_lines())
                if not item.commit_quantities():
                    raise StaleInventory()

                now = timezone.now()
                cancelled = SaleTransaction.objects.filter(pk=sale.pk, cancelled=False).update(
                    cancelled=True,
                    cancelled_at=now,
                    cancelled_by=user if getattr(user, "is_authenticated", False) else None,
                    cancel_reason=reason or "",
                    updated_at=now,
                )
                if not cancelled:
                    raise AlreadyCancelled(details={"sale_id": str(sale.id)})
        except StaleInventory:
            logger.warning(
                "undo_retry_stale_inventory",
                extra={"tenant_id": tenant.id, "sale_id": sale_id, "attempt": attempt},
            )
            continue

        sale.refresh_from_db()
        logger.info(
            "sale_undone",
            extra={"tenant_id": tenant.id, "inventory_id": item.id, "sale_id": sale.id, "attempt": attempt},
        )
        return sale

    raise ConcurrentModification(details={"sale_id": str(sale_id), "attempts": attempts})


def _buyer_key(sale):
    return (sale.customer_name.strip().lower(), sale.customer_email.strip().lower())


def create_invoice(*, tenant, user, sale_ids, tax_rate=Decimal("0"), notes=""):
    sale_ids = list(dict.fromkeys(str(sale_id) for sale_id in sale_ids))
    if not sale_ids:
        raise InvalidInvoice("An invoice needs at least one sale.")
    tax_rate = Decimal(tax_rate or 0)
    if tax_rate < 0:
        raise InvalidInvoice("Tax rate cannot be negative.")

    with transaction.atomic():
        sales = list(SaleTransaction.objects.select_for_update().filter(tenant=tenant, pk__in=sale_ids).order_by("sold_at"))
        missing = set(sale_ids) - {str(sale.id) for sale in sales}
        if missing:
            raise NotFound("Sale not found.", details={"sale_ids": sorted(missing)})

        cancelled = [str(sale.id) for sale in sales if sale.cancelled]
        if cancelled:
            raise AlreadyCancelled("Cancelled sales cannot be invoiced.", details={"sale_ids": cancelled})

        invoiced = list(InvoiceLine.objects.filter(sale__in=sales).values_list("sale_id", flat=True))
        if invoiced:
            raise DuplicateRecord(
                "Some sales are already on an invoice.",
                details={"sale_ids": sorted(str(sale_id) for sale_id in invoiced)},
            )

        if len({_buyer_key(sale) for sale in sales}) > 1:
            raise InvalidInvoice("All sales on an invoice must belong to the same buyer.")
        if len({sale.currency for sale in sales}) > 1:
            raise InvalidInvoice("All sales on an invoice must use the same currency.")

        first = sales[0]
        subtotal = _to_money(sum((sale.total_amount for sale in sales), Decimal("0")))
        tax_amount = _to_money(subtotal * tax_rate)
        invoice = Invoice.objects.create(
            tenant=tenant,
            invoice_number=next_invoice_number(tenant),
            customer_name=first.customer_name,
            customer_email=first.customer_email,
            customer_phone=first.customer_phone,
            currency=first.currency,
            subtotal=subtotal,
            tax_rate=tax_rate,
            tax_amount=tax_amount,
            total=_to_money(subtotal + tax_amount),
            notes=notes or "",
            created_by=user if getattr(user, "is_authenticated", False) else None,
        )
        InvoiceLine.objects.bulk_create(
            [InvoiceLine(invoice=invoice, sale=sale, amount=sale.total_amount) for sale in sales]
        )
        SaleTransaction.objects.filter(pk__in=[sale.pk for sale in sales], invoice_number__isnull=True).update(
            invoice_number=invoice.invoice_number
        )

    logger.info(
        "invoice_created",
        extra={"tenant_id": tenant.id, "invoice_id": invoice.id},
    )
    return invoice


def ensure_invoice_unlocked(invoice):
    if invoice.is_locked:
        raise ReferentialIntegrityViolation(
            "Invoice is locked and cannot be changed.",
            details={"invoice_id": str(invoice.id), "status": invoice.status},
        )


def _lock_for_change(invoice):
    locked = Invoice.objects.select_for_update().filter(pk=invoice.pk).first()
    if locked is None:
        raise NotFound("Invoice not found.", details={"invoice_id": str(invoice.id)})
    return locked


def update_invoice(invoice, *, notes=None, tax_rate=None):
    """Edit notes or tax on an unlocked invoice; totals follow the tax rate."""
    with transaction.atomic():
        invoice = _lock_for_change(invoice)
        ensure_invoice_unlocked(invoice)
        if notes is not None:
            invoice.notes = notes
        if tax_rate is not None:
            tax_rate = Decimal(tax_rate)
            if tax_rate < 0:
                raise InvalidInvoice("Tax rate cannot be negative.")
            invoice.tax_rate = tax_rate
            invoice.tax_amount = _to_money(invoice.subtotal * tax_rate)
            invoice.total = _to_money(invoice.subtotal + invoice.tax_amount)
        invoice.save()
    logger.info(
        "invoice_updated",
        extra={"tenant_id": invoice.tenant_id, "invoice_id": invoice.id},
    )
    return invoice


def lock_invoice(invoice, *, user):
    now = timezone.now()
    Invoice.objects.filter(pk=invoice.pk, is_locked=False).update(
        is_locked=True,
        locked_at=now,
        locked_by=user if getattr(user, "is_authenticated", False) else None,
        updated_at=now,
    )
    invoice.refresh_from_db()
    logger.info(
        "invoice_locked",
        extra={"tenant_id": invoice.tenant_id, "invoice_id": invoice.id},
    )
    return invoice


def mark_invoice_paid(invoice, *, user):
    """Record payment; a paid invoice is locked with it."""
    now = timezone.now()
    with transaction.atomic():
        Invoice.objects.filter(pk=invoice.pk, status=Invoice.Status.UNPAID).update(
            status=Invoice.Status.PAID,
            paid_at=now,
            updated_at=now,
        )
        lock_invoice(invoice, user=user)
    logger.info(
        "invoice_paid",
        extra={"tenant_id": invoice.tenant_id, "invoice_id": invoice.id},
    )
    return invoice


def delete_invoice(invoice):
    """Drop an unlocked invoice and release its sales; generated numbers are not reused."""
    invoice_id = invoice.id
    with transaction.atomic():
        invoice = _lock_for_change(invoice)
        ensure_invoice_unlocked(invoice)
        sale_ids = list(invoice.lines.values_list("sale_id", flat=True))
        SaleTransaction.objects.filter(pk__in=sale_ids, invoice_number=invoice.invoice_number).update(invoice_number=None)
        invoice.delete()
    logger.info(
        "invoice_deleted",
        extra={"tenant_id": invoice.tenant_id, "invoice_id": invoice_id},
    )
    return sale_ids
