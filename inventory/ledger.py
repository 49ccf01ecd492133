"""Shape ledger: the physical decomposition of an inventory item's stock.

A SINGLE item tracks one implicit bucket; a MIX item tracks named buckets whose
sums make up the item totals. Every quantity is a ``Quantity`` of whole pieces
and a non-negative decimal weight. The ledger is plain Python so that the
reduce/restore rules can be exercised without a database; ``InventoryItem``
loads one from its rows and writes the result back.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from common.errors import InsufficientQuantity, InvalidQuantity, InventoryConsistencyError, ShapeNotFound

WEIGHT_QUANT = Decimal("0.001")

SINGLE = "single"
MIX = "mix"

IN_STOCK = "in_stock"
PENDING = "pending"
PARTIALLY_SOLD = "partially_sold"
SOLD = "sold"

RESTING_STATUSES = (IN_STOCK, PENDING)


def to_weight(value) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise InvalidQuantity(f"Weight must be a number, got {value!r}.")
    if isinstance(value, float):
        value = repr(value)
    try:
        weight = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidQuantity(f"Weight must be a number, got {value!r}.") from None
    if not weight.is_finite():
        raise InvalidQuantity(f"Weight must be a finite number, got {value!r}.")
    quantized = weight.quantize(WEIGHT_QUANT)
    if quantized != weight:
        raise InvalidQuantity(
            f"Weight allows at most three decimal places, got {value!r}.",
            details={"weight": str(weight)},
        )
    return quantized


@dataclass(frozen=True)
class Quantity:
    pieces: int
    weight: Decimal

    def __post_init__(self):
        if isinstance(self.pieces, bool) or not isinstance(self.pieces, int):
            raise InvalidQuantity(f"Pieces must be a whole number, got {self.pieces!r}.")
        if self.pieces < 0:
            raise InvalidQuantity("Pieces cannot be negative.", details={"pieces": self.pieces})
        weight = to_weight(self.weight)
        if weight < 0:
            raise InvalidQuantity("Weight cannot be negative.", details={"weight": str(weight)})
        object.__setattr__(self, "weight", weight)

    @classmethod
    def zero(cls) -> Quantity:
        return cls(0, Decimal("0"))

    def __add__(self, other: Quantity) -> Quantity:
        return Quantity(self.pieces + other.pieces, self.weight + other.weight)

    def __sub__(self, other: Quantity) -> Quantity:
        return Quantity(self.pieces - other.pieces, self.weight - other.weight)

    def covers(self, other: Quantity) -> bool:
        return self.pieces >= other.pieces and self.weight >= other.weight

    @property
    def is_empty(self) -> bool:
        return self.pieces == 0 and self.weight == 0


def derive_status(available: Quantity, total: Quantity, resting_status: str) -> str:
    """Status is a pure function of quantities plus the item's resting status."""
    if available.is_empty:
        return SOLD
    if available.pieces < total.pieces or available.weight < total.weight:
        return PARTIALLY_SOLD
    return resting_status


@dataclass
class Bucket:
    shape_name: str | None
    total: Quantity
    available: Quantity
    changed: bool = field(default=False, compare=False)

    def check(self):
        if not self.total.covers(self.available):
            raise InventoryConsistencyError(
                f"Bucket {self.shape_name or 'single'} available {self.available} exceeds total {self.total}."
            )


@dataclass(frozen=True)
class LedgerLine:
    """One requested movement against a bucket; ``shape_name`` is None for SINGLE items."""

    shape_name: str | None
    quantity: Quantity


class ShapeLedger:
    def __init__(self, mode: str, buckets: list[Bucket], *, single_shape: str | None = None):
        if mode not in (SINGLE, MIX):
            raise ValueError(f"Unknown shape mode {mode!r}")
        if mode == SINGLE and len(buckets) != 1:
            raise ValueError("A SINGLE ledger holds exactly one bucket.")
        names = [bucket.shape_name for bucket in buckets]
        if mode == MIX and len(set(names)) != len(names):
            raise ValueError("Shape names must be unique within an item.")
        self.mode = mode
        self.buckets = buckets
        self.single_shape = single_shape

    @classmethod
    def single(cls, total: Quantity, available: Quantity | None = None, *, single_shape=None) -> ShapeLedger:
        return cls(SINGLE, [Bucket(None, total, available if available is not None else total)], single_shape=single_shape)

    @classmethod
    def mix(cls, buckets: list[Bucket]) -> ShapeLedger:
        return cls(MIX, buckets)

    def find_shape(self, name: str) -> Bucket:
        if self.mode == SINGLE:
            raise ShapeNotFound(name)
        for bucket in self.buckets:
            if bucket.shape_name == name:
                return bucket
        raise ShapeNotFound(name)

    def resolve(self, name: str | None) -> Bucket:
        """Bucket a sale line targets.

        SINGLE items accept no name or their own ``single_shape`` label; MIX items
        require an exact bucket name.
        """
        if self.mode == SINGLE:
            if name and name != self.single_shape:
                raise ShapeNotFound(name)
            return self.buckets[0]
        if not name:
            raise ShapeNotFound(name or "")
        return self.find_shape(name)

    def availability_of(self, name: str | None = None) -> Quantity:
        if self.mode == SINGLE:
            return self.buckets[0].available
        return self.find_shape(name).available

    @property
    def total(self) -> Quantity:
        return self._sum(bucket.total for bucket in self.buckets)

    @property
    def available(self) -> Quantity:
        return self._sum(bucket.available for bucket in self.buckets)

    def recompute_totals(self) -> tuple[Quantity, Quantity]:
        """Item-level (total, available) as sums over the buckets."""
        return self.total, self.available

    def _group(self, lines: list[LedgerLine]) -> list[tuple[Bucket, Quantity]]:
        # Lines naming the same bucket are combined so they are checked as one amount.
        grouped: dict[int, tuple[Bucket, Quantity]] = {}
        for line in lines:
            bucket = self.resolve(line.shape_name)
            _, amount = grouped.get(id(bucket), (bucket, Quantity.zero()))
            grouped[id(bucket)] = (bucket, amount + line.quantity)
        return list(grouped.values())

    def validate(self, lines: list[LedgerLine]) -> list[tuple[Bucket, Quantity]]:
        """Check every line against current availability before anything is mutated."""
        plan = self._group(lines)
        for bucket, amount in plan:
            if not bucket.available.covers(amount):
                raise InsufficientQuantity(shape_name=bucket.shape_name, requested=amount, available=bucket.available)
        return plan

    def reduce(self, lines: list[LedgerLine]) -> None:
        for bucket, amount in self.validate(lines):
            bucket.available = bucket.available - amount
            bucket.changed = True

    def restore(self, lines: list[LedgerLine]) -> None:
        plan = []
        for bucket, amount in self._group(lines):
            restored = bucket.available + amount
            if not bucket.total.covers(restored):
                raise InventoryConsistencyError(
                    f"Restoring {amount} to {bucket.shape_name or 'single'} would exceed its total {bucket.total}."
                )
            plan.append((bucket, restored))
        for bucket, restored in plan:
            bucket.available = restored
            bucket.changed = True

    def check_invariants(self) -> None:
        for bucket in self.buckets:
            bucket.check()

    def derive_status(self, resting_status: str) -> str:
        return derive_status(self.available, self.total, resting_status)

    @staticmethod
    def _sum(quantities) -> Quantity:
        result = Quantity.zero()
        for quantity in quantities:
            result = result + quantity
        return result
