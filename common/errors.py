from __future__ import annotations

from typing import Any

from rest_framework import status


class DomainError(Exception):
    """Business-rule failure with a stable code the API layer maps to a status."""

    code = "domain_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "The request could not be completed."

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class InvalidQuantity(DomainError):
    code = "invalid_quantity"
    default_message = "Quantities must be non-negative numbers."


class ShapeNotFound(DomainError):
    code = "shape_not_found"
    default_message = "Shape was not found on this inventory item."

    def __init__(self, shape_name, *, inventory_id=None, message=None):
        details = {"shape": shape_name}
        if inventory_id is not None:
            details["inventory_id"] = str(inventory_id)
        super().__init__(message or f'Shape "{shape_name}" not found in inventory.', details=details)
        self.shape_name = shape_name


class InvalidShape(DomainError):
    code = "invalid_shape"
    default_message = "Shape name is not valid."


class InsufficientQuantity(DomainError):
    code = "insufficient_quantity"
    default_message = "Requested quantity exceeds the available quantity."

    def __init__(self, *, shape_name, requested, available):
        label = f" of {shape_name}" if shape_name else ""
        super().__init__(
            f"Only {available.pieces} pieces / {available.weight} weight{label} available; "
            f"requested {requested.pieces} pieces / {requested.weight} weight.",
            details={
                "shape": shape_name,
                "requested": {"pieces": requested.pieces, "weight": str(requested.weight)},
                "available": {"pieces": available.pieces, "weight": str(available.weight)},
            },
        )
        self.shape_name = shape_name
        self.requested = requested
        self.available = available


class ItemDeleted(DomainError):
    code = "item_deleted"
    default_message = "Inventory item is in the recycle bin."


class ReferentialIntegrityViolation(DomainError):
    code = "referential_integrity_violation"
    default_message = "The record is still referenced by other records."


class InvalidStatusTransition(DomainError):
    code = "invalid_status_transition"
    default_message = "The status of this inventory item cannot be changed."


class InvalidInvoice(DomainError):
    code = "invalid_invoice"
    default_message = "These sales cannot be invoiced together."


class NotFound(DomainError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Record not found."


class AlreadySold(DomainError):
    code = "already_sold"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This inventory item is already sold."


class DuplicateRecord(DomainError):
    code = "duplicate_record"
    status_code = status.HTTP_409_CONFLICT
    default_message = "An active record with the same identity already exists."


class AlreadyCancelled(DomainError):
    code = "already_cancelled"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Sale already cancelled."


class ConcurrentModification(DomainError):
    code = "concurrent_modification"
    status_code = status.HTTP_409_CONFLICT
    default_message = "The inventory item was modified concurrently. Please retry."


class InfrastructureError(DomainError):
    code = "infrastructure_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "The service is temporarily unavailable. Please retry later."


class InventoryConsistencyError(RuntimeError):
    """Raised when a restore would push available quantity above the stocked total."""
