"""
Domain errors.

Every refused operation raises one of these. The HTTP layer renders them as
``{"error": code, "detail": message, **details}`` with the status below.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class DomainError(Exception):
    """Base class for all engine errors."""

    code = "domain_error"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.message, **self.details}


class ValidationError(DomainError):
    """Malformed input or non-positive quantities."""

    code = "validation_error"
    status_code = 400


class NotFoundError(DomainError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(
            f"{entity_type} '{entity_id}' not found",
            {"entity_type": entity_type, "entity_id": str(entity_id)},
        )


class InsufficientStockError(DomainError):
    """A single lot (or aggregate) cannot cover the requested quantity."""

    code = "insufficient_stock"
    status_code = 409

    def __init__(self, material_id: str, requested: Decimal, available: Decimal, lot_id: str | None = None):
        super().__init__(
            f"Insufficient stock: requested {requested}, available {available}",
            {
                "material_id": material_id,
                "lot_id": lot_id,
                "requested": str(requested),
                "available": str(available),
            },
        )
        self.material_id = material_id
        self.lot_id = lot_id
        self.requested = requested
        self.available = available


class ShortageError(DomainError):
    """Bulk pre-flight failed; ``items`` lists every short material."""

    code = "shortage"
    status_code = 409

    def __init__(self, items: list[dict[str, Any]]):
        codes = ", ".join(str(i.get("material_code") or i["material_id"]) for i in items)
        super().__init__(
            f"Insufficient stock for: {codes}",
            {"items": [{**i, "shortfall": str(i["shortfall"]), "required": str(i["required"]), "available": str(i["available"])} for i in items]},
        )
        self.items = items


class GuardViolationError(DomainError):
    """Illegal state transition or an operation not allowed in the current state."""

    code = "guard_violation"
    status_code = 409

    def __init__(self, message: str, current_state: str | None = None, target_state: str | None = None):
        details: dict[str, Any] = {}
        if current_state is not None:
            details["current_state"] = current_state
        if target_state is not None:
            details["target_state"] = target_state
        super().__init__(message, details)
        self.current_state = current_state
        self.target_state = target_state


class ConcurrencyConflictError(DomainError):
    """Lost a race on a counter row or a revision activation; the caller may retry."""

    code = "concurrency_conflict"
    status_code = 409
