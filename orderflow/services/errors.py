"""
Error taxonomy of the fulfillment engine.

Services raise these; the API layer maps them to HTTP status codes and the
unit-of-work runner (``orderflow.services.transactions``) retries
``ConflictError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


class OrderFlowError(Exception):
    """Base class for all engine errors."""


class ValidationError(OrderFlowError):
    """Malformed input; rejected before anything is written."""


class IllegalTransitionError(ValidationError):
    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(f"Illegal status transition: {current.value} -> {requested.value}")


class InsufficientStockError(ValidationError):
    def __init__(self, item_id: str, location_id: str, available: int, requested: int):
        self.item_id = item_id
        self.location_id = location_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for item {item_id} at {location_id} "
            f"(available={available}, requested={requested})"
        )


class NotFoundError(OrderFlowError):
    def __init__(self, entity: str, ref):
        self.entity = entity
        self.ref = ref
        super().__init__(f"{entity} not found: {ref}")


class ConflictError(OrderFlowError):
    """Transient commit conflict. Retried by the unit-of-work runner."""


class DependencyFailure(OrderFlowError):
    """An external collaborator failed and the triggering operation was undone."""


@dataclass
class DataIntegrityWarning:
    """A project whose ledger and order totals disagree beyond the thresholds."""

    project_id: str
    project_name: str | None
    orders_received: Decimal
    ledger_total: Decimal
    difference: Decimal
    difference_percent: Decimal

    def __str__(self) -> str:
        return (
            f"{self.project_name or self.project_id}: orders={self.orders_received} "
            f"ledger={self.ledger_total} diff={self.difference} ({self.difference_percent}%)"
        )
