"""
Shipment planning errors.

Raised by the planning services; the API layer catches them and maps them
to HTTP responses.
"""

from __future__ import annotations


class ShipmentPlanningError(Exception):
    """Base class for shipment planning failures."""


class ValidationError(ShipmentPlanningError):
    """
    Ship dates violate a collection window or are out of order.

    Non-fatal while editing; only raised when the plan is submitted.
    `errors` maps a shipment key to its list of FieldError.
    """

    def __init__(self, errors: dict, message: str = "Shipment dates are invalid"):
        super().__init__(message)
        self.errors = errors


class CombineConflict(ShipmentPlanningError):
    """A shipment is already merged into a different combined shipment."""


class StaleEditState(ShipmentPlanningError):
    """The order being edited vanished or can no longer be edited."""

    def __init__(self, order_id: int, reason: str):
        super().__init__(f"Order {order_id} {reason}")
        self.order_id = order_id
        self.reason = reason


class PersistenceFailure(ShipmentPlanningError):
    """Commit or reconstruction I/O failed. Nothing was written."""

    retryable = True
