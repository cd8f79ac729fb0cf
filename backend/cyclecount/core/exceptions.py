"""Typed errors raised by the cycle count engine.

Each error carries the HTTP status it maps to and a short machine-readable
code. ``main.py`` renders them as ``{"error": code, "detail": message, ...}``.
"""

from typing import Any, Dict, Iterable, Optional


class CycleCountError(Exception):
    """Base class for cycle count failures."""

    status_code = 400
    code = "cycle_count_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.message}


class CycleCountNotFound(CycleCountError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidTransition(CycleCountError):
    """Action not legal from the session's current status."""

    status_code = 409
    code = "invalid_transition"

    def __init__(self, current_status: Any, action: Any, allowed_from: Iterable[Any] = ()):
        self.current_status = current_status
        self.action = action
        self.allowed_from = [getattr(s, "value", s) for s in allowed_from]
        current = getattr(current_status, "value", current_status)
        act = getattr(action, "value", action)
        message = f"Cannot {act} a cycle count in status {current}"
        if self.allowed_from:
            message += f" (allowed from: {', '.join(self.allowed_from)})"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["status"] = getattr(self.current_status, "value", self.current_status)
        data["action"] = getattr(self.action, "value", self.action)
        data["allowed_from"] = self.allowed_from
        return data


class ValidationError(CycleCountError):
    status_code = 422
    code = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class IncompleteCount(CycleCountError):
    """Submit attempted while items remain uncounted."""

    status_code = 409
    code = "incomplete_count"

    def __init__(self, remaining: int, total: int):
        self.remaining = remaining
        self.total = total
        super().__init__(f"{remaining} item(s) have not been counted yet")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["remaining"] = self.remaining
        data["total"] = self.total
        return data


class Unauthorized(CycleCountError):
    status_code = 403
    code = "unauthorized"

    def __init__(self, permission: Any):
        self.permission = getattr(permission, "value", permission)
        super().__init__(f"Missing permission: {self.permission}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["permission"] = self.permission
        return data


class AdjustmentPublicationError(CycleCountError):
    """Some variances could not be posted to the stock ledger.

    The session itself is already COMPLETED; the failed items stay unmarked
    and can be retried.
    """

    status_code = 409
    code = "adjustment_publication_failed"

    def __init__(self, cycle_count_id: int, result: Any):
        self.cycle_count_id = cycle_count_id
        self.result = result
        super().__init__(
            f"{result.adjustments_failed} adjustment(s) failed for cycle count {cycle_count_id}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(self.result.to_dict())
        return data


class LedgerError(Exception):
    """Raised by the stock ledger when an adjustment cannot be posted."""

    def __init__(self, message: str, stock_item_id: Optional[int] = None):
        self.stock_item_id = stock_item_id
        super().__init__(message)
