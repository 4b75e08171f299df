"""
Error taxonomy for order handling.

Every error carries a machine-readable kind, the offending field when there is
one, and the HTTP status the API layer answers with.
"""

from typing import Any, Dict, Optional


class UniEatsError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "field": self.field, "detail": self.message}


class InvalidInputError(UniEatsError):
    kind = "invalid_input"
    status_code = 400


class IllegalTransitionError(UniEatsError):
    kind = "illegal_transition"
    status_code = 400

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move order from {current} to {target}", field="status")
        self.current = current
        self.target = target


class MissingReasonError(UniEatsError):
    kind = "missing_reason"
    status_code = 400

    def __init__(self) -> None:
        super().__init__("A cancellation reason is required", field="reason")


class NotFoundError(UniEatsError):
    kind = "not_found"
    status_code = 404


class ConflictError(UniEatsError):
    """The order changed between read and write; re-fetch and retry."""

    kind = "conflict"
    status_code = 409
