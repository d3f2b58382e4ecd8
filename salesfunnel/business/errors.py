from __future__ import annotations

from typing import Any


class FunnelError(Exception):
    """Expected business outcome of a funnel operation.

    Each subclass carries a stable ``code`` and the HTTP status the API layer maps it to.
    """

    code = "funnel_error"
    status_code = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_item(self, item_id: Any) -> dict[str, Any]:
        return {"id": item_id, "code": self.code, "message": self.message}


class NotFoundError(FunnelError):
    code = "not_found"
    status_code = 404


class ForbiddenError(FunnelError):
    code = "forbidden"
    status_code = 403


class ValidationError(FunnelError):
    code = "validation_error"
    status_code = 422


class LossReasonRequiredError(ValidationError):
    code = "loss_reason_required"

    def __init__(self) -> None:
        super().__init__("loss reason is required to close an opportunity as lost")


class ConflictError(FunnelError):
    code = "conflict"
    status_code = 409


class CapacityExceededError(FunnelError):
    code = "capacity_exceeded"
    status_code = 409

    def __init__(self, owner_user_id: str, count: int, limit: int) -> None:
        super().__init__(
            f"owner {owner_user_id} holds {count} private customers (limit {limit})",
            details={"owner_user_id": owner_user_id, "count": count, "limit": limit},
        )
        self.owner_user_id = owner_user_id
        self.count = count
        self.limit = limit


class InvalidTransitionError(FunnelError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(
            f"invalid {entity} transition {current} -> {target}",
            details={"entity": entity, "current": current, "target": target},
        )
        self.current = current
        self.target = target


class HasDependentsError(FunnelError):
    code = "has_dependents"
    status_code = 409

    def __init__(self, entity: str, dependents: dict[str, int]) -> None:
        super().__init__(f"{entity} has dependents", details={"dependents": dependents})
        self.dependents = dependents
