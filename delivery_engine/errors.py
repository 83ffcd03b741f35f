"""
Expected business outcomes (returned to the caller inside an Outcome) and the one
infrastructure failure that is raised.
"""
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class DeliveryError(Exception):
    """Base for recoverable business-rule outcomes. Never means a partial write happened."""
    code = "delivery_error"

    def __init__(self, message: str = "", **details: Any):
        self.message = message or self.code
        self.details = details
        super().__init__(self.message)


class ValidationError(DeliveryError):
    """Malformed input. Caller fixes it before retrying."""
    code = "validation_error"


class NotFound(DeliveryError):
    """Delivery (or bid) does not exist."""
    code = "not_found"


class DuplicateBid(DeliveryError):
    """Driver already bid on this delivery (UNIQUE on delivery_id, driver_id)."""
    code = "duplicate_bid"


class DuplicateRating(DeliveryError):
    """Delivery already carries a rating."""
    code = "duplicate_rating"


class StatusConflict(DeliveryError):
    """Transition not allowed from the delivery's current status. Re-fetch before deciding."""
    code = "status_conflict"

    def __init__(self, message: str = "", current_status: str | None = None, **details: Any):
        self.current_status = current_status
        super().__init__(message, current_status=current_status, **details)


class AssignmentConflict(DeliveryError):
    """Compare-and-swap found the delivery no longer assignable. Never retried."""
    code = "assignment_conflict"


class AuthorizationError(DeliveryError):
    """Actor is not the owning seller / chosen driver for this action."""
    code = "authorization_error"


class PersistenceError(Exception):
    """Storage unreachable or failed. Raised, not returned; business conflicts never take this path."""


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value (usually the authoritative delivery snapshot) or a named error."""
    value: T | None = None
    error: DeliveryError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def code(self) -> str:
        return "ok" if self.error is None else self.error.code

    @classmethod
    def success(cls, value: T | None = None) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: DeliveryError) -> "Outcome[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value
