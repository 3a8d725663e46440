# exceptions.py
from typing import Any


class PacmacError(Exception):
    """Base class for errors raised by the settlement core."""

    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "error": self.code}


class ValidationError(PacmacError):
    """Raised when the caller supplied bad input."""

    code = "validation_error"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class InvalidAmount(ValidationError):
    """Raised when a price cannot be charged through the processor."""

    code = "invalid_amount"

    def __init__(self, message: str, field: str = "price") -> None:
        super().__init__(message, field=field)


class NotFoundError(PacmacError):
    """Raised when a record is not found in the database."""

    code = "not_found"
    entity = "Record"

    def __init__(self, entity_id: Any) -> None:
        super().__init__(f"{self.entity} {entity_id} not found.")
        self.entity_id = entity_id


class UserNotFound(NotFoundError):
    entity = "User"


class ListingNotFound(NotFoundError):
    entity = "Listing"


class TransactionNotFound(NotFoundError):
    entity = "Transaction"


class DisputeNotFound(NotFoundError):
    entity = "Dispute"


class PermissionDenied(PacmacError):
    """Raised when the caller is not allowed to act on a record."""

    code = "permission_denied"


class InvalidTransition(PacmacError):
    """Raised when a state change is attempted from the wrong state."""

    code = "invalid_transition"

    def __init__(
        self,
        current: Any,
        target: Any,
        message: str | None = None,
    ) -> None:
        current = getattr(current, "value", current)
        target = getattr(target, "value", target)
        super().__init__(message or f"Cannot move from '{current}' to '{target}'.")
        self.current = current
        self.target = target

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["current"] = self.current
        data["target"] = self.target
        return data


class DisputeAlreadyOpen(InvalidTransition):
    """Raised when a transaction already has an unresolved dispute."""

    code = "dispute_already_open"

    def __init__(self, transaction_id: Any, dispute_id: Any = None) -> None:
        super().__init__(
            "disputed",
            "disputed",
            f"Transaction {transaction_id} already has an open dispute.",
        )
        self.dispute_id = dispute_id


class PaymentNotConfirmed(InvalidTransition):
    """Raised when the processor does not report the payment as succeeded."""

    code = "payment_not_confirmed"

    def __init__(self, processor_status: str) -> None:
        super().__init__(
            "pending",
            "paid",
            f"Payment has not succeeded (processor status '{processor_status}').",
        )
        self.processor_status = processor_status

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["processor_status"] = self.processor_status
        return data


class ExternalServiceError(PacmacError):
    """Raised when a collaborator such as the payment processor fails."""

    code = "external_service_error"

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["service"] = self.service
        data["retryable"] = True
        return data
