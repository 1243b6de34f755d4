"""
Error taxonomy and operation results.

Core helpers raise PortalError subclasses; public service operations catch
them at their boundary and hand back a Result instead.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    ALREADY_PAID = "already_paid"
    GATEWAY_ERROR = "gateway_error"
    VALIDATION_ERROR = "validation_error"
    PAYMENT_FAILED = "payment_failed"


class PortalError(Exception):
    """Base exception for portal domain errors."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(PortalError):
    """Referenced user, application or transaction does not exist."""

    code = ErrorCode.NOT_FOUND


class InvalidStateError(PortalError):
    """Requested transition is illegal for the current status."""

    code = ErrorCode.INVALID_STATE


class AlreadyPaidError(PortalError):
    """Payment initialization attempted on a paid application."""

    code = ErrorCode.ALREADY_PAID


class GatewayError(PortalError):
    """The payment gateway call failed (network, non-2xx, malformed body)."""

    code = ErrorCode.GATEWAY_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(PortalError):
    """Caller-supplied input failed a shape or required-field check."""

    code = ErrorCode.VALIDATION_ERROR


class PaymentFailedError(PortalError):
    """The gateway answered but did not report the charge as successful."""

    code = ErrorCode.PAYMENT_FAILED

    def __init__(self, message: str, transaction: Any = None):
        super().__init__(message)
        self.transaction = transaction


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of a core operation.

    A failure may still carry a value, e.g. the transaction that was marked
    FAILED by a declined verification.
    """

    value: Optional[T] = None
    error: Optional[PortalError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error is not None else None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: PortalError, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value, error=error)
