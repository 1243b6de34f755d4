"""Core portal logic: records, lifecycle, payments and dashboards."""
from .errors import (
    AlreadyPaidError,
    ErrorCode,
    GatewayError,
    InvalidStateError,
    NotFoundError,
    PaymentFailedError,
    PortalError,
    Result,
    ValidationError,
)

__all__ = [
    "ErrorCode",
    "PortalError",
    "NotFoundError",
    "InvalidStateError",
    "AlreadyPaidError",
    "GatewayError",
    "ValidationError",
    "PaymentFailedError",
    "Result",
]
