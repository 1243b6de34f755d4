"""
Payment reference and certificate number generation.

Both formats are timestamp plus random digits, so uniqueness is only
probabilistic. Callers check the candidate against stored values and the
database UNIQUE constraints remain the final guard.
"""
import secrets
import time
import uuid
from typing import Awaitable, Callable, Optional

import structlog

from origin_portal.core.errors import ValidationError

logger = structlog.get_logger(__name__)

PAYMENT_REFERENCE_PREFIX = "SOO"
CERTIFICATE_PREFIX = "SOC"


class IdentifierExhaustedError(Exception):
    """Raised when no unused identifier was produced within the attempt budget."""

    pass


def parse_uuid(value: uuid.UUID | str, label: str = "identifier") -> uuid.UUID:
    """Coerce a caller-supplied id, failing with ValidationError on garbage."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise ValidationError(f"Invalid {label}: {value!r}") from e


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def generate_payment_reference(now_ms: Optional[int] = None) -> str:
    """
    Generate a payment reference.

    Format: SOO-<millisecond timestamp>-<6-digit zero-padded random>
    """
    timestamp = now_ms if now_ms is not None else _now_ms()
    return f"{PAYMENT_REFERENCE_PREFIX}-{timestamp}-{secrets.randbelow(1_000_000):06d}"


def generate_certificate_number(now_ms: Optional[int] = None) -> str:
    """
    Generate a certificate number.

    Format: SOC-<last 6 digits of millisecond timestamp>-<4-digit zero-padded random>
    """
    timestamp = str(now_ms if now_ms is not None else _now_ms())[-6:].zfill(6)
    return f"{CERTIFICATE_PREFIX}-{timestamp}-{secrets.randbelow(10_000):04d}"


async def generate_unused(
    generator: Callable[[], str],
    is_taken: Callable[[str], Awaitable[bool]],
    max_attempts: int,
) -> str:
    """
    Draw identifiers until one is not taken.

    Args:
        generator: Produces a candidate identifier
        is_taken: Async predicate checking the candidate against storage
        max_attempts: Upper bound on draws

    Raises:
        IdentifierExhaustedError: If every candidate collided
    """
    for attempt in range(1, max_attempts + 1):
        candidate = generator()
        if not await is_taken(candidate):
            return candidate
        logger.warning("identifier_collision", candidate=candidate, attempt=attempt)

    raise IdentifierExhaustedError(
        f"No unused identifier after {max_attempts} attempts"
    )
