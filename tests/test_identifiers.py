"""
Unit tests for reference and certificate number generation.
"""
import re
import uuid
from unittest.mock import patch

import pytest

from origin_portal.core.errors import ValidationError
from origin_portal.core.identifiers import (
    IdentifierExhaustedError,
    generate_certificate_number,
    generate_payment_reference,
    generate_unused,
    parse_uuid,
)


class TestFormats:
    """Identifier formats."""

    @pytest.mark.unit
    def test_payment_reference_format(self) -> None:
        with patch("origin_portal.core.identifiers.secrets.randbelow", return_value=42):
            reference = generate_payment_reference(now_ms=1700000000123)
        assert reference == "SOO-1700000000123-000042"

    @pytest.mark.unit
    def test_payment_reference_uses_clock(self) -> None:
        assert re.fullmatch(r"SOO-\d{13,}-\d{6}", generate_payment_reference())

    @pytest.mark.unit
    def test_certificate_number_uses_last_six_timestamp_digits(self) -> None:
        with patch("origin_portal.core.identifiers.secrets.randbelow", return_value=7):
            number = generate_certificate_number(now_ms=1700000654321)
        assert number == "SOC-654321-0007"

    @pytest.mark.unit
    def test_certificate_number_pads_short_timestamps(self) -> None:
        with patch("origin_portal.core.identifiers.secrets.randbelow", return_value=1234):
            assert generate_certificate_number(now_ms=42) == "SOC-000042-1234"


class TestGenerateUnused:
    """Collision handling."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_regenerates_on_collision(self) -> None:
        candidates = iter(["SOC-1", "SOC-2", "SOC-3"])
        taken = {"SOC-1", "SOC-2"}

        async def is_taken(candidate: str) -> bool:
            return candidate in taken

        assert await generate_unused(lambda: next(candidates), is_taken, 5) == "SOC-3"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        async def always_taken(candidate: str) -> bool:
            return True

        with pytest.raises(IdentifierExhaustedError, match="3 attempts"):
            await generate_unused(lambda: "SOO-1-000001", always_taken, 3)


class TestParseUuid:

    @pytest.mark.unit
    def test_accepts_uuid_and_string(self) -> None:
        value = uuid.uuid4()
        assert parse_uuid(value) is value
        assert parse_uuid(str(value)) == value

    @pytest.mark.unit
    def test_rejects_garbage(self) -> None:
        with pytest.raises(ValidationError, match="Invalid application id"):
            parse_uuid("not-a-uuid", "application id")
