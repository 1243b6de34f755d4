"""
Paystack API client.

Maps local payment intents onto Paystack's transaction initialize/verify
endpoints and back. Every failure surfaces as GatewayError; there is no
retry or backoff, a failed call is retried by a new explicit user action.
"""
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

import httpx
import structlog

from origin_portal.config import get_settings
from origin_portal.core.errors import GatewayError
from origin_portal.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def to_minor_units(amount: Union[int, Decimal]) -> int:
    """
    Convert an amount in the base unit (naira) to minor units (kobo).

    Floats are refused so amounts never pass through binary floating point.
    """
    if isinstance(amount, bool) or not isinstance(amount, (int, Decimal)):
        raise TypeError(f"Amount must be int or Decimal, got {type(amount).__name__}")
    minor = Decimal(amount) * 100
    if minor != minor.to_integral_value():
        raise ValueError(f"Amount {amount} has more precision than the minor unit")
    return int(minor)


def _parse_amount(raw: Any) -> Optional[int]:
    """Minor-unit amount from a verify response; None when Paystack omits it."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ValueError(f"amount {raw!r} is not a whole number of minor units")
    return int(raw)


@dataclass(frozen=True)
class InitializedTransaction:
    """Result of /transaction/initialize."""

    authorization_url: str
    access_code: str
    reference: str


@dataclass(frozen=True)
class VerifiedTransaction:
    """Result of /transaction/verify/:reference."""

    status: str
    reference: str
    amount_minor: Optional[int] = None
    customer_email: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class PaystackClient:
    """
    Thin async wrapper over the Paystack REST API.

    Stateless apart from the pooled HTTP client, which is created on first use.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize Paystack client.

        Args:
            secret_key: Secret key (defaults to settings)
            base_url: API base URL (defaults to settings)
            timeout: Per-request timeout in seconds (defaults to settings)
            transport: Optional httpx transport, e.g. a MockTransport in tests
        """
        settings = get_settings()
        self.secret_key = secret_key or settings.paystack_secret_key
        self.base_url = (base_url or settings.paystack_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.paystack_timeout_seconds
        self.callback_url = settings.payment_callback_url
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        logger.info(
            "paystack_client_initialized",
            base_url=self.base_url,
            test_mode=self.secret_key.startswith("sk_test_"),
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.secret_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Send one request and return the envelope's ``data`` object.

        Raises:
            GatewayError: On transport failure, non-2xx status or malformed body
        """
        start_time = time.time()
        try:
            response = await self._get_client().request(method, path, json=payload)
        except httpx.TimeoutException as e:
            metrics.record_paystack_api_call(operation, "timeout", time.time() - start_time)
            logger.error("paystack_request_timeout", operation=operation, error=str(e))
            raise GatewayError(f"Paystack {operation} timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            metrics.record_paystack_api_call(operation, "network_error", time.time() - start_time)
            logger.error("paystack_request_failed", operation=operation, error=str(e))
            raise GatewayError(f"Paystack {operation} failed: {e}") from e

        duration = time.time() - start_time
        metrics.record_paystack_api_call(operation, str(response.status_code), duration)

        if response.is_error:
            logger.error(
                "paystack_error_response",
                operation=operation,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise GatewayError(
                f"Paystack {operation} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            logger.error("paystack_invalid_json", operation=operation)
            raise GatewayError(f"Paystack {operation} returned a non-JSON body") from e

        if not isinstance(body, dict) or not body.get("status"):
            message = body.get("message") if isinstance(body, dict) else None
            logger.error("paystack_request_rejected", operation=operation, message=message)
            raise GatewayError(f"Paystack {operation} rejected: {message or 'no message'}")

        data = body.get("data")
        if not isinstance(data, dict):
            raise GatewayError(f"Paystack {operation} response has no data object")

        logger.info("paystack_request_completed", operation=operation, duration_seconds=duration)
        return data

    async def initialize_transaction(
        self,
        email: str,
        amount: Union[int, Decimal],
        reference: str,
        metadata: Optional[Dict[str, Any]] = None,
        callback_url: Optional[str] = None,
    ) -> InitializedTransaction:
        """
        Start a checkout for ``amount`` (base unit) under ``reference``.

        Returns:
            InitializedTransaction: Redirect URL and access code

        Raises:
            GatewayError: If the call fails
        """
        payload = {
            "email": email,
            "amount": to_minor_units(amount),
            "reference": reference,
            "metadata": metadata or {},
            "callback_url": callback_url or self.callback_url,
        }
        logger.info(
            "initializing_paystack_transaction",
            reference=reference,
            amount_minor=payload["amount"],
        )

        data = await self._request("initialize", "POST", "/transaction/initialize", payload)

        try:
            return InitializedTransaction(
                authorization_url=data["authorization_url"],
                access_code=data["access_code"],
                reference=data.get("reference", reference),
            )
        except KeyError as e:
            raise GatewayError(f"Paystack initialize response missing field {e}") from e

    async def verify_transaction(self, reference: str) -> VerifiedTransaction:
        """
        Look up the outcome of a transaction by reference.

        Raises:
            GatewayError: If the call fails
        """
        logger.info("verifying_paystack_transaction", reference=reference)

        data = await self._request(
            "verify", "GET", f"/transaction/verify/{quote(reference, safe='')}"
        )

        try:
            status = data["status"]
            amount_minor = _parse_amount(data.get("amount"))
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayError(f"Paystack verify response malformed: {e}") from e

        customer = data.get("customer") or {}
        metadata = data.get("metadata")
        return VerifiedTransaction(
            status=status,
            reference=data.get("reference", reference),
            amount_minor=amount_minor,
            customer_email=customer.get("email") if isinstance(customer, dict) else None,
            metadata=metadata if isinstance(metadata, dict) else {},
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
