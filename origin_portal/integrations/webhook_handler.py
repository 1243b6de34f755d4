"""
Paystack webhook handler.

Verifies the ``x-paystack-signature`` header (HMAC-SHA512 of the raw body
keyed with the secret key) and routes events to registered handlers.
Handlers re-verify with the gateway, so a replayed event is harmless.
"""
import hashlib
import hmac
import json
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from origin_portal.config import get_settings
from origin_portal.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Dict[str, Any], AsyncSession], Awaitable[Any]]


class WebhookError(Exception):
    """Raised when a webhook cannot be authenticated or parsed."""

    pass


class PaystackWebhookHandler:
    """Authenticates Paystack webhook deliveries and dispatches them by event type."""

    def __init__(self, secret_key: Optional[str] = None):
        """
        Initialize webhook handler.

        Args:
            secret_key: Paystack secret key used to sign deliveries (defaults to settings)
        """
        self.secret_key = secret_key or get_settings().paystack_secret_key
        self.event_handlers: Dict[str, EventHandler] = {}

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for a specific event type.

        Example:
            webhooks.register_handler("charge.success", payments.handle_charge_success)
        """
        self.event_handlers[event_type] = handler
        logger.info("webhook_handler_registered", event_type=event_type)

    def compute_signature(self, payload: bytes) -> str:
        return hmac.new(self.secret_key.encode("utf-8"), payload, hashlib.sha512).hexdigest()

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Check the signature and decode the event.

        Raises:
            WebhookError: If the signature is missing or wrong, or the body is not a JSON event
        """
        if not signature:
            logger.error("webhook_signature_missing")
            raise WebhookError("Missing webhook signature")

        if not hmac.compare_digest(self.compute_signature(payload), signature.strip()):
            logger.error("webhook_signature_verification_failed")
            raise WebhookError("Invalid webhook signature")

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise WebhookError("Webhook body is not valid JSON") from e

        if not isinstance(event, dict) or not isinstance(event.get("event"), str):
            raise WebhookError("Webhook body is not a Paystack event")

        logger.info("webhook_signature_verified", event_type=event["event"])
        return event

    async def process_event(self, event: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
        """
        Route a verified event to its handler.

        Returns:
            Dict[str, Any]: Processing result; unknown event types are acknowledged
        """
        event_type = event["event"]
        event_data = event.get("data") or {}

        handler = self.event_handlers.get(event_type)
        if handler is None:
            metrics.record_webhook_event(event_type, "ignored")
            logger.info("webhook_no_handler", event_type=event_type)
            return {"status": "ignored", "event_type": event_type}

        result = await handler(event_data, db)
        status = "processed" if getattr(result, "ok", True) else "rejected"
        metrics.record_webhook_event(event_type, status)

        logger.info(
            "webhook_event_processed",
            event_type=event_type,
            reference=event_data.get("reference"),
            status=status,
        )
        response: Dict[str, Any] = {"status": status, "event_type": event_type}
        error = getattr(result, "error", None)
        if error is not None:
            response["error"] = error.message
        return response
