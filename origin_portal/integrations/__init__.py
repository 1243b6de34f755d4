"""External integrations: the Paystack payment gateway."""
from .paystack_client import PaystackClient
from .webhook_handler import PaystackWebhookHandler, WebhookError

__all__ = ["PaystackClient", "PaystackWebhookHandler", "WebhookError"]
