"""External payment provider integrations."""
from .paystack_client import PaystackClient, ProviderTransaction
from .paystack_webhooks import PaystackWebhookHandler

__all__ = ["PaystackClient", "ProviderTransaction", "PaystackWebhookHandler"]
