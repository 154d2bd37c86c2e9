"""
Paystack webhook handling.

Implements:
- HMAC-SHA512 signature verification of the raw body
- Event routing (``charge.success`` marks a pending payment completed)
- Projection refresh through the same update the verifier uses

Webhooks never create payments: a reference that was not recorded by the
verification flow is acknowledged and ignored.
"""
import hashlib
import hmac
import json
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from easypass.config import Settings
from easypass.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    InvalidInputError,
    ProjectionUpdateFailedError,
)
from easypass.core.payment_store import PaymentStore
from easypass.core.user_directory import UserDirectory
from easypass.integrations.paystack_client import parse_provider_datetime
from easypass.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"

EventHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class PaystackWebhookHandler:
    """Verifies and dispatches Paystack webhook events."""

    def __init__(self, settings: Settings, store: PaymentStore, users: UserDirectory):
        self.settings = settings
        self.store = store
        self.users = users
        self.event_handlers: Dict[str, EventHandler] = {
            "charge.success": self.handle_charge_success,
        }

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Check the signature and decode the event.

        Args:
            payload: Raw request body
            signature: ``x-paystack-signature`` header value

        Returns:
            Dict[str, Any]: Decoded event

        Raises:
            ConfigurationError: If no secret key is configured
            AuthenticationError: If the signature is missing or wrong
            InvalidInputError: If the body is not a JSON object
        """
        secret_key = self.settings.paystack_secret_key
        if not secret_key:
            raise ConfigurationError("Payment provider is not configured")
        if not signature:
            raise AuthenticationError("Missing webhook signature")

        expected = hmac.new(secret_key.encode("utf-8"), payload, hashlib.sha512).hexdigest()
        if not hmac.compare_digest(expected, signature):
            logger.warning("webhook_signature_verification_failed")
            raise AuthenticationError("Invalid webhook signature")

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise InvalidInputError("Webhook body is not valid JSON") from e
        if not isinstance(event, dict):
            raise InvalidInputError("Webhook body must be a JSON object")
        return event

    async def process_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Route a verified event to its handler."""
        event_type = str(event.get("event") or "")
        handler = self.event_handlers.get(event_type)
        if handler is None:
            metrics.record_webhook_event(event_type or "unknown", "ignored")
            logger.info("webhook_event_ignored", event_type=event_type)
            return {"status": "ignored", "event_type": event_type}

        data = event.get("data")
        if not isinstance(data, dict):
            raise InvalidInputError("Webhook event has no data", event_type=event_type)

        result = await handler(data)
        metrics.record_webhook_event(event_type, result["status"])
        return result

    async def handle_charge_success(self, data: Dict[str, Any]) -> Dict[str, Any]:
        reference = str(data.get("reference") or "").strip()
        if not reference:
            raise InvalidInputError("Webhook event has no reference")

        paid_at = parse_provider_datetime(data.get("paid_at"))
        payment, transitioned = await self.store.mark_completed(reference, paid_at)
        if payment is None:
            logger.info("webhook_payment_not_found", reference=reference)
            return {"status": "not_found", "reference": reference}

        # Replays and late deliveries for settled payments leave the projection alone
        if not transitioned:
            logger.info(
                "webhook_payment_already_settled",
                reference=reference,
                payment_status=payment.status,
            )
            return {
                "status": "already_completed",
                "reference": reference,
                "payment_id": str(payment.id),
                "payment_status": payment.status,
            }

        try:
            await self.users.apply_payment_projection(payment.user_id, payment, newer_only=True)
        except ProjectionUpdateFailedError as e:
            metrics.record_projection_failure()
            logger.error(
                "projection_update_failed",
                reference=reference,
                payment_id=str(payment.id),
                error=e.message,
            )

        logger.info("webhook_charge_success_processed", reference=reference)
        return {
            "status": "processed",
            "reference": reference,
            "payment_id": str(payment.id),
            "payment_status": payment.status,
        }
