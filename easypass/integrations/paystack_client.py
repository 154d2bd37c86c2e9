"""
Paystack API client for verify-by-reference.

Implements:
- Lazy secret-key check (no key, no call)
- Bounded timeout, no redirects, no automatic retries
- Error classification (unreachable vs. rejected)
- Normalization of the transaction payload
"""
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
import structlog

from easypass.config import Settings
from easypass.core.exceptions import (
    ConfigurationError,
    ProviderRejectedError,
    ProviderUnavailableError,
)
from easypass.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

USER_AGENT = "EasyPass/1.0"

# Paystack transaction status -> local payment status
STATUS_MAP = {
    "success": "completed",
    "failed": "failed",
}


@dataclass(frozen=True)
class ProviderTransaction:
    """Normalized view of a Paystack transaction."""

    reference: str
    status: str  # success | failed | pending (provider wording)
    amount: int  # minor units
    currency: str
    channel: str
    paid_at: Optional[datetime]
    provider_transaction_id: Optional[str] = None
    fees: Optional[int] = None
    ip_address: Optional[str] = None
    customer: Optional[Dict[str, Any]] = None
    authorization: Optional[Dict[str, Any]] = None
    raw_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_successful(self) -> bool:
        return self.status == "success"

    @property
    def local_status(self) -> str:
        return STATUS_MAP.get(self.status, "pending")


def parse_provider_datetime(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class PaystackClient:
    """
    Client for the Paystack transaction verification endpoint.

    The client never retries: a timeout or connection failure surfaces as
    ``ProviderUnavailableError`` and the caller decides whether to try again.
    """

    # Paystack reports amounts in kobo/cents
    MINOR_UNIT_DIVISOR = 100

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        """
        Initialize Paystack client.

        Args:
            settings: Application settings
            http_client: Optional preconfigured client (used by tests)
        """
        self.settings = settings
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            base_url=settings.paystack_base_url,
            timeout=httpx.Timeout(settings.paystack_timeout_seconds),
            follow_redirects=False,
        )

    @classmethod
    def to_major_units(cls, amount_minor: int) -> Decimal:
        """Convert a provider amount (minor units) to a 2dp decimal."""
        return (Decimal(amount_minor) / cls.MINOR_UNIT_DIVISOR).quantize(Decimal("0.01"))

    def _require_secret_key(self) -> str:
        secret_key = self.settings.paystack_secret_key
        if not secret_key:
            logger.error("paystack_secret_key_missing")
            raise ConfigurationError("Payment provider is not configured")
        return secret_key

    async def verify_transaction(self, reference: str) -> ProviderTransaction:
        """
        Fetch a transaction by reference.

        Args:
            reference: Provider reference returned by Paystack checkout

        Returns:
            ProviderTransaction: Normalized transaction

        Raises:
            ConfigurationError: If no secret key is configured
            ProviderUnavailableError: On timeout or transport failure
            ProviderRejectedError: On any non-2xx answer or malformed payload
        """
        secret_key = self._require_secret_key()
        url = f"{self.settings.paystack_base_url}/transaction/verify/{quote(reference, safe='')}"
        headers = {
            "Authorization": f"Bearer {secret_key}",
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        }

        start = time.perf_counter()
        try:
            response = await self.http_client.get(url, headers=headers, follow_redirects=False)
        except httpx.TimeoutException as e:
            duration = time.perf_counter() - start
            metrics.record_provider_call("verify_transaction", "timeout", duration)
            metrics.record_provider_error("provider_unavailable")
            logger.warning("paystack_timeout", reference=reference, duration=duration)
            raise ProviderUnavailableError(
                "Payment provider timed out", reference=reference
            ) from e
        except httpx.TransportError as e:
            duration = time.perf_counter() - start
            metrics.record_provider_call("verify_transaction", "unreachable", duration)
            metrics.record_provider_error("provider_unavailable")
            logger.warning("paystack_unreachable", reference=reference, error=str(e))
            raise ProviderUnavailableError(
                "Payment provider is unreachable", reference=reference
            ) from e

        duration = time.perf_counter() - start
        metrics.record_provider_call("verify_transaction", str(response.status_code), duration)

        body = self._parse_body(response)
        if not response.is_success:
            provider_message = body.get("message")
            metrics.record_provider_error("provider_rejected")
            logger.warning(
                "paystack_request_rejected",
                reference=reference,
                status_code=response.status_code,
                provider_message=provider_message,
            )
            raise ProviderRejectedError(
                provider_message or f"Payment provider returned HTTP {response.status_code}",
                status_code=response.status_code,
                provider_message=provider_message,
                reference=reference,
            )

        data = body.get("data")
        if not body.get("status") or not isinstance(data, dict):
            metrics.record_provider_error("provider_rejected")
            logger.warning("paystack_payload_invalid", reference=reference)
            raise ProviderRejectedError(
                body.get("message") or "Payment provider returned an invalid payload",
                status_code=response.status_code,
                provider_message=body.get("message"),
                reference=reference,
            )

        transaction = self._normalize(reference, data)
        logger.info(
            "paystack_transaction_verified",
            reference=reference,
            provider_status=transaction.status,
            amount_minor=transaction.amount,
            currency=transaction.currency,
            duration=duration,
        )
        return transaction

    @staticmethod
    def _parse_body(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _normalize(reference: str, data: Dict[str, Any]) -> ProviderTransaction:
        status = str(data.get("status") or "pending").lower()
        if status not in STATUS_MAP:
            status = "pending"

        try:
            amount = int(data.get("amount") or 0)
        except (TypeError, ValueError):
            raise ProviderRejectedError(
                "Payment provider returned an invalid amount", reference=reference
            )

        transaction_id = data.get("id")
        metadata = data.get("metadata")
        customer = data.get("customer")
        authorization = data.get("authorization")
        fees = data.get("fees")

        return ProviderTransaction(
            reference=str(data.get("reference") or reference),
            status=status,
            amount=amount,
            currency=str(data.get("currency") or "NGN").upper(),
            channel=str(data.get("channel") or "card"),
            paid_at=parse_provider_datetime(data.get("paid_at") or data.get("paidAt")),
            provider_transaction_id=str(transaction_id) if transaction_id is not None else None,
            fees=int(fees) if isinstance(fees, (int, float)) else None,
            ip_address=data.get("ip_address"),
            customer=customer if isinstance(customer, dict) else None,
            authorization=authorization if isinstance(authorization, dict) else None,
            raw_metadata=metadata if isinstance(metadata, dict) else {},
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self.http_client.aclose()
