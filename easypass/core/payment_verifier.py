"""
Payment verification orchestrator.

Given a provider reference and an authenticated user, produces exactly one
authoritative payment record for that reference and points the user's
payment-status projection at it. Safe under repeated and concurrent calls:
deduplication is keyed strictly on the reference and relies on the unique
index of the payments table, never on in-process locks.

Flow:
1. Validate input and the provider credential
2. Classify the reference (test shortcut vs. live provider verification)
3. Resolve the user
4. Dedup-insert the payment
5. Update the user projection unless it already points at a later
   payment (failure is logged, not surfaced)
6. Assemble the response
"""
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog

from easypass.config import Settings
from easypass.core.exceptions import (
    ConfigurationError,
    EasyPassError,
    InvalidInputError,
    ProjectionUpdateFailedError,
    ProviderRejectedError,
    UserNotFoundError,
)
from easypass.core.metadata import normalize_metadata
from easypass.core.payment_store import PaymentStore
from easypass.core.user_directory import UserDirectory, to_public_dict
from easypass.database.models import Payment, User, as_utc
from easypass.integrations.paystack_client import PaystackClient, ProviderTransaction
from easypass.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

TEST_PAYMENT_CHANNEL = "test_card"


def payment_summary(payment: Payment) -> Dict[str, Any]:
    """Payment fields returned to the verifying client."""
    return {
        "id": str(payment.id),
        "reference": payment.reference,
        "amount": payment.amount,
        "currency": payment.currency,
        "status": payment.status,
        "paid_at": as_utc(payment.paid_at),
    }


class PaymentVerifier:
    """
    Verifies provider references and records them idempotently.

    All collaborators are passed in at construction; nothing is read from
    module-level state.
    """

    def __init__(
        self,
        settings: Settings,
        store: PaymentStore,
        users: UserDirectory,
        provider: PaystackClient,
    ):
        self.settings = settings
        self.store = store
        self.users = users
        self.provider = provider

    def is_test_reference(self, reference: str) -> bool:
        """Test/simulation references never reach the provider."""
        return reference.startswith(tuple(self.settings.test_reference_prefixes))

    async def verify_payment(
        self, reference: Optional[str], user_id: Optional[uuid.UUID]
    ) -> Dict[str, Any]:
        """
        Verify a reference and record the payment once.

        Args:
            reference: Provider reference (or a test reference)
            user_id: Authenticated caller

        Returns:
            Dict[str, Any]: ``{"payment": ..., "user": ...}``

        Raises:
            InvalidInputError: Blank reference or no caller identity
            ConfigurationError: Provider secret key missing
            ProviderUnavailableError: Provider timed out or is unreachable
            ProviderRejectedError: Provider did not report a successful transaction
            UserNotFoundError: Caller does not resolve to an active user
        """
        start = time.perf_counter()
        reference = (reference or "").strip()
        mode = "unknown"

        try:
            if not reference:
                raise InvalidInputError("Payment reference is required")
            if user_id is None:
                raise InvalidInputError("Authenticated user is required")
            if not self.settings.paystack_secret_key:
                logger.error("payment_verification_not_configured", reference=reference)
                raise ConfigurationError(
                    "Payment verification service is not properly configured"
                )

            test_payment = self.is_test_reference(reference)
            mode = "test" if test_payment else "live"
            logger.info(
                "payment_verification_started",
                reference=reference,
                user_id=str(user_id),
                mode=mode,
            )

            if test_payment:
                candidate = self._build_test_payment(reference, user_id)
            else:
                transaction = await self.provider.verify_transaction(reference)
                if not transaction.is_successful:
                    raise ProviderRejectedError(
                        "Payment was not successful",
                        provider_status=transaction.status,
                        reference=reference,
                    )
                candidate = self._build_live_payment(reference, transaction, user_id)

            user = await self.users.find_by_id(user_id)
            if user is None:
                raise UserNotFoundError("User not found", user_id=str(user_id))
            candidate.qr_code_token = user.qr_code_token or ""

            payment, created = await self.store.insert_or_get(candidate)
            user = await self._refresh_projection(user, payment, newer_only=not created)

        except EasyPassError as e:
            metrics.record_verification(mode, e.kind.value, time.perf_counter() - start)
            logger.warning(
                "payment_verification_failed",
                reference=reference or None,
                user_id=str(user_id) if user_id else None,
                error_kind=e.kind.value,
                error=e.message,
            )
            raise

        result = "recorded" if created else "existing"
        metrics.record_verification(mode, result, time.perf_counter() - start)
        if created:
            metrics.record_payment_amount(payment.currency, float(payment.amount))
        logger.info(
            "payment_verification_completed",
            reference=reference,
            payment_id=str(payment.id),
            user_id=str(user_id),
            result=result,
            mode=mode,
        )

        return {
            "payment": payment_summary(payment),
            "user": to_public_dict(user),
        }

    async def _refresh_projection(
        self, user: User, payment: Payment, newer_only: bool = False
    ) -> User:
        """
        Apply the projection and re-read the user for the response.

        The payment row is already committed; a projection failure leaves
        it as the source of truth and the stale user is returned. A repeat
        verification of an older reference does not move the projection back.
        """
        try:
            await self.users.apply_payment_projection(user.id, payment, newer_only=newer_only)
        except ProjectionUpdateFailedError as e:
            metrics.record_projection_failure()
            logger.error(
                "projection_update_failed",
                user_id=str(user.id),
                reference=payment.reference,
                payment_id=str(payment.id),
                error=e.message,
                cause=e.details.get("error"),
            )
            return user

        refreshed = await self.users.find_by_id(user.id)
        return refreshed or user

    def _build_test_payment(self, reference: str, user_id: uuid.UUID) -> Payment:
        now = datetime.now(timezone.utc)
        amount = PaystackClient.to_major_units(self.settings.test_payment_amount_minor)
        return Payment(
            id=uuid.uuid4(),
            reference=reference,
            user_id=user_id,
            amount=amount,
            currency=self.settings.test_payment_currency,
            status="completed",
            payment_method=TEST_PAYMENT_CHANNEL,
            description=f"Payment via {TEST_PAYMENT_CHANNEL}",
            payment_type="one-time",
            payment_metadata=normalize_metadata(
                {
                    "is_test_payment": True,
                    "verified_at": now,
                    "test_reference": reference,
                    "test_user_id": str(user_id),
                }
            ),
            paid_at=now,
            processed_at=now,
        )

    def _build_live_payment(
        self, reference: str, transaction: ProviderTransaction, user_id: uuid.UUID
    ) -> Payment:
        now = datetime.now(timezone.utc)
        # Only scalar provider metadata is carried over verbatim
        metadata = normalize_metadata(transaction.raw_metadata, drop_structured=True)
        metadata.update(
            normalize_metadata(
                {
                    "paystack_transaction_id": transaction.provider_transaction_id,
                    "paystack_channel": transaction.channel,
                    "paystack_reference": transaction.reference,
                    "ip_address": transaction.ip_address,
                    "fees": (
                        PaystackClient.to_major_units(transaction.fees)
                        if transaction.fees is not None
                        else None
                    ),
                    "customer": transaction.customer,
                    "authorization": transaction.authorization,
                }
            )
        )
        amount: Decimal = PaystackClient.to_major_units(transaction.amount)
        return Payment(
            id=uuid.uuid4(),
            reference=reference,
            user_id=user_id,
            amount=amount,
            currency=transaction.currency,
            status=transaction.local_status,
            payment_method=transaction.channel,
            description=f"Payment via {transaction.channel}",
            payment_type="one-time",
            payment_metadata=metadata,
            paid_at=transaction.paid_at or now,
            processed_at=now,
        )
