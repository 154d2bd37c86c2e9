"""
Payment record store.

Persists payments and enforces uniqueness on the provider reference. Each
operation runs in its own short-lived session so that no database resource
is held across a provider call.

The unique index on ``payments.reference`` is the only serialization point
between concurrent verifications of the same reference: the losing insert
rolls back and reads the winner's row.
"""
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError

from easypass.core.exceptions import DuplicateReferenceError, InvalidInputError
from easypass.database.connection import Database
from easypass.database.models import Payment, utcnow
from easypass.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

SORTABLE_FIELDS = {
    "created_at": Payment.created_at,
    "amount": Payment.amount,
    "status": Payment.status,
    "payment_method": Payment.payment_method,
}
DEFAULT_SORT = "-created_at"
MAX_PAGE_SIZE = 100


def parse_sort(sort_by: Optional[str]) -> Tuple[str, bool]:
    """
    Parse a ``[-]field`` sort expression.

    Returns:
        Tuple[str, bool]: Field name and whether the order is descending

    Raises:
        InvalidInputError: If the field is not sortable
    """
    expression = (sort_by or DEFAULT_SORT).strip()
    descending = expression.startswith("-")
    field_name = expression.lstrip("-")
    if field_name not in SORTABLE_FIELDS:
        raise InvalidInputError(
            f"Invalid sort field '{field_name}'. "
            f"Allowed: {', '.join(sorted(SORTABLE_FIELDS))}",
            sort_by=sort_by,
        )
    return field_name, descending


def parse_uuid(value: str | uuid.UUID, label: str = "ID") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise InvalidInputError(f"Invalid {label} format", value=str(value))


class PaymentStore:
    """Data access for the ``payments`` table."""

    def __init__(self, database: Database):
        self.database = database

    async def find_by_reference(self, reference: str) -> Optional[Payment]:
        async with self.database.session() as session:
            result = await session.execute(
                select(Payment).where(Payment.reference == reference)
            )
            return result.scalar_one_or_none()

    async def insert(self, payment: Payment) -> Payment:
        """
        Insert a new payment row.

        Args:
            payment: Transient payment instance

        Returns:
            Payment: The stored payment

        Raises:
            DuplicateReferenceError: If another row already holds the reference
        """
        conflict: Optional[IntegrityError] = None
        async with self.database.session() as session:
            session.add(payment)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                conflict = e

        if conflict is not None:
            # Only a reference collision is recoverable
            if await self.find_by_reference(payment.reference) is not None:
                raise DuplicateReferenceError(payment.reference) from conflict
            raise conflict

        logger.info(
            "payment_recorded",
            payment_id=str(payment.id),
            reference=payment.reference,
            user_id=str(payment.user_id),
            amount=str(payment.amount),
            currency=payment.currency,
        )
        return payment

    async def insert_or_get(self, payment: Payment) -> Tuple[Payment, bool]:
        """
        Insert a payment unless its reference is already recorded.

        An existing row is returned unchanged; nothing about the new
        candidate is merged into it.

        Returns:
            Tuple[Payment, bool]: Stored payment and whether it was created here
        """
        existing = await self.find_by_reference(payment.reference)
        if existing is not None:
            metrics.record_dedup_hit("existing")
            logger.info(
                "payment_deduplicated",
                reference=payment.reference,
                payment_id=str(existing.id),
                source="existing",
            )
            return existing, False

        try:
            return await self.insert(payment), True
        except DuplicateReferenceError:
            winner = await self.find_by_reference(payment.reference)
            if winner is None:
                raise
            metrics.record_dedup_hit("race")
            logger.info(
                "payment_deduplicated",
                reference=payment.reference,
                payment_id=str(winner.id),
                source="race",
            )
            return winner, False

    async def find_by_user(
        self,
        user_id: uuid.UUID,
        page: int = 1,
        limit: int = 10,
        sort_by: Optional[str] = DEFAULT_SORT,
        max_limit: int = MAX_PAGE_SIZE,
    ) -> Tuple[List[Payment], int]:
        """
        List a user's payments, one page at a time.

        Args:
            user_id: Owner of the payments
            page: 1-based page number
            limit: Page size (1..max_limit)
            sort_by: ``field`` or ``-field`` from the sortable allow-list
            max_limit: Largest accepted page size

        Returns:
            Tuple[List[Payment], int]: Page items and total row count
        """
        if page < 1:
            raise InvalidInputError("Page must be greater than or equal to 1", page=page)
        if not 1 <= limit <= max_limit:
            raise InvalidInputError(f"Limit must be between 1 and {max_limit}", limit=limit)
        field_name, descending = parse_sort(sort_by)
        column = SORTABLE_FIELDS[field_name]
        order = column.desc() if descending else column.asc()

        async with self.database.session() as session:
            total = await session.scalar(
                select(func.count()).select_from(Payment).where(Payment.user_id == user_id)
            )
            result = await session.execute(
                select(Payment)
                .where(Payment.user_id == user_id)
                .order_by(order, Payment.id)
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return list(result.scalars().all()), int(total or 0)

    async def find_by_id_for_user(
        self,
        payment_id: str | uuid.UUID,
        user_id: uuid.UUID,
        qr_code_token: Optional[str],
    ) -> Optional[Payment]:
        """Return the payment if it belongs to the user id or the user's QR token."""
        payment_uuid = parse_uuid(payment_id, "payment ID")
        ownership = [Payment.user_id == user_id]
        if qr_code_token:
            ownership.append(Payment.qr_code_token == qr_code_token)

        async with self.database.session() as session:
            result = await session.execute(
                select(Payment).where(Payment.id == payment_uuid, or_(*ownership))
            )
            return result.scalar_one_or_none()

    async def find_latest_completed_for_user(self, user_id: uuid.UUID) -> Optional[Payment]:
        async with self.database.session() as session:
            result = await session.execute(
                select(Payment)
                .where(Payment.user_id == user_id, Payment.status == "completed")
                .order_by(Payment.paid_at.desc(), Payment.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def exists_completed_since(self, user_id: uuid.UUID, since: datetime) -> bool:
        async with self.database.session() as session:
            result = await session.execute(
                select(Payment.id)
                .where(
                    Payment.user_id == user_id,
                    Payment.status == "completed",
                    Payment.paid_at >= since,
                )
                .limit(1)
            )
            return result.first() is not None

    async def mark_completed(
        self, reference: str, paid_at: Optional[datetime] = None
    ) -> Tuple[Optional[Payment], bool]:
        """
        Transition a pending payment to completed.

        Rows in any other status are returned untouched.

        Returns:
            Tuple[Optional[Payment], bool]: The payment (None if the reference
            is unknown) and whether this call moved it from pending to completed
        """
        now = utcnow()
        async with self.database.session() as session:
            result = await session.execute(
                update(Payment)
                .where(Payment.reference == reference, Payment.status == "pending")
                .values(
                    status="completed",
                    paid_at=paid_at or now,
                    processed_at=now,
                    updated_at=now,
                )
            )
            transitioned = result.rowcount == 1
            await session.commit()
            result = await session.execute(
                select(Payment).where(Payment.reference == reference)
            )
            payment = result.scalar_one_or_none()

        if transitioned and payment is not None:
            logger.info(
                "payment_marked_completed",
                reference=reference,
                payment_id=str(payment.id),
            )
        return payment, transitioned
