"""Read-side payment queries: history, single payment, has-paid-today."""
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from easypass.config import Settings
from easypass.core.exceptions import NotFoundError
from easypass.core.payment_store import DEFAULT_SORT, PaymentStore
from easypass.database.models import Payment, User, as_utc

logger = structlog.get_logger(__name__)


def local_midnight_utc(now: Optional[datetime] = None) -> datetime:
    """Start of the server-local day containing ``now``, expressed in UTC."""
    local_now = (now or datetime.now(timezone.utc)).astimezone()
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)


def payment_to_dict(payment: Payment) -> Dict[str, Any]:
    return {
        "id": str(payment.id),
        "reference": payment.reference,
        "user_id": str(payment.user_id),
        "amount": payment.amount,
        "currency": payment.currency,
        "status": payment.status,
        "payment_method": payment.payment_method,
        "description": payment.description,
        "payment_type": payment.payment_type,
        "metadata": dict(payment.payment_metadata or {}),
        "paid_at": as_utc(payment.paid_at),
        "processed_at": as_utc(payment.processed_at),
        "created_at": as_utc(payment.created_at),
        "updated_at": as_utc(payment.updated_at),
    }


def build_pagination(total: int, page: int, limit: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "total": total,
        "total_pages": total_pages,
        "current_page": page,
        "has_next_page": page < total_pages,
        "has_previous_page": page > 1,
        "limit": limit,
    }


class PaymentQueries:
    """Answers the read endpoints for a resolved user."""

    def __init__(self, settings: Settings, store: PaymentStore):
        self.settings = settings
        self.store = store

    async def get_payment(self, payment_id: str, user: User) -> Dict[str, Any]:
        """
        Fetch one payment owned by the user (by id or QR token).

        Raises:
            InvalidInputError: Malformed payment id
            NotFoundError: Unknown payment or not visible to this user
        """
        payment = await self.store.find_by_id_for_user(payment_id, user.id, user.qr_code_token)
        if payment is None:
            raise NotFoundError("Payment not found or access denied", payment_id=payment_id)
        return payment_to_dict(payment)

    async def get_history(
        self,
        user: User,
        page: int = 1,
        limit: int = 10,
        sort_by: Optional[str] = DEFAULT_SORT,
    ) -> Dict[str, Any]:
        """
        Paginated payment history for a user.

        Page numbers below 1 are treated as 1 and the limit is clamped to
        ``1..history_max_limit``; an unknown sort field is an input error.
        """
        page = max(page, 1)
        limit = min(max(limit, 1), self.settings.history_max_limit)

        items, total = await self.store.find_by_user(
            user.id, page, limit, sort_by, max_limit=self.settings.history_max_limit
        )
        return {
            "data": [payment_to_dict(p) for p in items],
            "pagination": build_pagination(total, page, limit),
        }

    async def has_paid_today(self, user: User, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Whether the user has a completed payment since local midnight."""
        since = local_midnight_utc(now)
        paid_today = await self.store.exists_completed_since(user.id, since)
        latest = await self.store.find_latest_completed_for_user(user.id)

        logger.info(
            "has_paid_today_checked",
            user_id=str(user.id),
            has_paid_today=paid_today,
            since=since.isoformat(),
        )
        return {
            "has_paid_today": paid_today,
            "last_payment": (
                {
                    "id": str(latest.id),
                    "amount": latest.amount,
                    "currency": latest.currency,
                    "paid_at": as_utc(latest.paid_at),
                }
                if latest is not None
                else None
            ),
        }
