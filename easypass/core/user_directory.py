"""
User lookups and the denormalized payment-status projection.

The projection (``payment_status``, ``last_payment_*``, ``payment_type``)
reflects the most recently recorded payment. It is a cache of the payments
table: if it cannot be written, the payment row stays the source of truth.
"""
import uuid
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from easypass.core.exceptions import ProjectionUpdateFailedError
from easypass.database.connection import Database
from easypass.database.models import Payment, User, as_utc, utcnow

logger = structlog.get_logger(__name__)


def to_public_dict(user: User) -> Dict[str, Any]:
    """Serialize a user without credentials or reset-token fields."""
    return {
        "id": str(user.id),
        "username": user.username,
        "email": user.email,
        "qr_code_token": user.qr_code_token,
        "is_admin": user.is_admin,
        "is_suspended": user.is_suspended,
        "token_version": user.token_version,
        "payment_status": user.payment_status,
        "last_payment_date": as_utc(user.last_payment_date),
        "last_payment_amount": user.last_payment_amount,
        "last_payment_currency": user.last_payment_currency,
        "payment_type": user.payment_type,
        "created_at": as_utc(user.created_at),
        "updated_at": as_utc(user.updated_at),
    }


class UserDirectory:
    """Data access for the ``users`` table."""

    def __init__(self, database: Database):
        self.database = database

    async def find_by_id(self, user_id: uuid.UUID, include_deleted: bool = False) -> Optional[User]:
        async with self.database.session() as session:
            stmt = select(User).where(User.id == user_id)
            if not include_deleted:
                stmt = stmt.where(User.is_deleted.is_(False))
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def find_by_email(self, email: str) -> Optional[User]:
        async with self.database.session() as session:
            result = await session.execute(
                select(User).where(User.email == email.strip().lower())
            )
            return result.scalar_one_or_none()

    async def find_by_username_or_email(self, username: str, email: str) -> Optional[User]:
        async with self.database.session() as session:
            result = await session.execute(
                select(User).where(
                    or_(
                        func.lower(User.username) == username.strip().lower(),
                        User.email == email.strip().lower(),
                    )
                )
            )
            return result.scalars().first()

    async def find_by_qr_token(self, qr_code_token: str) -> Optional[User]:
        async with self.database.session() as session:
            result = await session.execute(
                select(User).where(
                    User.qr_code_token == qr_code_token,
                    User.is_deleted.is_(False),
                )
            )
            return result.scalar_one_or_none()

    async def create(self, user: User) -> User:
        async with self.database.session() as session:
            session.add(user)
            await session.commit()
        logger.info("user_created", user_id=str(user.id), username=user.username)
        return user

    async def list_users(self, page: int = 1, limit: int = 20) -> Tuple[List[User], int]:
        """Page through users that are not deleted, oldest first."""
        active = User.is_deleted.is_(False)
        async with self.database.session() as session:
            total = await session.scalar(select(func.count()).select_from(User).where(active))
            result = await session.execute(
                select(User)
                .where(active)
                .order_by(User.created_at.asc(), User.id)
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return list(result.scalars().all()), int(total or 0)

    async def apply_payment_projection(
        self, user_id: uuid.UUID, payment: Payment, newer_only: bool = False
    ) -> bool:
        """
        Point the user's projection at a recorded payment.

        Runs in its own transaction, after the payment insert has committed.

        Args:
            user_id: User to update
            payment: The stored payment (not the verification candidate)
            newer_only: Leave the projection alone if it already points at a
                later payment

        Returns:
            bool: False if the update was skipped because of ``newer_only``

        Raises:
            ProjectionUpdateFailedError: If the update cannot be written
        """
        payment_date = payment.paid_at or payment.created_at
        stmt = update(User).where(User.id == user_id)
        if newer_only:
            stmt = stmt.where(
                or_(User.last_payment_date.is_(None), User.last_payment_date <= payment_date)
            )

        try:
            async with self.database.session() as session:
                result = await session.execute(
                    stmt.values(
                        payment_status="active",
                        payment_type="one-time",
                        last_payment_date=payment_date,
                        last_payment_amount=payment.amount,
                        last_payment_currency=payment.currency,
                        updated_at=utcnow(),
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise ProjectionUpdateFailedError(
                "Could not update user payment status",
                user_id=str(user_id),
                reference=payment.reference,
                error=str(e),
            ) from e

        if result.rowcount == 0:
            if newer_only and await self.find_by_id(user_id, include_deleted=True) is not None:
                logger.info(
                    "user_payment_projection_kept",
                    user_id=str(user_id),
                    reference=payment.reference,
                )
                return False
            raise ProjectionUpdateFailedError(
                "User disappeared before payment status update",
                user_id=str(user_id),
                reference=payment.reference,
            )

        logger.info(
            "user_payment_projection_updated",
            user_id=str(user_id),
            reference=payment.reference,
            amount=str(payment.amount),
        )
        return True
