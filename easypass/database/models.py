"""SQLAlchemy database models for users and payments."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")
USER_PAYMENT_STATUSES = ("none", "active")


def status_check(column: str, statuses: Tuple[str, ...]) -> str:
    allowed = ", ".join(f"'{status}'" for status in statuses)
    return f"{column} IN ({allowed})"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite returns them without tzinfo)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# JSONB on PostgreSQL, plain JSON elsewhere
MetadataType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class User(Base):
    """
    Registered users.

    Carries the denormalized payment-status projection (``payment_status``,
    ``last_payment_*``, ``payment_type``), which is written only by the
    verification flow.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    username: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    qr_code_token: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_suspended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    token_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reset_password_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reset_password_expire: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Payment-status projection
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="none")
    last_payment_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_payment_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    last_payment_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    payment_type: Mapped[str | None] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    payments: Mapped[List["Payment"]] = relationship(back_populates="user")

    __table_args__ = (
        CheckConstraint(
            status_check("payment_status", USER_PAYMENT_STATUSES),
            name="valid_user_payment_status",
        ),
        Index("idx_users_username_email", "username", "email"),
    )

    def __repr__(self) -> str:
        """String representation of User."""
        return f"<User(id={self.id}, username={self.username}, payment_status={self.payment_status})>"


class Payment(Base):
    """
    Payment records table.

    One row per provider reference. ``reference`` is unique and is the only
    key used for deduplication.
    """

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reference: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    qr_code_token: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_type: Mapped[str] = mapped_column(String(20), nullable=False, default="one-time")
    # "metadata" is reserved on declarative classes
    payment_metadata: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", MetadataType, nullable=False, default=dict
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    user: Mapped[User] = relationship(back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="non_negative_amount"),
        CheckConstraint(status_check("status", PAYMENT_STATUSES), name="valid_payment_status"),
        CheckConstraint("length(currency) = 3", name="valid_currency"),
        Index("idx_payments_user_status", "user_id", "status"),
        Index("idx_payments_qr_status", "qr_code_token", "status"),
    )

    def __repr__(self) -> str:
        """String representation of Payment."""
        return (
            f"<Payment(id={self.id}, reference={self.reference}, "
            f"amount={self.amount}, status={self.status})>"
        )
