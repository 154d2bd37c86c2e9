"""
Pydantic schemas for API request/response models.
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]+$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class RegisterRequest(BaseModel):
    """Request schema for user registration."""

    username: str = Field(..., min_length=3, max_length=30, description="Unique username")
    email: str = Field(..., max_length=255, description="Email address")
    password: str = Field(..., min_length=8, description="Password (min 8 characters)")

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        v = v.strip()
        if not USERNAME_PATTERN.match(v):
            raise ValueError("Username can only contain letters, numbers, and underscores")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Please enter a valid email address")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Require upper, lower, digit and special characters."""
        if not re.search(r"[A-Z]", v):
            raise ValueError("Password must contain at least one uppercase letter")
        if not re.search(r"[a-z]", v):
            raise ValueError("Password must contain at least one lowercase letter")
        if not re.search(r"[0-9]", v):
            raise ValueError("Password must contain at least one number")
        if not re.search(r"[^A-Za-z0-9]", v):
            raise ValueError("Password must contain at least one special character")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"username": "ada_l", "email": "ada@example.com", "password": "Sup3r$ecret"}
            ]
        }
    }


class LoginRequest(BaseModel):
    """Request schema for login."""

    email: str = Field(..., min_length=3, description="Email address")
    password: str = Field(..., min_length=1, description="Password")

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class UserResponse(BaseModel):
    """Public user fields (no credentials)."""

    id: str
    username: str
    email: str
    qr_code_token: Optional[str] = None
    is_admin: bool = False
    is_suspended: bool = False
    token_version: int = 0
    payment_status: str = "none"
    last_payment_date: Optional[datetime] = None
    last_payment_amount: Optional[float] = None
    last_payment_currency: Optional[str] = None
    payment_type: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AuthResponse(BaseModel):
    """Response schema for register/login."""

    success: bool = True
    message: str
    token: str = Field(..., description="JWT access token")
    user: UserResponse


class UserEnvelope(BaseModel):
    success: bool = True
    data: UserResponse


class VerifyPaymentRequest(BaseModel):
    """
    Request schema for payment verification.

    Only the reference is read; amount and currency always come from the
    provider, so any other fields in the body are ignored.
    """

    reference: Optional[str] = Field(default=None, description="Paystack transaction reference")

    model_config = {
        "json_schema_extra": {"examples": [{"reference": "T123456789"}]},
    }


class PaymentSummary(BaseModel):
    id: str
    reference: str
    amount: float
    currency: str
    status: str
    paid_at: Optional[datetime] = None


class VerifyPaymentResponse(BaseModel):
    """Response schema for payment verification."""

    success: bool = True
    message: str
    payment: PaymentSummary
    user: UserResponse


class PaymentDetail(BaseModel):
    """Full payment record as returned by read endpoints."""

    id: str
    reference: str
    user_id: str
    amount: float
    currency: str
    status: str
    payment_method: str
    description: Optional[str] = None
    payment_type: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    paid_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaymentResponse(BaseModel):
    success: bool = True
    data: PaymentDetail


class Pagination(BaseModel):
    total: int
    total_pages: int
    current_page: int
    has_next_page: bool
    has_previous_page: bool
    limit: int


class UserListResponse(BaseModel):
    """Response schema for the admin user listing."""

    success: bool = True
    data: List[UserResponse]
    pagination: Pagination


class PaymentHistoryResponse(BaseModel):
    """Response schema for paginated payment history."""

    success: bool = True
    data: List[PaymentDetail]
    pagination: Pagination


class LastPayment(BaseModel):
    id: str
    amount: float
    currency: str
    paid_at: Optional[datetime] = None


class HasPaidTodayResponse(BaseModel):
    success: bool = True
    has_paid_today: bool
    last_payment: Optional[LastPayment] = None


class SimulatePaymentResponse(BaseModel):
    """A test reference ready to be submitted to the verify endpoint."""

    success: bool = True
    reference: str
    amount: float
    currency: str


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    success: bool = True
    status: str = Field(..., description="processed, already_completed, ignored or not_found")
    reference: Optional[str] = None
    payment_id: Optional[str] = None


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual check results")
    message: Optional[str] = Field(default=None, description="Status message")
