"""
API routes for authentication, users, payments and webhooks.

Services raise ``EasyPassError`` subclasses; the exception handlers in
``easypass.api.main`` turn them into responses based on the error kind.
"""
import secrets
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from easypass.config import Settings
from easypass.core.accounts import AccountService
from easypass.core.exceptions import ForbiddenError
from easypass.core.payment_queries import PaymentQueries
from easypass.core.payment_store import DEFAULT_SORT
from easypass.core.payment_verifier import PaymentVerifier
from easypass.core.user_directory import to_public_dict
from easypass.database.models import User
from easypass.integrations.paystack_client import PaystackClient
from easypass.integrations.paystack_webhooks import SIGNATURE_HEADER, PaystackWebhookHandler
from easypass.monitoring.health import HealthCheck

from .dependencies import (
    TOKEN_COOKIE,
    get_account_service,
    get_app_settings,
    get_current_user,
    get_health_check,
    get_payment_queries,
    get_payment_verifier,
    get_webhook_handler,
)
from .schemas import (
    AuthResponse,
    HasPaidTodayResponse,
    HealthCheckResponse,
    LoginRequest,
    PaymentHistoryResponse,
    PaymentResponse,
    RegisterRequest,
    SimulatePaymentResponse,
    UserEnvelope,
    UserListResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
user_router = APIRouter(prefix="/api/users", tags=["users"])
payment_router = APIRouter(prefix="/api/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
monitoring_router = APIRouter(tags=["monitoring"])


def _set_token_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        max_age=settings.jwt_expire_days * 24 * 60 * 60,
        path="/",
    )


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@auth_router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a user",
    description="Create an account and issue its QR token and an access token",
)
async def register(
    request: RegisterRequest,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    result = await accounts.register(request.username, request.email, request.password)
    _set_token_cookie(response, result["token"], settings)
    return {"success": True, "message": "User registered successfully", **result}


@auth_router.post(
    "/login",
    response_model=AuthResponse,
    summary="Log in",
    description="Authenticate by email and password",
)
async def login(
    request: LoginRequest,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    result = await accounts.login(request.email, request.password)
    _set_token_cookie(response, result["token"], settings)
    return {"success": True, "message": "Authentication successful", **result}


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@user_router.get(
    "",
    response_model=UserListResponse,
    summary="List users",
    description="Paginated list of active accounts (admin only)",
)
async def list_users(
    page: int = Query(default=1),
    limit: int = Query(default=20),
    current_user: User = Depends(get_current_user),
    accounts: AccountService = Depends(get_account_service),
) -> Dict[str, Any]:
    result = await accounts.list_users(current_user, page=page, limit=limit)
    return {"success": True, **result}


@user_router.get("/me", response_model=UserEnvelope, summary="Current user")
async def get_me(current_user: User = Depends(get_current_user)) -> Dict[str, Any]:
    return {"success": True, "data": to_public_dict(current_user)}


@user_router.get(
    "/qr/{token}",
    response_model=UserEnvelope,
    summary="Look up a user by QR token",
    description="Public lookup used by QR scanners",
)
async def get_user_by_qr_token(
    token: str,
    accounts: AccountService = Depends(get_account_service),
) -> Dict[str, Any]:
    user = await accounts.get_by_qr_token(token)
    return {"success": True, "data": to_public_dict(user)}


@user_router.get("/{user_id}", response_model=UserEnvelope, summary="Get a user by ID")
async def get_user(
    user_id: str,
    current_user: User = Depends(get_current_user),
    accounts: AccountService = Depends(get_account_service),
) -> Dict[str, Any]:
    user = await accounts.get_user(user_id)
    return {"success": True, "data": to_public_dict(user)}


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


@payment_router.post(
    "/verify",
    response_model=VerifyPaymentResponse,
    summary="Verify a payment",
    description=(
        "Verify a Paystack reference and record it once. Repeated or concurrent "
        "calls with the same reference return the same payment."
    ),
)
async def verify_payment(
    request: VerifyPaymentRequest,
    current_user: User = Depends(get_current_user),
    verifier: PaymentVerifier = Depends(get_payment_verifier),
) -> Dict[str, Any]:
    logger.info(
        "api_verify_payment_request",
        reference=request.reference,
        user_id=str(current_user.id),
    )
    result = await verifier.verify_payment(request.reference, current_user.id)
    return {"success": True, "message": "Payment verified successfully", **result}


@payment_router.get(
    "/history",
    response_model=PaymentHistoryResponse,
    summary="Payment history",
    description="Paginated payments of the current user; sort_by accepts [-]field",
)
async def get_payment_history(
    page: int = Query(default=1),
    limit: int = Query(default=10),
    sort_by: Optional[str] = Query(default=DEFAULT_SORT),
    current_user: User = Depends(get_current_user),
    queries: PaymentQueries = Depends(get_payment_queries),
) -> Dict[str, Any]:
    result = await queries.get_history(current_user, page=page, limit=limit, sort_by=sort_by)
    return {"success": True, **result}


@payment_router.get(
    "/has-paid-today/{user_id}",
    response_model=HasPaidTodayResponse,
    summary="Has the user paid today",
    description="Completed payment since server-local midnight",
)
async def has_paid_today(
    user_id: str,
    current_user: User = Depends(get_current_user),
    queries: PaymentQueries = Depends(get_payment_queries),
) -> Dict[str, Any]:
    if user_id.strip().lower() != str(current_user.id):
        raise ForbiddenError("Not authorized to access this resource")
    result = await queries.has_paid_today(current_user)
    return {"success": True, **result}


@payment_router.post(
    "/simulate",
    response_model=SimulatePaymentResponse,
    summary="Simulate a payment",
    description="Issue a test reference for the verify endpoint (non-production only)",
)
async def simulate_payment(
    current_user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    if settings.is_production:
        raise ForbiddenError("Payment simulation is disabled in production")

    reference = f"{settings.test_reference_prefixes[0]}{secrets.token_hex(8)}"
    logger.info("payment_simulation_issued", reference=reference, user_id=str(current_user.id))
    return {
        "success": True,
        "reference": reference,
        "amount": PaystackClient.to_major_units(settings.test_payment_amount_minor),
        "currency": settings.test_payment_currency,
    }


@payment_router.get(
    "/{payment_id}",
    response_model=PaymentResponse,
    summary="Get a payment",
    description="Payment owned by the current user (by id or QR token)",
)
async def get_payment(
    payment_id: str,
    current_user: User = Depends(get_current_user),
    queries: PaymentQueries = Depends(get_payment_queries),
) -> Dict[str, Any]:
    payment = await queries.get_payment(payment_id, current_user)
    return {"success": True, "data": payment}


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


@webhook_router.post(
    "/paystack",
    response_model=WebhookResponse,
    summary="Paystack webhook",
    description="Handle Paystack webhook events with signature verification",
)
async def paystack_webhook(
    request: Request,
    handler: PaystackWebhookHandler = Depends(get_webhook_handler),
) -> Dict[str, Any]:
    payload = await request.body()
    event = handler.verify_signature(payload, request.headers.get(SIGNATURE_HEADER))
    result = await handler.process_event(event)
    return {"success": True, **result}


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(
    response: Response,
    health_check: HealthCheck = Depends(get_health_check),
) -> Dict[str, Any]:
    result = await health_check.check_all()
    if result["status"] != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return result


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
