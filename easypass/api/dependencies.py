"""
FastAPI dependencies.

Long-lived collaborators (settings, database, provider client) live on
``app.state`` and are built once by ``create_app``; request-scoped services
are cheap wrappers constructed per request.
"""
from typing import Optional

from fastapi import Depends, Header, Request

from easypass.config import Settings
from easypass.core.accounts import AccountService
from easypass.core.exceptions import AuthenticationError
from easypass.core.payment_queries import PaymentQueries
from easypass.core.payment_store import PaymentStore
from easypass.core.payment_verifier import PaymentVerifier
from easypass.core.user_directory import UserDirectory
from easypass.database.connection import Database
from easypass.database.models import User
from easypass.integrations.paystack_client import PaystackClient
from easypass.integrations.paystack_webhooks import PaystackWebhookHandler
from easypass.monitoring.health import HealthCheck

TOKEN_COOKIE = "token"


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_provider(request: Request) -> PaystackClient:
    return request.app.state.provider


def get_user_directory(database: Database = Depends(get_database)) -> UserDirectory:
    return UserDirectory(database)


def get_payment_store(database: Database = Depends(get_database)) -> PaymentStore:
    return PaymentStore(database)


def get_account_service(
    settings: Settings = Depends(get_app_settings),
    users: UserDirectory = Depends(get_user_directory),
) -> AccountService:
    return AccountService(settings, users)


def get_payment_verifier(
    settings: Settings = Depends(get_app_settings),
    store: PaymentStore = Depends(get_payment_store),
    users: UserDirectory = Depends(get_user_directory),
    provider: PaystackClient = Depends(get_provider),
) -> PaymentVerifier:
    return PaymentVerifier(settings, store, users, provider)


def get_payment_queries(
    settings: Settings = Depends(get_app_settings),
    store: PaymentStore = Depends(get_payment_store),
) -> PaymentQueries:
    return PaymentQueries(settings, store)


def get_webhook_handler(
    settings: Settings = Depends(get_app_settings),
    store: PaymentStore = Depends(get_payment_store),
    users: UserDirectory = Depends(get_user_directory),
) -> PaystackWebhookHandler:
    return PaystackWebhookHandler(settings, store, users)


def get_health_check(
    settings: Settings = Depends(get_app_settings),
    database: Database = Depends(get_database),
) -> HealthCheck:
    return HealthCheck(settings, database)


def extract_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    """Bearer header first, then the ``token`` cookie."""
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    return request.cookies.get(TOKEN_COOKIE) or None


async def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    accounts: AccountService = Depends(get_account_service),
) -> User:
    """
    Resolve the authenticated user.

    Raises:
        AuthenticationError: No token, invalid token, or deleted user
        ForbiddenError: Suspended user
    """
    token = extract_token(request, authorization)
    if not token:
        raise AuthenticationError("Not authorized, no token")
    return await accounts.authenticate(token)
