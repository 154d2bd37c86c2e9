"""
Pytest configuration and fixtures.
"""
import uuid
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

from easypass.api.main import create_app
from easypass.config import Settings
from easypass.core.payment_store import PaymentStore
from easypass.core.payment_verifier import PaymentVerifier
from easypass.core.security import create_access_token, generate_qr_token, hash_password
from easypass.core.user_directory import UserDirectory
from easypass.database.connection import Database
from easypass.database.models import User
from easypass.integrations.paystack_client import PaystackClient

TEST_PASSWORD = "Sup3r$ecret"

ProviderHandler = Callable[[httpx.Request], httpx.Response]


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast tests without the HTTP layer")
    config.addinivalue_line("markers", "integration: tests through the FastAPI app")
    config.addinivalue_line("markers", "race: concurrent verification scenarios")


def paystack_payload(
    reference: str,
    amount: int = 250000,
    status: str = "success",
    currency: str = "NGN",
    channel: str = "card",
    **overrides: Any,
) -> Dict[str, Any]:
    """Body of a Paystack ``GET /transaction/verify/{reference}`` answer."""
    data: Dict[str, Any] = {
        "id": 4099260516,
        "reference": reference,
        "status": status,
        "amount": amount,
        "currency": currency,
        "channel": channel,
        "paid_at": "2024-06-01T10:15:00.000Z",
        "fees": 3750,
        "ip_address": "41.58.1.20",
        "metadata": {"cart_id": 398, "custom_fields": [{"display_name": "Invoice"}]},
        "customer": {"id": 181873746, "email": "ada@example.com"},
        "authorization": {"authorization_code": "AUTH_xyz", "last4": "4081"},
    }
    data.update(overrides)
    return {"status": True, "message": "Verification successful", "data": data}


class ProviderStub:
    """Records Paystack requests and answers them with a configurable handler."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.handler: Optional[ProviderHandler] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.handler is not None:
            return self.handler(request)
        reference = request.url.path.rsplit("/", 1)[-1]
        return httpx.Response(200, json=paystack_payload(reference))

    @property
    def call_count(self) -> int:
        return len(self.requests)


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        paystack_secret_key="sk_test_fake_key_for_testing",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'easypass_test.db'}",
        jwt_secret="test-jwt-secret-0123456789abcdef0123456789abcdef",
        app_name="easypass-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
    )


@pytest_asyncio.fixture
async def database(test_settings: Settings) -> AsyncGenerator[Database, Any]:
    """File-backed SQLite database with serialized write transactions."""
    engine = create_async_engine(test_settings.database_url, connect_args={"timeout": 30})

    # Take the write lock at BEGIN so concurrent sessions queue up instead
    # of failing lock upgrades
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    db = Database(test_settings, engine=engine)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def store(database: Database) -> PaymentStore:
    return PaymentStore(database)


@pytest.fixture
def users(database: Database) -> UserDirectory:
    return UserDirectory(database)


@pytest.fixture
def provider_stub() -> ProviderStub:
    return ProviderStub()


@pytest_asyncio.fixture
async def paystack_client(
    test_settings: Settings, provider_stub: ProviderStub
) -> AsyncGenerator[PaystackClient, Any]:
    """Paystack client whose HTTP traffic goes to ``provider_stub``."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(provider_stub))
    yield PaystackClient(test_settings, http_client=http_client)
    await http_client.aclose()


@pytest.fixture
def verifier(
    test_settings: Settings,
    store: PaymentStore,
    users: UserDirectory,
    paystack_client: PaystackClient,
) -> PaymentVerifier:
    return PaymentVerifier(test_settings, store, users, paystack_client)


@pytest.fixture
def make_user(users: UserDirectory) -> Callable[..., Any]:
    """Factory for persisted users."""

    async def _make_user(
        username: Optional[str] = None,
        email: Optional[str] = None,
        password: str = TEST_PASSWORD,
        **fields: Any,
    ) -> User:
        suffix = uuid.uuid4().hex[:8]
        user = User(
            id=uuid.uuid4(),
            username=username or f"user_{suffix}",
            email=email or f"user_{suffix}@example.com",
            password_hash=hash_password(password),
            qr_code_token=generate_qr_token(),
            **fields,
        )
        return await users.create(user)

    return _make_user


@pytest_asyncio.fixture
async def user(make_user: Callable[..., Any]) -> User:
    return await make_user()


@pytest.fixture
def auth_headers(test_settings: Settings, user: User) -> Dict[str, str]:
    token = create_access_token(test_settings, str(user.id))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def app(test_settings: Settings, database: Database, paystack_client: PaystackClient) -> FastAPI:
    return create_app(settings=test_settings, database=database, provider=paystack_client)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
