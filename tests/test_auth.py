"""
Integration tests for registration, login and token handling.
"""
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
import pytest
from httpx import AsyncClient

from easypass.core.security import create_access_token

from .conftest import TEST_PASSWORD

QR_TOKEN_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def registration(**overrides: Any) -> Dict[str, Any]:
    body = {"username": "ada_l", "email": "Ada@Example.com", "password": TEST_PASSWORD}
    body.update(overrides)
    return body


class TestRegister:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_register_issues_tokens(self, client: AsyncClient) -> None:
        response = await client.post("/api/auth/register", json=registration())

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["token"]
        assert body["user"]["email"] == "ada@example.com"
        assert body["user"]["payment_status"] == "none"
        assert QR_TOKEN_PATTERN.match(body["user"]["qr_code_token"])
        assert "password_hash" not in body["user"]
        assert "token=" in response.headers["set-cookie"]
        assert "httponly" in response.headers["set-cookie"].lower()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_duplicate_email_is_rejected(self, client: AsyncClient) -> None:
        await client.post("/api/auth/register", json=registration())

        response = await client.post(
            "/api/auth/register", json=registration(username="someone_else")
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "conflict"
        assert "email" in response.json()["message"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_duplicate_username_is_rejected(self, client: AsyncClient) -> None:
        await client.post("/api/auth/register", json=registration())

        response = await client.post(
            "/api/auth/register", json=registration(email="other@example.com")
        )

        assert response.status_code == 400
        assert "username" in response.json()["message"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"password": "alllowercase1!"},
            {"password": "NoDigits!!"},
            {"password": "NoSpecial1"},
            {"password": "S1!a"},
            {"username": "has space"},
            {"username": "ab"},
            {"email": "not-an-email"},
        ],
    )
    async def test_invalid_input_is_400(
        self, client: AsyncClient, overrides: Dict[str, Any]
    ) -> None:
        response = await client.post("/api/auth/register", json=registration(**overrides))

        assert response.status_code == 400
        assert response.json()["error_code"] == "invalid_input"
        assert response.json()["errors"]


class TestLogin:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_login_success(self, client: AsyncClient, make_user: Any) -> None:
        user = await make_user(email="grace@example.com")

        response = await client.post(
            "/api/auth/login", json={"email": "GRACE@example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 200
        assert response.json()["user"]["id"] == str(user.id)
        assert "token=" in response.headers["set-cookie"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_wrong_password_is_401(self, client: AsyncClient, make_user: Any) -> None:
        await make_user(email="grace@example.com")

        response = await client.post(
            "/api/auth/login", json={"email": "grace@example.com", "password": "Wr0ng$pass"}
        )

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid email or password"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_email_is_401(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/auth/login", json={"email": "nobody@example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 401

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_suspended_account_is_403(self, client: AsyncClient, make_user: Any) -> None:
        await make_user(email="grace@example.com", is_suspended=True)

        response = await client.post(
            "/api/auth/login", json={"email": "grace@example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 403


class TestTokens:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_me_with_bearer(
        self, client: AsyncClient, auth_headers: Dict[str, str], user: Any
    ) -> None:
        response = await client.get("/api/users/me", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["id"] == str(user.id)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_me_with_cookie(
        self, client: AsyncClient, test_settings: Any, user: Any
    ) -> None:
        token = create_access_token(test_settings, str(user.id))

        response = await client.get("/api/users/me", headers={"Cookie": f"token={token}"})

        assert response.status_code == 200
        assert response.json()["data"]["username"] == user.username

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, client: AsyncClient) -> None:
        response = await client.get("/api/users/me")

        assert response.status_code == 401
        assert response.json()["message"] == "Not authorized, no token"
        assert response.json()["requires_auth"] is True

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_expired_token_is_401(
        self, client: AsyncClient, test_settings: Any, user: Any
    ) -> None:
        issued = datetime.now(timezone.utc) - timedelta(days=30)
        token = jwt.encode(
            {
                "sub": str(user.id),
                "iat": issued,
                "exp": issued + timedelta(days=1),
                "iss": test_settings.jwt_issuer,
                "aud": test_settings.jwt_audience,
            },
            test_settings.jwt_secret,
            algorithm="HS256",
        )

        response = await client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert "expired" in response.json()["message"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_token_signed_with_other_secret_is_401(
        self, client: AsyncClient, test_settings: Any, user: Any
    ) -> None:
        settings = test_settings.model_copy(update={"jwt_secret": "another-secret-" * 4})
        token = create_access_token(settings, str(user.id))

        response = await client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_deleted_user_is_401(
        self, client: AsyncClient, test_settings: Any, make_user: Any
    ) -> None:
        deleted = await make_user(is_deleted=True)
        token = create_access_token(test_settings, str(deleted.id))

        response = await client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401


class TestUserLookups:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_qr_lookup_is_public(self, client: AsyncClient, user: Any) -> None:
        response = await client.get(f"/api/users/qr/{user.qr_code_token}")

        assert response.status_code == 200
        assert response.json()["data"]["id"] == str(user.id)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_qr_token_is_404(self, client: AsyncClient) -> None:
        response = await client.get(f"/api/users/qr/{'0' * 64}")

        assert response.status_code == 404
        assert response.json()["error_code"] == "user_not_found"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_user_by_id(
        self, client: AsyncClient, auth_headers: Dict[str, str], make_user: Any
    ) -> None:
        other = await make_user()

        found = await client.get(f"/api/users/{other.id}", headers=auth_headers)
        malformed = await client.get("/api/users/not-a-uuid", headers=auth_headers)

        assert found.status_code == 200
        assert found.json()["data"]["email"] == other.email
        assert malformed.status_code == 400


class TestUserListing:
    """GET /api/users"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_admin_lists_active_users(
        self, client: AsyncClient, test_settings: Any, make_user: Any
    ) -> None:
        admin = await make_user(is_admin=True)
        member = await make_user()
        await make_user(is_deleted=True)
        token = create_access_token(test_settings, str(admin.id))

        response = await client.get(
            "/api/users", params={"limit": 1}, headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["pagination"]["total"] == 2
        assert body["pagination"]["has_next_page"] is True
        assert len(body["data"]) == 1
        assert "password_hash" not in body["data"][0]

        second = await client.get(
            "/api/users", params={"page": 2, "limit": 1}, headers={"Authorization": f"Bearer {token}"}
        )
        listed = {body["data"][0]["id"], second.json()["data"][0]["id"]}
        assert listed == {str(admin.id), str(member.id)}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_non_admin_is_403(
        self, client: AsyncClient, auth_headers: Dict[str, str]
    ) -> None:
        response = await client.get("/api/users", headers=auth_headers)

        assert response.status_code == 403
        assert response.json()["error_code"] == "forbidden"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unauthenticated_is_401(self, client: AsyncClient) -> None:
        response = await client.get("/api/users")

        assert response.status_code == 401
