"""
Account registration, login and identity resolution.

Input shape (username charset, password strength) is validated by the API
schemas; this layer enforces uniqueness and account state.
"""
import uuid
from typing import Any, Dict

import structlog
from sqlalchemy.exc import IntegrityError

from easypass.config import Settings
from easypass.core.exceptions import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    UserNotFoundError,
)
from easypass.core.payment_queries import build_pagination
from easypass.core.payment_store import MAX_PAGE_SIZE, parse_uuid
from easypass.core.security import (
    check_password,
    create_access_token,
    decode_access_token,
    generate_qr_token,
    hash_password,
)
from easypass.core.user_directory import UserDirectory, to_public_dict
from easypass.database.models import User

logger = structlog.get_logger(__name__)


class AccountService:
    """Registers users, authenticates them and resolves token identities."""

    def __init__(self, settings: Settings, users: UserDirectory):
        self.settings = settings
        self.users = users

    def _session_payload(self, user: User) -> Dict[str, Any]:
        return {
            "user": to_public_dict(user),
            "token": create_access_token(self.settings, str(user.id)),
        }

    async def register(self, username: str, email: str, password: str) -> Dict[str, Any]:
        """
        Create a user with a fresh QR token.

        Returns:
            Dict[str, Any]: Public user fields and an access token

        Raises:
            ConflictError: If the username or email is already taken
        """
        username = username.strip()
        email = email.strip().lower()

        existing = await self.users.find_by_username_or_email(username, email)
        if existing is not None:
            field = "email" if existing.email == email else "username"
            raise ConflictError(f"User with this {field} already exists", field=field)

        user = User(
            id=uuid.uuid4(),
            username=username,
            email=email,
            password_hash=hash_password(password),
            qr_code_token=generate_qr_token(),
        )
        try:
            await self.users.create(user)
        except IntegrityError as e:
            # Lost a concurrent registration race
            raise ConflictError("User with this username or email already exists") from e

        logger.info("user_registered", user_id=str(user.id))
        return self._session_payload(user)

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        """
        Authenticate by email and password.

        Raises:
            AuthenticationError: On unknown email or wrong password
            ForbiddenError: If the account is suspended or deleted
        """
        user = await self.users.find_by_email(email)
        if user is None or not check_password(password, user.password_hash):
            logger.warning("login_failed", email_domain=email.rpartition("@")[2])
            raise AuthenticationError("Invalid email or password")
        if user.is_deleted or user.is_suspended:
            logger.warning("login_blocked", user_id=str(user.id))
            raise ForbiddenError("Account is deactivated")

        logger.info("user_logged_in", user_id=str(user.id))
        return self._session_payload(user)

    async def authenticate(self, token: str) -> User:
        """
        Resolve the user behind an access token.

        Raises:
            AuthenticationError: If the token is invalid or the user is gone
            ForbiddenError: If the account is suspended
        """
        payload = decode_access_token(self.settings, token)
        try:
            user_id = uuid.UUID(str(payload["sub"]))
        except ValueError as e:
            raise AuthenticationError("Not authorized, invalid token") from e

        user = await self.users.find_by_id(user_id)
        if user is None:
            raise AuthenticationError("Not authorized, user not found")
        if user.is_suspended:
            raise ForbiddenError("Account is suspended")
        return user

    async def get_user(self, user_id: str | uuid.UUID) -> User:
        user = await self.users.find_by_id(parse_uuid(user_id, "user ID"))
        if user is None:
            raise UserNotFoundError("User not found")
        return user

    async def get_by_qr_token(self, qr_code_token: str) -> User:
        user = await self.users.find_by_qr_token(qr_code_token)
        if user is None:
            raise UserNotFoundError("User not found")
        return user

    async def list_users(self, actor: User, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """
        Page through all active accounts.

        Raises:
            ForbiddenError: If the caller is not an administrator
        """
        if not actor.is_admin:
            logger.warning("user_listing_denied", user_id=str(actor.id))
            raise ForbiddenError("Not authorized as an admin")

        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        users, total = await self.users.list_users(page, limit)
        return {
            "data": [to_public_dict(user) for user in users],
            "pagination": build_pagination(total, page, limit),
        }
