"""Identity store operations -- accounts, roles, promotion, password reset."""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database import Database
from database.models import PasswordResetToken, PublisherRequest, User, utcnow
from processor.catalog import SELF_SERVICE_ROLES, Role, parse_role
from processor.errors import (
    AuthenticationError,
    ConflictError,
    DeliveryError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from processor.listing_store import EMAIL_RE

logger = logging.getLogger("pubmarket.identity")

MIN_PASSWORD_LENGTH = 6
RESET_TOKEN_TTL = timedelta(hours=1)

# Roles that get lifted to publisher when one of their listings is approved.
PROMOTABLE_ROLES = tuple(r.value for r in Role if r.rank < Role.PUBLISHER.rank)


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "full_name": user.full_name,
        "email": user.email,
        "role": user.role,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def validate_account(full_name, email, password) -> tuple[str, str]:
    missing = [
        name for name, value in (("full_name", full_name), ("email", email), ("password", password))
        if not isinstance(value, str) or not value.strip()
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)
    email = email.strip().lower()
    invalid = []
    if not EMAIL_RE.match(email):
        invalid.append("email")
    if len(password) < MIN_PASSWORD_LENGTH:
        invalid.append("password")
    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)
    return full_name.strip(), email


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    return result.scalar_one_or_none()


async def insert_user(
    session: AsyncSession, credentials, full_name: str, email: str, password: str,
    role: str = Role.USER.value,
) -> User:
    """Add a user inside the caller's transaction. ConflictError on duplicate email."""
    full_name, email = validate_account(full_name, email, password)
    if await get_user_by_email(session, email) is not None:
        raise ConflictError("User already exists")
    user = User(
        full_name=full_name,
        email=email,
        hashed_password=credentials.hash_password(password),
        role=role,
    )
    session.add(user)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise ConflictError("User already exists") from exc
    return user


async def promote_to_publisher(session: AsyncSession, user_id: int) -> bool:
    """Raise ``user_id`` to publisher unless already publisher or above.

    Idempotent: a second call changes nothing and returns False.
    """
    result = await session.execute(
        update(User)
        .where(User.id == user_id, User.role.in_(PROMOTABLE_ROLES))
        .values(role=Role.PUBLISHER.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    promoted = result.rowcount == 1
    if promoted:
        logger.info("User %s promoted to publisher", user_id)
    return promoted


class IdentityService:
    """Account operations that own their own transaction."""

    def __init__(self, database: Database, credentials, notifier=None, client_url: str = ""):
        self.database = database
        self.credentials = credentials
        self.notifier = notifier
        self.client_url = client_url.rstrip("/")

    async def create_user(
        self, full_name, email, password, role: str | None = None, allow_any_role: bool = False,
    ) -> User:
        role_value = (role or Role.USER.value)
        parsed = parse_role(role_value)
        if parsed is None or (not allow_any_role and parsed.value not in SELF_SERVICE_ROLES):
            raise ValidationError(f"Role '{role_value}' cannot be selected", fields=["role"])
        async with self.database.transaction() as session:
            user = await insert_user(session, self.credentials, full_name, email, password, parsed.value)
        logger.info("Registered user %s (%s)", user.id, user.role)
        return user

    async def authenticate(self, email: str, password: str) -> User:
        async with self.database.session() as session:
            user = await get_user_by_email(session, email or "")
        if user is None or not self.credentials.verify_password(password or "", user.hashed_password):
            raise AuthenticationError("Invalid credentials")
        return user

    async def get_user(self, user_id: int) -> User:
        async with self.database.session() as session:
            user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def set_role(self, admin: User, user_id: int, role: str) -> User:
        parsed = parse_role(role)
        if parsed is None:
            raise ValidationError("Invalid role", fields=["role"])
        if admin.id == user_id:
            raise InvalidStateError("Cannot change your own role")
        async with self.database.transaction() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")
            user.role = parsed.value
        logger.info("Admin %s set role of user %s to %s", admin.id, user_id, parsed.value)
        return user

    async def delete_user(self, admin: User, user_id: int) -> int:
        """Delete a user and every listing they own. Returns deleted listing count."""
        if admin.id == user_id:
            raise InvalidStateError("Cannot delete your own account")
        async with self.database.transaction() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")
            listings = await session.execute(
                delete(PublisherRequest).where(PublisherRequest.owner_user_id == user_id)
            )
            await session.execute(delete(PasswordResetToken).where(PasswordResetToken.user_id == user_id))
            await session.delete(user)
        logger.info("Admin %s deleted user %s (%d listings)", admin.id, user_id, listings.rowcount)
        return listings.rowcount

    async def request_password_reset(self, email: str) -> bool:
        """Issue a one-hour reset token and hand it to the notifier.

        Returns False for unknown emails; callers must not reveal which. A failed
        delivery is logged, not raised, so it looks the same to the caller.
        """
        async with self.database.transaction() as session:
            user = await get_user_by_email(session, email or "")
            if user is None:
                return False
            await session.execute(
                update(PasswordResetToken)
                .where(PasswordResetToken.user_id == user.id, PasswordResetToken.used == False)  # noqa: E712
                .values(used=True)
            )
            token_value = secrets.token_urlsafe(48)
            session.add(PasswordResetToken(
                user_id=user.id,
                token=token_value,
                expires_at=utcnow() + RESET_TOKEN_TTL,
                used=False,
            ))

        reset_url = f"{self.client_url}/reset-password/{token_value}"
        if self.notifier is None:
            logger.info("Password reset token for %s: %s", user.email, token_value)
            return True
        try:
            await self.notifier.send(
                user.email,
                "Password Reset Request",
                "You requested a password reset for your account.\n\n"
                f"Reset your password here: {reset_url}\n\n"
                "This link will expire in 1 hour. If you didn't request this, ignore this email.",
            )
        except DeliveryError as exc:
            logger.error("Could not deliver password reset email to %s: %s", user.email, exc)
        return True

    async def reset_password(self, token: str, new_password: str) -> User:
        if not isinstance(new_password, str) or len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters", fields=["password"],
            )
        async with self.database.transaction() as session:
            result = await session.execute(
                select(PasswordResetToken).where(PasswordResetToken.token == token)
            )
            reset_token = result.scalar_one_or_none()
            if reset_token is None or reset_token.used or reset_token.expires_at < utcnow():
                raise ValidationError("Invalid or expired token", fields=["token"])
            user = await session.get(User, reset_token.user_id)
            if user is None:
                raise ValidationError("Invalid or expired token", fields=["token"])
            user.hashed_password = self.credentials.hash_password(new_password)
            reset_token.used = True
        logger.info("Password reset for user %s", user.id)
        return user
