"""Password hashing (bcrypt) and JWT issuance (python-jose)."""

import logging
import os
import secrets
import warnings
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from processor.errors import ExpiredTokenError, InvalidTokenError

logger = logging.getLogger("pubmarket.credentials")

JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))


def load_jwt_secret() -> str:
    """JWT_SECRET_KEY from the environment; an ephemeral key outside production."""
    secret = os.getenv("JWT_SECRET_KEY", "")
    if secret:
        return secret
    if os.getenv("ENVIRONMENT", "").lower() == "production":
        raise RuntimeError("JWT_SECRET_KEY must be set in production!")
    warnings.warn("JWT_SECRET_KEY was not set - tokens will not survive a restart")
    return secrets.token_urlsafe(32)


class CredentialService:
    def __init__(self, secret_key: str | None = None, expire_hours: int = JWT_EXPIRE_HOURS):
        self._secret_key = secret_key
        self.expire_hours = expire_hours

    @property
    def secret_key(self) -> str:
        # resolved on first token operation; hashing never needs it
        if not self._secret_key:
            self._secret_key = load_jwt_secret()
        return self._secret_key

    @staticmethod
    def hash_password(password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    @staticmethod
    def verify_password(password: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            # malformed hash in the store
            return False

    def issue_token(self, user_id: int, role: str | None = None) -> str:
        expire = datetime.now(timezone.utc) + timedelta(hours=self.expire_hours)
        payload = {"sub": str(user_id), "exp": expire}
        if role:
            payload["role"] = role
        return jwt.encode(payload, self.secret_key, algorithm=JWT_ALGORITHM)

    def verify_token(self, token: str) -> int:
        """Return the user id carried by ``token``."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[JWT_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise ExpiredTokenError("Token expired") from exc
        except JWTError as exc:
            raise InvalidTokenError("Invalid token") from exc
        subject = payload.get("sub")
        try:
            return int(subject)
        except (TypeError, ValueError) as exc:
            raise InvalidTokenError("Invalid token payload") from exc
