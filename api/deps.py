"""Request-scoped dependencies: services from app.state and JWT authentication."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.services.credentials import CredentialService
from database import Database
from database.models import User
from processor.catalog import Role, role_at_least
from processor.errors import ExpiredTokenError, InvalidTokenError, NotFoundError
from processor.identity import IdentityService
from processor.lifecycle import PublisherRequestService

_bearer_scheme = HTTPBearer(auto_error=False)


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_credentials(request: Request) -> CredentialService:
    return request.app.state.credentials


def get_identity(request: Request) -> IdentityService:
    return request.app.state.identity


def get_lifecycle(request: Request) -> PublisherRequestService:
    return request.app.state.lifecycle


async def get_session(database: Database = Depends(get_database)):
    """Read-only session for query endpoints."""
    async with database.session() as session:
        yield session


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    tokens: CredentialService = Depends(get_credentials),
    identity: IdentityService = Depends(get_identity),
) -> User:
    """Extract and validate the current user from a JWT Bearer token."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        user_id = tokens.verify_token(credentials.credentials)
    except ExpiredTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return await identity.get_user(user_id)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )


def require_role(min_role: str):
    """Return a dependency that enforces a minimum role.

    Role hierarchy: user < advertiser < publisher < admin

    Usage::

        @router.get("/stats", dependencies=[Depends(require_role("publisher"))])
    """

    async def _check_role(user: User = Depends(get_current_user)) -> User:
        if not role_at_least(user.role, min_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"This action requires the '{min_role}' role",
            )
        return user

    return _check_role


require_admin = require_role(Role.ADMIN.value)
