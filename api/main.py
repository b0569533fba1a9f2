"""FastAPI app entrypoint."""

import logging
import os
import time
import traceback
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

load_dotenv()

from api.logging_config import setup_logging  # noqa: E402
from api.routers import admin, auth, listings, publishers  # noqa: E402
from api.services.credentials import CredentialService  # noqa: E402
from api.services.notifier import LoggingNotifier, Notifier  # noqa: E402
from database import Database  # noqa: E402
from processor.catalog import Role  # noqa: E402
from processor.errors import ConflictError, InfrastructureError, MarketplaceError  # noqa: E402
from processor.identity import IdentityService  # noqa: E402
from processor.lifecycle import PublisherRequestService  # noqa: E402
from processor.scoring import ScoringStrategy, get_scoring_strategy  # noqa: E402

logger = logging.getLogger("pubmarket.api")

_DEFAULT_ADMIN_PASSWORD = "admin1234"


async def _ensure_master_account(identity: IdentityService):
    """Create the initial admin account if it does not exist."""
    admin_email = os.getenv("ADMIN_EMAIL", "admin@pubmarket.local")
    admin_password = os.getenv("ADMIN_PASSWORD", _DEFAULT_ADMIN_PASSWORD)

    if admin_password == _DEFAULT_ADMIN_PASSWORD:
        logger.warning(
            "ADMIN_PASSWORD is using default value. "
            "Change it in .env for production!"
        )

    try:
        await identity.create_user(
            "Administrator", admin_email, admin_password,
            role=Role.ADMIN.value, allow_any_role=True,
        )
        logger.info("Created master admin account %s", admin_email)
    except ConflictError:
        pass


# ---------------------------------------------------------------------------
# Security headers middleware
# ---------------------------------------------------------------------------
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Inject standard security headers into every response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration = time.time() - start
        logger.info(
            "%s %s -> %d (%.2fs)",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response


def create_app(
    database: Database | None = None,
    scoring: ScoringStrategy | None = None,
    credentials: CredentialService | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    """Build the application. Collaborators default to environment configuration."""
    database = database or Database()
    scoring = scoring or get_scoring_strategy()
    credentials = credentials or CredentialService()
    notifier = notifier or LoggingNotifier()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Connect the store and create the master account; dispose on shutdown."""
        setup_logging()
        logger.info("PubMarket API starting up (scoring=%s)", scoring.name)
        credentials.secret_key  # raises in production when JWT_SECRET_KEY is unset
        await database.connect()
        await _ensure_master_account(app.state.identity)
        try:
            yield
        finally:
            logger.info("PubMarket API shutting down")
            await scoring.close()
            await database.dispose()

    app = FastAPI(
        title="PubMarket API",
        description="Publisher marketplace: sponsored-post listings, review workflow, trust scoring",
        version="0.1.0",
        lifespan=lifespan,
        redirect_slashes=False,
    )

    app.state.database = database
    app.state.credentials = credentials
    app.state.identity = IdentityService(
        database, credentials, notifier=notifier,
        client_url=os.getenv("CLIENT_URL", "http://localhost:3000"),
    )
    app.state.lifecycle = PublisherRequestService(database, scoring=scoring, credentials=credentials)

    cors_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:3001")

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in cors_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------
    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        if isinstance(exc, InfrastructureError):
            logger.error(
                "Infrastructure failure on %s %s: %s",
                request.method, request.url.path, exc.message,
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        if isinstance(exc, HTTPException):
            headers = getattr(exc, "headers", None) or {}
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.detail},
                headers=headers,
            )
        logger.error(
            "Unhandled exception on %s %s: %s (type=%s)",
            request.method,
            request.url.path,
            str(exc),
            type(exc).__name__,
        )
        logger.debug(traceback.format_exc())
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    app.include_router(auth.router)
    app.include_router(publishers.router)
    app.include_router(listings.router)
    app.include_router(admin.router)

    @app.get("/health")
    async def health():
        health_status = {"status": "ok", "service": "pubmarket-api", "scoring": scoring.name}
        try:
            async with database.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            health_status["database"] = "connected"
        except Exception as e:
            health_status["status"] = "degraded"
            health_status["database"] = f"error: {type(e).__name__}"
        return health_status

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=False,
    )
