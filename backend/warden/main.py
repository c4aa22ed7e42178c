"""Main FastAPI application."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from warden.config import settings
from warden.database import SessionLocal
from warden.rate_limiter import limiter
from warden.services.auth_methods import build_default_registry
from warden.services.bot_gate import DisabledBotGate, TurnstileBotGate
from warden.services.email_service import EmailService, SendGridDispatcher
from warden.services.errors import AuthError, RateLimited, ServiceUnavailable, WeakPassword
from warden.services.route_guard import RouteGuard, RouteGuardMiddleware
from warden.services.shared.http_client import HTTPClient

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Close outbound HTTP clients on shutdown."""
    yield
    if isinstance(app.state.bot_gate, HTTPClient):
        app.state.bot_gate.close()
    logger.info("Warden shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Warden Auth API",
    description="Authentication, two-factor and session service",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Outbound collaborators, constructed once and injected via dependencies
app.state.email_service = EmailService(
    SendGridDispatcher.from_settings(), settings.frontend_url, settings.app_name
)
app.state.bot_gate = TurnstileBotGate.from_settings() if settings.captcha_enabled else DisabledBotGate()
app.state.auth_methods = build_default_registry()
app.state.session_factory = SessionLocal

if not settings.captcha_enabled:
    logger.warning("Captcha verification is disabled")

# Add rate limiter to app state
app.state.limiter = limiter


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render every auth failure as {"detail", "code"}."""
    if isinstance(exc, ServiceUnavailable):
        logger.error(f"Service unavailable on {request.url.path}: {exc.detail}", exc_info=exc)

    content = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, WeakPassword):
        content["missing"] = exc.missing
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    error = RateLimited()
    logger.warning(f"Rate limit exceeded on {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=error.status_code, content={"detail": error.message, "code": error.code})


# Route guard runs inside CORS so preflight requests never get redirected
app.add_middleware(
    RouteGuardMiddleware,
    guard=RouteGuard(settings.protected_paths, settings.sign_in_path),
    session_factory=SessionLocal,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Warden Auth API", "version": "0.1.0", "status": "running"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


# Import and include routers
from warden.routers import auth, dashboard, mfa  # noqa: E402

app.include_router(auth.router, prefix="/api")
app.include_router(mfa.router, prefix="/api")
app.include_router(dashboard.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000, reload=True)
