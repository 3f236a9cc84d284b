"""
api/main.py -- FastAPI application entry point for the Neóptica intranet API.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- lets the SPA frontend call the API
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- holds the OAuth state between redirect and callback

Every response under /api is an envelope {"ok", "data", "error"}; the
exception handlers below turn every failure into the same shape.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import Envelope, FieldError, HealthResponse, fail, ok
from api.routes.audit import router as audit_router
from api.routes.auth import router as auth_router
from api.routes.branches import router as branches_router
from api.routes.brands import router as brands_router
from api.routes.colors import router as colors_router
from api.routes.dashboard import router as dashboard_router
from api.routes.products import router as products_router
from api.routes.roles import router as roles_router
from api.routes.users import router as users_router
from audit.store import AuditStore
from auth.dependencies import get_current_user
from auth.models import User
from auth.oauth import get_enabled_providers
from auth.oauth import oauth as oauth_client
from auth.store import UserStore
from catalog.store import CatalogStore
from core.config import get_settings

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if get_settings().debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("neoptica.api")

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the three stores on startup and dispose their engines on shutdown.

    Roles are seeded before the first request so role assignment never sees
    an empty roles table.
    """
    logger.info("Neóptica API starting up")
    app.state.user_store = UserStore()
    seeded = app.state.user_store.seed_roles()
    if seeded:
        logger.info("Seeded %d role(s)", seeded)
    app.state.catalog = CatalogStore()
    app.state.audit = AuditStore()
    app.state.oauth = oauth_client
    providers = [p["name"] for p in get_enabled_providers()]
    logger.info("OAuth providers enabled: %s", ", ".join(providers) or "none")

    yield

    app.state.audit.close()
    app.state.catalog.close()
    app.state.user_store.close()
    logger.info("Neóptica API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Neóptica Intranet API",
    description="Users, roles, catalog, branches and audit trail for the Neóptica intranet.",
    version=API_VERSION,
    lifespan=lifespan,
    # Replaced below by auth-protected equivalents.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=get_settings().allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# authlib keeps the OAuth state value in the session between the redirect to
# the provider and the callback.
app.add_middleware(SessionMiddleware, secret_key=get_settings().secret_key, same_site="lax")

# SlowAPIMiddleware looks the limiter up on app.state.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(users_router, prefix="/api", tags=["Users"])
app.include_router(roles_router, prefix="/api", tags=["Roles"])
app.include_router(brands_router, prefix="/api", tags=["Brands"])
app.include_router(colors_router, prefix="/api", tags=["Colors"])
app.include_router(branches_router, prefix="/api", tags=["Branches"])
app.include_router(products_router, prefix="/api", tags=["Products"])
app.include_router(audit_router, prefix="/api", tags=["Audit"])
app.include_router(dashboard_router, prefix="/api", tags=["Dashboard"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title=app.title)


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title=app.title)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 in the envelope with a Retry-After hint."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(status_code=429, content=fail("Too many requests. Please try again later."))
    response.headers["Retry-After"] = str(retry_after)
    return response


def _field_name(loc: tuple) -> str:
    # Drop the "body"/"query"/"path" prefix FastAPI puts in front of the field path.
    parts = [str(p) for p in loc[1:]] if len(loc) > 1 else [str(p) for p in loc]
    return ".".join(parts)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one {field, message} entry per failed constraint."""
    errors = [
        FieldError(field=_field_name(tuple(err.get("loc", ()))), message=err.get("msg", "Invalid value."))
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=fail("Validation failed.", data=[e.model_dump() for e in errors]),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap every HTTP error (route-raised, 404 for unknown paths, 405) in the envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=fail(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected errors; the traceback goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=fail("An unexpected error occurred."))


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/health", response_model=Envelope[HealthResponse], tags=["Health"])
async def health() -> Envelope:
    """Return API liveness and current version."""
    return ok(HealthResponse(status="ok", version=API_VERSION))
