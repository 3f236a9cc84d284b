"""
api/routes/auth.py -- Authentication, self-registration and password recovery.

Routes:
  POST /api/auth/login                     -- e-mail/password login; returns JWT
  POST /api/auth/register                  -- self-registration (local or social); role "client"
  POST /api/auth/forgot-password           -- e-mails a reset link; always the same answer
  POST /api/auth/reset-password            -- consumes a reset token, sets a new password
  GET  /api/auth/providers                 -- enabled OAuth providers (public)
  GET  /api/auth/oauth/{provider}          -- redirect to the provider's consent page
  GET  /api/auth/oauth/{provider}/callback -- upsert the user, redirect to the SPA with a JWT
  GET  /api/auth/me                        -- identity of the bearer

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on every response that carries a token.
  forgot-password answers identically whether or not the e-mail is registered.
  Self-registration can never grant a role other than "client".
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

import httpx
from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import IntegrityError

from api.auditing import audit_failure, audit_success, refuse
from api.limiter import limiter
from api.models import (
    AuthUser,
    Envelope,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OAuthProviderInfo,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
    fail,
    ok,
)
from auth.dependencies import get_current_user
from auth.models import ROLE_CLIENT, ResetToken, User
from auth.oauth import OAuthAccountError, get_enabled_providers, get_oauth_profile, upsert_oauth_user
from auth.store import UserStore
from auth.tokens import (
    LoginError,
    authenticate_user,
    create_access_token,
    generate_reset_token,
    hash_password,
    hash_token,
    reset_token_expiry,
)
from core.config import get_settings
from core.mailer import MailError, send_password_reset

logger = logging.getLogger("neoptica.api.auth")

_settings = get_settings()

_FORGOT_PASSWORD_MESSAGE = "If the e-mail is registered, a reset link has been sent."

# Auth policy: every route here is public except GET /auth/me.
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Password login
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/login", response_model=Envelope[LoginResponse])
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with e-mail and password; return a JWT and the user's roles.

    401 for unknown e-mail, wrong password, or an OAuth-only account;
    403 for a deactivated account. Both outcomes are audited.
    """
    user_store: UserStore = request.app.state.user_store
    try:
        user = authenticate_user(user_store, body.email, body.password)
    except LoginError as exc:
        audit_failure(
            request,
            None,
            action="login",
            module="auth",
            entity_type="User",
            error=exc.message,
            details={"email": body.email, "reason": exc.code},
        )
        return _no_store(JSONResponse(status_code=exc.status_code, content=fail(exc.message)))

    user_store.update_last_login(user.id)
    token = create_access_token(user)
    audit_success(
        request,
        user,
        action="login",
        module="auth",
        entity_type="User",
        entity_id=user.id,
        message="Successful login",
        details={"email": user.email},
    )
    body_out = ok(
        LoginResponse(
            token=token,
            expires_in=_settings.token_expire_seconds,
            user=AuthUser.model_validate(user),
        )
    )
    return _no_store(JSONResponse(content=body_out.model_dump(mode="json")))


# ---------------------------------------------------------------------------
# Self-registration
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=Envelope[UserResponse], status_code=201)
def register(request: Request, body: RegisterRequest) -> Envelope:
    """Create a client account, either with a password or from a social identity.

    The role set is always exactly ["client"], whatever the body contains.
    """
    user_store: UserStore = request.app.state.user_store

    def _refuse(message: str) -> HTTPException:
        return refuse(request, None, 409, message, action="register", module="auth", entity_type="User")

    if body.is_social and user_store.get_by_oauth(body.oauth_provider, body.oauth_id) is not None:
        raise _refuse("That social account is already registered.")
    if user_store.get_by_email(body.email) is not None:
        raise _refuse("That e-mail is already registered.")
    if body.dni and user_store.get_by_dni(body.dni) is not None:
        raise _refuse("That DNI is already registered.")

    if body.is_social:
        new_user = User(
            name=body.name or body.email.split("@", 1)[0],
            email=body.email,
            phone=body.phone,
            dni=body.dni,
            address=body.address,
            # Only the OAuth callback can vouch for the address.
            email_verified=False,
            oauth_provider=body.oauth_provider,
            oauth_subject=body.oauth_id,
        )
    else:
        new_user = User(
            name=body.name,
            email=body.email,
            hashed_password=hash_password(body.password),
            phone=body.phone,
            dni=body.dni,
            address=body.address,
        )

    try:
        user_id = user_store.create_user(new_user, roles=[ROLE_CLIENT])
    except IntegrityError:
        # Lost a race with a concurrent registration for the same identity.
        raise _refuse("That account is already registered.") from None

    audit_success(
        request,
        None,
        action="register",
        module="auth",
        entity_type="User",
        entity_id=user_id,
        message="Self-registration",
        details={"email": body.email, "social": body.is_social},
    )
    return ok(UserResponse.model_validate(user_store.get_by_id(user_id)))


# ---------------------------------------------------------------------------
# Password recovery
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/forgot-password", response_model=Envelope[MessageResponse])
def forgot_password(request: Request, body: ForgotPasswordRequest) -> Envelope:
    """Issue a single-use reset token and e-mail the link.

    The response is identical for unknown, inactive and active accounts.
    """
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_email(body.email)
    if user is not None and user.is_active:
        # One live link per user: a new request invalidates the older ones.
        user_store.expire_reset_tokens(user.id)
        raw_token = generate_reset_token()
        user_store.create_reset_token(
            ResetToken(user_id=user.id, token_hash=hash_token(raw_token), expires_at=reset_token_expiry())
        )
        try:
            send_password_reset(body.email, raw_token)
        except MailError as exc:
            logger.exception("Password reset mail failed for user id=%s", user.id)
            audit_failure(
                request,
                user,
                action="forgot_password",
                module="auth",
                entity_type="User",
                entity_id=user.id,
                error=str(exc),
            )
        else:
            audit_success(
                request,
                user,
                action="forgot_password",
                module="auth",
                entity_type="User",
                entity_id=user.id,
                message="Password reset link sent",
            )
    return ok(MessageResponse(message=_FORGOT_PASSWORD_MESSAGE))


@router.post("/auth/reset-password", response_model=Envelope[MessageResponse])
def reset_password(request: Request, body: ResetPasswordRequest) -> Envelope:
    """Set a new password using a token from the reset e-mail.

    Unknown e-mail, wrong token and expired token all answer 400 with the
    same message. On success every outstanding token for the user is expired.
    """
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_email(body.email)
    valid = (
        user is not None
        and user.is_active
        and user_store.get_valid_reset_token(user.id, hash_token(body.token)) is not None
    )
    if not valid:
        raise refuse(
            request,
            user,
            400,
            "Invalid or expired reset token.",
            action="reset_password",
            module="auth",
            entity_type="User",
            entity_id=user.id if user else None,
        )

    user_store.update_user(user.id, hashed_password=hash_password(body.password), updated_by=user.id)
    user_store.expire_reset_tokens(user.id)
    audit_success(
        request,
        user,
        action="reset_password",
        module="auth",
        entity_type="User",
        entity_id=user.id,
        message="Password reset via e-mail link",
    )
    return ok(MessageResponse(message="Password updated. You can now sign in."))


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=Envelope[list[OAuthProviderInfo]])
async def list_providers() -> Envelope:
    """Return the configured OAuth providers so the login page renders only working buttons."""
    return ok([OAuthProviderInfo(**p) for p in get_enabled_providers()])


def _frontend_redirect(path: str, **params: str) -> RedirectResponse:
    url = f"{_settings.frontend_url.rstrip('/')}{path}?{urlencode(params)}"
    resp = RedirectResponse(url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _callback_url(request: Request, provider: str) -> str:
    if _settings.oauth_redirect_base:
        return f"{_settings.oauth_redirect_base.rstrip('/')}/api/auth/oauth/{provider}/callback"
    return str(request.url_for("oauth_callback", provider=provider))


def _oauth_client(request: Request, provider: str):
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return None
    return request.app.state.oauth.create_client(provider)


@router.get("/auth/oauth/{provider}")
async def oauth_login(request: Request, provider: str):
    """Start the authorization code flow with the provider."""
    client = _oauth_client(request, provider)
    if client is None:
        raise HTTPException(status_code=404, detail="Unknown or disabled OAuth provider.")
    return await client.authorize_redirect(request, _callback_url(request, provider))


@router.get("/auth/oauth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Finish the OAuth flow and hand a JWT to the SPA.

    Flow:
      1. Exchange the authorization code (authlib verifies state via the session).
      2. Normalize the provider's profile.
      3. upsert_oauth_user(): find by (provider, subject), link by verified
         e-mail, or create a "client" account.
      4. Refuse inactive accounts.
      5. Redirect to {FRONTEND_URL}/oauth-success?token=<jwt>.
    Any failure redirects to {FRONTEND_URL}/login?error=<code>.
    """
    client = _oauth_client(request, provider)
    if client is None:
        return _frontend_redirect("/login", error="oauth_failed")
    user_store: UserStore = request.app.state.user_store

    def _failed(error: str, code: str = "oauth_failed") -> RedirectResponse:
        audit_failure(
            request,
            None,
            action="oauth_login",
            module="auth",
            entity_type="User",
            error=error,
            details={"provider": provider},
        )
        return _frontend_redirect("/login", error=code)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        return _failed("Token exchange failed")

    try:
        profile = await get_oauth_profile(client, provider, token)
    except (ValueError, httpx.HTTPError) as exc:
        logger.warning("OAuth profile fetch failed for %r: %s", provider, exc)
        return _failed(str(exc))

    try:
        user = upsert_oauth_user(user_store, profile)
    except OAuthAccountError as exc:
        logger.warning("OAuth login rejected for %r: %s", provider, exc)
        return _failed(str(exc), code="account_conflict")

    if not user.is_active:
        return _failed("Account is deactivated", code="account_disabled")

    user_store.update_last_login(user.id)
    audit_success(
        request,
        user,
        action="oauth_login",
        module="auth",
        entity_type="User",
        entity_id=user.id,
        message=f"Successful {provider} login",
        details={"provider": provider},
    )
    return _frontend_redirect("/oauth-success", token=create_access_token(user))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=Envelope[UserResponse])
def me(current_user: User = Depends(get_current_user)) -> Envelope:
    """Return the profile of the authenticated user."""
    return ok(UserResponse.model_validate(current_user))
