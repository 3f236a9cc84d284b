"""
auth/oauth.py -- Authlib OAuth provider configuration and account upsert.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered.

Supported providers:
  google    -- Authorization code flow; OIDC discovery. Email comes from the
               id_token userinfo together with email_verified.
  facebook  -- Authorization code flow; static Graph API endpoints. Facebook
               only returns confirmed addresses, so email is treated as verified.
  instagram -- Authorization code flow; static endpoints. The Basic Display
               API exposes no email at all -- accounts are created without one.

Account upsert (upsert_oauth_user):
  1. (provider, subject) already linked -> that user.
  2. Email matches an unlinked local account and the provider verified the
     address -> link the identity to that account.
  3. Email matches any other account -> OAuthAccountError (no silent takeover
     of an address the provider did not vouch for, no relinking).
  4. Otherwise -> new active user with only the "client" role.

OAuth state parameter (CSRF protection) is handled by authlib via Starlette
SessionMiddleware.

Layer rule: no imports from api/, audit/, or catalog/. Import from core/
is allowed.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import ROLE_CLIENT, OAuthProfile, User
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("neoptica.auth.oauth")

_GRAPH_VERSION = "v19.0"

_PROVIDER_LABELS = {
    "google": "Google",
    "facebook": "Facebook",
    "instagram": "Instagram",
}


class OAuthAccountError(Exception):
    """The external identity cannot be attached to a local account."""


# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")

if _cfg.facebook_client_id and _cfg.facebook_client_secret:
    oauth.register(
        name="facebook",
        client_id=_cfg.facebook_client_id,
        client_secret=_cfg.facebook_client_secret,
        access_token_url=f"https://graph.facebook.com/{_GRAPH_VERSION}/oauth/access_token",  # noqa: S106
        authorize_url=f"https://www.facebook.com/{_GRAPH_VERSION}/dialog/oauth",
        api_base_url=f"https://graph.facebook.com/{_GRAPH_VERSION}/",
        client_kwargs={"scope": "email public_profile"},
    )
    logger.info("Facebook OAuth provider registered")

if _cfg.instagram_client_id and _cfg.instagram_client_secret:
    oauth.register(
        name="instagram",
        client_id=_cfg.instagram_client_id,
        client_secret=_cfg.instagram_client_secret,
        access_token_url="https://api.instagram.com/oauth/access_token",  # noqa: S106
        authorize_url="https://api.instagram.com/oauth/authorize",
        api_base_url="https://graph.instagram.com/",
        client_kwargs={"scope": "user_profile", "token_endpoint_auth_method": "client_secret_post"},
    )
    logger.info("Instagram OAuth provider registered")


# ---------------------------------------------------------------------------
# Provider metadata
# ---------------------------------------------------------------------------


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every provider with credentials configured.

    Used by GET /api/auth/providers so the login page renders only the
    buttons that will work.
    """
    cfg = get_settings()
    configured = {
        "google": cfg.google_client_id and cfg.google_client_secret,
        "facebook": cfg.facebook_client_id and cfg.facebook_client_secret,
        "instagram": cfg.instagram_client_id and cfg.instagram_client_secret,
    }
    return [{"name": name, "label": _PROVIDER_LABELS[name]} for name, ok in configured.items() if ok]


# ---------------------------------------------------------------------------
# Profile extraction -- provider-specific normalization
# ---------------------------------------------------------------------------


async def get_oauth_profile(client, provider: str, token: dict) -> OAuthProfile:
    """Normalize the provider's user data into an OAuthProfile.

    Raises ValueError when the provider response lacks a stable subject ID;
    the callback route treats that as an authentication failure.
    """
    if provider == "google":
        return _get_google_profile(token)
    if provider == "facebook":
        return await _get_graph_profile(client, token, provider, "me?fields=id,name,email")
    if provider == "instagram":
        return await _get_graph_profile(client, token, provider, "me?fields=id,username")
    raise ValueError(f"Unknown OAuth provider: {provider!r}")


def _get_google_profile(token: dict) -> OAuthProfile:
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")
    subject = userinfo.get("sub")
    if not subject:
        raise ValueError("google OAuth: missing sub claim in userinfo")
    return OAuthProfile(
        provider="google",
        subject=str(subject),
        email=(userinfo.get("email") or None),
        email_verified=bool(userinfo.get("email_verified", False)),
        name=userinfo.get("name"),
    )


async def _get_graph_profile(client, token: dict, provider: str, path: str) -> OAuthProfile:
    resp = await client.get(path, token=token)
    resp.raise_for_status()
    data = resp.json()
    subject = data.get("id")
    if not subject:
        raise ValueError(f"{provider} OAuth: profile response has no id")
    email = data.get("email") or None
    return OAuthProfile(
        provider=provider,
        subject=str(subject),
        email=email,
        # Graph API only returns confirmed addresses.
        email_verified=email is not None,
        name=data.get("name") or data.get("username"),
    )


# ---------------------------------------------------------------------------
# Account upsert
# ---------------------------------------------------------------------------


def _display_name(profile: OAuthProfile) -> str:
    if profile.name and profile.name.strip():
        return profile.name.strip()
    if profile.email:
        return profile.email.split("@", 1)[0]
    return f"{profile.provider}-{profile.subject}"


def upsert_oauth_user(store: UserStore, profile: OAuthProfile) -> User:
    """Return the local user for an external identity, linking or creating it.

    Raises OAuthAccountError when the profile's email belongs to an account
    that cannot be linked (already linked elsewhere, or unverified address).
    Inactive accounts are returned as-is; the caller decides how to reject them.
    """
    user = store.get_by_oauth(profile.provider, profile.subject)
    if user is not None:
        return user

    email = profile.email.strip().lower() if profile.email else None
    if email:
        existing = store.get_by_email(email)
        if existing is not None:
            if existing.oauth_provider is not None:
                raise OAuthAccountError(f"{email} is already linked to a {existing.oauth_provider} account")
            if not profile.email_verified:
                raise OAuthAccountError(f"{profile.provider} did not verify {email}; refusing to link")
            store.link_oauth(existing.id, profile.provider, profile.subject)
            if not existing.email_verified:
                store.update_user(existing.id, email_verified=True)
            logger.info("Linked %s identity to existing user id=%s", profile.provider, existing.id)
            return store.get_by_id(existing.id)

    new_user = User(
        name=_display_name(profile),
        email=email,
        is_active=True,
        email_verified=profile.email_verified,
        oauth_provider=profile.provider,
        oauth_subject=profile.subject,
    )
    user_id = store.create_user(new_user, roles=[ROLE_CLIENT])
    logger.info("Created user id=%s from %s sign-in", user_id, profile.provider)
    return store.get_by_id(user_id)
