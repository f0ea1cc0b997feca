"""
Google OAuth - connect a user's Google account for the calendar tool.

Flow:
  1. GET /api/oauth/google        -> create_state() + build_auth_url()
  2. Google redirects back with ?code&state
  3. consume_state() (single use, 10 minute TTL) -> exchange_code()
     -> fetch_user_email() -> upsert_connection()

Tokens never leave the backend except through the internal API used by the
voice worker, which refreshes expired access tokens on read.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.models import OAuthConnection, OAuthProvider
from app.services.cache import get_cache
from app.services.http_client import request_with_retry

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

GOOGLE_CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.email",
]

STATE_KEY_PREFIX = "oauth:state:"

SUPPORTED_PROVIDERS = {p.value for p in OAuthProvider}


class OAuthError(Exception):
    pass


class OAuthNotConfigured(OAuthError):
    pass


def is_configured() -> bool:
    return bool(settings.google_client_id and settings.google_client_secret)


def _require_config() -> None:
    if not is_configured():
        raise OAuthNotConfigured("Google OAuth not configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET.")


# ============ State ============

async def create_state(user_id: str) -> str:
    """CSRF state token bound to ``user_id``."""
    state = str(uuid.uuid4())
    await get_cache().set(
        f"{STATE_KEY_PREFIX}{state}",
        {"user_id": user_id},
        ttl=settings.oauth_state_ttl_seconds,
    )
    return state


async def consume_state(state: str) -> Optional[str]:
    """User id bound to ``state``, or None if unknown/expired. A state works once."""
    data = await get_cache().pop(f"{STATE_KEY_PREFIX}{state}")
    if not data:
        return None
    return data.get("user_id")


# ============ Google endpoints ============

def build_auth_url(state: str) -> str:
    _require_config()
    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": settings.google_redirect_uri,
        "response_type": "code",
        "scope": " ".join(GOOGLE_CALENDAR_SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


async def _token_request(form: Dict[str, str], what: str, client: Optional[httpx.AsyncClient] = None) -> Dict[str, Any]:
    _require_config()
    form = {
        "client_id": settings.google_client_id,
        "client_secret": settings.google_client_secret,
        **form,
    }
    response = await request_with_retry("POST", GOOGLE_TOKEN_URL, client=client, label="OAUTH", data=form)
    if response.status_code >= 400:
        logger.error(f"[OAUTH] {what} failed: {response.status_code} {response.text[:300]}")
        raise OAuthError(f"{what} failed")
    return response.json()


async def exchange_code(code: str, client: Optional[httpx.AsyncClient] = None) -> Dict[str, Any]:
    """Trade an authorization code for tokens."""
    return await _token_request(
        {
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": settings.google_redirect_uri,
        },
        "Token exchange",
        client=client,
    )


async def refresh_access_token(refresh_token: str, client: Optional[httpx.AsyncClient] = None) -> Dict[str, Any]:
    return await _token_request(
        {"refresh_token": refresh_token, "grant_type": "refresh_token"},
        "Token refresh",
        client=client,
    )


async def fetch_user_email(access_token: str, client: Optional[httpx.AsyncClient] = None) -> Optional[str]:
    """Email of the connected Google account; None if it can't be read."""
    try:
        response = await request_with_retry(
            "GET",
            GOOGLE_USERINFO_URL,
            client=client,
            label="OAUTH",
            headers={"Authorization": f"Bearer {access_token}"},
        )
    except httpx.HTTPError as e:
        logger.warning(f"[OAUTH] Userinfo request failed: {e!r}")
        return None
    if response.status_code != 200:
        return None
    return response.json().get("email")


def _expires_at(tokens: Dict[str, Any]) -> Optional[datetime]:
    expires_in = tokens.get("expires_in")
    if expires_in is None:
        return None
    return datetime.utcnow() + timedelta(seconds=int(expires_in))


# ============ Connections ============

async def get_connection(db: AsyncSession, user_id: str, provider: str) -> Optional[OAuthConnection]:
    result = await db.execute(
        select(OAuthConnection).where(
            OAuthConnection.user_id == user_id,
            OAuthConnection.provider == provider,
        )
    )
    return result.scalar_one_or_none()


async def list_connections(db: AsyncSession, user_id: str) -> List[OAuthConnection]:
    result = await db.execute(
        select(OAuthConnection)
        .where(OAuthConnection.user_id == user_id)
        .order_by(OAuthConnection.created_at)
    )
    return list(result.scalars().all())


async def upsert_connection(
    db: AsyncSession,
    user_id: str,
    provider: str,
    tokens: Dict[str, Any],
    email: Optional[str] = None,
) -> OAuthConnection:
    """Store tokens for (user, provider).

    Google only sends a refresh token on first consent, so an existing one is
    kept when the new grant has none.
    """
    connection = await get_connection(db, user_id, provider)
    if connection is None:
        connection = OAuthConnection(user_id=user_id, provider=provider)
        db.add(connection)

    connection.access_token = tokens["access_token"]
    if tokens.get("refresh_token"):
        connection.refresh_token = tokens["refresh_token"]
    connection.expires_at = _expires_at(tokens)
    connection.scope = tokens.get("scope")
    if email:
        connection.email = email

    await db.commit()
    await db.refresh(connection)
    logger.info(f"[OAUTH] Stored {provider} connection for user {user_id}")
    return connection


async def delete_connection(db: AsyncSession, user_id: str, provider: str) -> bool:
    connection = await get_connection(db, user_id, provider)
    if connection is None:
        return False
    await db.delete(connection)
    await db.commit()
    return True


async def get_valid_access_token(
    db: AsyncSession,
    connection: OAuthConnection,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Access token for ``connection``, refreshed first if it has expired.

    A failed refresh falls back to the stored token; the caller's request to
    Google then fails with 401 and the user is asked to reconnect.
    """
    expired = connection.expires_at is not None and connection.expires_at < datetime.utcnow()
    if not expired or not connection.refresh_token:
        return connection.access_token

    try:
        tokens = await refresh_access_token(connection.refresh_token, client=client)
    except (OAuthError, httpx.HTTPError) as e:
        logger.warning(f"[OAUTH] Token refresh failed for user {connection.user_id}: {e}")
        return connection.access_token

    connection.access_token = tokens["access_token"]
    connection.expires_at = _expires_at(tokens)
    await db.commit()
    logger.info(f"[OAUTH] Refreshed {connection.provider} token for user {connection.user_id}")
    return connection.access_token

