"""OAuth endpoints - connect Google for the calendar tool"""

import logging
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id
from app.config import settings
from app.db import OAuthProvider, get_db
from app.schemas import AuthUrlResponse, OAuthConnectionStatus
from app.services import oauth_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth", tags=["OAuth"])


def _settings_redirect(**params: str) -> RedirectResponse:
    """Back to the dashboard settings page with the outcome in the query string."""
    return RedirectResponse(
        url=f"{settings.web_url}/settings?{urlencode(params)}",
        status_code=status.HTTP_302_FOUND,
    )


@router.get("/connections", response_model=List[OAuthConnectionStatus])
async def list_connections(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    connections = await oauth_service.list_connections(db, user_id)
    return [
        OAuthConnectionStatus(
            id=conn.id,
            provider=conn.provider,
            email=conn.email,
            is_connected=True,
            connected_at=conn.created_at,
        )
        for conn in connections
    ]


@router.get("/google", response_model=AuthUrlResponse)
async def start_google_oauth(user_id: str = Depends(get_current_user_id)):
    """Start the Google consent flow; the client navigates to ``authUrl``."""
    if not oauth_service.is_configured():
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Google OAuth not configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET.",
        )
    state = await oauth_service.create_state(user_id)
    return AuthUrlResponse(auth_url=oauth_service.build_auth_url(state))


@router.get("/google/callback")
async def google_oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    """Google redirects here; always answers with a redirect to the dashboard."""
    if error:
        return _settings_redirect(oauth="error", message=error)
    if not code or not state:
        return _settings_redirect(oauth="error", message="missing_params")

    user_id = await oauth_service.consume_state(state)
    if not user_id:
        return _settings_redirect(oauth="error", message="invalid_state")

    try:
        try:
            tokens = await oauth_service.exchange_code(code)
        except oauth_service.OAuthError:
            return _settings_redirect(oauth="error", message="token_exchange_failed")

        email = await oauth_service.fetch_user_email(tokens["access_token"])
        await oauth_service.upsert_connection(db, user_id, OAuthProvider.GOOGLE.value, tokens, email)
    except Exception as e:
        logger.error(f"[OAUTH] Callback failed for user {user_id}: {e!r}")
        return _settings_redirect(oauth="error", message="unknown_error")

    return _settings_redirect(oauth="success", provider=OAuthProvider.GOOGLE.value)


@router.delete("/{provider}", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect_provider(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    if provider not in oauth_service.SUPPORTED_PROVIDERS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid provider")
    deleted = await oauth_service.delete_connection(db, user_id, provider)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Connection not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
