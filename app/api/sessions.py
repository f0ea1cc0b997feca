"""
Voice session endpoints - LiveKit tokens for owners and share-link guests

Each token request creates a fresh room whose metadata carries the agent
config; the voice worker is dispatched into it by name.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, load_owned_agent
from app.db import get_db
from app.schemas import PublicTokenRequest, ShareInfoResponse, TokenRequest, TokenResponse
from app.services import agent_config_service, livekit_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Voice Sessions"])


async def _start_session(agent, participant_name: Optional[str], shared: bool) -> TokenResponse:
    try:
        session = await livekit_service.start_voice_session(agent, participant_name, shared=shared)
    except Exception as e:
        logger.error(f"[SESSION] Failed to start session for agent {agent.id}: {e!r}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create voice session: {e}",
        )
    return TokenResponse(**session)


@router.post("/token", response_model=TokenResponse)
async def get_token(
    request: TokenRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """Token for the agent's owner to talk to it"""
    agent = await load_owned_agent(db, request.agent_config_id, user_id)
    return await _start_session(agent, request.participant_name, shared=False)


async def _get_shared_agent(db: AsyncSession, share_code: str):
    agent = await agent_config_service.get_public_agent_by_share_code(db, share_code)
    if not agent:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shared agent not found")
    return agent


@router.get("/share/{share_code}", response_model=ShareInfoResponse)
async def get_share_info(
    share_code: str,
    db: AsyncSession = Depends(get_db)
):
    """Public info for a share link (no auth)"""
    agent = await _get_shared_agent(db, share_code)
    return ShareInfoResponse(name=agent.name, greeting=agent.greeting, share_code=agent.share_code)


@router.post("/share/{share_code}/token", response_model=TokenResponse)
async def get_share_token(
    share_code: str,
    request: Optional[PublicTokenRequest] = Body(None),
    db: AsyncSession = Depends(get_db)
):
    """Guest token for a public agent (no auth)"""
    agent = await _get_shared_agent(db, share_code)
    participant_name = request.participant_name if request else None
    return await _start_session(agent, participant_name, shared=True)
