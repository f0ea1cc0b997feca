"""Shared request dependencies: caller identity, internal API key, agent ownership"""

import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db import AgentConfig, get_db
from app.services import agent_config_service


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity from the ``x-user-id`` header."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized - missing x-user-id header",
        )
    return x_user_id


async def verify_internal_api_key(x_api_key: Optional[str] = Header(None)) -> None:
    """Guard for service-to-service routes (voice worker, operator CLI)."""
    expected = settings.effective_internal_api_key
    if not x_api_key or not secrets.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def get_owned_agent(
    agent_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> AgentConfig:
    """Agent from the path, 404 if missing, then 403 if the caller doesn't own it."""
    return await load_owned_agent(db, agent_id, user_id)


async def load_owned_agent(db: AsyncSession, agent_id: str, user_id: str) -> AgentConfig:
    agent = await agent_config_service.get_agent_config(db, agent_id)
    if not agent:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent config not found")
    if agent.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return agent
