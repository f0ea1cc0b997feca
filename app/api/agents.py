"""Agent configuration endpoints"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app import catalog
from app.api.deps import get_current_user_id, get_owned_agent
from app.db import AgentConfig, get_db
from app.schemas import (
    AgentConfigCreate, AgentConfigUpdate, AgentConfigResponse, AgentOptionsResponse,
)
from app.services import agent_config_service, sip_service, telephony_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agents", tags=["Agents"])

# Fields a client may clear by sending null
NULLABLE_FIELDS = {"voice_instructions", "greeting"}


@router.get("", response_model=List[AgentConfigResponse])
async def list_agents(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """List the caller's agents, newest first"""
    return await agent_config_service.list_agent_configs(db, user_id)


@router.post("", response_model=AgentConfigResponse, status_code=status.HTTP_201_CREATED)
async def create_agent(
    agent_data: AgentConfigCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    return await agent_config_service.create_agent_config(db, user_id, agent_data.model_dump())


@router.get("/options", response_model=AgentOptionsResponse)
async def get_agent_options(
    tts_model: Optional[str] = Query(None, alias="ttsModel"),
):
    """
    Model and voice catalogs for the agent editor.

    With ``ttsModel`` set only voices that model can speak are returned.
    """
    voices = catalog.get_compatible_voices(tts_model) if tts_model else catalog.VOICE_OPTIONS
    return AgentOptionsResponse(
        llm_options=catalog.LLM_OPTIONS,
        stt_options=catalog.STT_OPTIONS,
        tts_options=catalog.TTS_OPTIONS,
        voice_options=voices,
    )


@router.get("/{agent_id}", response_model=AgentConfigResponse)
async def get_agent(agent: AgentConfig = Depends(get_owned_agent)):
    return agent


@router.put("/{agent_id}", response_model=AgentConfigResponse)
async def update_agent(
    agent_data: AgentConfigUpdate,
    agent: AgentConfig = Depends(get_owned_agent),
    db: AsyncSession = Depends(get_db)
):
    """Partial update - only fields sent by the client change"""
    changes = {
        key: value
        for key, value in agent_data.model_dump(exclude_unset=True).items()
        if value is not None or key in NULLABLE_FIELDS
    }
    return await agent_config_service.update_agent_config(db, agent, changes)


@router.delete("/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_agent(
    agent: AgentConfig = Depends(get_owned_agent),
    db: AsyncSession = Depends(get_db)
):
    """Delete an agent; its SIP trunks and dispatch rule are removed first."""
    config = await telephony_service.get_telephony_config(db, agent.id)
    if config:
        await sip_service.teardown_telephony(config)
    await agent_config_service.delete_agent_config(db, agent)
