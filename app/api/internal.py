"""
Internal endpoints for the voice worker (x-api-key)

The worker uses these to resolve the agent behind a telephony room and to
get fresh Google tokens for the calendar tool.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import verify_internal_api_key
from app.db import get_db
from app.schemas import (
    AccessTokenResponse, AgentConfigResponse, KnowledgeBaseQueryRequest,
    KnowledgeBaseQueryResponse, KnowledgeBaseResult,
)
from app.services import agent_config_service, knowledge_base_service, oauth_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal",
    tags=["Internal"],
    dependencies=[Depends(verify_internal_api_key)],
)


@router.get("/agents/by-prefix/{prefix}")
async def get_agent_by_prefix(
    prefix: str,
    db: AsyncSession = Depends(get_db)
):
    """Minimal agent info for a ``call-<id8>-...`` room name"""
    agent = await agent_config_service.get_agent_config_by_prefix(db, prefix)
    if not agent:
        logger.info(f"[INTERNAL] No agent for prefix {prefix}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found for prefix")
    return {"id": agent.id, "userId": agent.user_id, "name": agent.name}


@router.get("/agents/{agent_id}", response_model=AgentConfigResponse)
async def get_agent(
    agent_id: str,
    db: AsyncSession = Depends(get_db)
):
    agent = await agent_config_service.get_agent_config(db, agent_id)
    if not agent:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found")
    return agent


@router.post("/agents/{agent_id}/knowledge-base/query", response_model=KnowledgeBaseQueryResponse)
async def query_agent_knowledge_base(
    agent_id: str,
    request: KnowledgeBaseQueryRequest,
):
    """Retrieval for the worker's search_knowledge_base tool"""
    if not request.query.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Query is required")
    try:
        kb = knowledge_base_service.get_knowledge_base_service()
    except knowledge_base_service.KnowledgeBaseNotConfigured:
        logger.warning("[INTERNAL] Retrieval backend not configured; returning no results")
        return KnowledgeBaseQueryResponse(results=[])
    chunks = await kb.query(request.query, agent_id, request.top_k)
    return KnowledgeBaseQueryResponse(results=[
        KnowledgeBaseResult(text=c.text, score=c.score, metadata=c.metadata) for c in chunks
    ])


@router.get("/oauth/{user_id}/{provider}", response_model=AccessTokenResponse)
async def get_oauth_token(
    user_id: str,
    provider: str,
    db: AsyncSession = Depends(get_db)
):
    """Access token for a user's connection, refreshed when expired"""
    if provider not in oauth_service.SUPPORTED_PROVIDERS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid provider")

    connection = await oauth_service.get_connection(db, user_id, provider)
    if not connection:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="OAuth connection not found")

    token = await oauth_service.get_valid_access_token(db, connection)
    return AccessTokenResponse(access_token=token)
