"""
LiveKit service - rooms, access tokens and room metadata for voice sessions.

A voice session is a fresh room whose metadata carries the resolved agent
config; the room explicitly dispatches the voice worker (agent_name) so the
worker never has to look the agent up for web sessions.
"""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from livekit import api

from app.config import settings
from app.db.models import AgentConfig
from app.services.http_client import call_with_retry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def livekit_api() -> AsyncIterator[api.LiveKitAPI]:
    """Server API client, closed on exit."""
    lk = api.LiveKitAPI(settings.livekit_url, settings.livekit_api_key, settings.livekit_api_secret)
    try:
        yield lk
    finally:
        await lk.aclose()


def agent_config_payload(agent: AgentConfig) -> Dict[str, Any]:
    """The subset of an agent config the worker needs (camelCase, JSON-ready)."""
    return {
        "id": agent.id,
        "userId": agent.user_id,
        "name": agent.name,
        "instructions": agent.instructions,
        "voice": agent.voice,
        "voiceInstructions": agent.voice_instructions,
        "greeting": agent.greeting,
        "model": agent.model,
        "sttModel": agent.stt_model,
        "ttsModel": agent.tts_model,
        "tools": list(agent.tools or []),
        "enableKnowledgeBase": agent.enable_knowledge_base,
    }


def build_room_metadata(agent: AgentConfig, shared: bool = False) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {
        "userId": agent.user_id,
        "agentConfigId": agent.id,
    }
    if shared:
        metadata["isSharedSession"] = True
    metadata["agentConfig"] = agent_config_payload(agent)
    return metadata


async def create_agent_room(room_name: str, metadata: Dict[str, Any]) -> None:
    """Create a room that dispatches the voice worker on creation."""
    async with livekit_api() as lk:
        await call_with_retry(
            lambda: lk.room.create_room(
                api.CreateRoomRequest(
                    name=room_name,
                    metadata=json.dumps(metadata),
                    empty_timeout=settings.room_empty_timeout,
                    max_participants=settings.room_max_participants,
                    agents=[api.RoomAgentDispatch(agent_name=settings.agent_name)],
                )
            ),
            label="LIVEKIT",
        )
    logger.info(f"[LIVEKIT] Created room {room_name}")


async def delete_room(room_name: str) -> None:
    async with livekit_api() as lk:
        await call_with_retry(
            lambda: lk.room.delete_room(api.DeleteRoomRequest(room=room_name)),
            label="LIVEKIT",
        )


def create_access_token(room_name: str, identity: str, name: str) -> str:
    """Participant JWT allowing join/publish/subscribe/data in one room."""
    return (
        api.AccessToken(settings.livekit_api_key, settings.livekit_api_secret)
        .with_identity(identity)
        .with_name(name)
        .with_grants(
            api.VideoGrants(
                room_join=True,
                room=room_name,
                can_publish=True,
                can_subscribe=True,
                can_publish_data=True,
            )
        )
        .to_jwt()
    )


async def start_voice_session(
    agent: AgentConfig,
    participant_name: Optional[str] = None,
    shared: bool = False,
) -> Dict[str, str]:
    """Create a session room for ``agent`` and a token for the caller.

    Owners get ``room-<uuid>`` / ``user-xxxxxxxx``; share-link guests get
    ``shared-<uuid>`` / ``guest-xxxxxxxx``.
    """
    prefix, identity_prefix, default_name = ("shared", "guest", "Guest") if shared else ("room", "user", "User")
    room_name = f"{prefix}-{uuid.uuid4()}"
    identity = participant_name or f"{identity_prefix}-{str(uuid.uuid4())[:8]}"

    await create_agent_room(room_name, build_room_metadata(agent, shared=shared))
    token = create_access_token(room_name, identity, participant_name or default_name)
    return {"token": token, "url": settings.livekit_url, "room_name": room_name}
