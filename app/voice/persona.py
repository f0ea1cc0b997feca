"""
Agent persona resolution for a voice job.

Web and share sessions carry the full agent config in the room metadata.
Telephony rooms are created by the SIP dispatch rule and only have a name
like ``call-<id8>-<callSid>``, so the config is fetched from the API's
internal endpoints.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.voice.providers import DEFAULT_LLM_MODEL, DEFAULT_STT_MODEL, DEFAULT_TTS_MODEL

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS = (
    "You are a helpful voice AI assistant. The user is interacting with you via voice. "
    "You eagerly assist users with their questions by providing information from your extensive knowledge. "
    "Your responses are concise, to the point, and without any complex formatting. "
    "You are curious, friendly, and have a sense of humor."
)
DEFAULT_VOICE = "ash"
DEFAULT_GREETING = "Hello! How can I help you today?"

TELEPHONY_ROOM_PATTERN = re.compile(r"^call-([A-Za-z0-9]+)-")


@dataclass
class AgentRuntimeConfig:
    instructions: str = DEFAULT_INSTRUCTIONS
    voice: str = DEFAULT_VOICE
    voice_instructions: Optional[str] = None
    greeting: str = DEFAULT_GREETING
    model: str = DEFAULT_LLM_MODEL
    stt_model: str = DEFAULT_STT_MODEL
    tts_model: str = DEFAULT_TTS_MODEL
    tools: List[str] = field(default_factory=list)
    enable_knowledge_base: bool = False
    agent_config_id: Optional[str] = None
    user_id: str = "unknown"

    @classmethod
    def from_agent_config(
        cls,
        agent_config: Optional[Dict[str, Any]],
        user_id: Optional[str] = None,
        agent_config_id: Optional[str] = None,
    ) -> "AgentRuntimeConfig":
        """Merge a camelCase agent config over the defaults; stored values win when present."""
        stored = agent_config or {}
        defaults = cls()

        def pick(key: str, default):
            value = stored.get(key)
            return default if value is None else value

        return cls(
            instructions=pick("instructions", defaults.instructions),
            voice=pick("voice", defaults.voice),
            voice_instructions=stored.get("voiceInstructions"),
            greeting=pick("greeting", defaults.greeting),
            model=pick("model", defaults.model),
            stt_model=pick("sttModel", defaults.stt_model),
            tts_model=pick("ttsModel", defaults.tts_model),
            tools=list(pick("tools", [])),
            enable_knowledge_base=bool(stored.get("enableKnowledgeBase", False)),
            agent_config_id=agent_config_id or stored.get("id"),
            user_id=user_id or stored.get("userId") or "unknown",
        )


def parse_room_metadata(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("[PERSONA] Room metadata is not valid JSON; ignoring")
        return {}
    if not isinstance(parsed, dict):
        logger.warning("[PERSONA] Room metadata is not a JSON object; ignoring")
        return {}
    return parsed


def is_outbound(metadata: Dict[str, Any]) -> bool:
    return metadata.get("type") == "outbound" or bool(metadata.get("isOutboundCall"))


def telephony_prefix(room_name: str) -> Optional[str]:
    """Agent id prefix from a ``call-<prefix>-...`` room name."""
    match = TELEPHONY_ROOM_PATTERN.match(room_name or "")
    return match.group(1) if match else None


class InternalAPIClient:
    """Worker-side client for the API's /internal endpoints (x-api-key)."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self._headers = {"x-api-key": api_key or settings.effective_internal_api_key}
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self.base_url}{settings.api_prefix}/internal",
            headers=self._headers,
            timeout=settings.http_timeout_seconds,
            transport=self._transport,
        )

    async def _get_json(self, path: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._client() as client:
                response = await client.get(path)
        except httpx.HTTPError as e:
            logger.error(f"[PERSONA] GET {path} failed: {e!r}")
            return None
        if response.status_code != 200:
            logger.error(f"[PERSONA] GET {path} returned {response.status_code}")
            return None
        return response.json()

    async def get_agent(self, agent_id: str) -> Optional[Dict[str, Any]]:
        return await self._get_json(f"/agents/{agent_id}")

    async def get_agent_by_prefix(self, prefix: str) -> Optional[Dict[str, Any]]:
        return await self._get_json(f"/agents/by-prefix/{prefix}")

    async def get_access_token(self, user_id: str, provider: str) -> Optional[str]:
        data = await self._get_json(f"/oauth/{user_id}/{provider}")
        return (data or {}).get("accessToken")

    async def query_knowledge_base(self, agent_id: str, query: str, top_k: int = 3) -> List[Dict[str, Any]]:
        path = f"/agents/{agent_id}/knowledge-base/query"
        try:
            async with self._client() as client:
                response = await client.post(path, json={"query": query, "topK": top_k})
        except httpx.HTTPError as e:
            logger.error(f"[PERSONA] POST {path} failed: {e!r}")
            return []
        if response.status_code != 200:
            logger.error(f"[PERSONA] POST {path} returned {response.status_code}")
            return []
        return response.json().get("results", [])


async def resolve_runtime_config(
    room_name: str,
    metadata: Dict[str, Any],
    client: Optional[InternalAPIClient] = None,
) -> AgentRuntimeConfig:
    """
    Agent config for a room, in order of preference:

    1. ``agentConfig`` embedded in the metadata (web / share sessions)
    2. ``agentConfigId`` in the metadata, fetched from the API
    3. the ``call-<prefix>-`` room name, resolved by prefix then fetched

    Anything that cannot be resolved falls back to the defaults.
    """
    agent_config = metadata.get("agentConfig")
    agent_id = metadata.get("agentConfigId")
    user_id = metadata.get("userId")

    if not agent_config:
        client = client or InternalAPIClient()
        if not agent_id:
            prefix = telephony_prefix(room_name)
            if prefix:
                found = await client.get_agent_by_prefix(prefix)
                if found:
                    agent_id = found.get("id")
                    user_id = user_id or found.get("userId")
                    logger.info(f"[PERSONA] Room {room_name} belongs to agent {agent_id}")
        if agent_id:
            agent_config = await client.get_agent(agent_id)
            if agent_config is None:
                logger.warning(f"[PERSONA] Could not fetch agent {agent_id}; using defaults")

    config = AgentRuntimeConfig.from_agent_config(agent_config, user_id=user_id, agent_config_id=agent_id)
    logger.info(
        f"[PERSONA] Using model={config.model} stt={config.stt_model} tts={config.tts_model} "
        f"tools={config.tools} kb={config.enable_knowledge_base} custom={bool(agent_config)}"
    )
    return config
