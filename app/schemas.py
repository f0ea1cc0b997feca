"""Pydantic schemas for API request/response validation

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from app.catalog import TOOL_IDS


LLMModel = Literal["gpt-4.1-mini", "gpt-4.1", "gpt-4o"]
STTModel = Literal[
    "openai/gpt-4o-transcribe",
    "openai/whisper-1",
    "deepgram/nova-3",
    "assemblyai/universal-streaming",
    "cartesia/ink-whisper",
]
TTSModel = Literal[
    "openai/gpt-4o-mini-tts",
    "openai/tts-1",
    "openai/tts-1-hd",
    "elevenlabs/eleven_turbo_v2_5",
    "elevenlabs/eleven_multilingual_v2",
    "cartesia/sonic-3",
    "cartesia/sonic-2",
    "cartesia/sonic-turbo",
    "cartesia/sonic",
]


class CamelModel(BaseModel):
    """Base model exposing camelCase aliases while accepting either form."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# ============ User Schemas ============

class UserCreate(CamelModel):
    # Checked by the route so a missing field is a 400, not a 422
    email: Optional[str] = None
    name: Optional[str] = None


class UserResponse(CamelModel):
    id: str
    email: str
    name: str
    created_at: datetime
    updated_at: datetime


# ============ Agent Config Schemas ============

def _check_tools(tools: Optional[List[str]]) -> Optional[List[str]]:
    if tools is None:
        return tools
    unknown = [t for t in tools if t not in TOOL_IDS]
    if unknown:
        raise ValueError(f"Unknown tools: {', '.join(unknown)}")
    # Preserve order, drop duplicates
    return list(dict.fromkeys(tools))


class AgentConfigCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    instructions: str = Field(..., min_length=1, max_length=5000)
    voice: str = "ash"
    voice_instructions: Optional[str] = None
    greeting: Optional[str] = None
    model: LLMModel = "gpt-4.1-mini"
    stt_model: STTModel = "openai/gpt-4o-transcribe"
    tts_model: TTSModel = "openai/gpt-4o-mini-tts"
    tools: List[str] = Field(default_factory=list)
    is_public: bool = False
    enable_knowledge_base: bool = False

    validate_tools = field_validator("tools")(_check_tools)


class AgentConfigUpdate(CamelModel):
    """Partial update; only fields present in the request are applied."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    instructions: Optional[str] = Field(None, min_length=1, max_length=5000)
    voice: Optional[str] = None
    voice_instructions: Optional[str] = None
    greeting: Optional[str] = None
    model: Optional[LLMModel] = None
    stt_model: Optional[STTModel] = None
    tts_model: Optional[TTSModel] = None
    tools: Optional[List[str]] = None
    is_public: Optional[bool] = None
    enable_knowledge_base: Optional[bool] = None

    validate_tools = field_validator("tools")(_check_tools)


class AgentConfigResponse(CamelModel):
    id: str
    user_id: str
    name: str
    instructions: str
    voice: str
    voice_instructions: Optional[str] = None
    greeting: Optional[str] = None
    model: str
    stt_model: str
    tts_model: str
    tools: List[str] = []
    is_public: bool
    share_code: Optional[str] = None
    enable_knowledge_base: bool
    created_at: datetime
    updated_at: datetime


class AgentOptionsResponse(CamelModel):
    llm_options: List[Dict[str, Any]]
    stt_options: List[Dict[str, Any]]
    tts_options: List[Dict[str, Any]]
    voice_options: List[Dict[str, Any]]


# ============ Session / Sharing Schemas ============

class TokenRequest(CamelModel):
    agent_config_id: str
    participant_name: Optional[str] = Field(None, min_length=1, max_length=100)


class PublicTokenRequest(CamelModel):
    participant_name: Optional[str] = Field(None, min_length=1, max_length=100)


class TokenResponse(CamelModel):
    token: str
    url: str
    room_name: str


class ShareInfoResponse(CamelModel):
    name: str
    greeting: Optional[str] = None
    share_code: str


# ============ OAuth Schemas ============

class OAuthConnectionStatus(CamelModel):
    """Safe projection of an OAuth connection (no tokens)"""
    id: str
    provider: str
    email: Optional[str] = None
    is_connected: bool = True
    connected_at: datetime


class AuthUrlResponse(CamelModel):
    auth_url: str


class AccessTokenResponse(CamelModel):
    access_token: str


# ============ Tool Schemas ============

class ToolStatusResponse(CamelModel):
    id: str
    name: str
    description: str
    requires_auth: bool = False
    requires_api_key: bool = False
    auth_provider: Optional[str] = None
    api_key_env_var: Optional[str] = None
    scopes: Optional[List[str]] = None
    status: Literal["available", "needs_auth", "needs_api_key"]
    connected_email: Optional[str] = None


# ============ Telephony Schemas ============

class TelephonyCreateRequest(CamelModel):
    region: str = "MH"  # Indian telecom circle (MH=Maharashtra, DL=Delhi, KA=Karnataka, ...)
    phone_number: Optional[str] = None


class TelephonyUpdateRequest(CamelModel):
    is_active: Optional[bool] = None


class SipConfig(CamelModel):
    sip_uri: str
    sip_domain: str


class TelephonyStatusResponse(CamelModel):
    id: str
    agent_config_id: str
    phone_number: str
    is_active: bool
    has_inbound: bool
    has_outbound: bool
    created_at: datetime
    status: Optional[Literal["active", "pending_configuration"]] = None
    status_message: Optional[str] = None
    sip_uri: Optional[str] = None
    sip_domain: Optional[str] = None
    sip_config: Optional[SipConfig] = None
    next_steps: Optional[List[str]] = None
    message: Optional[str] = None


class TelephonyActivateResponse(CamelModel):
    message: str
    status: Optional[str] = None
    phone_number: Optional[str] = None
    is_active: bool


class TelephonyRecreateResponse(CamelModel):
    message: str
    dispatch_rule_id: Optional[str] = None
    sip_uri: str
    sip_domain: str


class OwnedNumber(CamelModel):
    sid: str
    phone_number: str
    friendly_name: Optional[str] = None
    capabilities: Dict[str, bool] = {}
    date_created: Optional[str] = None


class OwnedNumbersResponse(CamelModel):
    numbers: List[OwnedNumber]


class OutboundCallRequest(CamelModel):
    agent_config_id: str
    to_phone_number: str = Field(..., min_length=10, max_length=20)


class OutboundCallResponse(CamelModel):
    room_name: str
    call_sid: str
    status: Literal["calling", "in-progress", "completed", "failed"] = "calling"


class PendingTelephonyConfig(CamelModel):
    id: str
    agent_config_id: str
    agent_name: str
    user_id: str
    phone_number: str
    exophone_sid: str
    sip_domain: str
    dispatch_rule_id: Optional[str] = None
    created_at: datetime


class PendingTelephonyResponse(CamelModel):
    total: int
    configs: List[PendingTelephonyConfig]


class SipTrunkSummary(CamelModel):
    sip_trunk_id: str
    name: str
    numbers: List[str] = []
    agent_config_id: Optional[str] = None


class SipTrunkListResponse(CamelModel):
    inbound: List[SipTrunkSummary]
    outbound: List[SipTrunkSummary]


class AvailableNumber(CamelModel):
    phone_number: str
    friendly_name: Optional[str] = None
    country: str = "IN"
    region: Optional[str] = None


class AvailableNumbersResponse(CamelModel):
    region: str
    numbers: List[AvailableNumber]


class NumberPurchaseRequest(CamelModel):
    phone_number: str = Field(..., min_length=10, max_length=20)
    friendly_name: str = Field(..., min_length=1, max_length=100)


class NumberUpdateRequest(CamelModel):
    friendly_name: str = Field(..., min_length=1, max_length=100)


# ============ Knowledge Base Schemas ============

class KnowledgeBaseDocumentResponse(CamelModel):
    id: str
    document_name: str
    document_type: str
    file_size_bytes: Optional[int] = None
    chunk_count: int = 0
    created_at: datetime


class KnowledgeBaseDocumentList(CamelModel):
    documents: List[KnowledgeBaseDocumentResponse]


class KnowledgeBaseUploadResponse(CamelModel):
    success: bool = True
    document_id: str
    message: str


class KnowledgeBaseQueryRequest(CamelModel):
    query: str = ""
    top_k: int = Field(3, ge=1, le=20)


class KnowledgeBaseResult(CamelModel):
    text: str
    score: Optional[float] = None
    metadata: Dict[str, Any] = {}


class KnowledgeBaseQueryResponse(CamelModel):
    results: List[KnowledgeBaseResult]


class SuccessResponse(CamelModel):
    success: bool = True
    message: str
