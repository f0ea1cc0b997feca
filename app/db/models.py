"""
Database models for Voice Studio

- Users own agent configurations
- An agent config can carry one telephony configuration (SIP trunks + number)
- Knowledge-base documents are indexed per agent in the retrieval service
- OAuth connections hold third-party tokens for agent tools
"""

from datetime import datetime
from typing import Optional, List
from enum import Enum
import uuid

from sqlalchemy import (
    String, Text, DateTime, Integer, BigInteger, Boolean,
    ForeignKey, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class DocumentType(str, Enum):
    """Knowledge-base document types"""
    PDF = "pdf"
    TXT = "txt"
    MD = "md"
    JSON = "json"


class OAuthProvider(str, Enum):
    """Supported OAuth providers"""
    GOOGLE = "google"


class User(Base):
    """User account"""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    agent_configs: Mapped[List["AgentConfig"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    oauth_connections: Mapped[List["OAuthConnection"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )


class AgentConfig(Base):
    """
    A user's voice agent: persona, model selection, tools and sharing settings.

    The resolved config is copied into room metadata when a voice session
    starts, so the worker never reads this table directly.
    """
    __tablename__ = "agent_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True)

    # Persona
    name: Mapped[str] = mapped_column(String(100))
    instructions: Mapped[str] = mapped_column(Text)
    voice: Mapped[str] = mapped_column(String(100), default="ash")
    voice_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # gpt-4o-mini-tts only
    greeting: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Pipeline models ("provider/model" ids for STT and TTS)
    model: Mapped[str] = mapped_column(String(50), default="gpt-4.1-mini")
    stt_model: Mapped[str] = mapped_column(String(100), default="openai/gpt-4o-transcribe")
    tts_model: Mapped[str] = mapped_column(String(100), default="openai/gpt-4o-mini-tts")

    # Enabled tool ids; end_call is implicit
    tools: Mapped[list] = mapped_column(JSON, default=list)

    # Sharing
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    share_code: Mapped[Optional[str]] = mapped_column(String(16), unique=True, nullable=True)

    # Knowledge base
    enable_knowledge_base: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user: Mapped["User"] = relationship(back_populates="agent_configs")
    telephony_config: Mapped[Optional["TelephonyConfig"]] = relationship(
        back_populates="agent_config", uselist=False, cascade="all, delete-orphan", passive_deletes=True
    )
    documents: Mapped[List["KnowledgeBaseDocument"]] = relationship(
        back_populates="agent_config", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_agent_configs_user_created", "user_id", "created_at"),
    )


class TelephonyConfig(Base):
    """
    Phone number + LiveKit SIP resources provisioned for one agent.

    Rows are created inactive; an operator activates them once the vendor
    has routed the number to the SIP domain.
    """
    __tablename__ = "telephony_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agent_config_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("agent_configs.id", ondelete="CASCADE"), unique=True, index=True
    )

    phone_number: Mapped[str] = mapped_column(String(20))
    exophone_sid: Mapped[str] = mapped_column(String(100))

    inbound_trunk_id: Mapped[str] = mapped_column(String(100))
    outbound_trunk_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sip_domain: Mapped[str] = mapped_column(String(255))
    dispatch_rule_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    agent_config: Mapped["AgentConfig"] = relationship(back_populates="telephony_config")


class OAuthConnection(Base):
    """Third-party OAuth tokens for a user (never returned to the frontend)"""
    __tablename__ = "oauth_connections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    provider: Mapped[str] = mapped_column(String(20))  # OAuthProvider enum

    access_token: Mapped[str] = mapped_column(Text)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    scope: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # Connected account

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user: Mapped["User"] = relationship(back_populates="oauth_connections")

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_oauth_connections_user_provider"),
    )


class KnowledgeBaseDocument(Base):
    """A document indexed into an agent's retrieval pipeline"""
    __tablename__ = "knowledge_base_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agent_config_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("agent_configs.id", ondelete="CASCADE"), index=True
    )

    document_name: Mapped[str] = mapped_column(String(255))
    document_type: Mapped[str] = mapped_column(String(10))  # DocumentType enum
    file_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    file_size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    chunk_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    agent_config: Mapped["AgentConfig"] = relationship(back_populates="documents")


class PlatformConfig(Base):
    """Global key/value settings (e.g. the shared SIP domain)"""
    __tablename__ = "platform_config"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    key: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    value: Mapped[str] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
