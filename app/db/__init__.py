from app.db.models import (
    Base, User, AgentConfig, TelephonyConfig, OAuthConnection,
    KnowledgeBaseDocument, PlatformConfig,
    DocumentType, OAuthProvider,
)
from app.db.database import get_db, init_db, drop_db, async_session_maker, engine

__all__ = [
    "Base",
    "User",
    "AgentConfig",
    "TelephonyConfig",
    "OAuthConnection",
    "KnowledgeBaseDocument",
    "PlatformConfig",
    "DocumentType",
    "OAuthProvider",
    # Database
    "get_db",
    "init_db",
    "drop_db",
    "async_session_maker",
    "engine",
]
