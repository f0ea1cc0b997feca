from app.api.users import router as users_router
from app.api.agents import router as agents_router
from app.api.sessions import router as sessions_router
from app.api.oauth import router as oauth_router
from app.api.tools import router as tools_router
from app.api.telephony import router as telephony_router
from app.api.knowledge_base import router as knowledge_base_router
from app.api.internal import router as internal_router
from app.api.admin import telephony_router as admin_telephony_router
from app.api.deps import get_current_user_id, verify_internal_api_key

__all__ = [
    "users_router",
    "agents_router",
    "sessions_router",
    "oauth_router",
    "tools_router",
    "telephony_router",
    "knowledge_base_router",
    "internal_router",
    "admin_telephony_router",
    "get_current_user_id",
    "verify_internal_api_key",
]
