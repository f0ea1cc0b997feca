from app.services.cache import KeyValueCache, MemoryCache, RedisCache, get_cache, set_cache
from app.services.http_client import request_with_retry, call_with_retry
from app.services.exotel_client import (
    ExotelClient, ExotelAPIError, ExotelNotConfigured, get_exotel_client,
    normalize_phone, format_phone_for_exotel, find_number,
)
from app.services.knowledge_base_service import (
    KnowledgeBaseService, KnowledgeBaseError, KnowledgeBaseNotConfigured,
    get_knowledge_base_service,
)
from app.services.sip_service import TelephonyProvisioningError, SipSetupResult

__all__ = [
    # Cache
    "KeyValueCache",
    "MemoryCache",
    "RedisCache",
    "get_cache",
    "set_cache",
    # Outbound call policy
    "request_with_retry",
    "call_with_retry",
    # Exotel
    "ExotelClient",
    "ExotelAPIError",
    "ExotelNotConfigured",
    "get_exotel_client",
    "normalize_phone",
    "format_phone_for_exotel",
    "find_number",
    # Knowledge base
    "KnowledgeBaseService",
    "KnowledgeBaseError",
    "KnowledgeBaseNotConfigured",
    "get_knowledge_base_service",
    # SIP
    "TelephonyProvisioningError",
    "SipSetupResult",
]
