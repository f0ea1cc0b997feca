"""
app.api.admin - Admin package

Exports:
  telephony_router - pending configs, activation, Exotel numbers and SIP trunks (operators)
  require_admin    - FastAPI dependency for admin-only endpoints
"""

from app.api.admin.telephony import router as telephony_router
from app.api.admin.deps import require_admin

__all__ = [
    "telephony_router",
    "require_admin",
]
