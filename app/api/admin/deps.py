"""Shared admin dependencies - require_admin guard."""

from fastapi import Depends

from app.api.deps import verify_internal_api_key


async def require_admin(_: None = Depends(verify_internal_api_key)) -> None:
    """FastAPI dependency: operator routes use the internal x-api-key."""
