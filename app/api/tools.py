"""Tool catalog with per-user availability"""

import os
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id
from app.catalog import TOOL_OPTIONS
from app.config import settings
from app.db import get_db
from app.schemas import ToolStatusResponse
from app.services import oauth_service

router = APIRouter(prefix="/tools", tags=["Tools"])


def _api_key_present(env_var: str) -> bool:
    # Settings cover the keys we know; anything else is read from the environment
    value = getattr(settings, env_var.lower(), None)
    return bool(value or os.environ.get(env_var))


@router.get("", response_model=List[ToolStatusResponse])
async def list_tools(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Available tools and whether this user can enable them.

    status is ``needs_auth`` without the required OAuth connection and
    ``needs_api_key`` when the server lacks the tool's API key.
    """
    connections = await oauth_service.list_connections(db, user_id)
    by_provider = {conn.provider: conn for conn in connections}

    tools = []
    for tool in TOOL_OPTIONS:
        tool_status = "available"
        connected_email = None

        if tool.get("requiresAuth"):
            connection = by_provider.get(tool.get("authProvider"))
            if connection is None:
                tool_status = "needs_auth"
            else:
                connected_email = connection.email

        if tool.get("requiresApiKey") and not _api_key_present(tool["apiKeyEnvVar"]):
            tool_status = "needs_api_key"

        tools.append(ToolStatusResponse(
            id=tool["id"],
            name=tool["name"],
            description=tool["description"],
            requires_auth=tool.get("requiresAuth", False),
            requires_api_key=tool.get("requiresApiKey", False),
            auth_provider=tool.get("authProvider"),
            api_key_env_var=tool.get("apiKeyEnvVar"),
            scopes=tool.get("scopes"),
            status=tool_status,
            connected_email=connected_email,
        ))
    return tools
