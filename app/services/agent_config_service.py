"""Agent config service - CRUD, share codes and lookups for agent configurations"""

import logging
import secrets
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import AgentConfig

logger = logging.getLogger(__name__)

# No 0/O, 1/I/l/i, o
SHARE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghjkmnpqrstuvwxyz23456789"
SHARE_CODE_LENGTH = 10
SHARE_CODE_ATTEMPTS = 5


def generate_share_code(length: int = SHARE_CODE_LENGTH) -> str:
    """Random URL-safe share code from an unambiguous alphabet."""
    return "".join(secrets.choice(SHARE_CODE_ALPHABET) for _ in range(length))


async def list_agent_configs(db: AsyncSession, user_id: str) -> List[AgentConfig]:
    """A user's agents, newest first."""
    result = await db.execute(
        select(AgentConfig)
        .where(AgentConfig.user_id == user_id)
        .order_by(AgentConfig.created_at.desc())
    )
    return list(result.scalars().all())


async def get_agent_config(db: AsyncSession, agent_id: str) -> Optional[AgentConfig]:
    result = await db.execute(select(AgentConfig).where(AgentConfig.id == agent_id))
    return result.scalar_one_or_none()


async def get_owned_agent_config(db: AsyncSession, agent_id: str, user_id: str) -> Optional[AgentConfig]:
    """Agent ``agent_id`` if ``user_id`` owns it."""
    result = await db.execute(
        select(AgentConfig).where(AgentConfig.id == agent_id, AgentConfig.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_public_agent_by_share_code(db: AsyncSession, share_code: str) -> Optional[AgentConfig]:
    """Only public agents are reachable through their share code."""
    result = await db.execute(
        select(AgentConfig).where(
            AgentConfig.share_code == share_code,
            AgentConfig.is_public.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def get_agent_config_by_prefix(db: AsyncSession, prefix: str) -> Optional[AgentConfig]:
    """First agent whose id starts with ``prefix`` (telephony room names carry 8 chars)."""
    result = await db.execute(
        select(AgentConfig)
        .where(AgentConfig.id.startswith(prefix, autoescape=True))
        .order_by(AgentConfig.created_at)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def unused_share_code(db: AsyncSession) -> str:
    """A share code no other agent holds."""
    for _ in range(SHARE_CODE_ATTEMPTS):
        code = generate_share_code()
        taken = await db.execute(select(AgentConfig.id).where(AgentConfig.share_code == code))
        if taken.scalar_one_or_none() is None:
            return code
        logger.warning("[AGENTS] Share code collision, retrying")
    raise RuntimeError("Could not allocate a unique share code")


async def create_agent_config(db: AsyncSession, user_id: str, data: dict) -> AgentConfig:
    """Create an agent. ``data`` uses model attribute names (snake_case)."""
    agent = AgentConfig(user_id=user_id, **data)
    if agent.is_public:
        agent.share_code = await unused_share_code(db)
    db.add(agent)
    await db.commit()
    await db.refresh(agent)
    logger.info(f"[AGENTS] Created agent {agent.id} for user {user_id}")
    return agent


async def update_agent_config(db: AsyncSession, agent: AgentConfig, changes: dict) -> AgentConfig:
    """Apply a partial update.

    Turning ``is_public`` on assigns a fresh share code; turning it off
    clears the code, so old links stop working for good.
    """
    for key, value in changes.items():
        setattr(agent, key, value)
    if agent.is_public and not agent.share_code:
        agent.share_code = await unused_share_code(db)
    elif not agent.is_public:
        agent.share_code = None
    await db.commit()
    await db.refresh(agent)
    return agent


async def delete_agent_config(db: AsyncSession, agent: AgentConfig) -> None:
    await db.delete(agent)
    await db.commit()
    logger.info(f"[AGENTS] Deleted agent {agent.id}")
