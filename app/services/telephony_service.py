"""
Telephony service - phone numbers, SIP provisioning and outbound calls for agents.

Ties the database rows (TelephonyConfig, PlatformConfig) to the Exotel
inventory and the LiveKit SIP resources.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.models import AgentConfig, PlatformConfig, TelephonyConfig
from app.services import exotel_client, livekit_service, sip_service

logger = logging.getLogger(__name__)


class PhoneNumberNotOwned(Exception):
    """The requested number is not in the Exotel account inventory."""

    def __init__(self, phone_number: str, available: List[str]):
        self.phone_number = phone_number
        self.available = available
        super().__init__(
            f"Phone number {phone_number} not found in your account. "
            f"Available numbers: {', '.join(available) or 'none'}. "
            "Please verify the number is properly configured."
        )


class TelephonyNotActive(Exception):
    pass


@dataclass
class OutboundCallResult:
    room_name: str
    call_sid: str


async def get_telephony_config(db: AsyncSession, agent_id: str) -> Optional[TelephonyConfig]:
    result = await db.execute(
        select(TelephonyConfig).where(TelephonyConfig.agent_config_id == agent_id)
    )
    return result.scalar_one_or_none()


async def upsert_platform_config(
    db: AsyncSession, key: str, value: str, description: Optional[str] = None
) -> PlatformConfig:
    result = await db.execute(select(PlatformConfig).where(PlatformConfig.key == key))
    row = result.scalar_one_or_none()
    if row is None:
        row = PlatformConfig(key=key, value=value, description=description)
        db.add(row)
    else:
        row.value = value
        if description is not None:
            row.description = description
    return row


async def provision_telephony(db: AsyncSession, agent: AgentConfig, phone_number: str) -> tuple:
    """Attach an owned Exophone to ``agent``.

    Looks the number up in the Exotel inventory, creates the SIP trunks and
    dispatch rule, then stores an inactive TelephonyConfig. If the row
    cannot be stored the SIP resources are torn down again.

    Returns (TelephonyConfig, SipSetupResult).
    """
    phone_number = phone_number.strip()
    exotel = exotel_client.get_exotel_client()
    numbers = await exotel.list_numbers()
    owned = exotel_client.find_number(numbers, phone_number)
    if owned is None:
        raise PhoneNumberNotOwned(phone_number, [n.phone_number for n in numbers])
    logger.info(f"[TELEPHONY] Using Exophone {owned.phone_number} ({owned.sid}) for agent {agent.id}")

    sip = await sip_service.setup_telephony_for_agent(agent.id, phone_number)

    try:
        config = TelephonyConfig(
            agent_config_id=agent.id,
            phone_number=phone_number,
            exophone_sid=owned.sid,
            inbound_trunk_id=sip.inbound_trunk_id,
            outbound_trunk_id=sip.outbound_trunk_id,
            sip_domain=sip.sip_domain,
            dispatch_rule_id=sip.dispatch_rule_id,
            is_active=False,
        )
        db.add(config)
        await upsert_platform_config(
            db, sip_service.PLATFORM_SIP_DOMAIN_KEY, sip.sip_domain,
            "LiveKit SIP domain that Exotel routes calls to",
        )
        await db.commit()
        await db.refresh(config)
    except Exception:
        await db.rollback()
        logger.error(f"[TELEPHONY] Failed to store config for agent {agent.id}; removing SIP resources")
        await sip_service.teardown_sip_resources(sip_service.SipResources(
            inbound_trunk_id=sip.inbound_trunk_id,
            outbound_trunk_id=sip.outbound_trunk_id,
            dispatch_rule_id=sip.dispatch_rule_id,
        ))
        raise

    logger.info(
        f"[TELEPHONY] Number {phone_number} provisioned for agent {agent.id}. "
        f"Ask Exotel to route it to {sip.sip_uri} (IP-based auth), then activate."
    )
    return config, sip


async def delete_telephony(db: AsyncSession, config: TelephonyConfig) -> None:
    """Remote teardown first (best-effort), then the local row.

    The Exophone itself is kept in the Exotel account; releasing it is a
    manual operation.
    """
    failures = await sip_service.teardown_telephony(config)
    if failures:
        logger.warning(f"[TELEPHONY] Teardown incomplete for agent {config.agent_config_id}: {failures}")
    logger.info(f"[TELEPHONY] Not releasing phone number {config.phone_number} (manual release required)")
    await db.delete(config)
    await db.commit()


async def recreate_telephony(db: AsyncSession, config: TelephonyConfig) -> sip_service.SipSetupResult:
    result = await sip_service.recreate_telephony_setup(config)
    config.inbound_trunk_id = result.inbound_trunk_id
    config.outbound_trunk_id = result.outbound_trunk_id
    config.dispatch_rule_id = result.dispatch_rule_id
    config.sip_domain = result.sip_domain
    await db.commit()
    await db.refresh(config)
    return result


async def set_active(db: AsyncSession, config: TelephonyConfig, is_active: bool = True) -> TelephonyConfig:
    config.is_active = is_active
    await db.commit()
    await db.refresh(config)
    logger.info(f"[TELEPHONY] Agent {config.agent_config_id} telephony is_active={is_active}")
    return config


async def list_pending(db: AsyncSession) -> List[tuple]:
    """Inactive configs with their agent, newest first."""
    result = await db.execute(
        select(TelephonyConfig, AgentConfig)
        .join(AgentConfig, AgentConfig.id == TelephonyConfig.agent_config_id)
        .where(TelephonyConfig.is_active.is_(False))
        .order_by(TelephonyConfig.created_at.desc())
    )
    return list(result.all())


async def place_outbound_call(
    db: AsyncSession, agent: AgentConfig, to_number: str
) -> OutboundCallResult:
    """Call ``to_number`` with the agent on the line.

    exotel_connect: Exotel dials the customer and runs the configured flow,
    which bridges into the agent's inbound trunk; the dispatch rule creates
    the call-<id8>-* room and the worker joins.

    sip_participant: a room is created up-front with outbound metadata and
    LiveKit dials the customer through the outbound trunk.
    """
    config = await get_telephony_config(db, agent.id)
    if config is None or not config.is_active:
        raise TelephonyNotActive("Telephony not configured or not active for this agent")

    short_id = agent.id[:8]

    if settings.outbound_call_mode == "sip_participant":
        if not config.outbound_trunk_id:
            raise TelephonyNotActive("Agent has no outbound trunk")
        room_name = f"call-{short_id}-out-{uuid.uuid4().hex[:8]}"
        metadata = livekit_service.build_room_metadata(agent)
        metadata.update({
            "type": "outbound",
            "isOutboundCall": True,
            "phoneNumber": config.phone_number,
            "toNumber": to_number,
        })
        await livekit_service.create_agent_room(room_name, metadata)
        call_id = await sip_service.dial_sip_participant(room_name, config.outbound_trunk_id, to_number)
        return OutboundCallResult(room_name=room_name, call_sid=call_id)

    exotel = exotel_client.get_exotel_client()
    call = await exotel.place_outbound_call(config.phone_number, to_number, app_id=settings.exotel_app_id)
    # Room is created by the dispatch rule when the flow reaches the trunk
    return OutboundCallResult(room_name=f"call-{short_id}-{call.sid}", call_sid=call.sid)


def status_payload(config: TelephonyConfig) -> dict:
    """Safe status view of a TelephonyConfig (no trunk credentials)."""
    payload = {
        "id": config.id,
        "agent_config_id": config.agent_config_id,
        "phone_number": config.phone_number,
        "is_active": config.is_active,
        "has_inbound": bool(config.dispatch_rule_id),
        "has_outbound": True,
        "created_at": config.created_at,
        "status": "active" if config.is_active else "pending_configuration",
        "status_message": (
            "Telephony is active and ready to receive calls"
            if config.is_active
            else "Phone number setup in progress. Awaiting final configuration."
        ),
        "sip_uri": f"sip:{config.sip_domain}",
        "sip_domain": config.sip_domain,
    }
    if not config.is_active:
        payload["next_steps"] = [
            "Complete telephony provider configuration",
            "Verify phone number is properly routed",
            "Once confirmed, activate telephony for this agent",
        ]
    return payload
