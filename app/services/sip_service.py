"""
SIP provisioning - per-agent LiveKit trunks and dispatch rules for Exotel numbers.

For each agent with telephony:
  - inbound trunk   trunk-in-<id8>    accepts calls for the Exophone from Exotel's SIP IPs
  - outbound trunk  trunk-out-<id8>   dials out through Exotel's SIP gateway
  - dispatch rule   dispatch-<id8>    puts each inbound call in its own room
                                      call-<id8>-* and dispatches the voice worker

Setup is all-or-nothing: when a step fails, whatever this call already
created is deleted again before the error is raised. Teardown is
best-effort and never raises.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from livekit import api

from app.config import settings
from app.services.http_client import call_with_retry
from app.services.livekit_service import livekit_api

logger = logging.getLogger(__name__)

PLATFORM_SIP_DOMAIN_KEY = "LIVEKIT_EXOTEL_FQDN"


class TelephonyProvisioningError(Exception):
    """SIP setup failed; partially created resources were rolled back."""


@dataclass
class SipSetupResult:
    inbound_trunk_id: str
    outbound_trunk_id: Optional[str]
    dispatch_rule_id: str
    sip_domain: str
    sip_uri: str


@dataclass
class SipResources:
    """Identifiers of the remote objects owned by one telephony config."""
    inbound_trunk_id: Optional[str] = None
    outbound_trunk_id: Optional[str] = None
    dispatch_rule_id: Optional[str] = None

    @classmethod
    def from_config(cls, config) -> "SipResources":
        return cls(
            inbound_trunk_id=config.inbound_trunk_id,
            outbound_trunk_id=config.outbound_trunk_id,
            dispatch_rule_id=config.dispatch_rule_id,
        )


def derive_sip_domain() -> str:
    """EXOTEL_SIP_DOMAIN, or <project>.sip.livekit.cloud from LIVEKIT_URL."""
    if settings.exotel_sip_domain:
        return settings.exotel_sip_domain
    host = settings.livekit_url
    for scheme in ("wss://", "ws://", "https://", "http://"):
        if host.startswith(scheme):
            host = host[len(scheme):]
            break
    host = host.rstrip("/").replace(".livekit.cloud", "")
    return f"{host}.sip.livekit.cloud"


def outbound_trunk_number(phone_number: str) -> str:
    """Exophone as registered on the outbound trunk: no +91, no leading 0."""
    num = phone_number
    if num.startswith("+91"):
        num = num[3:]
    return num[1:] if num.startswith("0") else num


def _allowed_addresses() -> List[str]:
    return [ip.strip() for ip in settings.exotel_sip_ips.split(",") if ip.strip()]


def _trunk_metadata(agent_id: str, phone_number: str, direction: str) -> str:
    return json.dumps({
        "agentConfigId": agent_id,
        "phoneNumber": phone_number,
        "createdAt": datetime.utcnow().isoformat(),
        "provider": "exotel",
        "direction": direction,
    })


async def setup_telephony_for_agent(agent_id: str, phone_number: str) -> SipSetupResult:
    """Create inbound trunk, outbound trunk and dispatch rule for one agent."""
    short_id = agent_id[:8]
    created = SipResources()

    async with livekit_api() as lk:
        try:
            inbound = await call_with_retry(
                lambda: lk.sip.create_sip_inbound_trunk(
                    api.CreateSIPInboundTrunkRequest(
                        trunk=api.SIPInboundTrunkInfo(
                            name=f"trunk-in-{short_id}",
                            numbers=[phone_number],
                            allowed_addresses=_allowed_addresses(),
                            metadata=_trunk_metadata(agent_id, phone_number, "inbound"),
                        )
                    )
                ),
                label="SIP",
            )
            created.inbound_trunk_id = inbound.sip_trunk_id
            logger.info(f"[SIP] Created inbound trunk {inbound.sip_trunk_id} for agent {agent_id}")

            outbound = await call_with_retry(
                lambda: lk.sip.create_sip_outbound_trunk(
                    api.CreateSIPOutboundTrunkRequest(
                        trunk=api.SIPOutboundTrunkInfo(
                            name=f"trunk-out-{short_id}",
                            address=settings.exotel_outbound_sip,
                            numbers=[outbound_trunk_number(phone_number)],
                            auth_username=settings.exotel_sip_username or "",
                            auth_password=settings.exotel_sip_password or "",
                            metadata=_trunk_metadata(agent_id, phone_number, "outbound"),
                        )
                    )
                ),
                label="SIP",
            )
            created.outbound_trunk_id = outbound.sip_trunk_id
            logger.info(f"[SIP] Created outbound trunk {outbound.sip_trunk_id} for agent {agent_id}")

            rule = await call_with_retry(
                lambda: lk.sip.create_sip_dispatch_rule(
                    api.CreateSIPDispatchRuleRequest(
                        rule=api.SIPDispatchRule(
                            dispatch_rule_individual=api.SIPDispatchRuleIndividual(
                                room_prefix=f"call-{short_id}-",
                            )
                        ),
                        name=f"dispatch-{short_id}",
                        trunk_ids=[inbound.sip_trunk_id],
                        hide_phone_number=False,
                        room_config=api.RoomConfiguration(
                            agents=[
                                api.RoomAgentDispatch(
                                    agent_name=settings.agent_name,
                                    metadata=json.dumps({
                                        "agentConfigId": agent_id,
                                        "phoneNumber": phone_number,
                                        "type": "inbound",
                                    }),
                                )
                            ],
                        ),
                    )
                ),
                label="SIP",
            )
            created.dispatch_rule_id = rule.sip_dispatch_rule_id
            logger.info(f"[SIP] Created dispatch rule {rule.sip_dispatch_rule_id} for agent {agent_id}")
        except Exception as e:
            logger.error(f"[SIP] Setup failed for agent {agent_id}: {e!r}; rolling back")
            await _delete_resources(lk, created)
            raise TelephonyProvisioningError(f"SIP setup failed: {e}") from e

    sip_domain = derive_sip_domain()
    return SipSetupResult(
        inbound_trunk_id=created.inbound_trunk_id,
        outbound_trunk_id=created.outbound_trunk_id,
        dispatch_rule_id=created.dispatch_rule_id,
        sip_domain=sip_domain,
        sip_uri=f"sip:{sip_domain}",
    )


async def _delete_resources(lk: api.LiveKitAPI, resources: SipResources) -> List[Tuple[str, str]]:
    """Delete dispatch rule, inbound trunk, outbound trunk. Returns (resource, error) failures."""
    steps = []
    if resources.dispatch_rule_id:
        rule_id = resources.dispatch_rule_id
        steps.append((
            f"dispatch rule {rule_id}",
            lambda: lk.sip.delete_sip_dispatch_rule(api.DeleteSIPDispatchRuleRequest(sip_dispatch_rule_id=rule_id)),
        ))
    for trunk_id in (resources.inbound_trunk_id, resources.outbound_trunk_id):
        if trunk_id:
            steps.append((
                f"trunk {trunk_id}",
                lambda trunk_id=trunk_id: lk.sip.delete_sip_trunk(api.DeleteSIPTrunkRequest(sip_trunk_id=trunk_id)),
            ))

    failures = []
    for what, make_call in steps:
        try:
            await call_with_retry(make_call, label="SIP")
            logger.info(f"[SIP] Deleted {what}")
        except Exception as e:
            logger.warning(f"[SIP] Failed to delete {what}: {e!r}")
            failures.append((what, str(e)))
    return failures


async def teardown_sip_resources(resources: SipResources) -> List[Tuple[str, str]]:
    """Best-effort removal of an agent's SIP objects; never raises."""
    try:
        async with livekit_api() as lk:
            return await _delete_resources(lk, resources)
    except Exception as e:
        logger.warning(f"[SIP] Teardown aborted: {e!r}")
        return [("livekit", str(e))]


async def teardown_telephony(config) -> List[Tuple[str, str]]:
    """Tear down the remote SIP objects referenced by a TelephonyConfig row."""
    logger.info(f"[SIP] Tearing down telephony for agent {config.agent_config_id}")
    return await teardown_sip_resources(SipResources.from_config(config))


async def recreate_telephony_setup(config) -> SipSetupResult:
    """Rebuild trunks and dispatch rule (e.g. after changing the agent name or SIP IPs)."""
    await teardown_telephony(config)
    return await setup_telephony_for_agent(config.agent_config_id, config.phone_number)


def trunk_summary(trunk: Any) -> Dict[str, Any]:
    """Plain view of a LiveKit trunk; agent id comes from the trunk metadata."""
    try:
        metadata = json.loads(trunk.metadata) if trunk.metadata else {}
    except ValueError:
        metadata = {}
    return {
        "sip_trunk_id": trunk.sip_trunk_id,
        "name": trunk.name,
        "numbers": list(trunk.numbers),
        "agent_config_id": metadata.get("agentConfigId"),
    }


async def list_trunks() -> Dict[str, List[Dict[str, Any]]]:
    """Every SIP trunk in the LiveKit project, split by direction."""
    async with livekit_api() as lk:
        inbound = await call_with_retry(
            lambda: lk.sip.list_sip_inbound_trunk(api.ListSIPInboundTrunkRequest()), label="SIP"
        )
        outbound = await call_with_retry(
            lambda: lk.sip.list_sip_outbound_trunk(api.ListSIPOutboundTrunkRequest()), label="SIP"
        )
    return {
        "inbound": [trunk_summary(t) for t in inbound.items],
        "outbound": [trunk_summary(t) for t in outbound.items],
    }


async def dial_sip_participant(
    room_name: str,
    outbound_trunk_id: str,
    to_number: str,
    identity: Optional[str] = None,
) -> str:
    """Have LiveKit dial ``to_number`` through the outbound trunk into ``room_name``."""
    identity = identity or f"sip_{uuid.uuid4().hex[:8]}"
    async with livekit_api() as lk:
        participant = await call_with_retry(
            lambda: lk.sip.create_sip_participant(
                api.CreateSIPParticipantRequest(
                    sip_trunk_id=outbound_trunk_id,
                    sip_call_to=to_number,
                    room_name=room_name,
                    participant_identity=identity,
                    participant_name="Phone Caller",
                )
            ),
            label="SIP",
            max_retries=0,
        )
    logger.info(f"[SIP] Dialing {to_number} into {room_name} as {identity}")
    return getattr(participant, "sip_call_id", "") or identity
