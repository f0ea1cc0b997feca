"""
Voice worker entrypoint - one AgentSession per LiveKit room.

The worker is dispatched explicitly (agent_name) into rooms created by the
API for web / share sessions and by the SIP dispatch rule for phone calls.
"""

import asyncio
import logging
from typing import Optional

from livekit import rtc
from livekit.agents import (
    Agent,
    AgentSession,
    JobContext,
    JobProcess,
    MetricsCollectedEvent,
    RoomInputOptions,
    metrics,
)
from livekit.plugins import noise_cancellation, silero
from livekit.plugins.turn_detector.multilingual import MultilingualModel

from app.logging_config import set_request_context
from app.voice.persona import AgentRuntimeConfig, InternalAPIClient, is_outbound, parse_room_metadata, resolve_runtime_config
from app.voice.providers import build_llm, build_stt, build_tts, resolve_stt, resolve_tts
from app.voice.tools import ToolContext, build_tools

logger = logging.getLogger(__name__)

OUTBOUND_GREETING_DELAY_SECONDS = 1.5
OUTBOUND_GREETING_TIMEOUT_SECONDS = 10.0
OUTBOUND_FALLBACK_GREETING = "Hello! This is a call from your AI assistant. How can I help you today?"


def is_sip_participant(participant) -> bool:
    """Phone callers join as ``sip_...`` or ``+<number>`` identities."""
    if getattr(participant, "kind", None) == rtc.ParticipantKind.PARTICIPANT_KIND_SIP:
        return True
    identity = participant.identity or ""
    return identity.startswith("sip_") or identity.startswith("+")


def find_sip_participant(room) -> Optional[object]:
    for participant in room.remote_participants.values():
        if is_sip_participant(participant):
            return participant
    return None


class VoiceAssistant(Agent):
    def __init__(self, config: AgentRuntimeConfig, tools: list) -> None:
        super().__init__(instructions=config.instructions, tools=tools)
        self.config = config


def prewarm(proc: JobProcess):
    proc.userdata["vad"] = silero.VAD.load()


async def wait_for_sip_participant(room, timeout: Optional[float] = None) -> bool:
    """Wait until a SIP participant is in ``room``. False on timeout."""
    if timeout is None:
        timeout = OUTBOUND_GREETING_TIMEOUT_SECONDS
    if find_sip_participant(room):
        return True

    joined = asyncio.Event()

    def on_participant_connected(participant):
        if is_sip_participant(participant):
            logger.info(f"[WORKER] SIP participant joined: {participant.identity}")
            joined.set()

    room.on("participant_connected", on_participant_connected)
    try:
        await asyncio.wait_for(joined.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return find_sip_participant(room) is not None
    finally:
        room.off("participant_connected", on_participant_connected)


async def greet(session: AgentSession, ctx: JobContext, config: AgentRuntimeConfig, outbound: bool) -> None:
    """Inbound and web sessions greet at once; outbound calls wait for the callee."""
    if not outbound:
        if config.greeting:
            session.generate_reply(instructions=config.greeting)
        return

    logger.info("[WORKER] Outbound call, waiting for the callee before greeting")
    if await wait_for_sip_participant(ctx.room):
        await asyncio.sleep(OUTBOUND_GREETING_DELAY_SECONDS)
    else:
        logger.warning("[WORKER] No SIP participant after 10 seconds, sending greeting anyway")
    session.generate_reply(instructions=config.greeting or OUTBOUND_FALLBACK_GREETING)


async def entrypoint(ctx: JobContext):
    ctx.log_context_fields = {"room": ctx.room.name}
    set_request_context(room=ctx.room.name)
    logger.info(f"[WORKER] Job for room {ctx.room.name}")

    await ctx.connect()

    metadata = parse_room_metadata(ctx.room.metadata or ctx.job.metadata)
    outbound = is_outbound(metadata)
    internal = InternalAPIClient()
    config = await resolve_runtime_config(ctx.room.name, metadata, client=internal)

    vad = ctx.proc.userdata["vad"]
    tool_context = ToolContext(
        room_name=ctx.room.name,
        user_id=config.user_id,
        agent_config_id=config.agent_config_id,
        internal=internal,
    )

    session = AgentSession(
        stt=build_stt(resolve_stt(config.stt_model), vad=vad),
        llm=build_llm(config.model),
        tts=build_tts(resolve_tts(config.tts_model, config.voice, config.voice_instructions)),
        turn_detection=MultilingualModel(),
        vad=vad,
    )

    usage_collector = metrics.UsageCollector()

    @session.on("metrics_collected")
    def _on_metrics_collected(ev: MetricsCollectedEvent):
        metrics.log_metrics(ev.metrics)
        usage_collector.collect(ev.metrics)

    async def log_usage():
        logger.info(f"[WORKER] Usage for {ctx.room.name}: {usage_collector.get_summary()}")

    ctx.add_shutdown_callback(log_usage)

    telephony = outbound or find_sip_participant(ctx.room) is not None or ctx.room.name.startswith("call-")
    await session.start(
        agent=VoiceAssistant(config, build_tools(config, tool_context)),
        room=ctx.room,
        room_input_options=RoomInputOptions(
            noise_cancellation=noise_cancellation.BVCTelephony() if telephony else noise_cancellation.BVC(),
        ),
    )

    await greet(session, ctx, config, outbound)
