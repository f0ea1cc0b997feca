"""
Voice Studio Worker - LiveKit agent process for browser and phone calls.

Registers with LiveKit under ``settings.agent_name`` (explicit dispatch)
and runs one AgentSession per room. Agent configs come from room metadata
or, for SIP calls, from the API's internal endpoints.

Usage:
    python agent_main.py dev      # local development, auto-reload
    python agent_main.py start    # production
"""

from livekit.agents import WorkerOptions, cli

from app.config import settings
from app.logging_config import configure_logging
from app.voice.worker import entrypoint, prewarm

configure_logging(settings.log_level, settings.log_json)


if __name__ == "__main__":
    print(f"🎙️ Voice Studio worker starting as '{settings.agent_name}'...")
    cli.run_app(
        WorkerOptions(
            entrypoint_fnc=entrypoint,
            prewarm_fnc=prewarm,
            agent_name=settings.agent_name,
            ws_url=settings.livekit_url,
            api_key=settings.livekit_api_key,
            api_secret=settings.livekit_api_secret,
        )
    )
