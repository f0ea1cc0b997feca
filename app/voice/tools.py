"""
Function tools available to voice agents.

``end_call`` is always on. The rest are enabled per agent:

- ``web_search``           -> Perplexity search (needs PERPLEXITY_API_KEY)
- ``list_calendar_events`` / ``create_calendar_event`` -> Google Calendar
  (token fetched from the API for the agent's owner)
- ``search_knowledge_base`` -> the agent's LlamaCloud pipeline, via the API

The network work lives in plain async functions so it can be exercised
without a running session; ``build_tools`` wraps them as LiveKit tools.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

import httpx
from livekit import api
from livekit.agents import RunContext, function_tool, get_job_context

from app.catalog import ToolType
from app.config import settings
from app.services.http_client import call_with_retry, request_with_retry
from app.voice.persona import AgentRuntimeConfig, InternalAPIClient

logger = logging.getLogger(__name__)

PERPLEXITY_SEARCH_URL = "https://api.perplexity.ai/search"
GOOGLE_CALENDAR_EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"

HANGUP_DELAY_SECONDS = 1.0
MAX_CALENDAR_RESULTS = 10

CALENDAR_NOT_CONNECTED = "Cannot access your calendar. Please connect Google Calendar in settings."
WEB_SEARCH_FAILED = "Sorry, I couldn't search the web right now. Please try again."


@dataclass
class ToolContext:
    room_name: str
    user_id: str
    agent_config_id: Optional[str]
    internal: InternalAPIClient
    transport: Optional[httpx.AsyncBaseTransport] = None

    def http(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=settings.http_timeout_seconds, transport=self.transport, **kwargs)


# ── Web search ─────────────────────────────────────────────

def clamp_max_results(value: Optional[int]) -> int:
    return min(max(int(value or 5), 1), 5)


def format_search_results(results: List[Dict[str, Any]]) -> str:
    if not results:
        return "No search results found for your query."
    lines = []
    for i, result in enumerate(results, 1):
        date = result.get("date") or result.get("last_updated") or "Date unavailable"
        lines.append(
            f"{i}. {result.get('title', '')}\n"
            f"   URL: {result.get('url', '')}\n"
            f"   Date: {date}\n"
            f"   {result.get('snippet', '')}"
        )
    return f"Found {len(results)} search results:\n\n" + "\n\n".join(lines)


async def search_web(tc: ToolContext, query: str, max_results: int = 5) -> str:
    logger.info(f"[TOOLS] web_search: {query!r} (max_results={max_results})")
    try:
        async with tc.http() as client:
            response = await request_with_retry(
                "POST",
                PERPLEXITY_SEARCH_URL,
                client=client,
                label="TOOLS",
                headers={"Authorization": f"Bearer {settings.perplexity_api_key}"},
                json={
                    "query": query,
                    "max_results": clamp_max_results(max_results),
                    "max_tokens_per_page": 512,
                },
            )
    except httpx.HTTPError as e:
        logger.error(f"[TOOLS] web_search failed: {e!r}")
        return WEB_SEARCH_FAILED

    if response.status_code != 200:
        logger.error(f"[TOOLS] Perplexity error ({response.status_code}): {response.text[:300]}")
        return WEB_SEARCH_FAILED
    return format_search_results(response.json().get("results") or [])


# ── Google Calendar ────────────────────────────────────────

def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _spoken_time(value: str) -> str:
    try:
        return _parse_iso(value).strftime("%a %b %d, %I:%M %p")
    except ValueError:
        return value


def format_calendar_events(items: List[Dict[str, Any]]) -> str:
    if not items:
        return "You have no upcoming events."
    lines = []
    for i, event in enumerate(items, 1):
        start = event.get("start") or {}
        when = _spoken_time(start["dateTime"]) if start.get("dateTime") else start.get("date", "")
        lines.append(f"{i}. {event.get('summary', '(no title)')}: {when}")
    return "Here are your upcoming events:\n" + "\n".join(lines)


def build_event_body(summary: str, start_time: str, end_time: Optional[str] = None,
                     description: Optional[str] = None) -> Dict[str, Any]:
    """Event payload in UTC; the end defaults to one hour after the start."""
    start = _parse_iso(start_time).astimezone(timezone.utc)
    end = _parse_iso(end_time).astimezone(timezone.utc) if end_time else start + timedelta(hours=1)
    body: Dict[str, Any] = {
        "summary": summary,
        "start": {"dateTime": start.isoformat(), "timeZone": "UTC"},
        "end": {"dateTime": end.isoformat(), "timeZone": "UTC"},
    }
    if description:
        body["description"] = description
    return body


async def list_events(tc: ToolContext, max_results: int = 5) -> str:
    token = await tc.internal.get_access_token(tc.user_id, "google")
    if not token:
        return CALENDAR_NOT_CONNECTED
    params = {
        "maxResults": str(min(int(max_results or 5), MAX_CALENDAR_RESULTS)),
        "timeMin": datetime.now(timezone.utc).isoformat(),
        "orderBy": "startTime",
        "singleEvents": "true",
    }
    try:
        async with tc.http() as client:
            response = await request_with_retry(
                "GET",
                GOOGLE_CALENDAR_EVENTS_URL,
                client=client,
                label="TOOLS",
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
    except httpx.HTTPError as e:
        logger.error(f"[TOOLS] Calendar list failed: {e!r}")
        return "Error accessing calendar."
    if response.status_code != 200:
        logger.error(f"[TOOLS] Calendar list returned {response.status_code}")
        return "Error accessing your calendar."
    return format_calendar_events(response.json().get("items") or [])


async def create_event(tc: ToolContext, summary: str, start_time: str,
                       end_time: Optional[str] = None, description: Optional[str] = None) -> str:
    token = await tc.internal.get_access_token(tc.user_id, "google")
    if not token:
        return CALENDAR_NOT_CONNECTED
    try:
        body = build_event_body(summary, start_time, end_time, description)
    except ValueError:
        return "I couldn't understand that time. Please give the start time again."
    try:
        async with tc.http() as client:
            # Inserts are not idempotent, so a failed create is not repeated
            response = await request_with_retry(
                "POST",
                GOOGLE_CALENDAR_EVENTS_URL,
                client=client,
                max_retries=0,
                label="TOOLS",
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
    except httpx.HTTPError as e:
        logger.error(f"[TOOLS] Calendar create failed: {e!r}")
        return "Error creating event."
    if response.status_code not in (200, 201):
        logger.error(f"[TOOLS] Calendar create returned {response.status_code}")
        return "Error creating event."
    created = response.json()
    when = _spoken_time((created.get("start") or {}).get("dateTime") or body["start"]["dateTime"])
    return f'Created "{created.get("summary", summary)}" for {when}.'


# ── Knowledge base ─────────────────────────────────────────

def format_knowledge_results(results: List[Dict[str, Any]]) -> str:
    if not results:
        return "I couldn't find anything about that in the knowledge base."
    parts = []
    for i, result in enumerate(results, 1):
        source = (result.get("metadata") or {}).get("fileName")
        header = f"[{i}] (from {source})" if source else f"[{i}]"
        parts.append(f"{header}\n{result.get('text', '').strip()}")
    return "Relevant information from the knowledge base:\n\n" + "\n\n".join(parts)


async def search_knowledge(tc: ToolContext, query: str, top_k: int = 3) -> str:
    if not tc.agent_config_id:
        return "No knowledge base is available for this call."
    results = await tc.internal.query_knowledge_base(tc.agent_config_id, query, top_k)
    logger.info(f"[TOOLS] search_knowledge_base: {len(results)} results for {query!r}")
    return format_knowledge_results(results)


# ── Hang up ────────────────────────────────────────────────

_background_tasks: Set[asyncio.Task] = set()


async def hangup_room(room_name: str, delay: float = HANGUP_DELAY_SECONDS, room_api=None) -> None:
    """Delete the room after ``delay`` so the goodbye can play out."""
    await asyncio.sleep(delay)
    if room_api is None:
        room_api = get_job_context().api.room
    try:
        await call_with_retry(
            lambda: room_api.delete_room(api.DeleteRoomRequest(room=room_name)),
            label="TOOLS",
        )
        logger.info(f"[TOOLS] Deleted room {room_name}")
    except Exception as e:
        logger.error(f"[TOOLS] Failed to delete room {room_name}: {e!r}")


def schedule_hangup(room_name: str, **kwargs) -> asyncio.Task:
    """Start ``hangup_room`` in the background, holding a reference until it finishes."""
    task = asyncio.create_task(hangup_room(room_name, **kwargs))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


# ── LiveKit tool wrappers ──────────────────────────────────

def build_tools(config: AgentRuntimeConfig, tc: ToolContext) -> list:
    """Function tools for an agent's enabled tool list."""

    @function_tool(name="end_call")
    async def end_call(context: RunContext) -> str:
        """End the current call when the user wants to hang up or says goodbye"""
        schedule_hangup(tc.room_name)
        return "Ending the call now. Goodbye!"

    @function_tool(name="web_search")
    async def web_search(context: RunContext, query: str, max_results: int = 5) -> str:
        """Retrieve raw, ranked search results from the web. Use for current events, recent news,
        weather, stock prices, sports scores, or any real-time information.

        Args:
            query: The search query to look up on the web. Be specific and include context/timeframes.
            max_results: Maximum number of search results to return (1-5, default: 5)
        """
        return await search_web(tc, query, max_results)

    @function_tool(name="list_calendar_events")
    async def list_calendar_events(context: RunContext, max_results: int = 5) -> str:
        """List upcoming calendar events from the user's Google Calendar. Use when the user asks about their schedule.

        Args:
            max_results: Maximum number of events (default 5)
        """
        return await list_events(tc, max_results)

    @function_tool(name="create_calendar_event")
    async def create_calendar_event(
        context: RunContext,
        summary: str,
        start_time: str,
        end_time: Optional[str] = None,
        description: Optional[str] = None,
    ) -> str:
        """Create a new event on the user's Google Calendar.

        Args:
            summary: Event title
            start_time: Start time in ISO format
            end_time: End time (optional, defaults to 1 hour)
            description: Event description (optional)
        """
        return await create_event(tc, summary, start_time, end_time, description)

    @function_tool(name="search_knowledge_base")
    async def search_knowledge_base(context: RunContext, query: str) -> str:
        """Search the documents uploaded for this agent. Use it for questions about the business,
        its products, policies or anything the documents might cover.

        Args:
            query: What to look up, phrased as a question or keywords
        """
        return await search_knowledge(tc, query)

    tools = [end_call]
    if ToolType.WEB_SEARCH in config.tools:
        if settings.perplexity_api_key:
            tools.append(web_search)
        else:
            logger.warning("[TOOLS] web_search enabled but PERPLEXITY_API_KEY is not set")
    if ToolType.GOOGLE_CALENDAR in config.tools:
        tools.extend([list_calendar_events, create_calendar_event])
    if config.enable_knowledge_base:
        tools.append(search_knowledge_base)

    logger.info(f"[TOOLS] Enabled tools for {tc.room_name}: {enabled_tool_names(config)}")
    return tools


def enabled_tool_names(config: AgentRuntimeConfig) -> List[str]:
    names = [ToolType.END_CALL]
    if ToolType.WEB_SEARCH in config.tools and settings.perplexity_api_key:
        names.append(ToolType.WEB_SEARCH)
    if ToolType.GOOGLE_CALENDAR in config.tools:
        names.extend(["list_calendar_events", "create_calendar_event"])
    if config.enable_knowledge_base:
        names.append("search_knowledge_base")
    return names
