"""
Voice Studio API - Main Application Entry Point
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.config import settings
from app.db import init_db
from app.db.database import async_session_maker
from app.api import (
    users_router,
    agents_router,
    sessions_router,
    oauth_router,
    tools_router,
    telephony_router,
    knowledge_base_router,
    internal_router,
    admin_telephony_router,
)
from app.logging_config import configure_logging, generate_request_id, set_request_context

configure_logging(settings.log_level, settings.log_json)
logger = logging.getLogger(__name__)

# Global start time for uptime tracking
_app_start_time = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown"""
    global _app_start_time
    _app_start_time = time.time()

    # Startup
    print("🎙️ Voice Studio API starting up...")
    await init_db()
    print("✅ Database initialized")

    if not settings.exotel_api_key:
        print("⚠️ Exotel not configured - telephony endpoints will return 503")
    if not settings.llama_cloud_api_key:
        print("⚠️ LlamaCloud not configured - knowledge base uploads disabled")
    if not (settings.google_client_id and settings.google_client_secret):
        print("⚠️ Google OAuth not configured - calendar tool unavailable")
    if settings.redis_url:
        print("✅ Shared cache: Redis")

    yield

    print("🎙️ Voice Studio API shutdown complete.")


app = FastAPI(
    title=settings.app_name,
    description="Multi-tenant voice agents: agent configs, LiveKit sessions, telephony and knowledge base",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag log lines with a request id and the caller, echo the id back."""
    request_id = request.headers.get("x-request-id") or generate_request_id()
    set_request_context(request_id=request_id, user_id=request.headers.get("x-user-id", ""))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# Include routers
app.include_router(users_router, prefix=settings.api_prefix)
app.include_router(agents_router, prefix=settings.api_prefix)
app.include_router(sessions_router, prefix=settings.api_prefix)
app.include_router(oauth_router, prefix=settings.api_prefix)
app.include_router(tools_router, prefix=settings.api_prefix)
app.include_router(telephony_router, prefix=settings.api_prefix)
app.include_router(knowledge_base_router, prefix=settings.api_prefix)
# Service-to-service (x-api-key)
app.include_router(internal_router, prefix=settings.api_prefix)
app.include_router(admin_telephony_router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "status": "healthy",
        "version": "1.0.0",
        "features": ["agents", "voice_sessions", "sharing", "telephony", "knowledge_base", "oauth", "tools"],
    }


@app.get("/health")
async def health():
    """Health check with database ping and uptime."""
    db_status = "connected"
    try:
        async with async_session_maker() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"[HEALTH] Database check failed: {e!r}")
        db_status = f"error: {e}"

    uptime = time.time() - _app_start_time if _app_start_time else 0

    return {
        "status": "ok" if db_status == "connected" else "degraded",
        "uptime_seconds": round(uptime, 1),
        "database": db_status,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=3001,
        reload=settings.debug,
    )
