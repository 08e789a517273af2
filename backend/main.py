"""
main.py - Credit-Action consultation FastAPI application entry point.

Start with: uvicorn backend.main:app --reload --port 8000
(run from the project root)
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mistralai import Mistral
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.agents.consultation_agent.registry import SessionRegistry
from backend.agents.consultation_agent.reply_client import ReplyServiceClient
from backend.agents.consultation_agent.schemas import SessionConfig
from backend.agents.consultation_agent.summary_dispatcher import SummaryDispatcher
from backend.agents.consultation_agent.timers import LoopScheduler
from backend.agents.notification_agent.conversion import ConversionTracker
from backend.agents.notification_agent.mailer import SendGridMailer
from backend.config import settings

# ---------------------------------------------------------------------------
# Logging - configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan - startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Shared httpx client (reply service, summary sink, SendGrid)
      2. Mistral client + LLM semaphore for the advisor endpoint
      3. Consultation collaborators, scheduler and session registry
      4. Mailer + conversion tracker for the notification endpoints
    Shutdown:
      1. Unmount every live session (implicit manual end) and let summaries settle
      2. Close the httpx client
    """
    # --- 1. Outbound HTTP - one pooled client for every collaborator ---
    app.state.http = httpx.AsyncClient()

    # --- 2. Mistral client - singleton for HTTP connection pool reuse ---
    app.state.mistral = Mistral(api_key=settings.mistral_api_key)
    # asyncio.Semaphore MUST be created inside async context (not module level)
    app.state.llm_semaphore = asyncio.Semaphore(settings.llm_concurrency)
    logger.info("Mistral client initialized (concurrency=%d)", settings.llm_concurrency)

    # --- 3. Consultation sessions ---
    app.state.reply_client = ReplyServiceClient(app.state.http, settings.reply_service_url)
    app.state.summary_dispatcher = SummaryDispatcher(app.state.http, settings.summary_sink_url)
    app.state.scheduler = LoopScheduler()
    app.state.session_config = SessionConfig.from_settings(settings)
    app.state.sessions = SessionRegistry(
        retention_seconds=settings.session_retention_seconds,
        idle_ttl_seconds=settings.session_idle_ttl_seconds,
        max_sessions=settings.max_active_sessions,
    )
    logger.info(
        "Consultation sessions ready warning=%.0fs end=%.0fs navigation=%.0fs",
        settings.inactivity_warning_seconds,
        settings.inactivity_end_seconds,
        settings.navigation_delay_seconds,
    )

    # --- 4. Notifications ---
    app.state.mailer = SendGridMailer(
        app.state.http,
        api_key=settings.sendgrid_api_key,
        sender=settings.sender_email,
        recipient=settings.recipient_email,
    )
    app.state.conversions = ConversionTracker(
        settings.conversion_send_to_list,
        value=settings.conversion_value,
        currency=settings.conversion_currency,
    )
    if not settings.sendgrid_api_key:
        logger.warning("SENDGRID_API_KEY not set - summary and contact emails will fail")

    logger.info("Credit-Action consultation v%s starting up", settings.app_version)
    yield

    # --- Shutdown ---
    await app.state.sessions.close_all()
    await app.state.http.aclose()
    logger.info("HTTP client closed")
    logger.info("Credit-Action consultation shutting down")


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Credit-Action Consultation API",
    version=settings.app_version,
    description=(
        "Lead-qualification chat for a credit-improvement service: advisor replies, "
        "inactivity-managed consultation sessions and summary emails."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# ---------------------------------------------------------------------------
# CORS middleware - restricted to frontend origins from settings
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Build a standard {error: {code, message, details}} response."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
        }
    }
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Global exception handlers - registered BEFORE routers
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Converts Pydantic / FastAPI 422 validation errors to standard format.
    Returns ALL field violations in one response.
    """
    details = []
    for error in exc.errors():
        # Build dot-notation field path, excluding the top-level 'body' loc
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=details,
        status_code=422,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """
    Converts FastAPI HTTPException to standard error format with semantic code.
    """
    code_map = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
        502: "UPSTREAM_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Catch-all for unexpected errors.
    DEBUG=true  -> includes exception type & message in details (dev only).
    DEBUG=false -> generic message; full traceback logged server-side only.
    """
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    if settings.debug:
        details = [{"issue": f"{type(exc).__name__}: {exc}"}]
        message = "An unexpected error occurred (debug details included)"
    else:
        details = []
        message = "An unexpected error occurred"
    return _make_error_response(
        code="INTERNAL_ERROR",
        message=message,
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health endpoint (no auth required)
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check(request: Request) -> dict:
    """Returns service health status and the number of live consultation sessions."""
    sessions = getattr(request.app.state, "sessions", None)
    return {
        "status": "ok",
        "version": settings.app_version,
        "live_sessions": len(sessions) if sessions is not None else 0,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# Agent routers
# ---------------------------------------------------------------------------
from backend.agents.advisor_agent.routes import router as advisor_agent_router
from backend.agents.consultation_agent.routes import router as consultation_agent_router
from backend.agents.notification_agent.routes import router as notification_agent_router

app.include_router(advisor_agent_router)
app.include_router(consultation_agent_router)
app.include_router(notification_agent_router)
