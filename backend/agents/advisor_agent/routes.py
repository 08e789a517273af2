"""
routes.py - AdvisorAgent HTTP endpoint (the reply-generation service).

POST /api/chat - {transcript, metadata} -> {reply}

This is the remote collaborator the consultation ReplyServiceClient consults.
Any Mistral failure surfaces as 502, which the client treats as "degraded" and
replaces with its own fixed text.
app.state resources (mistral, llm_semaphore) are set in main.py lifespan.
"""
import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request

from backend.agents.advisor_agent.llm_service import generate_reply
from backend.agents.consultation_agent.schemas import ReplyRequest, ReplyResponse
from backend.config import settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["Advisor Agent"])


@router.post("/chat", response_model=ReplyResponse)
async def chat_endpoint(body: ReplyRequest, request: Request) -> ReplyResponse:
    """
    Produce the next advisor turn for a consultation transcript.

    An empty transcript requests the opening greeting.
    """
    mistral = request.app.state.mistral
    semaphore: asyncio.Semaphore = request.app.state.llm_semaphore

    try:
        reply = await generate_reply(
            mistral, settings.mistral_model, body.transcript, body.metadata, semaphore,
        )
    except Exception as exc:
        logger.error("Mistral generation failed turns=%d: %s", len(body.transcript), exc)
        raise HTTPException(
            status_code=502,
            detail="Erreur du service IA. Veuillez réessayer.",
        ) from exc

    return ReplyResponse(reply=reply)
