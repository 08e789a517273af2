"""
routes.py - ConsultationAgent HTTP endpoints (presentation adapter).

POST   /api/consultation                       - mount a session, await the greeting
GET    /api/consultation/{session_id}          - current snapshot (poll for warning/navigation)
POST   /api/consultation/{session_id}/messages - visitor turn -> advisor reply
POST   /api/consultation/{session_id}/end      - explicit visitor end
DELETE /api/consultation/{session_id}          - unmount (implicit manual end) and forget

app.state resources (sessions, reply_client, summary_dispatcher, scheduler,
session_config) are set in main.py lifespan.
Rejected visitor input is reported as accepted=false, never as an HTTP error.
"""
import logging

from fastapi import APIRouter, HTTPException, Request, Response

from backend.agents.consultation_agent.controller import SessionController
from backend.agents.consultation_agent.registry import SessionRegistry
from backend.agents.consultation_agent.schemas import (
    ContactMetadata,
    MessageRequest,
    MessageResult,
    SessionSnapshot,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/consultation", tags=["Consultation Agent"])


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def _get_controller(request: Request, session_id: str) -> SessionController:
    controller = _registry(request).get(session_id)
    if controller is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return controller


@router.post("", response_model=SessionSnapshot, status_code=201)
async def start_consultation(body: ContactMetadata, request: Request) -> SessionSnapshot:
    """
    Mount a SessionController for the submitted contact metadata.

    Waits for the opening greeting (or the fallback greeting when the reply
    service is degraded), so the returned snapshot is already active.
    """
    state = request.app.state
    controller = SessionController(
        metadata=body,
        reply_client=state.reply_client,
        dispatcher=state.summary_dispatcher,
        config=state.session_config,
        scheduler=state.scheduler,
    )
    registry = _registry(request)
    registry.register(controller)
    try:
        await controller.start()
    except BaseException:
        # Client went away mid-greeting: nobody can reach this session any more
        registry.remove(controller.session_id)
        raise
    logger.info(
        "Consultation started session_id=%s source=%s", controller.session_id, body.source
    )
    return controller.snapshot()


@router.get("/{session_id}", response_model=SessionSnapshot)
async def get_consultation(session_id: str, request: Request) -> SessionSnapshot:
    return _get_controller(request, session_id).snapshot()


@router.post("/{session_id}/messages", response_model=MessageResult)
async def send_message(
    session_id: str,
    body: MessageRequest,
    request: Request,
) -> MessageResult:
    """Append a visitor turn and return the snapshot once the advisor answered."""
    controller = _get_controller(request, session_id)
    accepted = await controller.send(body.text)
    if not accepted:
        logger.info(
            "Visitor input rejected session_id=%s phase=%s",
            session_id, controller.phase.value,
        )
    return MessageResult(accepted=accepted, session=controller.snapshot())


@router.post("/{session_id}/end", response_model=SessionSnapshot)
async def end_consultation(session_id: str, request: Request) -> SessionSnapshot:
    controller = _get_controller(request, session_id)
    controller.end()
    return controller.snapshot()


@router.delete("/{session_id}", status_code=204)
async def unmount_consultation(session_id: str, request: Request) -> Response:
    if _registry(request).remove(session_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return Response(status_code=204)
