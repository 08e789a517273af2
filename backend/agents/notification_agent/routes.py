"""
routes.py - NotificationAgent HTTP endpoints (email sink + conversion).

POST /api/chat-summary - end-of-session summary email (SummaryDispatcher target)
POST /api/contact      - contact form email
POST /api/conversion   - record one conversion for the confirmation view

Delivery failures return {success: false, error, details} with HTTP 500, the shape
SummaryDispatcher reads. They are never raised through the global handlers.
app.state resources (mailer, conversions) are set in main.py lifespan.
"""
import logging

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from backend.agents.consultation_agent.schemas import SummaryRequest
from backend.agents.consultation_agent.summary_dispatcher import make_transaction_id
from backend.agents.notification_agent.mailer import (
    MailDeliveryError,
    render_contact_email,
    render_summary_email,
)
from backend.agents.notification_agent.schemas import ContactRequest, DeliveryResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["Notification Agent"])


def _failure(error: str, exc: Exception, transaction_id: str) -> JSONResponse:
    body = DeliveryResponse(
        success=False,
        error=error,
        details=str(exc),
        transaction_id=transaction_id,
    )
    return JSONResponse(
        status_code=500,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


@router.post("/chat-summary", response_model=DeliveryResponse, response_model_exclude_none=True)
async def chat_summary_endpoint(body: SummaryRequest, request: Request):
    """
    Email the consultation summary to the sales inbox.

    Reuses the dispatcher's transactionId when present so both sides log the same id.
    """
    transaction_id = body.transaction_id or make_transaction_id()
    email = render_summary_email(body, transaction_id)

    try:
        await request.app.state.mailer.send(email)
    except MailDeliveryError as exc:
        logger.error("Chat summary delivery failed transaction_id=%s: %s", transaction_id, exc)
        return _failure("Failed to send summary email", exc, transaction_id)

    logger.info(
        "Chat summary sent transaction_id=%s end_reason=%s turns=%d",
        transaction_id, body.end_reason.value, len(body.transcript),
    )
    return DeliveryResponse(
        success=True, message="Summary email sent", transaction_id=transaction_id
    )


@router.post("/contact", response_model=DeliveryResponse, response_model_exclude_none=True)
async def contact_endpoint(body: ContactRequest, request: Request):
    """Email a contact form submission to the sales inbox."""
    transaction_id = make_transaction_id()
    email = render_contact_email(body, transaction_id)

    try:
        await request.app.state.mailer.send(email)
    except MailDeliveryError as exc:
        logger.error("Contact delivery failed transaction_id=%s: %s", transaction_id, exc)
        return _failure("Failed to send email. Please try again later.", exc, transaction_id)

    logger.info("Contact email sent transaction_id=%s", transaction_id)
    return DeliveryResponse(
        success=True, message="Email sent successfully", transaction_id=transaction_id
    )


@router.post("/conversion", status_code=204)
async def conversion_endpoint(request: Request) -> Response:
    request.app.state.conversions.record()
    return Response(status_code=204)
