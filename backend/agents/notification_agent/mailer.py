"""
mailer.py - Email rendering and SendGrid delivery for Crédit-Action notifications.

Components:
  render_summary_email() - chat consultation summary (contact block + full transcript)
  render_contact_email() - contact form submission
  SendGridMailer         - one POST to SendGrid's v3 mail/send REST endpoint over httpx

All visitor-supplied text is HTML-escaped before it reaches the HTML body.
Logs only transaction ids and counts - never names, emails or message text.
"""
import html
import logging
from typing import Optional

import httpx

from backend.agents.consultation_agent.schemas import EndReason, SummaryRequest, TurnRole
from backend.agents.notification_agent.schemas import ContactRequest, OutboundEmail

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"

BRAND = "Crédit-Action"
NOT_PROVIDED = "Non fourni"
NOT_SPECIFIED = "Non spécifié"
NOT_AVAILABLE = "N/A"

END_REASON_LABELS = {
    EndReason.inactivity: "Inactivité (2 min)",
    EndReason.manual: "Terminée par le client",
}

_SPEAKER_LABELS = {
    TurnRole.advisor: "Conseiller",
    TurnRole.visitor: "Client",
}

# (background, border) per speaker
_SPEAKER_COLORS = {
    TurnRole.advisor: ("#dbeafe", "#3b82f6"),
    TurnRole.visitor: ("#fee2e2", "#ef4444"),
}


class MailDeliveryError(RuntimeError):
    """The mail provider rejected the message or could not be reached."""


def _esc(value: Optional[str], default: str = "") -> str:
    return html.escape(value or default)


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------

def render_summary_email(request: SummaryRequest, submission_id: str) -> OutboundEmail:
    """Build the chat summary email sent to the sales inbox when a session ends."""
    meta = request.metadata
    end_label = END_REASON_LABELS.get(request.end_reason, "Autre")

    text_transcript = "\n\n".join(
        f"{_SPEAKER_LABELS[turn.role]}: {turn.text}" for turn in request.transcript
    )
    text = (
        "Résumé de consultation chat\n\n"
        f"Client: {meta.name}\n"
        f"Courriel: {meta.email}\n"
        f"Téléphone: {meta.phone or NOT_PROVIDED}\n"
        f"Défi: {meta.credit_challenge or NOT_SPECIFIED}\n"
        f"Cote: {meta.credit_score or NOT_SPECIFIED}\n"
        f"Source: {meta.source or NOT_AVAILABLE}\n"
        f"Fin: {end_label}\n\n"
        f"Transcription:\n{text_transcript}"
    )

    turn_blocks = []
    for turn in request.transcript:
        background, border = _SPEAKER_COLORS[turn.role]
        turn_blocks.append(
            f'<div style="margin-bottom: 12px; padding: 10px 14px; '
            f'background-color: {background}; border-left: 4px solid {border}; '
            f'border-radius: 4px;">'
            f'<strong style="color: {border};">{_SPEAKER_LABELS[turn.role]}:</strong>'
            f'<p style="margin: 4px 0 0 0; line-height: 1.5;">{_esc(turn.text)}</p>'
            f"</div>"
        )

    email_link = html.escape(meta.email, quote=True)
    body_html = (
        '<div style="font-family: Arial, sans-serif; max-width: 700px; margin: 0 auto;">'
        '<h2 style="color: #1e40af;">Résumé de consultation chat</h2>'
        '<div style="background-color: #f3f4f6; padding: 20px; border-radius: 8px; '
        'margin-bottom: 24px;">'
        f"<p><strong>Nom:</strong> {_esc(meta.name, NOT_AVAILABLE)}</p>"
        f'<p><strong>Courriel:</strong> <a href="mailto:{email_link}">'
        f"{_esc(meta.email, NOT_AVAILABLE)}</a></p>"
        f"<p><strong>Téléphone:</strong> {_esc(meta.phone, NOT_PROVIDED)}</p>"
        f"<p><strong>Défi de crédit:</strong> {_esc(meta.credit_challenge, NOT_SPECIFIED)}</p>"
        f"<p><strong>Cote de crédit:</strong> {_esc(meta.credit_score, NOT_SPECIFIED)}</p>"
        f"<p><strong>Source:</strong> {_esc(meta.source, NOT_AVAILABLE)}</p>"
        f"<p><strong>Fin de consultation:</strong> {end_label}</p>"
        f"<p><strong>ID:</strong> #{_esc(submission_id)}</p>"
        f"<p><strong>Messages échangés:</strong> {len(request.transcript)}</p>"
        "</div>"
        '<h3 style="color: #1e40af;">Transcription complète</h3>'
        f"{''.join(turn_blocks)}"
        "</div>"
    )

    return OutboundEmail(
        subject=f"{BRAND} CHAT {meta.name or 'Client'} #{submission_id}",
        text=text,
        html=body_html,
        reply_to=meta.email,
    )


def render_contact_email(request: ContactRequest, submission_id: str) -> OutboundEmail:
    """Build the notification for a contact form submission."""
    email_link = html.escape(request.email, quote=True)
    text = (
        "Nouveau message de contact:\n\n"
        f"Nom: {request.name}\n"
        f"Email: {request.email}\n"
        f"Téléphone: {request.phone or NOT_PROVIDED}\n\n"
        f"Message:\n{request.message}"
    )
    body_html = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<h2 style="color: #1e40af;">Nouveau message de contact</h2>'
        '<div style="background-color: #f3f4f6; padding: 20px; border-radius: 8px;">'
        f"<p><strong>Nom:</strong> {_esc(request.name)}</p>"
        f'<p><strong>Email:</strong> <a href="mailto:{email_link}">{_esc(request.email)}</a></p>'
        f"<p><strong>Téléphone:</strong> {_esc(request.phone, NOT_PROVIDED)}</p>"
        f"<p><strong>ID de soumission:</strong> #{_esc(submission_id)}</p>"
        "</div>"
        '<div style="margin-top: 20px;">'
        '<h3 style="color: #1e40af;">Message:</h3>'
        f'<p style="line-height: 1.6;">{_esc(request.message)}</p>'
        "</div>"
        "</div>"
    )
    return OutboundEmail(
        subject=f"{BRAND} {request.name} #{submission_id}",
        text=text,
        html=body_html,
        reply_to=request.email,
    )


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

class SendGridMailer:
    """
    Sends OutboundEmail through SendGrid's v3 REST API.

    Every message goes from sender to recipient (the sales inbox); reply_to points
    back at the visitor. Raises MailDeliveryError on any failure.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        sender: str,
        recipient: str,
        url: str = SENDGRID_SEND_URL,
    ) -> None:
        self._http = http
        self._api_key = api_key
        self._sender = sender
        self._recipient = recipient
        self._url = url

    def build_payload(self, email: OutboundEmail) -> dict:
        payload = {
            "personalizations": [{"to": [{"email": self._recipient}]}],
            "from": {"email": self._sender},
            "subject": email.subject,
            "content": [
                {"type": "text/plain", "value": email.text},
                {"type": "text/html", "value": email.html},
            ],
        }
        if email.reply_to:
            payload["reply_to"] = {"email": email.reply_to}
        return payload

    async def send(self, email: OutboundEmail) -> None:
        if not self._api_key:
            raise MailDeliveryError("SendGrid API key is not configured")
        if not (self._sender and self._recipient):
            raise MailDeliveryError("Sender and recipient emails must be configured")

        try:
            response = await self._http.post(
                self._url,
                json=self.build_payload(email),
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as exc:
            raise MailDeliveryError(f"SendGrid unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise MailDeliveryError(f"SendGrid HTTP {response.status_code}: {response.text}")
        logger.info("SendGrid accepted message status=%d", response.status_code)
