"""
reply_client.py - HTTP client for the reply-generation service.

Contract:
  fetch_reply(transcript, metadata) -> advisor text, or None when the service is degraded.

One POST per call, never retried. No client-side timeout: latency is unbounded
from the controller's point of view, the inactivity timers are the only safety net.
Transport errors, non-2xx statuses and malformed bodies all collapse to None so
callers never need exception handling for the "service degraded" case.
"""
import logging
from typing import Optional, Sequence

import httpx

from backend.agents.consultation_agent.schemas import (
    ContactMetadata,
    ReplyRequest,
    ReplyResponse,
    Turn,
)

logger = logging.getLogger(__name__)


def build_reply_payload(transcript: Sequence[Turn], metadata: ContactMetadata) -> dict:
    """Serialize the running transcript + metadata into the service request body."""
    request = ReplyRequest(transcript=list(transcript), metadata=metadata)
    return request.model_dump(mode="json", by_alias=True, exclude_none=True)


class ReplyServiceClient:
    """Consults the remote reply-generation service for the next advisor turn."""

    def __init__(self, http: httpx.AsyncClient, url: str) -> None:
        self._http = http
        self._url = url

    async def fetch_reply(
        self,
        transcript: Sequence[Turn],
        metadata: ContactMetadata,
    ) -> Optional[str]:
        payload = build_reply_payload(transcript, metadata)
        logger.info("Requesting advisor reply turns=%d", len(payload["transcript"]))

        try:
            response = await self._http.post(self._url, json=payload, timeout=None)
        except httpx.HTTPError as exc:
            logger.warning("Reply service unreachable: %s", exc)
            return None

        if not response.is_success:
            logger.warning("Reply service returned HTTP %d", response.status_code)
            return None

        try:
            body = ReplyResponse.model_validate(response.json())
        except ValueError as exc:
            # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
            logger.warning("Reply service returned a malformed body: %s", exc)
            return None

        logger.info("Advisor reply received reply_len=%d", len(body.reply))
        return body.reply
