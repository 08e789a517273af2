"""
summary_dispatcher.py - Best-effort delivery of the end-of-session summary.

dispatch(metadata, transcript, end_reason) makes exactly one POST to the summary
sink and reports success as a bool. It never raises: failures are logged and
otherwise invisible to the controller, which navigates regardless.

The transaction id is built from wall-clock time (YYYYMMDDHHMMSS). It is not
collision-free across concurrent sessions; each browser session dispatches at
most one summary.
"""
import logging
from datetime import datetime
from typing import Callable, Optional, Sequence

import httpx

from backend.agents.consultation_agent.schemas import (
    ContactMetadata,
    EndReason,
    SummaryRequest,
    SummaryResponse,
    Turn,
)

logger = logging.getLogger(__name__)


def make_transaction_id(now: Optional[datetime] = None) -> str:
    """Wall-clock identifier, e.g. 20260314093005."""
    return (now or datetime.now()).strftime("%Y%m%d%H%M%S")


class SummaryDispatcher:
    """Sends (metadata, transcript, end_reason) to the email sink once per call."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        url: str,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._http = http
        self._url = url
        self._clock = clock

    async def dispatch(
        self,
        metadata: ContactMetadata,
        transcript: Sequence[Turn],
        end_reason: EndReason,
    ) -> bool:
        transaction_id = make_transaction_id(self._clock())
        request = SummaryRequest(
            metadata=metadata,
            transcript=list(transcript),
            end_reason=end_reason,
            transaction_id=transaction_id,
        )
        payload = request.model_dump(mode="json", by_alias=True, exclude_none=True)

        logger.info(
            "Dispatching session summary transaction_id=%s end_reason=%s turns=%d",
            transaction_id, end_reason.value, len(request.transcript),
        )

        try:
            response = await self._http.post(self._url, json=payload)
        except httpx.HTTPError as exc:
            logger.error(
                "Summary sink unreachable transaction_id=%s: %s", transaction_id, exc
            )
            return False

        try:
            body = SummaryResponse.model_validate(response.json())
        except ValueError:
            logger.error(
                "Summary sink returned HTTP %d with a malformed body transaction_id=%s",
                response.status_code, transaction_id,
            )
            return False

        if not response.is_success or not body.success:
            logger.error(
                "Summary delivery failed transaction_id=%s status=%d error=%s",
                transaction_id, response.status_code, body.error,
            )
            return False

        logger.info("Summary delivered transaction_id=%s", transaction_id)
        return True
