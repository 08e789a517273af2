"""
conversion.py - "Record conversion" capability for the confirmation view.

The presentation layer invokes record() once when the thank-you view loads.
It fires one conversion event per configured ad-platform tag id. The controller
knows nothing about it. Nothing is retained between calls.
"""
import logging
from typing import List, Sequence

logger = logging.getLogger(__name__)


class ConversionTracker:
    def __init__(self, send_to: Sequence[str], value: float = 1.0, currency: str = "CAD") -> None:
        self._send_to = list(send_to)
        self._value = value
        self._currency = currency

    def record(self) -> List[dict]:
        """Fire one event per tag id and return the events fired by this call."""
        events = [
            {"send_to": tag, "value": self._value, "currency": self._currency}
            for tag in self._send_to
        ]
        for event in events:
            logger.info(
                "Conversion recorded send_to=%s value=%.2f currency=%s",
                event["send_to"], self._value, self._currency,
            )
        if not events:
            logger.warning("Conversion recorded with no tag ids configured")
        return events
