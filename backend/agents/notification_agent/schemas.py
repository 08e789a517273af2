"""
schemas.py - NotificationAgent Pydantic v2 data contracts.

Defines:
  - ContactRequest   (lead-capture contact form submission)
  - OutboundEmail    (rendered email ready for the mail provider)
  - DeliveryResponse (success/failure envelope shared by /chat-summary and /contact)

The chat summary request itself is SummaryRequest in consultation_agent/schemas.py,
shared with the SummaryDispatcher that produces it.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ContactRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    phone: Optional[str] = None
    message: str = Field(..., min_length=1, max_length=5000)


class OutboundEmail(BaseModel):
    model_config = ConfigDict(frozen=True)

    subject: str
    text: str
    html: str
    reply_to: Optional[str] = None


class DeliveryResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    details: Optional[str] = None
    transaction_id: Optional[str] = None


__all__ = ["ContactRequest", "OutboundEmail", "DeliveryResponse"]
