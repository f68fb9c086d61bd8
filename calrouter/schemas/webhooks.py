"""
schemas/webhooks.py — Inbound Calendly webhook and test-tool request models.

Only the envelope is validated: ``event`` must be a non-empty string and
``payload`` an object (an empty one is accepted and forwarded as is).
Everything inside ``payload`` is forwarded untouched, so it stays a free-form
dict.

Called by: services/intake_service.py, routers/webhooks.py
"""

from pydantic import BaseModel, ConfigDict, Field

EVENT_INVITEE_CREATED = "invitee.created"
EVENT_INVITEE_CANCELED = "invitee.canceled"


class CalendlyWebhook(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str = Field(..., min_length=1)
    payload: dict

    @property
    def event_uuid(self) -> str:
        """Trailing path segment of the scheduled-event URI."""
        uri = self.payload.get("event")
        if not uri or not isinstance(uri, str):
            return "unknown"
        return uri.split("/")[-1]

    @property
    def invitee_email(self) -> str | None:
        email = self.payload.get("email")
        return email if isinstance(email, str) and email else None


class WebhookTestRequest(BaseModel):
    endpoint_id: str | None = None
    event_type: str = EVENT_INVITEE_CREATED
