"""Realistic mock Calendly webhook bodies for the test-webhook tool."""

import uuid
from datetime import datetime, timezone

from ..schemas.webhooks import EVENT_INVITEE_CANCELED

CALENDLY_API = "https://api.calendly.com/scheduled_events"


def build_mock_payload(event_type: str) -> dict:
    """Build a Calendly-shaped webhook with questions, tracking and a fresh event UUID."""
    timestamp = datetime.now(timezone.utc).isoformat()
    event_uuid = f"test-{uuid.uuid4()}"

    body = {
        "event": event_type,
        "created_at": timestamp,
        "payload": {
            "event": f"{CALENDLY_API}/{event_uuid}",
            "invitee": f"{CALENDLY_API}/{event_uuid}/invitees/test-invitee-uuid",
            "name": "Test User",
            "email": "test@example.com",
            "text_reminder_number": None,
            "timezone": "America/New_York",
            "created_at": timestamp,
            "updated_at": timestamp,
            "questions_and_answers": [
                {"question": "What's your budget range?", "answer": "$5,000 - $10,000"},
                {"question": "Company size?", "answer": "10-50 employees"},
                {"question": "How did you hear about us?", "answer": "Google Search"},
            ],
            "tracking": {
                "utm_source": "facebook",
                "utm_medium": "cpc",
                "utm_campaign": "test_campaign_2026",
                "utm_term": "calendly_automation",
                "utm_content": "ad_variant_a",
            },
            "cancel_url": f"https://calendly.com/cancellations/{event_uuid}",
            "reschedule_url": f"https://calendly.com/reschedulings/{event_uuid}",
        },
    }

    if event_type == EVENT_INVITEE_CANCELED:
        body["payload"].update(
            canceled_at=timestamp,
            canceler_name="Test User",
            cancel_reason="Testing CalRouter",
        )
    return body
