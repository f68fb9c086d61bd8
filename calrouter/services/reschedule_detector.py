"""Reschedule detector — correlates a new booking with a recent cancellation.

Calendly delivers a reschedule as a cancellation of the old event followed by
a creation of the new one. If the same invitee email cancelled an event on one
of the same account's endpoints within the last 10 minutes, and that event
differs from the new one, the new booking is flagged as a reschedule.

Business Rules:
- Window is fixed at 10 minutes
- The matched cancellation must belong to an endpoint of the same user
- Identity is the email address only: two people sharing an inbox are
  treated as one invitee (known limitation)
- Any lookup failure degrades to {"isReschedule": False}; never raises

Called by: services/enrichment_service.py
Depends on: models (DeliveryLog, Endpoint)
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from ..models import DeliveryLog, Endpoint
from ..schemas.webhooks import EVENT_INVITEE_CANCELED

log = logging.getLogger("calrouter.enrichment")

RESCHEDULE_WINDOW = timedelta(minutes=10)


def not_a_reschedule() -> dict:
    return {"isReschedule": False}


def _find_recent_cancellation(
    db: Session, invitee_email: str, user_id: str, now: datetime
) -> DeliveryLog | None:
    cancellation = (
        db.query(DeliveryLog)
        .filter(
            DeliveryLog.invitee_email == invitee_email,
            DeliveryLog.event_type == EVENT_INVITEE_CANCELED,
            DeliveryLog.created_at >= now - RESCHEDULE_WINDOW,
        )
        .order_by(DeliveryLog.created_at.desc())
        .first()
    )
    if not cancellation:
        return None

    owned = (
        db.query(Endpoint.id)
        .filter(Endpoint.id == cancellation.endpoint_id, Endpoint.user_id == user_id)
        .first()
    )
    return cancellation if owned else None


async def detect_reschedule(
    db: Session,
    event_uuid: str | None,
    invitee_email: str | None,
    user_id: str | None,
    now: datetime | None = None,
) -> dict:
    if not event_uuid or not invitee_email or not user_id:
        return not_a_reschedule()

    now = now or datetime.now(timezone.utc)
    try:
        cancellation = await asyncio.to_thread(
            _find_recent_cancellation, db, invitee_email, user_id, now
        )
    except Exception as e:
        log.error(f"Reschedule detection failed for {invitee_email}: {e}")
        return not_a_reschedule()

    if not cancellation or cancellation.calendly_event_uuid == event_uuid:
        return not_a_reschedule()

    log.info(f"Reschedule detected for {invitee_email}: cancelled log {cancellation.id}")
    return {"isReschedule": True, "cancellationId": cancellation.id}
