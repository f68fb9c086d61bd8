"""
delivery_log.py — Duplicate detection and the append-only delivery audit trail

Business Rules:
- One row per processed (non-duplicate) inbound event, whatever the forward outcome
- (endpoint, event UUID, event type) identifies an event; the unique constraint
  on that triple backs up the pre-insert duplicate check, and a constraint
  violation on insert is treated as "already logged"
- Storage failures are rolled back and logged, never raised to the caller

Called by: services/intake_service.py, services/failure_sweep.py
Depends on: models (DeliveryLog)
"""

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import DeliveryLog
from ..models.delivery import STATUS_FAILED
from .forwarder import ForwardResult

log = logging.getLogger("calrouter.delivery")


def find_duplicate(
    db: Session, endpoint_id: str, event_uuid: str, event_type: str
) -> DeliveryLog | None:
    return (
        db.query(DeliveryLog)
        .filter(
            DeliveryLog.endpoint_id == endpoint_id,
            DeliveryLog.calendly_event_uuid == event_uuid,
            DeliveryLog.event_type == event_type,
        )
        .first()
    )


def record_delivery(
    db: Session,
    endpoint_id: str,
    event_uuid: str,
    event_type: str,
    invitee_email: str | None,
    original_payload: dict,
    enriched_payload: dict,
    result: ForwardResult,
) -> DeliveryLog | None:
    """Append the outcome of one delivery. Returns None if nothing was written."""
    enriched = enriched_payload.get("enriched") or {}
    reschedule = enriched.get("reschedule_info") or {}
    utm = enriched.get("utm_tracking") or {}

    entry = DeliveryLog(
        endpoint_id=endpoint_id,
        calendly_event_uuid=event_uuid,
        event_type=event_type,
        invitee_email=invitee_email,
        original_payload=original_payload,
        enriched_payload=enriched_payload,
        is_reschedule=bool(reschedule.get("isReschedule")),
        utm_source=utm.get("utm_source"),
        utm_medium=utm.get("utm_medium"),
        utm_campaign=utm.get("utm_campaign"),
        status=result.status,
        response_code=result.response_code,
        error_message=result.error_message,
        failure_kind=None if result.ok else result.kind,
    )
    try:
        db.add(entry)
        db.commit()
    except IntegrityError:
        db.rollback()
        log.warning(
            f"Duplicate delivery log suppressed: {endpoint_id} {event_uuid} {event_type}"
        )
        return None
    except SQLAlchemyError:
        db.rollback()
        log.exception(f"Failed to write delivery log for endpoint {endpoint_id}")
        return None
    return entry


def recent_deliveries(db: Session, endpoint_id: str, limit: int = 10) -> list[DeliveryLog]:
    """Most recent log rows for an endpoint, newest first."""
    return (
        db.query(DeliveryLog)
        .filter(DeliveryLog.endpoint_id == endpoint_id)
        .order_by(DeliveryLog.created_at.desc())
        .limit(limit)
        .all()
    )


def count_consecutive_failures(logs) -> tuple[int, str | None]:
    """Failed rows from the newest backwards, stopping at the first success.

    Returns (streak, most recent error message in the streak).
    """
    streak = 0
    last_error = None
    for entry in logs:
        if entry.status != STATUS_FAILED:
            break
        streak += 1
        if last_error is None and entry.error_message:
            last_error = entry.error_message
    return streak, last_error
