"""
intake_service.py — Inbound Calendly webhook pipeline

Takes one raw request body for one endpoint and walks it through:

    admitted → validated → endpoint-resolved → subscription-checked →
    dedup-checked → enriched → forwarded → logged → acknowledged

Every stage but the last has a short-circuit exit. Exits that mean "handled"
answer 200 so Calendly does not retry; rate limiting (429) and unknown
endpoints (404) are the only exits that let Calendly's own retry policy apply.

Business Rules:
- Rate limit is per endpoint, checked before the body is even parsed
- Invalid JSON / structure answers 200 with an error field (retrying can't fix it)
- Soft-deleted endpoints are treated as inactive
- Trial users past trial_ends_at are rejected even before the sweep expires them
- Duplicate (endpoint, event UUID, event type) short-circuits with no forward and no log
- Enrichment failure falls back to an empty enrichment; forwarding still happens
- Forward and log failures never change the acknowledgment
- Anything escaping all of the above still answers 200

Called by: routers/webhooks.py
Depends on: rate_limit, delivery_log, enrichment_service, forwarder
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Endpoint
from ..models.auth import SUBSCRIPTION_TRIAL
from ..rate_limit import RateLimiter
from ..schemas.webhooks import CalendlyWebhook
from .delivery_log import find_duplicate, record_delivery
from .enrichment_service import empty_enrichment, enrich_payload
from .forwarder import forward_payload

log = logging.getLogger("calrouter.intake")


class IntakeStage(str, Enum):
    ADMITTED = "admitted"
    VALIDATED = "validated"
    ENDPOINT_RESOLVED = "endpoint-resolved"
    SUBSCRIPTION_CHECKED = "subscription-checked"
    DEDUP_CHECKED = "dedup-checked"
    ENRICHED = "enriched"
    FORWARDED = "forwarded"
    LOGGED = "logged"
    ACKNOWLEDGED = "acknowledged"


@dataclass
class IntakeResult:
    status_code: int
    body: dict = field(default_factory=dict)
    stage: IntakeStage = IntakeStage.ADMITTED


def _handled(stage: IntakeStage, **body) -> IntakeResult:
    return IntakeResult(200, {"ok": True, **body}, stage)


async def process_webhook(
    endpoint_id: str,
    raw_body: bytes,
    db: Session,
    rate_limiter: RateLimiter,
    client: httpx.AsyncClient | None = None,
) -> IntakeResult:
    """Run one inbound webhook through the pipeline. Never raises."""
    started = time.monotonic()
    state = {"stage": IntakeStage.ADMITTED}
    try:
        return await _run(endpoint_id, raw_body, db, rate_limiter, client, started, state)
    except Exception as e:
        log.exception(
            f"Webhook processing error for endpoint {endpoint_id} at stage {state['stage'].value}"
        )
        try:
            db.rollback()
        except SQLAlchemyError:
            log.warning("Session rollback failed after webhook processing error")
        return _handled(
            state["stage"],
            error="Internal processing error",
            message=str(e) or "Unknown error",
        )


async def _run(endpoint_id, raw_body, db, rate_limiter, client, started, state) -> IntakeResult:
    # 1. Admission
    try:
        decision = rate_limiter.check(endpoint_id)
    except Exception as e:
        log.warning(f"Rate limiter unavailable, admitting endpoint {endpoint_id}: {e}")
        decision = None
    if decision is not None and not decision.allowed:
        log.info(f"Rate limit exceeded for endpoint {endpoint_id}")
        return IntakeResult(
            429,
            {
                "ok": False,
                "error": "Rate limit exceeded",
                "limit": decision.limit,
                "reset": decision.reset_ms,
            },
            IntakeStage.ADMITTED,
        )

    # 2. Validation
    try:
        data = json.loads(raw_body)
    except ValueError as e:
        log.warning(f"Failed to parse webhook payload for endpoint {endpoint_id}: {e}")
        return _handled(IntakeStage.ADMITTED, error="Invalid JSON payload")
    try:
        webhook = CalendlyWebhook.model_validate(data)
    except ValidationError:
        log.warning(f"Invalid Calendly webhook structure for endpoint {endpoint_id}")
        return _handled(IntakeStage.ADMITTED, error="Invalid webhook structure")
    state["stage"] = IntakeStage.VALIDATED

    # 3. Endpoint lookup
    endpoint = db.get(Endpoint, endpoint_id)
    if not endpoint:
        log.warning(f"Endpoint not found: {endpoint_id}")
        return IntakeResult(
            404, {"ok": False, "error": "Endpoint not found"}, IntakeStage.VALIDATED
        )
    state["stage"] = IntakeStage.ENDPOINT_RESOLVED
    if not endpoint.is_active or endpoint.deleted_at is not None:
        log.info(f"Endpoint {endpoint_id} is inactive, skipping")
        return _handled(IntakeStage.ENDPOINT_RESOLVED, message="Endpoint inactive")

    # 4. Subscription
    user = endpoint.user
    if user is None or not user.has_live_subscription:
        log.info(f"User subscription invalid for endpoint {endpoint_id}")
        return _handled(
            IntakeStage.ENDPOINT_RESOLVED, message="Subscription expired or cancelled"
        )
    if (
        user.subscription_status == SUBSCRIPTION_TRIAL
        and user.trial_ends_at
        and user.trial_ends_at < datetime.now(timezone.utc)
    ):
        log.info(f"Trial expired for endpoint {endpoint_id}")
        return _handled(IntakeStage.ENDPOINT_RESOLVED, message="Trial expired")
    state["stage"] = IntakeStage.SUBSCRIPTION_CHECKED

    # 5. Dedup
    event_type = webhook.event
    event_uuid = webhook.event_uuid
    invitee_email = webhook.invitee_email
    if find_duplicate(db, endpoint_id, event_uuid, event_type):
        log.info(f"Duplicate webhook detected: {event_uuid} - {event_type}")
        return _handled(IntakeStage.SUBSCRIPTION_CHECKED, duplicate=True)
    state["stage"] = IntakeStage.DEDUP_CHECKED

    # 6. Enrichment
    try:
        enriched = await enrich_payload(
            data, endpoint, user.id, db, event_uuid, invitee_email, event_type
        )
    except Exception:
        log.exception(f"Enrichment failed for endpoint {endpoint_id}, forwarding unenriched")
        enriched = empty_enrichment(data, event_uuid, invitee_email, event_type)
    state["stage"] = IntakeStage.ENRICHED

    # 7. Forward
    result = await forward_payload(
        endpoint.destination_url, enriched, endpoint_id, event_type, client=client
    )
    state["stage"] = IntakeStage.FORWARDED

    # 8. Log
    entry = record_delivery(
        db, endpoint_id, event_uuid, event_type, invitee_email, data, enriched, result
    )
    if entry is not None:
        state["stage"] = IntakeStage.LOGGED

    processing_ms = int((time.monotonic() - started) * 1000)
    log.info(
        f"Webhook {event_type} {event_uuid} for endpoint {endpoint_id}: "
        f"{result.kind} in {processing_ms}ms"
    )
    return _handled(
        IntakeStage.ACKNOWLEDGED,
        endpoint_id=endpoint_id,
        event_type=event_type,
        calendly_event_uuid=event_uuid,
        enriched=True,
        forwarded=result.ok,
        processing_time_ms=processing_ms,
    )
