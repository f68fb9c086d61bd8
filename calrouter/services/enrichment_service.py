"""
enrichment_service.py — Builds the enriched payload forwarded to destinations

Runs the enabled enrichment steps concurrently and joins them before the
forwarder runs. The original payload is never mutated; enrichment is added
alongside it:

    {
      "original": <inbound payload>,
      "enriched": {"parsed_questions", "reschedule_info", "utm_tracking", "enriched_at"},
      "metadata": {"calendly_event_uuid", "invitee_email", "event_type"}
    }

Business Rules:
- Each step is toggled per endpoint; a disabled step yields its empty value
- A step that raises is replaced by its empty value; siblings still complete
- Enrichment never blocks forwarding (see empty_enrichment)

Called by: services/intake_service.py
Depends on: question_parser, reschedule_detector, utm_extractor
"""

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from ..models import Endpoint
from .question_parser import parse_custom_questions
from .reschedule_detector import detect_reschedule, not_a_reschedule
from .utm_extractor import extract_utm_parameters

log = logging.getLogger("calrouter.enrichment")


async def _resolved(value):
    return value


async def _parse_questions(payload: dict):
    return parse_custom_questions(payload)


async def _extract_utm(payload: dict):
    return extract_utm_parameters(payload)


def _metadata(event_uuid, invitee_email, event_type) -> dict:
    return {
        "calendly_event_uuid": event_uuid,
        "invitee_email": invitee_email,
        "event_type": event_type,
    }


def compose(payload: dict, enriched: dict, metadata: dict) -> dict:
    return {
        "original": payload,
        "enriched": {
            **enriched,
            "enriched_at": datetime.now(timezone.utc).isoformat(),
        },
        "metadata": metadata,
    }


def empty_enrichment(payload: dict, event_uuid, invitee_email, event_type) -> dict:
    """Safe fallback when enrichment as a whole could not run."""
    return compose(
        payload,
        {
            "parsed_questions": None,
            "reschedule_info": not_a_reschedule(),
            "utm_tracking": None,
        },
        _metadata(event_uuid, invitee_email, event_type),
    )


async def enrich_payload(
    payload: dict,
    endpoint: Endpoint,
    user_id: str,
    db: Session,
    event_uuid: str | None,
    invitee_email: str | None,
    event_type: str,
) -> dict:
    steps = {
        "parsed_questions": (
            _parse_questions(payload) if endpoint.enable_question_parsing else _resolved(None)
        ),
        "reschedule_info": (
            detect_reschedule(db, event_uuid, invitee_email, user_id)
            if endpoint.enable_reschedule_detection
            else _resolved(not_a_reschedule())
        ),
        "utm_tracking": (
            _extract_utm(payload) if endpoint.enable_utm_tracking else _resolved(None)
        ),
    }
    fallbacks = {
        "parsed_questions": None,
        "reschedule_info": not_a_reschedule(),
        "utm_tracking": None,
    }

    results = await asyncio.gather(*steps.values(), return_exceptions=True)

    enriched = {}
    for name, result in zip(steps, results):
        if isinstance(result, Exception):
            log.warning(f"Enrichment step {name} failed for endpoint {endpoint.id}: {result}")
            result = fallbacks[name]
        enriched[name] = result

    return compose(payload, enriched, _metadata(event_uuid, invitee_email, event_type))
