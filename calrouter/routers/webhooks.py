"""Webhook API — Calendly intake per endpoint, plus the test-webhook tool."""

import json

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.orm import Session

from ..database import get_db
from ..models import Endpoint
from ..rate_limit import RateLimiter, get_rate_limiter
from ..schemas.webhooks import WebhookTestRequest
from ..services.intake_service import process_webhook
from ..services.mock_payload import build_mock_payload

router = APIRouter(tags=["webhooks"])

INTAKE_PATHS = ("/api/webhook/calendly/{endpoint_id}", "/webhook/{endpoint_id}")
METHOD_NOT_ALLOWED = "Method not allowed. This endpoint only accepts POST requests."


# ── Intake ───────────────────────────────────────────────────────────


async def receive_webhook(
    endpoint_id: str,
    request: Request,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Receive one Calendly delivery. 200 unless rate limited (429) or unknown endpoint (404)."""
    raw = await request.body()
    result = await process_webhook(endpoint_id, raw, db, limiter)
    logger.debug("Webhook {} answered {} at {}", endpoint_id, result.status_code, result.stage.value)
    return JSONResponse(result.body, status_code=result.status_code)


async def webhook_method_not_allowed(endpoint_id: str):
    return JSONResponse({"ok": False, "error": METHOD_NOT_ALLOWED}, status_code=405)


for _path in INTAKE_PATHS:
    router.add_api_route(_path, receive_webhook, methods=["POST"])
    router.add_api_route(
        _path,
        webhook_method_not_allowed,
        methods=["GET", "PUT", "PATCH", "DELETE"],
        include_in_schema=False,
    )


# ── Test tool ────────────────────────────────────────────────────────


@router.post("/api/webhook/test")
async def send_test_webhook(
    body: WebhookTestRequest,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Run a realistic mock Calendly webhook through an endpoint's intake pipeline."""
    if not body.endpoint_id:
        raise HTTPException(400, "endpoint_id is required")

    endpoint = db.get(Endpoint, body.endpoint_id)
    if not endpoint:
        raise HTTPException(404, "Endpoint not found")
    endpoint_info = {
        "id": endpoint.id,
        "name": endpoint.name,
        "destination_url": endpoint.destination_url,
    }

    mock = build_mock_payload(body.event_type)
    result = await process_webhook(endpoint.id, json.dumps(mock).encode(), db, limiter)
    ok = 200 <= result.status_code < 300
    logger.info("Test webhook for endpoint {} answered {}", endpoint_info["id"], result.status_code)

    return {
        "success": ok,
        "status": result.status_code,
        "endpoint": endpoint_info,
        "test_payload": mock,
        "webhook_response": result.body,
        "message": (
            "Test webhook sent successfully!"
            if ok
            else "Test webhook failed. Check logs for details."
        ),
    }


@router.get("/api/webhook/test")
async def test_webhook_help():
    return {
        "message": "CalRouter Test Webhook Endpoint",
        "description": "Send a POST request to test your webhook configuration",
        "usage": {
            "method": "POST",
            "body": {
                "endpoint_id": "uuid-of-your-endpoint",
                "event_type": "invitee.created or invitee.canceled (default: invitee.created)",
            },
        },
        "example_payload": {
            "endpoint_id": "abc123-def456-ghi789",
            "event_type": "invitee.created",
        },
    }
