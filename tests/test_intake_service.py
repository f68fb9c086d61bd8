"""
test_intake_service.py — Direct tests for process_webhook's exit stages.

The route-level behavior is covered in test_routers_webhooks.py; these check
which pipeline stage each exit reports.

Called by: pytest
Depends on: services/intake_service.py
"""

import json

import httpx
import pytest

from calrouter.services.intake_service import IntakeStage, process_webhook


def _body(uri="https://api.calendly.com/scheduled_events/evt-stage") -> bytes:
    return json.dumps(
        {"event": "invitee.created", "payload": {"event": uri, "email": "jane@example.com"}}
    ).encode()


@pytest.fixture()
def ok_client():
    return httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))


@pytest.mark.asyncio
async def test_invalid_json_stops_at_admission(db_session, rate_limiter, test_endpoint):
    result = await process_webhook(test_endpoint.id, b"{not json", db_session, rate_limiter)
    assert result.status_code == 200
    assert result.stage is IntakeStage.ADMITTED
    assert result.body["error"] == "Invalid JSON payload"


@pytest.mark.asyncio
async def test_unknown_endpoint_stops_after_validation(db_session, rate_limiter):
    result = await process_webhook("missing", _body(), db_session, rate_limiter)
    assert result.status_code == 404
    assert result.stage is IntakeStage.VALIDATED


@pytest.mark.asyncio
async def test_inactive_endpoint_stops_at_resolution(
    db_session, rate_limiter, make_endpoint, test_user
):
    ep = make_endpoint(test_user, is_active=False)
    result = await process_webhook(ep.id, _body(), db_session, rate_limiter)
    assert result.stage is IntakeStage.ENDPOINT_RESOLVED
    assert result.body["message"] == "Endpoint inactive"


@pytest.mark.asyncio
async def test_full_run_is_acknowledged_then_duplicate(
    db_session, rate_limiter, test_endpoint, ok_client
):
    first = await process_webhook(
        test_endpoint.id, _body(), db_session, rate_limiter, client=ok_client
    )
    assert first.stage is IntakeStage.ACKNOWLEDGED
    assert first.body["forwarded"] is True

    second = await process_webhook(
        test_endpoint.id, _body(), db_session, rate_limiter, client=ok_client
    )
    assert second.stage is IntakeStage.SUBSCRIPTION_CHECKED
    assert second.body["duplicate"] is True


@pytest.mark.asyncio
async def test_rate_limited_reports_admission(db_session, test_endpoint):
    from calrouter.rate_limit import RateLimiter

    limiter = RateLimiter(limit="1/minute", storage_uri="memory://")
    await process_webhook(test_endpoint.id, b"{}", db_session, limiter)
    result = await process_webhook(test_endpoint.id, b"{}", db_session, limiter)
    assert result.status_code == 429
    assert result.stage is IntakeStage.ADMITTED
    limiter.reset()
