"""
test_routers_webhooks.py — Tests for the Calendly intake route and test tool.

Walks the intake pipeline end to end through the TestClient: every
short-circuit exit, deduplication, enrichment in the forwarded body,
forward-failure logging, and the catastrophic-error answer.

Called by: pytest
Depends on: routers/webhooks.py, services/intake_service.py, conftest.py
"""

import json
from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest

from calrouter.models import DeliveryLog

EVENT_URI = "https://api.calendly.com/scheduled_events/evt-abc"


def _webhook(event="invitee.created", uri=EVENT_URI, **payload):
    body = {"event": event, "payload": {"event": uri, "email": "jane@example.com"}}
    body["payload"].update(payload)
    return body


@pytest.fixture()
def destination():
    """Stand-in for the endpoint's destination URL. Set .status to change the answer."""

    class Destination:
        status = 200
        requests: list = []

        def handler(self, request: httpx.Request):
            self.requests.append(request)
            return httpx.Response(self.status, text="" if self.status < 300 else "upstream broke")

    dest = Destination()
    dest.requests = []
    client = httpx.AsyncClient(transport=httpx.MockTransport(dest.handler))
    with patch("calrouter.http_client.http", client):
        yield dest


def _post(client, endpoint_id, body, path="/api/webhook/calendly/{}"):
    return client.post(path.format(endpoint_id), json=body)


# ── Happy path ──────────────────────────────────────────────────────


def test_forwards_enriched_payload(client, db_session, test_endpoint, destination):
    resp = _post(
        client,
        test_endpoint.id,
        _webhook(
            tracking={"utm_source": "google"},
            questions_and_answers=[{"question": "Budget?", "answer": "$5k"}],
        ),
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["forwarded"] is True
    assert body["enriched"] is True
    assert body["endpoint_id"] == test_endpoint.id
    assert body["event_type"] == "invitee.created"
    assert body["calendly_event_uuid"] == "evt-abc"
    assert isinstance(body["processing_time_ms"], int)

    assert len(destination.requests) == 1
    sent = json.loads(destination.requests[0].content)
    assert sent["enriched"]["parsed_questions"] == {"budget": "$5k"}
    assert sent["metadata"]["calendly_event_uuid"] == "evt-abc"
    assert destination.requests[0].headers["x-calrouter-endpoint-id"] == test_endpoint.id

    log = db_session.query(DeliveryLog).one()
    assert log.status == "success"
    assert log.response_code == 200


def test_alias_route(client, test_endpoint, destination):
    resp = _post(client, test_endpoint.id, _webhook(), path="/webhook/{}")
    assert resp.status_code == 200
    assert resp.json()["forwarded"] is True


def test_destination_500_is_logged_and_acknowledged(client, db_session, test_endpoint, destination):
    destination.status = 500
    resp = _post(
        client,
        test_endpoint.id,
        _webhook(
            tracking={"utm_source": "google"},
            questions_and_answers=[{"question": "Budget?", "answer": "$5k"}],
        ),
    )

    assert resp.status_code == 200
    assert resp.json()["ok"] is True
    assert resp.json()["forwarded"] is False

    log = db_session.query(DeliveryLog).one()
    assert log.status == "failed"
    assert log.response_code == 500
    assert log.failure_kind == "failed-status"
    assert log.error_message == "Destination returned 500: upstream broke"
    assert log.enriched_payload["enriched"]["parsed_questions"] == {"budget": "$5k"}
    assert log.enriched_payload["enriched"]["utm_tracking"]["utm_source"] == "google"
    assert log.enriched_payload["enriched"]["reschedule_info"]["isReschedule"] is False
    assert log.utm_source == "google"


def test_missing_event_uri_uses_unknown(client, db_session, test_endpoint, destination):
    body = {"event": "invitee.created", "payload": {"email": "jane@example.com"}}
    resp = _post(client, test_endpoint.id, body)
    assert resp.json()["calendly_event_uuid"] == "unknown"


def test_reschedule_flagged_after_cancellation(client, db_session, test_endpoint, destination):
    _post(client, test_endpoint.id, _webhook(event="invitee.canceled", uri=EVENT_URI))
    _post(
        client,
        test_endpoint.id,
        _webhook(uri="https://api.calendly.com/scheduled_events/evt-new"),
    )

    created = (
        db_session.query(DeliveryLog).filter(DeliveryLog.event_type == "invitee.created").one()
    )
    cancelled = (
        db_session.query(DeliveryLog).filter(DeliveryLog.event_type == "invitee.canceled").one()
    )
    assert created.is_reschedule is True
    assert created.enriched_payload["enriched"]["reschedule_info"] == {
        "isReschedule": True,
        "cancellationId": cancelled.id,
    }


# ── Deduplication ───────────────────────────────────────────────────


def test_duplicate_is_not_forwarded_twice(client, db_session, test_endpoint, destination):
    first = _post(client, test_endpoint.id, _webhook())
    second = _post(client, test_endpoint.id, _webhook())

    assert first.json()["forwarded"] is True
    assert second.status_code == 200
    assert second.json() == {"ok": True, "duplicate": True}
    assert len(destination.requests) == 1
    assert db_session.query(DeliveryLog).count() == 1


def test_same_uuid_different_event_type_is_not_duplicate(
    client, db_session, test_endpoint, destination
):
    _post(client, test_endpoint.id, _webhook())
    _post(client, test_endpoint.id, _webhook(event="invitee.canceled"))
    assert db_session.query(DeliveryLog).count() == 2


# ── Short-circuit exits ─────────────────────────────────────────────


def test_invalid_json(client, test_endpoint):
    resp = client.post(f"/webhook/{test_endpoint.id}", content=b"{not json")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "error": "Invalid JSON payload"}


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"event": "invitee.created"},
        {"event": "invitee.created", "payload": None},
        {"event": "invitee.created", "payload": ["a"]},
        {"payload": {"email": "a@b.co"}},
        {"event": "", "payload": {}},
        [],
    ],
)
def test_invalid_structure(client, test_endpoint, body):
    resp = _post(client, test_endpoint.id, body)
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "error": "Invalid webhook structure"}


def test_empty_payload_object_is_forwarded(client, db_session, test_endpoint, destination):
    resp = _post(client, test_endpoint.id, {"event": "invitee.created", "payload": {}})

    assert resp.status_code == 200
    assert resp.json()["forwarded"] is True
    assert resp.json()["calendly_event_uuid"] == "unknown"
    sent = json.loads(destination.requests[0].content)
    assert sent["original"] == {"event": "invitee.created", "payload": {}}
    assert sent["metadata"]["invitee_email"] is None


def test_unknown_endpoint(client):
    resp = _post(client, "does-not-exist", _webhook())
    assert resp.status_code == 404
    assert resp.json() == {"ok": False, "error": "Endpoint not found"}


def test_inactive_endpoint(client, make_endpoint, test_user, destination):
    endpoint = make_endpoint(test_user, is_active=False)
    resp = _post(client, endpoint.id, _webhook())
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "message": "Endpoint inactive"}
    assert destination.requests == []


def test_soft_deleted_endpoint(client, make_endpoint, test_user, now, destination):
    endpoint = make_endpoint(test_user, deleted_at=now)
    resp = _post(client, endpoint.id, _webhook())
    assert resp.json() == {"ok": True, "message": "Endpoint inactive"}


@pytest.mark.parametrize("status", ["expired", "cancelled"])
def test_lapsed_subscription(client, make_user, make_endpoint, destination, status):
    user = make_user(email="lapsed@example.com", subscription_status=status)
    resp = _post(client, make_endpoint(user).id, _webhook())
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "message": "Subscription expired or cancelled"}
    assert destination.requests == []


def test_trial_past_end_date(client, make_user, make_endpoint, now, destination):
    user = make_user(
        email="late@example.com", subscription_status="trial", trial_ends_at=now - timedelta(hours=1)
    )
    resp = _post(client, make_endpoint(user).id, _webhook())
    assert resp.json() == {"ok": True, "message": "Trial expired"}
    assert destination.requests == []


def test_trial_in_progress_is_forwarded(client, trial_user, make_endpoint, destination):
    resp = _post(client, make_endpoint(trial_user).id, _webhook())
    assert resp.json()["forwarded"] is True


@pytest.mark.parametrize("method", ["get", "put", "patch", "delete"])
def test_non_post_methods(client, test_endpoint, method):
    resp = getattr(client, method)(f"/api/webhook/calendly/{test_endpoint.id}")
    assert resp.status_code == 405
    assert resp.json()["ok"] is False
    assert resp.json()["error"].startswith("Method not allowed")


# ── Failure isolation ───────────────────────────────────────────────


def test_enrichment_crash_still_forwards(client, db_session, test_endpoint, destination):
    with patch(
        "calrouter.services.intake_service.enrich_payload", side_effect=RuntimeError("boom")
    ):
        resp = _post(client, test_endpoint.id, _webhook())

    assert resp.json()["forwarded"] is True
    sent = json.loads(destination.requests[0].content)
    assert sent["enriched"]["parsed_questions"] is None
    assert sent["enriched"]["reschedule_info"] == {"isReschedule": False}


def test_log_write_failure_does_not_change_answer(client, test_endpoint, destination):
    with patch("calrouter.services.intake_service.record_delivery", return_value=None):
        resp = _post(client, test_endpoint.id, _webhook())
    assert resp.status_code == 200
    assert resp.json()["forwarded"] is True


def test_unexpected_error_answers_200(client, test_endpoint):
    with patch(
        "calrouter.services.intake_service.find_duplicate", side_effect=RuntimeError("db gone")
    ):
        resp = _post(client, test_endpoint.id, _webhook())
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "error": "Internal processing error", "message": "db gone"}


# ── Test tool ───────────────────────────────────────────────────────


def test_test_tool_runs_pipeline(client, db_session, test_endpoint, destination):
    resp = client.post("/api/webhook/test", json={"endpoint_id": test_endpoint.id})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["status"] == 200
    assert body["endpoint"] == {
        "id": test_endpoint.id,
        "name": test_endpoint.name,
        "destination_url": test_endpoint.destination_url,
    }
    assert body["test_payload"]["event"] == "invitee.created"
    assert body["webhook_response"]["forwarded"] is True
    assert body["message"] == "Test webhook sent successfully!"

    sent = json.loads(destination.requests[0].content)
    assert sent["enriched"]["parsed_questions"]["whats_your_budget_range"] == "$5,000 - $10,000"
    assert sent["enriched"]["utm_tracking"]["utm_source"] == "facebook"


def test_test_tool_cancellation_payload(client, test_endpoint, destination):
    resp = client.post(
        "/api/webhook/test",
        json={"endpoint_id": test_endpoint.id, "event_type": "invitee.canceled"},
    )
    payload = resp.json()["test_payload"]["payload"]
    assert payload["cancel_reason"] == "Testing CalRouter"
    assert "canceled_at" in payload


def test_test_tool_requires_endpoint_id(client):
    resp = client.post("/api/webhook/test", json={})
    assert resp.status_code == 400
    assert resp.json()["error"] == "endpoint_id is required"


def test_test_tool_unknown_endpoint(client):
    resp = client.post("/api/webhook/test", json={"endpoint_id": "nope"})
    assert resp.status_code == 404


def test_test_tool_help(client):
    resp = client.get("/api/webhook/test")
    assert resp.status_code == 200
    assert resp.json()["usage"]["method"] == "POST"
