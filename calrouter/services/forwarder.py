"""
forwarder.py — Outbound delivery of enriched payloads to destination URLs

POSTs JSON with a hard timeout and classifies the outcome into exactly one
delivery kind. Classification walks the exception's cause chain (and any
exception groups raised by the connection backend) looking for typed
network errors; it never matches on human-readable messages.

Business Rules:
- 2xx is success; anything else is failed-status with a body excerpt (500 chars)
- Timeouts abandon the call; no retry within the same request
- Never raises: every outcome is returned as a ForwardResult

Called by: services/intake_service.py
Depends on: http_client.py (shared httpx client), config.py (timeout)
"""

import errno
import logging
import socket
from dataclasses import dataclass

import httpx

from ..config import settings
from ..models.delivery import STATUS_FAILED, STATUS_SUCCESS

log = logging.getLogger("calrouter.forwarder")

USER_AGENT = "CalRouter/1.0"
MAX_ERROR_BODY_CHARS = 500

KIND_SUCCESS = "success"
KIND_FAILED_STATUS = "failed-status"
KIND_FAILED_TIMEOUT = "failed-timeout"
KIND_FAILED_DNS = "failed-dns"
KIND_FAILED_CONNECTION_REFUSED = "failed-connection-refused"
KIND_FAILED_OTHER = "failed-other"


@dataclass(frozen=True)
class ForwardResult:
    kind: str
    response_code: int | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind == KIND_SUCCESS

    @property
    def status(self) -> str:
        """Delivery log status: success | failed."""
        return STATUS_SUCCESS if self.ok else STATUS_FAILED


def _iter_causes(exc: BaseException):
    """Yield exc and everything it was raised from, depth-first."""
    seen = set()
    stack = [exc]
    while stack:
        current = stack.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        stack.extend(getattr(current, "exceptions", ()) or ())
        stack.append(current.__cause__)
        stack.append(current.__context__)


def classify_transport_error(exc: BaseException) -> str:
    for err in _iter_causes(exc):
        if isinstance(err, (httpx.TimeoutException, TimeoutError)):
            return KIND_FAILED_TIMEOUT
        if isinstance(err, socket.gaierror):
            return KIND_FAILED_DNS
        if isinstance(err, ConnectionRefusedError) or (
            isinstance(err, OSError) and err.errno == errno.ECONNREFUSED
        ):
            return KIND_FAILED_CONNECTION_REFUSED
    return KIND_FAILED_OTHER


def _transport_error_message(kind: str, exc: BaseException, timeout: float) -> str:
    if kind == KIND_FAILED_TIMEOUT:
        return f"Request timeout (>{timeout:g}s)"
    if kind == KIND_FAILED_DNS:
        return "Destination URL not found (DNS error)"
    if kind == KIND_FAILED_CONNECTION_REFUSED:
        return "Connection refused"
    return str(exc) or "Network error"


async def forward_payload(
    destination_url: str,
    body: dict,
    endpoint_id: str,
    event_type: str,
    client: httpx.AsyncClient | None = None,
    timeout: float | None = None,
) -> ForwardResult:
    """POST body to destination_url and classify what happened."""
    if client is None:
        from ..http_client import http as client
    timeout = timeout if timeout is not None else settings.forward_timeout_seconds

    headers = {
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
        "X-CalRouter-Endpoint-Id": endpoint_id,
        "X-CalRouter-Event-Type": event_type,
    }

    try:
        resp = await client.post(destination_url, json=body, headers=headers, timeout=timeout)
    except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
        kind = classify_transport_error(e)
        message = _transport_error_message(kind, e, timeout)
        log.warning(f"Forward to {destination_url} failed ({kind}): {message}")
        return ForwardResult(kind=kind, error_message=message)

    if resp.is_success:
        return ForwardResult(kind=KIND_SUCCESS, response_code=resp.status_code)

    message = f"Destination returned {resp.status_code}"
    excerpt = resp.text[:MAX_ERROR_BODY_CHARS] if resp.text else ""
    if excerpt:
        message += f": {excerpt}"
    log.info(f"Destination {destination_url} answered {resp.status_code} for endpoint {endpoint_id}")
    return ForwardResult(
        kind=KIND_FAILED_STATUS, response_code=resp.status_code, error_message=message
    )
