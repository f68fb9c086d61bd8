"""Shared HTTP client — connection pooling for all outbound requests.

One module-level httpx.AsyncClient instance (no redirects, connection
pooling). Callers pass a per-request timeout; destination URLs are user
supplied, so redirects are never followed.

Usage:
    from calrouter.http_client import http
    resp = await http.post(url, json=payload, timeout=10)
"""

import httpx

_LIMITS = httpx.Limits(
    max_connections=100,
    max_keepalive_connections=20,
    keepalive_expiry=30,
)

http = httpx.AsyncClient(
    timeout=30,
    limits=_LIMITS,
    follow_redirects=False,
)


async def close_clients():
    """Shut down the shared client. Call from app lifespan shutdown."""
    try:
        await http.aclose()
    except RuntimeError:
        pass
