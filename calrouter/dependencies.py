"""
dependencies.py — Shared FastAPI Dependencies

Reusable dependency functions for the routers. The rate limiter and the
email notifier dependencies live beside their implementations (rate_limit.py,
services/notification_service.py); this module holds shared-secret auth for
the cron triggers.

Business Rules:
- require_cron_secret raises 500 if CRON_SECRET is not configured
- require_cron_secret raises 401 unless Authorization is exactly "Bearer <CRON_SECRET>"
- The secret comparison is constant-time

Called by: routers/cron.py
Depends on: config
"""

import hmac
import logging

from fastapi import HTTPException, Request

from .config import settings

log = logging.getLogger("calrouter.auth")


def require_cron_secret(request: Request) -> None:
    """Dependency: authenticate an external scheduler call."""
    secret = settings.cron_secret
    if not secret:
        log.error("CRON_SECRET not configured")
        raise HTTPException(500, "Server configuration error")

    header = request.headers.get("authorization") or ""
    expected = f"Bearer {secret}"
    if not hmac.compare_digest(header.encode(), expected.encode()):
        log.warning(f"Unauthorized cron request (header present: {bool(header)})")
        raise HTTPException(401, "Unauthorized")
