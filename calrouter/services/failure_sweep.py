"""
failure_sweep.py — Scheduled consecutive-failure alert sweep

Checks a bounded batch of active, non-deleted endpoints and emails the owner
when the most recent deliveries have failed CONSECUTIVE_FAILURE_THRESHOLD
times in a row.

Business Rules:
- Streak counts failed rows from the newest back, stopping at the first
  success (one success resets it), over the 10 most recent rows
- Skips: owner not on active/trial (subscription_expired), alert sent within
  24 h (notification_cooldown), no deliveries yet (no_logs), streak < 3
  (below_threshold)
- The alert timestamp is claimed before sending and released if the email
  could not be sent, so an unsent alert is retried on the next run
- Batch is 50 endpoints: those whose latest delivery failed first, then the
  least recently alerted (never alerted first), then oldest; healthy endpoints
  never crowd out failing ones

Called by: routers/cron.py
Depends on: delivery_log.py, reconciliation.py, notification_service.py
"""

import logging
import time
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, select
from sqlalchemy.orm import Session

from ..models import DeliveryLog, Endpoint, User
from ..models.auth import LIVE_SUBSCRIPTION_STATUSES
from ..models.delivery import STATUS_FAILED
from ..utils.validation import is_valid_email
from .delivery_log import count_consecutive_failures, recent_deliveries
from .notification_service import EmailNotifier
from .reconciliation import (
    MAX_BATCH_SIZE,
    ItemOutcome,
    claim_timestamp,
    failed,
    isolate,
    release_timestamp,
    send_with_retry,
    settle_all,
    skipped,
)

log = logging.getLogger("calrouter.sweeps")

CONSECUTIVE_FAILURE_THRESHOLD = 3
NOTIFICATION_COOLDOWN_HOURS = 24
RECENT_LOG_WINDOW = 10


def _fetch_endpoints(db: Session) -> list:
    latest_status = (
        select(DeliveryLog.status)
        .where(DeliveryLog.endpoint_id == Endpoint.id)
        .order_by(DeliveryLog.created_at.desc())
        .limit(1)
        .correlate(Endpoint)
        .scalar_subquery()
    )
    return (
        db.query(
            Endpoint.id,
            Endpoint.name,
            Endpoint.failure_notification_sent_at,
            User.email,
            User.subscription_status,
        )
        .join(User, Endpoint.user_id == User.id)
        .filter(Endpoint.is_active.is_(True), Endpoint.deleted_at.is_(None))
        .order_by(
            case((latest_status == STATUS_FAILED, 0), else_=1),
            Endpoint.failure_notification_sent_at.asc().nulls_first(),
            Endpoint.created_at,
        )
        .limit(MAX_BATCH_SIZE)
        .all()
    )


async def _check_endpoint(db: Session, notifier: EmailNotifier, row, now: datetime) -> ItemOutcome:
    if row.subscription_status not in LIVE_SUBSCRIPTION_STATUSES:
        return skipped(row.id, "subscription_expired")

    cooldown_start = now - timedelta(hours=NOTIFICATION_COOLDOWN_HOURS)
    last_alert = row.failure_notification_sent_at
    if last_alert and last_alert > cooldown_start:
        return skipped(row.id, "notification_cooldown")

    logs = recent_deliveries(db, row.id, RECENT_LOG_WINDOW)
    if not logs:
        return skipped(row.id, "no_logs")

    streak, last_error = count_consecutive_failures(logs)
    if streak < CONSECUTIVE_FAILURE_THRESHOLD:
        return skipped(row.id, "below_threshold", consecutive_failures=streak)

    if not is_valid_email(row.email):
        log.error(f"Invalid owner email for endpoint {row.id}: {row.email}")
        return failed(row.id, "Invalid user email")

    claimed = claim_timestamp(
        db, Endpoint, row.id, Endpoint.failure_notification_sent_at, now, cooldown_start
    )
    if not claimed:
        return skipped(row.id, "notification_cooldown")

    sent = await send_with_retry(
        notifier.send_webhook_failure,
        row.email,
        row.name,
        streak,
        last_error,
        label=f"Failure alert for endpoint {row.id}",
    )
    if not sent:
        release_timestamp(
            db, Endpoint, row.id, Endpoint.failure_notification_sent_at, now, last_alert
        )

    log.info(
        f"Processed endpoint {row.id} (failures: {streak}, email: {'sent' if sent else 'failed'})"
    )
    return ItemOutcome(row.id, email_sent=sent, detail={"consecutive_failures": streak})


async def run_failure_sweep(
    db: Session, notifier: EmailNotifier, now: datetime | None = None
) -> dict:
    """Check one batch of endpoints and return the summary. Raises only if the batch can't be fetched."""
    started = time.monotonic()
    now = now or datetime.now(timezone.utc)
    log.info(
        f"Starting webhook failure check at {now.isoformat()} "
        f"(threshold: {CONSECUTIVE_FAILURE_THRESHOLD})"
    )

    endpoints = _fetch_endpoints(db)
    log.info(f"Found {len(endpoints)} active endpoints to check")
    results = await settle_all(
        isolate(
            db,
            "Failure check",
            row.id,
            lambda row=row: _check_endpoint(db, notifier, row, now),
        )
        for row in endpoints
    )

    notified = skipped_count = failed_count = email_failures = 0
    for result in results:
        if isinstance(result, BaseException) or not result.success:
            failed_count += 1
        elif result.skipped:
            skipped_count += 1
        elif result.email_sent:
            notified += 1
        else:
            email_failures += 1

    checked = len(endpoints)
    summary = {
        "timestamp": now.isoformat(),
        "execution_time_ms": int((time.monotonic() - started) * 1000),
        "checked": checked,
        "notified": notified,
        "skipped": skipped_count,
        "failed": failed_count,
        "email_failures": email_failures,
        "health": {
            "overall_success": failed_count == 0,
            "partial_failure": failed_count > 0 and notified > 0,
            "critical_failure": failed_count > 0 and notified == 0 and checked > 0,
        },
    }
    log.info(f"Webhook failure check completed: {summary}")
    return summary
