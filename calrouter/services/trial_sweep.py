"""
trial_sweep.py — Scheduled trial-expiry and trial-reminder sweep

Two passes per run, each over a bounded batch of users:

1. Expired: trial users whose trial_ends_at is in the past are moved to
   "expired", their active endpoints are switched off, and they get a
   trial-expired email.
2. Expiring: trial users whose trial ends within the warning window get a
   single reminder on the day exactly TRIAL_WARNING_DAYS out.

Business Rules:
- Status is re-read right before the transition; a user no longer in trial is
  skipped as already_processed
- The transition is a conditional UPDATE (still "trial"); 0 rows means another
  run won the race and the user is skipped as concurrent_modification
- Email failure never undoes the transition; an invalid address expires the
  user like any other and counts as an email failure
- Reminders go out only when ceil(days left) == 3 (wrong_day otherwise) and
  not within 12 h of the previous reminder (already_sent)
- Safe to re-run: a second run finds nothing to expire and no reminder to send

Called by: routers/cron.py
Depends on: reconciliation.py, notification_service.py, models
"""

import logging
import math
import time
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Endpoint, User
from ..models.auth import SUBSCRIPTION_EXPIRED, SUBSCRIPTION_TRIAL
from ..utils.validation import is_valid_email
from .notification_service import EmailNotifier
from .reconciliation import (
    MAX_BATCH_SIZE,
    ItemOutcome,
    claim_timestamp,
    count_outcomes,
    failed,
    isolate,
    release_timestamp,
    send_with_retry,
    settle_all,
    skipped,
)

log = logging.getLogger("calrouter.sweeps")

TRIAL_WARNING_DAYS = 3
REMINDER_RESEND_HOURS = 12


def _fetch_expired(db: Session, now: datetime) -> list[tuple]:
    return (
        db.query(User.id, User.email)
        .filter(
            User.subscription_status == SUBSCRIPTION_TRIAL,
            User.trial_ends_at.isnot(None),
            User.trial_ends_at < now,
        )
        .order_by(User.trial_ends_at)
        .limit(MAX_BATCH_SIZE)
        .all()
    )


def _fetch_expiring(db: Session, now: datetime) -> list[tuple]:
    return (
        db.query(User.id, User.email, User.trial_ends_at, User.trial_reminder_sent_at)
        .filter(
            User.subscription_status == SUBSCRIPTION_TRIAL,
            User.trial_ends_at.isnot(None),
            User.trial_ends_at >= now,
            User.trial_ends_at <= now + timedelta(days=TRIAL_WARNING_DAYS),
        )
        .order_by(User.trial_ends_at)
        .limit(MAX_BATCH_SIZE)
        .all()
    )


async def _expire_user(
    db: Session, notifier: EmailNotifier, user_id: str, email: str | None, now: datetime
) -> ItemOutcome:
    current = db.query(User.subscription_status).filter(User.id == user_id).scalar()
    if current != SUBSCRIPTION_TRIAL:
        log.info(f"User {user_id} already processed (status: {current})")
        return skipped(user_id, "already_processed")

    rows = (
        db.query(User)
        .filter(User.id == user_id, User.subscription_status == SUBSCRIPTION_TRIAL)
        .update(
            {User.subscription_status: SUBSCRIPTION_EXPIRED, User.updated_at: now},
            synchronize_session=False,
        )
    )
    db.commit()
    if rows == 0:
        log.info(f"User {user_id} was modified by another process")
        return skipped(user_id, "concurrent_modification")

    disabled = 0
    try:
        disabled = (
            db.query(Endpoint)
            .filter(Endpoint.user_id == user_id, Endpoint.is_active.is_(True))
            .update({Endpoint.is_active: False}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        log.exception(f"Failed to disable endpoints for user {user_id}")

    if is_valid_email(email):
        sent = await send_with_retry(
            notifier.send_trial_expired, email, label=f"Trial-expired email to {email}"
        )
    else:
        log.error(f"User {user_id} has invalid email, expired without notification: {email}")
        sent = False
    log.info(
        f"Processed expired trial for user {user_id}: {disabled} endpoints disabled, "
        f"email {'sent' if sent else 'failed'}"
    )
    return ItemOutcome(user_id, email_sent=sent, detail={"endpoints_disabled": disabled})


async def _remind_user(
    db: Session,
    notifier: EmailNotifier,
    user_id: str,
    email: str | None,
    trial_ends_at: datetime,
    reminder_sent_at: datetime | None,
    now: datetime,
) -> ItemOutcome:
    if not is_valid_email(email):
        log.error(f"User {user_id} has invalid email: {email}")
        return failed(user_id, "Invalid email")

    days_left = math.ceil((trial_ends_at - now) / timedelta(days=1))
    if days_left != TRIAL_WARNING_DAYS:
        return skipped(user_id, "wrong_day", days_left=days_left)

    resend_after = now - timedelta(hours=REMINDER_RESEND_HOURS)
    if reminder_sent_at and reminder_sent_at > resend_after:
        log.info(f"Reminder already sent to user {user_id} recently")
        return skipped(user_id, "already_sent", days_left=days_left)

    claimed = claim_timestamp(
        db,
        User,
        user_id,
        User.trial_reminder_sent_at,
        now,
        resend_after,
        User.subscription_status == SUBSCRIPTION_TRIAL,
    )
    if not claimed:
        return skipped(user_id, "already_sent", days_left=days_left)

    sent = await send_with_retry(
        notifier.send_trial_ending, email, days_left, label=f"Trial reminder to {email}"
    )
    if not sent:
        release_timestamp(
            db, User, user_id, User.trial_reminder_sent_at, now, reminder_sent_at
        )
        return failed(user_id, "Reminder email failed")

    log.info(f"Sent trial ending reminder to user {user_id} ({days_left} days left)")
    return ItemOutcome(user_id, email_sent=True, detail={"days_left": days_left})


async def run_trial_sweep(
    db: Session, notifier: EmailNotifier, now: datetime | None = None
) -> dict:
    """Run both passes and return the summary. Raises only if the expired batch can't be fetched."""
    started = time.monotonic()
    now = now or datetime.now(timezone.utc)
    log.info(f"Starting trial check at {now.isoformat()} (warning days: {TRIAL_WARNING_DAYS})")

    expired_users = _fetch_expired(db, now)
    log.info(f"Found {len(expired_users)} expired trials")
    expired_results = await settle_all(
        isolate(
            db,
            "Trial expiry",
            user_id,
            lambda user_id=user_id, email=email: _expire_user(db, notifier, user_id, email, now),
        )
        for user_id, email in expired_users
    )

    try:
        expiring_users = _fetch_expiring(db, now)
    except SQLAlchemyError:
        db.rollback()
        log.exception("Error fetching expiring users, continuing without reminders")
        expiring_users = []
    log.info(f"Found {len(expiring_users)} trials expiring soon")
    expiring_results = await settle_all(
        isolate(
            db,
            "Trial reminder",
            row.id,
            lambda row=row: _remind_user(
                db,
                notifier,
                row.id,
                row.email,
                row.trial_ends_at,
                row.trial_reminder_sent_at,
                now,
            ),
        )
        for row in expiring_users
    )

    expired = count_outcomes(expired_results)
    expiring = count_outcomes(expiring_results)
    summary = {
        "timestamp": now.isoformat(),
        "execution_time_ms": int((time.monotonic() - started) * 1000),
        "expired": {
            "total": len(expired_users),
            "processed": expired["processed"],
            "skipped": expired["skipped"],
            "failed": expired["failed"],
            "emails_sent": expired["emails_sent"],
            "email_failures": expired["processed"] - expired["emails_sent"],
        },
        "expiring": {
            "total": len(expiring_users),
            "notified": expiring["processed"],
            "skipped": expiring["skipped"],
            "failed": expiring["failed"],
        },
        "health": {
            "overall_success": expired["failed"] == 0 and expiring["failed"] == 0,
            "partial_failure": expired["failed"] > 0 or expiring["failed"] > 0,
            "critical_failure": expired["processed"] == 0 and len(expired_users) > 0,
        },
    }
    log.info(f"Trial check completed: {summary}")
    return summary
