"""
reconciliation.py — Shared machinery for the scheduled sweeps

Both sweeps follow one pattern: fetch a bounded batch, process each item
independently, settle all results (never fail fast), then summarize.

Business Rules:
- An item's exception is rolled back, logged and counted as a failure; it
  never stops sibling items
- Notification sends get exactly one retry after a fixed backoff
- Notification timestamps are claimed with a conditional UPDATE before the
  send (so two overlapping sweeps can't both send) and released if the send
  ultimately fails (so the next sweep can try again)

Called by: services/trial_sweep.py, services/failure_sweep.py
Depends on: exceptions.py (NotificationError)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..exceptions import NotificationError

log = logging.getLogger("calrouter.reconciliation")

EMAIL_RETRY_DELAY_SECONDS = 1.0
MAX_BATCH_SIZE = 50


@dataclass
class ItemOutcome:
    item_id: str
    success: bool = True
    skipped: bool = False
    reason: str | None = None
    error: str | None = None
    email_sent: bool = False
    detail: dict = field(default_factory=dict)


def skipped(item_id: str, reason: str, **detail) -> ItemOutcome:
    return ItemOutcome(item_id, skipped=True, reason=reason, detail=detail)


def failed(item_id: str, error: str) -> ItemOutcome:
    return ItemOutcome(item_id, success=False, error=error)


async def settle_all(coros) -> list:
    """Run every coroutine to completion; exceptions come back as results."""
    return await asyncio.gather(*coros, return_exceptions=True)


async def isolate(db: Session, label: str, item_id: str, step) -> ItemOutcome:
    """Run one item's step, turning any exception into a failed outcome."""
    try:
        return await step()
    except Exception as e:
        db.rollback()
        log.exception(f"{label}: failed to process {item_id}")
        return failed(item_id, str(e) or e.__class__.__name__)


async def send_with_retry(send, *args, label: str = "notification") -> bool:
    """Call send(*args); on NotificationError wait and try once more.

    Returns True if either attempt succeeded.
    """
    try:
        await send(*args)
        return True
    except NotificationError as e:
        log.warning(f"{label} failed, retrying in {EMAIL_RETRY_DELAY_SECONDS}s: {e}")

    await asyncio.sleep(EMAIL_RETRY_DELAY_SECONDS)
    try:
        await send(*args)
        return True
    except NotificationError as e:
        log.error(f"{label} retry failed: {e}")
        return False


def count_outcomes(results) -> dict:
    """Tally settled results. Raised exceptions count as failures."""
    processed = skipped_count = failed_count = emails_sent = 0
    for result in results:
        if isinstance(result, BaseException) or not result.success:
            failed_count += 1
        elif result.skipped:
            skipped_count += 1
        else:
            processed += 1
            if result.email_sent:
                emails_sent += 1
    return {
        "processed": processed,
        "skipped": skipped_count,
        "failed": failed_count,
        "emails_sent": emails_sent,
    }


def claim_timestamp(
    db: Session, model, row_id: str, column, stamp: datetime, stale_before: datetime, *criteria
) -> bool:
    """Set column=stamp if it is NULL or older than stale_before. True if we won."""
    rows = (
        db.query(model)
        .filter(model.id == row_id, or_(column.is_(None), column <= stale_before), *criteria)
        .update({column: stamp}, synchronize_session=False)
    )
    db.commit()
    return rows == 1


def release_timestamp(
    db: Session, model, row_id: str, column, stamp: datetime, previous: datetime | None
) -> None:
    """Undo claim_timestamp, unless someone else has stamped the row since."""
    db.query(model).filter(model.id == row_id, column == stamp).update(
        {column: previous}, synchronize_session=False
    )
    db.commit()
