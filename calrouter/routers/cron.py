"""Cron API — external scheduler triggers for the reconciliation sweeps.

Both triggers accept GET or POST with ``Authorization: Bearer <CRON_SECRET>``.
A sweep with item-level failures still answers 200 (the scheduler must not
re-run it); only a failure to fetch the batch answers 500.
"""

import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_cron_secret
from ..schemas.cron import CronFailureResponse, CronSuccessResponse
from ..services.failure_sweep import run_failure_sweep
from ..services.notification_service import EmailNotifier, get_notifier
from ..services.trial_sweep import run_trial_sweep

router = APIRouter(
    prefix="/api/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)]
)


def _catastrophic(name: str, started: float, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error("{} failed catastrophically", name)
    body = CronFailureResponse(
        message=str(exc) or "Unknown error",
        execution_time_ms=int((time.monotonic() - started) * 1000),
    )
    return JSONResponse(body.model_dump(), status_code=500)


@router.api_route("/check-trials", methods=["GET", "POST"], response_model=CronSuccessResponse)
async def check_trials(
    db: Session = Depends(get_db),
    notifier: EmailNotifier = Depends(get_notifier),
):
    started = time.monotonic()
    try:
        summary = await run_trial_sweep(db, notifier)
    except Exception as e:
        db.rollback()
        return _catastrophic("Trial check", started, e)
    return CronSuccessResponse(message="Trial check completed", summary=summary)


@router.api_route(
    "/check-webhook-failures", methods=["GET", "POST"], response_model=CronSuccessResponse
)
async def check_webhook_failures(
    db: Session = Depends(get_db),
    notifier: EmailNotifier = Depends(get_notifier),
):
    started = time.monotonic()
    try:
        summary = await run_failure_sweep(db, notifier)
    except Exception as e:
        db.rollback()
        return _catastrophic("Webhook failure check", started, e)
    message = (
        "Webhook failure check completed"
        if summary["checked"]
        else "No active endpoints to check"
    )
    return CronSuccessResponse(message=message, summary=summary)
