"""
schemas/cron.py — Response envelopes for the scheduled sweep triggers.

Summaries stay free-form dicts; their shape is owned by the sweep services.
"""

from pydantic import BaseModel


class CronSuccessResponse(BaseModel):
    success: bool = True
    message: str
    summary: dict


class CronFailureResponse(BaseModel):
    success: bool = False
    error: str = "Internal server error"
    message: str
    execution_time_ms: int
