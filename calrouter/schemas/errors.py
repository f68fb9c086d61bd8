"""
schemas/errors.py — Structured error response model

Shared by the HTTPException and RequestValidationError handlers in main.py.
Webhook intake answers never use it: Calendly gets the ok/error shape.
"""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    status_code: int
    request_id: str = ""
    detail: list | None = None
