"""
CalRouter — Calendly webhook enrichment and routing service

Receives Calendly webhooks per endpoint, enriches them (parsed questions,
reschedule detection, UTM attribution), forwards them to the endpoint's
destination and keeps an append-only delivery log. Two cron-triggered sweeps
expire trials and alert on sustained delivery failures.
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .http_client import close_clients
from .logging_config import setup_logging
from .routers import cron, webhooks
from .schemas.errors import ErrorResponse
from .startup import run_startup_migrations


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("CalRouter {} starting up", __version__)
    try:
        run_startup_migrations()
    except Exception as e:
        logger.error("Startup migrations failed: {}", e)
    yield
    await close_clients()
    logger.info("CalRouter shutting down")


app = FastAPI(title="CalRouter", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
    request.state.request_id = request_id
    with logger.contextualize(request_id=request_id):
        response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    body = ErrorResponse(
        error=str(exc.detail), status_code=exc.status_code, request_id=_request_id(request)
    )
    return JSONResponse(body.model_dump(exclude_none=True), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("Validation error for {}: {}", request.url.path, exc.errors())
    body = ErrorResponse(
        error="Validation error",
        status_code=422,
        request_id=_request_id(request),
        detail=[
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ],
    )
    return JSONResponse(body.model_dump(exclude_none=True), status_code=422)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error("Unhandled error on {} {}", request.method, request.url.path)
    body = ErrorResponse(
        error="Internal server error", status_code=500, request_id=_request_id(request)
    )
    return JSONResponse(body.model_dump(exclude_none=True), status_code=500)


app.include_router(webhooks.router)
app.include_router(cron.router)


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__}
