"""
logging_config.py — Loguru setup for CalRouter

Loguru is the single logging backend. The services log through
logging.getLogger("calrouter.<area>"); those records are intercepted and
re-emitted through Loguru with the originating logger name bound, so a sweep
line and a router line land in the same sink with the same format.

Business Rules:
- Level comes from settings.log_level (LOG_LEVEL)
- Production is any https APP_URL that isn't a loopback host: JSON lines on stdout
- Anywhere else: coloured one-line format, with the request id when one is bound
- settings.log_file (LOG_FILE) adds a rotating JSON file sink (50 MB, 7 days)
- httpx, httpcore, uvicorn.access and sqlalchemy.engine are held at WARNING

Called by: calrouter/main.py (lifespan startup)
Depends on: config.py
"""

import logging
import sys
from urllib.parse import urlparse

from loguru import logger

from .config import settings

LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


def is_production_url(app_url: str) -> bool:
    parsed = urlparse(app_url or "")
    return parsed.scheme == "https" and (parsed.hostname or "") not in LOOPBACK_HOSTS


def _dev_format(record) -> str:
    extra = record["extra"]
    request_part = "<magenta>{extra[request_id]}</magenta> | " if "request_id" in extra else ""
    source = "{extra[logger_name]}" if "logger_name" in extra else "{name}:{function}:{line}"
    return (
        "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
        + request_part
        + f"<cyan>{source}</cyan> | "
        + "{message}\n{exception}"
    )


def setup_logging(
    level: str | None = None,
    app_url: str | None = None,
    log_file: str | None = None,
) -> None:
    """Configure Loguru sinks and route stdlib logging into them.

    Arguments default to the matching settings; call once at app startup.
    """
    level = (level or settings.log_level).upper()
    app_url = settings.app_url if app_url is None else app_url
    log_file = settings.log_file if log_file is None else log_file
    production = is_production_url(app_url)

    logger.remove()
    if production:
        logger.add(sys.stdout, level=level, format="{message}", serialize=True)
    else:
        logger.add(sys.stdout, level=level, format=_dev_format, colorize=True)

    if log_file:
        logger.add(
            log_file,
            level=level,
            rotation="50 MB",
            retention="7 days",
            compression="gz",
            serialize=True,
        )

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(
        "Logging configured", level=level, production=production, log_file=log_file or None
    )


class _InterceptHandler(logging.Handler):
    """Re-emit a stdlib record through Loguru, keeping the stdlib logger name."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.bind(logger_name=record.name).opt(
            depth=depth, exception=record.exc_info
        ).log(level, record.getMessage())
