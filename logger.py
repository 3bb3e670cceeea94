"""Floor Monitor — Structured Logging.

JSON logs for production and colored console output for local
development, both built on structlog. Recipient contact details
(email addresses, phone numbers) and channel credentials are redacted
before a line is rendered.

Two kinds of context are merged into every entry:
    - HTTP: ``request_id`` / ``correlation_id`` set by RequestContextMiddleware
    - Engine: ``machine_id`` set by ``machine_context()`` while a machine's
      events are being handled

Usage:
    from logger import get_logger, configure_logging

    configure_logging(environment="production")
    logger = get_logger(__name__)
    logger.info("Popup created", machine_id=3, popup_id=17)
"""

from __future__ import annotations

import logging
import re
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from structlog.types import EventDict, Processor, WrappedLogger

APP_NAME = "floor-monitor"

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
machine_id_var: ContextVar[int | None] = ContextVar("machine_id", default=None)


# =============================================================================
# Redaction
# =============================================================================

# Exact keys plus suffixes cover smtp_password, whatsapp_token, api_key...
SECRET_KEYS = frozenset({"password", "secret", "token", "authorization", "api_key"})
SECRET_SUFFIXES = ("_password", "_secret", "_token", "_key")

EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
PHONE_RE = re.compile(r"\+?\d[\d\s().-]{8,}\d")

REDACTED = "[REDACTED]"


def _is_secret_key(key: str) -> bool:
    key = key.lower()
    return key in SECRET_KEYS or key.endswith(SECRET_SUFFIXES)


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        return PHONE_RE.sub("[PHONE_REDACTED]", EMAIL_RE.sub("[EMAIL_REDACTED]", value))
    if isinstance(value, dict):
        return {k: REDACTED if _is_secret_key(str(k)) else _scrub(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub(v) for v in value)
    return value


def sanitize_sensitive_data(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Drop credentials by key and contact details by value."""
    return _scrub(event_dict)


# =============================================================================
# Context processors
# =============================================================================

def add_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("app", APP_NAME)
    for key, var in (
        ("request_id", request_id_var),
        ("correlation_id", correlation_id_var),
        ("machine_id", machine_id_var),
    ):
        value = var.get()
        if value is not None:
            event_dict.setdefault(key, value)
    return event_dict


@contextmanager
def machine_context(machine_id: int) -> Iterator[None]:
    """Tag every log line emitted inside the block with ``machine_id``."""
    token = machine_id_var.set(machine_id)
    try:
        yield
    finally:
        machine_id_var.reset(token)


# =============================================================================
# Configuration
# =============================================================================

def _processors(use_json: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        add_context,
        sanitize_sensitive_data,
    ]
    if use_json:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    return processors


def configure_logging(
    environment: str = "development",
    log_level: str = "INFO",
    json_format: bool | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        environment: development renders to the console, anything else to JSON.
        log_level: Root level name.
        json_format: Overrides the environment-based choice when given.
    """
    use_json = environment != "development" if json_format is None else json_format

    structlog.configure(
        processors=_processors(use_json),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout,
                        level=getattr(logging, log_level.upper()), force=True)

    # Channel providers and the summary poll are logged by log_external_call.
    for name in ("httpx", "httpcore", "uvicorn.access", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.stdlib.get_logger(name)


# =============================================================================
# HTTP
# =============================================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """Propagate X-Request-ID / X-Correlation-ID and log one line per request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        correlation_id = request.headers.get("X-Correlation-ID") or request_id
        rid_token = request_id_var.set(request_id)
        cid_token = correlation_id_var.set(correlation_id)
        log = get_logger("floor_monitor.http").bind(method=request.method, path=request.url.path)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            log.exception("Request failed", error_type=type(exc).__name__,
                          duration_ms=round((time.perf_counter() - started) * 1000, 2))
            raise
        else:
            log.info("Request completed", status_code=response.status_code,
                     duration_ms=round((time.perf_counter() - started) * 1000, 2))
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Correlation-ID"] = correlation_id
            return response
        finally:
            request_id_var.reset(rid_token)
            correlation_id_var.reset(cid_token)


def log_external_call(
    service: str,
    method: str,
    url: str,
    status_code: int | None = None,
    duration_ms: float | None = None,
    error: str | None = None,
) -> None:
    """One line per outbound call (summary API, SMS/push/WhatsApp providers).

    The query string is dropped; provider URLs may carry credentials there.
    """
    log = get_logger("floor_monitor.external").bind(
        service=service, method=method, url=url.split("?", 1)[0], duration_ms=duration_ms
    )
    if error:
        log.warning("External call failed", error=error)
    else:
        log.info("External call completed", status_code=status_code)
