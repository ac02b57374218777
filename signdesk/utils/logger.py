# signdesk/utils/logger.py

"""
structlog configuration for SignDesk.

Signing tokens, OTP codes and raw phone numbers are capabilities or personal
data; they are masked before any renderer sees them.
"""

import logging
import re
import sys
import time
import uuid
from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

# Keys whose values must never reach the log output
REDACTED_KEYS = frozenset({
    "token", "code", "otp", "access_grant", "phone", "raw_phone", "authorization",
})

SIGNING_PATH = re.compile(r"^/sign/(?P<token>[^/]+)")


def mask_secret(value: Any) -> Any:
    """Keep the last four characters of a string so log lines can still be correlated"""
    if isinstance(value, str) and len(value) > 4:
        return f"***{value[-4:]}"
    return "***" if value is not None else None


def redact_secrets(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = mask_secret(event_dict[key])
    return event_dict


def masked_path(path: str) -> str:
    """Request path with the signing token masked"""
    match = SIGNING_PATH.match(path)
    if not match:
        return path
    return f"/sign/{mask_secret(match.group('token'))}{path[match.end():]}"


def setup_app_logging(
    app: FastAPI,
    log_level: str = "INFO",
    use_json: bool = True,
    log_file: Optional[str] = None,
    app_name: str = "SignDesk",
    environment: str = "development",
) -> None:
    """
    Route stdlib logging and structlog through one set of processors and
    install the request middleware.

    Args:
        app: Application to install the request middleware on
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        use_json: JSON on stdout (True) or the plain console renderer (False)
        log_file: Optional path; the file always receives JSON
        app_name: Added to every entry as `app`
        environment: Added to every entry as `environment`
    """
    level = getattr(logging, log_level.upper())

    def add_app_context(logger, method_name, event_dict):
        event_dict["app"] = app_name
        event_dict["environment"] = environment
        return event_dict

    shared_processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        add_app_context,
        redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if use_json:
        console_renderer = structlog.processors.JSONRenderer()
    else:
        console_renderer = structlog.dev.ConsoleRenderer(
            colors=False, exception_formatter=structlog.dev.plain_traceback
        )

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    renderers = [console_renderer]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
        renderers.append(structlog.processors.JSONRenderer())

    logging.root.handlers = []
    logging.root.setLevel(level)
    for handler, renderer in zip(handlers, renderers):
        handler.setLevel(level)
        handler.setFormatter(structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=shared_processors,
        ))
        logging.root.addHandler(handler)

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    app.add_middleware(RequestLoggingMiddleware)


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds a request id (and, on signing links, the masked token) for every
    log line of the request, and logs its outcome.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        path = masked_path(request.url.path)
        context = {"request_id": request_id}
        if path != request.url.path:
            context["signing_link"] = path.split("/")[2]

        logger = get_logger("signdesk.access")
        started = time.perf_counter()
        with structlog.contextvars.bound_contextvars(**context):
            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    "request_failed",
                    method=request.method, path=path,
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                    error=str(e), exc_info=True,
                )
                return JSONResponse(
                    status_code=500,
                    content={"error": "Internal server error", "request_id": request_id},
                    headers={"X-Request-ID": request_id},
                )

            logger.info(
                "request_completed",
                method=request.method, path=path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            response.headers["X-Request-ID"] = request_id
            return response
