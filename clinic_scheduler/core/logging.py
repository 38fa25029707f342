"""
structlog configuration for the scheduler.

One unit of work (an HTTP request, a sync batch, a background mirror of a
single appointment) binds a correlation id and its own context such as
provider_id; every log line emitted inside it carries those keys.
"""
import logging
import sys
import time
import uuid

import structlog
from fastapi import Request

CORRELATION_HEADER = "x-correlation-id"

# provider error bodies can be several KB
TRUNCATED_KEYS = ("error", "message", "body")


def truncate_long_values(max_length: int):
    def processor(logger, method_name, event_dict):
        for key in TRUNCATED_KEYS:
            value = event_dict.get(key)
            if value is None:
                continue
            text = str(value)
            if len(text) > max_length:
                event_dict[key] = text[:max_length] + "..."
        return event_dict

    return processor


def setup_logging(debug: bool = False, max_log_length: int = 200, level: str = "INFO"):
    """Console output in development, one JSON object per line elsewhere."""
    log_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)
    renderer = structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            truncate_long_values(max_log_length),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    for noisy in ("googleapiclient.discovery_cache", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str = __name__):
    return structlog.get_logger(name)


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_work_context(**kwargs):
    """Bind key/value context (provider_id, sync_batch, ...) to later log lines of this task."""
    structlog.contextvars.bind_contextvars(**{k: v for k, v in kwargs.items() if v is not None})


def clear_context():
    structlog.contextvars.clear_contextvars()


class LoggingMiddleware:
    """Per-request correlation id; logs failed, slow or (optionally) all requests."""

    def __init__(self, log_requests: bool = False, slow_threshold: float = 2.0):
        self.log_requests = log_requests
        self.slow_threshold = slow_threshold
        self.logger = get_logger("clinic_scheduler.http")

    async def __call__(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or new_correlation_id()
        clear_context()
        set_work_context(correlation_id=correlation_id, method=request.method, path=request.url.path)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.error(
                "request_error",
                error=str(e),
                error_type=type(e).__name__,
                duration=round(time.perf_counter() - started, 3),
            )
            clear_context()
            raise

        duration = time.perf_counter() - started
        slow = duration > self.slow_threshold
        if self.log_requests or slow or response.status_code >= 400:
            self.logger.info(
                "request_complete",
                status_code=response.status_code,
                duration=round(duration, 3),
                slow=slow,
            )
        response.headers[CORRELATION_HEADER] = correlation_id
        clear_context()
        return response
