"""
Structured JSON logging with correlation IDs and job context.
"""

import logging
import sys
import uuid
from typing import Optional
from datetime import datetime, timezone
from pythonjsonlogger import jsonlogger
from contextvars import ContextVar
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# Context variables (task-local under asyncio)
correlation_id_var: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)
tenant_id_var: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)
job_name_var: ContextVar[Optional[str]] = ContextVar("job_name", default=None)


class CorrelationIdFilter(logging.Filter):
    """Add correlation ID to log records."""

    def filter(self, record):
        record.correlation_id = correlation_id_var.get() or "none"
        return True


class JobContextFilter(logging.Filter):
    """Add the tenant and job currently being processed to log records."""

    def filter(self, record):
        if not hasattr(record, "tenant_id"):
            record.tenant_id = tenant_id_var.get()
        if not hasattr(record, "job_name"):
            record.job_name = job_name_var.get()
        return True


class NewsroomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with a fixed envelope of fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = (
            datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        )
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["correlation_id"] = getattr(record, "correlation_id", "none")
        log_record["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }
        # Drop empty job context so non-job lines stay short
        for key in ("tenant_id", "job_name"):
            if log_record.get(key) is None:
                log_record.pop(key, None)


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Configure structured JSON logging for the service."""

    formatter = NewsroomJsonFormatter("%(message)s")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(CorrelationIdFilter())
    console_handler.addFilter(JobContextFilter())

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    # Configure uvicorn loggers to use JSON formatter
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.addHandler(console_handler)
        uvicorn_logger.propagate = False

    # APScheduler is chatty at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    job_logger = logging.getLogger("newsroom.jobs")
    job_logger.setLevel(logging.INFO)

    return job_logger


def new_correlation_id() -> str:
    """Start a new correlation scope (used by scheduler runs)."""
    correlation_id = str(uuid.uuid4())
    correlation_id_var.set(correlation_id)
    return correlation_id


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation IDs to requests."""

    async def dispatch(self, request: Request, call_next):
        # Generate or extract correlation ID
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())

        correlation_id_var.set(correlation_id)
        request.state.correlation_id = correlation_id

        response = await call_next(request)

        response.headers["X-Correlation-ID"] = correlation_id

        return response


def log_job_event(
    event_type: str,
    message: str,
    level: int = logging.INFO,
    tenant_id: Optional[str] = None,
    job_name: Optional[str] = None,
    **extra_fields,
):
    """
    Log a job lifecycle event with structured data.

    Args:
        event_type: Type of event (e.g., "job.skipped", "job.succeeded")
        message: Human-readable message
        level: Logging level (default: INFO)
        tenant_id: Tenant the job ran for
        job_name: Scheduler job name
        **extra_fields: Additional fields to include
    """
    logger = logging.getLogger("newsroom.jobs")

    extra = {"event_type": event_type}

    if tenant_id:
        extra["tenant_id"] = tenant_id
    if job_name:
        extra["job_name"] = job_name

    extra.update(extra_fields)

    logger.log(level, message, extra=extra)
