"""Structured logging configuration for ScholarAI."""

import logging
from typing import Optional

import structlog
from structlog.stdlib import LoggerFactory


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structured logging with audit capabilities."""

    # Set log level
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if json_logs:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_audit_logger(component: str) -> structlog.BoundLogger:
    """Get a logger with audit context for a specific component."""
    logger = structlog.get_logger(component)
    return logger.bind(component=component, audit=True)


def log_job_transition(
    logger: structlog.BoundLogger,
    job_id: str,
    source: str,
    status: str,
    message: str,
    detail: Optional[str] = None
) -> None:
    """Log a background job status change."""
    logger.info(
        "job_status_changed",
        job_id=job_id,
        source=source,
        status=status,
        message=message,
        detail=detail,
        event_type="job_transition"
    )


def log_ingestion_event(
    logger: structlog.BoundLogger,
    job_id: str,
    source: str,
    notes_created: int,
    pages: int,
    chunks: int,
    processing_time_ms: float,
    succeeded: bool
) -> None:
    """Log the outcome of an ingestion job for audit trail."""
    logger.info(
        "ingestion_completed",
        job_id=job_id,
        source=source,
        notes_created=notes_created,
        pages=pages,
        chunks=chunks,
        processing_time_ms=processing_time_ms,
        succeeded=succeeded,
        event_type="ingestion"
    )
