import logging
import sys

import structlog


def configure_logging(debug: bool = False) -> None:
    """JSON lines in production, console rendering with DEBUG."""
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    # pymongo's own debug output drowns the ledger events
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_request_id(request_id: str) -> None:
    structlog.contextvars.bind_contextvars(request_id=request_id)


def bind_owner(owner_id: str) -> None:
    """Attach the authenticated owner to every log line of the current request."""
    structlog.contextvars.bind_contextvars(owner_id=owner_id)


def bind_job(job_name: str, job_id: str) -> None:
    structlog.contextvars.bind_contextvars(job=job_name, job_id=job_id)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
