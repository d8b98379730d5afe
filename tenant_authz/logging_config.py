"""
Structured logging configuration using structlog.

All logs are output as JSON with consistent context fields. Every event
carries the service name and environment; request middleware adds
org_id/user_id through contextvars.
"""
import logging
import sys

import structlog

from tenant_authz.config import settings


def add_service_context(logger, method_name, event_dict):
    """Stamp every event with the service and environment it came from."""
    event_dict.setdefault("service", settings.APP_NAME)
    event_dict.setdefault("environment", settings.ENVIRONMENT)
    return event_dict


def configure_logging(level: str | None = None):
    """Configure structlog for JSON output with context."""
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    # SQL echo is controlled by DEBUG on the engine, not by LOG_LEVEL
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.DEBUG else logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_service_context,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()


def get_logger(**context):
    """
    Get a logger with additional context bound.

    None values are dropped, so unauthenticated requests do not log
    org_id=null.

    Usage:
        log = get_logger(org_id=org_id, user_id=user_id)
        log.info("role_assigned", role_id=role_id)
    """
    return structlog.get_logger().bind(**{key: value for key, value in context.items() if value is not None})
