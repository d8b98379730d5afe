"""
Sentry configuration for error tracking.

Captures unhandled exceptions tagged with the organisation and user of the
request that raised them.
"""
import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from tenant_authz.config import settings

logger = structlog.get_logger()


def configure_sentry() -> bool:
    """
    Initialize Sentry with FastAPI and SQLAlchemy integrations.

    Does nothing unless SENTRY_DSN is set.

    Returns:
        True if Sentry was initialised
    """
    dsn = settings.SENTRY_DSN

    if not dsn:
        logger.info("sentry_disabled")
        return False

    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
        before_send=add_context,
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
    )

    logger.info("sentry_initialised", environment=settings.ENVIRONMENT)
    return True


def add_context(event, hint):
    """Copy org_id/user_id bound by the auth dependency onto the event tags."""
    context = structlog.contextvars.get_contextvars()
    tags = event.setdefault("tags", {})
    for key in ("org_id", "user_id"):
        if context.get(key) is not None:
            tags[key] = str(context[key])
    return event
