"""
Sentry configuration for error tracking.

Captures unhandled exceptions from the API and the worker.
"""
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from carbonex.config import settings
from carbonex.errors import LedgerError


def configure_sentry():
    """
    Initialize Sentry with FastAPI and SQLAlchemy integrations.

    Requires SENTRY_DSN environment variable to be set.
    """
    dsn = settings.SENTRY_DSN

    if not dsn:
        print("Warning: SENTRY_DSN not set, Sentry disabled")
        return

    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
        before_send=drop_expected_errors,
        # Sample rate: capture 10% of transactions for performance monitoring
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
    )

    print(f"Sentry initialized with DSN: {dsn[:20]}...")


def drop_expected_errors(event, hint):
    """
    Skip ledger errors that are part of normal operation.

    Insufficient balances and illegal transitions are returned to the
    caller; only store failures are worth an alert.
    """
    exc_info = hint.get("exc_info")
    if exc_info:
        exc = exc_info[1]
        if isinstance(exc, LedgerError) and exc.status_code < 500:
            return None
    return event


def capture_exception(exc_info=None):
    """
    Capture an exception to Sentry.

    Usage:
        try:
            # some code
        except Exception:
            capture_exception()
    """
    if sentry_sdk.get_client().is_active():
        sentry_sdk.capture_exception(exc_info)
