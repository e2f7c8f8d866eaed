"""Sentry reporting for the prompt runtime.

Only server-side failures are reported: AppErrors with a 4xx status
(missing variables, inactive prompts, exhausted budgets) are caller
mistakes and are dropped before sending. Init is a no-op without
SENTRY_DSN.
"""

import logging

from app.core.config import settings
from app.core.exceptions import AppError

logger = logging.getLogger(__name__)


def drop_client_errors(event: dict, hint: dict) -> dict | None:
    exc_info = hint.get("exc_info")
    if exc_info and isinstance(exc_info[1], AppError) and exc_info[1].status_code < 500:
        return None
    return event


def init_sentry() -> None:
    if not settings.sentry_dsn:
        logger.debug("Sentry DSN not configured, skipping")
        return

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.httpx import HttpxIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        server_name="prompt-runtime",
        traces_sample_rate=0.1 if settings.app_env == "production" else 1.0,
        send_default_pii=False,
        before_send=drop_client_errors,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            # Provider and tool-service calls
            HttpxIntegration(),
        ],
    )
    logger.info("Sentry initialized for prompt-runtime (env=%s)", settings.app_env)
