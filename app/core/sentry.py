"""Sentry error tracking for the API process and the Celery workers.

``init_sentry`` is a no-op without SENTRY_DSN, so both entry points call it
unconditionally. Every event goes through ``scrub_event`` before it is sent:
provider keys reach exception messages and request data (an ``Authorization``
header, a ``key=`` query parameter) and must not leave the process.
Errors raised inside ``scan_scope`` carry the job and tenant as tags.
"""

import logging
import re
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import sentry_sdk

from app.core.config import settings

logger = logging.getLogger(__name__)

FILTERED = "[Filtered]"

_SECRET_FIELDS = frozenset({"authorization", "x-api-key", "x-goog-api-key", "api_key", "fernet_key"})

# Group 1 is kept; the secret after it is replaced
_SECRET_PATTERNS = (
    re.compile(r"(?i)(bearer\s+)[\w.\-]{8,}"),
    re.compile(r"(?i)([?&](?:key|api_key)=)[^&\s\"']+"),
    re.compile(r"\b((?:sk|pplx)-|AIza)[\w\-]{6,}"),
)


def _scrub_text(value: str) -> str:
    for pattern in _SECRET_PATTERNS:
        value = pattern.sub(r"\1" + FILTERED, value)
    return value


def _scrub(value):
    if isinstance(value, str):
        return _scrub_text(value)
    if isinstance(value, dict):
        return {
            k: FILTERED if isinstance(k, str) and k.lower() in _SECRET_FIELDS else _scrub(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub(v) for v in value)
    return value


def scrub_event(event: dict, hint: dict | None = None) -> dict:
    """``before_send`` hook: mask provider keys anywhere in the event."""
    return _scrub(event)


@contextmanager
def scan_scope(job_id: uuid.UUID, tenant_id: uuid.UUID) -> Iterator[None]:
    """Tag errors captured inside the block with the batch job and tenant."""
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("job_id", str(job_id))
        scope.set_tag("tenant_id", str(tenant_id))
        yield


def init_sentry() -> None:
    """Initialize Sentry if SENTRY_DSN is configured."""
    if not settings.sentry_dsn:
        logger.debug("Sentry DSN not configured, skipping")
        return

    from sentry_sdk.integrations.celery import CeleryIntegration
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        traces_sample_rate=0.1 if settings.app_env == "production" else 1.0,
        send_default_pii=False,
        before_send=scrub_event,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            CeleryIntegration(),
        ],
    )
    logger.info("Sentry initialized (env=%s)", settings.app_env)
