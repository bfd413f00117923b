import json
import logging
import os
from logging.config import dictConfig

import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration

from festivio.billing.errors import ReconciliationError

logger = logging.getLogger("festivio.webhooks")


def init_logging(app):
    """Structured logs (JSON) in staging/prod; plain console in dev/tests."""
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    level = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    if app_env in ("staging", "production"):
        fmt = "%(asctime)s %(levelname)s %(name)s %(message)s"
        dictConfig({
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": "pythonjsonlogger.json.JsonFormatter", "fmt": fmt}},
            "handlers": {"wsgi": {"class": "logging.StreamHandler", "formatter": "json"}},
            "root": {"level": level, "handlers": ["wsgi"]},
        })
    else:
        logging.getLogger("festivio").setLevel(level)


def init_sentry(app):
    """Wire Sentry if DSN present; safe no-op otherwise."""
    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        return
    try:
        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration()],
            traces_sample_rate=float(os.getenv("SENTRY_TRACES", "0.0")),
            environment=os.getenv("APP_ENV", "development"),
        )
    except Exception as exc:
        app.logger.warning("Sentry init skipped: %s", exc)


def report_failure(event_type: str, exc: BaseException, **fields) -> None:
    """
    Reporting sink for failures the webhook boundary does not surface to the
    caller. Expected reconciliation failures are warnings; anything else is
    logged with its traceback. Both go to Sentry when it is configured.
    """
    payload = {"event": "seal_webhook_failed", "type": event_type, "error": type(exc).__name__, "detail": str(exc), **fields}
    if isinstance(exc, ReconciliationError):
        logger.warning(json.dumps(payload))
    else:
        logger.error(json.dumps(payload), exc_info=exc)
    sentry_sdk.capture_exception(exc)
