"""structlog setup for the billing backend.

Every entry, ours or from stdlib loggers (uvicorn, stripe, SQLAlchemy),
goes through one processor chain: request correlation id, service name,
and redaction of Stripe secrets and bearer tokens. Output is JSON unless
running in debug mode.
"""

import logging
import logging.config
import re

import structlog
from asgi_correlation_id.context import correlation_id

SERVICE_NAME = "saaskit-backend"

# sk_live_/sk_test_/rk_ secret keys, webhook signing secrets, Clerk session JWTs
_SECRET_PATTERN = re.compile(r"\b(?:sk|rk)_(?:live|test)_[A-Za-z0-9]+|\bwhsec_[A-Za-z0-9]+|\beyJ[\w-]+\.[\w-]+\.[\w-]+")
_REDACTED = "[redacted]"

_QUIET_LOGGERS = ("uvicorn.access", "stripe", "botocore", "urllib3")


def add_correlation_id(logger, method, event_dict):
    cid = correlation_id.get(None)
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def add_service_name(logger, method, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def redact_secrets(logger, method, event_dict):
    """Mask API keys and tokens in string values, e.g. inside Stripe error messages."""
    for key, value in event_dict.items():
        if isinstance(value, str) and _SECRET_PATTERN.search(value):
            event_dict[key] = _SECRET_PATTERN.sub(_REDACTED, value)
    return event_dict


def configure_structlog(debug: bool = False) -> None:
    """Install the processor chain and stdlib bridge.

    Must run before other saaskit imports: loggers are cached on first use.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_correlation_id,
        add_service_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        redact_secrets,
    ]

    if debug:
        renderer = structlog.dev.ConsoleRenderer()
        final_processors = [renderer]
    else:
        renderer = structlog.processors.JSONRenderer()
        final_processors = [structlog.processors.format_exc_info, renderer]

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [structlog.stdlib.ProcessorFormatter.remove_processors_meta, *final_processors],
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "structured",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["default"], "level": "DEBUG" if debug else "INFO"},
        "loggers": {name: {"level": "WARNING"} for name in _QUIET_LOGGERS},
    })

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
