"""Structured logging configuration with stdlib bridge.

Configures structlog with:
- JSON output for production, ConsoleRenderer for dev mode
- Stdlib bridge so third-party logs (uvicorn, SQLAlchemy, stripe) go through the same chain
- Correlation ID injection from asgi-correlation-id context var
- Redaction of signing secrets, API keys and signature headers
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id

SERVICE_NAME = "billing-sync"

REDACTED = "[redacted]"

# Keys whose values must never reach a log line
SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "authorization",
        "signature",
        "signature_header",
        "stripe_signature",
        "stripe-signature",
        "stripe_secret_key",
        "stripe_webhook_secret",
        "secret",
    }
)

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("uvicorn.access", "stripe", "sqlalchemy.engine", "httpx")


def add_correlation_id(logger, method, event_dict):
    """Inject correlation_id from asgi-correlation-id context into every log entry."""
    cid = correlation_id.get(None)
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def add_service_name(logger, method, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def redact_sensitive(logger, method, event_dict):
    """Replace values of SENSITIVE_KEYS, including inside nested dicts."""
    return _redact(event_dict)


def _redact(mapping: dict) -> dict:
    for key, value in mapping.items():
        if key.lower() in SENSITIVE_KEYS and value:
            mapping[key] = REDACTED
        elif isinstance(value, dict):
            mapping[key] = _redact(dict(value))
    return mapping


def configure_structlog(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structlog with stdlib bridge.

    Call this BEFORE any other billing_sync imports: structlog caches the
    processor chain on first use.

    Args:
        log_level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
        json_logs: True for JSON output (production), False for ConsoleRenderer (dev)
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_name,
        add_correlation_id,
        redact_sensitive,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
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
        "root": {"handlers": ["default"], "level": log_level},
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
    })

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
