"""ABOUTME: Logging set up for StoreGuard, stdlib logging rendered through structlog
ABOUTME: Tunes the Redis, Celery and SQLAlchemy loggers and masks secrets in security events"""

import logging.config
from typing import Any

import structlog

from storeguard import config

# Event keys whose values never reach a log line. TOTP codes and secrets included.
REDACTED_KEYS = frozenset({"code", "password", "recovery_code", "secret", "token", "totp_secret"})
REDACTED = "[redacted]"

# Third party loggers and the level they run at unless every request is being logged
THIRD_PARTY_LEVELS = {
    "celery": logging.INFO,
    "kombu": logging.WARNING,
    "redis": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "urllib3": logging.WARNING,
    "werkzeug": logging.INFO,
}


def redact_secrets(_logger: Any, _method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def add_service_name(_logger: Any, _method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", "storeguard")
    return event_dict


timestamper = structlog.processors.TimeStamper(fmt="iso")
pre_chain = [
    # Add the log level and a timestamp to the event_dict if the log entry is not from structlog.
    structlog.stdlib.add_log_level,
    timestamper,
    add_service_name,
]

handler_to_use = "dev_console" if config.is_development() else "default"

logging.config.dictConfig({
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "console": {
            "()": structlog.stdlib.ProcessorFormatter,
            "processor": structlog.dev.ConsoleRenderer(colors=False),
            "foreign_pre_chain": pre_chain,
        },
        "json": {
            "()": structlog.stdlib.ProcessorFormatter,
            "processor": structlog.processors.JSONRenderer(),
            "foreign_pre_chain": pre_chain,
        },
    },
    "handlers": {
        "default": {
            "level": "INFO",
            "class": "logging.StreamHandler",
            "formatter": "json",
        },
        "dev_console": {
            "level": "DEBUG",
            "class": "logging.StreamHandler",
            "formatter": "console",
        },
    },
    "loggers": {
        "": {
            "handlers": [handler_to_use],
            "level": "INFO",
            "propagate": True,
        },
        "storeguard": {
            "level": "INFO",
            "propagate": True,
        },
    },
})

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        timestamper,
        add_service_name,
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)


def logging_setup(log_level: int = logging.INFO) -> None:
    """Apply log_level to our own loggers. Safe to call once per app or worker."""
    handler = logging.getHandlerByName(handler_to_use)
    assert handler is not None
    handler.setLevel(log_level)

    logging.getLogger().setLevel(log_level)
    logging.getLogger("storeguard").setLevel(log_level)

    if config.should_log_all_requests():
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger("storeguard").setLevel(logging.DEBUG)
        logging.getLogger("werkzeug").setLevel(logging.DEBUG)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
        logging.getLogger("redis").setLevel(logging.DEBUG)
        return

    # noisy libraries stay quiet even when our own loggers run at DEBUG
    for name, level in THIRD_PARTY_LEVELS.items():
        logging.getLogger(name).setLevel(max(level, log_level))
