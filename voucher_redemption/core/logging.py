import logging
import sys
from typing import Any

import structlog

SERVICE_NAME = "voucher-redemption"

# Raw codes and key material must never reach log sinks; callers log code_kind/code_length.
REDACTED_LOG_KEYS = frozenset(
    {
        "code",
        "token",
        "short_code",
        "private_key",
        "public_key",
        "internal_token",
        "service_token",
    }
)
REDACTED_VALUE = "[redacted]"


def redact_sensitive_values(
    _logger: Any,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    for key in REDACTED_LOG_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED_VALUE
    return event_dict


def configure_logging(log_level: str = "INFO", *, component: str = "api") -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            redact_sensitive_values,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=SERVICE_NAME, component=component)
