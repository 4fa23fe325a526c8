"""JSON logging for the toolbridge logger tree."""

import logging
import sys
from typing import Any

from pythonjsonlogger import jsonlogger

from toolbridge.infra.config import config

REDACTED = "[redacted]"

# Structured fields that may carry merchant credentials or AI keys
SENSITIVE_FIELDS = ("authorization", "api_key", "apikey", "secret", "password", "token", "x-api-key")


def _is_sensitive(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in SENSITIVE_FIELDS)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: REDACTED if _is_sensitive(str(k)) else _redact(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact(v) for v in value]
    return value


class SecretRedactingFilter(logging.Filter):
    """Masks ``extra`` fields (and nested header maps) whose names look like credentials."""

    _reserved = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}

    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in list(record.__dict__.items()):
            if name in self._reserved:
                continue
            record.__dict__[name] = REDACTED if _is_sensitive(name) else _redact(value)
        return True


def setup_logging() -> logging.Logger:
    """Attach a single JSON stdout handler to the ``toolbridge`` logger."""
    logger = logging.getLogger("toolbridge")
    logger.setLevel(logging.DEBUG if config.DEBUG else logging.INFO)
    logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            rename_fields={"levelname": "level"},
            static_fields={"app": "toolbridge", "env": config.APP_ENV},
        )
    )
    handler.addFilter(SecretRedactingFilter())
    logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)

    return logger


app_logger = setup_logging()
