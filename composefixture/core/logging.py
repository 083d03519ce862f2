"""Structured logging configuration with compose stage tracking."""

from __future__ import annotations

import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import Settings, get_settings


# Context variable holding the compose file of the stage being processed
stage_var: ContextVar[Optional[str]] = ContextVar("compose_stage", default=None)


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        stage = stage_var.get()
        if stage:
            log_data["stage"] = stage

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    def format(self, record: logging.LogRecord) -> str:
        stage = stage_var.get()
        prefix = f"[{stage}] " if stage else ""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        base = f"{timestamp} {record.levelname:8} {prefix}{record.name}: {record.getMessage()}"

        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)

        return base


class SensitiveDataFilter(logging.Filter):
    """Redact secret-looking values from logged commands and environments."""

    SENSITIVE_KEYS = {
        "password",
        "passwd",
        "token",
        "secret",
        "api_key",
        "access_key",
        "private_key",
    }

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        lowered = message.lower()
        if any(key in lowered for key in self.SENSITIVE_KEYS):
            for key in self.SENSITIVE_KEYS:
                message = self._redact_value(message, key)
            record.msg = message
            record.args = None
        return True

    def _redact_value(self, text: str, key: str) -> str:
        """Redact values after sensitive keys."""
        # Matches KEY=value, key: value and 'key': 'value' (any prefix, e.g. DB_PASSWORD=)
        patterns = [
            rf"(\w*{key}\w*\s*[=:]\s*)[^\s,}}\]]+",
            rf"('\w*{key}\w*'\s*:\s*)[^\s,}}\]]+",
            rf'("\w*{key}\w*"\s*:\s*)[^\s,}}\]]+',
        ]
        for pattern in patterns:
            text = re.sub(pattern, r"\1[REDACTED]", text, flags=re.IGNORECASE)
        return text


def setup_logging(settings: Settings | None = None) -> None:
    """Configure the ``composefixture`` logger hierarchy."""
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level)

    package_logger = logging.getLogger("composefixture")
    package_logger.setLevel(level)

    # Remove handlers from a previous call
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    if settings.log_format == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(TextFormatter())

    handler.addFilter(SensitiveDataFilter())
    package_logger.addHandler(handler)

    # docker SDK and httpx are chatty at DEBUG
    logging.getLogger("docker").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the composefixture prefix."""
    return logging.getLogger(f"composefixture.{name}")
