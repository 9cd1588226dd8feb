"""
Logging Configuration — Structured logging setup.

Two output styles share the same records:

- json: one object per line, for log shippers
- text: short colored lines, for running in a terminal

Mirror operations attach ``key``, ``op`` and ``mirror_type`` through
``extra=``; control requests attach ``client``. Both formatters render them.

## Environment Variables

- LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- LOG_FORMAT: json, text (default: text)
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

CONTEXT_FIELDS = ("key", "op", "mirror_type", "client")

# Libraries whose INFO output duplicates our own request lines
_QUIET_LOGGERS = ("werkzeug", "httpx", "httpcore")


def _context(record: logging.LogRecord) -> Dict[str, Any]:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}


class JSONFormatter(logging.Formatter):
    """{"ts": ..., "level": ..., "logger": ..., "message": ..., <context>}"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """
    12:34:56 INFO    [manager        ] Message  key=ab12cd34
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color: Optional[bool] = None):
        super().__init__()
        self.color = sys.stderr.isatty() if color is None else color

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:7}"
        if self.color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        source = record.name.rsplit(".", 1)[-1][:15]
        parts = [f"{stamp} {level} [{source:15}] {record.getMessage()}"]

        context = _context(record)
        if "key" in context:
            # First 8 hex chars only
            context["key"] = str(context["key"])[:8]
        if context:
            parts.append(" ".join(f"{k}={v}" for k, v in context.items()))

        line = "  ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    level: str | None = None,
    format_type: str | None = None,
) -> logging.Handler:
    """
    Install a single stderr handler on the root logger.

    Args:
        level: Log level. Defaults to LOG_LEVEL env var or INFO.
        format_type: json or text. Defaults to LOG_FORMAT env var or text.

    Returns:
        The installed handler
    """
    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    style = (format_type or os.environ.get("LOG_FORMAT") or "text").lower()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if style == "json" else HumanFormatter())
    handler.setLevel(numeric_level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging configured: level={level_name}, format={style}")
    return handler
