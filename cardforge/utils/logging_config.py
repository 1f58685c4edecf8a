"""
Structured JSON logging configuration for CardForge.

All log records are emitted as single-line JSON objects to both the
configured log file and stderr (WARNING and above).

Usage::

    from cardforge.utils.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("tool executed", extra={"session_id": sid, "tool": "STATUS"})

For the iteration loop, which needs session-scoped context on every record::

    from cardforge.utils.logging_config import get_logger, SessionAdapter

    raw = get_logger("cardforge.engine")
    logger = SessionAdapter(raw, session_id="abc-123")
    logger.info("turn started")        # automatically includes session_id
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

class JSONFormatter(logging.Formatter):
    """Emits each record as a single-line JSON object."""

    EXTRA_KEYS = ("session_id", "event_type", "tool", "action",
                  "iteration", "duration_ms", "metadata")

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in self.EXTRA_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


# ---------------------------------------------------------------------------
# SessionAdapter
# ---------------------------------------------------------------------------

class SessionAdapter(logging.LoggerAdapter):
    """Logger adapter that injects ``session_id`` into every record."""

    def __init__(self, logger: logging.Logger, session_id: str):
        super().__init__(logger, {"session_id": session_id})

    def process(
        self,
        msg: str,
        kwargs: MutableMapping[str, Any],
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.setdefault("extra", {})
        extra.update(self.extra)
        return msg, kwargs


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_CONFIGURED = False


def setup_logging(log_file: str | None = None, level: int = logging.INFO) -> None:
    """Configure the root ``cardforge`` logger with JSON handlers.

    Safe to call multiple times; only the first call has effect.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return
    _CONFIGURED = True

    if log_file is None:
        from cardforge.config import get_settings
        log_file = get_settings().log_file

    root = logging.getLogger("cardforge")
    root.setLevel(level)
    root.propagate = False

    formatter = JSONFormatter()

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setFormatter(formatter)
    root.addHandler(fh)

    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(formatter)
    sh.setLevel(logging.WARNING)
    root.addHandler(sh)


def get_logger(name: str = "cardforge") -> logging.Logger:
    """Return a child logger under the ``cardforge`` namespace.

    Automatically calls :func:`setup_logging` on first use.
    """
    setup_logging()
    if name.startswith("cardforge"):
        return logging.getLogger(name)
    return logging.getLogger(f"cardforge.{name}")
