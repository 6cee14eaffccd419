"""
Structured JSON logging for the repair pipeline.

Every module logger hangs off the ``triage_repair`` package logger, which
owns the single stdout handler. Structured context goes in ``extra``:

    logger = get_logger(__name__)
    logger.info("Stage completed", extra={"run_id": "abc", "stage": "review", "duration_ms": 812})
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

ROOT_LOGGER = "triage_repair"

_LIFTED_KEYS = (
    "run_id", "agent_name", "action", "stage", "iteration",
    "tokens", "duration_ms", "extra",
)


class JSONFormatter(logging.Formatter):
    """One JSON object per record; known ``extra`` keys become top-level fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key))
            for key in _LIFTED_KEYS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        # Enums and datetimes in extra fall back to str()
        return json.dumps(entry, default=str)


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        root.addHandler(handler)
        root.setLevel(getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO))
        root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` with JSON output; LOG_LEVEL (default INFO) sets the level."""
    root = _configure_root()
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    # Outside the package tree: attach under it so the shared handler applies.
    return root.getChild(name)
