from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, Dict, Optional

from tilecommon.utils import iso_now_ms


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:
      { "ts": "2024-05-01T12:00:00.123Z", "lvl": "INFO", "name": "tilewarp.fetch",
        "msg": "text", "task_id": "...", "extra": {...} }

    Structured fields travel as extra={"extra": {...}}; a `task_id` among them is lifted to
    the top level so one request's lines can be grepped together.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": iso_now_ms(),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict) and fields:
            fields = dict(fields)
            task_id = fields.pop("task_id", None)
            if task_id is not None:
                payload["task_id"] = task_id
            if fields:
                payload["extra"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _level(name: Optional[str]) -> int:
    lvl = getattr(logging, (name or os.environ.get("LOG_LEVEL") or "INFO").upper(), None)
    return lvl if isinstance(lvl, int) else logging.INFO


def setup_logging(level: Optional[str] = None, *, force: bool = False) -> None:
    """
    Configure the root logger with JSON lines on stdout.
    Level precedence:
      - explicit `level` arg
      - env LOG_LEVEL (e.g., DEBUG/INFO/WARN/ERROR)
      - default INFO
    Runs once; `force=True` re-applies it (server start-up with a configured level).
    """
    root = logging.getLogger()
    if getattr(root, "_tilewarp_configured", False) and not force:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_level(level))
    root._tilewarp_configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    """Module logger for entry points; configures the root on first use."""
    setup_logging()
    return logging.getLogger(name)
