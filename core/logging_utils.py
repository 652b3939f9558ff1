"""
CarePath Triage – Logging Utilities
====================================
Logging setup for the triage engine and the structured pipeline-event helper.

Pipeline events carry ``stage`` / ``event`` / ``details`` both in the message
text and as record attributes, so the JSON formatter emits them as fields.
Free text the user typed (conversation turns, raw symptom labels) and
credentials are masked before they reach a handler.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({"api_key", "history", "content", "raw_symptoms", "prompt"})

_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False,
) -> logging.Logger:
    """
    Configure the root logger for CarePath.

    Parameters
    ----------
    level : str
        Logging level (DEBUG, INFO, WARNING, ERROR).
    log_file : str, optional
        Also append to this file. Parent directories are created.
    json_format : bool
        Emit one JSON object per line instead of the text format.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    if json_format:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    # Outbound HTTP and access logs would repeat every provider call
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with pipeline-event fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in ("stage", "event", "details"):
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = f"{type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return json.dumps(log_entry, default=str, ensure_ascii=False)


def redact(details: Optional[dict]) -> Optional[dict]:
    """Copy of ``details`` with user free text and credentials masked."""
    if not details:
        return details
    return {k: (REDACTED if k in SENSITIVE_KEYS else v) for k, v in details.items()}


def log_pipeline_event(
    logger: logging.Logger,
    stage: str,
    event: str,
    details: Optional[dict] = None,
    level: int = logging.INFO,
):
    """Log ``[stage] event | {details}`` at ``level``."""
    safe = redact(details)
    msg = f"[{stage}] {event}"
    if safe:
        msg += f" | {json.dumps(safe, default=str, ensure_ascii=False)}"
    logger.log(level, msg, extra={"stage": stage, "event": event, "details": safe})
