"""
Run-scoped logging.

Every log line written while a run executes is tagged with the run it
belongs to. The engine stores ``run_id``/``workflow_id``/``version_id`` in a
ContextVar when a run starts and adds ``node_id``/``node_type`` per node;
the formatters below read that context, so executors just call
``logger.info(...)``.

Two renderings:
- StructuredFormatter: one JSON object per line (production, log shipping)
- HumanReadableFormatter: coloured level and a short run/node prefix (dev)
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Copied per asyncio task, so two runs on one loop never see each other's ids
trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

_ANSI = re.compile(r"\x1b\[[0-9;]*m")

LEVEL_COLORS = {
    logging.DEBUG: "\x1b[36m",
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[35m",
}
RESET = "\x1b[0m"


def strip_ansi_codes(text: str) -> str:
    return _ANSI.sub("", text)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: time, level, logger, message, run context, extras."""

    # Attributes passed through ``extra=`` that are copied into the JSON entry
    EXTRA_FIELDS = ("event", "node_type", "status", "execution_time_ms", "url")

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
        }
        entry.update({key: value for key, value in get_trace_context().items() if value is not None})

        for name in self.EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = strip_ansi_codes(value) if isinstance(value, str) else value

        if record.exc_info:
            entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``[LEVEL   ] [run:1a2b3c4d | wf:orders | node:http] message [event]``"""

    # (label, context key, how many trailing characters to keep; None = all)
    PREFIX_FIELDS = (("run", "run_id", 8), ("wf", "workflow_id", None), ("node", "node_id", None))

    def _prefix(self) -> str:
        context = get_trace_context()
        parts = []
        for label, key, tail in self.PREFIX_FIELDS:
            value = context.get(key)
            if value:
                value = str(value)
                parts.append(f"{label}:{value[-tail:] if tail else value}")
        return f"[{' | '.join(parts)}] " if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelno, "")
        event = getattr(record, "event", None)
        suffix = f" [{event}]" if event is not None else ""

        line = f"{color}[{record.levelname:<8}]{RESET} {self._prefix()}{record.getMessage()}{suffix}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_format(requested: str) -> str:
    if requested != "auto":
        return requested
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return "json"
    return "json" if os.getenv("ENV", "development").lower() == "production" else "human"


def configure_logging(level: str = "INFO", format: str = "auto") -> None:
    """
    Install a single root handler. Call once at process start.

    Args:
        level: Root log level name
        format: "json", "human" or "auto" (json when ``LOG_FORMAT=json`` or
            ``ENV=production``)
    """
    fmt = _resolve_format(format)
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(StructuredFormatter())
        os.environ["NO_COLOR"] = "1"
    else:
        handler.setFormatter(HumanReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    if fmt == "json":
        # httpx/aiohttp keep their own handlers otherwise, bypassing the JSON formatter
        for name in ("httpx", "httpcore", "aiohttp.access"):
            library_logger = logging.getLogger(name)
            library_logger.handlers.clear()
            library_logger.propagate = True


def set_trace_context(**fields: Any) -> None:
    """Merge ``fields`` into the current run context (engine: run ids, then node ids)."""
    trace_context.set({**(trace_context.get() or {}), **fields})


def get_trace_context() -> dict[str, Any]:
    return dict(trace_context.get() or {})


def clear_trace_context() -> None:
    """Forget the current run context (a worker picking up a new job, test teardown)."""
    trace_context.set(None)
