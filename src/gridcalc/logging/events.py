"""Unified event schema and module-level emit helpers.

All timestamps use UTC ISO-8601 with ``Z`` suffix.  The ``emit()``
family of functions is safe to call from any context -- failures are
swallowed and printed to stderr.
"""

from __future__ import annotations

import sys
import time
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventLevel(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class EventType(str, Enum):
    # Worksheet lifecycle
    worksheet_added = "worksheet_added"
    worksheet_removed = "worksheet_removed"

    # Formula lifecycle
    formula_installed = "formula_installed"
    formula_uninstalled = "formula_uninstalled"
    formula_install_failed = "formula_install_failed"
    formula_eval_error = "formula_eval_error"

    # Propagation
    cycle_detected = "cycle_detected"
    pass_completed = "pass_completed"
    recalc_all = "recalc_all"


# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

FORMULA_PARSE_ERROR = "formula_parse_error"
UNRESOLVED_SHEET = "unresolved_sheet"
INVALID_REFERENCE = "invalid_reference"
CIRCULAR_REFERENCE = "circular_reference"
EVALUATION_ERROR = "evaluation_error"
SHEET_REMOVED = "sheet_removed"


# ---------------------------------------------------------------------------
# Context sanitising
# ---------------------------------------------------------------------------

_MAX_VALUE_LEN = 256
_MAX_LIST_LEN = 50


def sanitize_context(context: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *context* that is safe to serialise.

    Rules:
    - Strings longer than 256 chars are truncated.
    - Lists longer than 50 items are cut and annotated.
    - Values that are not JSON primitives are converted with ``str()``.
    """
    return {str(k): _sanitize_value(v) for k, v in context.items()}


def _sanitize_value(v: Any) -> Any:
    if isinstance(v, dict):
        return sanitize_context(v)
    if isinstance(v, (list, tuple, set, frozenset)):
        items = list(v)
        out = [_sanitize_value(item) for item in items[:_MAX_LIST_LEN]]
        if len(items) > _MAX_LIST_LEN:
            out.append(f"...[{len(items) - _MAX_LIST_LEN} more]")
        return out
    if v is None or isinstance(v, (bool, int, float)):
        return v
    s = v if isinstance(v, str) else str(v)
    if len(s) > _MAX_VALUE_LEN:
        return s[:_MAX_VALUE_LEN] + "...[truncated]"
    return s


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    """Return current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class CalcEvent(BaseModel):
    """A single structured log event."""

    schema_version: int = 1
    ts: str = Field(default_factory=_utc_now)
    level: EventLevel
    event_type: EventType
    context: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    error_code: str | None = None


# ---------------------------------------------------------------------------
# Module-level sink reference
# ---------------------------------------------------------------------------

# Lazily initialised when ``configure_sink`` is called.
_sink: Any = None  # EventSink | None


def configure_sink(config: dict[str, Any] | None = None) -> Any:
    """Install the module-level event sink from a gridcalc config dict.

    Reads ``logging_path``, ``logging_fsync``, ``logging_buffer_size`` and
    ``logging_tail_bytes``.  If this is never called, ``emit()`` silently
    discards events.

    Returns:
        The new :class:`~gridcalc.logging.sink.EventSink`.
    """
    global _sink
    from pathlib import Path

    from gridcalc.config import DEFAULT_CONFIG
    from gridcalc.logging.sink import EventSink

    cfg = dict(DEFAULT_CONFIG)
    cfg.update(config or {})
    path = cfg.get("logging_path")
    _sink = EventSink(
        Path(path) if path else None,
        fsync=bool(cfg.get("logging_fsync", False)),
        buffer_size=int(cfg["logging_buffer_size"]),
        tail_bytes=int(cfg["logging_tail_bytes"]),
    )
    return _sink


def reset_sink() -> None:
    """Detach the module-level sink; subsequent events are discarded."""
    global _sink
    _sink = None


def get_sink() -> Any:
    """Return the module-level sink, or None."""
    return _sink


# ---------------------------------------------------------------------------
# Rate-limited stderr warnings
# ---------------------------------------------------------------------------

_last_stderr_ts: float = 0.0
_STDERR_INTERVAL_SECS = 60.0


def _stderr_warning(msg: str) -> None:
    """Print a warning to stderr, rate-limited to one per 60 seconds."""
    global _last_stderr_ts
    now = time.monotonic()
    if now - _last_stderr_ts < _STDERR_INTERVAL_SECS:
        return
    _last_stderr_ts = now
    try:
        print(f"[gridcalc] {msg}", file=sys.stderr)
    except Exception:
        pass


# ---------------------------------------------------------------------------
# Safe emit helpers
# ---------------------------------------------------------------------------


def emit(event: CalcEvent) -> None:
    """Write an event to the configured sink.

    **Never raises.**  On failure, prints a rate-limited warning to stderr.
    """
    try:
        sink = get_sink()
        if sink is None:
            return
        event = event.model_copy(update={"context": sanitize_context(event.context)})
        sink.write(event)
    except Exception:
        _stderr_warning(f"logging failed: {traceback.format_exc()}")


def emit_info(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
) -> None:
    """Convenience: emit an info-level event."""
    emit(
        CalcEvent(
            level=EventLevel.info,
            event_type=event_type,
            message=message,
            context=context or {},
        )
    )


def emit_warning(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    """Convenience: emit a warning-level event."""
    emit(
        CalcEvent(
            level=EventLevel.warning,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        )
    )


def emit_error(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    """Convenience: emit an error-level event."""
    emit(
        CalcEvent(
            level=EventLevel.error,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        )
    )
