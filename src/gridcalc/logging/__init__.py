"""Structured event logging for gridcalc.

Provides a unified event schema, an in-memory/NDJSON sink, and safe
emit helpers that never raise uncaught exceptions.
"""

from gridcalc.logging.events import (
    CalcEvent,
    EventLevel,
    EventType,
    configure_sink,
    emit,
    emit_error,
    emit_info,
    emit_warning,
    get_sink,
    reset_sink,
    sanitize_context,
)
from gridcalc.logging.sink import EventSink

__all__ = [
    "CalcEvent",
    "EventLevel",
    "EventSink",
    "EventType",
    "configure_sink",
    "emit",
    "emit_error",
    "emit_info",
    "emit_warning",
    "get_sink",
    "reset_sink",
    "sanitize_context",
]
