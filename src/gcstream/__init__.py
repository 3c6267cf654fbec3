"""Typed event streams from JVM garbage collection logs."""

from gcstream.models import (
    CanonicalLine,
    EventParseError,
    JvmRun,
    LogEvent,
    LogEventType,
    MemoryRegion,
    Trigger,
    UnidentifiedLine,
)
from gcstream.parser import (
    identify_event_type,
    parse_canonical_lines,
    parse_line,
    parse_log,
)
from gcstream.preprocess import preprocess

__version__ = "1.0.0"

__all__ = [
    "CanonicalLine",
    "EventParseError",
    "JvmRun",
    "LogEvent",
    "LogEventType",
    "MemoryRegion",
    "Trigger",
    "UnidentifiedLine",
    "identify_event_type",
    "parse_canonical_lines",
    "parse_line",
    "parse_log",
    "preprocess",
]
