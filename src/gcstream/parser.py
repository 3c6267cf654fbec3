"""Dispatch canonical lines to the event registry and assemble a JvmRun."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from gcstream.events import EVENT_GRAMMARS
from gcstream.models import CanonicalLine, JvmRun, LogEvent, LogEventType, UnidentifiedLine
from gcstream.preprocess import preprocess

logger = logging.getLogger(__name__)


def identify_event_type(line: str) -> LogEventType:
    """Return the kind of the first grammar that accepts the line, else UNKNOWN."""
    for grammar in EVENT_GRAMMARS:
        if grammar.match(line):
            return grammar.event_type
    return LogEventType.UNKNOWN


def parse_line(line: str, line_number: int = 0) -> LogEvent | UnidentifiedLine:
    """Parse one canonical line.

    Lines no grammar accepts, and lines whose extraction fails, come back as
    UnidentifiedLine so the rest of the log can still be processed.
    """
    for grammar in EVENT_GRAMMARS:
        if not grammar.match(line):
            continue
        try:
            return grammar.parse(line)
        except ValueError as e:
            logger.debug(
                "Line %d matched %s but could not be extracted: %s",
                line_number,
                grammar.event_type.value,
                e,
            )
            return UnidentifiedLine(line_number=line_number, text=line)

    return UnidentifiedLine(line_number=line_number, text=line)


def parse_log(
    lines: Iterable[str],
    reference_date: datetime | None = None,
    vm_options: str | None = None,
) -> JvmRun:
    """Preprocess and parse a whole log.

    Args:
        lines: Physical log lines in file order.
        reference_date: JVM start time for logs that print only date stamps.
        vm_options: JVM options known from outside the log. A CommandLine
            flags header in the log takes precedence.

    Returns:
        Events in canonical-line order, unidentified lines, and the VM options.
    """
    return parse_canonical_lines(preprocess(lines, reference_date), vm_options=vm_options)


def parse_canonical_lines(
    canonical_lines: Iterable[CanonicalLine], vm_options: str | None = None
) -> JvmRun:
    """Dispatch already preprocessed lines and assemble a JvmRun."""
    events: list[LogEvent] = []
    unidentified: list[UnidentifiedLine] = []
    last_timestamp_ms = 0

    for canonical in canonical_lines:
        parsed = parse_line(canonical.text, canonical.line_number)
        if isinstance(parsed, UnidentifiedLine):
            unidentified.append(parsed)
            continue

        # Untimed lines (headers, bare stopped-time lines) take the previous event's time
        if parsed.timestamped:
            last_timestamp_ms = parsed.timestamp_ms
        else:
            parsed = parsed.model_copy(update={"timestamp_ms": last_timestamp_ms})

        if parsed.vm_options is not None:
            vm_options = parsed.vm_options
        events.append(parsed)

    logger.info("Parsed %d events, %d unidentified lines", len(events), len(unidentified))
    return JvmRun(events=events, unidentified=unidentified, vm_options=vm_options)
