"""Turn raw GC log text into canonical lines, one per logical event.

The JVM interleaves output from concurrent collector threads, splits single
collections across physical lines, and decorates lines with date stamps, heap
dumps and class histograms. ``preprocess`` walks the log once with one line of
lookahead and a small per-run context, applying these actions in priority
order to each line:

1. strip or convert date-stamp prefixes
2. remove embedded decorations (heap dumps, class histogram tables, tenuring
   distribution, class unloading notices)
3. accumulate fragments of an open collection, hoisting concurrent-phase
   fragments out as their own lines
4. close the fragment buffer once bracket nesting returns to zero
5. pass everything else through unchanged
6. drop blank lines

Canonical output is a fixed point: preprocessing it again changes nothing.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import Literal, TypeAlias

from pydantic import BaseModel, ConfigDict

from gcstream.grammar import DATESTAMP, TIMESTAMP, parse_datestamp
from gcstream.models import CanonicalLine

logger = logging.getLogger(__name__)

BufferFamily: TypeAlias = Literal["collection", "g1_details"]

# ============================================================
# CONTEXT
# ============================================================


class PreprocessContext(BaseModel):
    """State carried from one physical line to the next within a single run."""

    model_config = ConfigDict(frozen=True)

    # Instant that date-stamp-only lines are measured from
    reference_date: datetime | None = None
    datestamped: bool = False

    buffer: str | None = None
    buffer_line_number: int = 0
    buffer_family: BufferFamily | None = None

    in_heap_dump: bool = False
    in_class_histogram: bool = False
    prior_line: str | None = None


# ============================================================
# LINE PATTERNS
# ============================================================

_DATESTAMP = re.compile(DATESTAMP)
_DATESTAMP_BEFORE_TIMESTAMP = re.compile(rf"{DATESTAMP}: (?={TIMESTAMP}: )")
_DATESTAMP_ALONE = re.compile(rf"(?P<datestamp>{DATESTAMP}): ")

_HEAP_DUMP_BANNER = re.compile(
    r"\{?Heap (?:before|after) [gG][cC] invocations=\d+(?: \(full \d+\))?:"
)
_HEAP_DUMP_CLOSE = re.compile(r"^\}\s*$")
_HEAP_DUMP_DETAIL = re.compile(
    r"^\s+(?:par new generation|def new generation|PSYoungGen|PSOldGen|ParOldGen|PSPermGen"
    r"|concurrent mark-sweep generation|concurrent-mark-sweep perm gen|tenured generation"
    r"|compacting perm gen|garbage-first heap|region size|eden|from|to|object|the space"
    r"|ro|rw|Metaspace|class space|No shared spaces)\b"
)

_CLASS_HISTOGRAM_OPEN = re.compile(r"\[Class Histogram(?: \((?:before|after) full gc\))?:?$")
_CLASS_HISTOGRAM_TABLE = re.compile(
    r"^\s*(?:num\s+#instances\s+#bytes\s+class name|-{3,}|\d+:\s+\d+\s+\d+\s+\S.*)$"
)
_CLASS_HISTOGRAM_TOTAL = re.compile(r"^Total\s+\d+\s+\d+$")

_TENURING_THRESHOLD = re.compile(r"^Desired survivor size \d+ bytes, new threshold \d+ \(max \d+\)$")
_TENURING_AGE = re.compile(r"^- age\s+\d+:\s+\d+ bytes,\s+\d+ total$")

_UNLOADING_CLASS = re.compile(r"\[Unloading class [^\]]+\]")
_VM_WARNING = re.compile(
    r"Java HotSpot\(TM\) (?:64-Bit )?(?:Server|Client) VM warning: (?=bailing out)"
)

_APPLICATION_TIME_MESSAGE = (
    r"(?:Total time for which application threads were stopped|Application time): "
)

_LEADING_TIMESTAMP = re.compile(rf"^{TIMESTAMP}: ")
_CONCURRENT_PHASE = re.compile(
    rf"^(?:CMS: abort preclean due to time )?{TIMESTAMP}: \[(?:CMS-concurrent-|GC concurrent-)"
)
_EMBEDDED_CONCURRENT = re.compile(rf"^(?P<head>.+?)(?P<tail>{TIMESTAMP}: \[CMS-concurrent-.*)$")
_APPLICATION_TIME = re.compile(rf"^(?:{TIMESTAMP}: )?{_APPLICATION_TIME_MESSAGE}")
_TIMESTAMP_THEN_APPLICATION_TIME = re.compile(
    rf"^(?P<timestamp>{TIMESTAMP})(?P<message>{_APPLICATION_TIME_MESSAGE}.*)$"
)
_EMBEDDED_APPLICATION_TIME = re.compile(
    rf"^(?P<head>.+?\])(?P<tail>(?:{TIMESTAMP}: )?{_APPLICATION_TIME_MESSAGE}.*)$"
)

# Timestamped pieces of a collection that continue an open buffer
_MIDDLE_FRAGMENT = re.compile(
    rf"^{TIMESTAMP}: \[(?:ParNew|CMS|DefNew|Tenured|Class Histogram)"
)

_G1_DETAILS_HOST = re.compile(
    rf"^{TIMESTAMP}: \[(?:GC pause|GC remark|GC cleanup"
    r"|Full GC(?: \(.*?\))? +\d+(?:[.,]\d+)?[BKMG]->)"
)
_G1_DETAILS_START = re.compile(r"^\s+\[")
_G1_DETAIL_LINE = re.compile(r"^\s+\S")
_G1_EDEN = re.compile(r"^\s+(?P<eden>\[Eden: .*)$")
_TIMES_LINE = re.compile(r"^\s*(?P<times>\[Times: .*)$")


def _nesting(text: str) -> int:
    return text.count("[") - text.count("]")


# ============================================================
# ACTIONS
# ============================================================


def _seconds_between(reference: datetime, stamp: datetime) -> float:
    if reference.tzinfo is None and stamp.tzinfo is not None:
        reference = reference.replace(tzinfo=stamp.tzinfo)
    elif stamp.tzinfo is None and reference.tzinfo is not None:
        stamp = stamp.replace(tzinfo=reference.tzinfo)
    return max(0.0, (stamp - reference).total_seconds())


def _strip_datestamps(
    context: PreprocessContext, text: str
) -> tuple[PreprocessContext, str]:
    """Delete date stamps that precede a relative timestamp; convert the rest.

    A date stamp with no relative timestamp after it is replaced by the seconds
    elapsed since the reference date, which is fixed from the first date stamp
    of the run unless one was supplied.
    """
    if not _DATESTAMP.search(text):
        return context, text

    if not context.datestamped:
        logger.debug("Date-stamp prefixes detected")

    text = _DATESTAMP_BEFORE_TIMESTAMP.sub("", text)
    reference = context.reference_date

    def _relative(match: re.Match[str]) -> str:
        nonlocal reference
        stamp = parse_datestamp(match.group("datestamp"))
        if reference is None:
            reference = stamp
        return f"{_seconds_between(reference, stamp):.3f}: "

    text = _DATESTAMP_ALONE.sub(_relative, text)
    return context.model_copy(update={"reference_date": reference, "datestamped": True}), text


def _is_tenuring_line(line: str | None) -> bool:
    if line is None:
        return False
    line = line.rstrip()
    return bool(_TENURING_THRESHOLD.match(line) or _TENURING_AGE.match(line))


def _remove_decorations(
    context: PreprocessContext, text: str
) -> tuple[PreprocessContext, str]:
    """Cut heap dumps, histogram tables and other non-event output out of the line.

    Returns the remaining text, empty when nothing is left.
    """
    text = text.rstrip()

    if context.in_heap_dump:
        if _HEAP_DUMP_CLOSE.match(text):
            return context.model_copy(update={"in_heap_dump": False}), ""
        if _HEAP_DUMP_DETAIL.match(text):
            return context, ""

    if context.in_class_histogram:
        if _CLASS_HISTOGRAM_TOTAL.match(text):
            return context.model_copy(update={"in_class_histogram": False}), ""
        if _CLASS_HISTOGRAM_TABLE.match(text):
            return context, ""

    if _TENURING_THRESHOLD.match(text):
        return context, ""
    if _TENURING_AGE.match(text) and _is_tenuring_line(context.prior_line):
        return context, ""

    if _HEAP_DUMP_BANNER.search(text):
        text = _HEAP_DUMP_BANNER.sub("", text).rstrip()
        context = context.model_copy(update={"in_heap_dump": True})

    if "[Unloading class" in text:
        text = _UNLOADING_CLASS.sub("", text)
    if "VM warning" in text:
        text = _VM_WARNING.sub("", text)

    if _CLASS_HISTOGRAM_OPEN.search(text):
        context = context.model_copy(update={"in_class_histogram": True})

    return context, text


def _open(
    context: PreprocessContext, line_number: int, text: str, family: BufferFamily
) -> PreprocessContext:
    return context.model_copy(
        update={"buffer": text, "buffer_line_number": line_number, "buffer_family": family}
    )


def _close(
    context: PreprocessContext, text: str, emitted: list[CanonicalLine]
) -> PreprocessContext:
    emitted.append(CanonicalLine(context.buffer_line_number, text))
    return context.model_copy(update={"buffer": None, "buffer_family": None})


def _flush_buffer(
    context: PreprocessContext, emitted: list[CanonicalLine]
) -> PreprocessContext:
    if context.buffer is None:
        return context
    logger.debug(
        "Emitting unterminated fragment from line %d: %s",
        context.buffer_line_number,
        context.buffer,
    )
    return _close(context, context.buffer, emitted)


def _start(
    context: PreprocessContext,
    line_number: int,
    text: str,
    next_line: str | None,
    emitted: list[CanonicalLine],
) -> PreprocessContext:
    """Handle a line while no fragment is buffered."""
    hoisted: CanonicalLine | None = None
    if not _CONCURRENT_PHASE.match(text) and (match := _EMBEDDED_CONCURRENT.match(text)):
        hoisted = CanonicalLine(line_number, match.group("tail"))
        text = match.group("head")

    family: BufferFamily | None = None
    if _LEADING_TIMESTAMP.match(text) and _nesting(text) > 0:
        family = "collection"
    elif (
        next_line is not None
        and _G1_DETAILS_HOST.match(text)
        and _G1_DETAILS_START.match(next_line)
    ):
        family = "g1_details"

    if family is None:
        emitted.append(CanonicalLine(line_number, text))
        if hoisted is not None:
            emitted.append(hoisted)
        return context

    # A buffered host completes after its hoisted fragment
    if hoisted is not None:
        emitted.append(hoisted)
    return _open(context, line_number, text, family)


def _continue_g1_details(
    context: PreprocessContext,
    line_number: int,
    text: str,
    next_line: str | None,
    emitted: list[CanonicalLine],
) -> PreprocessContext:
    """Keep only the heap summary of a G1 details block; the times line closes it."""
    if match := _TIMES_LINE.match(text):
        return _close(context, f"{context.buffer} {match.group('times')}", emitted)
    if match := _G1_EDEN.match(text):
        return context.model_copy(update={"buffer": f"{context.buffer}{match.group('eden')}"})
    if _G1_DETAIL_LINE.match(text):
        return context

    context = _flush_buffer(context, emitted)
    return _start(context, line_number, text, next_line, emitted)


def _continue_collection(
    context: PreprocessContext,
    line_number: int,
    text: str,
    next_line: str | None,
    emitted: list[CanonicalLine],
) -> PreprocessContext:
    """Append a fragment to the open collection, emitting interleaved events at once."""
    if _CONCURRENT_PHASE.match(text) or _APPLICATION_TIME.match(text):
        emitted.append(CanonicalLine(line_number, text))
        return context

    if _LEADING_TIMESTAMP.match(text) and not _MIDDLE_FRAGMENT.match(text):
        logger.debug("Line %d starts a new event before the open one closed", line_number)
        context = _flush_buffer(context, emitted)
        return _start(context, line_number, text, next_line, emitted)

    hoisted: CanonicalLine | None = None
    if match := _EMBEDDED_CONCURRENT.match(text):
        hoisted = CanonicalLine(line_number, match.group("tail"))
        text = match.group("head")

    merged = f"{context.buffer}{text}"
    if _nesting(merged) <= 0:
        context = _close(context, merged, emitted)
        if hoisted is not None:
            emitted.append(hoisted)
        return context

    if hoisted is not None:
        emitted.append(hoisted)
    return context.model_copy(update={"buffer": merged})


def _accumulate(
    context: PreprocessContext,
    line_number: int,
    text: str,
    next_line: str | None,
    emitted: list[CanonicalLine],
) -> PreprocessContext:
    # "1122748.949Total time for which ..." : the stopped-time message cut in
    # after the timestamp of a concurrent phase that continues on the next line
    if match := _TIMESTAMP_THEN_APPLICATION_TIME.match(text):
        context = _flush_buffer(context, emitted)
        emitted.append(CanonicalLine(line_number, match.group("message")))
        return _open(context, line_number, match.group("timestamp"), "collection")

    if match := _EMBEDDED_APPLICATION_TIME.match(text):
        context = _accumulate(context, line_number, match.group("head"), next_line, emitted)
        return _accumulate(context, line_number, match.group("tail"), next_line, emitted)

    if context.buffer is None:
        return _start(context, line_number, text, next_line, emitted)
    if context.buffer_family == "g1_details":
        return _continue_g1_details(context, line_number, text, next_line, emitted)
    return _continue_collection(context, line_number, text, next_line, emitted)


# ============================================================
# PUBLIC API
# ============================================================


def step(
    context: PreprocessContext,
    line_number: int,
    line: str,
    next_line: str | None = None,
) -> tuple[PreprocessContext, list[CanonicalLine]]:
    """Advance the state machine by one physical line.

    Args:
        context: State left by the previous line.
        line_number: 1-based number of ``line`` in the log.
        line: The physical line, with or without its line terminator.
        next_line: The following physical line, or None at end of input.

    Returns:
        The new context and the canonical lines completed by this step, in
        emission order.
    """
    raw = line.rstrip("\r\n")
    context, text = _strip_datestamps(context, raw)
    context, text = _remove_decorations(context, text)

    emitted: list[CanonicalLine] = []
    if text.strip():
        context = _accumulate(context, line_number, text, next_line, emitted)
    return context.model_copy(update={"prior_line": raw}), emitted


def flush(context: PreprocessContext) -> tuple[PreprocessContext, list[CanonicalLine]]:
    """Emit whatever fragment is still buffered at end of input."""
    emitted: list[CanonicalLine] = []
    context = _flush_buffer(context, emitted)
    return context, emitted


def preprocess(
    lines: Iterable[str], reference_date: datetime | None = None
) -> Iterator[CanonicalLine]:
    """Yield canonical lines for a whole log.

    Args:
        lines: Physical log lines in file order.
        reference_date: JVM start time for logs that print only date stamps.
            When omitted, the first date stamp in the log is used.
    """
    context = PreprocessContext(reference_date=reference_date)
    iterator = iter(lines)
    current = next(iterator, None)
    line_number = 1
    while current is not None:
        following = next(iterator, None)
        context, emitted = step(context, line_number, current, following)
        yield from emitted
        current = following
        line_number += 1

    _, emitted = flush(context)
    yield from emitted
