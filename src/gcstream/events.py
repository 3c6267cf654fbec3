"""Ordered registry of per-collector line grammars.

Each grammar recognizes exactly one canonical (preprocessed) line shape and
extracts a LogEvent from it. The registry is evaluated in order and the first
grammar whose anchored pattern matches wins, so more constrained grammars are
listed before the looser ones they overlap with.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from gcstream.grammar import (
    CLASS_HISTOGRAM_BLOCK,
    DURATION,
    ICMS_DC_BLOCK,
    LINE_END,
    SIZE_G1,
    TIMESTAMP,
    occupancy,
    occupancy_after,
    resolve_trigger,
    secs_to_millis,
    size_to_kb,
    trigger_alternation,
)
from gcstream.models import EventParseError, LogEvent, LogEventType, MemoryRegion, Trigger

# Trigger groups in the textual order they can appear on a line
TRIGGER_GROUPS = ("trigger", "trigger_young", "trigger_old", "trigger_old_repeat", "trigger_space")
HISTOGRAM_GROUPS = ("histogram_before", "histogram_after")


# ============================================================
# GRAMMAR DESCRIPTOR
# ============================================================


@dataclass(frozen=True, slots=True)
class EventGrammar:
    """Recognizer and extractor for one event kind."""

    event_type: LogEventType
    # Literal text every matching line contains; checked before the regex runs
    guard: str
    pattern: re.Pattern[str]
    extract: Callable[[re.Match[str]], dict[str, Any]]

    def match(self, line: str) -> bool:
        """Return True if the whole line satisfies this grammar."""
        return self.guard in line and self.pattern.match(line) is not None

    def parse(self, line: str) -> LogEvent:
        """Extract a LogEvent from a line this grammar matches.

        Raises:
            EventParseError: If the line does not satisfy the grammar.
        """
        match = self.pattern.match(line)
        if match is None:
            raise EventParseError(f"{self.event_type.value} does not match: {line}")
        return LogEvent(event_type=self.event_type, raw_text=line, **self.extract(match))


# ============================================================
# EXTRACTION HELPERS
# ============================================================


def _required(match: re.Match[str], group: str) -> str:
    value = match.groupdict().get(group)
    if value is None:
        raise EventParseError(f"Missing '{group}' in: {match.string}")
    return value


def _region(match: re.Match[str], name: str) -> MemoryRegion | None:
    """Build a region from ``name_*`` groups; a missing init means init == end."""
    groups = match.groupdict()
    end = groups.get(f"{name}_end")
    allocated = groups.get(f"{name}_allocated")
    if end is None or allocated is None:
        return None
    init = groups.get(f"{name}_init") or end
    return MemoryRegion(init=size_to_kb(init), end=size_to_kb(end), allocated=size_to_kb(allocated))


def _resolve_trigger(match: re.Match[str]) -> Trigger:
    """Last printed trigger wins; a class histogram block stands in when none is printed."""
    groups = match.groupdict()
    phrases = [groups[name] for name in TRIGGER_GROUPS if groups.get(name) is not None]
    if phrases:
        return resolve_trigger(phrases[-1])
    if any(groups.get(name) for name in HISTOGRAM_GROUPS):
        return Trigger.CLASS_HISTOGRAM
    return Trigger.NONE


def _timing(match: re.Match[str]) -> dict[str, Any]:
    timestamp = match.groupdict().get("timestamp")
    duration = match.groupdict().get("duration")
    return {
        "timestamp_ms": secs_to_millis(timestamp) if timestamp is not None else 0,
        "timestamped": timestamp is not None,
        "duration_ms": secs_to_millis(duration) if duration is not None else 0,
    }


def _extract_collection(match: re.Match[str]) -> dict[str, Any]:
    """Extract a generational collection, deriving the generation that is not printed."""
    _required(match, "timestamp")
    _required(match, "duration")
    young = _region(match, "young")
    old = _region(match, "old")
    combined = _region(match, "combined")
    if combined is not None:
        if young is None and old is not None:
            young = combined - old
        elif old is None and young is not None:
            old = combined - young

    return {
        **_timing(match),
        "trigger": _resolve_trigger(match),
        "young": young,
        "old": old,
        "perm": _region(match, "perm"),
        "combined": combined,
    }


def _extract_g1_pause(match: re.Match[str]) -> dict[str, Any]:
    """G1 prints whole-heap occupancy in one of three places depending on JDK and flags."""
    _required(match, "timestamp")
    _required(match, "duration")
    combined = (
        _region(match, "combined") or _region(match, "details") or _region(match, "short")
    )
    return {
        **_timing(match),
        "trigger": _resolve_trigger(match),
        "combined": combined,
        "perm": _region(match, "perm"),
    }


def _extract_truncated(match: re.Match[str]) -> dict[str, Any]:
    return {
        "timestamp_ms": secs_to_millis(_required(match, "timestamp")),
        "trigger": _resolve_trigger(match),
    }


def _extract_concurrent(match: re.Match[str]) -> dict[str, Any]:
    return {
        "timestamp_ms": secs_to_millis(_required(match, "timestamp")),
        "phase": _required(match, "phase"),
    }


def _extract_application_time(match: re.Match[str]) -> dict[str, Any]:
    _required(match, "duration")
    return _timing(match)


def _extract_header(match: re.Match[str]) -> dict[str, Any]:
    return {
        "timestamp_ms": 0,
        "timestamped": False,
        "vm_options": match.groupdict().get("vm_options"),
    }


# ============================================================
# PATTERNS
# ============================================================

_TS = rf"^(?P<timestamp>{TIMESTAMP}): "
_PAUSE_END = rf"(?P<duration>{DURATION}) secs\]{LINE_END}"

_CONCURRENT_MODE = trigger_alternation(
    Trigger.CONCURRENT_MODE_FAILURE, Trigger.CONCURRENT_MODE_INTERRUPTED
)
_YOUNG_TRIGGERS = trigger_alternation(
    Trigger.ALLOCATION_FAILURE, Trigger.GC_LOCKER, Trigger.SYSTEM_GC
)
_FULL_TRIGGERS = trigger_alternation(
    Trigger.SYSTEM_GC,
    Trigger.ALLOCATION_FAILURE,
    Trigger.HEAP_INSPECTION,
    Trigger.CONCURRENT_MODE_FAILURE,
    Trigger.CONCURRENT_MODE_INTERRUPTED,
    Trigger.METADATA_GC_THRESHOLD,
    Trigger.LAST_DITCH_COLLECTION,
    Trigger.GC_LOCKER,
    Trigger.JVMTI_FORCED,
)
_PARALLEL_TRIGGERS = trigger_alternation(
    Trigger.ALLOCATION_FAILURE,
    Trigger.GC_LOCKER,
    Trigger.METADATA_GC_THRESHOLD,
    Trigger.SYSTEM_GC,
    Trigger.ERGONOMICS,
    Trigger.LAST_DITCH_COLLECTION,
    Trigger.HEAP_INSPECTION,
    Trigger.JVMTI_FORCED,
)
_G1_PAUSE_TRIGGERS = trigger_alternation(
    Trigger.G1_EVACUATION_PAUSE,
    Trigger.G1_HUMONGOUS_ALLOCATION,
    Trigger.GC_LOCKER,
    Trigger.METADATA_GC_THRESHOLD,
    Trigger.SYSTEM_GC,
)
_G1_FULL_TRIGGERS = trigger_alternation(
    Trigger.SYSTEM_GC,
    Trigger.ALLOCATION_FAILURE,
    Trigger.METADATA_GC_THRESHOLD,
    Trigger.LAST_DITCH_COLLECTION,
    Trigger.JVMTI_FORCED,
    Trigger.GC_LOCKER,
    Trigger.HEAP_INSPECTION,
)

_CMS_PERM = rf"\[(?:CMS Perm |Metaspace): {occupancy('perm')}\]"

# Remark steps print after the young-generation occupancy; later JDKs add more steps
_REMARK_STEPS = (
    rf"\[YG occupancy: \d+ K \(\d+ K\)\](?:{TIMESTAMP}: )?\[Rescan \(parallel\) , {DURATION} secs\]"
    rf"(?: ?(?:{TIMESTAMP}: )?\[(?:weak refs processing|class unloading"
    rf"|scrub symbol (?:& string )?tables?|scrub string table), {DURATION} secs\])*"
)

_CMS_BLOCK = (
    rf"(?:{TIMESTAMP}: \[CMS(?:bailing out to foreground collection)?"
    rf"(?: \((?P<trigger_old>{_FULL_TRIGGERS})\))?"
    rf"(?: \((?P<trigger_old_repeat>{_FULL_TRIGGERS})\))?"
    rf"(?:{_REMARK_STEPS})?: {occupancy('old')}, {DURATION} secs\])"
)

CMS_SERIAL_OLD_PATTERN = re.compile(
    rf"{_TS}\[Full GC ?(?:\((?P<trigger>{_FULL_TRIGGERS})\) )?"
    rf"(?P<histogram_before>{CLASS_HISTOGRAM_BLOCK})?{_CMS_BLOCK}?"
    rf"(?P<histogram_after>{CLASS_HISTOGRAM_BLOCK})? {occupancy('combined')}, {_CMS_PERM}"
    rf"{ICMS_DC_BLOCK}?, {_PAUSE_END}"
)


def _par_new_concurrent_mode_failure(
    with_perm: bool, promotion_failed: bool = False
) -> re.Pattern[str]:
    """ParNew that fell through to a CMS foreground collection.

    The ParNew occupancy is printed but the young generation is derived as
    combined minus old. When a concurrent phase interrupted the line before the
    ParNew occupancy was printed, the concurrent mode phrase follows ParNew
    directly and is then mandatory. ``promotion_failed`` selects lines where
    ParNew reports ``(promotion failed)``; the other variant rejects them.
    """
    perm = f", {_CMS_PERM}" if with_perm else ""
    promotion = r" \((?P<trigger_young>promotion failed)\)" if promotion_failed else ""
    return re.compile(
        rf"{_TS}\[GC(?: \((?P<trigger>{_YOUNG_TRIGGERS})\))? ?{TIMESTAMP}: "
        rf"\[ParNew{promotion}"
        rf"(?P<parnew>: {occupancy('parnew')}, {DURATION} secs\]"
        rf"(?P<histogram_before>{CLASS_HISTOGRAM_BLOCK})?"
        rf"{TIMESTAMP}: \[CMS(?:bailing out to foreground collection)?)?"
        rf"(?: \((?P<trigger_old>{_CONCURRENT_MODE})\))?(?(parnew)|(?(trigger_old)|(?!)))"
        rf": {occupancy('old')}, {DURATION} secs\]"
        rf"(?P<histogram_after>{CLASS_HISTOGRAM_BLOCK})? {occupancy('combined')}{perm}"
        rf"{ICMS_DC_BLOCK}?, {_PAUSE_END}"
    )


# Cut off by the next event before any occupancy was printed
PAR_NEW_PROMOTION_FAILED_TRUNCATED_PATTERN = re.compile(
    rf"{_TS}\[GC(?: \((?P<trigger>{_YOUNG_TRIGGERS})\))? ?{TIMESTAMP}: "
    rf"\[ParNew \((?P<trigger_young>promotion failed)\)\s*$"
)


def _young_collection(collector: str) -> re.Pattern[str]:
    return re.compile(
        rf"{_TS}\[GC(?: \((?P<trigger>{_YOUNG_TRIGGERS})\))? ?{TIMESTAMP}: "
        rf"\[{collector}: {occupancy('young')}, {DURATION} secs\] {occupancy('combined')}"
        rf"{ICMS_DC_BLOCK}?, {_PAUSE_END}"
    )


def _parallel_full_collection(old_collector: str) -> re.Pattern[str]:
    return re.compile(
        rf"{_TS}\[Full GC(?: \((?P<trigger>{_PARALLEL_TRIGGERS})\))? ?"
        rf"\[PSYoungGen: {occupancy('young')}\] \[{old_collector}: {occupancy('old')}\] "
        rf"{occupancy('combined')},? \[(?:PSPermGen|Metaspace): {occupancy('perm')}\], "
        rf"{_PAUSE_END}"
    )


SERIAL_OLD_PATTERN = re.compile(
    rf"{_TS}\[Full GC(?: \((?P<trigger>{_FULL_TRIGGERS})\))? ?{TIMESTAMP}: "
    rf"\[Tenured: {occupancy('old')}, {DURATION} secs\] {occupancy('combined')}, "
    rf"\[(?:Perm |Metaspace): {occupancy('perm')}\], {_PAUSE_END}"
)

PARALLEL_SCAVENGE_PATTERN = re.compile(
    rf"{_TS}\[GC(?:--)?(?: \((?P<trigger>{_PARALLEL_TRIGGERS})\))? "
    rf"\[PSYoungGen: {occupancy('young')}\] {occupancy('combined')}, {_PAUSE_END}"
)

CMS_INITIAL_MARK_PATTERN = re.compile(
    rf"{_TS}\[GC(?: \((?P<trigger>CMS Initial Mark)\))? ?"
    rf"\[1 CMS-initial-mark: {occupancy_after('old')}\] {occupancy_after('combined')}, "
    rf"{_PAUSE_END}"
)

CMS_REMARK_PATTERN = re.compile(
    rf"{_TS}\[GC(?: \((?P<trigger>CMS Final Remark)\))? ?{_REMARK_STEPS} ?"
    rf"\[1 CMS-remark: {occupancy_after('old')}\] {occupancy_after('combined')}, "
    rf"{_PAUSE_END}"
)

CMS_CONCURRENT_PATTERN = re.compile(
    rf"^(?:CMS: abort preclean due to time )?(?P<timestamp>{TIMESTAMP}): "
    rf"\[CMS-concurrent-(?P<phase>mark|preclean|abortable-preclean|sweep|reset)"
    rf"(?:-start\]|: {DURATION}/{DURATION} secs\]){LINE_END}"
)

_G1_DETAILS = (
    rf"\[Eden: {SIZE_G1}\({SIZE_G1}\)->{SIZE_G1}\({SIZE_G1}\) Survivors: {SIZE_G1}->{SIZE_G1} "
    rf"Heap: (?P<details_init>{SIZE_G1})\({SIZE_G1}\)->{occupancy_after('details', SIZE_G1)}\]"
)


def _g1_pause(kind: str) -> re.Pattern[str]:
    return re.compile(
        rf"{_TS}\[GC pause(?: \((?P<trigger>{_G1_PAUSE_TRIGGERS})\))? \({kind}\)"
        rf"(?: \(initial-mark\))?(?: \((?P<trigger_space>to-space (?:exhausted|overflow))\))?"
        rf"(?: {occupancy('combined', SIZE_G1)})?, (?P<duration>{DURATION}) secs\]"
        rf"(?:\[ ?{occupancy('short', SIZE_G1)}\]|{_G1_DETAILS})?{LINE_END}"
    )


G1_FULL_GC_PATTERN = re.compile(
    rf"{_TS}\[Full GC(?: \((?P<trigger>{_G1_FULL_TRIGGERS})\))? +"
    rf"{occupancy('combined', SIZE_G1)}, (?P<duration>{DURATION}) secs\](?:{_G1_DETAILS})?"
    rf"(?:, \[(?:Perm|Metaspace): {occupancy('perm')}\])?{LINE_END}"
)

G1_REMARK_PATTERN = re.compile(
    rf"{_TS}\[GC remark(?: ?(?:{TIMESTAMP}: )?\[(?:Finalize Marking|GC ref-proc|Unloading), "
    rf"{DURATION} secs\])*, {_PAUSE_END}"
)

G1_CLEANUP_PATTERN = re.compile(
    rf"{_TS}\[GC cleanup {occupancy('combined', SIZE_G1)}, {_PAUSE_END}"
)

G1_CONCURRENT_PATTERN = re.compile(
    rf"{_TS}\[GC concurrent-(?P<phase>root-region-scan|mark-reset|mark|cleanup)"
    rf"(?:-start\]|-end, {DURATION} secs\]|-abort\]){LINE_END}"
)

APPLICATION_CONCURRENT_TIME_PATTERN = re.compile(
    rf"^(?:(?P<timestamp>{TIMESTAMP}): )?Application time: (?P<duration>{DURATION}) seconds\s*$"
)

APPLICATION_STOPPED_TIME_PATTERN = re.compile(
    rf"^(?:(?P<timestamp>{TIMESTAMP}): )?Total time for which application threads were "
    rf"stopped: (?P<duration>{DURATION}) seconds(?:, Stopping threads took: {DURATION} "
    rf"seconds)?\s*$"
)

HEADER_COMMAND_LINE_FLAGS_PATTERN = re.compile(r"^CommandLine flags: (?P<vm_options>.+?)\s*$")

HEADER_MEMORY_PATTERN = re.compile(
    r"^Memory: \d+k page, physical \d+k\(\d+k free\)(?:, swap \d+k\(\d+k free\))?\s*$"
)

HEADER_VERSION_PATTERN = re.compile(
    r"^(?:Java HotSpot\(TM\)|OpenJDK) .+ VM \(.+\) for .+ JRE \(.+\), built on .+$"
)

# ============================================================
# REGISTRY
# ============================================================

EVENT_GRAMMARS: tuple[EventGrammar, ...] = (
    EventGrammar(
        LogEventType.HEADER_COMMAND_LINE_FLAGS,
        "CommandLine flags",
        HEADER_COMMAND_LINE_FLAGS_PATTERN,
        _extract_header,
    ),
    EventGrammar(LogEventType.HEADER_MEMORY, "Memory:", HEADER_MEMORY_PATTERN, _extract_header),
    EventGrammar(LogEventType.HEADER_VERSION, " VM (", HEADER_VERSION_PATTERN, _extract_header),
    EventGrammar(
        LogEventType.APPLICATION_CONCURRENT_TIME,
        "Application time",
        APPLICATION_CONCURRENT_TIME_PATTERN,
        _extract_application_time,
    ),
    EventGrammar(
        LogEventType.APPLICATION_STOPPED_TIME,
        "Total time for which",
        APPLICATION_STOPPED_TIME_PATTERN,
        _extract_application_time,
    ),
    EventGrammar(
        LogEventType.PAR_NEW_PROMOTION_FAILED_CMS_CONCURRENT_MODE_FAILURE_PERM_DATA,
        "promotion failed",
        _par_new_concurrent_mode_failure(with_perm=True, promotion_failed=True),
        _extract_collection,
    ),
    EventGrammar(
        LogEventType.PAR_NEW_PROMOTION_FAILED_CMS_CONCURRENT_MODE_FAILURE,
        "promotion failed",
        _par_new_concurrent_mode_failure(with_perm=False, promotion_failed=True),
        _extract_collection,
    ),
    EventGrammar(
        LogEventType.PAR_NEW_PROMOTION_FAILED_TRUNCATED,
        "promotion failed",
        PAR_NEW_PROMOTION_FAILED_TRUNCATED_PATTERN,
        _extract_truncated,
    ),
    EventGrammar(
        LogEventType.PAR_NEW_CONCURRENT_MODE_FAILURE_PERM_DATA,
        "ParNew",
        _par_new_concurrent_mode_failure(with_perm=True),
        _extract_collection,
    ),
    EventGrammar(
        LogEventType.PAR_NEW_CONCURRENT_MODE_FAILURE,
        "ParNew",
        _par_new_concurrent_mode_failure(with_perm=False),
        _extract_collection,
    ),
    EventGrammar(
        LogEventType.CMS_SERIAL_OLD, "Full GC", CMS_SERIAL_OLD_PATTERN, _extract_collection
    ),
    EventGrammar(LogEventType.SERIAL_OLD, "Tenured", SERIAL_OLD_PATTERN, _extract_collection),
    EventGrammar(LogEventType.PAR_NEW, "ParNew", _young_collection("ParNew"), _extract_collection),
    EventGrammar(
        LogEventType.SERIAL_NEW, "DefNew", _young_collection("DefNew"), _extract_collection
    ),
    EventGrammar(
        LogEventType.PARALLEL_SCAVENGE,
        "PSYoungGen",
        PARALLEL_SCAVENGE_PATTERN,
        _extract_collection,
    ),
    EventGrammar(
        LogEventType.PARALLEL_SERIAL_OLD,
        "PSOldGen",
        _parallel_full_collection("PSOldGen"),
        _extract_collection,
    ),
    EventGrammar(
        LogEventType.PARALLEL_OLD_COMPACTING,
        "ParOldGen",
        _parallel_full_collection("ParOldGen"),
        _extract_collection,
    ),
    EventGrammar(
        LogEventType.CMS_INITIAL_MARK,
        "CMS-initial-mark",
        CMS_INITIAL_MARK_PATTERN,
        _extract_collection,
    ),
    EventGrammar(LogEventType.CMS_REMARK, "CMS-remark", CMS_REMARK_PATTERN, _extract_collection),
    EventGrammar(
        LogEventType.CMS_CONCURRENT,
        "CMS-concurrent-",
        CMS_CONCURRENT_PATTERN,
        _extract_concurrent,
    ),
    EventGrammar(LogEventType.G1_YOUNG_PAUSE, "(young)", _g1_pause("young"), _extract_g1_pause),
    EventGrammar(LogEventType.G1_MIXED_PAUSE, "(mixed)", _g1_pause("mixed"), _extract_g1_pause),
    EventGrammar(LogEventType.G1_FULL_GC, "Full GC", G1_FULL_GC_PATTERN, _extract_g1_pause),
    EventGrammar(LogEventType.G1_REMARK, "GC remark", G1_REMARK_PATTERN, _extract_g1_pause),
    EventGrammar(LogEventType.G1_CLEANUP, "GC cleanup", G1_CLEANUP_PATTERN, _extract_g1_pause),
    EventGrammar(
        LogEventType.G1_CONCURRENT,
        "GC concurrent-",
        G1_CONCURRENT_PATTERN,
        _extract_concurrent,
    ),
)

_GRAMMARS_BY_TYPE: dict[LogEventType, EventGrammar] = {
    grammar.event_type: grammar for grammar in EVENT_GRAMMARS
}


def grammar_for(event_type: LogEventType) -> EventGrammar:
    """Look up the registered grammar for an event kind."""
    try:
        return _GRAMMARS_BY_TYPE[event_type]
    except KeyError:
        raise ValueError(f"No grammar registered for {event_type.value}") from None
