"""Regex fragments and unit conversions shared by every event grammar.

Fragments are plain (non-capturing) pattern strings so that each event
grammar can wrap them in its own named groups.
"""

from __future__ import annotations

import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from gcstream.models import EventParseError, Trigger

# ============================================================
# FIELD FRAGMENTS
# ============================================================

# Seconds since JVM start, either decimal separator: 5.980, 32552,602
TIMESTAMP = r"\d{1,12}[.,]\d{3}"

# 2010-02-26T09:32:12.486-0600
DATESTAMP = r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[.,]\d{3}(?:[+-]\d{4}|Z)?"

# Seconds with variable precision: 0.0889610, 3,0900
DURATION = r"\d{1,6}[.,]\d{1,9}"

SIZE_K = r"\d{1,12}K"

# G1 sizes carry a unit and sometimes a decimal: 29M, 0.0B, 5820.3M, 30.0G
SIZE_G1 = r"\d{1,12}(?:[.,]\d{1,2})?[BKMG]"

TIMES_BLOCK = (
    r"(?: ?\[Times: user=\d{1,6}[.,]\d{2} sys=\d{1,6}[.,]\d{2}, real=\d{1,6}[.,]\d{2} secs\])"
)

ICMS_DC_BLOCK = r"(?: icms_dc=\d{1,3} )"

LINE_END = rf"{TIMES_BLOCK}?\s*$"


def occupancy(name: str, size: str = SIZE_K) -> str:
    """Pattern for ``init->end(allocated)`` with ``name_*`` groups."""
    return (
        rf"(?P<{name}_init>{size})->(?P<{name}_end>{size})"
        rf"\((?P<{name}_allocated>{size})\)"
    )


def occupancy_after(name: str, size: str = SIZE_K) -> str:
    """Pattern for ``end(allocated)`` when the log omits the starting occupancy."""
    return rf"(?P<{name}_end>{size})\((?P<{name}_allocated>{size})\)"


# ============================================================
# TRIGGERS
# ============================================================

TRIGGER_PHRASES: dict[Trigger, str] = {
    Trigger.SYSTEM_GC: r"System(?:\.gc\(\))?",
    Trigger.ALLOCATION_FAILURE: r"Allocation Failure",
    Trigger.PROMOTION_FAILED: r"promotion failed",
    Trigger.CONCURRENT_MODE_FAILURE: r"concurrent mode failure",
    Trigger.CONCURRENT_MODE_INTERRUPTED: r"concurrent mode interrupted",
    Trigger.HEAP_INSPECTION: r"Heap Inspection Initiated GC",
    Trigger.METADATA_GC_THRESHOLD: r"Metadata GC Threshold",
    Trigger.LAST_DITCH_COLLECTION: r"Last ditch collection",
    Trigger.GC_LOCKER: r"GCLocker Initiated GC",
    Trigger.JVMTI_FORCED: r"JvmtiEnv ForceGarbageCollection",
    Trigger.CLASS_HISTOGRAM: r"Class Histogram",
    Trigger.ERGONOMICS: r"Ergonomics",
    Trigger.G1_EVACUATION_PAUSE: r"G1 Evacuation Pause",
    Trigger.G1_HUMONGOUS_ALLOCATION: r"G1 Humongous Allocation",
    Trigger.TO_SPACE_EXHAUSTED: r"to-space (?:exhausted|overflow)",
    Trigger.CMS_INITIAL_MARK: r"CMS Initial Mark",
    Trigger.CMS_FINAL_REMARK: r"CMS Final Remark",
}

_TRIGGER_MATCHERS: tuple[tuple[Trigger, re.Pattern[str]], ...] = tuple(
    (trigger, re.compile(phrase)) for trigger, phrase in TRIGGER_PHRASES.items()
)


def trigger_alternation(*triggers: Trigger) -> str:
    """Non-capturing alternation of the given trigger phrases (all when none given)."""
    selected = triggers or tuple(TRIGGER_PHRASES)
    return "(?:" + "|".join(TRIGGER_PHRASES[trigger] for trigger in selected) + ")"


def resolve_trigger(phrase: str | None) -> Trigger:
    """Map a printed trigger phrase to its Trigger."""
    if phrase is None:
        return Trigger.NONE
    for trigger, matcher in _TRIGGER_MATCHERS:
        if matcher.fullmatch(phrase):
            return trigger
    raise EventParseError(f"Unrecognized trigger phrase: {phrase}")


# Compact marker left in place of a removed class histogram table
CLASS_HISTOGRAM_BLOCK = (
    rf"(?:{TIMESTAMP}: )?\[Class Histogram(?: \((?:before|after) full gc\))?:?, "
    rf"{DURATION} secs\]"
)

# ============================================================
# CONVERSIONS
# ============================================================

_SIZE_TOKEN = re.compile(r"(?P<value>\d+(?:[.,]\d+)?)(?P<unit>[BKMG])")

_UNIT_TO_KB: dict[str, Decimal] = {
    "B": Decimal(1) / Decimal(1024),
    "K": Decimal(1),
    "M": Decimal(1024),
    "G": Decimal(1024 * 1024),
}


def _to_decimal(text: str) -> Decimal:
    return Decimal(text.strip().replace(",", "."))


def secs_to_millis(seconds_text: str) -> int:
    """Convert a printed seconds value ('0.0889610' or '0,0889610') to whole ms.

    Rounds half up to the nearest millisecond.
    """
    millis = _to_decimal(seconds_text) * 1000
    return int(millis.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def size_to_kb(size_text: str) -> int:
    """Parse a JVM size token like '1024K', '1.5M', '0.0B' into KB (binary units)."""
    match = _SIZE_TOKEN.fullmatch(size_text.strip())
    if not match:
        raise ValueError(f"Unrecognized size token: {size_text}")
    kilobytes = _to_decimal(match.group("value")) * _UNIT_TO_KB[match.group("unit")]
    return int(kilobytes.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def parse_datestamp(datestamp: str) -> datetime:
    """Parse a GC log date stamp, keeping its UTC offset when printed."""
    normalized = datestamp.strip().replace(",", ".")
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+0000"
    if re.search(r"[+-]\d{4}$", normalized):
        return datetime.strptime(normalized, "%Y-%m-%dT%H:%M:%S.%f%z")
    return datetime.strptime(normalized, "%Y-%m-%dT%H:%M:%S.%f")
