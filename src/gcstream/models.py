"""Typed records produced by the preprocessing and event parsing layers."""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

KilobytesValue: TypeAlias = int
MillisecondsValue: TypeAlias = int


class EventParseError(ValueError):
    """A line was handed to a grammar it does not satisfy."""


class Trigger(str, Enum):
    """Cause of a collection as printed in the log."""

    SYSTEM_GC = "system-gc"
    ALLOCATION_FAILURE = "allocation-failure"
    PROMOTION_FAILED = "promotion-failed"
    CONCURRENT_MODE_FAILURE = "concurrent-mode-failure"
    CONCURRENT_MODE_INTERRUPTED = "concurrent-mode-interrupted"
    HEAP_INSPECTION = "heap-inspection"
    METADATA_GC_THRESHOLD = "metadata-gc-threshold"
    LAST_DITCH_COLLECTION = "last-ditch-collection"
    GC_LOCKER = "gc-locker"
    JVMTI_FORCED = "jvmti-forced"
    CLASS_HISTOGRAM = "class-histogram"
    ERGONOMICS = "ergonomics"
    G1_EVACUATION_PAUSE = "g1-evacuation-pause"
    G1_HUMONGOUS_ALLOCATION = "g1-humongous-allocation"
    TO_SPACE_EXHAUSTED = "to-space-exhausted"
    CMS_INITIAL_MARK = "cms-initial-mark"
    CMS_FINAL_REMARK = "cms-final-remark"
    NONE = "none"


class LogEventType(str, Enum):
    """Stable discriminant for every event kind the registry recognizes."""

    HEADER_COMMAND_LINE_FLAGS = "HEADER_COMMAND_LINE_FLAGS"
    HEADER_MEMORY = "HEADER_MEMORY"
    HEADER_VERSION = "HEADER_VERSION"
    APPLICATION_CONCURRENT_TIME = "APPLICATION_CONCURRENT_TIME"
    APPLICATION_STOPPED_TIME = "APPLICATION_STOPPED_TIME"
    PAR_NEW_PROMOTION_FAILED_CMS_CONCURRENT_MODE_FAILURE_PERM_DATA = (
        "PAR_NEW_PROMOTION_FAILED_CMS_CONCURRENT_MODE_FAILURE_PERM_DATA"
    )
    PAR_NEW_PROMOTION_FAILED_CMS_CONCURRENT_MODE_FAILURE = (
        "PAR_NEW_PROMOTION_FAILED_CMS_CONCURRENT_MODE_FAILURE"
    )
    PAR_NEW_PROMOTION_FAILED_TRUNCATED = "PAR_NEW_PROMOTION_FAILED_TRUNCATED"
    PAR_NEW_CONCURRENT_MODE_FAILURE_PERM_DATA = "PAR_NEW_CONCURRENT_MODE_FAILURE_PERM_DATA"
    PAR_NEW_CONCURRENT_MODE_FAILURE = "PAR_NEW_CONCURRENT_MODE_FAILURE"
    CMS_SERIAL_OLD = "CMS_SERIAL_OLD"
    SERIAL_OLD = "SERIAL_OLD"
    PAR_NEW = "PAR_NEW"
    SERIAL_NEW = "SERIAL_NEW"
    PARALLEL_SCAVENGE = "PARALLEL_SCAVENGE"
    PARALLEL_SERIAL_OLD = "PARALLEL_SERIAL_OLD"
    PARALLEL_OLD_COMPACTING = "PARALLEL_OLD_COMPACTING"
    CMS_INITIAL_MARK = "CMS_INITIAL_MARK"
    CMS_REMARK = "CMS_REMARK"
    CMS_CONCURRENT = "CMS_CONCURRENT"
    G1_YOUNG_PAUSE = "G1_YOUNG_PAUSE"
    G1_MIXED_PAUSE = "G1_MIXED_PAUSE"
    G1_FULL_GC = "G1_FULL_GC"
    G1_REMARK = "G1_REMARK"
    G1_CLEANUP = "G1_CLEANUP"
    G1_CONCURRENT = "G1_CONCURRENT"
    UNKNOWN = "UNKNOWN"

    @property
    def is_header(self) -> bool:
        return self.name.startswith("HEADER_")

    @property
    def is_concurrent(self) -> bool:
        """True for phases that run alongside application threads."""
        return self in (LogEventType.CMS_CONCURRENT, LogEventType.G1_CONCURRENT)

    @property
    def is_promotion_failure(self) -> bool:
        """True for ParNew collections that could not promote to the old generation."""
        return self.name.startswith("PAR_NEW_PROMOTION_FAILED")

    @property
    def is_blocking(self) -> bool:
        """True for stop-the-world collections."""
        return not (
            self.is_header
            or self.is_concurrent
            or self
            in (
                LogEventType.APPLICATION_CONCURRENT_TIME,
                LogEventType.APPLICATION_STOPPED_TIME,
                LogEventType.UNKNOWN,
            )
        )


class MemoryRegion(BaseModel):
    """Occupancy before and after a collection plus the space allocated, in KB.

    Values are taken as printed. ``end <= allocated`` is not enforced because
    malformed logs must still parse.
    """

    model_config = ConfigDict(frozen=True)

    init: KilobytesValue
    end: KilobytesValue
    allocated: KilobytesValue

    def __sub__(self, other: MemoryRegion) -> MemoryRegion:
        return MemoryRegion(
            init=self.init - other.init,
            end=self.end - other.end,
            allocated=self.allocated - other.allocated,
        )

    def __add__(self, other: MemoryRegion) -> MemoryRegion:
        return MemoryRegion(
            init=self.init + other.init,
            end=self.end + other.end,
            allocated=self.allocated + other.allocated,
        )


class LogEvent(BaseModel):
    """One logical GC log event (GC-agnostic, discriminated by event_type)."""

    model_config = ConfigDict(frozen=True)

    event_type: LogEventType
    raw_text: str
    timestamp_ms: MillisecondsValue = Field(ge=0)
    # False when the line carried no relative timestamp of its own
    timestamped: bool = True
    duration_ms: MillisecondsValue = Field(default=0, ge=0)
    trigger: Trigger = Trigger.NONE

    young: MemoryRegion | None = None
    old: MemoryRegion | None = None
    perm: MemoryRegion | None = None
    combined: MemoryRegion | None = None

    # Concurrent phase name (mark, sweep, root-region-scan, ...)
    phase: str | None = None
    # Raw option string of the CommandLine flags header
    vm_options: str | None = None

    @property
    def heap(self) -> MemoryRegion | None:
        """Whole-heap occupancy, summed from the generations when not printed."""
        if self.combined is not None:
            return self.combined
        if self.young is not None and self.old is not None:
            return self.young + self.old
        return None


class UnidentifiedLine(BaseModel):
    """A canonical line no grammar accepted."""

    model_config = ConfigDict(frozen=True)

    line_number: int
    text: str


class CanonicalLine(NamedTuple):
    """Preprocessed line with the number of the first physical line it came from."""

    line_number: int
    text: str


class JvmRun(BaseModel):
    """Everything parsed from one log file."""

    model_config = ConfigDict(frozen=True)

    events: list[LogEvent] = Field(default_factory=list)
    unidentified: list[UnidentifiedLine] = Field(default_factory=list)
    vm_options: str | None = None

    @property
    def event_types(self) -> set[LogEventType]:
        """Distinct event kinds seen, with UNKNOWN standing for unidentified lines."""
        kinds = {event.event_type for event in self.events}
        if self.unidentified:
            kinds.add(LogEventType.UNKNOWN)
        return kinds
