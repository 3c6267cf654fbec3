"""Run-level statistics computed from a parsed event stream."""

from __future__ import annotations

from collections import Counter

from pydantic import BaseModel, ConfigDict, Field

from gcstream.models import JvmRun, LogEventType, Trigger


class SummaryThresholds(BaseModel):
    """Configurable thresholds for run-level warnings."""

    throughput_critical_percentage: float = 75.0
    throughput_warning_percentage: float = 90.0

    pause_critical_ms: int = 10_000
    pause_warning_ms: int = 5_000

    # Warn when more lines than this could not be identified
    unidentified_warning_count: int = 0


class RunSummary(BaseModel):
    """Aggregate statistics for one JVM run."""

    model_config = ConfigDict(frozen=True)

    event_count: int
    unidentified_count: int
    event_type_counts: dict[str, int] = Field(default_factory=dict)
    trigger_counts: dict[str, int] = Field(default_factory=dict)
    promotion_failure_count: int = 0

    first_timestamp_ms: int = 0
    last_timestamp_ms: int = 0
    run_duration_ms: int = 0

    blocking_event_count: int = 0
    total_pause_ms: int = 0
    max_pause_ms: int = 0
    p50_pause_ms: float = 0.0
    p95_pause_ms: float = 0.0
    p99_pause_ms: float = 0.0

    max_heap_space_kb: int | None = None
    max_heap_occupancy_kb: int | None = None
    max_perm_space_kb: int | None = None
    max_perm_occupancy_kb: int | None = None

    gc_throughput_percentage: float = 100.0

    stopped_time_event_count: int = 0
    total_stopped_time_ms: int = 0
    max_stopped_time_ms: int = 0
    stopped_time_throughput_percentage: float = 100.0
    # Share of total stopped time spent in GC pauses
    gc_stopped_ratio_percentage: float | None = None

    vm_options: str | None = None
    warnings: list[str] = Field(default_factory=list)


def percentile_sorted(sorted_data: list[float], pct: float) -> float:
    """Calculate percentile from a pre-sorted list."""
    if not sorted_data:
        return 0.0
    k = (len(sorted_data) - 1) * (pct / 100)
    f = int(k)
    c = k - f
    if f + 1 < len(sorted_data):
        return sorted_data[f] + c * (sorted_data[f + 1] - sorted_data[f])
    return sorted_data[f]


def _throughput(busy_ms: int, duration_ms: int) -> float:
    if duration_ms <= 0:
        return 100.0
    return round(max(0.0, 100.0 - busy_ms * 100.0 / duration_ms), 2)


def build_warnings(summary: RunSummary, thresholds: SummaryThresholds) -> list[str]:
    """Derive warning strings from a summary, most severe first."""
    warnings: list[str] = []

    if summary.blocking_event_count:
        throughput = summary.gc_throughput_percentage
        if throughput < thresholds.throughput_critical_percentage:
            warnings.append(
                f"CRITICAL: GC throughput {throughput:.2f}% is below "
                f"{thresholds.throughput_critical_percentage:.0f}%"
            )
        elif throughput < thresholds.throughput_warning_percentage:
            warnings.append(
                f"WARNING: GC throughput {throughput:.2f}% is below "
                f"{thresholds.throughput_warning_percentage:.0f}%"
            )

    if summary.max_pause_ms >= thresholds.pause_critical_ms:
        warnings.append(f"CRITICAL: Longest pause was {summary.max_pause_ms} ms")
    elif summary.max_pause_ms >= thresholds.pause_warning_ms:
        warnings.append(f"WARNING: Longest pause was {summary.max_pause_ms} ms")

    failures = summary.trigger_counts.get(Trigger.CONCURRENT_MODE_FAILURE.value, 0)
    if failures:
        warnings.append(
            f"WARNING: {failures} concurrent mode failure(s): CMS fell back to a "
            "stop-the-world collection"
        )
    if summary.promotion_failure_count:
        warnings.append(f"WARNING: {summary.promotion_failure_count} promotion failure(s)")
    explicit = summary.trigger_counts.get(Trigger.SYSTEM_GC.value, 0)
    if explicit:
        warnings.append(f"WARNING: {explicit} collection(s) triggered by System.gc()")

    if summary.unidentified_count > thresholds.unidentified_warning_count:
        warnings.append(f"WARNING: {summary.unidentified_count} line(s) could not be identified")

    return warnings


def summarize(run: JvmRun, thresholds: SummaryThresholds | None = None) -> RunSummary:
    """Aggregate a parsed run into a RunSummary."""
    thresholds = thresholds or SummaryThresholds()
    events = run.events

    timestamps = [event.timestamp_ms for event in events if event.timestamped]
    first_timestamp = min(timestamps, default=0)
    last_timestamp = max(timestamps, default=0)
    run_end = max((event.timestamp_ms + event.duration_ms for event in events), default=0)
    run_duration = max(0, run_end - first_timestamp)

    blocking = [event for event in events if event.event_type.is_blocking]
    pauses = sorted(float(event.duration_ms) for event in blocking)
    total_pause = sum(event.duration_ms for event in blocking)

    heaps = [event.heap for event in blocking if event.heap is not None]
    perms = [event.perm for event in blocking if event.perm is not None]

    stopped = [
        event.duration_ms
        for event in events
        if event.event_type == LogEventType.APPLICATION_STOPPED_TIME
    ]
    total_stopped = sum(stopped)

    summary = RunSummary(
        event_count=len(events),
        unidentified_count=len(run.unidentified),
        event_type_counts=dict(Counter(event.event_type.value for event in events)),
        trigger_counts=dict(
            Counter(event.trigger.value for event in blocking if event.trigger != Trigger.NONE)
        ),
        promotion_failure_count=sum(
            1
            for event in blocking
            if event.event_type.is_promotion_failure or event.trigger == Trigger.PROMOTION_FAILED
        ),
        first_timestamp_ms=first_timestamp,
        last_timestamp_ms=last_timestamp,
        run_duration_ms=run_duration,
        blocking_event_count=len(blocking),
        total_pause_ms=total_pause,
        max_pause_ms=int(pauses[-1]) if pauses else 0,
        p50_pause_ms=percentile_sorted(pauses, 50),
        p95_pause_ms=percentile_sorted(pauses, 95),
        p99_pause_ms=percentile_sorted(pauses, 99),
        max_heap_space_kb=max((heap.allocated for heap in heaps), default=None),
        max_heap_occupancy_kb=max((heap.init for heap in heaps), default=None),
        max_perm_space_kb=max((perm.allocated for perm in perms), default=None),
        max_perm_occupancy_kb=max((perm.init for perm in perms), default=None),
        gc_throughput_percentage=_throughput(total_pause, run_duration),
        stopped_time_event_count=len(stopped),
        total_stopped_time_ms=total_stopped,
        max_stopped_time_ms=max(stopped, default=0),
        stopped_time_throughput_percentage=_throughput(total_stopped, run_duration),
        gc_stopped_ratio_percentage=(
            round(total_pause * 100.0 / total_stopped, 2) if total_stopped else None
        ),
        vm_options=run.vm_options,
    )
    return summary.model_copy(update={"warnings": build_warnings(summary, thresholds)})
