from __future__ import annotations

import pytest

from gcstream.models import JvmRun, LogEvent, LogEventType, Trigger
from gcstream.parser import parse_log
from gcstream.summary import SummaryThresholds, percentile_sorted, summarize


def test_percentile_sorted_interpolates() -> None:
    assert percentile_sorted([], 50) == 0.0
    assert percentile_sorted([10.0], 99) == 10.0
    assert percentile_sorted([10.0, 20.0, 30.0, 40.0], 50) == pytest.approx(25.0)
    assert percentile_sorted([17.0, 37.0, 4463.0], 50) == 37.0


def test_summarize_cms_run(cms_log_lines: list[str]) -> None:
    summary = summarize(parse_log(cms_log_lines))

    assert summary.event_count == 10
    assert summary.unidentified_count == 1
    assert summary.event_type_counts[LogEventType.CMS_CONCURRENT.value] == 3
    assert summary.blocking_event_count == 3
    assert summary.total_pause_ms == 4517
    assert summary.max_pause_ms == 4463
    assert summary.first_timestamp_ms == 2210281
    assert summary.last_timestamp_ms == 2215000
    assert summary.run_duration_ms == 9182
    assert summary.gc_throughput_percentage == pytest.approx(50.81)
    assert summary.stopped_time_event_count == 1
    assert summary.total_stopped_time_ms == 37
    assert summary.stopped_time_throughput_percentage == pytest.approx(99.6)
    assert summary.max_heap_space_kb == 4971420
    assert summary.max_heap_occupancy_kb == 4712182
    assert summary.max_perm_occupancy_kb == 13140
    assert summary.max_perm_space_kb == 131072
    assert summary.trigger_counts == {}
    assert summary.vm_options == "-XX:+PrintGC -XX:+PrintGCDetails -XX:+UseConcMarkSweepGC -Xmx2g"
    assert summary.warnings == [
        "CRITICAL: GC throughput 50.81% is below 75%",
        "WARNING: 1 line(s) could not be identified",
    ]


def test_summarize_parallel_run(parallel_log_lines: list[str]) -> None:
    summary = summarize(parse_log(parallel_log_lines))

    assert summary.total_pause_ms == 46
    assert summary.max_pause_ms == 23
    assert summary.p50_pause_ms == 23.0
    assert summary.run_duration_ms == 10023
    assert summary.gc_throughput_percentage == pytest.approx(99.54)
    assert summary.gc_stopped_ratio_percentage is None
    assert summary.max_heap_space_kb == 585088
    assert summary.warnings == []


def test_pause_thresholds_are_configurable(parallel_log_lines: list[str]) -> None:
    thresholds = SummaryThresholds(pause_warning_ms=20)

    summary = summarize(parse_log(parallel_log_lines), thresholds)

    assert summary.warnings == ["WARNING: Longest pause was 23 ms"]


def test_trigger_counts_and_collector_warnings() -> None:
    events = [
        LogEvent(
            event_type=LogEventType.CMS_SERIAL_OLD,
            raw_text="first",
            timestamp_ms=0,
            duration_ms=100,
            trigger=Trigger.CONCURRENT_MODE_FAILURE,
        ),
        LogEvent(
            event_type=LogEventType.CMS_SERIAL_OLD,
            raw_text="second",
            timestamp_ms=1000,
            duration_ms=100,
            trigger=Trigger.SYSTEM_GC,
        ),
        LogEvent(
            event_type=LogEventType.CMS_CONCURRENT,
            raw_text="third",
            timestamp_ms=1050,
            phase="mark",
        ),
    ]

    summary = summarize(JvmRun(events=events))

    assert summary.trigger_counts == {
        Trigger.CONCURRENT_MODE_FAILURE.value: 1,
        Trigger.SYSTEM_GC.value: 1,
    }
    assert summary.gc_throughput_percentage == pytest.approx(81.82)
    assert summary.warnings == [
        "WARNING: GC throughput 81.82% is below 90%",
        "WARNING: 1 concurrent mode failure(s): CMS fell back to a stop-the-world collection",
        "WARNING: 1 collection(s) triggered by System.gc()",
    ]


def test_summarize_empty_run() -> None:
    summary = summarize(JvmRun())

    assert summary.event_count == 0
    assert summary.gc_throughput_percentage == 100.0
    assert summary.max_heap_space_kb is None
    assert summary.warnings == []


def test_promotion_failures_are_counted_and_warned() -> None:
    events = [
        LogEvent(
            event_type=LogEventType.PAR_NEW_PROMOTION_FAILED_CMS_CONCURRENT_MODE_FAILURE,
            raw_text="first",
            timestamp_ms=0,
            duration_ms=10,
            trigger=Trigger.CONCURRENT_MODE_FAILURE,
        ),
        LogEvent(
            event_type=LogEventType.PAR_NEW,
            raw_text="second",
            timestamp_ms=1000,
            duration_ms=10,
        ),
    ]

    summary = summarize(JvmRun(events=events))

    assert summary.promotion_failure_count == 1
    assert summary.trigger_counts == {Trigger.CONCURRENT_MODE_FAILURE.value: 1}
    assert summary.warnings[-1] == "WARNING: 1 promotion failure(s)"


def test_truncated_promotion_failure_is_warned() -> None:
    run = parse_log(
        [
            "182314.858: [GC 182314.859: [ParNew (promotion failed)",
            "182316.244: [GC 182316.244: [ParNew: 212981K->3156K(242304K), 0.0364435 secs] "
            "4712182K->4502357K(4971420K), 0.0368807 secs]",
        ]
    )

    summary = summarize(run)

    assert summary.unidentified_count == 0
    assert summary.promotion_failure_count == 1
    assert "WARNING: 1 promotion failure(s)" in summary.warnings
