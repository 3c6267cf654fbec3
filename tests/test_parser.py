from __future__ import annotations

import logging

import pytest

from gcstream.models import LogEventType, UnidentifiedLine
from gcstream.parser import parse_canonical_lines, parse_line, parse_log
from gcstream.preprocess import preprocess

CMS_FLAGS = "-XX:+PrintGC -XX:+PrintGCDetails -XX:+UseConcMarkSweepGC -Xmx2g"


def test_parse_log_orders_events_by_canonical_line(cms_log_lines: list[str]) -> None:
    run = parse_log(cms_log_lines)

    assert [event.event_type for event in run.events] == [
        LogEventType.HEADER_VERSION,
        LogEventType.HEADER_MEMORY,
        LogEventType.HEADER_COMMAND_LINE_FLAGS,
        LogEventType.CMS_CONCURRENT,
        LogEventType.PAR_NEW,
        LogEventType.APPLICATION_STOPPED_TIME,
        LogEventType.CMS_INITIAL_MARK,
        LogEventType.CMS_CONCURRENT,
        LogEventType.CMS_CONCURRENT,
        LogEventType.CMS_SERIAL_OLD,
    ]
    assert [event.timestamp_ms for event in run.events[3:]] == [
        2210314,
        2210281,
        2210281,
        2211000,
        2211018,
        2212500,
        2215000,
    ]


def test_parse_log_collects_unidentified_lines(cms_log_lines: list[str]) -> None:
    run = parse_log(cms_log_lines)

    assert run.unidentified == [UnidentifiedLine(line_number=12, text="this is not a gc line")]
    assert LogEventType.UNKNOWN in run.event_types
    assert LogEventType.CMS_SERIAL_OLD in run.event_types


def test_untimed_events_take_previous_timestamp(cms_log_lines: list[str]) -> None:
    run = parse_log(cms_log_lines)

    headers = [event for event in run.events if event.event_type.is_header]
    assert all(event.timestamp_ms == 0 and not event.timestamped for event in headers)

    stopped = next(
        event
        for event in run.events
        if event.event_type == LogEventType.APPLICATION_STOPPED_TIME
    )
    assert stopped.timestamp_ms == 2210281
    assert not stopped.timestamped
    assert stopped.duration_ms == 37


def test_command_line_flags_header_sets_vm_options(cms_log_lines: list[str]) -> None:
    assert parse_log(cms_log_lines).vm_options == CMS_FLAGS
    assert parse_log(cms_log_lines, vm_options="-Xmx1g").vm_options == CMS_FLAGS


def test_vm_options_passed_through_without_header(parallel_log_lines: list[str]) -> None:
    run = parse_log(parallel_log_lines, vm_options="-XX:+UseParallelGC")

    assert run.vm_options == "-XX:+UseParallelGC"
    assert [event.event_type for event in run.events] == [LogEventType.PARALLEL_SCAVENGE] * 2
    assert run.unidentified == []


def test_parse_line_returns_unidentified_line_with_number() -> None:
    result = parse_line("12.891: [GC12.891: [ParNew", line_number=7)

    assert result == UnidentifiedLine(line_number=7, text="12.891: [GC12.891: [ParNew")


def test_empty_log_produces_empty_run() -> None:
    run = parse_log([])

    assert run.events == []
    assert run.unidentified == []
    assert run.event_types == set()
    assert run.vm_options is None


def test_parse_canonical_lines_matches_parse_log(cms_log_lines: list[str]) -> None:
    canonical = list(preprocess(cms_log_lines))

    assert parse_canonical_lines(canonical) == parse_log(cms_log_lines)


def test_unidentified_lines_are_not_logged(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="gcstream.parser")

    assert isinstance(parse_line("garbage", 7), UnidentifiedLine)
    assert caplog.records == []
