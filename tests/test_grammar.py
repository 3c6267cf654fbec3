from __future__ import annotations

from datetime import timedelta

import pytest

from gcstream.grammar import parse_datestamp, resolve_trigger, secs_to_millis, size_to_kb
from gcstream.models import EventParseError, Trigger


def test_secs_to_millis_rounds_to_nearest() -> None:
    assert secs_to_millis("0.0889610") == 89
    assert secs_to_millis("0.0225213") == 23
    assert secs_to_millis("4.4628626") == 4463
    assert secs_to_millis("1.0005") == 1001
    assert secs_to_millis("0.0001450") == 0


def test_secs_to_millis_accepts_comma_separator() -> None:
    assert secs_to_millis("0,0383370") == secs_to_millis("0.0383370") == 38
    assert secs_to_millis("32552,602") == 32552602


def test_size_to_kb_uses_binary_units() -> None:
    assert size_to_kb("5589K") == 5589
    assert size_to_kb("653M") == 653 * 1024
    assert size_to_kb("30G") == 30 * 1024 * 1024
    assert size_to_kb("30.0G") == 30 * 1024 * 1024
    assert size_to_kb("2048B") == 2
    assert size_to_kb("0.0B") == 0
    assert size_to_kb("16.6M") == 16998
    assert size_to_kb("1,5M") == 1536


def test_size_to_kb_rejects_unknown_tokens() -> None:
    with pytest.raises(ValueError):
        size_to_kb("12T")


def test_resolve_trigger_maps_phrases() -> None:
    assert resolve_trigger("System") == Trigger.SYSTEM_GC
    assert resolve_trigger("System.gc()") == Trigger.SYSTEM_GC
    assert resolve_trigger("concurrent mode failure") == Trigger.CONCURRENT_MODE_FAILURE
    assert resolve_trigger("to-space overflow") == Trigger.TO_SPACE_EXHAUSTED
    assert resolve_trigger("GCLocker Initiated GC") == Trigger.GC_LOCKER
    assert resolve_trigger(None) == Trigger.NONE


def test_resolve_trigger_rejects_unknown_phrase() -> None:
    with pytest.raises(EventParseError):
        resolve_trigger("Whatever Caused It")


def test_parse_datestamp_keeps_offset() -> None:
    stamp = parse_datestamp("2010-02-26T09:32:12.486-0600")
    assert stamp.utcoffset() == timedelta(hours=-6)
    assert stamp.microsecond == 486000

    utc = parse_datestamp("2016-10-05T08:00:00,000Z")
    assert utc.utcoffset() == timedelta(0)

    naive = parse_datestamp("2016-10-05T08:00:00.000")
    assert naive.tzinfo is None
