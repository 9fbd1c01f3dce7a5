"""Due calculation."""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from tour_intake.calendar_sync.scheduler import due_sources, is_due

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def _source(last=None, interval=60, status="active"):
    return SimpleNamespace(last_synced_at=last, sync_interval_minutes=interval, status=status)


def test_never_synced_is_due():
    assert is_due(_source(None), NOW)


def test_interval_minus_one_minute_not_due():
    assert not is_due(_source(NOW - timedelta(minutes=59)), NOW)


def test_exactly_interval_is_due():
    assert is_due(_source(NOW - timedelta(minutes=60)), NOW)


def test_ninety_minutes_ago_with_hourly_interval_is_due():
    src = _source(NOW - timedelta(minutes=90))
    assert due_sources([src], NOW) == [src]


def test_paused_sources_excluded():
    assert due_sources([_source(None, status="paused")], NOW) == []


def test_naive_timestamp_treated_as_utc():
    naive = (NOW - timedelta(minutes=30)).replace(tzinfo=None)
    assert not is_due(_source(naive, interval=60), NOW)
    assert is_due(_source(naive, interval=15), NOW)


def test_order_preserved():
    a, b, c = _source(None), _source(NOW), _source(NOW - timedelta(days=1))
    assert due_sources([a, b, c], NOW) == [a, c]
