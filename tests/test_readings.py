from datetime import datetime, timedelta, timezone

import pytest

from device.base import Reading
from storage.readings import EPOCH, ReadingStore, resolve_window

NOW = datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc)


def at(**delta) -> Reading:
    return Reading(watt=100, connected=True, timestamp=NOW - timedelta(**delta))


class TestResolveWindow:

    @pytest.mark.parametrize("range_name, span", [
        ("hour", timedelta(hours=1)),
        ("6hour", timedelta(hours=6)),
        ("24hour", timedelta(hours=24)),
        ("week", timedelta(days=7)),
    ])
    def test_fixed_ranges(self, range_name, span):
        assert resolve_window(range_name, now=NOW) == (NOW - span, NOW)

    def test_month_clamps_day(self):
        from_date, to_date = resolve_window("month", now=NOW)

        assert from_date == datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc)
        assert to_date == NOW

    def test_month_across_year_boundary(self):
        now = datetime(2026, 1, 15, tzinfo=timezone.utc)

        assert resolve_window("month", now=now)[0] == datetime(2025, 12, 15, tzinfo=timezone.utc)

    def test_year(self):
        now = datetime(2028, 2, 29, tzinfo=timezone.utc)

        assert resolve_window("year", now=now)[0] == datetime(2027, 2, 28, tzinfo=timezone.utc)

    def test_named_range_ignores_end(self):
        end = NOW - timedelta(days=3)

        assert resolve_window("hour", end=end, now=NOW)[1] == NOW

    def test_custom_defaults(self):
        assert resolve_window("custom", now=NOW) == (EPOCH, NOW)

    def test_custom_bounds(self):
        start = NOW - timedelta(days=2)
        end = NOW - timedelta(days=1)

        assert resolve_window("custom", start, end, now=NOW) == (start, end)

    def test_custom_naive_datetimes_are_utc(self):
        start = datetime(2026, 3, 1, 8, 0)

        from_date, _ = resolve_window("custom", start, now=NOW)

        assert from_date == datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("range_name", [None, "", "fortnight"])
    def test_unknown_range_covers_everything(self, range_name):
        assert resolve_window(range_name, now=NOW) == (EPOCH, NOW)


class TestReadingStore:

    def test_initial_latest_is_zeroed(self):
        latest = ReadingStore().latest

        assert latest.watt == 0
        assert latest.power_on is False
        assert latest.connected is False

    def test_capture_when_connected(self):
        store = ReadingStore()
        store.latest = at(minutes=1)

        assert store.capture(connected=True) is True
        assert store.readings == [store.latest]

    def test_capture_when_disconnected_stores_nothing(self):
        store = ReadingStore()

        assert store.capture(connected=False) is False
        assert len(store) == 0

    def test_capture_does_not_deduplicate(self):
        store = ReadingStore()
        store.capture(connected=True)
        store.capture(connected=True)

        assert len(store) == 2

    def test_query_sorts_ascending(self):
        newest, oldest, middle = at(minutes=5), at(minutes=50), at(minutes=20)
        store = ReadingStore([newest, oldest, middle])

        assert store.query("hour", now=NOW) == [oldest, middle, newest]

    def test_query_excludes_outside_window(self):
        inside, outside = at(minutes=30), at(hours=2)
        store = ReadingStore([inside, outside])

        assert store.query("hour", now=NOW) == [inside]

    def test_custom_bounds_are_inclusive(self):
        first, second, third = at(hours=3), at(hours=2), at(hours=1)
        store = ReadingStore([third, first, second])

        result = store.query("custom", start=first.timestamp, end=second.timestamp, now=NOW)

        assert result == [first, second]

    def test_custom_empty_window(self):
        store = ReadingStore([at(hours=5)])

        result = store.query("custom", start=NOW - timedelta(hours=2), end=NOW - timedelta(hours=1), now=NOW)

        assert result == []

    def test_unknown_range_returns_all_up_to_now(self):
        future = Reading(timestamp=NOW + timedelta(minutes=1))
        old = at(days=400)
        store = ReadingStore([future, old])

        assert store.query("decade", now=NOW) == [old]
