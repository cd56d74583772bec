"""Reading log - append-only history of captured readings plus the latest live reading"""
import calendar
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from device.base import Reading, utcnow

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Named ranges with a fixed length. 'month' and 'year' are calendar offsets.
FIXED_RANGES = {
    "hour": timedelta(hours=1),
    "6hour": timedelta(hours=6),
    "24hour": timedelta(hours=24),
    "week": timedelta(days=7),
}
RANGES = (*FIXED_RANGES, "month", "year", "custom")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _shift_months(value: datetime, months: int) -> datetime:
    """Move value back by a number of calendar months, clamping the day"""
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def resolve_window(
    range_name: Optional[str],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None
) -> tuple[datetime, datetime]:
    """
    Resolve a query range to an inclusive (from, to) window in UTC.

    Named ranges end at now. 'custom' uses start/end, defaulting to the
    epoch and now. Unknown or missing range names cover epoch to now.
    """
    now = _as_utc(now or utcnow())

    if range_name in FIXED_RANGES:
        return now - FIXED_RANGES[range_name], now
    if range_name == "month":
        return _shift_months(now, 1), now
    if range_name == "year":
        return _shift_months(now, 12), now
    if range_name == "custom":
        from_date = _as_utc(start) if start else EPOCH
        to_date = _as_utc(end) if end else now
        return from_date, to_date

    if range_name:
        logger.debug(f"Unknown range '{range_name}', using full history")
    return EPOCH, now


class ReadingStore:
    """
    In-memory reading log.

    Holds the latest derived reading (overwritten on every data point
    update) and the captured history (appended once per capture tick
    while the plug is connected).
    """

    def __init__(self, readings: Optional[Iterable[Reading]] = None):
        self.readings: list[Reading] = list(readings or [])
        self.latest = Reading()

    def __len__(self) -> int:
        return len(self.readings)

    def append(self, reading: Reading) -> None:
        self.readings.append(reading)

    def capture(self, connected: bool) -> bool:
        """
        Store the latest reading if the plug is connected.

        Disconnected ticks leave no marker; gaps stay implicit.

        Returns:
            True if a reading was stored
        """
        if not connected:
            return False

        reading = self.latest
        self.append(reading)
        logger.info(f"Stored: {reading.watt}W, {reading.current}A, {reading.voltage}V")
        return True

    def replace(self, readings: Iterable[Reading]) -> None:
        self.readings = list(readings)

    def query(
        self,
        range_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> list[Reading]:
        """Readings inside the resolved window, ascending by timestamp"""
        from_date, to_date = resolve_window(range_name, start, end, now)
        selected = [r for r in self.readings if from_date <= _as_utc(r.timestamp) <= to_date]
        return sorted(selected, key=lambda r: _as_utc(r.timestamp))
