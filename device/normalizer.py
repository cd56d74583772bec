"""Converts raw Tuya data points into physical readings"""
from datetime import datetime
from typing import Any, Mapping, Optional

from device.base import (
    DP_CURRENT,
    DP_POWER,
    DP_POWER_ON,
    DP_VOLTAGE,
    Reading,
    utcnow,
)


def merge_points(current: Mapping[str, Any], update: Mapping[Any, Any]) -> dict[str, Any]:
    """
    Last-write-wins merge of a (possibly partial) data point update.

    Keys are never removed. Integer keys are stored under their string form
    so that {19: 1200} and {"19": 1200} land in the same slot.
    """
    merged = dict(current)
    for key, value in update.items():
        merged[str(key)] = value
    return merged


def normalize(
    points: Mapping[str, Any],
    connected: bool,
    now: Optional[datetime] = None
) -> Reading:
    """
    Derive a Reading from the cumulative data point map.

    Missing keys count as zero / off. The unit conversion is fixed:
    power is reported in deciwatts, current in milliamps, voltage in decivolts.
    """
    return Reading(
        watt=(points.get(DP_POWER) or 0) / 10,
        current=(points.get(DP_CURRENT) or 0) / 1000,
        voltage=(points.get(DP_VOLTAGE) or 0) / 10,
        power_on=points.get(DP_POWER_ON) is True,
        connected=connected,
        timestamp=now or utcnow()
    )
