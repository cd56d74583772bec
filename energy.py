"""Energy integration over captured readings"""
from typing import Sequence

from device.base import Reading

SECONDS_PER_HOUR = 3600


def integrate(readings: Sequence[Reading]) -> float:
    """
    Integrate power over time with the trapezoidal rule.

    Readings must already be sorted ascending by timestamp. Gaps between
    readings (e.g. while the plug was offline) are bridged linearly.

    Returns:
        Energy in kWh, rounded to 3 decimals
    """
    watt_hours = 0.0
    for prev, curr in zip(readings, readings[1:]):
        hours = (curr.timestamp - prev.timestamp).total_seconds() / SECONDS_PER_HOUR
        watt_hours += (prev.watt + curr.watt) / 2 * hours

    return round(watt_hours / 1000, 3)


def energy_summary(readings: Sequence[Reading]) -> dict:
    return {
        "energy_kwh": integrate(readings),
        "readings_count": len(readings),
    }
