"""
Analog Input Calibration
========================

Converts raw ADC readings into lever travel using a Calibration.

    normalize(raw)   -> 0 .. total_travel (integer counts from the minimum)
    position(raw)    -> 0.0 .. 1.0, rounded to 2 decimals

Calibrations store the raw reading at each physical end of the lever, so
an inverted axis (raw decreases as the lever advances) has
min_value > max_value. Rollover axes cross the max_hardware_value/0
boundary somewhere in their travel (e.g. a magnetic encoder mounted
across its zero point):

    not inverted:  min -> max_hardware_value -> 0 -> max
    inverted:      min -> 0 -> max_hardware_value -> max

Readings in the dead zone between the two ends of a rollover axis snap
to whichever end is closer.
"""

from typing import Optional
import logging

from .models import Calibration

logger = logging.getLogger(__name__)


def total_travel(cal: Calibration) -> int:
    """Counts between the calibrated minimum and maximum."""
    if cal.has_rollover:
        if cal.is_inverted:
            # e.g. min=550, max=735: 550 + (1023 - 735 + 1) = 839
            return cal.min_value + (cal.max_hardware_value - cal.max_value + 1)
        # e.g. min=900, max=100: (1023 - 900 + 1) + 100 = 224
        return cal.max_hardware_value - cal.min_value + 1 + cal.max_value

    if cal.is_inverted:
        return cal.min_value - cal.max_value
    return cal.max_value - cal.min_value


def _distance_from_min(raw: int, cal: Calibration) -> int:
    if not cal.has_rollover:
        return cal.min_value - raw if cal.is_inverted else raw - cal.min_value

    midpoint = (cal.min_value + cal.max_value) // 2

    if cal.is_inverted:
        if raw <= cal.min_value:
            return cal.min_value - raw
        if raw >= cal.max_value:
            return cal.min_value + (cal.max_hardware_value - raw + 1)
        return 0 if raw < midpoint else total_travel(cal)

    if raw >= cal.min_value:
        return raw - cal.min_value
    if raw <= cal.max_value:
        return cal.max_hardware_value - cal.min_value + 1 + raw
    return total_travel(cal) if raw < midpoint else 0


def normalize(raw: int, cal: Calibration) -> int:
    """Raw reading -> counts from the calibrated minimum, clamped to the travel."""
    return max(0, min(_distance_from_min(raw, cal), total_travel(cal)))


def position(raw: int, cal: Calibration) -> Optional[float]:
    """
    Raw reading -> normalized lever position.

    Returns:
        Position in [0.0, 1.0] rounded to 2 decimals, or None if the
        calibration has no travel
    """
    travel = total_travel(cal)
    if travel <= 0:
        logger.debug(f"Calibration has no travel: {cal}")
        return None
    return round(normalize(raw, cal) / travel, 2)
