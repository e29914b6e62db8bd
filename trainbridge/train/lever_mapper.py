"""
Lever Mapper
============

Maps a normalized hardware lever position (0.0-1.0) to the simulator
InputValue for that lever, using the lever's notch table.

    Gate notch:   always the middle of its sim band
    Linear notch: position within the hardware band, interpolated
                  across the sim band

Example, linear notch hardware 0.1-0.4 -> sim 0.05-0.45, lever at 0.25:
    position = (0.25 - 0.1) / (0.4 - 0.1) = 0.5
    sim      = 0.05 + 0.5 * (0.45 - 0.05) = 0.25

BLDC levers report a detent index instead of a position; map_detent()
resolves it against the gate notches.
"""

from enum import Enum
from typing import List, Optional

from .models import LeverConfig, Notch, NotchType


class MappingErrorReason(Enum):
    NO_NOTCH = "no_notch"                       # No notch covers the position
    UNMAPPED_NOTCH = "unmapped_notch"           # Notch has no hardware band
    NO_SIM_INPUT_RANGE = "no_sim_input_range"   # Notch has no sim band
    NO_GATE_AT_INDEX = "no_gate_at_index"       # Detent index beyond the gates


class MappingError(Exception):
    def __init__(self, reason: MappingErrorReason, detail: str = ""):
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)
        self.reason = reason


def find_notch(notches: List[Notch], value: float) -> Optional[Notch]:
    """
    Notch whose hardware band contains value.

    Bands are half-open [min, max); a value of exactly 1.0 also matches a
    notch whose band ends at 1.0.
    """
    for notch in notches:
        if notch.has_input_range and notch.input_min <= value < notch.input_max:
            return notch

    for notch in notches:
        if notch.has_input_range and value == notch.input_max and notch.input_max == 1.0:
            return notch

    return None


def is_reversed_layout(notches: List[Notch]) -> bool:
    """
    True when moving the lever up moves the sim value down.

    Compares the notch lowest on the hardware axis with the one highest
    on it; e.g. power at 0.0-0.45 -> sim 0.56-1.0 and emergency at
    0.99-1.0 -> sim 0.0-0.04.
    """
    mapped = [n for n in notches if n.has_input_range and n.has_sim_range]
    if len(mapped) < 2:
        return False

    first = min(mapped, key=lambda n: n.input_min)
    last = max(mapped, key=lambda n: n.input_max)
    return first.sim_input_min > last.sim_input_max


def calculate_sim_input(notch: Notch, value: float, invert_position: bool = False) -> float:
    """Sim InputValue for a hardware position inside notch."""
    if not notch.has_sim_range:
        raise MappingError(MappingErrorReason.NO_SIM_INPUT_RANGE, f"notch {notch.index}")

    if notch.type == NotchType.GATE:
        return round((notch.sim_input_min + notch.sim_input_max) / 2, 2)

    if not notch.has_input_range:
        raise MappingError(MappingErrorReason.UNMAPPED_NOTCH, f"notch {notch.index}")

    width = notch.input_max - notch.input_min
    position = (value - notch.input_min) / width if width > 0 else 0.0
    if invert_position:
        position = 1.0 - position

    sim = notch.sim_input_min + position * (notch.sim_input_max - notch.sim_input_min)
    return round(sim, 2)


def map_input(lever: LeverConfig, value: float) -> float:
    """
    Map a normalized hardware position to a sim InputValue.

    Raises:
        MappingError: if no usable notch covers the position
    """
    if not 0.0 <= value <= 1.0:
        raise MappingError(MappingErrorReason.NO_NOTCH, f"position {value} outside 0.0-1.0")

    effective = round(1.0 - value, 2) if lever.inverted else value

    notch = find_notch(lever.notches, effective)
    if notch is None:
        raise MappingError(MappingErrorReason.NO_NOTCH, f"position {effective}")

    invert_position = lever.inverted and is_reversed_layout(lever.notches)
    return calculate_sim_input(notch, effective, invert_position)


def map_detent(lever: LeverConfig, detent_index: int) -> float:
    """
    Map a BLDC detent index to a sim InputValue.

    Detent N is the Nth gate notch by index (firmware only builds
    detents from gates); the result is the middle of its sim band.
    """
    gates = sorted((n for n in lever.notches if n.type == NotchType.GATE), key=lambda n: n.index)

    if detent_index < 0 or detent_index >= len(gates):
        raise MappingError(MappingErrorReason.NO_GATE_AT_INDEX,
                           f"detent {detent_index}, {len(gates)} gates")

    gate = gates[detent_index]
    if not gate.has_sim_range:
        raise MappingError(MappingErrorReason.NO_SIM_INPUT_RANGE, f"notch {gate.index}")
    return round((gate.sim_input_min + gate.sim_input_max) / 2, 2)
