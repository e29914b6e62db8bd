"""
BLDC haptic profile builder.

Turns a BLDC lever's notch table into a LoadBLDCProfile message:
gate notches become detents (position on a 0-100 scale plus their
force parameters), linear notches become damped ranges.
"""

import math
from enum import Enum
from typing import List

from ..device.protocol import HapticDetent, HapticRange, LoadBLDCProfile
from .models import LeverConfig, LeverType, Notch, NotchType

GATE_FIELDS = ("bldc_engagement", "bldc_hold", "bldc_exit", "bldc_spring_back")
LINEAR_FIELDS = ("bldc_damping",)


class ProfileBuildErrorReason(Enum):
    NOT_BLDC_LEVER = "not_bldc_lever"
    MISSING_HAPTIC_PARAMETERS = "missing_bldc_parameters"
    MISSING_HARDWARE_BAND = "missing_hardware_band"


class ProfileBuildError(Exception):
    def __init__(self, reason: ProfileBuildErrorReason, detail: str = ""):
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)
        self.reason = reason


def _percent(value: float) -> int:
    # Round half up; round() would send 12.5 to 12
    return int(math.floor(value * 100 + 0.5))


def _check_notch(notch: Notch):
    required = GATE_FIELDS if notch.type == NotchType.GATE else LINEAR_FIELDS
    missing = [name for name in required if getattr(notch, name) is None]
    if missing:
        raise ProfileBuildError(ProfileBuildErrorReason.MISSING_HAPTIC_PARAMETERS,
                                f"notch {notch.index} lacks {', '.join(missing)}")
    if notch.type == NotchType.GATE and notch.input_min is None:
        raise ProfileBuildError(ProfileBuildErrorReason.MISSING_HARDWARE_BAND, f"notch {notch.index}")


def build_detents(notches: List[Notch]) -> List[HapticDetent]:
    gates = sorted((n for n in notches if n.type == NotchType.GATE), key=lambda n: n.index)
    return [
        HapticDetent(
            position=_percent(n.input_min),
            engagement=n.bldc_engagement,
            hold=n.bldc_hold,
            exit=n.bldc_exit,
            spring_back=n.bldc_spring_back,
        )
        for n in gates
    ]


def build_ranges(notches: List[Notch]) -> List[HapticRange]:
    linears = sorted((n for n in notches if n.type == NotchType.LINEAR), key=lambda n: n.index)
    return [
        HapticRange(start_detent=max(0, n.index - 1), end_detent=n.index, damping=n.bldc_damping)
        for n in linears
    ]


def build_profile(lever: LeverConfig, pin: int = 0) -> LoadBLDCProfile:
    """
    Build the haptic profile for a BLDC lever.

    Raises:
        ProfileBuildError: lever is not BLDC or a notch lacks haptic data
    """
    if lever.lever_type != LeverType.BLDC:
        raise ProfileBuildError(ProfileBuildErrorReason.NOT_BLDC_LEVER,
                                f"lever {lever.id} is {lever.lever_type.value}")

    for notch in lever.notches:
        _check_notch(notch)

    return LoadBLDCProfile(pin=pin, detents=build_detents(lever.notches), ranges=build_ranges(lever.notches))
