"""
(port, pin) -> input lookup shared by the dispatch engines.

Rebuilt wholesale from the device list whenever it changes; a device
contributes inputs only once it is connected and has reported its
configuration id.
"""

from dataclasses import dataclass
from typing import Collection, Dict, List, Optional, Tuple

from ..device.connection import DeviceInfo
from ..device.protocol import InputType
from .models import Calibration
from .store import TrainStore

InputKey = Tuple[str, int]


@dataclass
class InputInfo:
    input_id: int
    input_type: InputType
    calibration: Optional[Calibration] = None


def build_input_lookup(
    devices: List[DeviceInfo],
    store: TrainStore,
    input_types: Optional[Collection[InputType]] = None,
) -> Dict[InputKey, InputInfo]:
    lookup = {}
    for device in devices:
        if not device.connected or device.config_id is None:
            continue
        for item in store.list_inputs(device.config_id):
            if input_types is not None and item.input_type not in input_types:
                continue
            lookup[(device.port, item.pin)] = InputInfo(
                input_id=item.id,
                input_type=item.input_type,
                calibration=item.calibration,
            )
    return lookup
