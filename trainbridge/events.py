"""
Notifications passed between the bridge components.

Producers call listener callbacks with these objects; the dispatch
workers subscribe by posting them into their own inbox.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .device.connection import DeviceInfo
    from .train.models import Train


@dataclass
class SimulatorStatusChanged:
    connected: bool


@dataclass
class TrainDetected:
    identifier: str
    train: Optional["Train"]
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class TrainChanged:
    train: Optional["Train"]


@dataclass
class MultipleTrainsMatch:
    identifier: str
    trains: List["Train"]


@dataclass
class DetectionError:
    reason: str


@dataclass
class DevicesChanged:
    devices: List["DeviceInfo"]


@dataclass
class InputValueChanged:
    port: str
    pin: int
    value: int


@dataclass
class ButtonStateChanged:
    element_id: int
    value: float
    pressed: bool
