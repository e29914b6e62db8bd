"""
Train Configuration Model
=========================

Plain dataclasses describing trains, their controllable elements, the
hardware inputs and outputs on each device and the bindings between them.

Value ranges:
    Hardware bands (input_min/input_max) are normalized lever positions,
    0.0 = calibrated minimum, 1.0 = calibrated maximum.
    Simulator bands (sim_input_min/sim_input_max) are the InputValue
    written to the simulator, also 0.0-1.0.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..device.protocol import InputType


class LeverType(Enum):
    DISCRETE = "discrete"
    CONTINUOUS = "continuous"
    HYBRID = "hybrid"
    BLDC = "bldc"       # Motor-driven lever with haptic detents


class NotchType(Enum):
    GATE = "gate"       # Single position, maps to the middle of its sim band
    LINEAR = "linear"   # Range, interpolated across its sim band


class ElementType(Enum):
    LEVER = "lever"
    BUTTON = "button"


class ButtonMode(Enum):
    SIMPLE = "simple"
    MOMENTARY = "momentary"
    SEQUENCE = "sequence"
    KEYSTROKE = "keystroke"


class HardwareType(Enum):
    MOMENTARY = "momentary"     # Spring-return push button
    LATCHING = "latching"       # Toggle switch, stays where it is put


def _check_band(name: str, low: Optional[float], high: Optional[float]):
    if low is None and high is None:
        return
    if low is None or high is None:
        raise ValueError(f"{name}: min and max must be set together")
    if low > high:
        raise ValueError(f"{name}: min {low} greater than max {high}")
    if not (0.0 <= low <= 1.0 and 0.0 <= high <= 1.0):
        raise ValueError(f"{name}: [{low}, {high}] outside 0.0-1.0")


@dataclass
class Calibration:
    """Raw ADC bounds for an analog input."""
    min_value: int
    max_value: int
    max_hardware_value: int = 1023
    is_inverted: bool = False
    has_rollover: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Calibration":
        return cls(
            min_value=int(data["min_value"]),
            max_value=int(data["max_value"]),
            max_hardware_value=int(data.get("max_hardware_value", 1023)),
            is_inverted=bool(data.get("is_inverted", False)),
            has_rollover=bool(data.get("has_rollover", False)),
        )


@dataclass
class Input:
    """A physical input on a device configuration."""
    id: int
    pin: int
    input_type: InputType
    calibration: Optional[Calibration] = None
    name: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Input":
        calibration = data.get("calibration")
        return cls(
            id=data["id"],
            pin=int(data["pin"]),
            input_type=InputType[data["input_type"].upper()],
            calibration=Calibration.from_dict(calibration) if calibration else None,
            name=data.get("name", ""),
        )


@dataclass
class Notch:
    index: int
    type: NotchType
    input_min: Optional[float] = None
    input_max: Optional[float] = None
    sim_input_min: Optional[float] = None
    sim_input_max: Optional[float] = None
    description: str = ""

    # Haptic parameters (BLDC levers only)
    bldc_engagement: Optional[int] = None   # Force to enter the detent
    bldc_hold: Optional[int] = None         # Force holding the lever in it
    bldc_exit: Optional[int] = None         # Force to leave it
    bldc_spring_back: Optional[int] = None  # Detent index to return to
    bldc_damping: Optional[int] = None      # Resistance across a linear range

    def __post_init__(self):
        _check_band(f"notch {self.index} hardware band", self.input_min, self.input_max)
        _check_band(f"notch {self.index} sim band", self.sim_input_min, self.sim_input_max)
        if self.type == NotchType.LINEAR and (self.input_min is None) != (self.sim_input_min is None):
            raise ValueError(f"linear notch {self.index}: hardware and sim bands must be set together")

    @property
    def has_input_range(self) -> bool:
        return self.input_min is not None and self.input_max is not None

    @property
    def has_sim_range(self) -> bool:
        return self.sim_input_min is not None and self.sim_input_max is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Notch":
        return cls(
            index=int(data["index"]),
            type=NotchType(data["type"]),
            input_min=data.get("input_min"),
            input_max=data.get("input_max"),
            sim_input_min=data.get("sim_input_min"),
            sim_input_max=data.get("sim_input_max"),
            description=data.get("description", ""),
            bldc_engagement=data.get("bldc_engagement"),
            bldc_hold=data.get("bldc_hold"),
            bldc_exit=data.get("bldc_exit"),
            bldc_spring_back=data.get("bldc_spring_back"),
            bldc_damping=data.get("bldc_damping"),
        )


@dataclass
class LeverConfig:
    id: int
    value_endpoint: str
    lever_type: LeverType = LeverType.DISCRETE
    notches: List[Notch] = field(default_factory=list)
    inverted: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeverConfig":
        return cls(
            id=data["id"],
            value_endpoint=data["value_endpoint"],
            lever_type=LeverType(data.get("lever_type", "discrete")),
            notches=[Notch.from_dict(n) for n in data.get("notches", [])],
            inverted=bool(data.get("inverted", False)),
        )


@dataclass
class Element:
    """A controllable part of a train (throttle lever, horn button...)."""
    id: int
    name: str
    type: ElementType
    lever_config: Optional[LeverConfig] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Element":
        lever = data.get("lever_config")
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            type=ElementType(data.get("type", "lever" if lever else "button")),
            lever_config=LeverConfig.from_dict(lever) if lever else None,
        )


@dataclass
class Train:
    id: int
    name: str
    identifier: str     # Matched as a prefix of the detected formation class
    elements: List[Element] = field(default_factory=list)
    description: str = ""

    def lever_configs(self) -> List[LeverConfig]:
        return [e.lever_config for e in self.elements if e.lever_config is not None]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Train":
        return cls(
            id=data["id"],
            name=data["name"],
            identifier=data["identifier"],
            elements=[Element.from_dict(e) for e in data.get("elements", [])],
            description=data.get("description", ""),
        )


@dataclass
class SequenceCommand:
    endpoint: str
    value: float
    delay_ms: int = 0   # Wait after this command before the next one

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SequenceCommand":
        return cls(
            endpoint=data["endpoint"],
            value=round(float(data["value"]), 2),
            delay_ms=int(data.get("delay_ms", 0)),
        )


@dataclass
class Sequence:
    id: int
    name: str
    commands: List[SequenceCommand] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sequence":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            commands=[SequenceCommand.from_dict(c) for c in data.get("commands", [])],
        )


@dataclass
class LeverBinding:
    id: int
    input_id: int
    lever_config_id: int
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeverBinding":
        return cls(
            id=data["id"],
            input_id=data["input_id"],
            lever_config_id=data["lever_config_id"],
            enabled=bool(data.get("enabled", True)),
        )


@dataclass
class ButtonBinding:
    id: int
    input_id: int
    element_id: int
    endpoint: Optional[str] = None
    on_value: float = 1.0
    off_value: float = 0.0
    mode: ButtonMode = ButtonMode.SIMPLE
    hardware_type: HardwareType = HardwareType.MOMENTARY
    repeat_interval_ms: int = 0     # Momentary mode: 0 = resend every loop pass
    keystroke: Optional[str] = None
    on_sequence: Optional[Sequence] = None
    off_sequence: Optional[Sequence] = None
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any], sequences: Optional[Dict[Any, Sequence]] = None) -> "ButtonBinding":
        sequences = sequences or {}
        return cls(
            id=data["id"],
            input_id=data["input_id"],
            element_id=data["element_id"],
            endpoint=data.get("endpoint"),
            on_value=round(float(data.get("on_value", 1.0)), 2),
            off_value=round(float(data.get("off_value", 0.0)), 2),
            mode=ButtonMode(data.get("mode", "simple")),
            hardware_type=HardwareType(data.get("hardware_type", "momentary")),
            repeat_interval_ms=int(data.get("repeat_interval_ms", 0)),
            keystroke=data.get("keystroke"),
            on_sequence=sequences.get(data.get("on_sequence_id")),
            off_sequence=sequences.get(data.get("off_sequence_id")),
            enabled=bool(data.get("enabled", True)),
        )


class OutputOperator(Enum):
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    BETWEEN = "between"     # value_a <= value <= value_b
    EQ_TRUE = "eq_true"
    EQ_FALSE = "eq_false"

    @property
    def is_boolean(self) -> bool:
        return self in (OutputOperator.EQ_TRUE, OutputOperator.EQ_FALSE)


@dataclass
class Output:
    """A digital output (LED) on a device configuration."""
    id: int
    pin: int
    name: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Output":
        return cls(id=data["id"], pin=int(data["pin"]), name=data.get("name", ""))


@dataclass
class OutputBinding:
    """Drives an output high while a simulator value meets a condition."""
    id: int
    name: str
    output_id: int
    endpoint: str
    operator: OutputOperator
    value_a: Optional[float] = None
    value_b: Optional[float] = None
    enabled: bool = True

    def __post_init__(self):
        if not self.operator.is_boolean and self.value_a is None:
            raise ValueError(f"output binding {self.id}: {self.operator.value} needs value_a")
        if self.operator == OutputOperator.BETWEEN and self.value_b is None:
            raise ValueError(f"output binding {self.id}: between needs value_b")
        if self.value_a is not None:
            self.value_a = round(float(self.value_a), 2)
        if self.value_b is not None:
            self.value_b = round(float(self.value_b), 2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OutputBinding":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            output_id=data["output_id"],
            endpoint=data["endpoint"],
            operator=OutputOperator(data["operator"]),
            value_a=data.get("value_a"),
            value_b=data.get("value_b"),
            enabled=bool(data.get("enabled", True)),
        )
