"""
Device Wire Protocol
====================

Binary messages exchanged with controller boards over the framed serial
link (see framing.py). The first byte of every payload is the message
type; the body layout depends on that type. Multi-byte integers are
little-endian.

    Type  Message                 Body
    0x00  IdentityRequest         request_id:u32
    0x01  IdentityResponse        request_id:u32 major:u8 minor:u8 patch:u8 config_id:u32
    0x02  Configure               config_id:u32 total_parts:u8 part_number:u8 input_type:u8 <payload>
    0x03  ConfigurationStored     config_id:u32
    0x04  ConfigurationError      config_id:u32
    0x05  InputValue              pin:u8 value:i16
    0x06  Heartbeat               -
    0x07  SetOutput               pin:u8 value:u8 (0 LOW, 1 HIGH)
    0x08  RetryCalibration        pin:u8
    0x09  CalibrationError        pin:u8
    0x0A  EncoderError            pin:u8
    0x0B  LoadBLDCProfile         pin:u8 n_detents:u8 n_ranges:u8 detents[5]* ranges[3]*
    0x0C  DeactivateBLDCProfile   pin:u8

Configure payloads by input type:
    0 analog      pin:u8 sensitivity:u8
    1 button      pin:u8 debounce:u8
    2 matrix      n_rows:u8 n_cols:u8 row_pins[n_rows] col_pins[n_cols]
    3 BLDC lever  motor_a motor_b motor_c enable_a enable_b encoder_cs
                  pole_pairs voltage(0.1V) current_limit(0.1A, 0=unlimited)
                  encoder_bits  (10 x u8)

Decoding requires the exact body length for the selected layout.
"""

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar, Dict, List, Type, Union
import logging

logger = logging.getLogger(__name__)


class ProtocolError(Exception):
    """Base class for wire protocol failures."""


class InvalidMessageError(ProtocolError):
    """Payload length or field values do not fit the selected layout."""


class UnknownMessageTypeError(ProtocolError):
    """Message type (or Configure input type) is not recognised."""


class EncodeError(ProtocolError):
    """Message fields cannot be represented on the wire."""


class MessageType(IntEnum):
    IDENTITY_REQUEST = 0x00
    IDENTITY_RESPONSE = 0x01
    CONFIGURE = 0x02
    CONFIGURATION_STORED = 0x03
    CONFIGURATION_ERROR = 0x04
    INPUT_VALUE = 0x05
    HEARTBEAT = 0x06
    SET_OUTPUT = 0x07
    RETRY_CALIBRATION = 0x08
    CALIBRATION_ERROR = 0x09
    ENCODER_ERROR = 0x0A
    LOAD_BLDC_PROFILE = 0x0B
    DEACTIVATE_BLDC_PROFILE = 0x0C


class InputType(IntEnum):
    """Hardware input kinds, as carried in Configure messages."""
    ANALOG = 0
    BUTTON = 1
    MATRIX = 2
    BLDC_LEVER = 3


class OutputLevel(IntEnum):
    LOW = 0
    HIGH = 1


_U32 = struct.Struct('<I')
_PIN = struct.Struct('<B')
_CONFIGURE_HEADER = struct.Struct('<IBBB')
_IDENTITY_RESPONSE = struct.Struct('<IBBBI')
_INPUT_VALUE = struct.Struct('<Bh')
_PIN_VALUE = struct.Struct('<BB')
_BLDC_LEVER = struct.Struct('<10B')
_PROFILE_HEADER = struct.Struct('<BBB')
_DETENT = struct.Struct('<5B')
_RANGE = struct.Struct('<3B')


def _pack(fmt: struct.Struct, *values) -> bytes:
    try:
        return fmt.pack(*values)
    except struct.error as e:
        raise EncodeError(f"Cannot encode {values}: {e}") from e


def _unpack_exact(fmt: struct.Struct, body: bytes, what: str) -> tuple:
    if len(body) != fmt.size:
        raise InvalidMessageError(f"{what}: expected {fmt.size} bytes, got {len(body)}")
    return fmt.unpack(body)


# =============================================================================
# Configure payloads
# =============================================================================

@dataclass
class AnalogInputConfig:
    pin: int
    sensitivity: int

    INPUT_TYPE: ClassVar[InputType] = InputType.ANALOG

    def encode_body(self) -> bytes:
        return _pack(_PIN_VALUE, self.pin, self.sensitivity)

    @classmethod
    def decode_body(cls, body: bytes) -> "AnalogInputConfig":
        pin, sensitivity = _unpack_exact(_PIN_VALUE, body, "analog input")
        return cls(pin=pin, sensitivity=sensitivity)


@dataclass
class ButtonInputConfig:
    pin: int
    debounce: int

    INPUT_TYPE: ClassVar[InputType] = InputType.BUTTON

    def encode_body(self) -> bytes:
        return _pack(_PIN_VALUE, self.pin, self.debounce)

    @classmethod
    def decode_body(cls, body: bytes) -> "ButtonInputConfig":
        pin, debounce = _unpack_exact(_PIN_VALUE, body, "button input")
        return cls(pin=pin, debounce=debounce)


@dataclass
class MatrixInputConfig:
    row_pins: List[int] = field(default_factory=list)
    col_pins: List[int] = field(default_factory=list)

    INPUT_TYPE: ClassVar[InputType] = InputType.MATRIX

    def encode_body(self) -> bytes:
        rows, cols = len(self.row_pins), len(self.col_pins)
        return _pack(struct.Struct(f'<BB{rows}B{cols}B'), rows, cols, *self.row_pins, *self.col_pins)

    @classmethod
    def decode_body(cls, body: bytes) -> "MatrixInputConfig":
        if len(body) < 2:
            raise InvalidMessageError(f"matrix input: expected pin counts, got {len(body)} bytes")
        rows, cols = body[0], body[1]
        pins = body[2:]
        if len(pins) != rows + cols:
            raise InvalidMessageError(f"matrix input: expected {rows + cols} pins, got {len(pins)}")
        return cls(row_pins=list(pins[:rows]), col_pins=list(pins[rows:]))


@dataclass
class BLDCLeverInputConfig:
    motor_pin_a: int
    motor_pin_b: int
    motor_pin_c: int
    enable_pin_a: int
    enable_pin_b: int
    encoder_cs: int
    pole_pairs: int
    voltage: int            # 0.1V units
    current_limit: int = 0  # 0.1A units, 0 = unlimited
    encoder_bits: int = 14

    INPUT_TYPE: ClassVar[InputType] = InputType.BLDC_LEVER

    def _fields(self) -> tuple:
        return (self.motor_pin_a, self.motor_pin_b, self.motor_pin_c,
                self.enable_pin_a, self.enable_pin_b, self.encoder_cs,
                self.pole_pairs, self.voltage, self.current_limit, self.encoder_bits)

    def encode_body(self) -> bytes:
        return _pack(_BLDC_LEVER, *self._fields())

    @classmethod
    def decode_body(cls, body: bytes) -> "BLDCLeverInputConfig":
        return cls(*_unpack_exact(_BLDC_LEVER, body, "BLDC lever input"))


InputConfig = Union[AnalogInputConfig, ButtonInputConfig, MatrixInputConfig, BLDCLeverInputConfig]

CONFIGURE_PAYLOADS: Dict[int, Type] = {
    cls.INPUT_TYPE: cls
    for cls in (AnalogInputConfig, ButtonInputConfig, MatrixInputConfig, BLDCLeverInputConfig)
}


# =============================================================================
# Messages
# =============================================================================

@dataclass
class IdentityRequest:
    request_id: int

    TYPE: ClassVar[MessageType] = MessageType.IDENTITY_REQUEST

    def encode_body(self) -> bytes:
        return _pack(_U32, self.request_id)

    @classmethod
    def decode_body(cls, body: bytes) -> "IdentityRequest":
        (request_id,) = _unpack_exact(_U32, body, "identity request")
        return cls(request_id=request_id)


@dataclass
class IdentityResponse:
    request_id: int
    version: str        # "major.minor.patch"
    config_id: int

    TYPE: ClassVar[MessageType] = MessageType.IDENTITY_RESPONSE

    def encode_body(self) -> bytes:
        try:
            major, minor, patch = (int(p) for p in self.version.split('.'))
        except ValueError as e:
            raise EncodeError(f"Invalid version string {self.version!r}") from e
        return _pack(_IDENTITY_RESPONSE, self.request_id, major, minor, patch, self.config_id)

    @classmethod
    def decode_body(cls, body: bytes) -> "IdentityResponse":
        request_id, major, minor, patch, config_id = _unpack_exact(
            _IDENTITY_RESPONSE, body, "identity response")
        return cls(request_id=request_id, version=f"{major}.{minor}.{patch}", config_id=config_id)


@dataclass
class Configure:
    """One part of a multi-part device configuration upload."""
    config_id: int
    total_parts: int
    part_number: int
    input: InputConfig

    TYPE: ClassVar[MessageType] = MessageType.CONFIGURE

    @property
    def input_type(self) -> InputType:
        return self.input.INPUT_TYPE

    def encode_body(self) -> bytes:
        header = _pack(_CONFIGURE_HEADER, self.config_id, self.total_parts,
                       self.part_number, self.input.INPUT_TYPE)
        return header + self.input.encode_body()

    @classmethod
    def decode_body(cls, body: bytes) -> "Configure":
        if len(body) < _CONFIGURE_HEADER.size:
            raise InvalidMessageError(
                f"configure: expected {_CONFIGURE_HEADER.size} header bytes, got {len(body)}")

        config_id, total_parts, part_number, input_type = _CONFIGURE_HEADER.unpack_from(body)
        payload_cls = CONFIGURE_PAYLOADS.get(input_type)
        if payload_cls is None:
            raise UnknownMessageTypeError(f"Unknown input type {input_type}")

        return cls(
            config_id=config_id,
            total_parts=total_parts,
            part_number=part_number,
            input=payload_cls.decode_body(body[_CONFIGURE_HEADER.size:]),
        )


@dataclass
class _ConfigIdMessage:
    config_id: int

    def encode_body(self) -> bytes:
        return _pack(_U32, self.config_id)

    @classmethod
    def decode_body(cls, body: bytes):
        (config_id,) = _unpack_exact(_U32, body, cls.__name__)
        return cls(config_id=config_id)


@dataclass
class ConfigurationStored(_ConfigIdMessage):
    TYPE: ClassVar[MessageType] = MessageType.CONFIGURATION_STORED


@dataclass
class ConfigurationError(_ConfigIdMessage):
    TYPE: ClassVar[MessageType] = MessageType.CONFIGURATION_ERROR


@dataclass
class InputValue:
    pin: int
    value: int          # signed 16-bit

    TYPE: ClassVar[MessageType] = MessageType.INPUT_VALUE

    def encode_body(self) -> bytes:
        return _pack(_INPUT_VALUE, self.pin, self.value)

    @classmethod
    def decode_body(cls, body: bytes) -> "InputValue":
        pin, value = _unpack_exact(_INPUT_VALUE, body, "input value")
        return cls(pin=pin, value=value)


@dataclass
class Heartbeat:
    TYPE: ClassVar[MessageType] = MessageType.HEARTBEAT

    def encode_body(self) -> bytes:
        return b""

    @classmethod
    def decode_body(cls, body: bytes) -> "Heartbeat":
        if body:
            raise InvalidMessageError(f"heartbeat: expected empty body, got {len(body)} bytes")
        return cls()


@dataclass
class SetOutput:
    pin: int
    value: OutputLevel

    TYPE: ClassVar[MessageType] = MessageType.SET_OUTPUT

    def encode_body(self) -> bytes:
        if self.value not in (OutputLevel.LOW, OutputLevel.HIGH):
            raise EncodeError(f"Output value must be LOW or HIGH, got {self.value!r}")
        return _pack(_PIN_VALUE, self.pin, int(self.value))

    @classmethod
    def decode_body(cls, body: bytes) -> "SetOutput":
        pin, value = _unpack_exact(_PIN_VALUE, body, "set output")
        if value not in (OutputLevel.LOW, OutputLevel.HIGH):
            raise InvalidMessageError(f"set output: invalid level {value}")
        return cls(pin=pin, value=OutputLevel(value))


@dataclass
class _PinMessage:
    pin: int

    def encode_body(self) -> bytes:
        return _pack(_PIN, self.pin)

    @classmethod
    def decode_body(cls, body: bytes):
        (pin,) = _unpack_exact(_PIN, body, cls.__name__)
        return cls(pin=pin)


@dataclass
class RetryCalibration(_PinMessage):
    TYPE: ClassVar[MessageType] = MessageType.RETRY_CALIBRATION


@dataclass
class CalibrationError(_PinMessage):
    TYPE: ClassVar[MessageType] = MessageType.CALIBRATION_ERROR


@dataclass
class EncoderError(_PinMessage):
    TYPE: ClassVar[MessageType] = MessageType.ENCODER_ERROR


@dataclass
class DeactivateBLDCProfile(_PinMessage):
    TYPE: ClassVar[MessageType] = MessageType.DEACTIVATE_BLDC_PROFILE


@dataclass
class HapticDetent:
    position: int       # 0-100 along lever travel
    engagement: int
    hold: int
    exit: int
    spring_back: int


@dataclass
class HapticRange:
    start_detent: int
    end_detent: int
    damping: int


@dataclass
class LoadBLDCProfile:
    pin: int
    detents: List[HapticDetent] = field(default_factory=list)
    ranges: List[HapticRange] = field(default_factory=list)

    TYPE: ClassVar[MessageType] = MessageType.LOAD_BLDC_PROFILE

    def encode_body(self) -> bytes:
        if len(self.detents) > 255 or len(self.ranges) > 255:
            raise EncodeError(
                f"Too many detents/ranges: {len(self.detents)}/{len(self.ranges)} (max 255)")

        parts = [_pack(_PROFILE_HEADER, self.pin, len(self.detents), len(self.ranges))]
        for d in self.detents:
            if not 0 <= d.position <= 100:
                raise EncodeError(f"Detent position {d.position} outside 0-100")
            parts.append(_pack(_DETENT, d.position, d.engagement, d.hold, d.exit, d.spring_back))
        for r in self.ranges:
            parts.append(_pack(_RANGE, r.start_detent, r.end_detent, r.damping))
        return b"".join(parts)

    @classmethod
    def decode_body(cls, body: bytes) -> "LoadBLDCProfile":
        if len(body) < _PROFILE_HEADER.size:
            raise InvalidMessageError(f"load BLDC profile: header needs 3 bytes, got {len(body)}")

        pin, n_detents, n_ranges = _PROFILE_HEADER.unpack_from(body)
        expected = _PROFILE_HEADER.size + n_detents * _DETENT.size + n_ranges * _RANGE.size
        if len(body) != expected:
            raise InvalidMessageError(
                f"load BLDC profile: expected {expected} bytes for {n_detents} detents "
                f"and {n_ranges} ranges, got {len(body)}")

        offset = _PROFILE_HEADER.size
        detents = []
        for _ in range(n_detents):
            detents.append(HapticDetent(*_DETENT.unpack_from(body, offset)))
            offset += _DETENT.size
        ranges = []
        for _ in range(n_ranges):
            ranges.append(HapticRange(*_RANGE.unpack_from(body, offset)))
            offset += _RANGE.size

        return cls(pin=pin, detents=detents, ranges=ranges)


Message = Union[
    IdentityRequest, IdentityResponse, Configure, ConfigurationStored, ConfigurationError,
    InputValue, Heartbeat, SetOutput, RetryCalibration, CalibrationError, EncoderError,
    LoadBLDCProfile, DeactivateBLDCProfile,
]

MESSAGE_TYPES: Dict[int, Type] = {
    cls.TYPE: cls
    for cls in (
        IdentityRequest, IdentityResponse, Configure, ConfigurationStored, ConfigurationError,
        InputValue, Heartbeat, SetOutput, RetryCalibration, CalibrationError, EncoderError,
        LoadBLDCProfile, DeactivateBLDCProfile,
    )
}


def encode(message: Message) -> bytes:
    """
    Encode a message into a frame payload (type byte + body).

    Raises:
        EncodeError: if a field is out of range for its wire width
    """
    if getattr(message, "TYPE", None) not in MESSAGE_TYPES:
        raise EncodeError(f"Not a protocol message: {message!r}")
    return bytes([message.TYPE]) + message.encode_body()


def decode(payload: bytes) -> Message:
    """
    Decode a frame payload into a message.

    Raises:
        InvalidMessageError: payload is empty or has the wrong length
        UnknownMessageTypeError: type byte or input type is not recognised
    """
    if not payload:
        raise InvalidMessageError("Empty payload")

    message_cls = MESSAGE_TYPES.get(payload[0])
    if message_cls is None:
        raise UnknownMessageTypeError(f"Unknown message type 0x{payload[0]:02X}")

    return message_cls.decode_body(bytes(payload[1:]))
