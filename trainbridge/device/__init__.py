"""
Device Link
===========

Serial communication with the controller boards:
    - framing: COBS frame encoding/decoding over a byte stream
    - protocol: binary message codec
    - connection: pyserial connections and the device manager
"""

from .framing import (
    FrameDecoder,
    FrameStatus,
    FramingState,
    add_framing,
    remove_framing,
)

from .protocol import (
    MessageType,
    InputType,
    ProtocolError,
    InvalidMessageError,
    UnknownMessageTypeError,
    EncodeError,
    encode,
    decode,
)

from .connection import (
    DeviceConfig,
    DeviceConnection,
    DeviceInfo,
    DeviceManager,
    DeviceStatus,
)

__all__ = [
    'FrameDecoder',
    'FrameStatus',
    'FramingState',
    'add_framing',
    'remove_framing',
    'MessageType',
    'InputType',
    'ProtocolError',
    'InvalidMessageError',
    'UnknownMessageTypeError',
    'EncodeError',
    'encode',
    'decode',
    'DeviceConfig',
    'DeviceConnection',
    'DeviceInfo',
    'DeviceManager',
    'DeviceStatus',
]
