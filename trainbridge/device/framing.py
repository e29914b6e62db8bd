"""
Serial Framing
==============

Consistent Overhead Byte Stuffing (COBS) framing for the device link.

Every payload is stuffed so that it contains no 0x00 bytes and is then
terminated with a single 0x00 delimiter. The serial port hands us
arbitrary chunks, so decoding is stream oriented: a partial frame is
carried over in a FramingState until its delimiter arrives.

Frame layout:
    [code][data...][code][data...]...[0x00]

    code = 1 + number of data bytes that follow (max 0xFF).
    A block with code < 0xFF is followed by an implied zero byte.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple
import logging

logger = logging.getLogger(__name__)

DELIMITER = 0x00
MAX_RUN = 254   # Non-zero bytes per block; 0xFF marks a full block


class FrameStatus(Enum):
    """Result of feeding bytes into the decoder."""
    OK = "ok"                   # At least one delimiter was seen
    INCOMPLETE = "in_frame"     # No delimiter yet, bytes buffered


@dataclass
class FramingState:
    """Partial frame carried between reads on one connection."""
    buffer: bytes = b""


def cobs_encode(data: bytes) -> bytes:
    """Stuff data so that the result contains no zero bytes."""
    out = bytearray()
    i = 0
    n = len(data)

    while i < n:
        block = bytearray()
        while i < n and data[i] != DELIMITER and len(block) < MAX_RUN:
            block.append(data[i])
            i += 1

        if len(block) == MAX_RUN:
            # Full block, no implied zero
            out.append(0xFF)
            out += block
            continue

        if i < n:
            # Consume the zero this block stands in for
            i += 1
        out.append(len(block) + 1)
        out += block

    return bytes(out)


def cobs_decode(data: bytes) -> bytes:
    """
    Reverse cobs_encode.

    Raises:
        ValueError: if a block is truncated or a zero byte is found
    """
    out = bytearray()
    i = 0

    while i < len(data):
        code = data[i]
        if code == DELIMITER:
            raise ValueError(f"zero byte inside frame at offset {i}")

        length = code - 1
        block = data[i + 1:i + 1 + length]
        if len(block) < length:
            raise ValueError(f"block at offset {i} needs {length} bytes, got {len(block)}")

        out += block
        i += 1 + length
        if code < 0xFF:
            out.append(DELIMITER)

    return bytes(out)


def add_framing(payload: bytes) -> bytes:
    """Wrap a message payload into a delimited frame."""
    return cobs_encode(bytes(payload) + b"\x00") + b"\x00"


def remove_framing(chunk: bytes, state: FramingState) -> Tuple[FrameStatus, List[bytes], FramingState]:
    """
    Feed a chunk of received bytes into the decoder.

    Args:
        chunk: Bytes as delivered by the transport
        state: Framing state from the previous call

    Returns:
        (status, payloads, new_state). Malformed frames are dropped
        silently; empty frames between delimiters are skipped.
    """
    combined = state.buffer + bytes(chunk)
    if DELIMITER not in combined:
        return FrameStatus.INCOMPLETE, [], FramingState(buffer=combined)

    *frames, leftover = combined.split(b"\x00")
    payloads = []

    for frame in frames:
        if not frame:
            continue
        try:
            decoded = cobs_decode(frame)
        except ValueError as e:
            logger.debug(f"Dropping malformed frame ({len(frame)} bytes): {e}")
            continue

        # Encoder always stuffs a trailing zero; anything else is corrupt
        if not decoded or decoded[-1] != DELIMITER:
            logger.debug(f"Dropping frame without terminating block ({len(frame)} bytes)")
            continue
        payloads.append(decoded[:-1])

    return FrameStatus.OK, payloads, FramingState(buffer=leftover)


class FrameDecoder:
    """Stateful wrapper around remove_framing for one connection."""

    def __init__(self):
        self._state = FramingState()

    def feed(self, chunk: bytes) -> Tuple[FrameStatus, List[bytes]]:
        status, payloads, self._state = remove_framing(chunk, self._state)
        return status, payloads

    def reset(self):
        """Drop any partial frame (called on reconnect)."""
        self._state = FramingState()

    @property
    def pending(self) -> int:
        """Number of buffered bytes awaiting a delimiter."""
        return len(self._state.buffer)
