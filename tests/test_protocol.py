"""
Unit tests for the device wire protocol.

Tests byte layouts against known encodings, the Configure input-type
branches, haptic profile messages and decode error handling.
"""

import pytest

from trainbridge.device import protocol
from trainbridge.device.protocol import (
    AnalogInputConfig, BLDCLeverInputConfig, ButtonInputConfig, CalibrationError,
    Configure, ConfigurationError, ConfigurationStored, DeactivateBLDCProfile,
    EncodeError, EncoderError, HapticDetent, HapticRange, Heartbeat, IdentityRequest,
    IdentityResponse, InputType, InputValue, InvalidMessageError, LoadBLDCProfile,
    MatrixInputConfig, MessageType, OutputLevel, RetryCalibration, SetOutput,
    UnknownMessageTypeError,
)


BLDC_CONFIG = BLDCLeverInputConfig(
    motor_pin_a=9, motor_pin_b=10, motor_pin_c=11,
    enable_pin_a=8, enable_pin_b=7, encoder_cs=4,
    pole_pairs=7, voltage=120, current_limit=0, encoder_bits=14,
)


class TestMessageType:
    """Tests for the message type table."""

    def test_discriminators(self):
        """Discriminator values match the firmware."""
        assert MessageType.CONFIGURE == 0x02
        assert MessageType.RETRY_CALIBRATION == 0x08
        assert MessageType.CALIBRATION_ERROR == 0x09
        assert MessageType.ENCODER_ERROR == 0x0A
        assert MessageType.LOAD_BLDC_PROFILE == 0x0B
        assert MessageType.DEACTIVATE_BLDC_PROFILE == 0x0C

    def test_every_type_decodable(self):
        """Each message type has a decoder."""
        assert set(protocol.MESSAGE_TYPES) == set(MessageType)


class TestKnownEncodings:
    """Byte layouts of individual messages."""

    def test_identity_request(self):
        """request_id is little-endian u32."""
        assert protocol.encode(IdentityRequest(request_id=0x12345678)) == b"\x00\x78\x56\x34\x12"

    def test_identity_response(self):
        """Version is three bytes, config_id little-endian."""
        data = b"\x01\x78\x56\x34\x12\x01\x02\x03\xEF\xBE\xAD\xDE"
        message = protocol.decode(data)

        assert message == IdentityResponse(request_id=0x12345678, version="1.2.3", config_id=0xDEADBEEF)
        assert protocol.encode(message) == data

    def test_configure_analog(self):
        """Analog payload is pin + sensitivity after the 7-byte header."""
        data = b"\x02\x78\x56\x34\x12\x05\x02\x00\x0A\x64"
        message = protocol.decode(data)

        assert message == Configure(config_id=0x12345678, total_parts=5, part_number=2,
                                    input=AnalogInputConfig(pin=10, sensitivity=100))
        assert message.input_type == InputType.ANALOG
        assert protocol.encode(message) == data

    def test_configure_button(self):
        """Button payload is pin + debounce."""
        data = b"\x02\x78\x56\x34\x12\x05\x02\x01\x0A\x32"
        assert protocol.decode(data).input == ButtonInputConfig(pin=10, debounce=50)

    def test_configure_matrix(self):
        """Matrix payload carries row and column pin lists."""
        data = b"\x02\x78\x56\x34\x12\x03\x01\x02\x03\x02\x02\x03\x04\x05\x06"
        message = protocol.decode(data)

        assert message.input == MatrixInputConfig(row_pins=[2, 3, 4], col_pins=[5, 6])
        assert protocol.encode(message) == data

    def test_configure_bldc_lever(self):
        """BLDC lever payload is a fixed 10-byte record."""
        message = Configure(config_id=1, total_parts=1, part_number=0, input=BLDC_CONFIG)
        data = protocol.encode(message)

        assert len(data) == 1 + 7 + 10
        assert data[8:] == bytes([9, 10, 11, 8, 7, 4, 7, 120, 0, 14])

    def test_input_value_negative(self):
        """Values are signed 16-bit."""
        assert protocol.encode(InputValue(pin=10, value=-1)) == b"\x05\x0A\xFF\xFF"
        assert protocol.decode(b"\x05\x0A\x34\x12") == InputValue(pin=10, value=0x1234)

    def test_heartbeat(self):
        """Heartbeat has no body."""
        assert protocol.encode(Heartbeat()) == b"\x06"
        assert protocol.decode(b"\x06") == Heartbeat()

    def test_set_output(self):
        """Output level is 0 or 1."""
        assert protocol.encode(SetOutput(pin=5, value=OutputLevel.HIGH)) == b"\x07\x05\x01"
        assert protocol.decode(b"\x07\x05\x00") == SetOutput(pin=5, value=OutputLevel.LOW)

    def test_load_bldc_profile(self):
        """Header, then 5-byte detents, then 3-byte ranges."""
        message = LoadBLDCProfile(
            pin=0,
            detents=[HapticDetent(0, 40, 80, 40, 0), HapticDetent(90, 120, 200, 150, 1)],
            ranges=[HapticRange(0, 1, 20)],
        )
        data = protocol.encode(message)

        assert data == (b"\x0B\x00\x02\x01"
                        b"\x00\x28\x50\x28\x00"
                        b"\x5A\x78\xC8\x96\x01"
                        b"\x00\x01\x14")

    def test_deactivate_bldc_profile(self):
        assert protocol.encode(DeactivateBLDCProfile(pin=0)) == b"\x0C\x00"


class TestRoundTrip:
    """decode(encode(m)) == m for each message variant."""

    @pytest.mark.parametrize("message", [
        IdentityRequest(request_id=42),
        IdentityResponse(request_id=1, version="0.4.12", config_id=99),
        Configure(config_id=3, total_parts=4, part_number=3, input=BLDC_CONFIG),
        Configure(config_id=3, total_parts=4, part_number=1, input=MatrixInputConfig([], [])),
        ConfigurationStored(config_id=3),
        ConfigurationError(config_id=3),
        InputValue(pin=1, value=-32768),
        Heartbeat(),
        SetOutput(pin=13, value=OutputLevel.HIGH),
        RetryCalibration(pin=4),
        CalibrationError(pin=4),
        EncoderError(pin=4),
        LoadBLDCProfile(pin=0),
        LoadBLDCProfile(pin=0, detents=[HapticDetent(100, 255, 255, 255, 3)],
                        ranges=[HapticRange(0, 1, 0), HapticRange(1, 2, 255)]),
        DeactivateBLDCProfile(pin=0),
    ])
    def test_round_trip(self, message):
        """Decoding an encoded message returns an equal message."""
        assert protocol.decode(protocol.encode(message)) == message


class TestDecodeErrors:
    """Tests for rejected payloads."""

    def test_empty_payload(self):
        with pytest.raises(InvalidMessageError):
            protocol.decode(b"")

    def test_unknown_message_type(self):
        with pytest.raises(UnknownMessageTypeError):
            protocol.decode(b"\x7F\x00")

    def test_unknown_input_type(self):
        """Configure with an unrecognised input type."""
        with pytest.raises(UnknownMessageTypeError):
            protocol.decode(b"\x02\x01\x00\x00\x00\x01\x00\x09\x01\x02")

    def test_truncated_header(self):
        with pytest.raises(InvalidMessageError):
            protocol.decode(b"\x02\x78\x56")

    def test_truncated_bldc_lever_payload(self):
        """Fewer than 10 BLDC lever bytes is invalid."""
        data = protocol.encode(Configure(config_id=1, total_parts=1, part_number=0, input=BLDC_CONFIG))
        for cut in range(1, 11):
            with pytest.raises(InvalidMessageError):
                protocol.decode(data[:-cut])

    def test_matrix_missing_pin(self):
        with pytest.raises(InvalidMessageError):
            protocol.decode(b"\x02\x78\x56\x34\x12\x03\x01\x02\x03\x02\x02\x03\x04\x05")

    def test_profile_count_mismatch(self):
        """Detent/range counts must match the body length."""
        with pytest.raises(InvalidMessageError):
            protocol.decode(b"\x0B\x00\x02\x00\x00\x28\x50\x28\x00")

    def test_trailing_bytes(self):
        """Fixed-size messages reject extra bytes."""
        with pytest.raises(InvalidMessageError):
            protocol.decode(b"\x06\x00")
        with pytest.raises(InvalidMessageError):
            protocol.decode(b"\x08\x01\x02")

    def test_invalid_output_level(self):
        with pytest.raises(InvalidMessageError):
            protocol.decode(b"\x07\x05\x02")


class TestEncodeErrors:
    """Tests for field validation on encode."""

    def test_pin_out_of_range(self):
        with pytest.raises(EncodeError):
            protocol.encode(RetryCalibration(pin=256))

    def test_detent_position_above_100(self):
        with pytest.raises(EncodeError):
            protocol.encode(LoadBLDCProfile(pin=0, detents=[HapticDetent(101, 1, 1, 1, 0)]))

    def test_too_many_detents(self):
        detents = [HapticDetent(0, 1, 1, 1, 0)] * 256
        with pytest.raises(EncodeError):
            protocol.encode(LoadBLDCProfile(pin=0, detents=detents))

    def test_invalid_version(self):
        with pytest.raises(EncodeError):
            protocol.encode(IdentityResponse(request_id=1, version="1.2", config_id=1))

    def test_not_a_message(self):
        with pytest.raises(EncodeError):
            protocol.encode(object())
