"""
Shared test fixtures for train bridge unit tests.
"""

import pytest
from unittest.mock import Mock

from trainbridge.device.connection import DeviceInfo, DeviceManager, DeviceStatus
from trainbridge.device.protocol import InputType
from trainbridge.simulator.client import SimulatorClient
from trainbridge.train.models import (
    ButtonBinding, ButtonMode, Calibration, Element, ElementType, HardwareType,
    Input, LeverBinding, LeverConfig, LeverType, Notch, NotchType, Sequence,
    SequenceCommand, Train,
)
from trainbridge.train.store import TrainStore


PORT = "/dev/ttyACM0"
CONFIG_ID = 7


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def throttle_notches():
    """Gate / linear / gate layout covering the whole lever."""
    return [
        Notch(index=0, type=NotchType.GATE, input_min=0.0, input_max=0.2,
              sim_input_min=0.0, sim_input_max=0.1),
        Notch(index=1, type=NotchType.LINEAR, input_min=0.2, input_max=0.8,
              sim_input_min=0.1, sim_input_max=0.9),
        Notch(index=2, type=NotchType.GATE, input_min=0.8, input_max=1.0,
              sim_input_min=0.9, sim_input_max=1.0),
    ]


@pytest.fixture
def throttle_lever(throttle_notches):
    return LeverConfig(id=1000, value_endpoint="CurrentDrivableActor/Throttle(Lever).InputValue",
                       lever_type=LeverType.HYBRID, notches=throttle_notches)


@pytest.fixture
def bldc_lever():
    """Haptic brake lever: two gates with a damped range between them."""
    return LeverConfig(
        id=1001,
        value_endpoint="CurrentDrivableActor/TrainBrake.InputValue",
        lever_type=LeverType.BLDC,
        notches=[
            Notch(index=0, type=NotchType.GATE, input_min=0.0, input_max=0.05,
                  sim_input_min=0.0, sim_input_max=0.0,
                  bldc_engagement=40, bldc_hold=80, bldc_exit=40, bldc_spring_back=0),
            Notch(index=1, type=NotchType.LINEAR, input_min=0.05, input_max=0.9,
                  sim_input_min=0.05, sim_input_max=0.9, bldc_damping=20),
            Notch(index=2, type=NotchType.GATE, input_min=0.9, input_max=1.0,
                  sim_input_min=0.9, sim_input_max=1.0,
                  bldc_engagement=120, bldc_hold=200, bldc_exit=150, bldc_spring_back=2),
        ],
    )


@pytest.fixture
def door_sequences():
    return (
        Sequence(id=1, name="Open doors", commands=[
            SequenceCommand(endpoint="Doors.Lock", value=1.0, delay_ms=0),
            SequenceCommand(endpoint="Doors.Open", value=1.0, delay_ms=0),
        ]),
        Sequence(id=2, name="Close doors", commands=[
            SequenceCommand(endpoint="Doors.Close", value=1.0, delay_ms=0),
        ]),
    )


@pytest.fixture
def sample_train(throttle_lever, bldc_lever):
    return Train(
        id=1,
        name="Class 142",
        identifier="RVM_PBO_Class142",
        elements=[
            Element(id=100, name="Throttle", type=ElementType.LEVER, lever_config=throttle_lever),
            Element(id=101, name="Train Brake", type=ElementType.LEVER, lever_config=bldc_lever),
            Element(id=102, name="Horn", type=ElementType.BUTTON),
            Element(id=103, name="Doors", type=ElementType.BUTTON),
            Element(id=104, name="Wipers", type=ElementType.BUTTON),
            Element(id=105, name="Sander", type=ElementType.BUTTON),
        ],
    )


@pytest.fixture
def device_inputs():
    """Inputs of device configuration CONFIG_ID."""
    return [
        Input(id=10, pin=2, input_type=InputType.ANALOG,
              calibration=Calibration(min_value=0, max_value=100)),
        Input(id=11, pin=0, input_type=InputType.BLDC_LEVER),
        Input(id=20, pin=5, input_type=InputType.BUTTON),
        Input(id=21, pin=6, input_type=InputType.BUTTON),
        Input(id=22, pin=7, input_type=InputType.BUTTON),
        Input(id=23, pin=8, input_type=InputType.BUTTON),
    ]


@pytest.fixture
def button_bindings(door_sequences):
    open_doors, close_doors = door_sequences
    return [
        ButtonBinding(id=1, input_id=20, element_id=102, endpoint="Horn.InputValue",
                      mode=ButtonMode.MOMENTARY),
        ButtonBinding(id=2, input_id=21, element_id=103, mode=ButtonMode.SEQUENCE,
                      hardware_type=HardwareType.LATCHING,
                      on_sequence=open_doors, off_sequence=close_doors),
        ButtonBinding(id=3, input_id=22, element_id=104, endpoint="Wipers.InputValue",
                      on_value=1.0, off_value=0.0),
        ButtonBinding(id=4, input_id=23, element_id=105, mode=ButtonMode.KEYSTROKE,
                      keystroke="CTRL+S"),
    ]


@pytest.fixture
def store(sample_train, device_inputs, button_bindings):
    store = TrainStore()
    store.add_inputs(CONFIG_ID, device_inputs)
    store.add_train(
        sample_train,
        lever_bindings=[
            LeverBinding(id=1, input_id=10, lever_config_id=1000),
            LeverBinding(id=2, input_id=11, lever_config_id=1001),
        ],
        button_bindings=button_bindings,
    )
    return store


@pytest.fixture
def connected_devices():
    return [DeviceInfo(port=PORT, status=DeviceStatus.CONNECTED, config_id=CONFIG_ID,
                       firmware_version="1.2.3")]


@pytest.fixture
def devices(connected_devices):
    """DeviceManager double with one identified device."""
    manager = Mock(spec=DeviceManager)
    manager.list_devices.return_value = connected_devices
    manager.connected_devices.return_value = connected_devices
    manager.send_message.return_value = True
    return manager


@pytest.fixture
def simulator():
    """Simulator client double; every write succeeds."""
    client = Mock(spec=SimulatorClient)
    client.set.return_value = {"Result": "Success"}
    return client
