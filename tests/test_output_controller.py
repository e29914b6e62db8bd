"""
Unit tests for the output controller.

Tests subscription setup, condition evaluation, output switching and
cleanup on train and simulator changes.
"""

import pytest
from unittest.mock import call

from trainbridge.device.protocol import OutputLevel, SetOutput
from trainbridge.events import DevicesChanged, SimulatorStatusChanged, TrainChanged
from trainbridge.simulator.client import SimulatorError
from trainbridge.train.models import Output, OutputBinding, OutputOperator, Train
from trainbridge.train.output_controller import (
    OutputController, evaluate_condition, normalize_value,
)
from trainbridge.train.store import TrainStore


PORT = "/dev/ttyACM0"
CONFIG_ID = 7
SPEED = "CurrentDrivableActor.Function.HUD_GetSpeed"
DOORS = "CurrentDrivableActor/DoorLockSwitch.Function.IsReleased"

OVERSPEED_PIN = 13
STOPPED_PIN = 12
DOORS_PIN = 11

INVALID = object()


@pytest.fixture
def output_bindings():
    return [
        OutputBinding(id=1, name="Overspeed", output_id=30, endpoint=SPEED,
                      operator=OutputOperator.GT, value_a=33.5),
        OutputBinding(id=2, name="Stopped", output_id=31, endpoint=SPEED,
                      operator=OutputOperator.LTE, value_a=0.0),
        OutputBinding(id=3, name="Doors released", output_id=32, endpoint=DOORS,
                      operator=OutputOperator.EQ_TRUE),
    ]


@pytest.fixture
def store(sample_train, output_bindings):
    store = TrainStore()
    store.add_outputs(CONFIG_ID, [
        Output(id=30, pin=OVERSPEED_PIN, name="Overspeed"),
        Output(id=31, pin=STOPPED_PIN, name="Stopped"),
        Output(id=32, pin=DOORS_PIN, name="Doors"),
    ])
    store.add_train(sample_train, output_bindings=output_bindings)
    return store


@pytest.fixture
def readings(simulator):
    """Subscription id -> current value served by the simulator double."""
    values = {}

    def get_subscription(subscription_id):
        if subscription_id not in values:
            raise SimulatorError(f"Subscription {subscription_id} not found")
        value = values[subscription_id]
        if value is INVALID:
            return {"RequestedSubscriptionID": subscription_id,
                    "Entries": [{"Path": "?", "NodeValid": False}]}
        return {"RequestedSubscriptionID": subscription_id,
                "Entries": [{"Path": "?", "NodeValid": True, "Values": {"Value": value}}]}

    simulator.get_subscription.side_effect = get_subscription
    simulator.subscribe.return_value = {"Result": "Success"}
    simulator.unsubscribe.return_value = {"Result": "Success"}
    return values


@pytest.fixture
def controller(devices, store, simulator, clock):
    return OutputController(devices, store, simulator, clock=clock)


@pytest.fixture
def active(controller, connected_devices, sample_train, readings):
    """Controller with a connected simulator and the sample train active."""
    controller.post(DevicesChanged(devices=connected_devices))
    controller.post(SimulatorStatusChanged(connected=True))
    controller.post(TrainChanged(train=sample_train))
    controller.process_pending()
    return controller


def poll(controller, clock):
    clock.advance(0.2)
    controller.process_pending()


def set_output(pin, on):
    return call(PORT, SetOutput(pin=pin, value=OutputLevel.HIGH if on else OutputLevel.LOW))


class TestEvaluateCondition:
    """Tests for binding conditions."""

    def binding(self, operator, value_a=None, value_b=None):
        return OutputBinding(id=1, name="test", output_id=1, endpoint=SPEED,
                             operator=operator, value_a=value_a, value_b=value_b)

    def test_numeric_operators(self):
        assert evaluate_condition(self.binding(OutputOperator.GT, 10.0), 10.5) is True
        assert evaluate_condition(self.binding(OutputOperator.GT, 10.0), 10.0) is False
        assert evaluate_condition(self.binding(OutputOperator.GTE, 10.0), 10.0) is True
        assert evaluate_condition(self.binding(OutputOperator.LT, 10.0), 9.99) is True
        assert evaluate_condition(self.binding(OutputOperator.LT, 10.0), 10.0) is False
        assert evaluate_condition(self.binding(OutputOperator.LTE, 10.0), 10.0) is True

    def test_between_is_inclusive(self):
        binding = self.binding(OutputOperator.BETWEEN, 0.25, 0.75)

        assert evaluate_condition(binding, 0.25) is True
        assert evaluate_condition(binding, 0.75) is True
        assert evaluate_condition(binding, 0.76) is False
        assert evaluate_condition(binding, 0.24) is False

    def test_boolean_operators(self):
        assert evaluate_condition(self.binding(OutputOperator.EQ_TRUE), True) is True
        assert evaluate_condition(self.binding(OutputOperator.EQ_TRUE), False) is False
        assert evaluate_condition(self.binding(OutputOperator.EQ_FALSE), False) is True
        assert evaluate_condition(self.binding(OutputOperator.EQ_FALSE), True) is False

    def test_type_mismatch_is_off(self):
        """Booleans never satisfy numeric operators and numbers never satisfy boolean ones."""
        assert evaluate_condition(self.binding(OutputOperator.GTE, 0.0), True) is False
        assert evaluate_condition(self.binding(OutputOperator.EQ_TRUE), 1.0) is False
        assert evaluate_condition(self.binding(OutputOperator.EQ_FALSE), 0) is False
        assert evaluate_condition(self.binding(OutputOperator.GT, 1.0), "fast") is False


class TestNormalizeValue:
    """Tests for subscription value normalization."""

    def test_numbers_rounded(self):
        assert normalize_value(33.456) == 33.46
        assert normalize_value(5) == 5.0

    def test_other_values_unchanged(self):
        assert normalize_value(True) is True
        assert normalize_value("Closed") == "Closed"


class TestOutputBindingModel:
    """Tests for OutputBinding validation."""

    def test_numeric_operator_needs_value_a(self):
        with pytest.raises(ValueError):
            OutputBinding(id=1, name="x", output_id=1, endpoint=SPEED, operator=OutputOperator.GT)

    def test_between_needs_value_b(self):
        with pytest.raises(ValueError):
            OutputBinding(id=1, name="x", output_id=1, endpoint=SPEED,
                          operator=OutputOperator.BETWEEN, value_a=0.1)

    def test_from_dict_rounds_thresholds(self):
        binding = OutputBinding.from_dict({
            "id": 4, "name": "Brake applied", "output_id": 33, "endpoint": "TrainBrake.InputValue",
            "operator": "between", "value_a": 0.456, "value_b": 1,
        })

        assert binding.operator == OutputOperator.BETWEEN
        assert binding.value_a == 0.46
        assert binding.value_b == 1.0
        assert binding.enabled is True


class TestSubscriptions:
    """Tests for subscription setup and teardown."""

    def test_one_subscription_per_endpoint(self, active, simulator):
        assert simulator.subscribe.call_args_list == [call(SPEED, 1000), call(DOORS, 1001)]
        assert active.stats["subscriptions"] == 2
        assert active.stats["bindings"] == 3

    def test_first_poll_after_interval(self, active, simulator, readings, clock):
        readings.update({1000: 40.0, 1001: False})
        active.process_pending()
        simulator.get_subscription.assert_not_called()

        poll(active, clock)

        assert sorted(c[0][0] for c in simulator.get_subscription.call_args_list) == [1000, 1001]

    def test_subscribe_failure_skips_endpoint(self, controller, simulator, readings,
                                              connected_devices, sample_train):
        simulator.subscribe.side_effect = [SimulatorError("timeout"), {"Result": "Success"}]

        controller.post(DevicesChanged(devices=connected_devices))
        controller.post(SimulatorStatusChanged(connected=True))
        controller.post(TrainChanged(train=sample_train))
        controller.process_pending()

        assert simulator.subscribe.call_args_list[-1] == call(DOORS, 1001)
        assert controller.stats["bindings"] == 1
        assert controller.stats["subscriptions"] == 1

    def test_waits_for_simulator(self, controller, simulator, readings, connected_devices, sample_train):
        """Subscriptions are created once the simulator is reachable."""
        controller.post(DevicesChanged(devices=connected_devices))
        controller.post(TrainChanged(train=sample_train))
        controller.process_pending()
        simulator.subscribe.assert_not_called()

        controller.post(SimulatorStatusChanged(connected=True))
        controller.process_pending()

        assert simulator.subscribe.call_count == 2

    def test_train_without_bindings(self, controller, simulator, readings, connected_devices):
        other = Train(id=2, name="Class 66", identifier="RVM_Class66")

        controller.post(DevicesChanged(devices=connected_devices))
        controller.post(SimulatorStatusChanged(connected=True))
        controller.post(TrainChanged(train=other))
        controller.process_pending()

        simulator.subscribe.assert_not_called()
        assert controller.stats["pending_timers"] == 0

    def test_train_deactivation_cleans_up(self, active, simulator, devices, readings, clock):
        """Leaving the train unsubscribes and switches every bound output off."""
        readings.update({1000: 40.0, 1001: True})
        poll(active, clock)
        devices.send_message.reset_mock()

        active.post(TrainChanged(train=None))
        active.process_pending()

        assert sorted(c[0][0] for c in simulator.unsubscribe.call_args_list) == [1000, 1001]
        assert sorted(devices.send_message.call_args_list, key=lambda c: c[0][1].pin) == [
            set_output(DOORS_PIN, False),
            set_output(STOPPED_PIN, False),
            set_output(OVERSPEED_PIN, False),
        ]
        assert active.active_train is None
        assert active.stats["subscriptions"] == 0

        simulator.get_subscription.reset_mock()
        poll(active, clock)
        simulator.get_subscription.assert_not_called()

    def test_reload_bindings(self, active, simulator, output_bindings):
        output_bindings[2].enabled = False
        simulator.subscribe.reset_mock()

        active.reload_bindings()
        active.process_pending()

        assert sorted(c[0][0] for c in simulator.unsubscribe.call_args_list) == [1000, 1001]
        assert simulator.subscribe.call_args_list == [call(SPEED, 1000)]
        assert active.stats["bindings"] == 2

    def test_resubscribes_after_reconnect(self, active, simulator):
        simulator.subscribe.reset_mock()

        active.post(SimulatorStatusChanged(connected=False))
        active.post(SimulatorStatusChanged(connected=True))
        active.process_pending()

        assert simulator.subscribe.call_args_list == [call(SPEED, 1000), call(DOORS, 1001)]


class TestOutputs:
    """Tests for polling and output switching."""

    def test_condition_met_turns_output_on(self, active, devices, readings, clock):
        readings.update({1000: 40.0, 1001: False})

        poll(active, clock)

        assert devices.send_message.call_args_list == [set_output(OVERSPEED_PIN, True)]
        assert active.output_states == {1: True, 2: False, 3: False}

    def test_unchanged_state_not_resent(self, active, devices, readings, clock):
        readings.update({1000: 40.0, 1001: False})

        poll(active, clock)
        poll(active, clock)

        assert devices.send_message.call_count == 1
        assert active.stats["polls"] == 2

    def test_state_change_turns_output_off(self, active, devices, readings, clock):
        readings.update({1000: 40.0, 1001: False})
        poll(active, clock)

        readings[1000] = 20.0
        poll(active, clock)

        assert devices.send_message.call_args_list == [
            set_output(OVERSPEED_PIN, True),
            set_output(OVERSPEED_PIN, False),
        ]

    def test_shared_endpoint_feeds_every_binding(self, active, devices, readings, clock):
        readings.update({1000: 0.0, 1001: True})

        poll(active, clock)

        assert sorted(devices.send_message.call_args_list, key=lambda c: c[0][1].pin) == [
            set_output(DOORS_PIN, True),
            set_output(STOPPED_PIN, True),
        ]

    def test_rounded_before_comparison(self, active, devices, readings, clock):
        """33.504 rounds to 33.5, which is not above the 33.5 threshold."""
        readings.update({1000: 33.504, 1001: False})

        poll(active, clock)

        devices.send_message.assert_not_called()

    def test_invalid_node_ignored(self, active, devices, readings, clock):
        readings.update({1000: INVALID, 1001: True})

        poll(active, clock)

        assert devices.send_message.call_args_list == [set_output(DOORS_PIN, True)]

    def test_read_failure_keeps_polling(self, active, devices, readings, clock):
        poll(active, clock)
        assert active.stats["poll_failures"] == 2

        readings.update({1000: 40.0, 1001: False})
        poll(active, clock)

        assert devices.send_message.call_args_list == [set_output(OVERSPEED_PIN, True)]

    def test_no_polling_while_disconnected(self, active, simulator, readings, clock):
        readings.update({1000: 40.0, 1001: False})
        active.post(SimulatorStatusChanged(connected=False))
        active.process_pending()

        poll(active, clock)

        simulator.get_subscription.assert_not_called()

    def test_device_not_connected(self, active, devices, readings, clock):
        """Outputs on a configuration with no connected device are skipped."""
        active.post(DevicesChanged(devices=[]))
        readings.update({1000: 40.0, 1001: True})

        poll(active, clock)

        devices.send_message.assert_not_called()
        assert active.output_states[1] is True

    def test_unknown_output(self, active, store, sample_train, simulator, devices, readings, clock):
        store.add_train(sample_train, output_bindings=[
            OutputBinding(id=9, name="Missing", output_id=99, endpoint=SPEED,
                          operator=OutputOperator.GT, value_a=1.0),
        ])
        active.reload_bindings()
        active.process_pending()
        devices.send_message.reset_mock()
        readings[1000] = 40.0

        poll(active, clock)

        devices.send_message.assert_not_called()
        assert active.output_states == {9: True}
