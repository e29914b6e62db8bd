"""
Output Controller
=================

Drives hardware outputs (panel LEDs) from simulator values.

When a train becomes active:
    1. load its enabled output bindings
    2. subscribe once per distinct endpoint, ids from SUBSCRIPTION_ID_BASE
    3. poll every subscription each POLL_INTERVAL_S
    4. evaluate each binding's condition and send SetOutput when the
       result changes

Leaving the train (or reloading) unsubscribes and turns every bound
output off. Nothing is polled while the simulator is unreachable; a
reconnect sets the subscriptions up again.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import logging

from ..device.connection import DeviceInfo, DeviceManager
from ..device.protocol import OutputLevel, SetOutput
from ..events import DevicesChanged, SimulatorStatusChanged, TrainChanged
from ..simulator.client import SimulatorClient, SimulatorError
from ..worker import Worker
from .models import OutputBinding, OutputOperator, Train
from .store import TrainStore

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.2
SUBSCRIPTION_ID_BASE = 1000     # Ids 1000-1999 belong to output bindings


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def normalize_value(value: Any) -> Any:
    """Round numbers to 2 decimals; booleans and anything else pass through."""
    if _is_number(value):
        return round(float(value), 2)
    return value


def evaluate_condition(binding: OutputBinding, value: Any) -> bool:
    """
    Whether the output should be on for a simulator value.

    Numeric operators need a number and boolean operators a boolean; any
    other combination is treated as off.
    """
    op = binding.operator
    if op.is_boolean:
        if not isinstance(value, bool):
            return False
        return value if op == OutputOperator.EQ_TRUE else not value

    if not _is_number(value):
        return False
    if op == OutputOperator.GT:
        return value > binding.value_a
    if op == OutputOperator.GTE:
        return value >= binding.value_a
    if op == OutputOperator.LT:
        return value < binding.value_a
    if op == OutputOperator.LTE:
        return value <= binding.value_a
    return binding.value_a <= value <= binding.value_b


@dataclass
class BoundOutput:
    binding: OutputBinding
    subscription_id: int
    config_id: Optional[int]
    pin: Optional[int]
    state: bool = False


class _Poll:
    pass


class _ReloadBindings:
    pass


class OutputController(Worker):
    """Output binding loop."""

    def __init__(
        self,
        devices: DeviceManager,
        store: TrainStore,
        simulator: SimulatorClient,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__("output-controller", clock=clock)
        self._devices = devices
        self._store = store
        self._simulator = simulator

        self.active_train: Optional[Train] = None
        self.simulator_connected = False
        self._ports: Dict[int, str] = {}
        self._bound: Dict[Any, BoundOutput] = {}
        self._subscriptions: Dict[str, int] = {}
        self._poll_timer: Optional[int] = None

        # Statistics
        self._polls = 0
        self._outputs_set = 0
        self._poll_failures = 0

    def reload_bindings(self):
        """Pick up output binding changes for the active train."""
        self.post(_ReloadBindings())

    @property
    def output_states(self) -> Dict[Any, bool]:
        """Current on/off state per binding id."""
        return {binding_id: bound.state for binding_id, bound in self._bound.items()}

    def on_start(self):
        self.post(DevicesChanged(devices=self._devices.list_devices()))

    def on_stop(self):
        self._cleanup(reset_outputs=False)

    def handle_message(self, message: Any):
        if isinstance(message, _Poll):
            self._poll_timer = None
            self._poll()
            self._schedule_poll()

        elif isinstance(message, TrainChanged):
            self._cleanup()
            if message.train is None:
                logger.info("Train deactivated, clearing output bindings")
                self.active_train = None
            else:
                logger.info(f"Train activated: {message.train.name}")
                self._load_train(message.train)

        elif isinstance(message, SimulatorStatusChanged):
            was_connected = self.simulator_connected
            self.simulator_connected = message.connected
            if message.connected and not was_connected and self.active_train is not None:
                logger.info("Simulator connected, subscribing output bindings")
                self._cleanup()
                self._load_train(self.active_train)

        elif isinstance(message, DevicesChanged):
            self._ports = self._port_lookup(message.devices)

        elif isinstance(message, _ReloadBindings):
            if self.active_train is not None:
                self._cleanup()
                self._load_train(self.active_train)

    def _port_lookup(self, devices: List[DeviceInfo]) -> Dict[int, str]:
        return {d.config_id: d.port for d in devices if d.connected and d.config_id is not None}

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def _load_train(self, train: Train):
        self.active_train = train
        bindings = self._store.list_output_bindings(train.id)
        if not bindings:
            logger.info(f"No output bindings for train {train.name}")
            return
        if not self.simulator_connected:
            logger.warning("Simulator not connected, cannot set up output subscriptions")
            return

        by_endpoint: Dict[str, List[OutputBinding]] = {}
        for binding in bindings:
            by_endpoint.setdefault(binding.endpoint, []).append(binding)

        for index, (endpoint, group) in enumerate(by_endpoint.items()):
            subscription_id = SUBSCRIPTION_ID_BASE + index
            try:
                self._simulator.subscribe(endpoint, subscription_id)
            except SimulatorError as e:
                logger.warning(f"Failed to subscribe to {endpoint}: {e}")
                continue
            logger.info(f"Subscribed to {endpoint} with id {subscription_id}")
            self._subscriptions[endpoint] = subscription_id
            for binding in group:
                self._bound[binding.id] = self._bind(binding, subscription_id)

        logger.info(f"Loaded {len(self._bound)} output bindings for train {train.name}")
        self._schedule_poll()

    def _bind(self, binding: OutputBinding, subscription_id: int) -> BoundOutput:
        found = self._store.find_output(binding.output_id)
        if found is None:
            logger.warning(f"Output binding {binding.id} references unknown output {binding.output_id}")
            return BoundOutput(binding, subscription_id, config_id=None, pin=None)
        config_id, output = found
        return BoundOutput(binding, subscription_id, config_id=config_id, pin=output.pin)

    def _cleanup(self, reset_outputs: bool = True):
        self.cancel_timer(self._poll_timer)
        self._poll_timer = None

        if self.simulator_connected:
            for endpoint, subscription_id in self._subscriptions.items():
                try:
                    self._simulator.unsubscribe(subscription_id)
                except SimulatorError as e:
                    logger.debug(f"Failed to unsubscribe {endpoint} ({subscription_id}): {e}")

        if reset_outputs:
            for bound in self._bound.values():
                self._set_output(bound, False)

        self._subscriptions = {}
        self._bound = {}

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    def _schedule_poll(self):
        if self._bound and self._poll_timer is None:
            self._poll_timer = self.send_after(POLL_INTERVAL_S, _Poll())

    def _poll(self):
        if not self.simulator_connected:
            return
        self._polls += 1
        for subscription_id in sorted(set(b.subscription_id for b in self._bound.values())):
            value = self._read_subscription(subscription_id)
            if value is None:
                continue
            for bound in self._bound.values():
                if bound.subscription_id == subscription_id:
                    self._update(bound, value)

    def _read_subscription(self, subscription_id: int) -> Any:
        try:
            response = self._simulator.get_subscription(subscription_id)
        except SimulatorError as e:
            self._poll_failures += 1
            logger.debug(f"Failed to read subscription {subscription_id}: {e}")
            return None

        entries = response.get("Entries")
        if not isinstance(entries, list) or not entries or not isinstance(entries[0], dict):
            return None
        entry = entries[0]
        if not entry.get("NodeValid", False):
            logger.debug(f"Subscription {subscription_id} node invalid")
            return None
        values = entry.get("Values")
        if not isinstance(values, dict) or not values:
            return None
        return normalize_value(next(iter(values.values())))

    def _update(self, bound: BoundOutput, value: Any):
        state = evaluate_condition(bound.binding, value)
        if state == bound.state:
            return
        logger.debug(f"{bound.binding.name}: value={value}, state={state}")
        self._set_output(bound, state)
        bound.state = state

    def _set_output(self, bound: BoundOutput, on: bool):
        if bound.pin is None:
            return
        port = self._ports.get(bound.config_id)
        if port is None:
            return
        level = OutputLevel.HIGH if on else OutputLevel.LOW
        if self._devices.send_message(port, SetOutput(pin=bound.pin, value=level)):
            self._outputs_set += 1
        else:
            logger.warning(f"Failed to set output pin {bound.pin} on {port} to {level.name}")

    @property
    def stats(self) -> dict:
        stats = super().stats
        stats.update({
            "polls": self._polls,
            "poll_failures": self._poll_failures,
            "outputs_set": self._outputs_set,
            "subscriptions": len(self._subscriptions),
            "bindings": len(self._bound),
        })
        return stats
