"""
Button Controller
=================

Turns hardware button edges (raw 1 = pressed, 0 = released) into
simulator writes according to each binding's mode:

    SIMPLE     on_value on press, off_value on release, only on change
    MOMENTARY  <endpoint>.Interacting = true, then on_value repeatedly
               while held; on release off_value, then Interacting = false
    SEQUENCE   run the binding's on-sequence in a background thread;
               release cancels it (momentary hardware) or runs the
               off-sequence (latching hardware)
    KEYSTROKE  key down on press, key up on release

Momentary repeats are messages the loop posts to itself, so a release
processed by the loop always stops them. Every active button carries a
token; a repeat or sequence-complete message with a stale token is
ignored.
"""

import itertools
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import logging

from ..device.connection import DeviceManager
from ..device.protocol import InputType
from ..events import ButtonStateChanged, DevicesChanged, InputValueChanged, TrainChanged
from ..keystrokes import KeyboardInjector
from ..simulator.client import SimulatorClient, SimulatorError
from ..worker import Worker
from .input_lookup import InputInfo, InputKey, build_input_lookup
from .models import ButtonBinding, ButtonMode, HardwareType, Sequence, SequenceCommand, Train
from .store import TrainStore

logger = logging.getLogger(__name__)

PRESSED = 1
RELEASED = 0


def interacting_endpoint(endpoint: str) -> str:
    """"Horn.InputValue" -> "Horn.Interacting"."""
    if endpoint.endswith(".InputValue"):
        return endpoint[:-len(".InputValue")] + ".Interacting"
    if "." in endpoint:
        return endpoint.rsplit(".", 1)[0] + ".Interacting"
    return endpoint + ".Interacting"


class SequenceRunner(threading.Thread):
    """
    Executes a command sequence with its delays.

    Stops between commands (and during delays) as soon as it is
    cancelled or the owner's alive event is cleared.
    """

    CHECK_INTERVAL_S = 0.05

    def __init__(
        self,
        commands: List[SequenceCommand],
        send: Callable[[str, float], bool],
        on_complete: Callable[[], None],
        owner_alive: threading.Event,
        name: str = "sequence",
    ):
        super().__init__(name=name, daemon=True)
        self._commands = list(commands)
        self._send = send
        self._on_complete = on_complete
        self._owner_alive = owner_alive
        self._cancelled = threading.Event()
        self.commands_sent = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self, timeout: float = 1.0):
        """Stop the sequence and wait for the thread to finish."""
        self._cancelled.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout)

    def run(self):
        for command in self._commands:
            if self._should_stop():
                logger.debug(f"{self.name} cancelled")
                return
            self._send(command.endpoint, command.value)
            self.commands_sent += 1
            if command.delay_ms > 0 and self._wait(command.delay_ms / 1000.0):
                logger.debug(f"{self.name} cancelled during delay")
                return

        if not self._should_stop():
            self._on_complete()

    def _should_stop(self) -> bool:
        return self._cancelled.is_set() or not self._owner_alive.is_set()

    def _wait(self, seconds: float) -> bool:
        """Sleep for seconds; True if told to stop meanwhile."""
        deadline = time.monotonic() + seconds
        while not self._should_stop():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self._cancelled.wait(min(remaining, self.CHECK_INTERVAL_S))
        return True


@dataclass
class ActiveButton:
    """A held momentary button or a running sequence."""
    element_id: int
    binding: ButtonBinding
    token: int
    repeat_timer: Optional[int] = None
    sequence: Optional[SequenceRunner] = None


@dataclass
class _MomentaryRepeat:
    element_id: int
    token: int


@dataclass
class _SequenceComplete:
    element_id: int
    token: int


@dataclass
class _SequenceSendResult:
    ok: bool


class _ReloadBindings:
    pass


class ButtonController(Worker):
    """Button dispatch loop."""

    def __init__(
        self,
        devices: DeviceManager,
        store: TrainStore,
        simulator: SimulatorClient,
        keyboard: Optional[KeyboardInjector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__("button-controller", clock=clock)
        self._devices = devices
        self._store = store
        self._simulator = simulator
        self._keyboard = keyboard or KeyboardInjector()

        # Cleared on stop; running sequences watch it
        self._alive = threading.Event()
        self._alive.set()

        self.active_train: Optional[Train] = None
        self._input_lookup: Dict[InputKey, InputInfo] = {}
        self._binding_lookup: Dict[Any, ButtonBinding] = {}
        self._last_sent: Dict[Any, float] = {}
        self._active: Dict[Any, ActiveButton] = {}
        self._tokens = itertools.count(1)

        self._listeners: List[Callable[[ButtonStateChanged], None]] = []

        # Statistics
        self._values_sent = 0
        self._send_failures = 0

    def add_listener(self, callback: Callable[[ButtonStateChanged], None]):
        self._listeners.append(callback)

    def reload_bindings(self):
        """Cancel held buttons and pick up binding changes."""
        self.post(_ReloadBindings())

    @property
    def active_buttons(self) -> Dict[Any, ActiveButton]:
        return dict(self._active)

    def on_start(self):
        self._alive.set()
        self.post(DevicesChanged(devices=self._devices.list_devices()))

    def on_stop(self):
        self._alive.clear()
        self._cancel_all()

    def handle_message(self, message: Any):
        if isinstance(message, InputValueChanged):
            self._handle_input(message.port, message.pin, message.value)

        elif isinstance(message, _MomentaryRepeat):
            self._repeat(message)

        elif isinstance(message, _SequenceComplete):
            active = self._active.get(message.element_id)
            if active is not None and active.token == message.token:
                del self._active[message.element_id]

        elif isinstance(message, _SequenceSendResult):
            self._count_send(message.ok)

        elif isinstance(message, TrainChanged):
            self._cancel_all()
            if message.train is None:
                logger.info("Train deactivated, clearing button bindings")
                self.active_train = None
                self._binding_lookup = {}
                self._last_sent = {}
            else:
                logger.info(f"Train activated: {message.train.name}")
                self._load_train(message.train)

        elif isinstance(message, DevicesChanged):
            self._input_lookup = build_input_lookup(message.devices, self._store, (InputType.BUTTON,))
            logger.debug(f"Button input lookup rebuilt: {len(self._input_lookup)} inputs")

        elif isinstance(message, _ReloadBindings):
            if self.active_train is not None:
                self._cancel_all()
                self._load_train(self.active_train)

    def _load_train(self, train: Train):
        self.active_train = train
        self._binding_lookup = {}
        for binding in self._store.list_button_bindings(train.id):
            logger.debug(f"Binding: element={binding.element_id}, mode={binding.mode.value}, "
                         f"interval={binding.repeat_interval_ms}ms")
            self._binding_lookup[binding.input_id] = binding
        self._last_sent = {}
        logger.info(f"Loaded {len(self._binding_lookup)} enabled button bindings for train {train.name}")

    # -------------------------------------------------------------------------
    # Input handling
    # -------------------------------------------------------------------------

    def _handle_input(self, port: str, pin: int, raw_value: int):
        if self.active_train is None:
            return
        info = self._input_lookup.get((port, pin))
        if info is None:
            return
        binding = self._binding_lookup.get(info.input_id)
        if binding is None:
            return

        if raw_value == PRESSED:
            self._press(binding)
        elif raw_value == RELEASED:
            self._release(binding)

    def _press(self, binding: ButtonBinding):
        if binding.mode == ButtonMode.SIMPLE:
            self._send_if_changed(binding.element_id, binding.endpoint, binding.on_value, True)

        elif binding.mode == ButtonMode.MOMENTARY:
            self._cancel_button(binding.element_id)
            self._set(interacting_endpoint(binding.endpoint), True)
            if self._set(binding.endpoint, binding.on_value):
                self._last_sent[binding.element_id] = binding.on_value
            self._notify(binding.element_id, binding.on_value, True)

            active = ActiveButton(binding.element_id, binding, next(self._tokens))
            self._active[binding.element_id] = active
            self._schedule_repeat(active)

        elif binding.mode == ButtonMode.SEQUENCE:
            if binding.on_sequence is None:
                logger.warning(f"Sequence button {binding.element_id} has no on-sequence configured")
                return
            self._cancel_button(binding.element_id)
            if self._start_sequence(binding, binding.on_sequence):
                self._last_sent[binding.element_id] = binding.on_value
                self._notify(binding.element_id, binding.on_value, True)

        elif binding.mode == ButtonMode.KEYSTROKE:
            if not binding.keystroke:
                logger.warning(f"Keystroke button {binding.element_id} has no keystroke configured")
                return
            if self._keyboard.key_down(binding.keystroke):
                logger.debug(f"Keystroke down: {binding.keystroke}")
                self._last_sent[binding.element_id] = 1.0
                self._notify(binding.element_id, 1.0, True)

    def _release(self, binding: ButtonBinding):
        if binding.mode == ButtonMode.SIMPLE:
            self._send_if_changed(binding.element_id, binding.endpoint, binding.off_value, False)

        elif binding.mode == ButtonMode.MOMENTARY:
            self._cancel_button(binding.element_id)
            if self._set(binding.endpoint, binding.off_value):
                self._last_sent[binding.element_id] = binding.off_value
            self._set(interacting_endpoint(binding.endpoint), False)
            self._notify(binding.element_id, binding.off_value, False)

        elif binding.mode == ButtonMode.SEQUENCE:
            self._cancel_button(binding.element_id)
            if binding.hardware_type == HardwareType.LATCHING and binding.off_sequence is not None:
                self._start_sequence(binding, binding.off_sequence)
            self._last_sent[binding.element_id] = binding.off_value
            self._notify(binding.element_id, binding.off_value, False)

        elif binding.mode == ButtonMode.KEYSTROKE:
            if not binding.keystroke:
                return
            if self._keyboard.key_up(binding.keystroke):
                logger.debug(f"Keystroke up: {binding.keystroke}")
                self._last_sent[binding.element_id] = 0.0
                self._notify(binding.element_id, 0.0, False)

    def _send_if_changed(self, element_id: int, endpoint: str, value: float, pressed: bool):
        if self._last_sent.get(element_id) == value:
            return
        if self._set(endpoint, value):
            self._last_sent[element_id] = value
            self._notify(element_id, value, pressed)

    # -------------------------------------------------------------------------
    # Momentary repeat
    # -------------------------------------------------------------------------

    def _schedule_repeat(self, active: ActiveButton):
        message = _MomentaryRepeat(active.element_id, active.token)
        interval_ms = active.binding.repeat_interval_ms
        if interval_ms > 0:
            active.repeat_timer = self.send_after(interval_ms / 1000.0, message)
        else:
            self.post(message)

    def _repeat(self, message: _MomentaryRepeat):
        active = self._active.get(message.element_id)
        if active is None or active.token != message.token:
            return
        active.repeat_timer = None
        self._set(active.binding.endpoint, active.binding.on_value)
        self._schedule_repeat(active)

    # -------------------------------------------------------------------------
    # Sequences
    # -------------------------------------------------------------------------

    def _start_sequence(self, binding: ButtonBinding, sequence: Sequence) -> bool:
        if not sequence.commands:
            return False

        element_id = binding.element_id
        token = next(self._tokens)
        runner = SequenceRunner(
            sequence.commands,
            send=self._send_from_sequence,
            on_complete=lambda: self.post(_SequenceComplete(element_id, token)),
            owner_alive=self._alive,
            name=f"sequence-{sequence.id}-element-{element_id}",
        )
        self._active[element_id] = ActiveButton(element_id, binding, token, sequence=runner)
        logger.debug(f"Starting sequence {sequence.name or sequence.id} for element {element_id}")
        runner.start()
        return True

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def _cancel_button(self, element_id: int):
        active = self._active.pop(element_id, None)
        if active is None:
            return
        self.cancel_timer(active.repeat_timer)
        if active.sequence is not None:
            active.sequence.cancel()

    def _cancel_all(self):
        for element_id in list(self._active):
            self._cancel_button(element_id)

    # -------------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------------

    def _set(self, endpoint: Optional[str], value: Any) -> bool:
        if not endpoint:
            return False
        ok = self._write(endpoint, value)
        self._count_send(ok)
        return ok

    def _send_from_sequence(self, endpoint: str, value: Any) -> bool:
        # Runs on the sequence thread; counters are only touched by the loop
        ok = self._write(endpoint, value)
        self.post(_SequenceSendResult(ok))
        return ok

    def _write(self, endpoint: str, value: Any) -> bool:
        try:
            self._simulator.set(endpoint, value)
        except SimulatorError as e:
            logger.warning(f"Failed to send {value} to {endpoint}: {e}")
            return False
        return True

    def _count_send(self, ok: bool):
        if ok:
            self._values_sent += 1
        else:
            self._send_failures += 1

    def _notify(self, element_id: int, value: float, pressed: bool):
        event = ButtonStateChanged(element_id=element_id, value=value, pressed=pressed)
        for callback in self._listeners:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Button listener error: {e}")

    @property
    def stats(self) -> dict:
        stats = super().stats
        stats.update({
            "values_sent": self._values_sent,
            "send_failures": self._send_failures,
            "active_buttons": len(self._active),
            "bindings": len(self._binding_lookup),
        })
        return stats
