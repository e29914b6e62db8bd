"""
Lever Controller
================

Turns hardware lever movement into simulator lever values.

For every InputValueChanged:
    1. (port, pin) -> input (id, type, calibration)
    2. input id   -> enabled lever binding on the active train
    3. analog:     raw -> calibrated position 0.0-1.0 -> map_input()
       BLDC lever: raw value is the detent index -> map_detent()
    4. write to the lever's value endpoint if it differs from the last
       value successfully written for that lever

When a train becomes active every BLDC lever gets its haptic profile
loaded on the first connected device; when the train goes away the
profiles are deactivated again. Switching straight to another train
deactivates the previous train's profile first.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import logging

from ..device.connection import DeviceManager
from ..device.protocol import DeactivateBLDCProfile, InputType
from ..events import DevicesChanged, InputValueChanged, TrainChanged
from ..simulator.client import SimulatorClient, SimulatorError
from ..worker import Worker
from . import calibration
from .input_lookup import InputInfo, InputKey, build_input_lookup
from .lever_mapper import MappingError, map_detent, map_input
from .models import LeverBinding, LeverConfig, LeverType, Train
from .profile_builder import ProfileBuildError, build_profile
from .store import TrainStore

logger = logging.getLogger(__name__)

PROFILE_PIN = 0     # Single BLDC lever per device


@dataclass
class BoundLever:
    lever_config: LeverConfig
    binding: LeverBinding


class _ReloadBindings:
    pass


class LeverController(Worker):
    """Lever dispatch loop."""

    def __init__(
        self,
        devices: DeviceManager,
        store: TrainStore,
        simulator: SimulatorClient,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__("lever-controller", clock=clock)
        self._devices = devices
        self._store = store
        self._simulator = simulator

        self.active_train: Optional[Train] = None
        self._input_lookup: Dict[InputKey, InputInfo] = {}
        self._binding_lookup: Dict[Any, BoundLever] = {}
        self._last_sent: Dict[Any, float] = {}

        # Statistics
        self._values_sent = 0
        self._send_failures = 0
        self._profiles_loaded = 0

    def reload_bindings(self):
        """Pick up binding changes for the active train."""
        self.post(_ReloadBindings())

    def on_start(self):
        self.post(DevicesChanged(devices=self._devices.list_devices()))

    def handle_message(self, message: Any):
        if isinstance(message, InputValueChanged):
            self._handle_input(message.port, message.pin, message.value)

        elif isinstance(message, TrainChanged):
            if message.train is None:
                self._deactivate_train()
            else:
                logger.info(f"Train activated: {message.train.name}")
                self._load_train(message.train)

        elif isinstance(message, DevicesChanged):
            self._input_lookup = build_input_lookup(
                message.devices, self._store, (InputType.ANALOG, InputType.BLDC_LEVER))
            logger.debug(f"Lever input lookup rebuilt: {len(self._input_lookup)} inputs")

        elif isinstance(message, _ReloadBindings):
            if self.active_train is not None:
                self._load_train(self.active_train)

    def _load_train(self, train: Train):
        previous = self.active_train
        if previous is not None and previous.id != train.id:
            logger.info(f"Train switched from {previous.name} to {train.name}")
            self._deactivate_profiles(previous)

        self.active_train = train
        self._binding_lookup = {
            binding.input_id: BoundLever(lever_config=lever, binding=binding)
            for lever, binding in self._store.list_lever_bindings(train.id)
        }
        self._last_sent = {}
        logger.info(f"Loaded {len(self._binding_lookup)} enabled lever bindings for train {train.name}")
        self._load_profiles(train)

    def _deactivate_train(self):
        train = self.active_train
        if train is not None:
            logger.info("Train deactivated, clearing lever bindings")
            self._deactivate_profiles(train)
        self.active_train = None
        self._binding_lookup = {}
        self._last_sent = {}

    # -------------------------------------------------------------------------
    # Input handling
    # -------------------------------------------------------------------------

    def _handle_input(self, port: str, pin: int, raw_value: int):
        if self.active_train is None:
            return

        info = self._input_lookup.get((port, pin))
        if info is None:
            return
        bound = self._binding_lookup.get(info.input_id)
        if bound is None:
            return

        lever = bound.lever_config
        try:
            if info.input_type == InputType.BLDC_LEVER:
                value = map_detent(lever, raw_value)
            else:
                value = self._map_analog(info, lever, raw_value)
        except MappingError as e:
            logger.debug(f"No value for lever {lever.id} at raw {raw_value}: {e}")
            return

        if value is not None:
            self._maybe_send(lever, value)

    def _map_analog(self, info: InputInfo, lever: LeverConfig, raw_value: int) -> Optional[float]:
        if info.calibration is None:
            logger.debug(f"Input {info.input_id} has no calibration")
            return None
        position = calibration.position(raw_value, info.calibration)
        if position is None:
            return None
        return map_input(lever, position)

    def _maybe_send(self, lever: LeverConfig, value: float):
        if self._last_sent.get(lever.id) == value:
            return

        try:
            self._simulator.set(lever.value_endpoint, value)
        except SimulatorError as e:
            # Leave _last_sent alone so the next reading retries
            self._send_failures += 1
            logger.warning(f"Failed to send {value} to {lever.value_endpoint}: {e}")
            return

        self._last_sent[lever.id] = value
        self._values_sent += 1

    # -------------------------------------------------------------------------
    # BLDC profiles
    # -------------------------------------------------------------------------

    def _bldc_levers(self, train: Train):
        return [lc for lc in train.lever_configs() if lc.lever_type == LeverType.BLDC]

    def _profile_target(self) -> Optional[str]:
        devices = self._devices.connected_devices()
        return devices[0].port if devices else None

    def _load_profiles(self, train: Train):
        for lever in self._bldc_levers(train):
            port = self._profile_target()
            if port is None:
                logger.warning(f"No connected device for BLDC lever {lever.id}")
                continue
            try:
                profile = build_profile(lever, pin=PROFILE_PIN)
            except ProfileBuildError as e:
                logger.warning(f"Cannot build haptic profile for lever {lever.id}: {e}")
                continue
            if self._devices.send_message(port, profile):
                self._profiles_loaded += 1
                logger.info(f"Loaded haptic profile for lever {lever.id} on {port} "
                            f"({len(profile.detents)} detents, {len(profile.ranges)} ranges)")
            else:
                logger.warning(f"Failed to send haptic profile for lever {lever.id} to {port}")

    def _deactivate_profiles(self, train: Train):
        if not self._bldc_levers(train):
            return
        port = self._profile_target()
        if port is None:
            logger.warning(f"No connected device to deactivate haptic profile of {train.name}")
            return
        if not self._devices.send_message(port, DeactivateBLDCProfile(pin=PROFILE_PIN)):
            logger.warning(f"Failed to deactivate haptic profile on {port}")

    @property
    def stats(self) -> dict:
        stats = super().stats
        stats.update({
            "values_sent": self._values_sent,
            "send_failures": self._send_failures,
            "profiles_loaded": self._profiles_loaded,
            "bindings": len(self._binding_lookup),
        })
        return stats
