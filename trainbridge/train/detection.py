"""
Train Detection
===============

Works out which configured train the player is driving and publishes
changes to the dispatch engines.

States:
    IDLE      - simulator never seen
    POLLING   - simulator reachable, identifier read every poll_interval_s
    GRACE     - contact lost while a train was active; the train stays
                active while a fast-timeout probe runs every
                grace_poll_interval_s
    INACTIVE  - no train active and no usable contact

Transitions:
    connected (IDLE/INACTIVE/GRACE)   -> POLLING, poll immediately
    poll failure, train active        -> GRACE
    poll failure, no train            -> INACTIVE
    disconnected, train active        -> GRACE
    disconnected, no train            -> INACTIVE
    grace probe ok                    -> stay in GRACE, refresh last contact
                                         (POLLING if the simulator link
                                         itself never dropped)
    grace probe fails past window     -> deactivate train, INACTIVE

Grace expiry is measured from a single last_successful_contact
timestamp, so recovery and expiry are always judged against the same
clock reading.
"""

import dataclasses
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional
import logging

from ..events import (
    DetectionError,
    MultipleTrainsMatch,
    SimulatorStatusChanged,
    TrainChanged,
    TrainDetected,
)
from ..simulator.client import SimulatorClient, SimulatorError
from ..simulator.identifier import derive_from_formation
from ..worker import Worker
from .models import Train
from .store import TrainStore

logger = logging.getLogger(__name__)


class DetectionStatus(Enum):
    IDLE = "idle"
    POLLING = "polling"
    GRACE = "grace"
    INACTIVE = "inactive"


@dataclass
class DetectionConfig:
    """Detection timing."""
    poll_interval_s: float = 5.0        # Normal identifier poll
    grace_poll_interval_s: float = 0.2  # Probe cadence while in grace
    grace_period_s: float = 30.0        # Keep the train this long without contact


@dataclass
class DetectionState:
    status: DetectionStatus = DetectionStatus.IDLE
    active_train: Optional[Train] = None
    current_identifier: Optional[str] = None
    last_check: Optional[datetime] = None
    detection_error: Optional[str] = None
    last_successful_contact: Optional[float] = None     # Worker clock (monotonic)


class _Poll:
    pass


class _GracePoll:
    pass


class _Sync:
    pass


def _train_id(train: Optional[Train]) -> Any:
    return train.id if train is not None else None


class TrainDetection(Worker):
    """
    Train identification loop.

    Feed it SimulatorStatusChanged events (post()) and subscribe with
    add_listener() to receive TrainDetected, TrainChanged,
    MultipleTrainsMatch and DetectionError.
    """

    def __init__(
        self,
        client: SimulatorClient,
        store: TrainStore,
        config: Optional[DetectionConfig] = None,
        identify: Callable[[SimulatorClient], str] = derive_from_formation,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__("train-detection", clock=clock)
        self.config = config or DetectionConfig()
        self._client = client
        self._grace_client: Optional[SimulatorClient] = None
        self._store = store
        self._identify = identify

        self._state = DetectionState()
        self._state_lock = threading.Lock()
        self._transport_connected = False
        self._poll_timer: Optional[int] = None
        self._grace_timer: Optional[int] = None

        self._listeners: List[Callable[[Any], None]] = []

        # Statistics
        self._polls = 0
        self._poll_failures = 0
        self._grace_entries = 0

    def add_listener(self, callback: Callable[[Any], None]):
        """Register callback(event) for detection events."""
        self._listeners.append(callback)

    def get_state(self) -> DetectionState:
        with self._state_lock:
            return dataclasses.replace(self._state)

    def get_active_train(self) -> Optional[Train]:
        with self._state_lock:
            return self._state.active_train

    @property
    def status(self) -> DetectionStatus:
        with self._state_lock:
            return self._state.status

    def sync(self):
        """Forget the current identifier and detect again now."""
        self.post(_Sync())

    def on_stop(self):
        self._close_grace_client()

    def handle_message(self, message: Any):
        if isinstance(message, SimulatorStatusChanged):
            if message.connected:
                self._on_connected()
            else:
                self._on_disconnected()

        elif isinstance(message, _Poll):
            self._poll_timer = None
            if self._state.status in (DetectionStatus.POLLING, DetectionStatus.INACTIVE) \
                    and self._transport_connected:
                self._poll()

        elif isinstance(message, _GracePoll):
            self._grace_timer = None
            if self._state.status == DetectionStatus.GRACE:
                self._grace_poll()

        elif isinstance(message, _Sync):
            self._sync()

        else:
            logger.debug(f"Ignoring unexpected message {message!r}")

    # -------------------------------------------------------------------------
    # Transport events
    # -------------------------------------------------------------------------

    def _on_connected(self):
        self._transport_connected = True
        if self._state.status == DetectionStatus.GRACE:
            logger.info("Simulator reconnected during grace period, resuming polling")
            self._exit_grace()
        else:
            logger.info("Simulator connected, starting train detection")

        self._set_status(DetectionStatus.POLLING)
        self._cancel_poll()
        self._poll()

    def _on_disconnected(self):
        self._transport_connected = False
        self._cancel_poll()

        if self._state.status == DetectionStatus.GRACE:
            return
        if self._state.active_train is not None:
            self._enter_grace()
        else:
            logger.info("Simulator disconnected, train detection inactive")
            self._set_status(DetectionStatus.INACTIVE)

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    def _poll(self):
        self._polls += 1
        try:
            identifier = self._identify(self._client)
        except SimulatorError as e:
            self._on_poll_failure(e)
            return

        with self._state_lock:
            self._state.last_successful_contact = self._clock()
        if self._state.status == DetectionStatus.INACTIVE:
            self._set_status(DetectionStatus.POLLING)
        self._handle_identifier(identifier)
        self._schedule_poll(self.config.poll_interval_s)

    def _on_poll_failure(self, error: Exception):
        self._poll_failures += 1
        logger.warning(f"Failed to detect train: {error}")
        with self._state_lock:
            self._state.detection_error = str(error)
        self._notify(DetectionError(reason=str(error)))

        if self._state.active_train is not None:
            self._enter_grace()
            return

        self._set_status(DetectionStatus.INACTIVE)
        if self._transport_connected:
            # Nothing to protect; keep looking at the normal cadence
            self._schedule_poll(self.config.poll_interval_s)

    def _schedule_poll(self, delay_s: float):
        self._cancel_poll()
        self._poll_timer = self.send_after(delay_s, _Poll())

    def _cancel_poll(self):
        self.cancel_timer(self._poll_timer)
        self._poll_timer = None

    def _sync(self):
        with self._state_lock:
            self._state.current_identifier = None

        if self._state.status == DetectionStatus.GRACE:
            try:
                identifier = self._identify(self._grace_client)
            except SimulatorError as e:
                logger.warning(f"Sync during grace period failed: {e}")
                return
            with self._state_lock:
                self._state.last_successful_contact = self._clock()
            self._handle_identifier(identifier)
        elif self._transport_connected:
            self._cancel_poll()
            self._poll()

    # -------------------------------------------------------------------------
    # Grace period
    # -------------------------------------------------------------------------

    def _enter_grace(self):
        self._grace_entries += 1
        self._cancel_poll()
        self._grace_client = self._client.with_fast_timeouts()

        with self._state_lock:
            if self._state.last_successful_contact is None:
                self._state.last_successful_contact = self._clock()
            train = self._state.active_train

        logger.info(f"Entering grace period ({self.config.grace_period_s}s) "
                    f"for train: {train.name if train else None}")
        self._set_status(DetectionStatus.GRACE)
        self._grace_timer = self.send_after(self.config.grace_poll_interval_s, _GracePoll())

    def _exit_grace(self):
        self.cancel_timer(self._grace_timer)
        self._grace_timer = None
        self._close_grace_client()

    def _grace_poll(self):
        try:
            self._identify(self._grace_client)
        except SimulatorError as e:
            self._on_grace_failure(e)
            return

        with self._state_lock:
            self._state.last_successful_contact = self._clock()

        if self._transport_connected:
            # Only the poll failed; the link is fine, go back to normal polling
            logger.info("Simulator responding again, leaving grace period")
            self._exit_grace()
            self._set_status(DetectionStatus.POLLING)
            self._schedule_poll(0.0)
        else:
            self._grace_timer = self.send_after(self.config.grace_poll_interval_s, _GracePoll())

    def _on_grace_failure(self, error: Exception):
        elapsed = self._clock() - self._state.last_successful_contact
        if elapsed < self.config.grace_period_s:
            logger.debug(f"Grace probe failed ({elapsed:.1f}s without contact): {error}")
            self._grace_timer = self.send_after(self.config.grace_poll_interval_s, _GracePoll())
            return

        logger.warning(f"Grace period expired after {elapsed:.1f}s, deactivating train")
        self._exit_grace()
        self._deactivate()
        self._set_status(DetectionStatus.INACTIVE)
        if self._transport_connected:
            self._schedule_poll(self.config.poll_interval_s)

    def _close_grace_client(self):
        client, self._grace_client = self._grace_client, None
        if client is not None:
            client.close()

    # -------------------------------------------------------------------------
    # Identification
    # -------------------------------------------------------------------------

    def _handle_identifier(self, identifier: str):
        with self._state_lock:
            if identifier == self._state.current_identifier:
                self._state.last_check = datetime.now()
                return
            previous = self._state.active_train

        logger.info(f"Train identifier changed: {identifier}")
        matches = self._store.find_trains_by_identifier(identifier)

        train = None
        error = None
        if len(matches) == 1:
            train = matches[0]
        elif len(matches) > 1:
            error = f"multiple trains match {identifier}"
            logger.warning(f"Multiple trains match identifier {identifier}: "
                           f"{', '.join(t.name for t in matches)}")
        else:
            logger.info(f"No train configured for identifier {identifier}")

        with self._state_lock:
            self._state.current_identifier = identifier
            self._state.active_train = train
            self._state.detection_error = error
            self._state.last_check = datetime.now()

        self._notify(TrainDetected(identifier=identifier, train=train))
        if len(matches) > 1:
            self._notify(MultipleTrainsMatch(identifier=identifier, trains=matches))
        if _train_id(previous) != _train_id(train):
            if train is not None:
                logger.info(f"Active train: {train.name}")
            self._notify(TrainChanged(train=train))

    def _deactivate(self):
        with self._state_lock:
            previous = self._state.active_train
            self._state.active_train = None
            self._state.current_identifier = None
            self._state.detection_error = None
            self._state.last_successful_contact = None

        if previous is not None:
            logger.info(f"Train deactivated: {previous.name}")
            self._notify(TrainChanged(train=None))

    def _set_status(self, status: DetectionStatus):
        with self._state_lock:
            if self._state.status == status:
                return
            logger.debug(f"Detection {self._state.status.value} -> {status.value}")
            self._state.status = status

    def _notify(self, event: Any):
        for callback in self._listeners:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Detection listener error: {e}")

    @property
    def stats(self) -> dict:
        stats = super().stats
        stats.update({
            "polls": self._polls,
            "poll_failures": self._poll_failures,
            "grace_entries": self._grace_entries,
            "status": self.status.value,
        })
        return stats
