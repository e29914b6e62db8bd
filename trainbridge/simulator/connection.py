"""
Simulator Connection Monitor
============================

Background health check of the simulator API. Publishes
SimulatorStatusChanged whenever reachability flips, which drives the
train detection state machine between idle, polling and grace.
"""

import threading
from typing import Callable, List, Optional
import logging

from .client import SimulatorClient, SimulatorError
from ..events import SimulatorStatusChanged

logger = logging.getLogger(__name__)


class SimulatorConnection:
    """Periodically probes /info and tracks whether the simulator is up."""

    def __init__(self, client: SimulatorClient, check_interval_s: float = 2.0):
        self._client = client
        self.check_interval_s = check_interval_s
        self._connected = False
        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._listeners: List[Callable[[SimulatorStatusChanged], None]] = []

        # Statistics
        self._checks = 0
        self._failures = 0

    @property
    def connected(self) -> bool:
        return self._connected

    def add_listener(self, callback: Callable[[SimulatorStatusChanged], None]):
        self._listeners.append(callback)

    def start(self) -> bool:
        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="simulator-connection", daemon=True)
        self._thread.start()
        logger.info(f"Simulator monitor started for {self._client.base_url}")
        return True

    def stop(self):
        self._running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
        logger.info("Simulator monitor stopped")

    def check(self) -> bool:
        """Probe the simulator once and publish any status change."""
        self._checks += 1
        try:
            self._client.info()
            connected = True
        except SimulatorError as e:
            self._failures += 1
            logger.debug(f"Simulator health check failed: {e}")
            connected = False

        if connected != self._connected:
            self._connected = connected
            if connected:
                logger.info("Simulator connected")
            else:
                logger.warning("Simulator connection lost")
            self._notify(SimulatorStatusChanged(connected=connected))

        return connected

    def _loop(self):
        while self._running:
            self.check()
            if self._stop_event.wait(self.check_interval_s):
                break

    def _notify(self, event: SimulatorStatusChanged):
        for callback in self._listeners:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Simulator listener error: {e}")

    @property
    def stats(self) -> dict:
        return {
            "connected": self._connected,
            "checks": self._checks,
            "failures": self._failures,
        }
