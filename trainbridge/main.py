"""
Train Bridge Application
========================

Main entry point that wires the serial devices, the simulator API and
the dispatch engines together.

    DeviceManager ──inputs/devices──> LeverController, ButtonController
    DeviceManager ──devices─────────> OutputController
    SimulatorConnection ──status────> TrainDetection, OutputController
    TrainDetection ──train changed──> LeverController, ButtonController, OutputController
    OutputController ──SetOutput────> DeviceManager
"""

import os
import signal
import sys
import time
import argparse
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .device.connection import DeviceConfig, DeviceManager
from .simulator.client import DEFAULT_BASE_URL, SimulatorClient, SimulatorConfig
from .simulator.connection import SimulatorConnection
from .train.button_controller import ButtonController
from .train.detection import DetectionConfig, TrainDetection
from .train.lever_controller import LeverController
from .train.output_controller import OutputController
from .train.store import TrainStore

logger = logging.getLogger(__name__)


@dataclass
class BridgeConfig:
    """Main bridge configuration."""
    # Train configuration file
    config_path: Optional[str] = None

    # Serial devices (empty = auto-discover)
    ports: List[str] = field(default_factory=list)
    baudrate: int = 115200
    reconnect_interval_s: float = 5.0

    simulator: SimulatorConfig = field(default_factory=SimulatorConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)

    # Status log cadence
    status_interval_s: float = 60.0


class Bridge:
    """
    Owns every subsystem and their lifecycle.

    Subsystems talk only through listener callbacks that post into the
    receiving worker's inbox.
    """

    def __init__(self, config: Optional[BridgeConfig] = None, store: Optional[TrainStore] = None):
        self.config = config or BridgeConfig()
        self._store = store
        self._devices: Optional[DeviceManager] = None
        self._monitor: Optional[SimulatorConnection] = None
        self._detection: Optional[TrainDetection] = None
        self._levers: Optional[LeverController] = None
        self._buttons: Optional[ButtonController] = None
        self._outputs: Optional[OutputController] = None
        self._clients: List[SimulatorClient] = []
        self._running = False

    def _client(self) -> SimulatorClient:
        client = SimulatorClient.from_config(self.config.simulator)
        self._clients.append(client)
        return client

    def start(self) -> bool:
        """Build and start all subsystems."""
        logger.info("Starting train bridge...")

        if self._store is None:
            if self.config.config_path:
                try:
                    self._store = TrainStore.load(self.config.config_path)
                except (OSError, ValueError, KeyError) as e:
                    logger.error(f"Failed to load train configuration: {e}")
                    return False
            else:
                logger.warning("No train configuration given, no trains will be recognised")
                self._store = TrainStore()

        self._devices = DeviceManager(
            [DeviceConfig(port=p, baudrate=self.config.baudrate) for p in self.config.ports],
            reconnect_interval_s=self.config.reconnect_interval_s,
        )
        self._monitor = SimulatorConnection(
            self._client(), check_interval_s=self.config.simulator.health_check_interval_s)
        self._detection = TrainDetection(self._client(), self._store, self.config.detection)
        self._levers = LeverController(self._devices, self._store, self._client())
        self._buttons = ButtonController(self._devices, self._store, self._client())
        self._outputs = OutputController(self._devices, self._store, self._client())

        # Wiring
        self._monitor.add_listener(self._detection.post)
        self._monitor.add_listener(self._outputs.post)
        self._detection.add_listener(self._outputs.post)
        self._devices.add_devices_listener(self._outputs.post)
        for worker in (self._levers, self._buttons):
            self._detection.add_listener(worker.post)
            self._devices.add_devices_listener(worker.post)
            self._devices.add_input_listener(worker.post)

        self._levers.start()
        self._buttons.start()
        self._outputs.start()
        self._detection.start()
        self._devices.start()
        self._monitor.start()

        self._running = True
        logger.info("Train bridge started")
        return True

    def stop(self):
        """Stop all subsystems, producers first."""
        logger.info("Stopping train bridge...")
        self._running = False

        if self._monitor:
            self._monitor.stop()
        if self._devices:
            self._devices.stop()
        for worker in (self._detection, self._outputs, self._buttons, self._levers):
            if worker:
                worker.stop()
        for client in self._clients:
            client.close()
        self._clients = []

        logger.info("Train bridge stopped")

    def run(self):
        """Block until stopped, logging status periodically."""
        last_status = time.monotonic()
        while self._running:
            try:
                time.sleep(0.5)
                if time.monotonic() - last_status >= self.config.status_interval_s:
                    logger.info(f"Status: {self.status()}")
                    last_status = time.monotonic()
            except KeyboardInterrupt:
                logger.info("Interrupted by user")
                break

    def sync(self):
        """Force a train detection pass."""
        if self._detection:
            self._detection.sync()

    def status(self) -> dict:
        train = self._detection.get_active_train() if self._detection else None
        return {
            "simulator_connected": self._monitor.connected if self._monitor else False,
            "active_train": train.name if train else None,
            "devices": [d.port for d in self._devices.connected_devices()] if self._devices else [],
            "detection": self._detection.stats if self._detection else {},
            "levers": self._levers.stats if self._levers else {},
            "buttons": self._buttons.stats if self._buttons else {},
            "outputs": self._outputs.stats if self._outputs else {},
        }


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Hardware controls bridge for Train Sim World")
    parser.add_argument("--config", "-c", default=None,
                        help="Train configuration JSON file")
    parser.add_argument("--port", "-p", action="append", default=[],
                        help="Serial port (repeatable; default: auto-discover)")
    parser.add_argument("--baudrate", type=int, default=115200,
                        help="Serial baud rate")
    parser.add_argument("--sim-url", default=DEFAULT_BASE_URL,
                        help="Simulator API base URL")
    parser.add_argument("--api-key", default=os.environ.get("TSW_API_KEY", ""),
                        help="Simulator API key (default: $TSW_API_KEY)")
    parser.add_argument("--poll-interval", type=float, default=5.0,
                        help="Train detection poll interval (s)")
    parser.add_argument("--grace-period", type=float, default=30.0,
                        help="Keep the active train this long after losing the simulator (s)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Verbose logging")

    args = parser.parse_args()

    # Setup logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = BridgeConfig(
        config_path=args.config,
        ports=args.port,
        baudrate=args.baudrate,
        simulator=SimulatorConfig(base_url=args.sim_url, api_key=args.api_key),
        detection=DetectionConfig(poll_interval_s=args.poll_interval, grace_period_s=args.grace_period),
    )

    bridge = Bridge(config)

    # Signal handler for graceful shutdown
    def signal_handler(sig, frame):
        logger.info("Shutdown signal received")
        bridge.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if bridge.start():
        logger.info("Train bridge running. Press Ctrl+C to stop.")
        bridge.run()
    else:
        logger.error("Failed to start train bridge")
        sys.exit(1)


if __name__ == "__main__":
    main()
