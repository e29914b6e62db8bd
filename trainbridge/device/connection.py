"""
Device Connection
=================

Serial link to the controller boards that carry the physical levers and
buttons.

Each DeviceConnection owns one pyserial port and a reader thread. Bytes
are reassembled into frames (framing.py) and decoded into messages
(protocol.py). The read loop is the decode boundary: a bad frame is
counted and dropped, it never reaches the rest of the bridge.

Connection lifecycle:
    DISCONNECTED -> CONNECTING   port opened, IdentityRequest sent
    CONNECTING   -> CONNECTED    IdentityResponse received (config_id known)
    any          -> DISCONNECTED port error or stop()

DeviceManager keeps one connection per port, retries failed ports and
republishes device-set changes and input values to listeners.
"""

import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional
import logging

import serial
from serial.tools import list_ports

from . import protocol
from .framing import FrameDecoder, add_framing
from ..events import DevicesChanged, InputValueChanged

logger = logging.getLogger(__name__)


class DeviceStatus(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class DeviceConfig:
    """Configuration for one serial device."""
    port: str = "/dev/ttyACM0"
    baudrate: int = 115200
    timeout: float = 0.05               # Serial read timeout (s)

    # Identity handshake
    identity_timeout_s: float = 2.0     # Resend IdentityRequest after this


@dataclass
class DeviceInfo:
    """Snapshot of a device as seen by the rest of the bridge."""
    port: str
    status: DeviceStatus = DeviceStatus.DISCONNECTED
    config_id: Optional[int] = None
    firmware_version: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.status == DeviceStatus.CONNECTED


class DeviceConnection:
    """One serial port speaking the framed binary protocol."""

    def __init__(self, config: DeviceConfig, serial_factory: Callable = serial.Serial):
        self.config = config
        self._serial_factory = serial_factory
        self._serial = None
        self._decoder = FrameDecoder()
        self._lock = threading.Lock()
        self._running = False
        self._read_thread: Optional[threading.Thread] = None

        self._status = DeviceStatus.DISCONNECTED
        self._config_id: Optional[int] = None
        self._firmware_version: Optional[str] = None
        self._request_id: Optional[int] = None
        self._request_sent_at = 0.0
        self.last_heartbeat: Optional[float] = None

        # Callbacks
        self._message_callbacks: List[Callable[[str, protocol.Message], None]] = []
        self._status_callbacks: List[Callable[["DeviceConnection"], None]] = []

        # Statistics
        self._messages_sent = 0
        self._messages_received = 0
        self._parse_errors = 0
        self._send_errors = 0

    @property
    def port(self) -> str:
        return self.config.port

    @property
    def status(self) -> DeviceStatus:
        return self._status

    @property
    def info(self) -> DeviceInfo:
        with self._lock:
            return DeviceInfo(
                port=self.config.port,
                status=self._status,
                config_id=self._config_id,
                firmware_version=self._firmware_version,
            )

    def add_message_callback(self, callback: Callable[[str, protocol.Message], None]):
        """Register callback(port, message) for every decoded message."""
        self._message_callbacks.append(callback)

    def add_status_callback(self, callback: Callable[["DeviceConnection"], None]):
        """Register callback(connection) for status transitions."""
        self._status_callbacks.append(callback)

    def start(self) -> bool:
        """Open the port, start the reader and begin the identity handshake."""
        try:
            self._serial = self._serial_factory(
                port=self.config.port,
                baudrate=self.config.baudrate,
                timeout=self.config.timeout
            )
            self._serial.reset_input_buffer()
        except (serial.SerialException, OSError) as e:
            logger.error(f"Failed to open serial port {self.config.port}: {e}")
            self._serial = None
            return False

        # Partial frames from a previous session are meaningless now
        self._decoder.reset()

        self._set_status(DeviceStatus.CONNECTING)
        self.request_identity()

        self._running = True
        self._read_thread = threading.Thread(
            target=self._read_loop, name=f"device-{self.config.port}", daemon=True)
        self._read_thread.start()
        logger.info(f"Device connection started on {self.config.port}")
        return True

    def stop(self):
        """Stop the reader and close the port."""
        self._running = False
        if self._read_thread and self._read_thread is not threading.current_thread():
            self._read_thread.join(timeout=1.0)
        self._read_thread = None
        self._close_port()
        self._set_status(DeviceStatus.DISCONNECTED)
        logger.info(f"Device connection on {self.config.port} stopped")

    def request_identity(self):
        """Send (or resend) the IdentityRequest handshake."""
        self._request_id = random.getrandbits(32)
        self._request_sent_at = time.monotonic()
        self.send_message(protocol.IdentityRequest(request_id=self._request_id))

    def identity_overdue(self, now: Optional[float] = None) -> bool:
        """True if still waiting for an IdentityResponse past the timeout."""
        if self._status != DeviceStatus.CONNECTING:
            return False
        now = time.monotonic() if now is None else now
        return now - self._request_sent_at >= self.config.identity_timeout_s

    def send_message(self, message: protocol.Message) -> bool:
        """
        Encode, frame and write a message.

        Returns:
            True if the bytes were handed to the port
        """
        try:
            frame = add_framing(protocol.encode(message))
        except protocol.EncodeError as e:
            self._send_errors += 1
            logger.warning(f"Cannot encode {type(message).__name__} for {self.config.port}: {e}")
            return False

        port = self._serial
        if port is None or not port.is_open:
            self._send_errors += 1
            logger.debug(f"Dropping {type(message).__name__}: {self.config.port} not open")
            return False

        try:
            port.write(frame)
        except (serial.SerialException, OSError) as e:
            self._send_errors += 1
            logger.warning(f"Failed to send {type(message).__name__} to {self.config.port}: {e}")
            return False

        self._messages_sent += 1
        return True

    def feed(self, data: bytes):
        """Process raw bytes read from the port."""
        _, payloads = self._decoder.feed(data)
        for payload in payloads:
            try:
                message = protocol.decode(payload)
            except protocol.ProtocolError as e:
                self._parse_errors += 1
                logger.debug(f"Dropping message from {self.config.port}: {e}")
                continue

            self._messages_received += 1
            self._handle_message(message)

    def _read_loop(self):
        """Background thread reading from the serial port."""
        while self._running:
            port = self._serial
            if port is None:
                break
            try:
                data = port.read(port.in_waiting or 1)
            except (serial.SerialException, OSError) as e:
                logger.error(f"Read error on {self.config.port}: {e}")
                self._running = False
                self._close_port()
                self._set_status(DeviceStatus.DISCONNECTED)
                break

            if data:
                self.feed(data)

    def _handle_message(self, message: protocol.Message):
        if isinstance(message, protocol.IdentityResponse):
            if message.request_id != self._request_id:
                logger.debug(f"Ignoring stale identity response on {self.config.port}")
                return
            with self._lock:
                self._config_id = message.config_id
                self._firmware_version = message.version
            logger.info(
                f"Device on {self.config.port} identified: config {message.config_id}, "
                f"firmware {message.version}")
            self._set_status(DeviceStatus.CONNECTED)

        elif isinstance(message, protocol.Heartbeat):
            self.last_heartbeat = time.monotonic()

        elif isinstance(message, (protocol.CalibrationError, protocol.EncoderError)):
            logger.warning(f"{type(message).__name__} on {self.config.port} pin {message.pin}")

        elif isinstance(message, protocol.ConfigurationError):
            logger.warning(f"Device on {self.config.port} rejected configuration {message.config_id}")

        for callback in self._message_callbacks:
            try:
                callback(self.config.port, message)
            except Exception as e:
                logger.warning(f"Message callback error: {e}")

    def _set_status(self, status: DeviceStatus):
        with self._lock:
            if status == self._status:
                return
            self._status = status
            if status == DeviceStatus.DISCONNECTED:
                self._config_id = None
                self._firmware_version = None

        for callback in self._status_callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.warning(f"Status callback error: {e}")

    def _close_port(self):
        port, self._serial = self._serial, None
        if port is not None:
            try:
                port.close()
            except (serial.SerialException, OSError) as e:
                logger.debug(f"Error closing {self.config.port}: {e}")

    @property
    def stats(self) -> dict:
        """Get connection statistics."""
        return {
            "messages_sent": self._messages_sent,
            "messages_received": self._messages_received,
            "parse_errors": self._parse_errors,
            "send_errors": self._send_errors,
        }


def discover_ports() -> List[str]:
    """List USB serial ports that could host a controller board."""
    return [p.device for p in list_ports.comports() if p.vid is not None]


class DeviceManager:
    """
    Owns the device connections and publishes their state.

    Implements the transport interface used by the dispatch engines:
    list_devices(), send_message(port, message) and listener hooks for
    device-set changes and input values.
    """

    def __init__(
        self,
        configs: Optional[List[DeviceConfig]] = None,
        serial_factory: Callable = serial.Serial,
        reconnect_interval_s: float = 5.0,
    ):
        self._configs = list(configs or [])
        self._serial_factory = serial_factory
        self._reconnect_interval_s = reconnect_interval_s
        self._connections: Dict[str, DeviceConnection] = {}
        self._lock = threading.Lock()
        self._running = False
        self._stop_event = threading.Event()
        self._supervisor: Optional[threading.Thread] = None

        self._devices_listeners: List[Callable[[DevicesChanged], None]] = []
        self._input_listeners: List[Callable[[InputValueChanged], None]] = []

    def add_devices_listener(self, callback: Callable[[DevicesChanged], None]):
        self._devices_listeners.append(callback)

    def add_input_listener(self, callback: Callable[[InputValueChanged], None]):
        self._input_listeners.append(callback)

    def start(self) -> bool:
        """Open every configured port (or discovered ports) and supervise them."""
        if not self._configs:
            self._configs = [DeviceConfig(port=p) for p in discover_ports()]
            logger.info(f"Discovered serial ports: {[c.port for c in self._configs]}")

        for config in self._configs:
            self.add_device(config)

        self._running = True
        self._stop_event.clear()
        self._supervisor = threading.Thread(target=self._supervise, name="device-manager", daemon=True)
        self._supervisor.start()
        return True

    def stop(self):
        self._running = False
        self._stop_event.set()
        if self._supervisor:
            self._supervisor.join(timeout=2.0)
            self._supervisor = None

        with self._lock:
            connections = list(self._connections.values())
        for connection in connections:
            connection.stop()

    def add_device(self, config: DeviceConfig) -> DeviceConnection:
        """Create and open a connection for one port."""
        connection = DeviceConnection(config, serial_factory=self._serial_factory)
        connection.add_status_callback(self._on_status_changed)
        connection.add_message_callback(self._on_message)
        with self._lock:
            self._connections[config.port] = connection
        connection.start()
        return connection

    def list_devices(self) -> List[DeviceInfo]:
        with self._lock:
            connections = list(self._connections.values())
        return [c.info for c in connections]

    def connected_devices(self) -> List[DeviceInfo]:
        return [d for d in self.list_devices() if d.connected]

    def send_message(self, port: str, message: protocol.Message) -> bool:
        """Send to one device; False if the port is unknown or not identified."""
        with self._lock:
            connection = self._connections.get(port)
        if connection is None or connection.status != DeviceStatus.CONNECTED:
            logger.warning(f"Cannot send {type(message).__name__}: device {port} not connected")
            return False
        return connection.send_message(message)

    def check_connections(self):
        """Reopen dropped ports and retry overdue identity handshakes."""
        with self._lock:
            connections = list(self._connections.values())

        for connection in connections:
            if connection.status == DeviceStatus.DISCONNECTED:
                logger.info(f"Reconnecting {connection.port}")
                connection.start()
            elif connection.identity_overdue():
                logger.debug(f"Identity handshake on {connection.port} timed out, retrying")
                connection.request_identity()

    def _supervise(self):
        while self._running:
            if self._stop_event.wait(self._reconnect_interval_s):
                break
            try:
                self.check_connections()
            except Exception as e:
                logger.error(f"Device supervisor error: {e}")

    def _on_status_changed(self, connection: DeviceConnection):
        event = DevicesChanged(devices=self.list_devices())
        for callback in self._devices_listeners:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Devices listener error: {e}")

    def _on_message(self, port: str, message: protocol.Message):
        if not isinstance(message, protocol.InputValue):
            return

        event = InputValueChanged(port=port, pin=message.pin, value=message.value)
        for callback in self._input_listeners:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Input listener error: {e}")
