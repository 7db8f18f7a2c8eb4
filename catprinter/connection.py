"""
Wireless link lifecycle for the cat printer.

ConnectionManager owns the transport, the discovered endpoints and the
connection state. Every state change goes through the TRANSITIONS table;
every delay goes through the injected Clock.
"""

import enum
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, Optional

from . import codec
from .clock import Clock
from .exceptions import (
    CharacteristicsNotFoundError,
    ConnectFailedError,
    InvalidTransitionError,
    TransportError,
    WriteFailedError,
)
from .transport import BaseTransport, CONTROL_ID, DATA_ID, NOTIFY_ID, short_id

logger = logging.getLogger(__name__)

CONTROL = 'control'
DATA = 'data'


class ConnectionState(enum.Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    DEGRADED = 'degraded'


class ConnectionEvent(enum.Enum):
    CONNECT = 'connect'
    CONNECTED = 'connected'
    ATTEMPT_FAILED = 'attempt_failed'
    PROBE_FAILED = 'probe_failed'
    DISCONNECT = 'disconnect'


TRANSITIONS = {
    (ConnectionState.DISCONNECTED, ConnectionEvent.CONNECT): ConnectionState.CONNECTING,
    (ConnectionState.CONNECTING, ConnectionEvent.CONNECTED): ConnectionState.CONNECTED,
    (ConnectionState.CONNECTING, ConnectionEvent.ATTEMPT_FAILED): ConnectionState.DISCONNECTED,
    (ConnectionState.CONNECTED, ConnectionEvent.PROBE_FAILED): ConnectionState.DEGRADED,
}
# Shutdown is allowed from every state
TRANSITIONS.update({
    (state, ConnectionEvent.DISCONNECT): ConnectionState.DISCONNECTED
    for state in ConnectionState
})


@dataclass
class Endpoints:
    """Characteristic UUIDs discovered on a connected device."""

    control: str
    data: str
    notify: Optional[str] = None

    def uuid_for(self, endpoint: str) -> str:
        if endpoint == CONTROL:
            return self.control
        if endpoint == DATA:
            return self.data
        raise ValueError(f"Unknown endpoint: {endpoint}")


def find_endpoints(uuids: Iterable[str]) -> Endpoints:
    """
    Locate the printer endpoints among discovered characteristics.

    Args:
        uuids: Characteristic UUIDs reported by the device

    Returns:
        Endpoints with control and data set

    Raises:
        CharacteristicsNotFoundError: If the control or data endpoint is missing
    """
    found = {}
    for uuid in uuids:
        found.setdefault(short_id(uuid), uuid)

    control = found.get(CONTROL_ID)
    data = found.get(DATA_ID)
    if control is None or data is None:
        raise CharacteristicsNotFoundError(
            "Could not find required characteristics",
            context={
                'control': control or 'missing',
                'data': data or 'missing',
                'found': ','.join(sorted(found)) or 'none',
            }
        )

    return Endpoints(control=control, data=data, notify=found.get(NOTIFY_ID))


class ConnectionManager:
    """Owns the link to one printer and keeps it usable."""

    def __init__(self, address: str, transport: BaseTransport, clock: Optional[Clock] = None,
                 connect_attempts: int = 3, connect_timeout: float = 30.0,
                 connect_retry_delay: float = 2.0, write_attempts: int = 3,
                 write_retry_delay: float = 1.0):
        """
        Initialize connection manager.

        Args:
            address: Bluetooth address of the printer
            transport: Transport used for every device operation
            clock: Time source for retry delays
            connect_attempts: Connection attempts before giving up
            connect_timeout: Seconds allowed for one connection attempt
            connect_retry_delay: Pause between connection attempts
            write_attempts: Write attempts before giving up
            write_retry_delay: Pause after reconnecting before retrying a write
        """
        self.address = address
        self.transport = transport
        self.clock = clock or Clock()
        self.connect_attempts = connect_attempts
        self.connect_timeout = connect_timeout
        self.connect_retry_delay = connect_retry_delay
        self.write_attempts = write_attempts
        self.write_retry_delay = write_retry_delay

        self.endpoints: Optional[Endpoints] = None
        self.last_notification: Optional[codec.Frame] = None
        self._state = ConnectionState.DISCONNECTED
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, address: str, transport: BaseTransport, config: dict,
                    clock: Optional[Clock] = None) -> 'ConnectionManager':
        """
        Build a connection manager from the ``printer`` config section.

        Args:
            address: Bluetooth address of the printer
            transport: Transport to use
            config: Printer configuration dictionary
            clock: Optional time source

        Returns:
            ConnectionManager instance
        """
        return cls(
            address,
            transport,
            clock=clock,
            connect_attempts=config.get('connect_attempts', 3),
            connect_timeout=config.get('connect_timeout', 30.0),
            connect_retry_delay=config.get('connect_retry_delay', 2.0),
            write_attempts=config.get('write_attempts', 3),
            write_retry_delay=config.get('write_retry_delay', 1.0),
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def _transition(self, event: ConnectionEvent):
        key = (self._state, event)
        if key not in TRANSITIONS:
            raise InvalidTransitionError(
                f"Illegal connection event {event.value} in state {self._state.value}",
                context={'address': self.address}
            )
        previous, self._state = self._state, TRANSITIONS[key]
        logger.debug(f"[Connection] {previous.value} --{event.value}--> {self._state.value}")

    @contextmanager
    def session(self):
        """
        Hold the link for a sequence of writes.

        Health checks are skipped while a session is open, so their probes
        never land between the writes of a transfer.
        """
        with self._lock:
            yield self

    def ensure_connected(self):
        """
        Make sure the link is up, reconnecting if needed.

        A connected link is probed with a status request first. A failed
        probe degrades the link, which is torn down and reconnected.

        Raises:
            ConnectFailedError: If every connection attempt failed
        """
        with self._lock:
            if self._state is ConnectionState.CONNECTED:
                if self._probe():
                    return
                self._transition(ConnectionEvent.PROBE_FAILED)
                logger.warning(f"[Connection] Connection test failed for {self.address}, reconnecting...")
                self._teardown()

            self._connect_with_retry()

    def _connect_with_retry(self):
        last_error = None
        for attempt in range(1, self.connect_attempts + 1):
            self._transition(ConnectionEvent.CONNECT)
            try:
                self._connect_once()
            except Exception as e:
                last_error = e
                logger.warning(f"[Connection] Connection attempt {attempt}/{self.connect_attempts} failed: {e}")
                self.transport.disconnect()
                self.endpoints = None
                self._transition(ConnectionEvent.ATTEMPT_FAILED)
                if attempt < self.connect_attempts:
                    self.clock.sleep(self.connect_retry_delay)
                continue

            self._transition(ConnectionEvent.CONNECTED)
            logger.info(f"[Connection] Connected to printer {self.address}")
            return

        logger.error(f"[Connection] Failed to connect to {self.address} after {self.connect_attempts} attempts")
        raise ConnectFailedError(
            f"Failed to connect after {self.connect_attempts} attempts",
            context={'address': self.address, 'last_error': str(last_error)}
        ) from last_error

    def _connect_once(self):
        self.transport.connect(self.address, self.connect_timeout)
        endpoints = find_endpoints(self.transport.characteristics())

        if endpoints.notify:
            try:
                self.transport.subscribe(endpoints.notify, self._on_notification)
            except TransportError as e:
                logger.debug(f"[Connection] Could not subscribe to notifications: {e}")

        self.endpoints = endpoints

    def _probe(self) -> bool:
        try:
            self._write(CONTROL, codec.status_request())
            return True
        except TransportError as e:
            logger.debug(f"[Connection] Status probe failed: {e}")
            return False

    def _teardown(self):
        self.transport.disconnect()
        self.endpoints = None
        self._transition(ConnectionEvent.DISCONNECT)
        logger.info(f"[Connection] Disconnected from printer {self.address}")

    def _write(self, endpoint: str, data: bytes):
        if self._state is not ConnectionState.CONNECTED or self.endpoints is None:
            raise TransportError(
                "Link is not established",
                context={'address': self.address, 'state': self._state.value}
            )
        self.transport.write(self.endpoints.uuid_for(endpoint), data)

    def write_with_retry(self, endpoint: str, data: bytes):
        """
        Write to an endpoint, reconnecting between failed attempts.

        Args:
            endpoint: CONTROL or DATA
            data: Bytes to write

        Raises:
            WriteFailedError: If every attempt failed or the link could not be restored
        """
        with self._lock:
            last_error = None
            for attempt in range(1, self.write_attempts + 1):
                try:
                    self._write(endpoint, data)
                    return
                except TransportError as e:
                    last_error = e
                    logger.warning(f"[Connection] Write attempt {attempt}/{self.write_attempts} to {endpoint} failed: {e}")

                if attempt < self.write_attempts:
                    try:
                        self.ensure_connected()
                    except ConnectFailedError as e:
                        raise WriteFailedError(
                            "Failed to reconnect during write",
                            context={'address': self.address, 'endpoint': endpoint}
                        ) from e
                    self.clock.sleep(self.write_retry_delay)

            raise WriteFailedError(
                f"Failed to write after {self.write_attempts} attempts",
                context={'address': self.address, 'endpoint': endpoint, 'length': len(data)}
            ) from last_error

    def health_check(self) -> bool:
        """
        Probe an idle link once.

        Returns:
            False if the link is down or the probe failed, True otherwise
        """
        if not self._lock.acquire(blocking=False):
            logger.debug("[Connection] Link busy, skipping health check")
            return True

        try:
            if self._state is not ConnectionState.CONNECTED:
                return False

            if self._probe():
                logger.debug("[Connection] Connection health check passed")
                return True

            logger.warning("[Connection] Health check failed, connection may be broken")
            self._transition(ConnectionEvent.PROBE_FAILED)
            self._teardown()
            return False
        finally:
            self._lock.release()

    def _on_notification(self, data: bytes):
        frame = codec.parse_notification(data)
        if frame is None:
            logger.debug(f"[Connection] Ignoring notification: {data.hex()}")
            return

        self.last_notification = frame
        if frame.opcode == codec.PRINT_COMPLETE:
            logger.info("[Connection] Printer reported print complete")
        else:
            logger.debug(f"[Connection] Notification: {frame!r}")

    def shutdown(self):
        """Drop the link and release the transport."""
        with self._lock:
            self.transport.disconnect()
            self.endpoints = None
            self._transition(ConnectionEvent.DISCONNECT)
            self.transport.close()
            logger.info(f"[Connection] Connection to {self.address} shut down")

    def get_status(self) -> dict:
        status = {
            'address': self.address,
            'state': self._state.value,
            'connected': self.is_connected(),
        }
        if self.endpoints:
            status['control'] = self.endpoints.control
            status['data'] = self.endpoints.data
        if self.last_notification:
            status['last_notification'] = repr(self.last_notification)
        return status
