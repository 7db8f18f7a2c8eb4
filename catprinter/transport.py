"""
Device transports for the cat printer.

A transport knows how to open a link to one device, list its GATT
characteristics and write to them. ConnectionManager is the only caller.
BleakTransport talks to real hardware over BLE; SimulatedTransport accepts
everything and records what was written.
"""

import abc
import asyncio
import concurrent.futures
import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from bleak import BleakClient # type: ignore

from .exceptions import TransportError

logger = logging.getLogger(__name__)

BLUETOOTH_BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"

CONTROL_ID = "ae01"
NOTIFY_ID = "ae02"
DATA_ID = "ae03"

# Extra seconds granted on top of the BleakClient connect timeout
CONNECT_GRACE = 5.0

NotificationCallback = Callable[[bytes], None]


def full_uuid(short_id: str) -> str:
    """Expand a 16-bit identifier to a 128-bit Bluetooth base UUID."""
    return f"0000{short_id.lower()}{BLUETOOTH_BASE_UUID_SUFFIX}"


def short_id(uuid: str) -> str:
    """
    Get the 16-bit identifier of a characteristic UUID.

    Args:
        uuid: Short ("ae01") or full 128-bit UUID string

    Returns:
        Four lowercase hex digits
    """
    uuid = uuid.lower()
    if len(uuid) == 36 and uuid.endswith(BLUETOOTH_BASE_UUID_SUFFIX):
        return uuid[4:8]
    return uuid[-4:]


class BaseTransport(metaclass=abc.ABCMeta):
    """Capability interface over one wireless device link."""

    @abc.abstractmethod
    def connect(self, address: str, timeout: float) -> None:
        """Open a link to the device or raise TransportError."""
        raise NotImplementedError

    @abc.abstractmethod
    def characteristics(self) -> List[str]:
        """List the characteristic UUIDs exposed by the connected device."""
        raise NotImplementedError

    @abc.abstractmethod
    def write(self, uuid: str, data: bytes) -> None:
        """Write bytes to a characteristic or raise TransportError."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(self, uuid: str, callback: NotificationCallback) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def disconnect(self) -> None:
        """Drop the current link. Must not raise."""
        raise NotImplementedError

    def close(self) -> None:
        """Release every resource owned by the transport."""
        self.disconnect()

    @property
    @abc.abstractmethod
    def is_connected(self) -> bool:
        raise NotImplementedError


class BleakTransport(BaseTransport):
    """
    BLE transport built on bleak.

    Bleak is asyncio based, so the transport runs its own event loop on a
    daemon thread and blocks the calling thread on each operation.
    """

    def __init__(self, write_timeout: float = 5.0, write_with_response: bool = False):
        """
        Initialize BLE transport.

        Args:
            write_timeout: Seconds to wait for a single characteristic write
            write_with_response: Use acknowledged GATT writes
        """
        self.write_timeout = write_timeout
        self.write_with_response = write_with_response
        self.client: Optional[BleakClient] = None
        self.address = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._loop_ready = threading.Event()

    def _start_event_loop(self):
        """Start asyncio event loop in a separate thread."""
        if self._thread and self._thread.is_alive():
            return

        def run_loop():
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)
            self._loop_ready.set()
            self._loop.run_forever()
            self._loop.close()

        self._loop_ready.clear()
        self._thread = threading.Thread(target=run_loop, name='ble-loop', daemon=True)
        self._thread.start()
        self._loop_ready.wait()
        logger.debug("[BLE] Event loop started")

    def _run(self, coro, timeout: float):
        """Run a coroutine on the transport loop and wait for its result."""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise TransportError(
                "BLE operation timed out",
                context={'address': self.address, 'timeout': timeout}
            )
        except Exception as e:
            # BleakError, but also D-Bus and OS level errors of any type
            raise TransportError(
                f"BLE operation failed: {e}",
                context={'address': self.address, 'error': type(e).__name__}
            ) from e

    def connect(self, address: str, timeout: float) -> None:
        self._start_event_loop()
        self.disconnect()
        self.address = address

        logger.info(f"[BLE] Connecting to {address} (timeout {timeout}s)...")
        client = BleakClient(address, timeout=timeout)
        self._run(client.connect(), timeout + CONNECT_GRACE)
        self.client = client
        logger.info(f"[BLE] Connected to {address}")

    def characteristics(self) -> List[str]:
        if not self.is_connected:
            raise TransportError("Not connected", context={'address': self.address})

        uuids = []
        for service in self.client.services:
            for char in service.characteristics:
                logger.debug(f"[BLE] {service.uuid} -> {char.uuid} [{','.join(char.properties)}]")
                uuids.append(char.uuid)
        return uuids

    def write(self, uuid: str, data: bytes) -> None:
        if not self.is_connected:
            raise TransportError("Not connected", context={'address': self.address})

        self._run(
            self.client.write_gatt_char(uuid, bytes(data), response=self.write_with_response),
            self.write_timeout
        )

    def subscribe(self, uuid: str, callback: NotificationCallback) -> None:
        if not self.is_connected:
            raise TransportError("Not connected", context={'address': self.address})

        def handler(_sender, data: bytearray):
            callback(bytes(data))

        self._run(self.client.start_notify(uuid, handler), self.write_timeout)
        logger.debug(f"[BLE] Subscribed to notifications on {uuid}")

    def disconnect(self) -> None:
        client, self.client = self.client, None
        if client is None:
            return
        try:
            self._run(client.disconnect(), self.write_timeout)
            logger.info(f"[BLE] Disconnected from {self.address}")
        except TransportError as e:
            logger.debug(f"[BLE] Error during disconnect: {e}")

    def close(self) -> None:
        self.disconnect()
        if self._loop and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        self._thread = None
        logger.debug("[BLE] Event loop stopped")

    @property
    def is_connected(self) -> bool:
        return self.client is not None and self.client.is_connected


class SimulatedTransport(BaseTransport):
    """Transport that pretends to be a printer and records every write."""

    def __init__(self, characteristics: Optional[List[str]] = None):
        self._characteristics = characteristics if characteristics is not None else [
            full_uuid(CONTROL_ID), full_uuid(NOTIFY_ID), full_uuid(DATA_ID)
        ]
        self.writes: List[Tuple[str, bytes]] = []
        self.subscriptions: Dict[str, NotificationCallback] = {}
        self.address = None
        self.connect_calls = 0
        self._connected = False

    def connect(self, address: str, timeout: float) -> None:
        self.connect_calls += 1
        self.address = address
        self._connected = True
        logger.info(f"[Simulated] Connected to {address}")

    def characteristics(self) -> List[str]:
        return list(self._characteristics)

    def write(self, uuid: str, data: bytes) -> None:
        if not self._connected:
            raise TransportError("Not connected", context={'address': self.address})
        self.writes.append((uuid, bytes(data)))

    def subscribe(self, uuid: str, callback: NotificationCallback) -> None:
        self.subscriptions[uuid] = callback

    def notify(self, uuid: str, data: bytes) -> None:
        """Deliver a notification as if the device had sent it."""
        callback = self.subscriptions.get(uuid)
        if callback:
            callback(bytes(data))

    def disconnect(self) -> None:
        if self._connected:
            logger.info(f"[Simulated] Disconnected from {self.address}")
        self._connected = False
        self.subscriptions.clear()

    @property
    def is_connected(self) -> bool:
        return self._connected

    def written_to(self, uuid: str) -> List[bytes]:
        return [data for target, data in self.writes if target == uuid]


def create_transport(config: dict) -> BaseTransport:
    """
    Create the transport selected by printer configuration.

    Args:
        config: The ``printer`` section of config.json

    Returns:
        Transport instance
    """
    if config.get('simulate', False):
        logger.warning("[Transport] Simulation mode: nothing will be printed")
        return SimulatedTransport()

    return BleakTransport(
        write_timeout=config.get('write_timeout', 5.0),
        write_with_response=config.get('write_with_response', False)
    )
