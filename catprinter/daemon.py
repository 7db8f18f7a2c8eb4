"""
Print daemon for one cat printer.
Composes the connection, the transfer and a background health-check loop
into a single "print this raster" operation.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .clock import Clock
from .connection import ConnectionManager
from .exceptions import PrinterError
from .raster import Raster
from .transfer import ImageTransfer
from .transport import BaseTransport

logger = logging.getLogger(__name__)


@dataclass
class PrintOutcome:
    """Result of a direct print call."""

    ok: bool
    error: Optional[PrinterError] = None


class PrinterDaemon:
    """Owns the link to one printer and prints rasters on it."""

    def __init__(self, connection: ConnectionManager, transfer: ImageTransfer,
                 health_check_interval: float = 30.0):
        """
        Initialize printer daemon.

        Args:
            connection: Connection manager for the printer
            transfer: Transfer bound to the same connection
            health_check_interval: Seconds between health checks
        """
        self.connection = connection
        self.transfer = transfer
        self.health_check_interval = health_check_interval

        self._stop_event = threading.Event()
        self._health_thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, address: str, transport: BaseTransport, config: dict,
                    clock: Optional[Clock] = None) -> 'PrinterDaemon':
        """
        Build a daemon from the ``printer`` config section.

        Args:
            address: Bluetooth address of the printer
            transport: Transport owned by the new connection
            config: Printer configuration dictionary
            clock: Optional time source shared by every component

        Returns:
            PrinterDaemon instance
        """
        connection = ConnectionManager.from_config(address, transport, config, clock=clock)
        transfer = ImageTransfer.from_config(connection, config, clock=clock)
        return cls(connection, transfer, config.get('health_check_interval', 30.0))

    @property
    def address(self) -> str:
        return self.connection.address

    def start(self):
        """Start the background health-check loop."""
        if self._health_thread and self._health_thread.is_alive():
            return
        self._stop_event.clear()
        self._health_thread = threading.Thread(
            target=self._health_loop,
            name=f'health-{self.address}',
            daemon=True
        )
        self._health_thread.start()
        logger.info(f"[Daemon] Health check every {self.health_check_interval}s for {self.address}")

    def _health_loop(self):
        while not self._stop_event.wait(self.health_check_interval):
            try:
                self.connection.health_check()
            except Exception as e:
                logger.error(f"[Daemon] Health check error: {e}")

    def print_raster(self, raster: Raster):
        """
        Print a raster, connecting first if needed.

        Args:
            raster: Raster to print

        Raises:
            ConnectFailedError: If the printer cannot be reached
            TransferFailedError: If the transfer aborts
        """
        with self.connection.session():
            self.connection.ensure_connected()
            self.transfer.send(raster)

    def submit(self, raster_buffer: bytes, row_count: int) -> PrintOutcome:
        """
        Print a packed raster buffer.

        Input errors are reported before the printer is touched. Device
        failures are returned, never raised.

        Args:
            raster_buffer: Packed 1bpp rows, 48 bytes each
            row_count: Number of rows in the buffer

        Returns:
            PrintOutcome
        """
        try:
            raster = Raster.from_buffer(raster_buffer, row_count)
            self.print_raster(raster)
        except PrinterError as e:
            logger.error(f"[Daemon] Print failed: {e}")
            return PrintOutcome(ok=False, error=e)
        except ValueError as e:
            logger.error(f"[Daemon] Rejected raster: {e}")
            return PrintOutcome(ok=False, error=PrinterError(str(e), context={'rows': row_count}))
        return PrintOutcome(ok=True)

    def stop(self):
        """Stop the health-check loop and release the link."""
        self._stop_event.set()
        if self._health_thread:
            self._health_thread.join(timeout=5)
            self._health_thread = None
        self.connection.shutdown()
        logger.info(f"[Daemon] Stopped daemon for {self.address}")

    def get_status(self) -> dict:
        status = self.connection.get_status()
        status['health_check_running'] = bool(self._health_thread and self._health_thread.is_alive())
        return status

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
