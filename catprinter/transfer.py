"""
Raster transfer sequence for the cat printer.
Turns a Raster into the command/data stream the firmware expects, with the
settle and pacing delays it needs.
"""

import logging
from typing import Optional

from . import codec
from .clock import Clock
from .connection import CONTROL, DATA, ConnectionManager
from .exceptions import WriteFailedError, TransferFailedError
from .raster import Raster

logger = logging.getLogger(__name__)


class ImageTransfer:
    """Sends one raster to the printer through a ConnectionManager."""

    def __init__(self, connection: ConnectionManager, clock: Optional[Clock] = None,
                 intensity: int = codec.DEFAULT_INTENSITY, settle_delay: float = 1.0,
                 chunk_size: int = 20, chunk_delay: float = 0.005):
        """
        Initialize image transfer.

        Chunk size and chunk delay pace the data stream for the transport
        MTU and the firmware receive buffer; they are not protocol constants.

        Args:
            connection: Connection used for every write
            clock: Time source for delays
            intensity: Heat intensity byte sent before each print
            settle_delay: Seconds to wait after each control command
            chunk_size: Bytes per data write
            chunk_delay: Seconds between data writes
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")

        self.connection = connection
        self.clock = clock or connection.clock
        self.intensity = intensity
        self.settle_delay = settle_delay
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay

    @classmethod
    def from_config(cls, connection: ConnectionManager, config: dict,
                    clock: Optional[Clock] = None) -> 'ImageTransfer':
        return cls(
            connection,
            clock=clock,
            intensity=config.get('intensity', codec.DEFAULT_INTENSITY),
            settle_delay=config.get('settle_delay', 1.0),
            chunk_size=config.get('chunk_size', 20),
            chunk_delay=config.get('chunk_delay_ms', 5) / 1000.0,
        )

    def send(self, raster: Raster):
        """
        Print a raster.

        Steps: set intensity, print request, data stream, flush. Nothing is
        rolled back on failure; the device discards the partial job once the
        next print request arrives.

        Args:
            raster: Raster to print

        Raises:
            TransferFailedError: If any write fails after its retries
        """
        buffer = raster.encode()
        logger.info(f"[Transfer] Sending {raster.rows} rows ({len(buffer)} bytes) to {self.connection.address}")

        self._write_step('set_intensity', CONTROL, codec.set_intensity(self.intensity))
        self.clock.sleep(self.settle_delay)

        # Announces the caller's rows; the padding still goes out on the data endpoint
        self._write_step('print_request', CONTROL, codec.print_request(raster.rows))
        self.clock.sleep(self.settle_delay)

        total = len(buffer)
        for offset in range(0, total, self.chunk_size):
            self._write_step('data', DATA, buffer[offset:offset + self.chunk_size], offset=offset)
            if offset + self.chunk_size < total:
                self.clock.sleep(self.chunk_delay)

        self._write_step('flush', CONTROL, codec.flush())
        logger.info("[Transfer] Print job completed successfully")

    def _write_step(self, step: str, endpoint: str, data: bytes, offset: Optional[int] = None):
        try:
            self.connection.write_with_retry(endpoint, data)
        except WriteFailedError as e:
            context = {'step': step, 'address': self.connection.address}
            if offset is not None:
                context['offset'] = offset
            logger.error(f"[Transfer] Failed to write {step}: {e}")
            raise TransferFailedError(f"Transfer aborted at {step}", context=context) from e
