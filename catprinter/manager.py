"""
Unified printer management interface.
Provides the single entry point the web layer and other callers use to print.
"""

import json
import logging
import threading
from typing import Callable, Dict, Optional

from PIL import Image # type: ignore

from .bluetooth import BluetoothAdapter, validate_mac_address
from .clock import Clock
from .daemon import PrinterDaemon
from .exceptions import InvalidConfigurationError
from .job_queue import JobResult, PrintJob, PrintJobQueue
from .raster import Raster
from .transport import BaseTransport, create_transport

logger = logging.getLogger(__name__)


class PrinterManager:
    """
    Print front end.
    Owns one shared job queue and one daemon per printer address.
    """

    def __init__(self, config_path: str = 'config.json', config: Optional[dict] = None,
                 transport_factory: Optional[Callable[[dict], BaseTransport]] = None,
                 adapter: Optional[BluetoothAdapter] = None, clock: Optional[Clock] = None):
        """
        Initialize printer manager with configuration.

        Args:
            config_path: Path to configuration file
            config: Configuration dictionary, used instead of reading config_path
            transport_factory: Builds a transport from the printer config
            adapter: Bluetooth adapter reset after link failures
            clock: Time source shared by every component
        """
        self.config_path = config_path
        self.config = config if config is not None else self._load_config(config_path)
        self.printer_config = self.config.get('printer', {})
        self.default_address = self.printer_config.get('address')
        self.transport_factory = transport_factory or create_transport
        self.clock = clock or Clock()

        if self.default_address and not validate_mac_address(self.default_address):
            raise InvalidConfigurationError(
                f"Invalid printer address: {self.default_address}",
                context={'path': config_path}
            )

        self.daemons: Dict[str, PrinterDaemon] = {}
        self._daemons_lock = threading.Lock()

        self.queue = PrintJobQueue.from_config(
            self._run_job,
            self.config.get('queue', {}),
            adapter=adapter or BluetoothAdapter(self.printer_config),
            clock=self.clock
        )

        logger.info("[Manager] " + "=" * 60)
        logger.info("[Manager] PrinterManager Initialization")
        logger.info(f"[Manager] Printer address: {self.default_address or 'Not configured'}")
        logger.info(f"[Manager] Simulation mode: {self.printer_config.get('simulate', False)}")
        logger.info(f"[Manager] Chunk size: {self.printer_config.get('chunk_size', 20)} bytes, "
                    f"delay {self.printer_config.get('chunk_delay_ms', 5)}ms")
        logger.info("[Manager] " + "=" * 60)

    def _load_config(self, config_path: str) -> dict:
        """
        Load configuration from file.

        Args:
            config_path: Path to configuration file

        Returns:
            Configuration dictionary

        Raises:
            InvalidConfigurationError: If config cannot be loaded
        """
        try:
            with open(config_path, 'r') as f:
                config = json.load(f)
            logger.debug(f"[Manager] Configuration loaded from {config_path}")
            return config
        except (OSError, ValueError) as e:
            logger.error(f"[Manager] Failed to load configuration: {e}")
            raise InvalidConfigurationError(
                f"Failed to load configuration from {config_path}",
                context={'path': config_path, 'error': str(e)}
            )

    def start(self):
        """Start the queue worker and the daemon for the default printer."""
        self.queue.start()
        if self.default_address:
            self.get_daemon(self.default_address)

    def get_daemon(self, address: str) -> PrinterDaemon:
        """
        Get the daemon for a printer, creating and starting it on first use.

        Args:
            address: Bluetooth address of the printer

        Returns:
            PrinterDaemon instance
        """
        address = address.upper()
        with self._daemons_lock:
            daemon = self.daemons.get(address)
            if daemon is None:
                transport = self.transport_factory(self.printer_config)
                daemon = PrinterDaemon.from_config(address, transport, self.printer_config, clock=self.clock)
                daemon.start()
                self.daemons[address] = daemon
                logger.info(f"[Manager] Created daemon for {address}")
            return daemon

    def _resolve_address(self, address: Optional[str]) -> str:
        address = address or self.default_address
        if not address:
            raise InvalidConfigurationError(
                "No printer address given and none configured. Set 'printer.address' in config.json"
            )
        if not validate_mac_address(address):
            raise InvalidConfigurationError(f"Invalid printer address: {address}", context={'address': address})
        return address.upper()

    def _run_job(self, job: PrintJob):
        self.get_daemon(job.address).print_raster(job.raster)

    def print_raster(self, raster: Raster, address: Optional[str] = None) -> JobResult:
        """
        Queue a raster and wait for it to print.

        Args:
            raster: Raster to print
            address: Target printer, defaults to the configured one

        Returns:
            JobResult for this job
        """
        return self.queue.submit(raster, self._resolve_address(address))

    def print_buffer(self, buffer: bytes, row_count: int, address: Optional[str] = None) -> JobResult:
        """Queue a packed 1bpp buffer (48 bytes per row)."""
        return self.print_raster(Raster.from_buffer(buffer, row_count), address)

    def print_image(self, image: Image.Image, address: Optional[str] = None) -> JobResult:
        """
        Queue a prepared 384-pixel wide image.

        Args:
            image: PIL image, thresholded to black and white
            address: Target printer, defaults to the configured one

        Returns:
            JobResult for this job
        """
        raster = Raster.from_image(
            image,
            threshold=self.printer_config.get('threshold', 128),
            truncate=self.printer_config.get('truncate_wide_images', False)
        )
        return self.print_raster(raster, address)

    def get_status(self) -> dict:
        """
        Get printer status.

        Returns:
            Dictionary with queue and per-printer status
        """
        current = self.queue.current_job
        with self._daemons_lock:
            printers = {address: daemon.get_status() for address, daemon in self.daemons.items()}
        return {
            'default_address': self.default_address,
            'simulation_mode': self.printer_config.get('simulate', False),
            'pending_jobs': self.queue.pending(),
            'current_job': current.job_id if current else None,
            'printers': printers,
        }

    def get_config(self) -> dict:
        return self.config.copy()

    def shutdown(self):
        """Stop the queue and every daemon."""
        self.queue.stop(timeout=30)
        with self._daemons_lock:
            daemons = list(self.daemons.values())
            self.daemons.clear()
        for daemon in daemons:
            try:
                daemon.stop()
            except Exception as e:
                logger.error(f"[Manager] Error stopping daemon for {daemon.address}: {e}")
        logger.info("[Manager] Printer manager shut down")
