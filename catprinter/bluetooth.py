"""
Host Bluetooth adapter management.
Restarts the BlueZ stack when the printer vanishes mid-job and leaves the
adapter wedged.
"""

import logging
import re
import subprocess
from typing import List

logger = logging.getLogger(__name__)


def validate_mac_address(mac: str) -> bool:
    """
    Validate Bluetooth MAC address format.

    Args:
        mac: MAC address to validate

    Returns:
        True if valid format
    """
    pattern = r'^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$'
    return bool(re.match(pattern, mac or ''))


class BluetoothAdapter:
    """Resets the local Bluetooth adapter via systemctl and hciconfig."""

    def __init__(self, config: dict):
        """
        Initialize adapter handler.

        Args:
            config: Printer configuration dictionary
        """
        self.config = config
        self.interface = config.get('hci_interface', 'hci0')
        self.use_sudo = config.get('use_sudo', True)
        self.command_timeout = config.get('reset_timeout', 20)

    def _command(self, *args: str) -> List[str]:
        return (['sudo'] if self.use_sudo else []) + list(args)

    def _run(self, *args: str) -> bool:
        cmd = self._command(*args)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.command_timeout
            )
        except FileNotFoundError:
            logger.error(f"[Bluetooth] {cmd[0]} not found. Install with: sudo apt-get install bluez")
            return False
        except subprocess.TimeoutExpired:
            logger.error(f"[Bluetooth] '{' '.join(cmd)}' timed out after {self.command_timeout}s")
            return False

        if result.returncode != 0:
            logger.warning(f"[Bluetooth] '{' '.join(cmd)}' failed: {result.stderr.strip()}")
            return False

        logger.debug(f"[Bluetooth] '{' '.join(cmd)}' ok")
        return True

    def reset(self) -> bool:
        """
        Restart the Bluetooth service and bring the interface back up.

        Returns:
            True if both steps succeeded
        """
        logger.info(f"[Bluetooth] Resetting Bluetooth adapter {self.interface}...")

        if not self._run('systemctl', 'restart', 'bluetooth'):
            logger.error("[Bluetooth] Could not restart Bluetooth service")
            return False

        if not self._run('hciconfig', self.interface, 'up'):
            logger.error(f"[Bluetooth] Could not bring {self.interface} up")
            return False

        logger.info("[Bluetooth] Bluetooth reset complete")
        return True
