"""
Command frame builder and checksum for the cat printer protocol.

Frame layout::

    +-----------+--------+------+---------+---------+----------+--------+
    | Header    | Opcode | 0x00 | Length  | Payload | Checksum | Footer |
    | 0x22 0x21 | 1 byte |      | 2 bytes | N bytes | 1 byte   | 0xFF   |
    +-----------+--------+------+---------+---------+----------+--------+

- Length: little-endian payload length (0..65535)
- Checksum: CRC-8 (polynomial 0x07, initial value 0x00) over the payload only

The device protocol is write-only. ``decode`` exists to verify frames and
``parse_notification`` to read the optional status notifications.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .exceptions import FrameError, PayloadTooLargeError

logger = logging.getLogger(__name__)

HEADER = b"\x22\x21"
FOOTER = 0xFF
FRAME_OVERHEAD = 8
MAX_PAYLOAD = 0xFFFF

# Opcodes
STATUS = 0xA1
SET_INTENSITY = 0xA2
PRINT_REQUEST = 0xA9
PRINT_COMPLETE = 0xAA
FLUSH = 0xAD

DEFAULT_INTENSITY = 0xA0
PRINT_MODE = b"\x30\x00"


def _build_crc8_table(polynomial: int = 0x07) -> List[int]:
    table = []
    for value in range(256):
        crc = value
        for _ in range(8):
            if crc & 0x80:
                crc = ((crc << 1) ^ polynomial) & 0xFF
            else:
                crc = (crc << 1) & 0xFF
        table.append(crc)
    return table


CRC8_TABLE = _build_crc8_table()


def crc8(data: bytes) -> int:
    """
    Calculate the table-driven CRC-8 checksum of a payload.

    Args:
        data: Payload bytes

    Returns:
        Checksum in the range 0..255
    """
    crc = 0x00
    for byte in data:
        crc = CRC8_TABLE[(crc ^ byte) & 0xFF]
    return crc


@dataclass
class Frame:
    """A decoded command frame."""

    opcode: int
    payload: bytes

    def __repr__(self) -> str:
        return (
            f"Frame(opcode=0x{self.opcode:02X}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


def encode(opcode: int, payload: bytes = b"") -> bytes:
    """
    Build a framed command.

    Args:
        opcode: Single-byte command identifier
        payload: Command-specific payload bytes

    Returns:
        Frame bytes, always ``len(payload) + 8`` long

    Raises:
        PayloadTooLargeError: If the payload exceeds 65535 bytes
        ValueError: If the opcode does not fit in one byte
    """
    if not 0 <= opcode <= 0xFF:
        raise ValueError(f"Opcode must be a single byte, got {opcode!r}")

    payload = bytes(payload)
    if len(payload) > MAX_PAYLOAD:
        raise PayloadTooLargeError(
            f"Payload of {len(payload)} bytes exceeds {MAX_PAYLOAD}",
            context={'opcode': f"0x{opcode:02X}", 'length': len(payload)}
        )

    length = len(payload).to_bytes(2, "little")
    return HEADER + bytes([opcode, 0x00]) + length + payload + bytes([crc8(payload), FOOTER])


def decode(frame: bytes) -> Frame:
    """
    Decode and verify a complete command frame.

    Args:
        frame: Bytes produced by ``encode``

    Returns:
        The decoded Frame

    Raises:
        FrameError: If the header, length, checksum or footer is wrong
    """
    frame = bytes(frame)
    if len(frame) < FRAME_OVERHEAD:
        raise FrameError("Frame too short", context={'length': len(frame)})

    if frame[:2] != HEADER:
        raise FrameError("Bad frame header", context={'header': frame[:2].hex()})

    length = int.from_bytes(frame[4:6], "little")
    if len(frame) != length + FRAME_OVERHEAD:
        raise FrameError(
            "Frame length does not match declared payload length",
            context={'declared': length, 'actual': len(frame) - FRAME_OVERHEAD}
        )

    payload = frame[6:6 + length]
    checksum = frame[6 + length]
    if checksum != crc8(payload):
        raise FrameError(
            "Checksum mismatch",
            context={'expected': f"0x{crc8(payload):02X}", 'actual': f"0x{checksum:02X}"}
        )

    if frame[-1] != FOOTER:
        raise FrameError("Bad frame footer", context={'footer': f"0x{frame[-1]:02X}"})

    return Frame(opcode=frame[2], payload=payload)


def parse_notification(data: bytes) -> Optional[Frame]:
    """
    Parse a status notification sent by the device.

    The firmware does not reliably fill in the checksum of notifications, so
    only the header and the declared length are checked.

    Args:
        data: Raw notification bytes

    Returns:
        A Frame, or None if the data does not look like a frame
    """
    if not data or len(data) < 6 or bytes(data[:2]) != HEADER:
        return None

    length = int.from_bytes(data[4:6], "little")
    if len(data) < 6 + length:
        logger.debug(f"[Codec] Truncated notification: {bytes(data).hex()}")
        return None

    return Frame(opcode=data[2], payload=bytes(data[6:6 + length]))


def status_request() -> bytes:
    """Status probe used as a liveness check."""
    return encode(STATUS, b"\x00")


def set_intensity(value: int = DEFAULT_INTENSITY) -> bytes:
    return encode(SET_INTENSITY, bytes([value & 0xFF]))


def print_request(rows: int) -> bytes:
    """
    Build the print request announcing how many rows of data follow.

    Args:
        rows: Number of 48-byte rows in the data stream

    Returns:
        Frame bytes
    """
    if not 0 < rows <= 0xFFFF:
        raise ValueError(f"Row count must be between 1 and 65535, got {rows}")
    return encode(PRINT_REQUEST, rows.to_bytes(2, "little") + PRINT_MODE)


def flush() -> bytes:
    return encode(FLUSH, b"\x00")
