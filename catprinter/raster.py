"""
Printable raster buffer for the 384-dot print head.
Packs black/white pixel grids into the 1-bit layout the firmware expects.
"""

import logging
from typing import Optional, Sequence

from PIL import Image # type: ignore

from .exceptions import InvalidRasterWidthError, PayloadTooLargeError

logger = logging.getLogger(__name__)

WIDTH_PIXELS = 384
WIDTH_BYTES = WIDTH_PIXELS // 8
MIN_ROWS = 90
MIN_DATA_BYTES = MIN_ROWS * WIDTH_BYTES
MAX_ROWS = 0xFFFF


class Raster:
    """
    Packed 1-bit-per-pixel bitmap, exactly 384 pixels wide.

    Pixel ``x`` of a row lives in byte ``x // 8`` at bit ``x % 8``
    (least-significant bit first). A set bit is a black dot.
    """

    def __init__(self, data: bytes, rows: int):
        """
        Initialize raster from already packed rows.

        Args:
            data: Packed row data, ``rows * 48`` bytes
            rows: Number of rows (at least 1)

        Raises:
            InvalidRasterWidthError: If the data is not a whole number of 48-byte rows
            PayloadTooLargeError: If there are more rows than a print request can announce
            ValueError: If there are no rows
        """
        if rows > MAX_ROWS:
            raise PayloadTooLargeError(
                f"Raster must have at most {MAX_ROWS} rows, got {rows}",
                context={'rows': rows}
            )
        if rows < 1:
            raise ValueError(f"Raster must have at least 1 row, got {rows}")

        if len(data) != rows * WIDTH_BYTES:
            raise InvalidRasterWidthError(
                f"Raster buffer must be {WIDTH_BYTES} bytes per row",
                context={'length': len(data), 'rows': rows, 'expected': rows * WIDTH_BYTES}
            )

        self._data = bytes(data)
        self.rows = rows

    @classmethod
    def from_buffer(cls, buffer: bytes, row_count: Optional[int] = None) -> 'Raster':
        """
        Wrap a packed buffer produced by an external renderer.

        Args:
            buffer: Packed 1bpp data, 48 bytes per row
            row_count: Declared number of rows (derived from the length if None)

        Returns:
            Raster instance
        """
        if len(buffer) == 0 or len(buffer) % WIDTH_BYTES:
            raise InvalidRasterWidthError(
                f"Raster buffer length must be a non-zero multiple of {WIDTH_BYTES}",
                context={'length': len(buffer)}
            )
        if row_count is None:
            row_count = len(buffer) // WIDTH_BYTES
        return cls(buffer, row_count)

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[bool]], truncate: bool = False) -> 'Raster':
        """
        Pack a boolean pixel grid (True = black).

        Args:
            rows: Grid of rows, each 384 pixels wide
            truncate: Crop rows wider than 384 pixels instead of rejecting them

        Returns:
            Raster instance

        Raises:
            InvalidRasterWidthError: If a row has the wrong width
        """
        if not rows:
            raise ValueError("Raster must have at least one row")

        data = bytearray()
        for y, row in enumerate(rows):
            width = len(row)
            if width != WIDTH_PIXELS and not (truncate and width > WIDTH_PIXELS):
                raise InvalidRasterWidthError(
                    f"Raster rows must be {WIDTH_PIXELS} pixels wide",
                    context={'row': y, 'width': width}
                )
            packed = bytearray(WIDTH_BYTES)
            for x in range(WIDTH_PIXELS):
                if row[x]:
                    packed[x // 8] |= 1 << (x % 8)
            data.extend(packed)

        return cls(bytes(data), len(rows))

    @classmethod
    def from_image(cls, img: Image.Image, threshold: int = 128, truncate: bool = False) -> 'Raster':
        """
        Convert an already prepared image into a raster.

        Pixels darker than the threshold become black dots. No resizing or
        dithering is done here; the image must already be 384 pixels wide.

        Args:
            img: PIL image in any mode
            threshold: Grayscale level below which a pixel is printed
            truncate: Crop images wider than 384 pixels

        Returns:
            Raster instance
        """
        width, height = img.size
        if width != WIDTH_PIXELS and not (truncate and width > WIDTH_PIXELS):
            raise InvalidRasterWidthError(
                f"Image must be {WIDTH_PIXELS} pixels wide",
                context={'width': width, 'height': height}
            )

        gray = img.convert('L')
        if width > WIDTH_PIXELS:
            logger.debug(f"[Raster] Cropping image from {width}px to {WIDTH_PIXELS}px")
            gray = gray.crop((0, 0, WIDTH_PIXELS, height))

        pixels = gray.load()
        grid = [
            [pixels[x, y] < threshold for x in range(WIDTH_PIXELS)]
            for y in range(height)
        ]
        return cls.from_rows(grid)

    @property
    def data(self) -> bytes:
        """Packed rows without padding."""
        return self._data

    @property
    def encoded_rows(self) -> int:
        """Number of rows sent to the device, including padding."""
        return max(self.rows, MIN_ROWS)

    def row(self, y: int) -> bytes:
        return self._data[y * WIDTH_BYTES:(y + 1) * WIDTH_BYTES]

    def encode(self) -> bytes:
        """
        Get the buffer streamed to the data endpoint.

        Short rasters are zero-padded at the end to 90 rows because the
        firmware does not feed shorter jobs reliably.

        Returns:
            ``max(rows, 90) * 48`` bytes
        """
        if len(self._data) >= MIN_DATA_BYTES:
            return self._data
        return self._data + bytes(MIN_DATA_BYTES - len(self._data))

    def __len__(self) -> int:
        return self.rows

    def __repr__(self) -> str:
        return f"Raster(rows={self.rows}, encoded_rows={self.encoded_rows})"
