import base64
import binascii
import logging
from flask import Flask, request, jsonify #type: ignore
from flask_cors import CORS #type: ignore
from PIL import Image, UnidentifiedImageError #type: ignore

from catprinter.exceptions import (
    InvalidConfigurationError,
    InvalidRasterWidthError,
    PayloadTooLargeError,
    QueueClosedError,
)
from catprinter.manager import PrinterManager
from catprinter.raster import Raster

logger = logging.getLogger(__name__)

INPUT_ERRORS = (InvalidRasterWidthError, PayloadTooLargeError, InvalidConfigurationError, ValueError, TypeError)


class Router:

    def __init__(self, printer_manager: PrinterManager):
        """Initialize Flask app and routes."""
        self.printer_manager = printer_manager

        # Create Flask app instance
        self.app = Flask(__name__)
        CORS(self.app)

        # Register routes with decorators
        self._register_routes()

    def _register_routes(self):
        """Register all Flask routes with decorators."""
        self.app.route('/api/print', methods=['POST'])(self.print_raster)
        self.app.route('/api/printer/status', methods=['GET'])(self.get_printer_status)

    def _raster_from_request(self):
        """
        Build a raster from the request body.

        Accepts a multipart ``file`` holding a 384px wide image, or JSON with
        either ``rows`` (grid of 0/1) or ``buffer`` (base64 packed rows) plus
        ``row_count``.

        Returns:
            Tuple of (raster, address)
        """
        if 'file' in request.files:
            file = request.files['file']
            if file.filename == '':
                raise ValueError('No file selected')
            try:
                with Image.open(file.stream) as img:
                    img.load()
                    raster = Raster.from_image(
                        img,
                        threshold=self.printer_manager.printer_config.get('threshold', 128),
                        truncate=self.printer_manager.printer_config.get('truncate_wide_images', False)
                    )
            except UnidentifiedImageError:
                raise ValueError('File is not a readable image')
            return raster, request.form.get('address')

        data = request.get_json(silent=True)
        if not data:
            raise ValueError('Provide an image file or a JSON raster')

        if not isinstance(data, dict):
            raise TypeError('JSON body must be an object')

        if 'rows' in data:
            rows = data['rows']
            if not isinstance(rows, list) or not all(isinstance(row, list) for row in rows):
                raise TypeError("'rows' must be a list of pixel rows")
            raster = Raster.from_rows([[bool(px) for px in row] for row in rows])
        elif 'buffer' in data:
            row_count = data.get('row_count')
            if row_count is not None and (not isinstance(row_count, int) or isinstance(row_count, bool)):
                raise TypeError("'row_count' must be an integer")
            try:
                buffer = base64.b64decode(data['buffer'], validate=True)
            except (binascii.Error, TypeError):
                raise ValueError('buffer must be base64 encoded')
            raster = Raster.from_buffer(buffer, row_count)
        else:
            raise ValueError("JSON body needs 'rows' or 'buffer'")

        address = data.get('address')
        if address is not None and not isinstance(address, str):
            raise TypeError("'address' must be a string")
        return raster, address

    def print_raster(self):
        """
        Print a raster on the configured (or given) printer.

        Returns:
            JSON with the job outcome
        """
        try:
            raster, address = self._raster_from_request()
        except INPUT_ERRORS as e:
            logger.warning(f"API: Rejected print request: {e}")
            return jsonify({'success': False, 'error': str(e)}), 400

        logger.info(f"API: Print request received ({raster.rows} rows)")
        try:
            result = self.printer_manager.print_raster(raster, address)
        except InvalidConfigurationError as e:
            return jsonify({'success': False, 'error': str(e)}), 400
        except QueueClosedError as e:
            return jsonify({'success': False, 'error': str(e)}), 503

        body = {'success': result.ok, 'job': result.to_dict()}
        if result.ok:
            return jsonify(body), 200

        logger.error(f"API: Print job {result.job_id} failed: {result.error}")
        return jsonify(body), 502

    def get_printer_status(self):
        """
        Get printer connection status.

        Returns:
            JSON with printer status
        """
        return jsonify(self.printer_manager.get_status()), 200
