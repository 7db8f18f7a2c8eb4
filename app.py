"""
Main Flask application for the cat printer print daemon.
"""

import logging
import sys

from catprinter.exceptions import PrinterError
from catprinter.manager import PrinterManager

from api.router import Router

log_level = logging.INFO

logging.basicConfig(
    level=log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    force=True  # Ensure this overrides any prior configuration
)

logger = logging.getLogger(__name__)
logger.info(f"Logging level set to: {logging.getLevelName(log_level)}")

CONFIG_PATH = 'config.json'


def main():
    printer_manager = None
    try:
        logger.info("Initializing printer manager...")
        printer_manager = PrinterManager(CONFIG_PATH)
        printer_manager.start()

        router = Router(printer_manager)

        server = printer_manager.config.get('server', {})
        host = server.get('host', '0.0.0.0')
        port = server.get('port', 8080)
        debug = server.get('debug', False)

        logger.info(f"Starting server on {host}:{port}")
        router.app.run(host=host, port=port, debug=debug, use_reloader=False, threaded=True)

    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except (PrinterError, OSError) as e:
        logger.critical(f"Startup failed: {e}")
        sys.exit(1)
    finally:
        logger.info("Shutting down application...")
        if printer_manager:
            printer_manager.shutdown()
        logger.info("Cleanup complete")


if __name__ == '__main__':
    main()
