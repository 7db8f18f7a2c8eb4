"""
Custom exceptions for cat printer operations.
"""


class PrinterError(Exception):
    """Base exception for all printer-related errors."""

    def __init__(self, message: str, context: dict = None):
        """
        Initialize printer error.

        Args:
            message: Error message
            context: Optional dictionary with additional error context
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self):
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class PrinterConnectionError(PrinterError):
    """Raised when the wireless link cannot be used."""
    pass


class TransportError(PrinterConnectionError):
    """Raised by a transport when a connect, discover or write call fails."""
    pass


class CharacteristicsNotFoundError(PrinterConnectionError):
    """Raised when the control or data endpoint is missing on the device."""
    pass


class ConnectFailedError(PrinterConnectionError):
    """Raised when the device is unreachable after all connection attempts."""
    pass


class WriteFailedError(PrinterError):
    """Raised when a write keeps failing after all retry attempts."""
    pass


class TransferFailedError(PrinterError):
    """Raised when an image transfer aborts mid-stream."""
    pass


class PayloadTooLargeError(PrinterError):
    """Raised when a payload or row count does not fit a 16-bit length field."""
    pass


class InvalidRasterWidthError(PrinterError):
    """Raised when a raster is not exactly as wide as the print head."""
    pass


class FrameError(PrinterError):
    """Raised when a byte sequence is not a well-formed command frame."""
    pass


class InvalidTransitionError(PrinterError):
    """Raised when the connection state machine receives an illegal event."""
    pass


class QueueClosedError(PrinterError):
    """Raised when a job is submitted to, or left in, a stopped queue."""
    pass


class JobTimeoutError(PrinterError):
    """Raised when a caller stops waiting for a job that has not finished yet."""
    pass


class InvalidConfigurationError(PrinterError):
    """Raised when printer configuration is invalid."""
    pass


def is_link_failure(exc: BaseException) -> bool:
    """
    Check whether an error was caused by the device disappearing.

    Walks the exception chain looking for a ConnectFailedError, which is what
    surfaces when the device cannot be reached again after a failed write.

    Args:
        exc: Exception to classify

    Returns:
        True if the failure is a transport/link failure
    """
    seen = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, ConnectFailedError):
            return True
        seen.add(id(exc))
        exc = exc.__cause__ or exc.__context__
    return False
