"""
Time source used for every protocol delay, so retries can run without real waits.
"""

import time


class Clock:
    """Wall clock backed by the time module."""

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def monotonic(self) -> float:
        return time.monotonic()

    def time(self) -> float:
        return time.time()
