"""Shared fakes: a clock that never sleeps, a flaky transport and a dummy adapter."""

import threading

import pytest

from catprinter.clock import Clock
from catprinter.connection import ConnectionManager
from catprinter.exceptions import TransportError
from catprinter.transport import CONTROL_ID, DATA_ID, SimulatedTransport, full_uuid

CONTROL_UUID = full_uuid(CONTROL_ID)
DATA_UUID = full_uuid(DATA_ID)
ADDRESS = "48:0F:57:12:30:9D"


class FakeClock(Clock):
    """Records sleeps instead of waiting."""

    def __init__(self):
        self.sleeps = []
        self.now = 1000.0
        self._lock = threading.Lock()

    def sleep(self, seconds):
        with self._lock:
            self.sleeps.append(seconds)
            self.now += seconds

    def monotonic(self):
        return self.now

    def time(self):
        return self.now


class FlakyTransport(SimulatedTransport):
    """Simulated printer that can refuse connections and writes.

    Args:
        connect_failures: Number of connect calls that fail (-1 = all)
        fail_writes_to: UUIDs whose writes fail
        write_failures: Number of failing writes to those UUIDs (-1 = all)
        drop_on_failure: Mark the link down when a write fails
    """

    def __init__(self, characteristics=None, connect_failures=0, fail_writes_to=(),
                 write_failures=0, drop_on_failure=False):
        super().__init__(characteristics)
        self.connect_failures = connect_failures
        self.fail_writes_to = set(fail_writes_to)
        self.write_failures = write_failures
        self.drop_on_failure = drop_on_failure
        self.failed_writes = []
        self.closed = False

    def connect(self, address, timeout):
        if self.connect_failures != 0:
            self.connect_calls += 1
            if self.connect_failures > 0:
                self.connect_failures -= 1
            raise TransportError("Device not found", context={'address': address})
        super().connect(address, timeout)

    def write(self, uuid, data):
        if uuid in self.fail_writes_to and self.write_failures != 0 and self.is_connected:
            if self.write_failures > 0:
                self.write_failures -= 1
            self.failed_writes.append((uuid, bytes(data)))
            if self.drop_on_failure:
                self._connected = False
            raise TransportError("Write rejected", context={'uuid': uuid})
        super().write(uuid, data)

    def close(self):
        super().close()
        self.closed = True


class FakeAdapter:
    def __init__(self):
        self.reset_calls = 0

    def reset(self):
        self.reset_calls += 1
        return True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FlakyTransport()


@pytest.fixture
def connection(transport, clock):
    return ConnectionManager(ADDRESS, transport, clock=clock)
