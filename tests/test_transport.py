"""Tests for the BLE transport, driven through a fake bleak client."""

import asyncio
import time
from types import SimpleNamespace

import pytest
from bleak.exc import BleakError # type: ignore

from catprinter import transport as transport_module
from catprinter.exceptions import TransportError
from catprinter.transport import (
    BleakTransport,
    SimulatedTransport,
    create_transport,
    full_uuid,
    short_id,
)

from conftest import ADDRESS, CONTROL_UUID, DATA_UUID


class FakeBleakClient:
    """Async stand-in for bleak.BleakClient. Behaviour is set per test on the class."""

    connect_delay = 0.0
    connect_error = None
    write_error = None
    disconnect_error = None
    instances = []

    def __init__(self, address, timeout=None):
        self.address = address
        self.timeout = timeout
        self.is_connected = False
        self.connect_cancelled = False
        self.disconnected = False
        self.writes = []
        self.notify_handlers = {}
        self.services = [SimpleNamespace(
            uuid=full_uuid("ae30"),
            characteristics=[
                SimpleNamespace(uuid=CONTROL_UUID, properties=['write-without-response']),
                SimpleNamespace(uuid=DATA_UUID, properties=['write-without-response']),
            ]
        )]
        FakeBleakClient.instances.append(self)

    async def connect(self):
        try:
            await asyncio.sleep(self.connect_delay)
        except asyncio.CancelledError:
            self.connect_cancelled = True
            raise
        if self.connect_error is not None:
            raise self.connect_error
        self.is_connected = True

    async def write_gatt_char(self, uuid, data, response=False):
        if self.write_error is not None:
            raise self.write_error
        self.writes.append((uuid, data, response))

    async def start_notify(self, uuid, handler):
        self.notify_handlers[uuid] = handler

    async def disconnect(self):
        self.disconnected = True
        self.is_connected = False
        if self.disconnect_error is not None:
            raise self.disconnect_error


@pytest.fixture
def fake_client(monkeypatch):
    monkeypatch.setattr(FakeBleakClient, 'instances', [])
    monkeypatch.setattr(transport_module, 'BleakClient', FakeBleakClient)
    return FakeBleakClient


@pytest.fixture
def ble():
    transport = BleakTransport(write_timeout=0.5)
    yield transport
    transport.close()


def test_connect_and_write(fake_client, ble):
    ble.connect(ADDRESS, 10.0)

    assert ble.is_connected
    assert fake_client.instances[0].timeout == 10.0
    assert ble.characteristics() == [CONTROL_UUID, DATA_UUID]

    ble.write(DATA_UUID, bytearray(b"\x01\x02"))
    assert fake_client.instances[0].writes == [(DATA_UUID, b"\x01\x02", False)]


def test_write_with_response_is_passed_through(fake_client):
    transport = BleakTransport(write_with_response=True)
    try:
        transport.connect(ADDRESS, 1.0)
        transport.write(CONTROL_UUID, b"\x00")
        assert fake_client.instances[0].writes[0][2] is True
    finally:
        transport.close()


def test_slow_connect_times_out(fake_client, ble, monkeypatch):
    monkeypatch.setattr(transport_module, 'CONNECT_GRACE', 0.0)
    monkeypatch.setattr(fake_client, 'connect_delay', 5.0)

    with pytest.raises(TransportError) as info:
        ble.connect(ADDRESS, 0.05)

    assert info.value.context['timeout'] == pytest.approx(0.05)
    assert not ble.is_connected

    client = fake_client.instances[0]
    deadline = time.monotonic() + 2
    while not client.connect_cancelled and time.monotonic() < deadline:
        time.sleep(0.01)
    assert client.connect_cancelled


def test_bleak_error_on_write(fake_client, ble, monkeypatch):
    ble.connect(ADDRESS, 1.0)
    monkeypatch.setattr(fake_client, 'write_error', BleakError("Characteristic not writable"))

    with pytest.raises(TransportError) as info:
        ble.write(DATA_UUID, b"\x00")

    assert info.value.context['error'] == 'BleakError'
    assert isinstance(info.value.__cause__, BleakError)


def test_unexpected_error_on_connect_is_wrapped(fake_client, ble, monkeypatch):
    monkeypatch.setattr(fake_client, 'connect_error', EOFError())

    with pytest.raises(TransportError) as info:
        ble.connect(ADDRESS, 1.0)

    assert info.value.context['error'] == 'EOFError'
    assert not ble.is_connected


def test_write_when_not_connected(fake_client, ble):
    with pytest.raises(TransportError):
        ble.write(DATA_UUID, b"\x00")


def test_subscribe_delivers_bytes(fake_client, ble):
    received = []
    ble.connect(ADDRESS, 1.0)
    ble.subscribe(full_uuid("ae02"), received.append)

    fake_client.instances[0].notify_handlers[full_uuid("ae02")](None, bytearray(b"\xaa"))

    assert received == [b"\xaa"]


def test_disconnect_clears_client_first(fake_client, ble, monkeypatch):
    ble.connect(ADDRESS, 1.0)
    client = fake_client.instances[0]
    monkeypatch.setattr(fake_client, 'disconnect_error', BleakError("already gone"))

    ble.disconnect()

    assert client.disconnected
    assert ble.client is None
    assert not ble.is_connected
    ble.disconnect()


def test_reconnect_replaces_client(fake_client, ble):
    ble.connect(ADDRESS, 1.0)
    ble.connect(ADDRESS, 1.0)

    first, second = fake_client.instances
    assert first.disconnected
    assert ble.client is second


def test_close_stops_loop_thread(fake_client):
    transport = BleakTransport()
    transport.connect(ADDRESS, 1.0)
    thread = transport._thread
    loop = transport._loop

    transport.close()

    assert not thread.is_alive()
    assert loop.is_closed()
    assert fake_client.instances[0].disconnected
    assert transport._thread is None


def test_short_id():
    assert short_id(full_uuid("AE01")) == "ae01"
    assert short_id("AE03") == "ae03"
    assert short_id("0000ae02-0000-1000-8000-00805F9B34FB") == "ae02"


def test_create_transport():
    assert isinstance(create_transport({'simulate': True}), SimulatedTransport)

    transport = create_transport({'write_timeout': 2.0, 'write_with_response': True})
    assert isinstance(transport, BleakTransport)
    assert transport.write_timeout == 2.0
    assert transport.write_with_response is True
