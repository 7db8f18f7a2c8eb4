"""Tests for the raster transfer sequence."""

import pytest

from catprinter import codec
from catprinter.connection import ConnectionManager
from catprinter.exceptions import TransferFailedError, WriteFailedError
from catprinter.raster import WIDTH_BYTES, Raster
from catprinter.transfer import ImageTransfer

from conftest import ADDRESS, CONTROL_UUID, DATA_UUID, FlakyTransport


def make_transfer(transport, clock, **kwargs):
    connection = ConnectionManager(ADDRESS, transport, clock=clock)
    connection.ensure_connected()
    return ImageTransfer(connection, clock=clock, **kwargs)


def one_row_raster():
    return Raster.from_buffer(b"\xff" * WIDTH_BYTES)


def test_command_sequence(transport, clock):
    transfer = make_transfer(transport, clock)
    transfer.send(one_row_raster())

    control = transport.written_to(CONTROL_UUID)
    assert control == [codec.set_intensity(0xA0), codec.print_request(1), codec.flush()]

    # Control commands bracket the data stream
    kinds = [uuid for uuid, _ in transport.writes]
    assert kinds[:2] == [CONTROL_UUID, CONTROL_UUID]
    assert kinds[-1] == CONTROL_UUID
    assert set(kinds[2:-1]) == {DATA_UUID}


def test_data_stream_is_padded_buffer(transport, clock):
    transfer = make_transfer(transport, clock)
    transfer.send(one_row_raster())

    data = b"".join(transport.written_to(DATA_UUID))
    assert len(data) == 4320
    assert data[:WIDTH_BYTES] == b"\xff" * WIDTH_BYTES
    assert data[WIDTH_BYTES:] == bytes(4320 - WIDTH_BYTES)


def test_print_request_announces_unpadded_rows(transport, clock):
    transfer = make_transfer(transport, clock)
    transfer.send(Raster.from_buffer(bytes(WIDTH_BYTES * 3)))

    request = codec.decode(transport.written_to(CONTROL_UUID)[1])
    assert request.payload == bytes([0x03, 0x00, 0x30, 0x00])
    # The stream itself is still padded to 90 rows
    assert len(b"".join(transport.written_to(DATA_UUID))) == 90 * WIDTH_BYTES


def test_settle_and_chunk_delays(transport, clock):
    transfer = make_transfer(transport, clock)
    transfer.send(one_row_raster())

    chunks = transport.written_to(DATA_UUID)
    assert len(chunks) == 216
    assert all(len(chunk) == 20 for chunk in chunks)
    assert clock.sleeps == [1.0, 1.0] + [0.005] * 215


def test_large_chunks(transport, clock):
    transfer = make_transfer(transport, clock, chunk_size=244, chunk_delay=0.05)
    transfer.send(Raster.from_buffer(bytes(WIDTH_BYTES * 200)))

    chunks = transport.written_to(DATA_UUID)
    assert sum(len(chunk) for chunk in chunks) == 9600
    assert max(len(chunk) for chunk in chunks) == 244
    assert len(chunks) == 40
    assert clock.sleeps.count(0.05) == 39
    assert transport.written_to(CONTROL_UUID)[1] == codec.print_request(200)


def test_custom_intensity(transport, clock):
    transfer = make_transfer(transport, clock, intensity=0x5D)
    transfer.send(one_row_raster())
    assert transport.written_to(CONTROL_UUID)[0] == codec.set_intensity(0x5D)


def test_rejects_bad_chunk_size(transport, clock):
    with pytest.raises(ValueError):
        make_transfer(transport, clock, chunk_size=0)


def test_data_failure_aborts_transfer(clock):
    transport = FlakyTransport(fail_writes_to=[DATA_UUID], write_failures=-1, drop_on_failure=True)
    transfer = make_transfer(transport, clock)

    with pytest.raises(TransferFailedError) as info:
        transfer.send(one_row_raster())

    assert info.value.context['step'] == 'data'
    assert info.value.context['offset'] == 0
    assert isinstance(info.value.__cause__, WriteFailedError)
    # Retried up to the bound, reconnecting in between
    assert len(transport.failed_writes) == 3
    assert transport.connect_calls == 3
    # No flush after an aborted stream
    assert codec.flush() not in transport.written_to(CONTROL_UUID)


def test_control_failure_aborts_before_data(clock):
    transport = FlakyTransport(fail_writes_to=[CONTROL_UUID], write_failures=-1)
    transfer = make_transfer(transport, clock)

    with pytest.raises(TransferFailedError) as info:
        transfer.send(one_row_raster())

    assert info.value.context['step'] == 'set_intensity'
    assert transport.written_to(DATA_UUID) == []


def test_from_config(transport, clock):
    connection = ConnectionManager(ADDRESS, transport, clock=clock)
    transfer = ImageTransfer.from_config(connection, {'chunk_size': 244, 'chunk_delay_ms': 50})
    assert transfer.chunk_size == 244
    assert transfer.chunk_delay == pytest.approx(0.05)
    assert transfer.clock is clock
