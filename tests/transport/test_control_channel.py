"""
QUIC control channel: one request per stream, many streams per connection.

The loopback tests run a real aioquic server and client on 127.0.0.1.
"""

import asyncio

import pytest

from conftest import free_udp_port
from moqrelay.infra.exceptions import TransportError
from moqrelay.runtime.assigner import PublisherIdentityAssigner
from moqrelay.transport.control_channel import (
    ControlChannelClient,
    ControlChannelServer,
    read_message,
)
from moqrelay.transport.credentials import generate_self_signed


class FakeStreamWriter:
    def __init__(self, stream_id=0):
        self.stream_id = stream_id
        self.data = b""
        self.eof = False

    def get_extra_info(self, name):
        return self.stream_id if name == "stream_id" else None

    def write(self, data):
        self.data += data

    def write_eof(self):
        self.eof = True


def _reader(payload: bytes, eof: bool = True) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(payload)
    if eof:
        reader.feed_eof()
    return reader


def _server(**kwargs) -> ControlChannelServer:
    return ControlChannelServer(PublisherIdentityAssigner(), generate_self_signed(), **kwargs)


@pytest.mark.asyncio
async def test_read_message_accepts_exactly_limit_bytes():
    assert await read_message(_reader(b"x" * 4096), limit=4096) == b"x" * 4096


@pytest.mark.asyncio
async def test_read_message_rejects_oversized_message():
    with pytest.raises(TransportError):
        await read_message(_reader(b"x" * 10000, eof=False), limit=4096)


@pytest.mark.asyncio
async def test_exchange_rejects_oversized_request_without_consuming_a_name():
    server = _server(max_message_size=32)
    writer = FakeStreamWriter()

    result = await server.exchange(_reader(b"http://cdn/" + b"a" * 64, eof=False), writer)

    assert result is None
    assert writer.data == b""
    assert writer.eof
    assert server.assigner.peek() == "pub0"


@pytest.mark.asyncio
async def test_exchange_assigns_and_answers():
    server = _server()
    writer = FakeStreamWriter()

    result = await server.exchange(_reader(b"http://cdn/720p.m3u8"), writer, stream_id=0)

    assert result.name == "pub0"
    assert result.media_url == "http://cdn/720p.m3u8"
    assert writer.data == b"pub0"
    assert writer.eof


@pytest.mark.asyncio
async def test_exchange_rejects_empty_request_without_consuming_a_name():
    server = _server()
    writer = FakeStreamWriter()

    assert await server.exchange(_reader(b""), writer) is None
    assert writer.data == b""
    assert writer.eof
    assert server.assigner.peek() == "pub0"


@pytest.mark.asyncio
async def test_closed_server_rejects_new_streams():
    server = _server()
    server.close()
    writer = FakeStreamWriter()

    server._on_stream(_reader(b"http://cdn/720p.m3u8"), writer)

    assert writer.eof
    assert writer.data == b""
    assert server.in_flight == 0
    assert server.assigner.peek() == "pub0"


@pytest.mark.asyncio
async def test_stream_handler_hands_result_to_callback():
    assigned = []

    async def on_assigned(result):
        assigned.append(result)

    server = _server(on_assigned=on_assigned)
    writer = FakeStreamWriter(stream_id=4)
    server._on_stream(_reader(b"http://cdn/a.m3u8"), writer)
    await server.wait_closed()

    assert [(r.name, r.media_url, r.stream_id) for r in assigned] == [("pub0", "http://cdn/a.m3u8", 4)]


@pytest.mark.asyncio
async def test_close_cancels_in_flight_handlers():
    server = _server()
    writer = FakeStreamWriter()
    server._on_stream(_reader(b"http://cdn/a.m3u8", eof=False), writer)
    await asyncio.sleep(0)
    assert server.in_flight == 1

    server.close()
    await server.wait_closed()

    assert server.in_flight == 0
    assert writer.data == b""


@pytest.mark.asyncio
async def test_request_without_connection_raises():
    client = ControlChannelClient("127.0.0.1", free_udp_port())
    with pytest.raises(TransportError):
        await client.request_publish("http://cdn/a.m3u8")


@pytest.mark.asyncio
async def test_loopback_exchanges_on_one_connection():
    port = free_udp_port()
    server = _server(host="127.0.0.1", port=port)
    await server.start()
    assert server.accepting
    try:
        async with ControlChannelClient("127.0.0.1", port, keep_alive_period=None) as client:
            first = await asyncio.wait_for(client.request_publish("http://cdn/a.m3u8"), timeout=10)
            assert server.connection_count == 1
            second = await asyncio.wait_for(client.request_publish("http://cdn/a.m3u8"), timeout=10)
            concurrent = await asyncio.wait_for(
                asyncio.gather(*(client.request_publish(f"http://cdn/{i}.m3u8") for i in range(5))),
                timeout=10,
            )
    finally:
        server.close()
        await server.wait_closed()

    assert not server.accepting
    assert first.name == "pub0"
    assert second.name == "pub1"
    names = [first.name, second.name] + [a.name for a in concurrent]
    assert sorted(names, key=lambda n: int(n[3:])) == [f"pub{i}" for i in range(7)]
    assert server.assigner.next_index == 7


@pytest.mark.asyncio
async def test_pending_request_fails_when_server_closes():
    port = free_udp_port()
    server = _server(host="127.0.0.1", port=port, max_concurrent_streams=1)
    await server.start()
    client = ControlChannelClient("127.0.0.1", port, keep_alive_period=None)
    try:
        await client.connect()

        # A stream that never ends its request holds the only handler slot.
        _, held = await client._protocol.create_stream()
        held.write(b"http://cdn/held.m3u8")
        await asyncio.sleep(0.2)

        pending = asyncio.ensure_future(client.request_publish("http://cdn/a.m3u8"))
        await asyncio.sleep(0.2)
        assert not pending.done()

        server.close()
        with pytest.raises(TransportError):
            await asyncio.wait_for(pending, timeout=10)
    finally:
        server.close()
        await server.wait_closed()
        await client.close()

    assert server.assigner.peek() == "pub0"
