"""
QUIC control channel.

The assigner listens on a fixed UDP address with a single ALPN
("moq-media-url-send"). Each publish exchange uses one bidirectional stream:

    requester                         assigner
    ---------                         --------
    open stream
    write <media url>, FIN   ----->   read until FIN (max_message_size cap)
                                      name = assigner.assign()
    read until FIN           <-----   write <name>, FIN

A connection carries any number of exchanges, sequential or concurrent.
Every peer-initiated stream is served by its own task; the tasks are tracked
so close() can cancel whatever is still in flight.

Known limitation: there is no per-request timeout. A peer that never ends its
side of the stream holds its handler until the connection goes idle or the
server closes.
"""

from __future__ import annotations

import asyncio
import functools
import ssl
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass

from aioquic.asyncio import QuicConnectionProtocol, connect, serve
from aioquic.asyncio.server import QuicServer
from aioquic.quic.configuration import QuicConfiguration
from aioquic.quic.connection import stream_is_unidirectional
from aioquic.quic.events import ConnectionTerminated, HandshakeCompleted, QuicEvent

from moqrelay.infra.exceptions import TransportError
from moqrelay.infra.logging import get_logger
from moqrelay.runtime.assigner import PublisherIdentityAssigner
from moqrelay.transport.credentials import TransportCredential
from moqrelay.transport.messages import PublishAssignment, PublishRequest

logger = get_logger(__name__)

DEFAULT_ALPN = "moq-media-url-send"
DEFAULT_MAX_MESSAGE_SIZE = 4096


async def read_message(reader: asyncio.StreamReader, limit: int = DEFAULT_MAX_MESSAGE_SIZE) -> bytes:
    """
    Read until the peer ends its side of the stream.

    Raises:
        TransportError: If more than `limit` bytes arrive before the end of the stream.
    """
    chunks: list[bytes] = []
    size = 0
    while size <= limit:
        chunk = await reader.read(limit + 1 - size)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)
        size += len(chunk)
    raise TransportError(f"message exceeds {limit} bytes")


@dataclass(frozen=True)
class AssignmentResult:
    """What a stream handler hands back to the server after a completed exchange."""
    media_url: str
    name: str
    stream_id: int | None = None


AssignmentHandler = Callable[[AssignmentResult], Awaitable[None]]


class _ControlServerProtocol(QuicConnectionProtocol):
    """Reports connection lifecycle to the owning ControlChannelServer."""

    def __init__(self, *args, owner: ControlChannelServer, **kwargs):
        super().__init__(*args, **kwargs)
        self._owner = owner

    def quic_event_received(self, event: QuicEvent) -> None:
        # The base class dispatches new streams to the stream handler.
        super().quic_event_received(event)
        if isinstance(event, HandshakeCompleted):
            self._owner._connection_opened(self, event.alpn_protocol)
        elif isinstance(event, ConnectionTerminated):
            self._owner._connection_closed(self, event)


class ControlChannelServer:
    """Assigner side of the control channel."""

    def __init__(
        self,
        assigner: PublisherIdentityAssigner,
        credential: TransportCredential,
        *,
        host: str = "localhost",
        port: int = 4242,
        on_assigned: AssignmentHandler | None = None,
        alpn: str = DEFAULT_ALPN,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
        max_concurrent_streams: int = 64,
        idle_timeout: float = 30.0,
    ):
        self.assigner = assigner
        self.credential = credential
        self.host = host
        self.port = port
        self.on_assigned = on_assigned
        self.alpn = alpn
        self.max_message_size = max_message_size
        self.idle_timeout = idle_timeout

        self._server: QuicServer | None = None
        self._closing = False
        self._slots = asyncio.Semaphore(max_concurrent_streams)
        self._tasks: set[asyncio.Task[None]] = set()
        self._connections: set[QuicConnectionProtocol] = set()

    @property
    def accepting(self) -> bool:
        return self._server is not None and not self._closing

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        """
        Bind the listener.

        Raises:
            TransportError: If the address cannot be bound.
        """
        configuration = QuicConfiguration(
            is_client=False,
            alpn_protocols=[self.alpn],
            idle_timeout=self.idle_timeout,
        )
        self.credential.apply(configuration)
        try:
            self._server = await serve(
                self.host,
                self.port,
                configuration=configuration,
                create_protocol=functools.partial(_ControlServerProtocol, owner=self),
                stream_handler=self._on_stream,
            )
        except OSError as e:
            raise TransportError(f"cannot listen on {self.host}:{self.port}: {e}") from e
        logger.info("control_channel_listening", host=self.host, port=self.port, alpn=self.alpn)

    def close(self) -> None:
        """Stop accepting, close every connection and cancel in-flight handlers."""
        if self._closing:
            return
        self._closing = True
        if self._server is not None:
            self._server.close()
        for task in list(self._tasks):
            task.cancel()
        logger.info("control_channel_closed", cancelled=len(self._tasks), connections=self.connection_count)

    async def wait_closed(self) -> None:
        """Wait for the cancelled handler tasks to finish unwinding."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- connection bookkeeping ---
    def _connection_opened(self, protocol: QuicConnectionProtocol, alpn: str | None) -> None:
        self._connections.add(protocol)
        logger.info("connection_accepted", alpn=alpn, connections=len(self._connections))

    def _connection_closed(self, protocol: QuicConnectionProtocol, event: ConnectionTerminated) -> None:
        self._connections.discard(protocol)
        logger.info(
            "connection_closed",
            error_code=event.error_code,
            reason=event.reason_phrase,
            connections=len(self._connections),
        )

    # --- stream handling ---
    def _on_stream(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        stream_id = writer.get_extra_info("stream_id")
        if self._closing:
            logger.info("stream_rejected_closing", stream_id=stream_id)
            writer.write_eof()
            return
        if stream_id is not None and stream_is_unidirectional(stream_id):
            logger.warning("unidirectional_stream_ignored", stream_id=stream_id)
            return

        task = asyncio.ensure_future(self._serve_stream(reader, writer, stream_id))
        self._tasks.add(task)
        task.add_done_callback(self._stream_done)

    def _stream_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("stream_handler_failed", error=str(error), error_type=type(error).__name__)

    async def _serve_stream(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, stream_id: int | None
    ) -> None:
        async with self._slots:
            result = await self.exchange(reader, writer, stream_id)
        if result is not None and self.on_assigned is not None:
            await self.on_assigned(result)

    async def exchange(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        stream_id: int | None = None,
    ) -> AssignmentResult | None:
        """
        Serve one request on one stream.

        Returns:
            The completed assignment, or None when the request was unusable
            or the server started closing before a name was assigned.
        """
        try:
            request = PublishRequest.decode(await read_message(reader, self.max_message_size))
        except TransportError as e:
            logger.warning("request_rejected", stream_id=stream_id, error=str(e))
            writer.write_eof()
            return None

        if self._closing:
            writer.write_eof()
            return None

        logger.info("publish_requested", stream_id=stream_id, media_url=request.media_url)
        assignment = PublishAssignment(name=self.assigner.assign())
        writer.write(assignment.encode())
        writer.write_eof()
        logger.info("publisher_assigned", stream_id=stream_id, name=assignment.name)

        return AssignmentResult(media_url=request.media_url, name=assignment.name, stream_id=stream_id)


class ControlChannelClient:
    """Requester side of the control channel; one connection, many exchanges."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 4242,
        *,
        alpn: str = DEFAULT_ALPN,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
        keep_alive_period: float | None = 1.0,
        idle_timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.alpn = alpn
        self.max_message_size = max_message_size
        self.keep_alive_period = keep_alive_period
        self.idle_timeout = idle_timeout

        self._stack: AsyncExitStack | None = None
        self._protocol: QuicConnectionProtocol | None = None
        self._keep_alive: asyncio.Task[None] | None = None
        self._writers: set[asyncio.StreamWriter] = set()

    @property
    def connected(self) -> bool:
        return self._protocol is not None

    async def connect(self) -> None:
        """
        Dial the assigner. No retry.

        Raises:
            TransportError: If the handshake fails.
        """
        configuration = QuicConfiguration(
            is_client=True,
            alpn_protocols=[self.alpn],
            idle_timeout=self.idle_timeout,
            verify_mode=ssl.CERT_NONE,
        )
        stack = AsyncExitStack()
        try:
            self._protocol = await stack.enter_async_context(
                connect(self.host, self.port, configuration=configuration)
            )
        except (ConnectionError, OSError) as e:
            await stack.aclose()
            raise TransportError(f"cannot connect to {self.host}:{self.port}: {e}") from e
        self._stack = stack
        logger.info("control_channel_connected", host=self.host, port=self.port, alpn=self.alpn)

        if self.keep_alive_period:
            self._keep_alive = asyncio.ensure_future(self._keep_alive_loop())

    async def _keep_alive_loop(self) -> None:
        assert self._protocol is not None
        while True:
            await asyncio.sleep(self.keep_alive_period)
            try:
                await asyncio.wait_for(self._protocol.ping(), timeout=self.idle_timeout)
            except (asyncio.TimeoutError, ConnectionError) as e:
                logger.warning("keep_alive_failed", error=str(e) or type(e).__name__)
                return

    async def request_publish(self, media_url: str) -> PublishAssignment:
        """
        Send one publish request on a new stream and wait for the assignment.

        Raises:
            TransportError: If not connected, or the stream ends without a
                well-formed assignment.
        """
        if self._protocol is None:
            raise TransportError("control channel is not connected")

        reader, writer = await self._protocol.create_stream()
        self._writers.add(writer)
        try:
            writer.write(PublishRequest(media_url=media_url).encode())
            writer.write_eof()
            logger.info("publish_request_sent", media_url=media_url)

            data = await read_message(reader, self.max_message_size)
        finally:
            self._writers.discard(writer)

        if not data:
            raise TransportError("stream ended without an assignment")
        assignment = PublishAssignment.decode(data)
        logger.info("assignment_received", name=assignment.name)
        return assignment

    async def close(self) -> None:
        """Close open streams and the connection."""
        if self._keep_alive is not None:
            self._keep_alive.cancel()
            self._keep_alive = None
        for writer in list(self._writers):
            writer.write_eof()
        self._writers.clear()
        stack, self._stack = self._stack, None
        self._protocol = None
        if stack is not None:
            await stack.aclose()
            logger.info("control_channel_disconnected", host=self.host, port=self.port)

    async def __aenter__(self) -> ControlChannelClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
