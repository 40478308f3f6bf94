"""
Server role: relay broker + publisher identity assignment + publish pipelines.

Start-up launches the moq-rs relay under the key "relay" and opens the QUIC
control channel. Every completed exchange starts an ffmpeg | moq-pub
pipeline registered under the very name that was sent to the client. A
pipeline that fails to start is logged; the client already holds its name.
"""

from __future__ import annotations

import signal
from pathlib import Path

from moqrelay.infra.exceptions import LaunchError
from moqrelay.infra.logging import get_logger
from moqrelay.infra.settings import Settings, settings as default_settings
from moqrelay.runtime.assigner import PublisherIdentityAssigner
from moqrelay.runtime.shutdown import ShutdownCoordinator
from moqrelay.runtime.supervisor import ManagedProcess, ProcessSupervisor
from moqrelay.streaming.pipeline_cmd import (
    build_publish_cmd,
    build_relay_cmd,
    moq_pub_from_moqrs,
)
from moqrelay.transport.control_channel import AssignmentResult, ControlChannelServer
from moqrelay.transport.credentials import TransportCredential, load_or_generate

logger = get_logger(__name__)

RELAY_KEY = "relay"
SERVER_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGQUIT)


class PublishServer:
    """Owns the assigner, the supervisor and the control channel of one server process."""

    def __init__(
        self,
        moqrs_dir: str | Path,
        *,
        config: Settings | None = None,
        supervisor: ProcessSupervisor | None = None,
        assigner: PublisherIdentityAssigner | None = None,
        credential: TransportCredential | None = None,
        start_relay: bool = True,
    ):
        self.config = config if config is not None else default_settings
        self.moqrs_dir = Path(moqrs_dir)
        if supervisor is None:
            supervisor = ProcessSupervisor(self.config.termination_timeout)
        self.supervisor = supervisor
        self.assigner = assigner if assigner is not None else PublisherIdentityAssigner()
        if credential is None:
            credential = load_or_generate(self.config.cert_file, self.config.key_file)
        self.credential = credential
        self.start_relay = start_relay
        self.moq_pub_bin = self.config.moq_pub_bin or moq_pub_from_moqrs(self.moqrs_dir)

        self.channel = ControlChannelServer(
            self.assigner,
            self.credential,
            host=self.config.control_host,
            port=self.config.control_port,
            on_assigned=self.publish,
            alpn=self.config.alpn_protocol,
            max_message_size=self.config.max_message_size,
            max_concurrent_streams=self.config.max_concurrent_streams,
            idle_timeout=self.config.idle_timeout,
        )
        self.coordinator = ShutdownCoordinator(self.supervisor)
        self.coordinator.add_stop_accepting("control_channel", self.channel.close)
        self.coordinator.add_release("stream_handlers", self.channel.wait_closed)

    async def launch_relay(self) -> ManagedProcess:
        """
        Start the relay broker and register it under "relay".

        Raises:
            LaunchError: If the relay cannot be started.
        """
        managed = await self.supervisor.launch(RELAY_KEY, build_relay_cmd(self.moqrs_dir))
        self.supervisor.register(RELAY_KEY, managed)
        logger.info("relay_started", pid=managed.pid)
        return managed

    async def publish(self, result: AssignmentResult) -> ManagedProcess | None:
        """Start the publish pipeline for a completed assignment."""
        pipeline = build_publish_cmd(
            result.media_url,
            result.name,
            self.config.relay_url,
            ffmpeg_bin=self.config.ffmpeg_bin,
            moq_pub_bin=self.moq_pub_bin,
        )
        managed = await self.supervisor.start(result.name, pipeline)
        if managed is not None:
            logger.info("publishing", name=result.name, media_url=result.media_url, pids=managed.pids)
        return managed

    async def start(self) -> None:
        """
        Listen, then start the relay. A relay launch failure closes the listener.

        Raises:
            TransportError: If the control channel cannot listen.
            LaunchError: If the relay cannot be started.
        """
        await self.channel.start()
        if not self.start_relay:
            return
        try:
            await self.launch_relay()
        except LaunchError:
            self.channel.close()
            await self.channel.wait_closed()
            raise

    async def run(self) -> None:
        """Serve until SIGINT/SIGTERM/SIGQUIT, then tear everything down."""
        await self.start()
        self.coordinator.install_signal_handlers(signals=SERVER_SIGNALS)
        try:
            logger.info("server_running", host=self.config.control_host, port=self.config.control_port)
            await self.coordinator.wait()
        finally:
            self.coordinator.remove_signal_handlers()
        logger.info("server_terminated")
