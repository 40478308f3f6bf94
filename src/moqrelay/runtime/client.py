"""
Client role: pick a random channel, obtain a publisher name, subscribe.

The subscribe pipeline (moq-sub | ffmpeg) is started only after a readiness
wait that gives the server's publish pipeline and the relay time to come up.
The connection stays open until SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from pathlib import Path

from moqrelay.catalog.channel_catalog import load_catalog
from moqrelay.catalog.selector import select_random_media_url
from moqrelay.infra.logging import get_logger
from moqrelay.infra.settings import Settings, settings as default_settings
from moqrelay.runtime.shutdown import ShutdownCoordinator
from moqrelay.runtime.supervisor import ManagedProcess, ProcessSupervisor, wait_until_ready
from moqrelay.streaming.pipeline_cmd import build_subscribe_cmd, moq_sub_from_moqrs
from moqrelay.transport.control_channel import ControlChannelClient

logger = get_logger(__name__)

ReadinessProbe = Callable[[], Awaitable[bool]]


class SubscribeClient:
    """One client run: select, request, wait, subscribe, hold until shutdown."""

    def __init__(
        self,
        catalog_root: str | Path,
        output_dir: str | Path,
        *,
        config: Settings | None = None,
        supervisor: ProcessSupervisor | None = None,
        channel: ControlChannelClient | None = None,
        rng: random.Random | None = None,
        readiness_probe: ReadinessProbe | None = None,
    ):
        self.config = config if config is not None else default_settings
        self.catalog_root = Path(catalog_root)
        self.output_dir = Path(output_dir)
        if supervisor is None:
            supervisor = ProcessSupervisor(self.config.termination_timeout)
        self.supervisor = supervisor
        if channel is None:
            channel = ControlChannelClient(
                self.config.control_host,
                self.config.control_port,
                alpn=self.config.alpn_protocol,
                max_message_size=self.config.max_message_size,
                keep_alive_period=self.config.keep_alive_period,
                idle_timeout=self.config.idle_timeout,
            )
        self.channel = channel
        self.rng = rng
        self.readiness_probe = readiness_probe
        self.moq_sub_bin = self.config.moq_sub_bin or moq_sub_from_moqrs(self.config.moqrs_dir)

        self.publisher_name: str | None = None
        self.subscription: ManagedProcess | None = None
        self.coordinator = ShutdownCoordinator(self.supervisor)

    async def start(self) -> str:
        """
        Everything up to and including launching the subscribe pipeline.

        Returns:
            The publisher name received from the server.

        Raises:
            EmptyCatalogError: If the catalog has nothing to select.
            TransportError: If the control exchange fails.
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)

        catalog = load_catalog(self.catalog_root)
        channel_name, media_url = select_random_media_url(catalog, self.rng)

        await self.channel.connect()
        assignment = await self.channel.request_publish(media_url)
        self.publisher_name = assignment.name
        logger.info("publisher_name_received", channel=channel_name, name=assignment.name)

        ready = await wait_until_ready(self.readiness_probe, timeout=self.config.subscribe_delay)
        if not ready:
            logger.warning("subscribing_without_readiness", name=assignment.name)

        pipeline = build_subscribe_cmd(
            assignment.name,
            self.config.relay_url,
            self.output_dir,
            duration=self.config.subscribe_duration,
            ffmpeg_bin=self.config.ffmpeg_bin,
            moq_sub_bin=self.moq_sub_bin,
        )
        self.subscription = await self.supervisor.start(assignment.name, pipeline)
        if self.subscription is not None:
            logger.info("subscribed", name=assignment.name, output_dir=str(self.output_dir))
        return assignment.name

    async def run(self) -> str | None:
        """
        start() and then hold until shutdown.

        A signal that arrives during start() cancels it and proceeds straight
        to teardown. Errors from start() tear down and propagate.
        """
        self.coordinator.install_signal_handlers()
        startup = asyncio.ensure_future(self.start())
        self.coordinator.add_stop_accepting("startup", startup.cancel)
        self.coordinator.add_stop_accepting("control_channel", self.channel.close)
        try:
            try:
                await startup
            except asyncio.CancelledError:
                if self.coordinator.running:
                    raise
                logger.info("startup_interrupted")
            except Exception:
                await self.coordinator.shutdown()
                raise
            await self.coordinator.wait()
        finally:
            self.coordinator.remove_signal_handlers()
        logger.info("client_terminated", name=self.publisher_name)
        return self.publisher_name
