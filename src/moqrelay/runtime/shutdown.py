"""
Shutdown coordination for the client and server roles.

RUNNING -> TERMINATING, triggered once by SIGINT/SIGTERM (or trigger()).
The transition runs, in order and each step regardless of earlier failures:

  1. stop-accepting hooks   (close the listener / the current connection)
  2. supervisor.terminate_all()
  3. release hooks          (close open streams and connections)

and then sets the done event the role runner waits on. There is no drain
period: in-flight exchanges are abandoned.
"""

from __future__ import annotations

import asyncio
import inspect
import signal
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Union

from moqrelay.infra.exceptions import TerminationError
from moqrelay.infra.logging import get_logger
from moqrelay.runtime.supervisor import ProcessSupervisor

logger = get_logger(__name__)

Hook = Callable[[], Union[None, Awaitable[None]]]

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownState(str, Enum):
    RUNNING = "running"
    TERMINATING = "terminating"


class ShutdownCoordinator:
    """Runs the ordered, best-effort teardown exactly once."""

    def __init__(self, supervisor: ProcessSupervisor):
        self.supervisor = supervisor
        self.state = ShutdownState.RUNNING
        self.termination_errors: list[TerminationError] = []
        self.hook_errors: list[tuple[str, Exception]] = []
        self._stop_accepting: list[tuple[str, Hook]] = []
        self._release: list[tuple[str, Hook]] = []
        self._done = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._installed: list[signal.Signals] = []

    @property
    def running(self) -> bool:
        return self.state is ShutdownState.RUNNING

    def add_stop_accepting(self, name: str, hook: Hook) -> None:
        self._stop_accepting.append((name, hook))

    def add_release(self, name: str, hook: Hook) -> None:
        self._release.append((name, hook))

    def install_signal_handlers(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        signals: tuple[signal.Signals, ...] = DEFAULT_SIGNALS,
    ) -> None:
        """Route the given signals to trigger() on the event loop."""
        loop = loop or asyncio.get_running_loop()
        for sig in signals:
            loop.add_signal_handler(sig, self.trigger, sig)
            self._installed.append(sig)

    def remove_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in self._installed:
            loop.remove_signal_handler(sig)
        self._installed.clear()

    def trigger(self, sig: signal.Signals | None = None) -> asyncio.Task[None] | None:
        """Enter TERMINATING and schedule the teardown. Later calls are ignored."""
        if self.state is ShutdownState.TERMINATING:
            logger.debug("shutdown_already_triggered")
            return self._task
        self.state = ShutdownState.TERMINATING
        logger.info("shutdown_triggered", signal=sig.name if sig is not None else None)
        self._task = asyncio.ensure_future(self._run())
        return self._task

    async def wait(self) -> None:
        """Block until the teardown has completed."""
        await self._done.wait()

    async def shutdown(self) -> None:
        """trigger() and wait for completion."""
        task = self.trigger()
        if task is not None:
            await task
        await self.wait()

    async def _call(self, phase: str, name: str, hook: Hook) -> None:
        try:
            result = hook()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("shutdown_step_failed", phase=phase, step=name, error=str(e))
            self.hook_errors.append((name, e))

    async def _run(self) -> None:
        try:
            for name, hook in self._stop_accepting:
                await self._call("stop_accepting", name, hook)

            try:
                self.termination_errors = await self.supervisor.terminate_all()
            except Exception as e:
                logger.error("shutdown_step_failed", phase="terminate", step="terminate_all", error=str(e))
                self.hook_errors.append(("terminate_all", e))

            for name, hook in self._release:
                await self._call("release", name, hook)
        finally:
            logger.info(
                "shutdown_complete",
                termination_failures=len(self.termination_errors),
                step_failures=len(self.hook_errors),
            )
            self._done.set()
