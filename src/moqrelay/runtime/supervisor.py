"""
External media pipeline process management.

The ProcessSupervisor starts the publish / subscribe / relay pipelines,
keeps every started pipeline in a registry keyed by publisher name (or
"relay"), and terminates all of them at shutdown. Finished processes are not
reaped mid-run; the registry only shrinks in terminate_all().

Pipeline output (stderr of every stage, stdout of the last stage) goes to the
host process's own stdout/stderr so the operator sees it.
"""

from __future__ import annotations

import asyncio
import os
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from moqrelay.infra.exceptions import LaunchError, TerminationError
from moqrelay.infra.logging import get_logger
from moqrelay.streaming.pipeline_cmd import PipelineSpec

logger = get_logger(__name__)

DEFAULT_TERMINATION_TIMEOUT = 5.0


class ProcessHandle(Protocol):
    """The subset of asyncio.subprocess.Process the supervisor relies on."""

    pid: int
    returncode: int | None

    def terminate(self) -> None: ...

    def kill(self) -> None: ...

    async def wait(self) -> int: ...


@dataclass
class ManagedProcess:
    """A started pipeline: one OS process per stage."""
    key: str
    processes: list[ProcessHandle]
    label: str = "pipeline"

    @property
    def pid(self) -> int | None:
        return self.processes[0].pid if self.processes else None

    @property
    def pids(self) -> list[int]:
        return [p.pid for p in self.processes]

    @property
    def running(self) -> bool:
        return any(p.returncode is None for p in self.processes)


class ProcessSupervisor:
    """Launches pipelines and owns the process registry."""

    def __init__(self, termination_timeout: float = DEFAULT_TERMINATION_TIMEOUT):
        self.termination_timeout = termination_timeout
        self._registry: dict[str, ManagedProcess] = {}
        self._lock = threading.Lock()

    # --- registry ---
    def register(self, key: str, managed: ManagedProcess) -> None:
        """
        Insert a launched pipeline into the registry.

        Raises:
            ValueError: If key is already registered.
        """
        with self._lock:
            if key in self._registry:
                raise ValueError(f"process key already registered: {key}")
            self._registry[key] = managed

    def get(self, key: str) -> ManagedProcess | None:
        with self._lock:
            return self._registry.get(key)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._registry)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._registry

    def __len__(self) -> int:
        with self._lock:
            return len(self._registry)

    # --- launch ---
    async def launch(self, key: str, pipeline: PipelineSpec) -> ManagedProcess:
        """
        Start every stage of the pipeline, each stage's stdout piped into the next.

        If a later stage fails to start, the stages already running are killed.

        Raises:
            LaunchError: If any stage cannot be started.
        """
        logger.info("pipeline_launching", key=key, label=pipeline.label, command=pipeline.describe())

        started: list[ProcessHandle] = []
        prev_read: int | None = None
        try:
            last_index = len(pipeline.stages) - 1
            for index, argv in enumerate(pipeline.stages):
                next_read, write_end = (None, None) if index == last_index else os.pipe()
                try:
                    proc = await asyncio.create_subprocess_exec(
                        *argv,
                        stdin=prev_read if prev_read is not None else asyncio.subprocess.DEVNULL,
                        stdout=write_end,  # None inherits the host's stdout
                        stderr=None,
                    )
                except BaseException:
                    if next_read is not None:
                        os.close(next_read)
                    raise
                finally:
                    # The children hold their own copies of the pipe ends.
                    if prev_read is not None:
                        os.close(prev_read)
                        prev_read = None
                    if write_end is not None:
                        os.close(write_end)
                prev_read = next_read
                started.append(proc)
        except (OSError, ValueError) as e:
            await self._kill_quietly(key, started)
            raise LaunchError(key, f"failed to start {pipeline.label} pipeline: {e}") from e
        except asyncio.CancelledError:
            await self._kill_quietly(key, started)
            raise

        managed = ManagedProcess(key=key, processes=started, label=pipeline.label)
        logger.info("pipeline_started", key=key, label=pipeline.label, pids=managed.pids)
        return managed

    async def start(self, key: str, pipeline: PipelineSpec) -> ManagedProcess | None:
        """
        launch() + register(). A launch failure is logged and None returned.
        """
        if key in self:
            logger.error("pipeline_launch_failed", key=key, error="key already registered")
            return None
        try:
            managed = await self.launch(key, pipeline)
        except LaunchError as e:
            logger.error("pipeline_launch_failed", key=key, error=str(e))
            return None
        self.register(key, managed)
        return managed

    async def _kill_quietly(self, key: str, processes: list[ProcessHandle]) -> None:
        for proc in processes:
            if proc.returncode is not None:
                continue
            try:
                proc.kill()
                await proc.wait()
            except ProcessLookupError:
                pass
            except OSError as e:
                logger.warning("partial_pipeline_kill_failed", key=key, pid=proc.pid, error=str(e))

    # --- termination ---
    async def _terminate_process(self, key: str, proc: ProcessHandle) -> None:
        """SIGTERM, wait, then SIGKILL. Raises TerminationError if the process survives."""
        if proc.returncode is not None:
            return

        logger.info("process_terminating", key=key, pid=proc.pid)
        try:
            proc.terminate()
        except ProcessLookupError:
            return  # exited between the check and the signal
        except OSError as e:
            raise TerminationError(key, proc.pid, f"terminate failed: {e}") from e

        try:
            await asyncio.wait_for(proc.wait(), timeout=self.termination_timeout)
            return
        except asyncio.TimeoutError:
            logger.warning("process_kill_escalation", key=key, pid=proc.pid)

        try:
            proc.kill()
        except ProcessLookupError:
            return
        except OSError as e:
            raise TerminationError(key, proc.pid, f"kill failed: {e}") from e

        try:
            await asyncio.wait_for(proc.wait(), timeout=self.termination_timeout)
        except asyncio.TimeoutError as e:
            raise TerminationError(key, proc.pid, "process did not exit after SIGKILL") from e

    async def terminate_all(self) -> list[TerminationError]:
        """
        Terminate every registered process, best effort.

        Every process is attempted regardless of earlier failures. Returns one
        TerminationError per process that could not be terminated; each is
        also logged.
        """
        with self._lock:
            entries = list(self._registry.items())
            self._registry.clear()

        targets = [(key, proc) for key, managed in entries for proc in managed.processes]
        results = await asyncio.gather(
            *(self._terminate_process(key, proc) for key, proc in targets),
            return_exceptions=True,
        )

        errors: list[TerminationError] = []
        for (key, proc), result in zip(targets, results):
            if result is None:
                continue
            if isinstance(result, TerminationError):
                error = result
            elif isinstance(result, Exception):
                error = TerminationError(key, getattr(proc, "pid", None), str(result))
            else:
                raise result  # CancelledError and friends
            logger.error("process_termination_failed", key=key, pid=error.pid, error=str(error))
            errors.append(error)

        logger.info(
            "processes_terminated",
            pipelines=len(entries),
            processes=len(targets),
            failures=len(errors),
        )
        return errors


async def wait_until_ready(
    probe: Callable[[], Awaitable[bool]] | None = None,
    timeout: float = 3.0,
    interval: float = 0.25,
) -> bool:
    """
    Wait for an externally started pipeline to become usable.

    Without a probe this is a plain timed wait of `timeout` seconds. With a
    probe, the probe is polled every `interval` seconds and the wait ends as
    soon as it returns True; `timeout` is then the upper bound.

    Returns:
        True if the probe reported ready (or no probe was given), False on timeout.
    """
    if probe is None:
        await asyncio.sleep(timeout)
        return True

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        try:
            if await probe():
                return True
        except Exception as e:
            logger.debug("readiness_probe_error", error=str(e))
        remaining = deadline - loop.time()
        if remaining <= 0:
            logger.warning("readiness_timeout", timeout=timeout)
            return False
        await asyncio.sleep(min(interval, remaining))
