"""
ShutdownCoordinator: ordered, best-effort, run-once teardown.
"""

import asyncio
import signal

import pytest

from moqrelay.infra.exceptions import TerminationError
from moqrelay.runtime.shutdown import ShutdownCoordinator, ShutdownState


class RecordingSupervisor:
    def __init__(self, steps, errors=None, fail=False):
        self.steps = steps
        self.errors = errors or []
        self.fail = fail
        self.calls = 0

    async def terminate_all(self):
        self.calls += 1
        self.steps.append("terminate_all")
        if self.fail:
            raise RuntimeError("registry unavailable")
        return self.errors


@pytest.mark.asyncio
async def test_steps_run_in_order():
    steps = []
    coordinator = ShutdownCoordinator(RecordingSupervisor(steps))
    coordinator.add_stop_accepting("listener", lambda: steps.append("stop_accepting"))

    async def release():
        steps.append("release")

    coordinator.add_release("connections", release)

    await coordinator.shutdown()

    assert steps == ["stop_accepting", "terminate_all", "release"]
    assert coordinator.state is ShutdownState.TERMINATING


@pytest.mark.asyncio
async def test_failing_steps_do_not_stop_later_steps():
    steps = []
    supervisor = RecordingSupervisor(steps, fail=True)
    coordinator = ShutdownCoordinator(supervisor)

    def broken():
        raise OSError("socket already closed")

    coordinator.add_stop_accepting("listener", broken)
    coordinator.add_release("connections", lambda: steps.append("release"))

    await coordinator.shutdown()

    assert steps == ["terminate_all", "release"]
    assert [name for name, _ in coordinator.hook_errors] == ["listener", "terminate_all"]


@pytest.mark.asyncio
async def test_termination_errors_are_kept():
    error = TerminationError("pub0", 123, "process did not exit after SIGKILL")
    coordinator = ShutdownCoordinator(RecordingSupervisor([], errors=[error]))

    await coordinator.shutdown()

    assert coordinator.termination_errors == [error]


@pytest.mark.asyncio
async def test_trigger_is_idempotent():
    supervisor = RecordingSupervisor([])
    coordinator = ShutdownCoordinator(supervisor)

    first = coordinator.trigger(signal.SIGINT)
    second = coordinator.trigger(signal.SIGTERM)
    await coordinator.wait()

    assert first is second
    assert supervisor.calls == 1
    assert not coordinator.running


@pytest.mark.asyncio
async def test_signal_handler_triggers_shutdown():
    supervisor = RecordingSupervisor([])
    coordinator = ShutdownCoordinator(supervisor)
    coordinator.install_signal_handlers(signals=(signal.SIGUSR1,))
    try:
        signal.raise_signal(signal.SIGUSR1)
        await asyncio.wait_for(coordinator.wait(), timeout=5.0)
    finally:
        coordinator.remove_signal_handlers()

    assert supervisor.calls == 1
