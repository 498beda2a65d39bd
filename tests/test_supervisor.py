# FILE: tests/test_supervisor.py
"""
Tests for project_chat/supervisor/process.py and registry.py

These spawn real children with the current interpreter, so they exercise
the actual pipe relay, signal delivery and reaping.
"""

import asyncio
import sys
from pathlib import Path
from typing import List

import pytest

from conftest import python_manifest, write_manifest
from project_chat.errors import (
    ManifestInvalid,
    ManifestMissing,
    ProcessAlreadyRunning,
    SpawnFailed,
)
from project_chat.supervisor.ports import PortAllocator
from project_chat.supervisor.process import ProcessEvent, ProcessState, ProcessSupervisor
from project_chat.supervisor.registry import SupervisorRegistry

pytestmark = pytest.mark.slow

SLEEPER = "import time; time.sleep(30)"

# exits 0.5s after SIGTERM, so a stopped child is briefly still alive
SLOW_EXIT = (
    "import signal, sys, time\n"
    "def bye(*_):\n"
    "    time.sleep(0.5)\n"
    "    sys.exit(0)\n"
    "signal.signal(signal.SIGTERM, bye)\n"
    "print('ready', flush=True)\n"
    "time.sleep(30)\n"
)


class EventLog:
    """Event sink that keeps everything it is given."""

    def __init__(self):
        self.events: List[ProcessEvent] = []

    def __call__(self, event: ProcessEvent) -> None:
        self.events.append(event)

    def text(self, kind: str, service_id: str = None) -> str:
        return "".join(
            e.data for e in self.events
            if e.kind == kind and (service_id is None or e.service_id == service_id)
        )

    def kinds(self) -> List[str]:
        return [e.kind for e in self.events]


async def _until(predicate, timeout: float = 10.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def ports():
    return PortAllocator()


# =============================================================================
# ProcessSupervisor
# =============================================================================

class TestStart:
    @pytest.mark.asyncio
    async def test_env_and_port_reach_the_child(self, tmp_path, events, ports):
        python_manifest(
            tmp_path,
            "import os; print(os.environ['PORT'], os.environ['GREETING'])",
            env={"GREETING": "hello"},
        )
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events)

        started = await sup.start()
        rc = await sup.wait(10)

        assert rc == 0
        assert events.text("stdout").strip() == f"{started.port} hello"
        assert sup.state == ProcessState.EXITED

    @pytest.mark.asyncio
    async def test_runs_in_project_root(self, tmp_path, events, ports):
        python_manifest(tmp_path, "import os; print(os.getcwd())")
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events)

        await sup.start()
        await sup.wait(10)

        assert Path(events.text("stdout").strip()).resolve() == tmp_path.resolve()

    @pytest.mark.asyncio
    async def test_stderr_relayed_separately(self, tmp_path, events, ports):
        python_manifest(tmp_path, "import sys; print('out'); sys.stderr.write('oops\\n')")
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events)

        await sup.start()
        await sup.wait(10)

        assert events.text("stdout") == "out\n"
        assert events.text("stderr") == "oops\n"
        assert "[stderr] oops" in sup.status()["recent_output"]

    @pytest.mark.asyncio
    async def test_exit_event_is_last_and_port_released(self, tmp_path, events, ports):
        python_manifest(tmp_path, "print('bye')")
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events)

        started = await sup.start()
        await sup.wait(10)

        assert events.kinds()[-1] == "exit"
        assert events.events[-1].exit_code == 0
        assert started.port not in ports.reserved
        assert sup.current.process is None

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_reported_not_raised(self, tmp_path, events, ports):
        python_manifest(tmp_path, "import sys; sys.exit(3)")
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events)

        await sup.start()
        rc = await sup.wait(10)

        assert rc == 3
        assert events.events[-1].kind == "exit"
        assert events.events[-1].exit_code == 3
        assert sup.status()["exit_code"] == 3

    @pytest.mark.asyncio
    async def test_restart_after_exit(self, tmp_path, events, ports):
        python_manifest(tmp_path, "print('run')")
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events)

        await sup.start()
        await sup.wait(10)
        await sup.start()
        await sup.wait(10)

        assert events.text("stdout") == "run\nrun\n"
        assert events.kinds().count("exit") == 2


class TestStartFailures:
    @pytest.mark.asyncio
    async def test_missing_manifest(self, tmp_path, events, ports):
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events)

        with pytest.raises(ManifestMissing):
            await sup.start()

        assert sup.state == ProcessState.NOT_STARTED
        assert ports.reserved == set()

    @pytest.mark.asyncio
    async def test_invalid_manifest(self, tmp_path, events, ports):
        (tmp_path / "ntwk.json").write_text('{"args": ["x"]}', encoding="utf-8")
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events)

        with pytest.raises(ManifestInvalid):
            await sup.start()

    @pytest.mark.asyncio
    async def test_spawn_failure_raises_and_emits(self, tmp_path, events, ports):
        write_manifest(tmp_path, str(tmp_path / "no-such-binary"))
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events)

        with pytest.raises(SpawnFailed):
            await sup.start()

        assert events.kinds() == ["error"]
        assert "Failed to start subprocess" in events.events[0].data
        assert ports.reserved == set()
        assert sup.running is False

    @pytest.mark.asyncio
    async def test_already_running(self, tmp_path, events, ports):
        python_manifest(tmp_path, SLEEPER)
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events)
        await sup.start()
        try:
            with pytest.raises(ProcessAlreadyRunning):
                await sup.start()
        finally:
            assert await sup.terminate_and_wait(5)


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_when_idle_is_noop(self, tmp_path, events, ports):
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events)

        assert await sup.stop() is False
        assert events.events == []

    @pytest.mark.asyncio
    async def test_stop_terminates_child(self, tmp_path, events, ports):
        python_manifest(tmp_path, SLEEPER)
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events)
        started = await sup.start()

        assert await sup.stop() is True
        rc = await sup.wait(10)

        assert rc != 0
        assert sup.state == ProcessState.STOPPED
        assert started.port not in ports.reserved
        assert events.kinds()[-1] == "exit"

    @pytest.mark.asyncio
    async def test_second_stop_is_noop(self, tmp_path, events, ports):
        python_manifest(tmp_path, SLEEPER)
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events)
        await sup.start()

        assert await sup.stop() is True
        assert await sup.stop() is False
        await sup.wait(10)

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="SIGTERM cannot be ignored on Windows")
    async def test_escalates_to_kill(self, tmp_path, events, ports):
        python_manifest(
            tmp_path,
            "import signal, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "print('ready', flush=True)\n"
            "time.sleep(30)\n",
        )
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events)
        await sup.start()
        await _until(lambda: "ready" in events.text("stdout"))

        assert await sup.terminate_and_wait(0.5) is True
        assert sup.current.exit_code == -9


# =============================================================================
# SupervisorRegistry
# =============================================================================

class TestRegistry:
    @pytest.mark.asyncio
    async def test_services_get_distinct_ports(self, tmp_path, events):
        python_manifest(tmp_path, SLEEPER)
        registry = SupervisorRegistry(tmp_path, sink=events)

        a = await registry.start("svc1")
        b = await registry.start("svc2")

        assert a.port != b.port
        assert {s.service_id for s in registry.live()} == {"svc1", "svc2"}
        assert set(registry.status()) == {"svc1", "svc2"}

        results = await registry.shutdown(5)
        assert results == {"svc1": True, "svc2": True}
        assert registry.live() == []

    @pytest.mark.asyncio
    async def test_stop_unknown_service(self, tmp_path, events):
        registry = SupervisorRegistry(tmp_path, sink=events)
        assert await registry.stop("nobody") is False

    @pytest.mark.asyncio
    async def test_per_service_project_root(self, tmp_path, events):
        other = tmp_path / "other"
        other.mkdir()
        python_manifest(other, "print('from other')")
        registry = SupervisorRegistry(tmp_path, sink=events)

        await registry.start("svc", other)
        await registry.get("svc").wait(10)

        assert events.text("stdout", "svc") == "from other\n"

    @pytest.mark.asyncio
    async def test_shutdown_closes_registry(self, tmp_path, events):
        python_manifest(tmp_path, SLEEPER)
        registry = SupervisorRegistry(tmp_path, sink=events)

        assert await registry.shutdown(1) == {}
        with pytest.raises(RuntimeError):
            await registry.start("svc")


@pytest.mark.skipif(sys.platform == "win32", reason="SIGTERM handlers are POSIX only")
class TestRestartAfterStop:
    """A stop() followed at once by start() while the old child is still exiting."""

    @pytest.mark.asyncio
    async def test_restart_waits_for_stopped_child(self, tmp_path, events):
        python_manifest(tmp_path, SLOW_EXIT)
        registry = SupervisorRegistry(tmp_path, sink=events)

        first = await registry.start("svc")
        await _until(lambda: "ready" in events.text("stdout"))
        assert await registry.stop("svc") is True

        second = await registry.start("svc")
        sup = registry.get("svc")

        assert second.pid != first.pid
        assert first.exit_code is not None
        assert sup.state == ProcessState.RUNNING

        # the old child's exit must not demote the new one
        await asyncio.sleep(1.0)
        assert sup.state == ProcessState.RUNNING
        assert registry.live() == [sup]

        assert await registry.shutdown(5) == {"svc": True}
        assert second.exit_code is not None
        assert registry.live() == []

    @pytest.mark.asyncio
    async def test_restart_refused_while_stopped_child_lingers(self, tmp_path, events, ports):
        python_manifest(tmp_path, SLOW_EXIT)
        sup = ProcessSupervisor("svc", tmp_path, ports=ports, sink=events, restart_grace_seconds=0.05)
        await sup.start()
        await _until(lambda: "ready" in events.text("stdout"))
        await sup.stop()

        with pytest.raises(ProcessAlreadyRunning, match="still shutting down"):
            await sup.start()

        await sup.wait(5)
        assert sup.alive is False

    @pytest.mark.asyncio
    async def test_shutdown_reaps_stopped_but_alive_child(self, tmp_path, events):
        python_manifest(tmp_path, SLOW_EXIT)
        registry = SupervisorRegistry(tmp_path, sink=events)

        started = await registry.start("svc")
        await _until(lambda: "ready" in events.text("stdout"))
        await registry.stop("svc")

        assert registry.live() == [registry.get("svc")]
        assert await registry.shutdown(5) == {"svc": True}
        assert started.exit_code is not None
