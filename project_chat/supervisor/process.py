# FILE: project_chat/supervisor/process.py
"""
Process supervisor: runs a project's declared start command as a child.

State machine:

    NOT_STARTED -> RUNNING -> EXITED
                      \\----> STOPPED   (caller-initiated)

- start(): fresh manifest read, port allocation, spawn with
  env = ambient env + manifest env + PORT
- output relay: every stdout/stderr chunk goes to the event sink as it
  arrives, in order per stream
- exit: recorded by a watcher task once both streams are drained; the port
  is released and an "exit" event is emitted
- stop(): SIGTERM, no drain; a no-op when nothing is running
- start() after stop() waits (up to a grace period) for the stopped child to
  be reaped, so at most one child per supervisor is ever alive

Spawn failures raise SpawnFailed and are also emitted as an "error" event.
Nonzero exits are only reported through the event sink.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Deque, List, Optional, Union

from project_chat.config import DEFAULT_SHUTDOWN_GRACE_SEC, OUTPUT_TAIL_LINES
from project_chat.errors import ProcessAlreadyRunning, SpawnFailed
from project_chat.manifest import load_manifest
from project_chat.supervisor.ports import PortAllocator

logger = logging.getLogger(__name__)

RELAY_CHUNK_BYTES = 65536


class ProcessState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    EXITED = "exited"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ProcessEvent:
    service_id: str
    kind: str  # "stdout", "stderr", "exit", "error"
    data: str = ""
    exit_code: Optional[int] = None


EventSink = Callable[[ProcessEvent], None]


def log_process_event(event: ProcessEvent) -> None:
    """Default sink: echo child output to the server log."""
    if event.kind == "stdout":
        logger.info("[supervisor] %s stdout: %s", event.service_id, event.data.rstrip("\n"))
    elif event.kind == "stderr":
        logger.warning("[supervisor] %s stderr: %s", event.service_id, event.data.rstrip("\n"))
    elif event.kind == "exit":
        logger.info("[supervisor] %s exited with code %s", event.service_id, event.exit_code)
    else:
        logger.error("[supervisor] %s error: %s", event.service_id, event.data)


@dataclass
class SupervisedProcess:
    """One spawned child. ``process`` is dropped once the child is reaped."""
    service_id: str
    port: int
    pid: int
    started_at: float
    process: Optional[asyncio.subprocess.Process] = None
    exit_code: Optional[int] = None


class ProcessSupervisor:
    def __init__(
        self,
        service_id: str,
        project_root: Union[str, Path],
        *,
        ports: PortAllocator,
        sink: EventSink = log_process_event,
        tail_lines: int = OUTPUT_TAIL_LINES,
        restart_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SEC,
    ):
        self.service_id = service_id
        self.project_root = Path(project_root)
        self.ports = ports
        self.sink = sink
        self.state = ProcessState.NOT_STARTED
        self.current: Optional[SupervisedProcess] = None
        self.recent_output: Deque[str] = deque(maxlen=tail_lines)
        self.restart_grace_seconds = restart_grace_seconds
        self._watcher: Optional[asyncio.Task] = None
        self._start_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self.state == ProcessState.RUNNING

    @property
    def alive(self) -> bool:
        """True until the current child is reaped, including while STOPPED."""
        return self.current is not None and self.current.process is not None

    def _emit(self, event: ProcessEvent) -> None:
        try:
            self.sink(event)
        except Exception:
            logger.exception("[supervisor] Event sink failed for %s", self.service_id)

    # -------------------------------------------------------------------------
    # start / stop
    # -------------------------------------------------------------------------

    async def start(self) -> SupervisedProcess:
        """
        Spawn the project's start command.

        Raises:
            ProcessAlreadyRunning, ManifestMissing, ManifestInvalid,
            PortAllocationFailed, SpawnFailed
        """
        async with self._start_lock:
            if self.running:
                raise ProcessAlreadyRunning(f"Service {self.service_id} is already running")
            if self.alive:
                await self._await_stopped_child()
            return await self._spawn()

    async def _await_stopped_child(self) -> None:
        logger.info("[supervisor] Waiting for stopped %s pid=%d to exit", self.service_id, self.current.pid)
        try:
            await self.wait(self.restart_grace_seconds)
        except asyncio.TimeoutError:
            raise ProcessAlreadyRunning(
                f"Service {self.service_id} is still shutting down (pid={self.current.pid})"
            ) from None

    async def _spawn(self) -> SupervisedProcess:
        manifest = load_manifest(self.project_root)
        logger.info(
            "[supervisor] Starting %s at %s: %s %s",
            self.service_id, self.project_root, manifest.start, manifest.args,
        )

        port = self.ports.allocate()
        env = {**os.environ, **manifest.env, "PORT": str(port)}
        try:
            proc = await asyncio.create_subprocess_exec(
                manifest.start,
                *manifest.args,
                cwd=str(self.project_root),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self.ports.release(port)
            self._emit(ProcessEvent(self.service_id, "error", f"Failed to start subprocess: {e}"))
            raise SpawnFailed(f"Failed to start {manifest.start!r}: {e}") from e

        self.current = SupervisedProcess(
            service_id=self.service_id,
            port=port,
            pid=proc.pid,
            started_at=time.time(),
            process=proc,
        )
        self.recent_output.clear()
        self.state = ProcessState.RUNNING

        relays = [
            asyncio.create_task(self._relay(proc.stdout, "stdout")),
            asyncio.create_task(self._relay(proc.stderr, "stderr")),
        ]
        self._watcher = asyncio.create_task(self._watch(self.current, relays))

        logger.info("[supervisor] Started %s pid=%d port=%d", self.service_id, proc.pid, port)
        return self.current

    async def stop(self) -> bool:
        """Send SIGTERM. Returns False (no-op) when nothing is running."""
        if not self.running or self.current is None or self.current.process is None:
            return False
        self.state = ProcessState.STOPPED
        logger.info("[supervisor] Stopping %s pid=%d", self.service_id, self.current.pid)
        try:
            self.current.process.terminate()
        except ProcessLookupError:
            # already reaped by the OS; the watcher records the exit
            pass
        return True

    def kill(self) -> None:
        if self.current is not None and self.current.process is not None:
            try:
                self.current.process.kill()
            except ProcessLookupError:
                pass

    async def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Wait for the current child to be reaped; returns its exit code."""
        if self._watcher is None:
            return None
        await asyncio.wait_for(asyncio.shield(self._watcher), timeout)
        return self.current.exit_code if self.current else None

    async def terminate_and_wait(self, grace_seconds: float) -> bool:
        """SIGTERM, wait up to ``grace_seconds``, then SIGKILL. True if reaped.

        Also covers a child that was already stopped but has not exited yet.
        """
        if not self.alive:
            return True
        if self.running:
            await self.stop()
        try:
            await self.wait(grace_seconds)
            return True
        except asyncio.TimeoutError:
            logger.warning(
                "[supervisor] %s did not exit within %.1fs; sending SIGKILL",
                self.service_id, grace_seconds,
            )
        self.kill()
        try:
            await self.wait(grace_seconds)
            return True
        except asyncio.TimeoutError:
            logger.error("[supervisor] %s could not be killed", self.service_id)
            return False

    # -------------------------------------------------------------------------
    # relay / watcher
    # -------------------------------------------------------------------------

    async def _relay(self, stream: Optional[asyncio.StreamReader], kind: str) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(RELAY_CHUNK_BYTES)
            if not chunk:
                tail = decoder.decode(b"", final=True)
                if tail:
                    self._deliver(kind, tail)
                return
            text = decoder.decode(chunk)
            if text:
                self._deliver(kind, text)

    def _deliver(self, kind: str, text: str) -> None:
        for line in text.splitlines():
            self.recent_output.append(f"[{kind}] {line}")
        self._emit(ProcessEvent(self.service_id, kind, text))

    async def _watch(self, supervised: SupervisedProcess, relays: List[asyncio.Task]) -> None:
        proc = supervised.process
        rc = await proc.wait()
        await asyncio.gather(*relays, return_exceptions=True)

        supervised.exit_code = rc
        supervised.process = None
        self.ports.release(supervised.port)
        # an older child must never touch the state of its replacement
        if supervised is self.current and self.state == ProcessState.RUNNING:
            self.state = ProcessState.EXITED
        self._emit(ProcessEvent(self.service_id, "exit", exit_code=rc))

    def status(self) -> dict:
        cur = self.current
        return {
            "service_id": self.service_id,
            "state": self.state.value,
            "pid": cur.pid if cur else None,
            "port": cur.port if cur else None,
            "started_at": cur.started_at if cur else None,
            "exit_code": cur.exit_code if cur else None,
            "recent_output": list(self.recent_output),
        }


__all__ = [
    "ProcessState",
    "ProcessEvent",
    "EventSink",
    "log_process_event",
    "SupervisedProcess",
    "ProcessSupervisor",
]
