# FILE: project_chat/supervisor/registry.py
"""Supervisor registry: the process-wide owner of every supervised child.

Created once at application startup (stored on ``app.state``) and passed to
whatever needs it; there is no module-level registry. ``shutdown()`` must be
called before the host process exits so that no child outlives it.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from project_chat.config import DEFAULT_BIND_HOST, DEFAULT_SHUTDOWN_GRACE_SEC
from project_chat.supervisor.ports import PortAllocator
from project_chat.supervisor.process import (
    EventSink,
    ProcessSupervisor,
    SupervisedProcess,
    log_process_event,
)

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_ID = "default"


class SupervisorRegistry:
    def __init__(
        self,
        default_root: Union[str, Path],
        *,
        ports: Optional[PortAllocator] = None,
        sink: EventSink = log_process_event,
        bind_host: str = DEFAULT_BIND_HOST,
    ):
        self.default_root = Path(default_root)
        self.ports = ports if ports is not None else PortAllocator(host=bind_host)
        self.sink = sink
        self._supervisors: Dict[str, ProcessSupervisor] = {}
        self._closed = False

    def get(self, service_id: str) -> Optional[ProcessSupervisor]:
        return self._supervisors.get(service_id)

    def supervisor_for(
        self,
        service_id: str,
        project_root: Optional[Union[str, Path]] = None,
    ) -> ProcessSupervisor:
        sup = self._supervisors.get(service_id)
        root = Path(project_root) if project_root is not None else self.default_root
        if sup is None or (project_root is not None and sup.project_root != root and not sup.alive):
            sup = ProcessSupervisor(service_id, root, ports=self.ports, sink=self.sink)
            self._supervisors[service_id] = sup
        return sup

    async def start(
        self,
        service_id: str = DEFAULT_SERVICE_ID,
        project_root: Optional[Union[str, Path]] = None,
    ) -> SupervisedProcess:
        if self._closed:
            raise RuntimeError("Supervisor registry is shut down")
        return await self.supervisor_for(service_id, project_root).start()

    async def stop(self, service_id: str = DEFAULT_SERVICE_ID) -> bool:
        sup = self._supervisors.get(service_id)
        if sup is None:
            return False
        return await sup.stop()

    def live(self) -> List[ProcessSupervisor]:
        return [s for s in self._supervisors.values() if s.alive]

    def status(self) -> Dict[str, dict]:
        return {sid: sup.status() for sid, sup in self._supervisors.items()}

    async def shutdown(self, grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SEC) -> Dict[str, bool]:
        """
        Terminate every live child and wait for it.

        Returns service_id -> True if the child was reaped within the grace
        period (after SIGKILL escalation if needed).
        """
        self._closed = True
        live = self.live()
        if not live:
            return {}

        logger.info("[registry] Stopping %d supervised process(es)...", len(live))
        results = await asyncio.gather(
            *(sup.terminate_and_wait(grace_seconds) for sup in live),
            return_exceptions=True,
        )

        outcome: Dict[str, bool] = {}
        for sup, res in zip(live, results):
            if isinstance(res, BaseException):
                logger.error("[registry] Failed to stop %s: %s", sup.service_id, res)
                outcome[sup.service_id] = False
            else:
                outcome[sup.service_id] = bool(res)
                if not res:
                    logger.error("[registry] %s still running at shutdown", sup.service_id)
        return outcome


__all__ = ["DEFAULT_SERVICE_ID", "SupervisorRegistry"]
