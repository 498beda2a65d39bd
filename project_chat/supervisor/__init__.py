# FILE: project_chat/supervisor/__init__.py
"""Process supervision for the project's runnable command.

Components:
- ports.py: reserve free ports for children
- process.py: one supervised child (start/stop/output relay)
- registry.py: process-wide owner of all supervisors, shutdown handling
- router.py: FastAPI endpoints
"""

from project_chat.supervisor.ports import PortAllocator
from project_chat.supervisor.process import (
    ProcessEvent,
    ProcessState,
    ProcessSupervisor,
    SupervisedProcess,
    log_process_event,
)
from project_chat.supervisor.registry import DEFAULT_SERVICE_ID, SupervisorRegistry

__all__ = [
    "PortAllocator",
    "ProcessEvent",
    "ProcessState",
    "ProcessSupervisor",
    "SupervisedProcess",
    "log_process_event",
    "DEFAULT_SERVICE_ID",
    "SupervisorRegistry",
]
