# FILE: project_chat/supervisor/router.py
"""Supervisor Router: API endpoints for running the project.

Endpoints:
- GET /start-project - Start the project's declared command
- POST /stop-project - Stop the running project
- GET /project-status - State, pid, port, exit code and recent output
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from project_chat.errors import (
    ManifestInvalid,
    ManifestMissing,
    PortAllocationFailed,
    ProcessAlreadyRunning,
    SpawnFailed,
)
from project_chat.supervisor.registry import DEFAULT_SERVICE_ID, SupervisorRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["supervisor"])


# =============================================================================
# Request/Response Models
# =============================================================================

class StartResponse(BaseModel):
    """Response from start operation."""
    success: bool
    service_id: str
    pid: int
    port: int


class StopResponse(BaseModel):
    """Response from stop operation."""
    success: bool
    stopped: bool


class StatusResponse(BaseModel):
    service_id: str
    state: str
    pid: Optional[int] = None
    port: Optional[int] = None
    started_at: Optional[float] = None
    exit_code: Optional[int] = None
    recent_output: List[str] = []


# =============================================================================
# Endpoints
# =============================================================================

def _registry(request: Request) -> SupervisorRegistry:
    return request.app.state.supervisors


@router.get("/start-project", response_model=StartResponse)
async def start_project(request: Request, service_id: str = DEFAULT_SERVICE_ID):
    """Start the project as a supervised child process.

    The child gets the manifest's env plus PORT set to a freshly allocated
    port. Its output is relayed to the server log.
    """
    logger.info("[supervisor] Starting project (service_id=%s)", service_id)
    registry = _registry(request)
    try:
        proc = await registry.start(service_id)
    except ManifestMissing as e:
        raise HTTPException(status_code=404, detail={"kind": e.kind, "message": str(e)})
    except ManifestInvalid as e:
        raise HTTPException(status_code=422, detail={"kind": e.kind, "message": str(e)})
    except ProcessAlreadyRunning as e:
        raise HTTPException(status_code=409, detail={"kind": e.kind, "message": str(e)})
    except (SpawnFailed, PortAllocationFailed) as e:
        raise HTTPException(status_code=500, detail={"kind": e.kind, "message": str(e)})

    return StartResponse(success=True, service_id=service_id, pid=proc.pid, port=proc.port)


@router.post("/stop-project", response_model=StopResponse)
async def stop_project(request: Request, service_id: str = DEFAULT_SERVICE_ID):
    """Stop the project. Stopping when nothing runs is not an error."""
    stopped = await _registry(request).stop(service_id)
    return StopResponse(success=True, stopped=stopped)


@router.get("/project-status", response_model=StatusResponse)
async def project_status(request: Request, service_id: str = DEFAULT_SERVICE_ID):
    sup = _registry(request).get(service_id)
    if sup is None:
        return StatusResponse(service_id=service_id, state="not_started")
    return StatusResponse(**sup.status())


__all__ = ["router"]
