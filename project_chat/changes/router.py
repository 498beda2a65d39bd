# FILE: project_chat/changes/router.py
"""Change Router: API endpoint for applying a natural-language change.

Endpoints:
- POST /make-change - Run the change pipeline against the project root

The pipeline itself lives in ChangeApplier (stored on app.state at startup);
this module only maps its errors onto HTTP status codes.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from project_chat.changes.applier import ChangeApplier
from project_chat.errors import ChangeFailed, ChangeInProgress

logger = logging.getLogger(__name__)

router = APIRouter(tags=["changes"])

# ChangeFailed.kind -> HTTP status
_FAILURE_STATUS = {
    "BackendTimeout": 504,
    "BackendUnavailable": 502,
    "PathEscape": 400,
}


# =============================================================================
# Request/Response Models
# =============================================================================

class ChangeRequest(BaseModel):
    """Natural-language description of the change."""
    change: str


class ExtractionIssueModel(BaseModel):
    offset: int
    reason: str


class ChangeResponse(BaseModel):
    success: bool
    state: str
    applied: List[str]
    issues: List[ExtractionIssueModel] = []
    produced_change: bool
    checkpoint_commit: Optional[str] = None
    post_change_commit: Optional[str] = None


# =============================================================================
# Endpoints
# =============================================================================

def _applier(request: Request) -> ChangeApplier:
    return request.app.state.change_applier


@router.post("/make-change", response_model=ChangeResponse)
async def make_change(body: ChangeRequest, request: Request):
    """Apply a change to the project.

    Returns:
        Outcome of the pipeline (written paths, extraction issues, commits)

    Errors:
        409 another change is in flight for this project
        502/504 change backend unavailable / timed out
        400 the response tried to write outside the project
        500 any other pipeline failure (detail names the stage)
    """
    if not body.change.strip():
        raise HTTPException(status_code=422, detail="change must not be empty")

    logger.info("[changes] Making change: %s", body.change)
    applier = _applier(request)
    try:
        outcome = await applier.apply_change(body.change)
    except ChangeInProgress as e:
        raise HTTPException(status_code=409, detail={"kind": e.kind, "message": str(e)})
    except ChangeFailed as e:
        raise HTTPException(status_code=_FAILURE_STATUS.get(e.kind, 500), detail=e.to_dict())

    return ChangeResponse(**outcome.to_dict())


__all__ = ["router"]
