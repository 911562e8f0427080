"""
Import API endpoints for Advisor CRM.

Status and kicks for the per-source import coordinators.
"""
from typing import Optional
import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from api.services.import_coordinator import ImportCoordinator, KickReason, get_import_coordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/imports", tags=["imports"])


class ImportResultResponse(BaseModel):
    status: str
    created: int = 0
    updated: int = 0
    removed: int = 0
    skipped: int = 0
    insights: int = 0
    errors: list[str] = []
    duration_seconds: float = 0.0
    finished_at: Optional[str] = None


class ImportStatusResponse(BaseModel):
    """Response model for an importer's status."""
    source: str
    status: str
    running: bool
    pending: bool
    cycles: int
    last_result: Optional[ImportResultResponse] = None


class KickRequest(BaseModel):
    reason: KickReason = KickReason.MANUAL


class KickResponse(BaseModel):
    accepted: bool
    reason: str
    status: ImportStatusResponse


def _get_coordinator(source: str) -> ImportCoordinator:
    coordinator = get_import_coordinator(source)
    if coordinator is None:
        raise HTTPException(status_code=404, detail=f"No importer configured for '{source}'")
    return coordinator


@router.get("/{source}", response_model=ImportStatusResponse)
def get_import_status(source: str):
    return ImportStatusResponse(**_get_coordinator(source).get_status())


@router.post("/{source}/kick", response_model=KickResponse)
def kick_import(source: str, request: Optional[KickRequest] = None):
    """Request an import; throttled kicks are reported with accepted=false."""
    coordinator = _get_coordinator(source)
    reason = (request or KickRequest()).reason.value
    accepted = coordinator.kick(reason)
    return KickResponse(
        accepted=accepted,
        reason=reason,
        status=ImportStatusResponse(**coordinator.get_status()),
    )
