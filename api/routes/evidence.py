"""
Evidence API endpoints for Advisor CRM.

Review queue, triage state, proposed-link decisions and manual evidence.
"""
from datetime import datetime
from typing import Optional
import logging

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from api.services.evidence import EvidenceItem, EvidenceSource, TriageState
from api.services.evidence_triage import EvidenceTriageService
from api.services.store_access import get_store_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/evidence", tags=["evidence"])


class SignalResponse(BaseModel):
    id: str
    kind: str
    confidence: float
    reason: str


class ParticipantHintResponse(BaseModel):
    display_name: str
    email: Optional[str] = None
    is_organizer: bool = False
    verified: bool = False


class ProposedLinkResponse(BaseModel):
    id: str
    target: str
    target_id: str
    display_name: str
    confidence: float
    reason: str
    status: str
    decided_at: Optional[str] = None


class EvidenceResponse(BaseModel):
    """Response model for an evidence item."""
    id: str
    external_uid: Optional[str] = None
    source: str
    triage_state: str
    occurred_at: str
    title: str
    snippet: str = ""
    body_text: Optional[str] = None
    signals: list[SignalResponse] = []
    participant_hints: list[ParticipantHintResponse] = []
    proposed_links: list[ProposedLinkResponse] = []
    linked_people: list[str] = []
    linked_contexts: list[str] = []
    created_at: str
    updated_at: str


class EvidenceListResponse(BaseModel):
    evidence: list[EvidenceResponse]
    count: int


class ManualEvidenceRequest(BaseModel):
    """Request to create evidence by hand."""
    title: str
    snippet: str = ""
    body_text: Optional[str] = None
    occurred_at: Optional[datetime] = None
    linked_people: list[str] = []


def get_triage_service() -> EvidenceTriageService:
    return EvidenceTriageService(get_store_access())


def _to_response(item: EvidenceItem) -> EvidenceResponse:
    return EvidenceResponse(**item.to_dict())


@router.get("", response_model=EvidenceListResponse)
def list_evidence(
    source: Optional[EvidenceSource] = Query(default=None),
    triage_state: Optional[TriageState] = Query(default=None),
):
    """List evidence, newest first; filter by source and/or triage state."""
    items = get_triage_service().list_evidence(
        source=source.value if source else None,
        triage_state=triage_state.value if triage_state else None,
    )
    return EvidenceListResponse(evidence=[_to_response(i) for i in items], count=len(items))


@router.post("", response_model=EvidenceResponse, status_code=201)
def create_manual_evidence(request: ManualEvidenceRequest):
    """Create manual evidence (never pruned by a source sync)."""
    try:
        item = get_triage_service().create_manual(
            title=request.title,
            snippet=request.snippet,
            body_text=request.body_text,
            occurred_at=request.occurred_at,
            linked_people=request.linked_people,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _to_response(item)


@router.get("/{evidence_id}", response_model=EvidenceResponse)
def get_evidence(evidence_id: str):
    item = get_triage_service().get(evidence_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Evidence '{evidence_id}' not found")
    return _to_response(item)


@router.post("/{evidence_id}/review", response_model=EvidenceResponse)
def mark_reviewed(evidence_id: str):
    item = get_triage_service().mark_reviewed(evidence_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Evidence '{evidence_id}' not found")
    return _to_response(item)


@router.post("/{evidence_id}/needs-review", response_model=EvidenceResponse)
def mark_needs_review(evidence_id: str):
    item = get_triage_service().mark_needs_review(evidence_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Evidence '{evidence_id}' not found")
    return _to_response(item)


@router.delete("/{evidence_id}")
def delete_evidence(evidence_id: str):
    if not get_triage_service().delete(evidence_id):
        raise HTTPException(status_code=404, detail=f"Evidence '{evidence_id}' not found")
    return {"deleted": True, "id": evidence_id}


@router.post("/{evidence_id}/links/{link_id}/accept", response_model=EvidenceResponse)
def accept_link(evidence_id: str, link_id: str):
    """Accept a proposed link; the target becomes a confirmed link."""
    item = get_triage_service().accept_link(evidence_id, link_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Link '{link_id}' on evidence '{evidence_id}' not found")
    return _to_response(item)


@router.post("/{evidence_id}/links/{link_id}/decline", response_model=EvidenceResponse)
def decline_link(evidence_id: str, link_id: str):
    item = get_triage_service().decline_link(evidence_id, link_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Link '{link_id}' on evidence '{evidence_id}' not found")
    return _to_response(item)
