"""
Notes API endpoints for Advisor CRM.

`/analyze` only runs the analyzer; `POST /api/notes` stores the note as
evidence and generates people and insights from it.
"""
from datetime import datetime
from typing import Optional
import logging
import uuid

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from api.services.note_dispatcher import get_note_dispatcher
from api.services.note_processor import NoteProcessor
from api.services.store_access import get_store_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notes", tags=["notes"])


class PersonMentionResponse(BaseModel):
    name: str
    relationship: Optional[str] = None
    aliases: list[str] = []
    is_new_person: bool = False


class FinancialTopicResponse(BaseModel):
    product_type: str
    amount: Optional[str] = None
    beneficiary: Optional[str] = None
    sentiment: Optional[str] = None


class NoteAnalysisResponse(BaseModel):
    """Response model for a note analysis."""
    summary: str
    facts: list[str] = []
    affect: str
    implications: list[str] = []
    people: list[PersonMentionResponse] = []
    topics: list[FinancialTopicResponse] = []
    actions: list[str] = []
    extractor_used: str


class AnalyzeRequest(BaseModel):
    text: str = Field(..., min_length=1)


class NoteRequest(BaseModel):
    """Request to ingest a note."""
    text: str = Field(..., min_length=1)
    note_id: Optional[str] = None
    related_person_ids: list[str] = []
    occurred_at: Optional[datetime] = None


class NoteResponse(BaseModel):
    note_id: str
    evidence_id: str
    analysis: NoteAnalysisResponse
    created_people: list[dict] = []
    insights: list[dict] = []


@router.post("/analyze", response_model=NoteAnalysisResponse)
def analyze_note(request: AnalyzeRequest):
    """Analyze note text without storing anything."""
    artifact = get_note_dispatcher().analyze(request.text)
    return NoteAnalysisResponse(**artifact.to_dict())


@router.post("", response_model=NoteResponse, status_code=201)
def ingest_note(request: NoteRequest):
    """Store a note as evidence and derive people and insights from it."""
    note_id = request.note_id or str(uuid.uuid4())
    processor = NoteProcessor(get_store_access(), dispatcher=get_note_dispatcher())
    try:
        result = processor.process(
            note_id=note_id,
            text=request.text,
            related_person_ids=request.related_person_ids,
            occurred_at=request.occurred_at,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return NoteResponse(
        note_id=note_id,
        evidence_id=result.evidence.id,
        analysis=NoteAnalysisResponse(**result.artifact.to_dict()),
        created_people=[p.to_dict() for p in result.created_people],
        insights=[i.to_dict() for i in result.insights],
    )
