"""
Insights API endpoints for Advisor CRM.
"""
from typing import Optional
import logging

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from api.services.insight import Insight, InsightKind, TargetType
from api.services.insight_generator import InsightGenerator
from api.services.store_access import get_store_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/insights", tags=["insights"])


class InsightResponse(BaseModel):
    """Response model for an insight."""
    id: str
    target_type: str
    target_id: str
    kind: str
    message: str
    confidence: float
    based_on_evidence: list[str] = []
    created_at: str
    dismissed_at: Optional[str] = None


class InsightListResponse(BaseModel):
    insights: list[InsightResponse]
    count: int


class DeduplicateResponse(BaseModel):
    removed: int


def _to_response(insight: Insight) -> InsightResponse:
    return InsightResponse(**insight.to_dict())


@router.get("", response_model=InsightListResponse)
def list_insights(
    include_dismissed: bool = Query(default=False),
    kind: Optional[InsightKind] = Query(default=None),
    target_type: Optional[TargetType] = Query(default=None),
    target_id: Optional[str] = Query(default=None),
):
    """List insights, highest confidence first."""
    insights = get_store_access().read(lambda repo: repo.list_insights(include_dismissed=include_dismissed))
    if kind:
        insights = [i for i in insights if i.kind == kind.value]
    if target_type:
        insights = [i for i in insights if i.target.type == target_type.value]
    if target_id:
        insights = [i for i in insights if i.target.id == target_id]
    insights.sort(key=lambda i: (-i.confidence, i.created_at))
    return InsightListResponse(insights=[_to_response(i) for i in insights], count=len(insights))


@router.post("/deduplicate", response_model=DeduplicateResponse)
def deduplicate_insights():
    """Merge stored insights that share target, kind and message."""
    removed = InsightGenerator(get_store_access()).deduplicate()
    return DeduplicateResponse(removed=removed)


@router.post("/{insight_id}/dismiss", response_model=InsightResponse)
def dismiss_insight(insight_id: str):
    insight = InsightGenerator(get_store_access()).dismiss(insight_id)
    if insight is None:
        raise HTTPException(status_code=404, detail=f"Insight '{insight_id}' not found")
    return _to_response(insight)
