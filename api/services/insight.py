"""
Insight records - derived, deduplicated observations surfaced to the user.

Each insight targets exactly one person, context or product and lists the
evidence it was derived from. No two non-dismissed insights share the same
(target, kind, message); the generator merges evidence into the existing
one instead.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from api.utils.datetime_utils import parse_iso, utc_now


class InsightKind(str, Enum):
    """Kinds of insight."""
    FOLLOW_UP = "follow_up"
    CONSENT_MISSING = "consent_missing"
    RELATIONSHIP_AT_RISK = "relationship_at_risk"
    OPPORTUNITY = "opportunity"
    COMPLIANCE_WARNING = "compliance_warning"


class TargetType(str, Enum):
    """What an insight is about."""
    PERSON = "person"
    CONTEXT = "context"
    PRODUCT = "product"


@dataclass(frozen=True)
class InsightTarget:
    """Exactly one of person, context or product."""

    type: str
    id: str

    def __post_init__(self):
        if self.type not in {t.value for t in TargetType}:
            raise ValueError(f"Unknown insight target type: {self.type}")
        if not self.id:
            raise ValueError("Insight target id is required")

    @classmethod
    def person(cls, person_id: str) -> "InsightTarget":
        return cls(TargetType.PERSON.value, person_id)

    @classmethod
    def context(cls, context_id: str) -> "InsightTarget":
        return cls(TargetType.CONTEXT.value, context_id)

    @classmethod
    def product(cls, product_id: str) -> "InsightTarget":
        return cls(TargetType.PRODUCT.value, product_id)


@dataclass
class Insight:
    """A derived observation with supporting evidence."""

    target: InsightTarget
    kind: str
    message: str
    confidence: float = 0.5  # 0.0-1.0
    based_on_evidence: set[str] = field(default_factory=set)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)
    dismissed_at: Optional[datetime] = None

    @property
    def is_dismissed(self) -> bool:
        return self.dismissed_at is not None

    @property
    def dedup_key(self) -> tuple[str, str, str, str]:
        """(target type, target id, kind, message)."""
        return (self.target.type, self.target.id, self.kind, self.message)

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "id": self.id,
            "target_type": self.target.type,
            "target_id": self.target.id,
            "kind": self.kind,
            "message": self.message,
            "confidence": self.confidence,
            "based_on_evidence": sorted(self.based_on_evidence),
            "created_at": self.created_at.isoformat(),
            "dismissed_at": self.dismissed_at.isoformat() if self.dismissed_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Insight":
        """Create Insight from dict."""
        return cls(
            id=data["id"],
            target=InsightTarget(data["target_type"], data["target_id"]),
            kind=data["kind"],
            message=data["message"],
            confidence=float(data.get("confidence", 0.5)),
            based_on_evidence=set(data.get("based_on_evidence", [])),
            created_at=parse_iso(data.get("created_at")) or utc_now(),
            dismissed_at=parse_iso(data.get("dismissed_at")),
        )
