"""
Evidence - normalized fact records derived from external sources.

An EvidenceItem is one calendar event, contact entry, note, or manually
entered fact. Items that came from a source carry an external UID of the
form "<source>:<native id>", which is unique across the store. Items with
no external UID were created by hand and are never pruned by a sync.

Signals and participant hints are derived from the source record on every
upsert. Triage state, confirmed links and decided proposals belong to the
user and survive re-imports.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from api.utils.datetime_utils import parse_iso, utc_now


class EvidenceSource(str, Enum):
    """Where an evidence item came from."""
    CALENDAR = "calendar"
    CONTACTS = "contacts"
    NOTE = "note"
    MANUAL = "manual"


class TriageState(str, Enum):
    """Whether a human still needs to look at the item."""
    NEEDS_REVIEW = "needs_review"
    REVIEWED = "reviewed"


class LinkStatus(str, Enum):
    """Status of a proposed link."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class LinkTarget(str, Enum):
    """What a proposed link points at."""
    PERSON = "person"
    CONTEXT = "context"


class SignalKind(str, Enum):
    """Deterministic tags derived from evidence content."""
    UNLINKED_EVIDENCE = "unlinked_evidence"
    DIVORCE = "divorce"
    COMING_OF_AGE = "coming_of_age"
    PARTNER_LEFT = "partner_left"
    PRODUCT_OPPORTUNITY = "product_opportunity"
    COMPLIANCE_RISK = "compliance_risk"


def external_uid_namespace(external_uid: Optional[str]) -> Optional[str]:
    """Return the "<source>" prefix of an external UID, if any."""
    if not external_uid or ":" not in external_uid:
        return None
    return external_uid.split(":", 1)[0]


@dataclass
class ParticipantHint:
    """A person observed on a source record, not yet resolved."""

    display_name: str
    email: Optional[str] = None
    is_organizer: bool = False
    verified: bool = False  # Email matched a known person (or is the current user)

    def to_dict(self) -> dict:
        return {
            "display_name": self.display_name,
            "email": self.email,
            "is_organizer": self.is_organizer,
            "verified": self.verified,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ParticipantHint":
        return cls(
            display_name=data.get("display_name", ""),
            email=data.get("email"),
            is_organizer=bool(data.get("is_organizer", False)),
            verified=bool(data.get("verified", False)),
        )


@dataclass
class ProposedLink:
    """A system-suggested association awaiting a human decision."""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    target: str = LinkTarget.PERSON.value
    target_id: str = ""
    display_name: str = ""
    confidence: float = 0.0
    reason: str = ""
    status: str = LinkStatus.PENDING.value
    decided_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == LinkStatus.PENDING.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "target": self.target,
            "target_id": self.target_id,
            "display_name": self.display_name,
            "confidence": self.confidence,
            "reason": self.reason,
            "status": self.status,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProposedLink":
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            target=data.get("target", LinkTarget.PERSON.value),
            target_id=data.get("target_id", ""),
            display_name=data.get("display_name", ""),
            confidence=float(data.get("confidence", 0.0)),
            reason=data.get("reason", ""),
            status=data.get("status", LinkStatus.PENDING.value),
            decided_at=parse_iso(data.get("decided_at")),
        )


@dataclass
class EvidenceSignal:
    """A deterministic tag with a confidence and a human-readable reason."""

    kind: str
    confidence: float
    reason: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "confidence": self.confidence,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EvidenceSignal":
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            kind=data["kind"],
            confidence=float(data.get("confidence", 0.0)),
            reason=data.get("reason", ""),
        )


@dataclass
class EvidenceItem:
    """
    A normalized fact record.

    Invariant: at most one EvidenceItem per non-null external_uid.
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    external_uid: Optional[str] = None
    source: str = EvidenceSource.MANUAL.value
    triage_state: str = TriageState.NEEDS_REVIEW.value

    occurred_at: datetime = field(default_factory=utc_now)
    title: str = ""
    snippet: str = ""
    body_text: Optional[str] = None

    # Derived on every upsert
    signals: list[EvidenceSignal] = field(default_factory=list)
    participant_hints: list[ParticipantHint] = field(default_factory=list)

    # User-owned
    proposed_links: list[ProposedLink] = field(default_factory=list)
    linked_people: list[str] = field(default_factory=list)
    linked_contexts: list[str] = field(default_factory=list)

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_linked(self) -> bool:
        """True if any person or context has been confirmed."""
        return bool(self.linked_people or self.linked_contexts)

    @property
    def needs_review(self) -> bool:
        return self.triage_state == TriageState.NEEDS_REVIEW.value

    def get_link(self, link_id: str) -> Optional[ProposedLink]:
        """Find a proposed link by id."""
        for link in self.proposed_links:
            if link.id == link_id:
                return link
        return None

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "id": self.id,
            "external_uid": self.external_uid,
            "source": self.source,
            "triage_state": self.triage_state,
            "occurred_at": self.occurred_at.isoformat(),
            "title": self.title,
            "snippet": self.snippet,
            "body_text": self.body_text,
            "signals": [s.to_dict() for s in self.signals],
            "participant_hints": [h.to_dict() for h in self.participant_hints],
            "proposed_links": [p.to_dict() for p in self.proposed_links],
            "linked_people": list(self.linked_people),
            "linked_contexts": list(self.linked_contexts),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EvidenceItem":
        """Create EvidenceItem from dict."""
        return cls(
            id=data["id"],
            external_uid=data.get("external_uid"),
            source=data.get("source", EvidenceSource.MANUAL.value),
            triage_state=data.get("triage_state", TriageState.NEEDS_REVIEW.value),
            occurred_at=parse_iso(data.get("occurred_at")) or utc_now(),
            title=data.get("title", ""),
            snippet=data.get("snippet", ""),
            body_text=data.get("body_text"),
            signals=[EvidenceSignal.from_dict(s) for s in data.get("signals", [])],
            participant_hints=[ParticipantHint.from_dict(h) for h in data.get("participant_hints", [])],
            proposed_links=[ProposedLink.from_dict(p) for p in data.get("proposed_links", [])],
            linked_people=list(data.get("linked_people", [])),
            linked_contexts=list(data.get("linked_contexts", [])),
            created_at=parse_iso(data.get("created_at")) or utc_now(),
            updated_at=parse_iso(data.get("updated_at")) or utc_now(),
        )
