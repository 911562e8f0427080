"""
Note analysis contract shared by every extractor.

Both the heuristic analyzer and the semantic (LLM) extractor return a
NoteAnalysisArtifact of identical shape. Callers only look at
`extractor_used` to label provenance.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Affect(str, Enum):
    """Overall emotional tone of a note."""
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class ExtractorKind(str, Enum):
    """Which extractor produced an artifact."""
    SEMANTIC = "semantic"
    HEURISTIC = "heuristic"


@dataclass
class PersonMention:
    """A person mentioned in a note."""

    name: str
    relationship: Optional[str] = None
    aliases: list[str] = field(default_factory=list)
    is_new_person: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "relationship": self.relationship,
            "aliases": list(self.aliases),
            "is_new_person": self.is_new_person,
        }


@dataclass
class FinancialTopic:
    """A financial product discussed in a note."""

    product_type: str
    amount: Optional[str] = None
    beneficiary: Optional[str] = None
    sentiment: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "product_type": self.product_type,
            "amount": self.amount,
            "beneficiary": self.beneficiary,
            "sentiment": self.sentiment,
        }


@dataclass
class NoteAnalysisArtifact:
    """Structured output of analyzing one note."""

    summary: str = ""
    facts: list[str] = field(default_factory=list)
    affect: str = Affect.NEUTRAL.value
    implications: list[str] = field(default_factory=list)
    people: list[PersonMention] = field(default_factory=list)
    topics: list[FinancialTopic] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)
    extractor_used: str = ExtractorKind.HEURISTIC.value

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "summary": self.summary,
            "facts": list(self.facts),
            "affect": self.affect,
            "implications": list(self.implications),
            "people": [p.to_dict() for p in self.people],
            "topics": [t.to_dict() for t in self.topics],
            "actions": list(self.actions),
            "extractor_used": self.extractor_used,
        }


class NoteExtractor(ABC):
    """Anything that turns note text into a NoteAnalysisArtifact."""

    kind: str = ExtractorKind.HEURISTIC.value

    def is_available(self) -> bool:
        """Availability probe; extractors that are always usable return True."""
        return True

    @abstractmethod
    def analyze(self, text: str) -> NoteAnalysisArtifact:
        """Analyze note text."""
