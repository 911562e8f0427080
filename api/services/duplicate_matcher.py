"""
Duplicate Person Matcher.

Scores a candidate name against existing people and reports probable
duplicates. Used in two places:
- Evidence upsert: unverified participant hints become pending proposed links
- Person creation: warns before a second identity is created for someone

The matcher only scores. It never creates, links or merges people.

Scoring for canonical token lists A and B:
1. Empty on either side scores 0
2. Base score is the Jaccard similarity |A & B| / |A | B|
3. Equal last tokens add SURNAME_BOOST (capped at 1.0)
4. Equal first AND last tokens (both sides >= 2 tokens) score 1.0 outright,
   so "Bob Smith" and "Robert Smith" are treated as the same person
"""
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from rapidfuzz import fuzz

from api.services.name_canonicalizer import canonical_tokens
from api.services.person import DuplicateCandidate
from config.matching_weights import (
    DEFAULT_MATCH_THRESHOLD,
    MAX_SCORE,
    SURNAME_BOOST,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DuplicateMatch:
    """A scored match between a queried name and an existing person."""

    candidate: DuplicateCandidate
    score: float  # 0.0-1.0

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "id": self.candidate.id,
            "display_name": self.candidate.display_name,
            "score": round(self.score, 4),
        }


def score_tokens(a: list[str], b: list[str], surname_boost: float = SURNAME_BOOST) -> float:
    """
    Score two canonical token lists.

    Args:
        a: Canonical tokens of the first name
        b: Canonical tokens of the second name
        surname_boost: Amount added when last tokens agree

    Returns:
        Similarity score between 0.0 and 1.0
    """
    if not a or not b:
        return 0.0

    set_a, set_b = set(a), set(b)
    score = len(set_a & set_b) / len(set_a | set_b)

    if a[-1] == b[-1]:
        score = min(MAX_SCORE, score + surname_boost)

    # Evaluated independently of the boost and always wins over it
    if len(a) >= 2 and len(b) >= 2 and a[0] == b[0] and a[-1] == b[-1]:
        score = MAX_SCORE

    return score


class DuplicatePersonMatcher:
    """
    Finds existing people whose names probably refer to the same person.

    Stateless apart from its tuning constants; one instance can be shared
    across threads.
    """

    def __init__(
        self,
        threshold: float = DEFAULT_MATCH_THRESHOLD,
        surname_boost: float = SURNAME_BOOST,
    ):
        """
        Initialize the matcher.

        Args:
            threshold: Default minimum score for findMatches
            surname_boost: Amount added when surnames agree
        """
        self.threshold = threshold
        self.surname_boost = surname_boost

    def score(self, name_a: Optional[str], name_b: Optional[str]) -> float:
        """Score two raw names."""
        return score_tokens(canonical_tokens(name_a), canonical_tokens(name_b), self.surname_boost)

    def find_matches(
        self,
        name: Optional[str],
        candidates: Iterable[DuplicateCandidate],
        threshold: Optional[float] = None,
    ) -> list[DuplicateMatch]:
        """
        Score a name against existing candidates.

        Args:
            name: The name being checked
            candidates: Existing people to compare against
            threshold: Minimum score to report (default: the matcher's threshold)

        Returns:
            Matches at or above threshold, best first. Candidates scoring 0.0
            share no canonical token and are never reported, even with
            threshold=0.
        """
        cutoff = self.threshold if threshold is None else threshold
        query_tokens = canonical_tokens(name)
        if not query_tokens:
            return []

        matches = []
        for candidate in candidates:
            score = score_tokens(query_tokens, canonical_tokens(candidate.display_name), self.surname_boost)
            if score >= cutoff and score > 0.0:
                matches.append(DuplicateMatch(candidate=candidate, score=score))

        # Equal scores fall back to raw spelling similarity, then name
        matches.sort(
            key=lambda m: (
                -m.score,
                -fuzz.ratio((name or "").lower(), (m.candidate.display_name or "").lower()),
                m.candidate.display_name or "",
            )
        )

        if matches:
            logger.debug(f"Duplicate check for '{name}': {len(matches)} matches, best {matches[0].score:.2f}")
        return matches


# Singleton instance
_matcher: Optional[DuplicatePersonMatcher] = None


def get_duplicate_matcher() -> DuplicatePersonMatcher:
    """Get or create the shared matcher configured from settings."""
    global _matcher
    if _matcher is None:
        from config.settings import settings
        _matcher = DuplicatePersonMatcher(threshold=settings.duplicate_match_threshold)
    return _matcher


def reset_duplicate_matcher() -> None:
    """Reset the matcher singleton (tests, settings changes)."""
    global _matcher
    _matcher = None
