"""
Tests for name canonicalization and duplicate person matching.
"""
import pytest

from api.services.duplicate_matcher import DuplicatePersonMatcher, score_tokens
from api.services.name_canonicalizer import canonical_key, canonical_tokens
from api.services.person import DuplicateCandidate

pytestmark = pytest.mark.unit


def candidate(person_id: str, name: str) -> DuplicateCandidate:
    return DuplicateCandidate(id=person_id, display_name=name)


class TestCanonicalTokens:
    """Tests for canonical_tokens()."""

    def test_nickname_mapped_on_first_token(self):
        """A known nickname in first position becomes the formal name."""
        assert canonical_tokens("Bob Smith") == ["robert", "smith"]

    def test_nickname_only_mapped_in_first_position(self):
        """A nickname later in the name is left alone."""
        assert canonical_tokens("Smith Bob") == ["smith", "bob"]

    def test_middle_initial_dropped(self):
        """Single letters are dropped from names with three or more tokens."""
        assert canonical_tokens("John Q. Public") == ["john", "public"]

    def test_two_token_initial_kept(self):
        """A two-token name keeps its single-letter token."""
        assert canonical_tokens("J Smith") == ["j", "smith"]

    def test_ampersand_becomes_and(self):
        """"&" is spelled out as a word."""
        assert canonical_tokens("Smith & Wesson") == ["smith", "and", "wesson"]

    def test_punctuation_and_whitespace(self):
        """Punctuation becomes whitespace, which is collapsed."""
        assert canonical_tokens("  O'Brien,   Kate ") == ["brien", "kate"]
        assert canonical_key("Mary-Jane   Watson") == "mary jane watson"

    def test_empty_input(self):
        """Empty, whitespace-only and None names produce no tokens."""
        assert canonical_tokens("") == []
        assert canonical_tokens("   ") == []
        assert canonical_tokens(None) == []
        assert canonical_tokens("!!!") == []


class TestScoreTokens:
    """Tests for the raw scoring rule."""

    def test_identical(self):
        """Identical token lists score 1.0."""
        assert score_tokens(["robert", "smith"], ["robert", "smith"]) == 1.0

    def test_empty_side_scores_zero(self):
        """Either side empty scores 0."""
        assert score_tokens([], ["robert"]) == 0.0
        assert score_tokens(["robert"], []) == 0.0

    def test_shared_first_name_only(self):
        """Only the Jaccard term applies when surnames differ."""
        assert score_tokens(["robert", "smith"], ["robert", "jones"]) == pytest.approx(1 / 3)

    def test_surname_boost(self):
        """Equal last tokens add the surname boost."""
        assert score_tokens(["alice", "smith"], ["bob", "smith"]) == pytest.approx(1 / 3 + 0.25)

    def test_first_and_last_override(self):
        """Equal first and last tokens score 1.0 even with extra middle tokens."""
        assert score_tokens(["mary", "ann", "smith"], ["mary", "smith"]) == 1.0

    def test_single_token_names_no_override(self):
        """The override needs at least two tokens on each side."""
        assert score_tokens(["smith"], ["john", "smith"]) == pytest.approx(0.5 + 0.25)


class TestDuplicatePersonMatcher:
    """Tests for DuplicatePersonMatcher."""

    def test_nickname_is_same_person(self, matcher):
        """'Bob Smith' and 'Robert Smith' score 1.0."""
        assert matcher.score("Bob Smith", "Robert Smith") == 1.0

    def test_different_surname_below_threshold(self, matcher):
        """'Bob Smith' does not match 'Robert Jones'."""
        matches = matcher.find_matches("Bob Smith", [candidate("p1", "Robert Jones")])
        assert matches == []

    def test_results_sorted_best_first(self, matcher):
        """Matches are ordered by descending score."""
        people = [
            candidate("p1", "Alice Smith"),
            candidate("p2", "Robert Smith"),
        ]
        matches = matcher.find_matches("Bob Smith", people, threshold=0.5)
        assert [m.candidate.id for m in matches] == ["p2", "p1"]
        assert matches[0].score == 1.0
        assert matches[1].score == pytest.approx(1 / 3 + 0.25)

    def test_threshold_filters(self, matcher):
        """Scores below the threshold are not reported."""
        people = [candidate("p1", "Alice Smith")]
        assert matcher.find_matches("Bob Smith", people, threshold=0.9) == []
        assert len(matcher.find_matches("Bob Smith", people, threshold=0.5)) == 1

    def test_zero_threshold_never_reports_zero_scores(self, matcher):
        """A score of 0 is never a match, even at threshold 0."""
        matches = matcher.find_matches("Bob Smith", [candidate("p1", "Carol Jones")], threshold=0.0)
        assert matches == []

    def test_tie_broken_by_spelling_similarity(self, matcher):
        """Equal scores fall back to how close the raw spelling is."""
        people = [
            candidate("p1", "Robert Smith"),
            candidate("p2", "Bob Smith"),
        ]
        matches = matcher.find_matches("Bob Smith", people)
        assert [m.score for m in matches] == [1.0, 1.0]
        assert matches[0].candidate.id == "p2"

    def test_empty_query(self, matcher):
        """An empty name matches nobody."""
        assert matcher.find_matches("", [candidate("p1", "Robert Smith")]) == []

    def test_custom_threshold(self):
        """The constructor threshold is the default cutoff."""
        strict = DuplicatePersonMatcher(threshold=0.95)
        assert strict.find_matches("Alice Smith", [candidate("p1", "Bob Smith")]) == []

    def test_to_dict(self, matcher):
        """DuplicateMatch serializes id, name and rounded score."""
        match = matcher.find_matches("Bob Smith", [candidate("p1", "Robert Smith")])[0]
        assert match.to_dict() == {"id": "p1", "display_name": "Robert Smith", "score": 1.0}
