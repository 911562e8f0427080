"""
Tests for note analysis: the heuristic analyzer, the semantic extractor
and the dispatcher that picks between them.
"""
from unittest.mock import MagicMock

import pytest

from api.services.heuristic_note_analyzer import (
    HeuristicNoteAnalyzer,
    determine_affect,
    extract_amount,
    extract_people,
    extract_summary,
    extract_topics,
)
from api.services.note_analysis import NoteAnalysisArtifact, NoteExtractor
from api.services.note_dispatcher import NoteAnalyzerDispatcher, get_note_dispatcher
from api.services.ollama_client import OllamaError
from api.services.resilience import ServiceUnavailableError
from api.services.semantic_extractor import OllamaNoteExtractor

pytestmark = pytest.mark.unit

NEW_SON_NOTE = (
    "I just had a son. His name is William. "
    "We want to discuss a $50,000 life insurance policy for William."
)


class TestHeuristicAnalyzer:
    """End-to-end heuristic extraction."""

    def test_new_son_scenario(self):
        """A new child and a life insurance request are both extracted."""
        artifact = HeuristicNoteAnalyzer().analyze(NEW_SON_NOTE)

        assert artifact.extractor_used == "heuristic"
        assert len(artifact.people) == 1
        person = artifact.people[0]
        assert person.name == "William"
        assert person.relationship == "son"
        assert person.is_new_person is True

        assert len(artifact.topics) == 1
        topic = artifact.topics[0]
        assert topic.product_type == "Life Insurance"
        assert topic.amount == "$50,000"
        assert topic.beneficiary == "William"
        assert topic.sentiment == "wants"

        assert "Follow-up requested" in artifact.facts
        assert "Potential opportunity" in artifact.implications
        assert artifact.actions == []
        assert artifact.summary == "I just had a son"

    def test_empty_note(self):
        """An empty note produces an empty neutral artifact."""
        artifact = HeuristicNoteAnalyzer().analyze("")
        assert artifact.summary == ""
        assert artifact.affect == "neutral"
        assert artifact.people == []
        assert artifact.topics == []
        assert artifact.facts == []

    def test_non_text_input(self):
        """Non-string input is treated as empty instead of raising."""
        artifact = HeuristicNoteAnalyzer().analyze(None)
        assert isinstance(artifact, NoteAnalysisArtifact)

    def test_failing_step_contributes_nothing(self, monkeypatch):
        """One broken step does not stop the others."""
        def boom(text):
            raise RuntimeError("regex exploded")

        monkeypatch.setattr("api.services.heuristic_note_analyzer.extract_people", boom)
        artifact = HeuristicNoteAnalyzer().analyze(NEW_SON_NOTE)

        assert artifact.people == []
        assert artifact.topics[0].product_type == "Life Insurance"

    def test_concern_implication(self):
        """Concern wording produces the risk implication."""
        artifact = HeuristicNoteAnalyzer().analyze("Client raised a concern about fees.")
        assert "Potential risk/concern" in artifact.implications


class TestSummaryAndAffect:
    """Summary and affect rules."""

    def test_summary_skips_empty_sentences(self):
        """Leading periods do not produce an empty summary."""
        assert extract_summary("..Second try. Third.") == "Second try"

    def test_summary_without_period_truncates(self):
        """With no period the first 140 characters are used."""
        text = "x" * 200
        assert extract_summary(text) == "x" * 140

    def test_positive(self):
        """More positive words than negative is positive."""
        assert determine_affect("Great meeting, very happy with returns") == "positive"

    def test_negative(self):
        """More negative words than positive is negative."""
        assert determine_affect("Client is worried and upset") == "negative"

    def test_tie_is_neutral(self):
        """Equal counts are neutral."""
        assert determine_affect("Happy but worried") == "neutral"

    def test_each_word_counts_once(self):
        """Repeating a word does not add weight."""
        assert determine_affect("happy happy happy, worried and upset") == "negative"


class TestPeople:
    """People rules."""

    def test_spouse(self):
        """"my wife Mary" yields a non-new spouse mention."""
        people = extract_people("Met with Tom and my wife Mary about the budget.")
        assert [(p.name, p.relationship, p.is_new_person) for p in people] == [("Mary", "wife", False)]

    def test_named(self):
        """"named X" yields a mention without a relationship."""
        people = extract_people("Their advisor was named Grace.")
        assert [(p.name, p.relationship) for p in people] == [("Grace", None)]

    def test_lowercase_name_not_captured(self):
        """Captured names must be capitalized."""
        assert extract_people("his name is bob") == []

    def test_case_insensitive_keywords(self):
        """Trigger keywords match in any case."""
        people = extract_people("JUST HAD A DAUGHTER, NAMED Olivia")
        assert [(p.name, p.relationship, p.is_new_person) for p in people] == [("Olivia", "daughter", True)]

    def test_deduplicated_by_name(self):
        """The same name found by two rules is reported once."""
        people = extract_people("We just had a baby named Noah. Yes, named Noah.")
        assert len(people) == 1


class TestTopics:
    """Financial topic rules."""

    def test_retirement_topic(self):
        """Retirement wording produces a retirement topic without beneficiary."""
        topics = extract_topics("She is considering moving $120,000 of savings into retirement accounts.")
        assert len(topics) == 1
        assert topics[0].product_type == "Retirement"
        assert topics[0].amount == "$120,000"
        assert topics[0].beneficiary is None
        assert topics[0].sentiment == "considering"

    def test_amount_nearest_to_keyword(self):
        """The amount closest to the keyword wins."""
        text = "Budget $900 for fees; life insurance $250,000 coverage"
        assert extract_amount(text, "life insurance") == "$250,000"

    def test_amount_outside_window(self):
        """Amounts far from the keyword are ignored."""
        text = "$5,000 " + ("filler " * 20) + "life insurance"
        assert extract_amount(text, "life insurance") is None

    def test_increase_sentiment(self):
        """"increase" before the product keyword is detected."""
        topics = extract_topics("Asked to increase the life insurance coverage.")
        assert topics[0].sentiment == "increase"

    def test_no_topics(self):
        """Notes without product keywords have no topics."""
        assert extract_topics("Talked about the weather.") == []


class TestSemanticExtractor:
    """Tests for OllamaNoteExtractor with a mocked client."""

    def test_maps_payload(self):
        """Model JSON becomes a semantic artifact."""
        client = MagicMock()
        client.generate_json.return_value = {
            "people": [{"name": "William", "relationship": "son", "aliases": ["Will"], "is_new_person": True}],
            "topics": [{
                "product_type": "Life Insurance",
                "amount": "$50,000",
                "beneficiary": "William",
                "sentiment": "wants",
            }],
            "actions": ["Schedule policy review", "Client prefers email"],
        }

        artifact = OllamaNoteExtractor(client=client).analyze(NEW_SON_NOTE)

        assert artifact.extractor_used == "semantic"
        assert artifact.people[0].aliases == ["Will"]
        assert artifact.facts == ["Schedule policy review"]
        assert "Client prefers email" in artifact.implications
        assert "New son identified: William" in artifact.implications
        assert "Potential opportunity: Life Insurance for William" in artifact.implications
        assert artifact.summary == "Schedule policy review"

    def test_invalid_payload_raises_unavailable(self):
        """A payload that fails validation is reported as unavailable."""
        client = MagicMock()
        client.generate_json.return_value = {"people": [{"relationship": "son"}]}

        with pytest.raises(ServiceUnavailableError):
            OllamaNoteExtractor(client=client).analyze("note")

    def test_client_error_raises_unavailable(self):
        """Transport errors are reported as unavailable."""
        client = MagicMock()
        client.generate_json.side_effect = OllamaError("connection refused")

        with pytest.raises(ServiceUnavailableError):
            OllamaNoteExtractor(client=client).analyze("note")

    def test_availability_probe_failure_is_false(self):
        """A probe that raises is treated as unavailable."""
        client = MagicMock()
        client.is_available.side_effect = RuntimeError("boom")
        assert OllamaNoteExtractor(client=client).is_available() is False


class FakeSemantic(NoteExtractor):
    kind = "semantic"

    def __init__(self, available=True, fail=False):
        self.available = available
        self.fail = fail
        self.calls = 0

    def is_available(self):
        return self.available

    def analyze(self, text):
        self.calls += 1
        if self.fail:
            raise ServiceUnavailableError("ollama", "timed out")
        return NoteAnalysisArtifact(summary="semantic", extractor_used="semantic")


class TestDispatcher:
    """Tests for NoteAnalyzerDispatcher."""

    def test_uses_semantic_when_available(self):
        """An available semantic extractor handles the note."""
        dispatcher = NoteAnalyzerDispatcher(semantic=FakeSemantic())
        assert dispatcher.analyze("note").extractor_used == "semantic"

    def test_falls_back_when_unavailable(self):
        """The heuristic analyzer runs when the probe fails."""
        semantic = FakeSemantic(available=False)
        artifact = NoteAnalyzerDispatcher(semantic=semantic).analyze(NEW_SON_NOTE)
        assert artifact.extractor_used == "heuristic"
        assert semantic.calls == 0

    def test_falls_back_on_failure(self):
        """A semantic failure mid-analysis falls back to heuristics."""
        semantic = FakeSemantic(fail=True)
        artifact = NoteAnalyzerDispatcher(semantic=semantic).analyze(NEW_SON_NOTE)
        assert artifact.extractor_used == "heuristic"
        assert semantic.calls == 1

    def test_no_semantic_configured(self):
        """Without a semantic extractor the heuristic analyzer is selected."""
        dispatcher = NoteAnalyzerDispatcher()
        assert dispatcher.select() is dispatcher.heuristic

    def test_singleton_respects_settings(self, mock_settings):
        """The shared dispatcher has no semantic extractor when disabled."""
        mock_settings.semantic_extractor_enabled = False
        assert get_note_dispatcher().semantic is None
