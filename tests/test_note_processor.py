"""
Tests for note ingestion.
"""
import pytest

from api.services.evidence import EvidenceSource
from api.services.heuristic_note_analyzer import HeuristicNoteAnalyzer
from api.services.note_dispatcher import NoteAnalyzerDispatcher
from api.services.note_processor import NoteProcessor, note_external_uid
from api.services.person import Person
from tests.factories import FIXED_NOW

pytestmark = pytest.mark.unit

NEW_SON_NOTE = (
    "I just had a son. His name is William. "
    "We want to discuss a $50,000 life insurance policy for William."
)


@pytest.fixture
def processor(store, matcher):
    return NoteProcessor(store, dispatcher=NoteAnalyzerDispatcher(), matcher=matcher)


@pytest.fixture
def client_person(store):
    return store.write(lambda repo: repo.save_person(Person(display_name="Robert Smith")))


def people_named(store, name):
    return [p for p in store.read(lambda repo: repo.list_people()) if p.display_name == name]


class TestProcess:
    """Tests for NoteProcessor.process()."""

    def test_note_stored_as_evidence(self, processor, store, client_person):
        """The note becomes note:<id> evidence with the summary as snippet."""
        result = processor.process("n1", NEW_SON_NOTE, [client_person.id], occurred_at=FIXED_NOW)

        item = store.read(lambda repo: repo.get_evidence_by_uid(note_external_uid("n1")))
        assert item is not None
        assert item.id == result.evidence.id
        assert item.source == EvidenceSource.NOTE.value
        assert item.snippet == "I just had a son"
        assert item.body_text == NEW_SON_NOTE
        assert item.occurred_at == FIXED_NOW
        assert client_person.id in item.linked_people

    def test_new_person_created_and_linked(self, processor, store, client_person):
        """A newly mentioned child becomes a person linked to the note."""
        result = processor.process("n1", NEW_SON_NOTE, [client_person.id])

        assert [p.display_name for p in result.created_people] == ["William"]
        william = people_named(store, "William")
        assert len(william) == 1
        assert william[0].id in result.evidence.linked_people

    def test_probable_duplicate_not_created(self, processor, store, client_person):
        """A new mention matching an existing person creates nobody."""
        store.write(lambda repo: repo.save_person(Person(display_name="Bill")))

        result = processor.process("n1", NEW_SON_NOTE, [client_person.id])

        assert result.created_people == []
        assert people_named(store, "William") == []

    def test_resaving_updates_in_place(self, processor, store, client_person):
        """Processing the same note id twice keeps one evidence item and one person."""
        processor.process("n1", NEW_SON_NOTE, [client_person.id])
        second = processor.process("n1", NEW_SON_NOTE + " Follow up next week.", [client_person.id])

        notes = store.read(lambda repo: repo.list_evidence(source="note"))
        assert len(notes) == 1
        assert notes[0].body_text.endswith("Follow up next week.")
        assert second.created_people == []
        assert len(people_named(store, "William")) == 1

    def test_insights_for_related_person(self, processor, store, client_person):
        """Analysis cues produce insights for the people the note is about."""
        result = processor.process("n1", NEW_SON_NOTE, [client_person.id])

        kinds = {i.kind for i in result.insights}
        assert {"follow_up", "opportunity"} <= kinds
        assert all(i.target.id == client_person.id for i in result.insights)
        assert all(result.evidence.id in i.based_on_evidence for i in result.insights)

    def test_repeat_does_not_duplicate_insights(self, processor, store, client_person):
        """Reprocessing merges into the existing insights."""
        processor.process("n1", NEW_SON_NOTE, [client_person.id])
        processor.process("n1", NEW_SON_NOTE, [client_person.id])

        insights = store.read(lambda repo: repo.list_insights(include_dismissed=False))
        keys = [i.dedup_key for i in insights]
        assert len(keys) == len(set(keys))

    def test_without_related_people_targets_product(self, processor, store):
        """A note about nobody yields product-targeted opportunities."""
        result = processor.process("n1", "Client would like more life insurance coverage.")

        assert [i.target.type for i in result.insights] == ["product"]
        assert result.insights[0].target.id == "life_insurance"

    def test_analysis_signals_on_evidence(self, processor, store, client_person):
        """Signals derived from the analysis are stored on the note evidence."""
        result = processor.process("n1", NEW_SON_NOTE, [client_person.id])
        reasons = [s.reason for s in result.evidence.signals]
        assert any(r.startswith("Derived from analysis:") for r in reasons)

    def test_unknown_related_person_ignored(self, processor, store):
        """Related ids that do not exist are dropped."""
        result = processor.process("n1", "Quick check-in.", ["missing"])
        assert "missing" not in result.evidence.linked_people

    def test_existing_person_mentioned_gets_proposal(self, processor, store):
        """A non-new mention of a known person becomes a pending proposal."""
        person = store.write(lambda repo: repo.save_person(Person(display_name="Mary Jones")))

        result = processor.process("n1", "Met with the client and my wife Mary today.")

        assert person.id not in result.evidence.linked_people
        assert result.evidence.participant_hints[0].display_name == "Mary"
        # A single-token name only shares the first token, so it is not proposed
        assert result.evidence.proposed_links == []

    def test_empty_note_id_rejected(self, processor):
        """A note id is required."""
        with pytest.raises(ValueError):
            processor.process("  ", "text")

    def test_semantic_extractor_used_when_available(self, store, matcher):
        """The dispatcher's choice is reported on the artifact."""
        class Semantic(HeuristicNoteAnalyzer):
            kind = "semantic"

            def analyze(self, text):
                artifact = super().analyze(text)
                artifact.extractor_used = "semantic"
                return artifact

        processor = NoteProcessor(store, dispatcher=NoteAnalyzerDispatcher(semantic=Semantic()), matcher=matcher)
        result = processor.process("n1", NEW_SON_NOTE)
        assert result.artifact.extractor_used == "semantic"
        assert result.to_dict()["analysis"]["extractor_used"] == "semantic"
