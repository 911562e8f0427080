"""
Note Processor.

Stores a user-authored note as evidence and turns its analysis into
people and insights:

1. Analyze the text (semantic extractor or heuristics, via the dispatcher)
2. In one serialized write:
   - Create a Person for each newly mentioned person with no probable duplicate
   - Upsert the note as evidence "note:<note_id>" (summary as snippet, text
     as body), linked to the related and newly created people
   - Replace earlier analysis signals with ones from this analysis
   - Generate insights from the analysis

Analysis runs before the write so a slow model never holds the store lock.
Saving the same note again updates its evidence in place.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from api.services.crm_repository import CrmRepository
from api.services.duplicate_matcher import DuplicatePersonMatcher, get_duplicate_matcher
from api.services.evidence import EvidenceItem, EvidenceSource, ParticipantHint
from api.services.evidence_signals import collapse_signals, derive_signals, signals_from_artifact
from api.services.evidence_upsert import EvidenceUpsertEngine
from api.services.insight import Insight
from api.services.insight_generator import InsightGenerator
from api.services.note_analysis import NoteAnalysisArtifact, PersonMention
from api.services.note_dispatcher import NoteAnalyzerDispatcher, get_note_dispatcher
from api.services.person import DuplicateCandidate, Person
from api.services.source_adapters import SourceRecord
from api.services.store_access import StoreAccess
from api.utils.datetime_utils import make_aware, utc_now

logger = logging.getLogger(__name__)

NOTE_TITLE_CHARS = 80


def note_external_uid(note_id: str) -> str:
    return f"{EvidenceSource.NOTE.value}:{note_id}"


@dataclass
class NoteResult:
    """What processing one note produced."""

    evidence: EvidenceItem
    artifact: NoteAnalysisArtifact
    created_people: list[Person] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "evidence": self.evidence.to_dict(),
            "analysis": self.artifact.to_dict(),
            "created_people": [p.to_dict() for p in self.created_people],
            "insights": [i.to_dict() for i in self.insights],
        }


class NoteProcessor:
    """Ingests notes into the evidence store."""

    def __init__(
        self,
        store: StoreAccess,
        dispatcher: Optional[NoteAnalyzerDispatcher] = None,
        engine: Optional[EvidenceUpsertEngine] = None,
        generator: Optional[InsightGenerator] = None,
        matcher: Optional[DuplicatePersonMatcher] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher or get_note_dispatcher()
        self.matcher = matcher or get_duplicate_matcher()
        self.engine = engine or EvidenceUpsertEngine(store, matcher=self.matcher)
        self.generator = generator or InsightGenerator(store)

    def _create_new_people(
        self,
        repo: CrmRepository,
        mentions: Iterable[PersonMention],
        candidates: list[DuplicateCandidate],
    ) -> list[Person]:
        """Create people for new mentions that do not match anyone."""
        created = []
        for mention in mentions:
            if not mention.is_new_person:
                continue
            matches = self.matcher.find_matches(mention.name, candidates)
            if matches:
                logger.info(
                    f"Not creating '{mention.name}': probable duplicate of "
                    f"'{matches[0].candidate.display_name}' ({matches[0].score:.2f})"
                )
                continue
            person = repo.save_person(Person(display_name=mention.name))
            candidates.append(person.to_candidate())
            created.append(person)
            logger.info(f"Created person '{person.display_name}' from note mention ({mention.relationship or 'no relationship'})")
        return created

    def _process_in(
        self,
        repo: CrmRepository,
        note_id: str,
        text: str,
        artifact: NoteAnalysisArtifact,
        related_person_ids: list[str],
        occurred_at: datetime,
    ) -> NoteResult:
        related = []
        for person_id in related_person_ids:
            if repo.get_person(person_id) is None:
                logger.warning(f"Note {note_id}: related person {person_id} not found, ignoring")
                continue
            related.append(person_id)

        candidates = repo.fetch_people()
        created = self._create_new_people(repo, artifact.people, candidates)
        created_names = {p.display_name.lower() for p in created}

        # Existing people mentioned by name become hints, so they get proposals
        hints = [
            ParticipantHint(display_name=m.name)
            for m in artifact.people
            if m.name.lower() not in created_names
        ]
        summary = artifact.summary or text[:NOTE_TITLE_CHARS]
        record = SourceRecord(
            external_uid=note_external_uid(note_id),
            title=summary[:NOTE_TITLE_CHARS] or "Note",
            occurred_at=occurred_at,
            snippet=summary,
            participant_hints=hints,
            body_text=text,
        )
        item, _ = self.engine.upsert_record_in(
            repo, record, EvidenceSource.NOTE.value, repo.known_emails(), candidates
        )

        for person_id in related + [p.id for p in created]:
            if person_id not in item.linked_people:
                item.linked_people.append(person_id)
        item.proposed_links = [
            link for link in item.proposed_links
            if not (link.is_pending and link.target_id in item.linked_people)
        ]
        item.signals = collapse_signals(derive_signals(item, utc_now()) + signals_from_artifact(artifact))
        item.updated_at = utc_now()
        repo.upsert_evidence(item)

        insights = self.generator.from_note_analysis_in(repo, artifact, related, [item.id])
        return NoteResult(evidence=item, artifact=artifact, created_people=created, insights=insights)

    def process(
        self,
        note_id: str,
        text: str,
        related_person_ids: Optional[Iterable[str]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> NoteResult:
        """
        Analyze and store a note.

        Args:
            note_id: Stable id of the note (re-saving updates the same evidence)
            text: Raw note text
            related_person_ids: People the note is about
            occurred_at: When the note was taken (default: now)

        Returns:
            NoteResult with the evidence, analysis, new people and insights

        Raises:
            ValueError: If note_id is empty
        """
        if not note_id or not note_id.strip():
            raise ValueError("note_id is required")

        artifact = self.dispatcher.analyze(text or "")
        related = list(dict.fromkeys(related_person_ids or []))
        when = make_aware(occurred_at) if occurred_at else utc_now()

        result = self.store.write(
            lambda repo: self._process_in(repo, note_id.strip(), text or "", artifact, related, when),
            "process_note",
        )
        logger.info(
            f"Processed note {note_id} ({artifact.extractor_used}): "
            f"{len(result.created_people)} people created, {len(result.insights)} insights"
        )
        return result
