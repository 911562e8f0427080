"""
Evidence Upsert Engine.

Converts SourceRecords into EvidenceItems and writes them idempotently,
keyed by external UID.

Upsert rules:
- New UID: create with triage_state = needs_review
- Known UID: overwrite title, snippet, body, occurred_at and participant
  hints from the fresh record; keep triage state, confirmed links and
  decided proposals
- Signals are recomputed from scratch after links are settled
- An unchanged record is not rewritten, so repeated imports converge

Participant hints:
- A hint whose email belongs to a known person is verified and that person
  is linked (links are only ever added, never removed by an import)
- Unverified hints are scored with DuplicatePersonMatcher and matches
  above threshold become pending ProposedLinks; nothing is auto-accepted

Malformed records are skipped and reported; they never abort a batch.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

from api.services.crm_repository import CrmRepository
from api.services.duplicate_matcher import DuplicatePersonMatcher, get_duplicate_matcher
from api.services.evidence import (
    EvidenceItem,
    EvidenceSource,
    LinkTarget,
    ParticipantHint,
    ProposedLink,
    TriageState,
    external_uid_namespace,
)
from api.services.evidence_signals import derive_signals
from api.services.person import DuplicateCandidate, normalize_email
from api.services.source_adapters import MalformedRecordError, SourceRecord
from api.services.store_access import StoreAccess
from api.utils.datetime_utils import make_aware, utc_now
from config.matching_weights import MAX_PROPOSALS_PER_HINT

logger = logging.getLogger(__name__)


@dataclass
class UpsertResult:
    """Outcome of one upsert batch."""

    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    changed_ids: list[str] = field(default_factory=list)  # Created or updated evidence

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


@dataclass
class PruneResult:
    """Outcome of one prune pass."""

    removed: int = 0
    removed_ids: list[str] = field(default_factory=list)


def validate_record(record: SourceRecord, source: str) -> None:
    """
    Check that a record can become evidence for `source`.

    Raises:
        MalformedRecordError: Describing the first problem found
    """
    if not isinstance(record, SourceRecord):
        raise MalformedRecordError(f"expected SourceRecord, got {type(record).__name__}")
    if not isinstance(record.external_uid, str) or not record.external_uid.strip():
        raise MalformedRecordError("missing external UID")
    namespace = external_uid_namespace(record.external_uid)
    if namespace != source:
        raise MalformedRecordError(
            f"external UID {record.external_uid!r} is not in the {source!r} namespace"
        )
    if not isinstance(record.title, str):
        raise MalformedRecordError(f"{record.external_uid}: title is not text")
    if not isinstance(record.occurred_at, datetime):
        raise MalformedRecordError(f"{record.external_uid}: occurred_at is not a datetime")
    if record.snippet is not None and not isinstance(record.snippet, str):
        raise MalformedRecordError(f"{record.external_uid}: snippet is not text")
    for hint in record.participant_hints or []:
        if not isinstance(hint, ParticipantHint):
            raise MalformedRecordError(f"{record.external_uid}: invalid participant hint")


def _fingerprint(item: EvidenceItem) -> tuple:
    """Comparable view of everything an upsert can change."""
    return (
        item.title,
        item.snippet,
        item.body_text,
        make_aware(item.occurred_at),
        tuple((s.kind, round(s.confidence, 4), s.reason) for s in item.signals),
        tuple(tuple(sorted(h.to_dict().items())) for h in item.participant_hints),
        tuple((l.id, l.target_id, l.status, round(l.confidence, 4)) for l in item.proposed_links),
        tuple(item.linked_people),
        tuple(item.linked_contexts),
    )


class EvidenceUpsertEngine:
    """Idempotent upsert/prune of source-derived evidence."""

    def __init__(
        self,
        store: StoreAccess,
        matcher: Optional[DuplicatePersonMatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Serialized store access
            matcher: Duplicate matcher for participant hints (default: shared matcher)
            clock: Current-time provider for signal recency (default: utc_now)
        """
        self.store = store
        self.matcher = matcher or get_duplicate_matcher()
        self.clock = clock or utc_now

    # ------------------------------------------------------------------
    # Participant resolution
    # ------------------------------------------------------------------

    @staticmethod
    def verify_hints(
        hints: Iterable[ParticipantHint],
        known_emails: dict[str, str],
    ) -> tuple[list[ParticipantHint], list[str]]:
        """
        Mark hints whose email belongs to a known person.

        Args:
            hints: Hints from the source record
            known_emails: Normalized email -> person id

        Returns:
            (hints with `verified` set, ids of persons they resolve to)
        """
        resolved = []
        person_ids = []
        for hint in hints:
            email = normalize_email(hint.email)
            person_id = known_emails.get(email) if email else None
            resolved.append(ParticipantHint(
                display_name=hint.display_name,
                email=email,
                is_organizer=hint.is_organizer,
                verified=hint.verified or person_id is not None,
            ))
            if person_id and person_id not in person_ids:
                person_ids.append(person_id)
        return resolved, person_ids

    def propose_links(self, item: EvidenceItem, candidates: list[DuplicateCandidate]) -> None:
        """
        Recompute pending person proposals for an item's unverified hints.

        A still-proposed person keeps its link id; stale pending proposals
        are dropped; decided proposals and context proposals are kept, and
        a declined person is never proposed again for this item.
        """
        kept = [
            link for link in item.proposed_links
            if not link.is_pending or link.target != LinkTarget.PERSON.value
        ]
        decided_people = {
            link.target_id for link in kept if link.target == LinkTarget.PERSON.value
        }
        previous = {
            link.target_id: link for link in item.proposed_links
            if link.is_pending and link.target == LinkTarget.PERSON.value
        }

        proposals: list[ProposedLink] = []
        seen: set[str] = set()
        for hint in item.participant_hints:
            if hint.verified or not hint.display_name:
                continue
            matches = self.matcher.find_matches(hint.display_name, candidates)
            for match in matches[:MAX_PROPOSALS_PER_HINT]:
                person_id = match.candidate.id
                if person_id in item.linked_people or person_id in decided_people or person_id in seen:
                    continue
                seen.add(person_id)
                link = previous.get(person_id) or ProposedLink(target=LinkTarget.PERSON.value, target_id=person_id)
                link.display_name = match.candidate.display_name
                link.confidence = match.score
                link.reason = f"Name match for participant '{hint.display_name}'"
                proposals.append(link)

        item.proposed_links = kept + proposals

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    def upsert_record_in(
        self,
        repo: CrmRepository,
        record: SourceRecord,
        source: str,
        known_emails: dict[str, str],
        candidates: list[DuplicateCandidate],
    ) -> tuple[EvidenceItem, str]:
        """
        Apply one validated record inside an open write.

        Returns:
            (item, outcome) where outcome is "created", "updated" or "unchanged"
        """
        hints, verified_ids = self.verify_hints(record.participant_hints or [], known_emails)
        existing = repo.get_evidence_by_uid(record.external_uid)

        if existing is None:
            item = EvidenceItem(
                external_uid=record.external_uid,
                source=source,
                triage_state=TriageState.NEEDS_REVIEW.value,
                occurred_at=make_aware(record.occurred_at),
                title=record.title,
                snippet=record.snippet or "",
                body_text=record.body_text,
                participant_hints=hints,
                linked_people=verified_ids,
            )
            before = None
        else:
            item = existing
            before = _fingerprint(existing)
            item.title = record.title
            item.snippet = record.snippet or ""
            item.body_text = record.body_text
            item.occurred_at = make_aware(record.occurred_at)
            item.participant_hints = hints
            for person_id in verified_ids:
                if person_id not in item.linked_people:
                    item.linked_people.append(person_id)

        self.propose_links(item, candidates)
        item.signals = derive_signals(item, self.clock())

        if before is not None and _fingerprint(item) == before:
            return item, "unchanged"

        item.updated_at = utc_now()
        repo.upsert_evidence(item)
        return item, "created" if before is None else "updated"

    def upsert_in(self, repo: CrmRepository, records: Iterable[SourceRecord], source: str) -> UpsertResult:
        """Upsert a batch inside an open write."""
        result = UpsertResult()
        known_emails = repo.known_emails()
        candidates = repo.fetch_people()

        for index, record in enumerate(records):
            try:
                validate_record(record, source)
            except MalformedRecordError as e:
                result.skipped += 1
                result.errors.append(f"record {index}: {e}")
                logger.warning(f"Skipping malformed {source} record {index}: {e}")
                continue

            item, outcome = self.upsert_record_in(repo, record, source, known_emails, candidates)
            if outcome == "created":
                result.created += 1
            elif outcome == "updated":
                result.updated += 1
            else:
                result.unchanged += 1
                continue
            result.changed_ids.append(item.id)
            logger.debug(f"{outcome.capitalize()} evidence {item.external_uid}")

        return result

    def upsert(self, records: Iterable[SourceRecord], source: str) -> UpsertResult:
        """
        Upsert source records as one atomic batch.

        Args:
            records: Records from a SourceAdapter
            source: Source namespace the records must belong to

        Returns:
            UpsertResult with counts and the ids of changed evidence
        """
        records = list(records)
        result = self.store.write(lambda repo: self.upsert_in(repo, records, source), f"upsert_{source}")
        logger.info(
            f"Upserted {source}: {result.created} created, {result.updated} updated, "
            f"{result.unchanged} unchanged, {result.skipped} skipped"
        )
        return result

    # ------------------------------------------------------------------
    # Prune
    # ------------------------------------------------------------------

    def prune(self, valid_uids: Iterable[str], source: str) -> PruneResult:
        """
        Delete evidence from `source` whose UID is no longer valid.

        Evidence without a UID, and evidence from other sources, is never
        touched.

        Args:
            valid_uids: UIDs the source still reports
            source: Source namespace being pruned

        Returns:
            PruneResult with the removed count
        """
        valid = set(valid_uids)
        removed = self.store.write(lambda repo: repo.prune_evidence(valid, source), f"prune_{source}")
        if removed:
            logger.info(f"Pruned {len(removed)} {source} evidence items")
        return PruneResult(removed=len(removed), removed_ids=removed)

    # ------------------------------------------------------------------
    # Re-resolution
    # ------------------------------------------------------------------

    def reresolve_unlinked_in(
        self, repo: CrmRepository, source: str = EvidenceSource.CALENDAR.value
    ) -> list[str]:
        """Re-verify hints of unlinked evidence inside an open write."""
        known_emails = repo.known_emails()
        candidates = repo.fetch_people()
        changed = []

        for item in repo.list_evidence(source=source):
            if item.is_linked:
                continue
            hints, person_ids = self.verify_hints(item.participant_hints, known_emails)
            if not person_ids:
                continue
            item.participant_hints = hints
            item.linked_people = person_ids
            self.propose_links(item, candidates)
            item.signals = derive_signals(item, self.clock())
            item.updated_at = utc_now()
            repo.upsert_evidence(item)
            changed.append(item.id)

        if changed:
            logger.info(f"Re-resolved {len(changed)} unlinked {source} evidence items")
        return changed

    def reresolve_unlinked_evidence(self, source: str = EvidenceSource.CALENDAR.value) -> list[str]:
        """
        Link unlinked evidence whose participants now match a known email.

        Run after contacts change, when people may have gained emails.

        Returns:
            Ids of evidence that gained links
        """
        return self.store.write(lambda repo: self.reresolve_unlinked_in(repo, source), "reresolve_unlinked")
