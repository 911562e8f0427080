"""
CRM Repository - the storage contract for evidence, people and insights.

Services depend only on CrmRepository. Two backends implement it:
- InMemoryCrmRepository (this file): an arena of records keyed by id
- SqliteCrmRepository (sqlite_repository.py): the on-disk store

Entities reference each other by id only. Deletes run explicit
cascade/nullify helpers instead of relying on database foreign keys:
- Deleting evidence removes its id from every insight's evidence set
- Deleting a person removes it from evidence links and proposals

Repositories are not thread-safe on their own; all access goes through
StoreAccess (store_access.py).
"""
import copy
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

from api.services.evidence import EvidenceItem, LinkTarget, external_uid_namespace
from api.services.insight import Insight, InsightTarget
from api.services.person import DuplicateCandidate, Person, normalize_email

logger = logging.getLogger(__name__)


class StoreConflictError(Exception):
    """Raised when a write collides with a concurrent change to the same entity."""
    pass


class CrmRepository(ABC):
    """Abstract storage for evidence, people and insights."""

    # ------------------------------------------------------------------
    # Evidence primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def get_evidence(self, evidence_id: str) -> Optional[EvidenceItem]:
        """Get an evidence item by id."""

    @abstractmethod
    def get_evidence_by_uid(self, external_uid: str) -> Optional[EvidenceItem]:
        """Get the evidence item for an external UID."""

    @abstractmethod
    def upsert_evidence(self, item: EvidenceItem) -> EvidenceItem:
        """
        Insert or replace an evidence item by id.

        Raises:
            StoreConflictError: If another item already owns the external UID
        """

    @abstractmethod
    def list_evidence(
        self,
        source: Optional[str] = None,
        triage_state: Optional[str] = None,
    ) -> list[EvidenceItem]:
        """List evidence, newest occurrence first."""

    @abstractmethod
    def _remove_evidence(self, evidence_id: str) -> bool:
        """Remove the evidence row only. Use delete_evidence()."""

    # ------------------------------------------------------------------
    # People primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def get_person(self, person_id: str) -> Optional[Person]:
        """Get a person by id."""

    @abstractmethod
    def save_person(self, person: Person) -> Person:
        """Insert or replace a person by id."""

    @abstractmethod
    def list_people(self) -> list[Person]:
        """List all people sorted by display name."""

    @abstractmethod
    def _remove_person(self, person_id: str) -> bool:
        """Remove the person row only. Use delete_person()."""

    # ------------------------------------------------------------------
    # Insight primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def get_insight(self, insight_id: str) -> Optional[Insight]:
        """Get an insight by id."""

    @abstractmethod
    def insert_insight(self, insight: Insight) -> Insight:
        """Insert a new insight."""

    @abstractmethod
    def update_insight(self, insight: Insight) -> Insight:
        """Replace an existing insight by id."""

    @abstractmethod
    def delete_insight(self, insight_id: str) -> bool:
        """Delete an insight."""

    @abstractmethod
    def list_insights(self, include_dismissed: bool = True) -> list[Insight]:
        """List insights, oldest first."""

    # ------------------------------------------------------------------
    # Shared operations
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group calls so they apply together or not at all."""
        yield

    def delete_evidence(self, evidence_id: str) -> bool:
        """
        Delete an evidence item and detach it from insights.

        Args:
            evidence_id: Evidence to delete

        Returns:
            True if the item existed
        """
        if not self._remove_evidence(evidence_id):
            return False
        nullify_evidence_references(self, evidence_id)
        return True

    def prune_evidence(self, valid_uids: Iterable[str], namespace: str) -> list[str]:
        """
        Delete evidence from one source whose UID is no longer valid.

        Only items whose external UID lives in `namespace` are considered.
        Manual items (no UID) and items from other sources are untouched.

        Args:
            valid_uids: UIDs still present in the source
            namespace: Source namespace, e.g. "calendar"

        Returns:
            Ids of deleted evidence
        """
        valid = set(valid_uids)
        removed = []
        for item in self.list_evidence():
            if item.external_uid is None:
                continue
            if external_uid_namespace(item.external_uid) != namespace:
                continue
            if item.external_uid not in valid:
                if self.delete_evidence(item.id):
                    removed.append(item.id)
        return removed

    def delete_person(self, person_id: str) -> bool:
        """Delete a person and remove it from evidence links."""
        if not self._remove_person(person_id):
            return False
        nullify_person_references(self, person_id)
        return True

    def fetch_people(self, matching: Optional[str] = None) -> list[DuplicateCandidate]:
        """
        Get matcher candidates.

        Args:
            matching: Optional case-insensitive substring filter on display name

        Returns:
            DuplicateCandidate projections
        """
        needle = matching.strip().lower() if matching else None
        return [
            p.to_candidate()
            for p in self.list_people()
            if not needle or needle in p.display_name.lower()
        ]

    def find_people_by_emails(self, emails: Iterable[str]) -> list[Person]:
        """Find people whose primary email or aliases match any given email."""
        wanted = {e for e in (normalize_email(x) for x in emails) if e}
        if not wanted:
            return []
        return [p for p in self.list_people() if p.all_emails & wanted]

    def known_emails(self) -> dict[str, str]:
        """Map of normalized email -> person id for every known person."""
        out = {}
        for person in self.list_people():
            for email in person.all_emails:
                out.setdefault(email, person.id)
        return out

    def query_insights(
        self,
        target: InsightTarget,
        kind: str,
        message: str,
        include_dismissed: bool = False,
    ) -> list[Insight]:
        """Find insights with the same (target, kind, message)."""
        return [
            i for i in self.list_insights(include_dismissed=include_dismissed)
            if i.target == target and i.kind == kind and i.message == message
        ]


def nullify_evidence_references(repo: CrmRepository, evidence_id: str) -> int:
    """
    Remove a deleted evidence id from every insight that cites it.

    Returns:
        Number of insights updated
    """
    updated = 0
    for insight in repo.list_insights(include_dismissed=True):
        if evidence_id in insight.based_on_evidence:
            insight.based_on_evidence.discard(evidence_id)
            repo.update_insight(insight)
            updated += 1
    if updated:
        logger.debug(f"Detached evidence {evidence_id} from {updated} insights")
    return updated


def nullify_person_references(repo: CrmRepository, person_id: str) -> int:
    """
    Remove a deleted person from evidence links and proposals.

    Returns:
        Number of evidence items updated
    """
    updated = 0
    for item in repo.list_evidence():
        before = (len(item.linked_people), len(item.proposed_links))
        item.linked_people = [p for p in item.linked_people if p != person_id]
        item.proposed_links = [
            link for link in item.proposed_links
            if not (link.target == LinkTarget.PERSON.value and link.target_id == person_id)
        ]
        if (len(item.linked_people), len(item.proposed_links)) != before:
            repo.upsert_evidence(item)
            updated += 1
    return updated


class InMemoryCrmRepository(CrmRepository):
    """
    Arena-style in-memory repository.

    Records are copied in and out so callers never hold live references
    into the arena.
    """

    def __init__(self):
        self._evidence: dict[str, EvidenceItem] = {}
        self._uid_index: dict[str, str] = {}  # external_uid -> evidence id
        self._people: dict[str, Person] = {}
        self._insights: dict[str, Insight] = {}
        self._in_transaction = False

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Snapshot the arena and restore it if the block raises."""
        if self._in_transaction:
            yield
            return

        snapshot = copy.deepcopy((self._evidence, self._uid_index, self._people, self._insights))
        self._in_transaction = True
        try:
            yield
        except BaseException:
            self._evidence, self._uid_index, self._people, self._insights = snapshot
            raise
        finally:
            self._in_transaction = False

    # Evidence

    def get_evidence(self, evidence_id: str) -> Optional[EvidenceItem]:
        item = self._evidence.get(evidence_id)
        return copy.deepcopy(item) if item else None

    def get_evidence_by_uid(self, external_uid: str) -> Optional[EvidenceItem]:
        evidence_id = self._uid_index.get(external_uid)
        return self.get_evidence(evidence_id) if evidence_id else None

    def upsert_evidence(self, item: EvidenceItem) -> EvidenceItem:
        if item.external_uid:
            owner = self._uid_index.get(item.external_uid)
            if owner and owner != item.id:
                raise StoreConflictError(
                    f"External UID {item.external_uid} already belongs to evidence {owner}"
                )

        previous = self._evidence.get(item.id)
        if previous and previous.external_uid and previous.external_uid != item.external_uid:
            self._uid_index.pop(previous.external_uid, None)

        self._evidence[item.id] = copy.deepcopy(item)
        if item.external_uid:
            self._uid_index[item.external_uid] = item.id
        return item

    def list_evidence(
        self,
        source: Optional[str] = None,
        triage_state: Optional[str] = None,
    ) -> list[EvidenceItem]:
        items = [
            copy.deepcopy(i) for i in self._evidence.values()
            if (source is None or i.source == source)
            and (triage_state is None or i.triage_state == triage_state)
        ]
        items.sort(key=lambda i: i.occurred_at, reverse=True)
        return items

    def _remove_evidence(self, evidence_id: str) -> bool:
        item = self._evidence.pop(evidence_id, None)
        if item is None:
            return False
        if item.external_uid:
            self._uid_index.pop(item.external_uid, None)
        return True

    # People

    def get_person(self, person_id: str) -> Optional[Person]:
        person = self._people.get(person_id)
        return copy.deepcopy(person) if person else None

    def save_person(self, person: Person) -> Person:
        self._people[person.id] = copy.deepcopy(person)
        return person

    def list_people(self) -> list[Person]:
        people = [copy.deepcopy(p) for p in self._people.values()]
        people.sort(key=lambda p: p.display_name.lower())
        return people

    def _remove_person(self, person_id: str) -> bool:
        return self._people.pop(person_id, None) is not None

    # Insights

    def get_insight(self, insight_id: str) -> Optional[Insight]:
        insight = self._insights.get(insight_id)
        return copy.deepcopy(insight) if insight else None

    def insert_insight(self, insight: Insight) -> Insight:
        if insight.id in self._insights:
            raise StoreConflictError(f"Insight {insight.id} already exists")
        self._insights[insight.id] = copy.deepcopy(insight)
        return insight

    def update_insight(self, insight: Insight) -> Insight:
        self._insights[insight.id] = copy.deepcopy(insight)
        return insight

    def delete_insight(self, insight_id: str) -> bool:
        return self._insights.pop(insight_id, None) is not None

    def list_insights(self, include_dismissed: bool = True) -> list[Insight]:
        insights = [
            copy.deepcopy(i) for i in self._insights.values()
            if include_dismissed or not i.is_dismissed
        ]
        insights.sort(key=lambda i: i.created_at)
        return insights
