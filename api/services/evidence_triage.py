"""
Evidence triage - the user's side of the evidence lifecycle.

Marks items reviewed, accepts or declines proposed links, creates manual
evidence and deletes evidence. Every operation is one serialized write.
Missing evidence or links are reported as None/False rather than raised.
"""
import logging
from datetime import datetime
from typing import Iterable, Optional

from api.services.crm_repository import CrmRepository
from api.services.duplicate_matcher import DuplicatePersonMatcher, get_duplicate_matcher
from api.services.evidence import (
    EvidenceItem,
    EvidenceSource,
    LinkStatus,
    LinkTarget,
    TriageState,
)
from api.services.evidence_signals import derive_signals
from api.services.insight_generator import InsightGenerator
from api.services.person import normalize_email
from api.services.store_access import StoreAccess
from api.utils.datetime_utils import make_aware, utc_now

logger = logging.getLogger(__name__)


class EvidenceTriageService:
    """Review, link decisions and manual evidence."""

    def __init__(
        self,
        store: StoreAccess,
        generator: Optional[InsightGenerator] = None,
        matcher: Optional[DuplicatePersonMatcher] = None,
    ):
        self.store = store
        self.generator = generator or InsightGenerator(store)
        self.matcher = matcher or get_duplicate_matcher()

    def get(self, evidence_id: str) -> Optional[EvidenceItem]:
        return self.store.read(lambda repo: repo.get_evidence(evidence_id))

    def list_evidence(
        self,
        source: Optional[str] = None,
        triage_state: Optional[str] = None,
    ) -> list[EvidenceItem]:
        return self.store.read(lambda repo: repo.list_evidence(source=source, triage_state=triage_state))

    def list_needs_review(self) -> list[EvidenceItem]:
        """The review queue, newest first."""
        return self.list_evidence(triage_state=TriageState.NEEDS_REVIEW.value)

    # ------------------------------------------------------------------
    # Triage state
    # ------------------------------------------------------------------

    def _set_triage_state(self, evidence_id: str, state: str) -> Optional[EvidenceItem]:
        def _update(repo: CrmRepository) -> Optional[EvidenceItem]:
            item = repo.get_evidence(evidence_id)
            if item is None:
                return None
            if item.triage_state != state:
                item.triage_state = state
                item.updated_at = utc_now()
                repo.upsert_evidence(item)
            return item

        return self.store.write(_update, f"triage_{state}")

    def mark_reviewed(self, evidence_id: str) -> Optional[EvidenceItem]:
        return self._set_triage_state(evidence_id, TriageState.REVIEWED.value)

    def mark_needs_review(self, evidence_id: str) -> Optional[EvidenceItem]:
        return self._set_triage_state(evidence_id, TriageState.NEEDS_REVIEW.value)

    # ------------------------------------------------------------------
    # Link decisions
    # ------------------------------------------------------------------

    def _adopt_hint_email(self, repo: CrmRepository, item: EvidenceItem, person_id: str) -> None:
        """Give the accepted person the email of the unverified participant that best matches it."""
        person = repo.get_person(person_id)
        if person is None:
            return
        scored = [
            (self.matcher.score(hint.display_name, person.display_name), hint)
            for hint in item.participant_hints
            if not hint.verified and normalize_email(hint.email)
        ]
        scored = [(score, hint) for score, hint in scored if score >= self.matcher.threshold]
        for _, hint in sorted(scored, key=lambda pair: -pair[0]):
            email = normalize_email(hint.email)
            if email in person.all_emails:
                continue
            if person.email is None:
                person.email = email
            else:
                person.email_aliases.append(email)
            repo.save_person(person)
            logger.info(f"Added {email} to {person.display_name}")
            return

    def accept_link(self, evidence_id: str, link_id: str) -> Optional[EvidenceItem]:
        """
        Accept a proposed link.

        The target moves into linked people or contexts, signals are
        recomputed and insights are generated for the newly linked target.

        Returns:
            The updated evidence, or None if the evidence or link is unknown
        """
        def _accept(repo: CrmRepository) -> Optional[EvidenceItem]:
            item = repo.get_evidence(evidence_id)
            link = item.get_link(link_id) if item else None
            if link is None:
                return None

            link.status = LinkStatus.ACCEPTED.value
            link.decided_at = utc_now()
            if link.target == LinkTarget.CONTEXT.value:
                if link.target_id not in item.linked_contexts:
                    item.linked_contexts.append(link.target_id)
            else:
                if link.target_id not in item.linked_people:
                    item.linked_people.append(link.target_id)
                self._adopt_hint_email(repo, item, link.target_id)

            item.signals = derive_signals(item)
            item.updated_at = utc_now()
            repo.upsert_evidence(item)
            self.generator.from_evidence_in(repo, item)
            return item

        return self.store.write(_accept, "accept_link")

    def decline_link(self, evidence_id: str, link_id: str) -> Optional[EvidenceItem]:
        """
        Decline a proposed link. The person is not proposed again for this item.

        Returns:
            The updated evidence, or None if the evidence or link is unknown
        """
        def _decline(repo: CrmRepository) -> Optional[EvidenceItem]:
            item = repo.get_evidence(evidence_id)
            link = item.get_link(link_id) if item else None
            if link is None:
                return None
            link.status = LinkStatus.DECLINED.value
            link.decided_at = utc_now()
            item.updated_at = utc_now()
            repo.upsert_evidence(item)
            return item

        return self.store.write(_decline, "decline_link")

    # ------------------------------------------------------------------
    # Manual evidence
    # ------------------------------------------------------------------

    def create_manual(
        self,
        title: str,
        snippet: str = "",
        body_text: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
        linked_people: Optional[Iterable[str]] = None,
    ) -> EvidenceItem:
        """
        Create evidence by hand. It has no external UID and is never pruned.

        Raises:
            ValueError: If the title is empty
        """
        if not title or not title.strip():
            raise ValueError("title is required")

        def _create(repo: CrmRepository) -> EvidenceItem:
            people = [p for p in dict.fromkeys(linked_people or []) if repo.get_person(p)]
            item = EvidenceItem(
                source=EvidenceSource.MANUAL.value,
                title=title.strip(),
                snippet=snippet,
                body_text=body_text,
                occurred_at=make_aware(occurred_at) if occurred_at else utc_now(),
                linked_people=people,
            )
            item.signals = derive_signals(item)
            repo.upsert_evidence(item)
            self.generator.from_evidence_in(repo, item)
            return item

        return self.store.write(_create, "create_manual_evidence")

    def delete(self, evidence_id: str) -> bool:
        """Delete evidence and detach it from insights."""
        deleted = self.store.write(lambda repo: repo.delete_evidence(evidence_id), "delete_evidence")
        if deleted:
            logger.info(f"Deleted evidence {evidence_id}")
        return deleted
