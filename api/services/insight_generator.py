"""
Insight Generator.

Turns evidence signals and note analyses into Insight records.

Deduplication rule: before inserting, look for a non-dismissed insight with
the same (target, kind, message). If one exists, its evidence set absorbs
the new evidence and no row is added. deduplicate() repairs any duplicates
that slipped in anyway (e.g. from older data).

Methods ending in `_in` take an open repository and are meant to run
inside a StoreAccess.write() already held by the caller; the public
methods open their own write.
"""
import logging
import re
from collections import defaultdict
from typing import Iterable, Optional

from api.services.crm_repository import CrmRepository
from api.services.evidence import EvidenceItem, EvidenceSignal, LinkTarget, SignalKind
from api.services.evidence_signals import signals_from_artifact
from api.services.insight import Insight, InsightKind, InsightTarget, TargetType
from api.services.note_analysis import NoteAnalysisArtifact
from api.services.store_access import StoreAccess
from api.utils.datetime_utils import utc_now
from config.signal_rules import (
    ANALYSIS_OPPORTUNITY_CONFIDENCE,
    INSIGHT_MESSAGES,
    SIGNAL_TO_INSIGHT_KIND,
)

logger = logging.getLogger(__name__)


def format_message(kind: str, target_name: Optional[str] = None) -> str:
    """Render the message template for an insight kind."""
    suffix = f" ({target_name})" if target_name else ""
    return INSIGHT_MESSAGES[kind].format(suffix=suffix)


def product_slug(product_type: str) -> str:
    """Stable product id from a product type: "Life Insurance" -> "life_insurance"."""
    return re.sub(r"[^a-z0-9]+", "_", product_type.lower()).strip("_")


def insight_kind_for(signal: EvidenceSignal) -> Optional[str]:
    """Map a signal to the insight kind it produces."""
    kind = SIGNAL_TO_INSIGHT_KIND.get(signal.kind)
    if kind == InsightKind.COMPLIANCE_WARNING.value and "consent" in signal.reason.lower():
        return InsightKind.CONSENT_MISSING.value
    return kind


class InsightGenerator:
    """Creates, merges and deduplicates insights."""

    def __init__(self, store: StoreAccess):
        """
        Initialize the generator.

        Args:
            store: Serialized store access
        """
        self.store = store

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    @staticmethod
    def _target_name(repo: CrmRepository, target: InsightTarget) -> Optional[str]:
        if target.type == TargetType.PERSON.value:
            person = repo.get_person(target.id)
            return person.display_name if person else None
        return target.id

    def _evidence_targets(
        self, repo: CrmRepository, item: EvidenceItem
    ) -> list[tuple[InsightTarget, Optional[str]]]:
        """Targets for insights about one evidence item, with display names."""
        targets = []
        for person_id in item.linked_people:
            target = InsightTarget.person(person_id)
            targets.append((target, self._target_name(repo, target)))
        for context_id in item.linked_contexts:
            targets.append((InsightTarget.context(context_id), context_id))

        if not targets:
            pending = [
                link for link in item.proposed_links
                if link.is_pending and link.target == LinkTarget.PERSON.value
            ]
            if pending:
                best = max(pending, key=lambda link: link.confidence)
                targets.append((InsightTarget.person(best.target_id), best.display_name))

        return targets

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_in(self, repo: CrmRepository, candidate: Insight) -> Insight:
        """
        Insert a candidate insight or merge it into its existing twin.

        Args:
            repo: Open repository
            candidate: Insight to record

        Returns:
            The stored insight (new or merged)
        """
        existing = repo.query_insights(
            candidate.target, candidate.kind, candidate.message, include_dismissed=False
        )
        if existing:
            keep = existing[0]
            merged = keep.based_on_evidence | candidate.based_on_evidence
            if merged != keep.based_on_evidence or candidate.confidence > keep.confidence:
                keep.based_on_evidence = merged
                keep.confidence = max(keep.confidence, candidate.confidence)
                repo.update_insight(keep)
            return keep

        repo.insert_insight(candidate)
        logger.debug(f"New insight {candidate.kind} for {candidate.target.type}:{candidate.target.id}")
        return candidate

    # ------------------------------------------------------------------
    # From evidence
    # ------------------------------------------------------------------

    def from_evidence_in(self, repo: CrmRepository, item: EvidenceItem) -> list[Insight]:
        """Generate insights for an evidence item inside an open write."""
        targets = self._evidence_targets(repo, item)
        if not targets:
            return []

        results = []
        for signal in item.signals:
            kind = insight_kind_for(signal)
            if kind is None:
                continue
            for target, name in targets:
                candidate = Insight(
                    target=target,
                    kind=kind,
                    message=format_message(kind, name),
                    confidence=signal.confidence,
                    based_on_evidence={item.id},
                )
                results.append(self.record_in(repo, candidate))
        return results

    def from_evidence(self, item: EvidenceItem) -> list[Insight]:
        """
        Generate insights from an evidence item's signals.

        Args:
            item: Evidence with signals and links populated

        Returns:
            Stored insights (new or merged)
        """
        return self.store.write(lambda repo: self.from_evidence_in(repo, item), "insights_from_evidence")

    # ------------------------------------------------------------------
    # From note analysis
    # ------------------------------------------------------------------

    def from_note_analysis_in(
        self,
        repo: CrmRepository,
        artifact: NoteAnalysisArtifact,
        related_person_ids: Iterable[str],
        evidence_ids: Iterable[str] = (),
    ) -> list[Insight]:
        """Generate insights for a note analysis inside an open write."""
        evidence = set(evidence_ids)
        signals = signals_from_artifact(artifact)
        person_ids = list(dict.fromkeys(related_person_ids))
        results = []

        for person_id in person_ids:
            target = InsightTarget.person(person_id)
            name = self._target_name(repo, target)
            for signal in signals:
                kind = insight_kind_for(signal)
                if kind is None:
                    continue
                results.append(self.record_in(repo, Insight(
                    target=target,
                    kind=kind,
                    message=format_message(kind, name),
                    confidence=signal.confidence,
                    based_on_evidence=set(evidence),
                )))

        if not person_ids:
            opportunity = next(
                (s for s in signals if s.kind == SignalKind.PRODUCT_OPPORTUNITY.value), None
            )
            confidence = opportunity.confidence if opportunity else ANALYSIS_OPPORTUNITY_CONFIDENCE
            for topic in artifact.topics:
                kind = InsightKind.OPPORTUNITY.value
                results.append(self.record_in(repo, Insight(
                    target=InsightTarget.product(product_slug(topic.product_type)),
                    kind=kind,
                    message=format_message(kind, topic.product_type),
                    confidence=confidence,
                    based_on_evidence=set(evidence),
                )))

        return results

    def from_note_analysis(
        self,
        artifact: NoteAnalysisArtifact,
        related_person_ids: Iterable[str],
        evidence_ids: Iterable[str] = (),
    ) -> list[Insight]:
        """
        Generate insights from a note analysis.

        Args:
            artifact: Output of either extractor
            related_person_ids: People the note is about
            evidence_ids: Evidence the note is stored as

        Returns:
            Stored insights (new or merged)
        """
        person_ids = list(related_person_ids)
        return self.store.write(
            lambda repo: self.from_note_analysis_in(repo, artifact, person_ids, evidence_ids),
            "insights_from_note",
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def deduplicate_in(self, repo: CrmRepository) -> int:
        """Merge duplicate insights inside an open write. Returns rows removed."""
        groups: dict[tuple, list[Insight]] = defaultdict(list)
        for insight in repo.list_insights(include_dismissed=True):
            groups[insight.dedup_key + (insight.is_dismissed,)].append(insight)

        removed = 0
        for members in groups.values():
            if len(members) < 2:
                continue
            members.sort(key=lambda i: i.created_at)
            keep, duplicates = members[0], members[1:]
            for dup in duplicates:
                keep.based_on_evidence |= dup.based_on_evidence
                keep.confidence = max(keep.confidence, dup.confidence)
                repo.delete_insight(dup.id)
                removed += 1
            repo.update_insight(keep)

        if removed:
            logger.info(f"Insight dedup removed {removed} duplicates")
        return removed

    def deduplicate(self) -> int:
        """
        Merge stored insights that share (target, kind, message).

        Keeps the earliest created, unions evidence into it and deletes the
        rest. Dismissed and active insights are grouped separately so a
        dismissal is never undone. Idempotent.

        Returns:
            Number of insights removed
        """
        return self.store.write(self.deduplicate_in, "deduplicate_insights")

    def dismiss(self, insight_id: str) -> Optional[Insight]:
        """Mark an insight dismissed. Returns None if not found."""
        def _dismiss(repo: CrmRepository) -> Optional[Insight]:
            insight = repo.get_insight(insight_id)
            if insight is None:
                return None
            if insight.dismissed_at is None:
                insight.dismissed_at = utc_now()
                repo.update_insight(insight)
            return insight

        return self.store.write(_dismiss, "dismiss_insight")
