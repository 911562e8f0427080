"""
Deterministic signal derivation for evidence.

Signals are recomputed from scratch on every upsert, so a tag whose
keyword disappeared from the source record cannot linger.

Two producers:
- derive_signals(): keyword and linkage rules over an evidence item
- signals_from_artifact(): follow-up/opportunity/risk cues from a note analysis
"""
import logging
from datetime import datetime
from typing import Optional

from api.services.evidence import EvidenceItem, EvidenceSignal, SignalKind
from api.services.note_analysis import NoteAnalysisArtifact
from api.utils.datetime_utils import make_aware, utc_now
from config.note_patterns import EXPLICIT_PRODUCT_WORDS
from config.signal_rules import (
    ANALYSIS_EXPLICIT_OPPORTUNITY_CONFIDENCE,
    ANALYSIS_FOLLOW_UP_CONFIDENCE,
    ANALYSIS_OPPORTUNITY_CONFIDENCE,
    ANALYSIS_REASON_PREFIX,
    ANALYSIS_RISK_CONFIDENCE,
    KEYWORD_CONFIDENCE_STEPS,
    MAX_SIGNAL_CONFIDENCE,
    RECENCY_BONUS,
    RECENT_DAYS,
    SIGNAL_KEYWORDS,
    UNLINKED_CONFIDENCE_STEPS,
    UNLINKED_DEFAULT_CONFIDENCE,
    UPCOMING_COMPLIANCE_BONUS,
)

logger = logging.getLogger(__name__)


def _days_from_now(occurred_at: datetime, now: datetime) -> float:
    """Signed distance in days; positive means in the future."""
    return (make_aware(occurred_at) - now).total_seconds() / 86400.0


def _unlinked_confidence(distance_days: float) -> float:
    for max_days, confidence in UNLINKED_CONFIDENCE_STEPS:
        if abs(distance_days) <= max_days:
            return confidence
    return UNLINKED_DEFAULT_CONFIDENCE


def _keyword_confidence(kind: str, hits: int, distance_days: float) -> float:
    confidence = KEYWORD_CONFIDENCE_STEPS[min(hits, len(KEYWORD_CONFIDENCE_STEPS)) - 1]
    if abs(distance_days) <= RECENT_DAYS:
        confidence += RECENCY_BONUS
    if kind == SignalKind.COMPLIANCE_RISK.value and 0 <= distance_days <= RECENT_DAYS:
        confidence += UPCOMING_COMPLIANCE_BONUS
    return min(confidence, MAX_SIGNAL_CONFIDENCE)


def collapse_signals(signals: list[EvidenceSignal]) -> list[EvidenceSignal]:
    """Keep one signal per kind (highest confidence), in first-seen order."""
    best: dict[str, EvidenceSignal] = {}
    for signal in signals:
        current = best.get(signal.kind)
        if current is None or signal.confidence > current.confidence:
            best[signal.kind] = signal
    order = list(dict.fromkeys(s.kind for s in signals))
    return [best[kind] for kind in order]


def derive_signals(item: EvidenceItem, now: Optional[datetime] = None) -> list[EvidenceSignal]:
    """
    Derive deterministic signals for an evidence item.

    Args:
        item: Evidence with title/snippet/body and links already set
        now: Reference time (default: current UTC time)

    Returns:
        Ordered signals, at most one per kind
    """
    now = make_aware(now) if now else utc_now()
    distance = _days_from_now(item.occurred_at, now)
    signals: list[EvidenceSignal] = []

    if not item.is_linked:
        signals.append(EvidenceSignal(
            kind=SignalKind.UNLINKED_EVIDENCE.value,
            confidence=_unlinked_confidence(distance),
            reason="No linked people or contexts",
        ))

    text = " ".join(part for part in (item.title, item.snippet, item.body_text) if part).lower()
    if text:
        for kind, keywords in SIGNAL_KEYWORDS.items():
            matched = [k for k in keywords if k in text]
            if not matched:
                continue
            signals.append(EvidenceSignal(
                kind=kind,
                confidence=_keyword_confidence(kind, len(matched), distance),
                reason=f"Matched keywords: {', '.join(matched)}",
            ))

    return collapse_signals(signals)


def signals_from_artifact(artifact: NoteAnalysisArtifact) -> list[EvidenceSignal]:
    """
    Map a note analysis to evidence signals.

    Heuristic artifacts only ever carry the bare "Potential opportunity"
    implication, so they land on the lower opportunity confidence.

    Args:
        artifact: Analysis output from either extractor

    Returns:
        Signals with reasons prefixed by ANALYSIS_REASON_PREFIX
    """
    signals = []
    facts = [f.lower() for f in artifact.facts]
    implications = [i.lower() for i in artifact.implications]

    if any("follow-up" in f or "follow up" in f for f in facts):
        signals.append(EvidenceSignal(
            kind=SignalKind.UNLINKED_EVIDENCE.value,
            confidence=ANALYSIS_FOLLOW_UP_CONFIDENCE,
            reason=f"{ANALYSIS_REASON_PREFIX} Follow-up requested",
        ))

    if any("opportunity" in i for i in implications):
        explicit = any(word in i for i in implications for word in EXPLICIT_PRODUCT_WORDS)
        signals.append(EvidenceSignal(
            kind=SignalKind.PRODUCT_OPPORTUNITY.value,
            confidence=(
                ANALYSIS_EXPLICIT_OPPORTUNITY_CONFIDENCE if explicit
                else ANALYSIS_OPPORTUNITY_CONFIDENCE
            ),
            reason=f"{ANALYSIS_REASON_PREFIX} Potential opportunity",
        ))

    if any("risk" in i or "concern" in i for i in implications):
        signals.append(EvidenceSignal(
            kind=SignalKind.COMPLIANCE_RISK.value,
            confidence=ANALYSIS_RISK_CONFIDENCE,
            reason=f"{ANALYSIS_REASON_PREFIX} Potential risk/concern",
        ))

    logger.debug(f"Mapped {artifact.extractor_used} analysis to {len(signals)} signals")
    return signals
