"""
Heuristic Note Analyzer.

Deterministic pattern-based extraction used when no semantic model is
available. Produces the same NoteAnalysisArtifact as the semantic
extractor so downstream code never branches on which one ran.

Pipeline:
1. Summary - first sentence, or the first 140 characters
2. Affect - positive vs negative word counts
3. Facts/implications - keyword triggers
4. People - three ordered regex rules, deduplicated by name
5. Topics - life insurance and retirement with amount, beneficiary, sentiment
6. Actions - always empty (only a semantic extractor fills these)

Pure and stateless: safe to call concurrently. Never raises; a step that
fails contributes nothing.
"""
import logging
from typing import Callable, Optional, TypeVar

from api.services.note_analysis import (
    Affect,
    ExtractorKind,
    FinancialTopic,
    NoteAnalysisArtifact,
    NoteExtractor,
    PersonMention,
)
from config.note_patterns import (
    AMOUNT_PATTERN,
    AMOUNT_WINDOW_CHARS,
    BENEFICIARY_PATTERN,
    CONCERN_PHRASES,
    FACT_FOLLOW_UP,
    FOLLOW_UP_PHRASES,
    IMPLICATION_OPPORTUNITY,
    IMPLICATION_RISK,
    NEGATIVE_WORDS,
    OPPORTUNITY_PHRASES,
    PEOPLE_PATTERNS,
    POSITIVE_WORDS,
    SENTIMENT_RULES,
    SUMMARY_FALLBACK_CHARS,
    TOPIC_RULES,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _safe_step(name: str, fn: Callable[[], T], fallback: T) -> T:
    """Run one pipeline step, logging and falling back if it fails."""
    try:
        return fn()
    except Exception as e:
        logger.warning(f"Heuristic {name} extraction failed: {e}")
        return fallback


def extract_summary(text: str) -> str:
    """First sentence, or the first 140 characters when there is no period."""
    if "." in text:
        for sentence in text.split("."):
            if sentence.strip():
                return sentence.strip()
    return text[:SUMMARY_FALLBACK_CHARS].strip()


def determine_affect(text: str) -> str:
    """Compare how many positive vs negative words appear in the text."""
    lower = text.lower()
    positive = sum(1 for word in POSITIVE_WORDS if word in lower)
    negative = sum(1 for word in NEGATIVE_WORDS if word in lower)
    if positive > negative:
        return Affect.POSITIVE.value
    if negative > positive:
        return Affect.NEGATIVE.value
    return Affect.NEUTRAL.value


def extract_facts_and_implications(text: str) -> tuple[list[str], list[str]]:
    """Keyword-triggered facts and implications over the whole note."""
    lower = text.lower()
    facts = []
    implications = []

    if any(phrase in lower for phrase in FOLLOW_UP_PHRASES):
        facts.append(FACT_FOLLOW_UP)
    if any(phrase in lower for phrase in OPPORTUNITY_PHRASES):
        implications.append(IMPLICATION_OPPORTUNITY)
    if any(phrase in lower for phrase in CONCERN_PHRASES):
        implications.append(IMPLICATION_RISK)

    return facts, implications


def extract_people(text: str) -> list[PersonMention]:
    """
    Apply the people rules in order; the first rule to find a name wins.

    Args:
        text: Raw note text (case preserved)

    Returns:
        Mentions deduplicated case-insensitively by name
    """
    people: list[PersonMention] = []
    seen: set[str] = set()

    for pattern, indicates_new in PEOPLE_PATTERNS:
        for match in pattern.finditer(text):
            name = match.group(match.lastindex)
            relationship = match.group(1).lower() if match.lastindex >= 2 else None
            key = name.lower()
            if key in seen:
                continue
            seen.add(key)
            people.append(PersonMention(
                name=name,
                relationship=relationship,
                aliases=[],
                is_new_person=indicates_new,
            ))

    return people


def extract_amount(text: str, keyword: str) -> Optional[str]:
    """
    Find the dollar amount closest to the first occurrence of a keyword.

    Only amounts within AMOUNT_WINDOW_CHARS of the keyword are considered.

    Args:
        text: Raw note text
        keyword: Lower-case anchor keyword

    Returns:
        The amount as written (e.g. "$50,000"), or None
    """
    start = text.lower().find(keyword)
    if start < 0:
        return None
    end = start + len(keyword)

    window_start = max(0, start - AMOUNT_WINDOW_CHARS)
    window = text[window_start:end + AMOUNT_WINDOW_CHARS]

    best = None
    best_distance = None
    for match in AMOUNT_PATTERN.finditer(window):
        m_start, m_end = match.start() + window_start, match.end() + window_start
        if m_end <= start:
            distance = start - m_end
        elif m_start >= end:
            distance = m_start - end
        else:
            distance = 0
        if best_distance is None or distance < best_distance:
            best, best_distance = match.group(0), distance
    return best


def extract_beneficiary(text: str) -> Optional[str]:
    """First Capitalized name after "for" (optionally "for my/his/her")."""
    match = BENEFICIARY_PATTERN.search(text)
    return match.group(1) if match else None


def determine_sentiment(text: str, anchor: str) -> Optional[str]:
    """Classify the wording that precedes the product keyword."""
    context = text.lower().split(anchor, 1)[0]
    for sentiment, phrases in SENTIMENT_RULES:
        if any(phrase in context for phrase in phrases):
            return sentiment
    return None


def extract_topics(text: str) -> list[FinancialTopic]:
    """Detect life insurance and retirement topics."""
    lower = text.lower()
    topics = []

    for product_type, rule in TOPIC_RULES.items():
        if not any(trigger in lower for trigger in rule["triggers"]):
            continue

        amount = None
        for anchor in rule["amount_anchors"]:
            amount = extract_amount(text, anchor)
            if amount:
                break

        topics.append(FinancialTopic(
            product_type=product_type,
            amount=amount,
            beneficiary=extract_beneficiary(text) if rule["has_beneficiary"] else None,
            sentiment=determine_sentiment(text, rule["sentiment_anchor"]),
        ))

    return topics


class HeuristicNoteAnalyzer(NoteExtractor):
    """Pattern-matching note analyzer; always available."""

    kind = ExtractorKind.HEURISTIC.value

    def analyze(self, text: str) -> NoteAnalysisArtifact:
        """
        Analyze note text with deterministic rules.

        Args:
            text: Raw note text

        Returns:
            NoteAnalysisArtifact with extractor_used = "heuristic"
        """
        text = text if isinstance(text, str) else ""

        facts, implications = _safe_step(
            "facts", lambda: extract_facts_and_implications(text), ([], [])
        )

        artifact = NoteAnalysisArtifact(
            summary=_safe_step("summary", lambda: extract_summary(text), ""),
            facts=facts,
            affect=_safe_step("affect", lambda: determine_affect(text), Affect.NEUTRAL.value),
            implications=implications,
            people=_safe_step("people", lambda: extract_people(text), []),
            topics=_safe_step("topics", lambda: extract_topics(text), []),
            actions=[],
            extractor_used=ExtractorKind.HEURISTIC.value,
        )

        logger.debug(
            f"Heuristic analysis: {len(artifact.facts)} facts, {len(artifact.implications)} implications, "
            f"{len(artifact.people)} people, {len(artifact.topics)} topics"
        )
        return artifact
