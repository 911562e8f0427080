"""
Semantic note extractor backed by a local LLM (Ollama).

Asks the model for people, financial topics and action items as JSON,
validates the payload with pydantic, and maps it onto the same
NoteAnalysisArtifact the heuristic analyzer produces.

Raises ServiceUnavailableError when the model cannot be reached or returns
unusable output; NoteAnalyzerDispatcher then falls back to the heuristic
analyzer.
"""
import logging
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from api.services.heuristic_note_analyzer import determine_affect, extract_summary
from api.services.note_analysis import (
    ExtractorKind,
    FinancialTopic,
    NoteAnalysisArtifact,
    NoteExtractor,
    PersonMention,
)
from api.services.ollama_client import OllamaClient, OllamaError
from api.services.resilience import ServiceUnavailableError, graceful_degradation
from config.note_patterns import OPPORTUNITY_SENTIMENT_WORDS

logger = logging.getLogger(__name__)

FACT_ACTION_WORDS = ("follow", "schedule", "call")

EXTRACTION_PROMPT = """You are an assistant for a financial advisor analyzing client meeting notes.

Extract from the note below:
1. Every person mentioned, with their relationship to the client and any nicknames.
   Mark newly arrived people (newborns, new spouses, new dependents) with "is_new_person": true.
2. Every financial product discussed (life insurance, retirement, annuity, 401k, IRA, ...),
   with the amount, who it is for, and the client's sentiment (e.g. "wants", "considering").
3. Action items and follow-ups.

Respond with JSON only, in this shape:
{{
  "people": [{{"name": "", "relationship": null, "aliases": [], "is_new_person": false}}],
  "topics": [{{"product_type": "", "amount": null, "beneficiary": null, "sentiment": null}}],
  "actions": [""]
}}

Note:
\"\"\"{text}\"\"\"
"""


class SemanticPerson(BaseModel):
    name: str
    relationship: Optional[str] = None
    aliases: list[str] = Field(default_factory=list)
    is_new_person: bool = False


class SemanticTopic(BaseModel):
    product_type: str
    amount: Optional[str] = None
    beneficiary: Optional[str] = None
    sentiment: Optional[str] = None


class SemanticPayload(BaseModel):
    """Shape the model is asked to return."""
    people: list[SemanticPerson] = Field(default_factory=list)
    topics: list[SemanticTopic] = Field(default_factory=list)
    actions: list[str] = Field(default_factory=list)


def build_artifact(text: str, payload: SemanticPayload) -> NoteAnalysisArtifact:
    """
    Turn a validated model payload into a NoteAnalysisArtifact.

    Args:
        text: The original note text
        payload: Validated model output

    Returns:
        Artifact with extractor_used = "semantic"
    """
    people = [
        PersonMention(
            name=p.name.strip(),
            relationship=p.relationship,
            aliases=[a for a in p.aliases if a],
            is_new_person=p.is_new_person,
        )
        for p in payload.people if p.name.strip()
    ]
    topics = [
        FinancialTopic(
            product_type=t.product_type,
            amount=t.amount,
            beneficiary=t.beneficiary,
            sentiment=t.sentiment,
        )
        for t in payload.topics if t.product_type.strip()
    ]
    actions = [a.strip() for a in payload.actions if a and a.strip()]

    facts = []
    implications = []
    for action in actions:
        if any(word in action.lower() for word in FACT_ACTION_WORDS):
            facts.append(action)
        else:
            implications.append(action)

    for person in people:
        if person.is_new_person:
            implications.append(f"New {person.relationship or 'person'} identified: {person.name}")

    for topic in topics:
        sentiment = (topic.sentiment or "").lower()
        if any(word in sentiment for word in OPPORTUNITY_SENTIMENT_WORDS):
            suffix = f" for {topic.beneficiary}" if topic.beneficiary else ""
            implications.append(f"Potential opportunity: {topic.product_type}{suffix}")

    return NoteAnalysisArtifact(
        summary=actions[0] if actions else extract_summary(text),
        facts=facts,
        affect=determine_affect(text),
        implications=implications,
        people=people,
        topics=topics,
        actions=actions,
        extractor_used=ExtractorKind.SEMANTIC.value,
    )


class OllamaNoteExtractor(NoteExtractor):
    """Semantic extractor using a local Ollama model."""

    kind = ExtractorKind.SEMANTIC.value

    def __init__(self, client: Optional[OllamaClient] = None):
        """
        Initialize the extractor.

        Args:
            client: Ollama client (default from settings)
        """
        self.client = client or OllamaClient()

    @graceful_degradation("ollama", fallback_value=False)
    def is_available(self) -> bool:
        """Probe the Ollama server."""
        return self.client.is_available()

    def analyze(self, text: str) -> NoteAnalysisArtifact:
        """
        Analyze a note with the local LLM.

        Raises:
            ServiceUnavailableError: If the model fails or returns invalid JSON
        """
        try:
            data = self.client.generate_json(EXTRACTION_PROMPT.format(text=text))
            payload = SemanticPayload.model_validate(data)
        except (OllamaError, ValidationError) as e:
            raise ServiceUnavailableError("ollama", str(e)) from e

        artifact = build_artifact(text, payload)
        logger.info(
            f"Semantic analysis: {len(artifact.people)} people, {len(artifact.topics)} topics, "
            f"{len(artifact.actions)} actions"
        )
        return artifact
