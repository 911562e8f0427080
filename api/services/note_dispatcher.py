"""
Note analyzer selection.

Uses the semantic extractor when one is configured and its availability
probe succeeds; otherwise, or if it fails mid-analysis, the heuristic
analyzer. Both return the same artifact shape.
"""
import logging
from typing import Optional

from api.services.heuristic_note_analyzer import HeuristicNoteAnalyzer
from api.services.note_analysis import NoteAnalysisArtifact, NoteExtractor
from api.services.resilience import ServiceUnavailableError

logger = logging.getLogger(__name__)


class NoteAnalyzerDispatcher:
    """Picks an extractor per call based on a runtime availability probe."""

    def __init__(
        self,
        semantic: Optional[NoteExtractor] = None,
        heuristic: Optional[NoteExtractor] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            semantic: Optional semantic extractor
            heuristic: Fallback analyzer (default: HeuristicNoteAnalyzer)
        """
        self.semantic = semantic
        self.heuristic = heuristic or HeuristicNoteAnalyzer()

    def select(self) -> NoteExtractor:
        """Return the extractor that should handle the next note."""
        if self.semantic is not None and self.semantic.is_available():
            return self.semantic
        return self.heuristic

    def analyze(self, text: str) -> NoteAnalysisArtifact:
        """
        Analyze a note with the best available extractor.

        Args:
            text: Raw note text

        Returns:
            NoteAnalysisArtifact from whichever extractor ran
        """
        extractor = self.select()
        if extractor is self.heuristic:
            return self.heuristic.analyze(text)

        try:
            return extractor.analyze(text)
        except ServiceUnavailableError as e:
            logger.warning(f"Semantic extraction failed, falling back to heuristics: {e}")
            return self.heuristic.analyze(text)


# Singleton instance
_dispatcher: Optional[NoteAnalyzerDispatcher] = None


def get_note_dispatcher() -> NoteAnalyzerDispatcher:
    """Get or create the dispatcher configured from settings."""
    global _dispatcher
    if _dispatcher is None:
        from config.settings import settings
        semantic = None
        if settings.semantic_extractor_enabled:
            from api.services.semantic_extractor import OllamaNoteExtractor
            semantic = OllamaNoteExtractor()
        _dispatcher = NoteAnalyzerDispatcher(semantic=semantic)
    return _dispatcher


def reset_note_dispatcher() -> None:
    """Reset the dispatcher singleton (tests)."""
    global _dispatcher
    _dispatcher = None
