"""
Advisor CRM Services Package.

This package contains all business logic and data access services.
Use this module to import commonly-used services.

Example:
    from api.services import (
        get_store_access,
        EvidenceUpsertEngine,
        InsightGenerator,
    )

Key service modules:
- evidence / person / insight: the data model
- crm_repository / sqlite_repository / store_access: storage and serialized access
- duplicate_matcher: fuzzy duplicate-person scoring
- evidence_upsert: idempotent upsert/prune of source evidence
- heuristic_note_analyzer / semantic_extractor / note_dispatcher: note analysis
- insight_generator: deduplicated insights
- import_coordinator: single-flight per-source import cycles
"""

# ============================================================================
# Data Model
# ============================================================================

from api.services.evidence import (
    EvidenceItem,
    EvidenceSignal,
    EvidenceSource,
    ParticipantHint,
    ProposedLink,
    TriageState,
)

from api.services.person import (
    DuplicateCandidate,
    Person,
)

from api.services.insight import (
    Insight,
    InsightKind,
    InsightTarget,
)

# ============================================================================
# Storage
# ============================================================================

from api.services.crm_repository import (
    CrmRepository,
    InMemoryCrmRepository,
    StoreConflictError,
)

from api.services.sqlite_repository import SqliteCrmRepository

from api.services.store_access import (
    StoreAccess,
    StoreWriteError,
    get_store_access,
)

# ============================================================================
# Matching & Ingestion
# ============================================================================

from api.services.duplicate_matcher import (
    DuplicateMatch,
    DuplicatePersonMatcher,
    get_duplicate_matcher,
)

from api.services.evidence_upsert import (
    EvidenceUpsertEngine,
    PruneResult,
    UpsertResult,
)

from api.services.source_adapters import (
    ContactsCsvAdapter,
    SourceAdapter,
    SourceFetchError,
    SourceRecord,
    StaticSourceAdapter,
)

from api.services.import_coordinator import (
    ImportCoordinator,
    ImportResult,
    ImportStatus,
    KickReason,
)

# ============================================================================
# Notes & Insights
# ============================================================================

from api.services.note_analysis import NoteAnalysisArtifact
from api.services.heuristic_note_analyzer import HeuristicNoteAnalyzer
from api.services.note_dispatcher import NoteAnalyzerDispatcher, get_note_dispatcher
from api.services.note_processor import NoteProcessor
from api.services.insight_generator import InsightGenerator

# ============================================================================
# User-facing Services
# ============================================================================

from api.services.evidence_triage import EvidenceTriageService
from api.services.people_service import DuplicatePersonError, PeopleService


__all__ = [
    # Data model
    "EvidenceItem",
    "EvidenceSignal",
    "EvidenceSource",
    "ParticipantHint",
    "ProposedLink",
    "TriageState",
    "DuplicateCandidate",
    "Person",
    "Insight",
    "InsightKind",
    "InsightTarget",
    # Storage
    "CrmRepository",
    "InMemoryCrmRepository",
    "StoreConflictError",
    "SqliteCrmRepository",
    "StoreAccess",
    "StoreWriteError",
    "get_store_access",
    # Matching & ingestion
    "DuplicateMatch",
    "DuplicatePersonMatcher",
    "get_duplicate_matcher",
    "EvidenceUpsertEngine",
    "PruneResult",
    "UpsertResult",
    "ContactsCsvAdapter",
    "SourceAdapter",
    "SourceFetchError",
    "SourceRecord",
    "StaticSourceAdapter",
    "ImportCoordinator",
    "ImportResult",
    "ImportStatus",
    "KickReason",
    # Notes & insights
    "NoteAnalysisArtifact",
    "HeuristicNoteAnalyzer",
    "NoteAnalyzerDispatcher",
    "get_note_dispatcher",
    "NoteProcessor",
    "InsightGenerator",
    # Services
    "EvidenceTriageService",
    "DuplicatePersonError",
    "PeopleService",
]
