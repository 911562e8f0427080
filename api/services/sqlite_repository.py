"""
SQLite-backed CRM repository.

Stores evidence, people and insights in crm.db. List-valued fields
(signals, participant hints, proposals, links, evidence sets) are stored
as JSON columns. A partial UNIQUE index on evidence.external_uid enforces
one evidence item per external UID.

Busy/locked databases and unique-key races are reported as
StoreConflictError so StoreAccess can retry the write once.
"""
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from api.services.crm_repository import CrmRepository, StoreConflictError
from api.services.evidence import (
    EvidenceItem,
    EvidenceSignal,
    ParticipantHint,
    ProposedLink,
)
from api.services.insight import Insight, InsightTarget
from api.services.person import Person
from api.utils.datetime_utils import parse_iso, utc_now
from api.utils.db_paths import get_crm_db_path

logger = logging.getLogger(__name__)

EVIDENCE_COLUMNS = (
    "id, external_uid, source, triage_state, occurred_at, title, snippet, body_text, "
    "signals, participant_hints, proposed_links, linked_people, linked_contexts, "
    "created_at, updated_at"
)
PEOPLE_COLUMNS = (
    "id, display_name, email, email_aliases, external_contact_ref, role_badges, created_at"
)
INSIGHT_COLUMNS = (
    "id, target_type, target_id, kind, message, confidence, based_on_evidence, "
    "created_at, dismissed_at"
)


def _is_conflict(error: sqlite3.Error) -> bool:
    """True for errors caused by concurrent access rather than bad data."""
    text = str(error).lower()
    if isinstance(error, sqlite3.IntegrityError):
        return "unique" in text
    if isinstance(error, sqlite3.OperationalError):
        return "locked" in text or "busy" in text
    return False


class SqliteCrmRepository(CrmRepository):
    """
    SQLite-backed storage for the CRM.

    Each call opens its own connection unless a transaction() is active on
    the current thread, in which case all calls share it and commit together.
    """

    def __init__(self, db_path: Optional[str] = None, timeout: float = 5.0):
        """
        Initialize the repository.

        Args:
            db_path: Path to SQLite database (default from settings)
            timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = db_path or get_crm_db_path()
        self.timeout = timeout
        self._local = threading.local()
        self._init_db()

    def _init_db(self):
        """Create database tables if they don't exist."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS evidence (
                    id TEXT PRIMARY KEY,
                    external_uid TEXT,
                    source TEXT NOT NULL,
                    triage_state TEXT NOT NULL,
                    occurred_at TIMESTAMP NOT NULL,
                    title TEXT,
                    snippet TEXT,
                    body_text TEXT,
                    signals TEXT,
                    participant_hints TEXT,
                    proposed_links TEXT,
                    linked_people TEXT,
                    linked_contexts TEXT,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)

            # One evidence item per external UID (manual items have none)
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_evidence_external_uid
                ON evidence(external_uid) WHERE external_uid IS NOT NULL
            """)

            # Index for review queue queries
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_evidence_source_triage
                ON evidence(source, triage_state)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_evidence_occurred_at
                ON evidence(occurred_at DESC)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS people (
                    id TEXT PRIMARY KEY,
                    display_name TEXT NOT NULL,
                    email TEXT,
                    email_aliases TEXT,
                    external_contact_ref TEXT,
                    role_badges TEXT,
                    created_at TIMESTAMP NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_people_email
                ON people(email)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS insights (
                    id TEXT PRIMARY KEY,
                    target_type TEXT NOT NULL,
                    target_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    message TEXT NOT NULL,
                    confidence REAL DEFAULT 0.5,
                    based_on_evidence TEXT,
                    created_at TIMESTAMP NOT NULL,
                    dismissed_at TIMESTAMP
                )
            """)

            # Index for dedup lookups
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_insights_dedup
                ON insights(target_type, target_id, kind, message)
            """)

            conn.commit()
            logger.info(f"Initialized CRM database at {self.db_path}")
        finally:
            conn.close()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed calls in one transaction on this thread."""
        if getattr(self._local, "conn", None) is not None:
            yield
            return

        conn = self._get_connection()
        self._local.conn = conn
        try:
            yield
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            if _is_conflict(e):
                raise StoreConflictError(str(e)) from e
            raise
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._local.conn = None
            conn.close()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield the active transaction connection or a short-lived one."""
        shared = getattr(self._local, "conn", None)
        try:
            if shared is not None:
                yield shared
                return
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            if _is_conflict(e):
                raise StoreConflictError(str(e)) from e
            raise

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _evidence_from_row(row: sqlite3.Row) -> EvidenceItem:
        """Create EvidenceItem from SQLite row."""
        return EvidenceItem(
            id=row["id"],
            external_uid=row["external_uid"],
            source=row["source"],
            triage_state=row["triage_state"],
            occurred_at=parse_iso(row["occurred_at"]),
            title=row["title"] or "",
            snippet=row["snippet"] or "",
            body_text=row["body_text"],
            signals=[EvidenceSignal.from_dict(s) for s in json.loads(row["signals"] or "[]")],
            participant_hints=[
                ParticipantHint.from_dict(h) for h in json.loads(row["participant_hints"] or "[]")
            ],
            proposed_links=[
                ProposedLink.from_dict(p) for p in json.loads(row["proposed_links"] or "[]")
            ],
            linked_people=json.loads(row["linked_people"] or "[]"),
            linked_contexts=json.loads(row["linked_contexts"] or "[]"),
            created_at=parse_iso(row["created_at"]) or utc_now(),
            updated_at=parse_iso(row["updated_at"]) or utc_now(),
        )

    @staticmethod
    def _person_from_row(row: sqlite3.Row) -> Person:
        """Create Person from SQLite row."""
        return Person(
            id=row["id"],
            display_name=row["display_name"],
            email=row["email"],
            email_aliases=json.loads(row["email_aliases"] or "[]"),
            external_contact_ref=row["external_contact_ref"],
            role_badges=json.loads(row["role_badges"] or "[]"),
            created_at=parse_iso(row["created_at"]) or utc_now(),
        )

    @staticmethod
    def _insight_from_row(row: sqlite3.Row) -> Insight:
        """Create Insight from SQLite row."""
        return Insight(
            id=row["id"],
            target=InsightTarget(row["target_type"], row["target_id"]),
            kind=row["kind"],
            message=row["message"],
            confidence=row["confidence"] if row["confidence"] is not None else 0.5,
            based_on_evidence=set(json.loads(row["based_on_evidence"] or "[]")),
            created_at=parse_iso(row["created_at"]) or utc_now(),
            dismissed_at=parse_iso(row["dismissed_at"]),
        )

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    def get_evidence(self, evidence_id: str) -> Optional[EvidenceItem]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {EVIDENCE_COLUMNS} FROM evidence WHERE id = ?", (evidence_id,)
            ).fetchone()
        return self._evidence_from_row(row) if row else None

    def get_evidence_by_uid(self, external_uid: str) -> Optional[EvidenceItem]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {EVIDENCE_COLUMNS} FROM evidence WHERE external_uid = ?", (external_uid,)
            ).fetchone()
        return self._evidence_from_row(row) if row else None

    def upsert_evidence(self, item: EvidenceItem) -> EvidenceItem:
        with self._connect() as conn:
            conn.execute(f"""
                INSERT INTO evidence ({EVIDENCE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    external_uid = excluded.external_uid,
                    source = excluded.source,
                    triage_state = excluded.triage_state,
                    occurred_at = excluded.occurred_at,
                    title = excluded.title,
                    snippet = excluded.snippet,
                    body_text = excluded.body_text,
                    signals = excluded.signals,
                    participant_hints = excluded.participant_hints,
                    proposed_links = excluded.proposed_links,
                    linked_people = excluded.linked_people,
                    linked_contexts = excluded.linked_contexts,
                    updated_at = excluded.updated_at
            """, (
                item.id,
                item.external_uid,
                item.source,
                item.triage_state,
                item.occurred_at.isoformat(),
                item.title,
                item.snippet,
                item.body_text,
                json.dumps([s.to_dict() for s in item.signals]),
                json.dumps([h.to_dict() for h in item.participant_hints]),
                json.dumps([p.to_dict() for p in item.proposed_links]),
                json.dumps(item.linked_people),
                json.dumps(item.linked_contexts),
                item.created_at.isoformat(),
                item.updated_at.isoformat(),
            ))
        return item

    def list_evidence(
        self,
        source: Optional[str] = None,
        triage_state: Optional[str] = None,
    ) -> list[EvidenceItem]:
        query = f"SELECT {EVIDENCE_COLUMNS} FROM evidence WHERE 1=1"
        params: list = []
        if source is not None:
            query += " AND source = ?"
            params.append(source)
        if triage_state is not None:
            query += " AND triage_state = ?"
            params.append(triage_state)
        query += " ORDER BY occurred_at DESC"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._evidence_from_row(row) for row in rows]

    def _remove_evidence(self, evidence_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM evidence WHERE id = ?", (evidence_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # People
    # ------------------------------------------------------------------

    def get_person(self, person_id: str) -> Optional[Person]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {PEOPLE_COLUMNS} FROM people WHERE id = ?", (person_id,)
            ).fetchone()
        return self._person_from_row(row) if row else None

    def save_person(self, person: Person) -> Person:
        with self._connect() as conn:
            conn.execute(f"""
                INSERT OR REPLACE INTO people ({PEOPLE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                person.id,
                person.display_name,
                person.email,
                json.dumps(person.email_aliases),
                person.external_contact_ref,
                json.dumps(person.role_badges),
                person.created_at.isoformat(),
            ))
        return person

    def list_people(self) -> list[Person]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {PEOPLE_COLUMNS} FROM people ORDER BY display_name COLLATE NOCASE"
            ).fetchall()
        return [self._person_from_row(row) for row in rows]

    def _remove_person(self, person_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM people WHERE id = ?", (person_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    def get_insight(self, insight_id: str) -> Optional[Insight]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {INSIGHT_COLUMNS} FROM insights WHERE id = ?", (insight_id,)
            ).fetchone()
        return self._insight_from_row(row) if row else None

    def insert_insight(self, insight: Insight) -> Insight:
        with self._connect() as conn:
            conn.execute(f"""
                INSERT INTO insights ({INSIGHT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, self._insight_params(insight))
        return insight

    def update_insight(self, insight: Insight) -> Insight:
        with self._connect() as conn:
            conn.execute(f"""
                INSERT OR REPLACE INTO insights ({INSIGHT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, self._insight_params(insight))
        return insight

    @staticmethod
    def _insight_params(insight: Insight) -> tuple:
        return (
            insight.id,
            insight.target.type,
            insight.target.id,
            insight.kind,
            insight.message,
            insight.confidence,
            json.dumps(sorted(insight.based_on_evidence)),
            insight.created_at.isoformat(),
            insight.dismissed_at.isoformat() if insight.dismissed_at else None,
        )

    def delete_insight(self, insight_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM insights WHERE id = ?", (insight_id,))
            return cursor.rowcount > 0

    def list_insights(self, include_dismissed: bool = True) -> list[Insight]:
        query = f"SELECT {INSIGHT_COLUMNS} FROM insights"
        if not include_dismissed:
            query += " WHERE dismissed_at IS NULL"
        query += " ORDER BY created_at ASC"
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        return [self._insight_from_row(row) for row in rows]

    def query_insights(
        self,
        target: InsightTarget,
        kind: str,
        message: str,
        include_dismissed: bool = False,
    ) -> list[Insight]:
        query = f"""
            SELECT {INSIGHT_COLUMNS} FROM insights
            WHERE target_type = ? AND target_id = ? AND kind = ? AND message = ?
        """
        if not include_dismissed:
            query += " AND dismissed_at IS NULL"
        query += " ORDER BY created_at ASC"
        with self._connect() as conn:
            rows = conn.execute(query, (target.type, target.id, kind, message)).fetchall()
        return [self._insight_from_row(row) for row in rows]
