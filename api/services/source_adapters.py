"""
Source adapters - the boundary between external sources and the CRM.

An adapter turns a source (calendar, contacts directory) into SourceRecords
for a scope such as a calendar id or a contact group. Every record carries
an external UID of the form "<source>:<native id>" so sources that share
one store can never collide.

Adapters own their own timeouts and permission checks and report them as
SourceFetchError; the import coordinator treats any fetch failure as
"nothing changed, retry on the next kick".
"""
import csv
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from api.services.evidence import EvidenceSource, ParticipantHint
from api.utils.datetime_utils import make_aware

logger = logging.getLogger(__name__)

CSV_EMAIL_COLUMNS = ('E-mail Address', 'E-mail Address 2', 'E-mail Address 3')
CSV_GROUP_SEPARATORS = re.compile(r'[;,]')
ALL_GROUPS = "*"


class FetchFailureReason(str, Enum):
    """Why an adapter could not produce records."""
    NOT_AUTHORIZED = "not_authorized"
    NO_SCOPE_SELECTED = "no_scope_selected"
    FETCH_FAILED = "fetch_failed"


class SourceFetchError(Exception):
    """An adapter could not read its source."""

    def __init__(self, source: str, reason: str, message: str = ""):
        self.source = source
        self.reason = reason
        self.message = message
        super().__init__(f"{source} fetch failed ({reason}){': ' + message if message else ''}")


class MalformedRecordError(ValueError):
    """A single source record cannot be turned into evidence."""
    pass


@dataclass(frozen=True)
class FetchScope:
    """What to fetch: a calendar id or contact group, plus an optional time window."""

    identifier: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def contains(self, when: object) -> bool:
        """True if `when` falls inside the window (or it cannot be compared)."""
        if not isinstance(when, datetime):
            return True
        when = make_aware(when)
        if self.start and when < make_aware(self.start):
            return False
        if self.end and when > make_aware(self.end):
            return False
        return True


@dataclass
class SourceRecord:
    """One record as supplied by a source adapter."""

    external_uid: str
    title: str
    occurred_at: datetime
    snippet: str = ""
    participant_hints: list[ParticipantHint] = field(default_factory=list)
    body_text: Optional[str] = None


class SourceAdapter(ABC):
    """Supplies records and the current valid-UID set for one source."""

    source: str = ""

    @abstractmethod
    def fetch_records(self, scope: FetchScope) -> list[SourceRecord]:
        """
        Fetch the records visible in a scope.

        Raises:
            SourceFetchError: If the source cannot be read
        """

    @abstractmethod
    def current_valid_external_uids(self, scope: FetchScope) -> set[str]:
        """
        UIDs that still exist in the source for a scope; used for pruning.

        Raises:
            SourceFetchError: If the source cannot be read
        """


class StaticSourceAdapter(SourceAdapter):
    """
    Adapter over an in-memory record list.

    Used by tests and by one-off manual imports. `fail_with` makes every
    fetch raise SourceFetchError with that reason.
    """

    def __init__(
        self,
        source: str,
        records: Optional[Iterable[SourceRecord]] = None,
        fail_with: Optional[str] = None,
    ):
        self.source = source
        self.records = list(records or [])
        self.fail_with = fail_with
        self.fetch_count = 0

    def set_records(self, records: Iterable[SourceRecord]) -> None:
        """Replace the records the source reports."""
        self.records = list(records)

    def fetch_records(self, scope: FetchScope) -> list[SourceRecord]:
        self.fetch_count += 1
        if self.fail_with:
            raise SourceFetchError(self.source, self.fail_with)
        return [r for r in self.records if scope.contains(r.occurred_at)]

    def current_valid_external_uids(self, scope: FetchScope) -> set[str]:
        if self.fail_with:
            raise SourceFetchError(self.source, self.fail_with)
        return {
            r.external_uid for r in self.records
            if r.external_uid and scope.contains(r.occurred_at)
        }


def contact_slug(display_name: str, email: Optional[str]) -> str:
    """Stable native id for a CSV contact row."""
    raw = f"{display_name}_{email or ''}".strip("_").lower()
    return re.sub(r'[^a-z0-9_@.]', '_', raw)


def row_groups(row: dict) -> set[str]:
    """Group names listed in a CSV row, lower-cased."""
    raw = (row.get('Group') or '').strip()
    return {g.strip().lower() for g in CSV_GROUP_SEPARATORS.split(raw) if g.strip()}


class ContactsCsvAdapter(SourceAdapter):
    """
    Contacts adapter reading a CSV export.

    Columns: Display Name, First Name, Last Name, E-mail Address (2, 3),
    Organization, Group. The scope is a group name; "*" selects every row.
    Rows with neither a name nor an email cannot be identified and are
    skipped.
    """

    source = EvidenceSource.CONTACTS.value

    def __init__(self, csv_path: Optional[str] = None):
        """
        Initialize the adapter.

        Args:
            csv_path: Path to the CSV export (default from settings)
        """
        if csv_path is None:
            from config.settings import settings
            csv_path = settings.contacts_csv_path
        self.csv_path = Path(csv_path) if csv_path else None

    def _read_rows(self) -> tuple[list[dict], datetime]:
        if self.csv_path is None:
            raise SourceFetchError(self.source, FetchFailureReason.FETCH_FAILED.value, "no CSV path configured")
        try:
            modified = datetime.fromtimestamp(self.csv_path.stat().st_mtime, tz=timezone.utc)
            with open(self.csv_path, 'r', encoding='utf-8-sig', newline='') as f:
                return list(csv.DictReader(f)), modified
        except (OSError, csv.Error, UnicodeDecodeError) as e:
            raise SourceFetchError(self.source, FetchFailureReason.FETCH_FAILED.value, str(e)) from e

    def _row_to_record(self, row: dict, occurred_at: datetime) -> Optional[SourceRecord]:
        display_name = (row.get('Display Name') or '').strip()
        if not display_name:
            first = (row.get('First Name') or '').strip()
            last = (row.get('Last Name') or '').strip()
            display_name = f"{first} {last}".strip()

        emails = []
        for col in CSV_EMAIL_COLUMNS:
            email = (row.get(col) or '').strip().lower()
            if email and '@' in email:
                emails.append(email)

        if not display_name and not emails:
            return None

        primary_email = emails[0] if emails else None
        organization = (row.get('Organization') or '').strip()

        body_lines = []
        if organization:
            body_lines.append(f"Organization: {organization}")
        if emails:
            body_lines.append(f"Emails: {', '.join(emails)}")

        return SourceRecord(
            external_uid=f"{self.source}:{contact_slug(display_name, primary_email)}",
            title=display_name or primary_email,
            occurred_at=occurred_at,
            snippet=organization or (primary_email or ""),
            participant_hints=[ParticipantHint(display_name=display_name or primary_email, email=primary_email)],
            body_text="\n".join(body_lines) or None,
        )

    def _records_in_scope(self, scope: FetchScope) -> list[SourceRecord]:
        if not scope.identifier:
            raise SourceFetchError(self.source, FetchFailureReason.NO_SCOPE_SELECTED.value)

        rows, modified = self._read_rows()
        wanted = scope.identifier.strip().lower()
        records = []
        skipped = 0
        for row in rows:
            if wanted != ALL_GROUPS and wanted not in row_groups(row):
                continue
            record = self._row_to_record(row, modified)
            if record is None:
                skipped += 1
                continue
            records.append(record)

        if skipped:
            logger.warning(f"Skipped {skipped} unidentifiable rows in {self.csv_path}")
        return records

    def fetch_records(self, scope: FetchScope) -> list[SourceRecord]:
        records = self._records_in_scope(scope)
        logger.info(f"Read {len(records)} contacts from {self.csv_path} (group: {scope.identifier})")
        return records

    def current_valid_external_uids(self, scope: FetchScope) -> set[str]:
        return {r.external_uid for r in self._records_in_scope(scope)}
