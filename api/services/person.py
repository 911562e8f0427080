"""
Person records and the read-only projection used for duplicate matching.

People are created by explicit user action, by accepting a proposed link,
or by note analysis detecting a new person. The duplicate matcher never
creates people; it only reads DuplicateCandidate projections.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from api.utils.datetime_utils import parse_iso, utc_now


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Trim and lowercase an email, or None if empty."""
    if not email:
        return None
    email = email.strip().lower()
    return email or None


@dataclass(frozen=True)
class DuplicateCandidate:
    """Read-only {id, display_name} view of an existing person."""

    id: str
    display_name: str


@dataclass
class Person:
    """A canonical person in the CRM."""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    display_name: str = ""
    email: Optional[str] = None
    email_aliases: list[str] = field(default_factory=list)
    external_contact_ref: Optional[str] = None  # Bridge to the contacts directory
    role_badges: list[str] = field(default_factory=list)  # e.g. "Client", "Prospect"
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        """Normalize email fields."""
        self.email = normalize_email(self.email)
        self.email_aliases = [e for e in (normalize_email(a) for a in self.email_aliases) if e]

    @property
    def all_emails(self) -> set[str]:
        """Primary email plus aliases, normalized."""
        emails = set(self.email_aliases)
        if self.email:
            emails.add(self.email)
        return emails

    def to_candidate(self) -> DuplicateCandidate:
        """Project to the matcher's input shape."""
        return DuplicateCandidate(id=self.id, display_name=self.display_name)

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "email": self.email,
            "email_aliases": list(self.email_aliases),
            "external_contact_ref": self.external_contact_ref,
            "role_badges": list(self.role_badges),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Person":
        """Create Person from dict."""
        data = dict(data)
        if isinstance(data.get("created_at"), str):
            data["created_at"] = parse_iso(data["created_at"])
        elif not data.get("created_at"):
            data.pop("created_at", None)
        return cls(**data)
