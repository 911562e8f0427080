"""
People service - explicit person creation with duplicate protection.

Creating a person first runs the duplicate matcher against everyone in
the store (and checks the email). Probable duplicates are reported with
DuplicatePersonError so the caller can link to the existing person
instead; `force=True` creates anyway.
"""
import logging
from typing import Iterable, Optional

from api.services.crm_repository import CrmRepository
from api.services.duplicate_matcher import (
    DuplicateMatch,
    DuplicatePersonMatcher,
    get_duplicate_matcher,
)
from api.services.person import Person, normalize_email
from api.services.store_access import StoreAccess
from config.matching_weights import MAX_SCORE

logger = logging.getLogger(__name__)


class DuplicatePersonError(Exception):
    """Raised when a new person probably already exists."""

    def __init__(self, display_name: str, matches: list[DuplicateMatch]):
        self.display_name = display_name
        self.matches = matches
        best = matches[0].candidate.display_name if matches else "unknown"
        super().__init__(f"'{display_name}' probably duplicates '{best}' ({len(matches)} matches)")


class PeopleService:
    """Create, list and delete people."""

    def __init__(self, store: StoreAccess, matcher: Optional[DuplicatePersonMatcher] = None):
        self.store = store
        self.matcher = matcher or get_duplicate_matcher()

    def get_person(self, person_id: str) -> Optional[Person]:
        return self.store.read(lambda repo: repo.get_person(person_id))

    def list_people(self, query: Optional[str] = None) -> list[Person]:
        """All people, optionally filtered by a name substring."""
        def _list(repo: CrmRepository) -> list[Person]:
            if not query:
                return repo.list_people()
            ids = {c.id for c in repo.fetch_people(matching=query)}
            return [p for p in repo.list_people() if p.id in ids]

        return self.store.read(_list)

    def _duplicates_in(
        self,
        repo: CrmRepository,
        name: str,
        email: Optional[str] = None,
        threshold: Optional[float] = None,
    ) -> list[DuplicateMatch]:
        matches = self.matcher.find_matches(name, repo.fetch_people(), threshold=threshold)

        email = normalize_email(email)
        if email:
            seen = {m.candidate.id for m in matches}
            same_email = [
                DuplicateMatch(candidate=p.to_candidate(), score=MAX_SCORE)
                for p in repo.find_people_by_emails([email])
                if p.id not in seen
            ]
            matches = same_email + matches
        return matches

    def find_duplicates(
        self,
        name: str,
        email: Optional[str] = None,
        threshold: Optional[float] = None,
    ) -> list[DuplicateMatch]:
        """
        Probable duplicates of a name (and optionally an email).

        Args:
            name: Name to check
            email: Optional email; an exact email match scores 1.0
            threshold: Override the matcher threshold

        Returns:
            Matches, best first
        """
        return self.store.read(lambda repo: self._duplicates_in(repo, name, email, threshold))

    def create_person(
        self,
        display_name: str,
        email: Optional[str] = None,
        external_contact_ref: Optional[str] = None,
        role_badges: Optional[Iterable[str]] = None,
        force: bool = False,
    ) -> Person:
        """
        Create a person unless they probably exist already.

        Args:
            display_name: Name as entered
            email: Optional primary email
            external_contact_ref: Optional contacts-directory id
            role_badges: Optional badges such as "Client"
            force: Create even if duplicates are found

        Returns:
            The new person

        Raises:
            ValueError: If display_name is empty
            DuplicatePersonError: If probable duplicates exist and force is False
        """
        name = (display_name or "").strip()
        if not name:
            raise ValueError("display_name is required")

        def _create(repo: CrmRepository) -> Person:
            if not force:
                matches = self._duplicates_in(repo, name, email)
                if matches:
                    raise DuplicatePersonError(name, matches)
            person = Person(
                display_name=name,
                email=email,
                external_contact_ref=external_contact_ref,
                role_badges=list(role_badges or []),
            )
            return repo.save_person(person)

        person = self.store.write(_create, "create_person")
        logger.info(f"Created person '{person.display_name}' ({person.id})")
        return person

    def delete_person(self, person_id: str) -> bool:
        """Delete a person and remove them from evidence links."""
        return self.store.write(lambda repo: repo.delete_person(person_id), "delete_person")
