"""
Tests for explicit person creation with duplicate protection.
"""
import pytest

from api.services.evidence import EvidenceItem
from api.services.people_service import DuplicatePersonError, PeopleService

pytestmark = pytest.mark.unit


@pytest.fixture
def people(store, matcher):
    return PeopleService(store, matcher=matcher)


class TestCreatePerson:
    """Tests for PeopleService.create_person()."""

    def test_create(self, people):
        """A new name is created with its details."""
        person = people.create_person(
            " Robert Smith ",
            email="Rob@Example.com",
            external_contact_ref="contacts:robert_smith",
            role_badges=["Client"],
        )

        assert person.display_name == "Robert Smith"
        assert person.email == "rob@example.com"
        assert people.get_person(person.id).role_badges == ["Client"]

    def test_duplicate_name_rejected(self, people):
        """A nickname variant of an existing person is reported."""
        existing = people.create_person("Robert Smith")

        with pytest.raises(DuplicatePersonError) as exc_info:
            people.create_person("Bob Smith")

        assert exc_info.value.matches[0].candidate.id == existing.id
        assert exc_info.value.matches[0].score == 1.0
        assert len(people.list_people()) == 1

    def test_duplicate_email_rejected(self, people):
        """An existing email is a duplicate even under a different name."""
        existing = people.create_person("Robert Smith", email="rob@example.com")

        with pytest.raises(DuplicatePersonError) as exc_info:
            people.create_person("Carol Jones", email="ROB@example.com")

        assert [m.candidate.id for m in exc_info.value.matches] == [existing.id]

    def test_force_creates_anyway(self, people):
        """force=True skips the duplicate check."""
        people.create_person("Robert Smith")
        people.create_person("Bob Smith", force=True)
        assert len(people.list_people()) == 2

    def test_distinct_names_allowed(self, people):
        """Different people are created without complaint."""
        people.create_person("Robert Smith")
        people.create_person("Robert Jones")
        assert len(people.list_people()) == 2

    def test_empty_name_rejected(self, people):
        """A display name is required."""
        with pytest.raises(ValueError):
            people.create_person("  ")


class TestQueries:
    """Listing, duplicate checks and deletion."""

    def test_list_with_query(self, people):
        """list_people filters by name substring."""
        people.create_person("Robert Smith")
        people.create_person("Carol Jones")
        assert [p.display_name for p in people.list_people("jon")] == ["Carol Jones"]

    def test_find_duplicates_threshold(self, people):
        """A lower threshold reports weaker matches."""
        people.create_person("Alice Smith")

        assert people.find_duplicates("Bob Smith") == []
        matches = people.find_duplicates("Bob Smith", threshold=0.5)
        assert [m.candidate.display_name for m in matches] == ["Alice Smith"]

    def test_delete_person_unlinks_evidence(self, people, store):
        """Deleting a person removes them from evidence links."""
        person = people.create_person("Robert Smith")
        item = EvidenceItem(title="Review", linked_people=[person.id])
        store.write(lambda repo: repo.upsert_evidence(item))

        assert people.delete_person(person.id) is True
        assert people.get_person(person.id) is None
        assert store.read(lambda repo: repo.get_evidence(item.id)).linked_people == []
        assert people.delete_person(person.id) is False
