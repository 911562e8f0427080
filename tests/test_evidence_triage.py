"""
Tests for evidence triage: review state, link decisions and manual evidence.
"""
import pytest

from api.services.evidence import LinkStatus, ProposedLink, TriageState
from api.services.evidence_triage import EvidenceTriageService
from api.services.evidence_upsert import EvidenceUpsertEngine
from api.services.insight import Insight, InsightTarget
from api.services.person import Person
from tests.factories import hint, make_record

pytestmark = pytest.mark.unit


@pytest.fixture
def triage(store, matcher):
    return EvidenceTriageService(store, matcher=matcher)


@pytest.fixture
def engine(store, matcher, fixed_clock):
    return EvidenceUpsertEngine(store, matcher=matcher, clock=fixed_clock)


@pytest.fixture
def robert(store):
    return store.write(lambda repo: repo.save_person(Person(display_name="Robert Smith")))


def import_one(engine, store, record):
    engine.upsert([record], record.external_uid.split(":")[0])
    return store.read(lambda repo: repo.get_evidence_by_uid(record.external_uid))


class TestTriageState:
    """Review queue transitions."""

    def test_mark_reviewed_and_back(self, triage, engine, store):
        """Items move between the two triage states."""
        item = import_one(engine, store, make_record("e1"))
        assert [i.id for i in triage.list_needs_review()] == [item.id]

        assert triage.mark_reviewed(item.id).triage_state == TriageState.REVIEWED.value
        assert triage.list_needs_review() == []

        assert triage.mark_needs_review(item.id).triage_state == TriageState.NEEDS_REVIEW.value

    def test_reviewed_survives_reimport(self, triage, engine, store):
        """A re-import never resets triage."""
        item = import_one(engine, store, make_record("e1"))
        triage.mark_reviewed(item.id)

        import_one(engine, store, make_record("e1", title="Moved"))

        assert triage.get(item.id).triage_state == TriageState.REVIEWED.value

    def test_missing_evidence(self, triage):
        """Unknown ids return None."""
        assert triage.mark_reviewed("missing") is None


class TestLinkDecisions:
    """Accepting and declining proposals."""

    def test_accept_links_person(self, triage, engine, store, robert):
        """Accepting moves the person into linked people and adopts the hint email."""
        item = import_one(engine, store, make_record("e1", hints=[hint("Bob Smith", "bob@gmail.com")]))
        link = item.proposed_links[0]

        updated = triage.accept_link(item.id, link.id)

        assert updated.linked_people == [robert.id]
        assert updated.get_link(link.id).status == LinkStatus.ACCEPTED.value
        assert updated.get_link(link.id).decided_at is not None
        assert "unlinked_evidence" not in {s.kind for s in updated.signals}
        assert store.read(lambda repo: repo.get_person(robert.id)).email == "bob@gmail.com"

    def test_accepted_email_links_future_imports(self, triage, engine, store, robert):
        """Once the email is known, the next event from it links directly."""
        first = import_one(engine, store, make_record("e1", hints=[hint("Bob Smith", "bob@gmail.com")]))
        triage.accept_link(first.id, first.proposed_links[0].id)

        second = import_one(engine, store, make_record("e2", hints=[hint("B. Smith", "BOB@gmail.com")]))

        assert second.linked_people == [robert.id]
        assert second.proposed_links == []

    def test_accept_generates_insight(self, triage, engine, store, robert):
        """Accepting a link generates insights for the linked person."""
        item = import_one(engine, store, make_record("e1", title="Divorce filing", hints=[hint("Bob Smith")]))

        triage.accept_link(item.id, item.proposed_links[0].id)

        insights = store.read(lambda repo: repo.list_insights())
        assert any(
            i.kind == "relationship_at_risk" and i.target == InsightTarget.person(robert.id)
            for i in insights
        )

    def test_accept_context_link(self, triage, store):
        """Context proposals link contexts."""
        item = triage.create_manual("Household review")
        link = ProposedLink(target="context", target_id="household-smith")
        item.proposed_links.append(link)
        store.write(lambda repo: repo.upsert_evidence(item))

        updated = triage.accept_link(item.id, link.id)

        assert updated.linked_contexts == ["household-smith"]

    def test_decline(self, triage, engine, store, robert):
        """A declined proposal is kept as declined and not re-proposed."""
        record = make_record("e1", hints=[hint("Bob Smith")])
        item = import_one(engine, store, record)

        updated = triage.decline_link(item.id, item.proposed_links[0].id)
        assert updated.proposed_links[0].status == LinkStatus.DECLINED.value
        assert updated.linked_people == []

        reimported = import_one(engine, store, make_record("e1", title="Moved", hints=[hint("Bob Smith")]))
        assert [l.status for l in reimported.proposed_links] == [LinkStatus.DECLINED.value]

    def test_unknown_link(self, triage, engine, store):
        """Unknown link ids return None."""
        item = import_one(engine, store, make_record("e1"))
        assert triage.accept_link(item.id, "missing") is None
        assert triage.decline_link("missing", "missing") is None


class TestManualEvidence:
    """Manual evidence lifecycle."""

    def test_create_manual(self, triage, store, robert):
        """Manual evidence has no UID and only keeps known people."""
        item = triage.create_manual(
            "  Phone call about trust  ",
            snippet="Wants to set up a trust",
            linked_people=[robert.id, "missing"],
        )

        assert item.external_uid is None
        assert item.source == "manual"
        assert item.title == "Phone call about trust"
        assert item.linked_people == [robert.id]
        assert "product_opportunity" in {s.kind for s in item.signals}

        insights = store.read(lambda repo: repo.list_insights())
        assert any(i.kind == "opportunity" for i in insights)

    def test_empty_title_rejected(self, triage):
        """A title is required."""
        with pytest.raises(ValueError):
            triage.create_manual("   ")

    def test_manual_never_pruned(self, triage, engine, store):
        """Calendar pruning leaves manual evidence alone."""
        item = triage.create_manual("Walk-in visit")
        engine.prune(set(), "calendar")
        assert triage.get(item.id) is not None

    def test_delete_detaches_insights(self, triage, store):
        """Deleting evidence removes it from insight evidence sets."""
        item = triage.create_manual("Walk-in visit")
        insight = Insight(
            target=InsightTarget.person("p1"),
            kind="follow_up",
            message="Suggested follow-up.",
            based_on_evidence={item.id},
        )
        store.write(lambda repo: repo.insert_insight(insight))

        assert triage.delete(item.id) is True
        assert triage.get(item.id) is None
        assert store.read(lambda repo: repo.get_insight(insight.id)).based_on_evidence == set()
        assert triage.delete(item.id) is False
