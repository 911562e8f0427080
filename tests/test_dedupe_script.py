"""
Tests for scripts/dedupe_insights.py.
"""
import pytest

from api.services.insight import Insight, InsightTarget

pytestmark = pytest.mark.unit


def test_dedupe_against_database(temp_db):
    """Duplicates in the database are merged and a rerun removes nothing."""
    from api.services.store_access import get_store_access
    from scripts.dedupe_insights import dedupe_insights

    store = get_store_access(temp_db)
    for evidence_id in ("a", "b", "c"):
        insight = Insight(
            target=InsightTarget.person("p1"),
            kind="follow_up",
            message="Suggested follow-up.",
            based_on_evidence={evidence_id},
        )
        store.write(lambda repo: repo.insert_insight(insight))

    assert dedupe_insights(db_path=temp_db) == 2
    assert dedupe_insights(db_path=temp_db) == 0

    remaining = store.read(lambda repo: repo.list_insights())
    assert remaining[0].based_on_evidence == {"a", "b", "c"}
