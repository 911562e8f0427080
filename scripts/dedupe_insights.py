#!/usr/bin/env python3
"""
Merge duplicate insights in the Advisor CRM store.

Insights sharing (target, kind, message) are merged into the earliest one,
whose evidence set absorbs the others. Safe to run repeatedly.

Usage:
    python scripts/dedupe_insights.py
"""
import sys
import logging
import argparse
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from api.services.insight_generator import InsightGenerator
from api.services.store_access import get_store_access

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def dedupe_insights(db_path: str = None) -> int:
    """
    Run the insight deduplication pass.

    Args:
        db_path: Optional database path override

    Returns:
        Number of insights removed
    """
    store = get_store_access(db_path)
    before = store.read(lambda repo: len(repo.list_insights(include_dismissed=True)))
    removed = InsightGenerator(store).deduplicate()
    logger.info(f"Insights: {before} before, {removed} duplicates removed, {before - removed} remaining")
    return removed


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Merge duplicate insights')
    parser.add_argument('--db', type=str, help='Path to crm.db (default from settings)')
    args = parser.parse_args()

    dedupe_insights(db_path=args.db)
