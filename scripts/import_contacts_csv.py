#!/usr/bin/env python3
"""
Import contacts from a CSV export into the Advisor CRM evidence store.

Runs one contacts import cycle (fetch, upsert, prune, insights) through the
same ImportCoordinator the server uses. With --dry-run the CSV is read and
compared against the store, but nothing is written.

Usage:
    python scripts/import_contacts_csv.py --csv contacts.csv --group Clients
    python scripts/import_contacts_csv.py --csv contacts.csv --group "*" --dry-run
"""
import sys
import logging
import argparse
from dataclasses import replace
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from api.services.evidence import EvidenceSource, external_uid_namespace
from api.services.import_coordinator import ImportConfig, ImportCoordinator
from api.services.source_adapters import ContactsCsvAdapter, SourceFetchError
from api.services.store_access import get_store_access
from config.settings import settings

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)

SOURCE = EvidenceSource.CONTACTS.value


def preview_import(adapter: ContactsCsvAdapter, config: ImportConfig) -> dict:
    """
    Report what an import would change without writing.

    Returns:
        Stats dict
    """
    scope = config.fetch_scope()
    records = adapter.fetch_records(scope)
    valid_uids = {r.external_uid for r in records}

    def _compare(repo) -> dict:
        existing = {
            item.external_uid for item in repo.list_evidence(source=SOURCE)
            if external_uid_namespace(item.external_uid) == SOURCE
        }
        return {
            'contacts_read': len(records),
            'would_create': len(valid_uids - existing),
            'would_update': len(valid_uids & existing),
            'would_remove': len(existing - valid_uids),
        }

    return get_store_access().read(_compare)


def import_contacts_csv(csv_path: str = None, group: str = None, dry_run: bool = False) -> dict:
    """
    Import contacts from CSV.

    Args:
        csv_path: Path to CSV file (default from settings)
        group: Contact group to import, "*" for all (default from settings)
        dry_run: If True, don't modify data

    Returns:
        Stats dict
    """
    adapter = ContactsCsvAdapter(csv_path)
    config = replace(
        ImportConfig.from_settings(SOURCE, settings),
        enabled=True,
        scope=group if group is not None else settings.contacts_group_identifier,
    )

    if dry_run:
        try:
            stats = preview_import(adapter, config)
        except SourceFetchError as e:
            logger.error(f"Cannot read contacts: {e}")
            return {'error': str(e)}
        logger.info(
            f"DRY RUN - {stats['contacts_read']} contacts: {stats['would_create']} new, "
            f"{stats['would_update']} existing, {stats['would_remove']} to remove"
        )
        return stats

    coordinator = ImportCoordinator(SOURCE, adapter, get_store_access(), config_provider=lambda: config)
    result = coordinator.import_now()

    logger.info("=" * 50)
    logger.info("Import complete:")
    for key, value in result.to_dict().items():
        logger.info(f"  {key}: {value}")
    return result.to_dict()


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Import contacts CSV into the CRM')
    parser.add_argument('--csv', type=str, help='Path to CSV file')
    parser.add_argument('--group', type=str, help='Contact group to import ("*" for all)')
    parser.add_argument('--dry-run', action='store_true', help='Report changes without writing')
    args = parser.parse_args()

    stats = import_contacts_csv(csv_path=args.csv, group=args.group, dry_run=args.dry_run)
    sys.exit(1 if stats.get('error') or stats.get('status') == 'failed' else 0)
