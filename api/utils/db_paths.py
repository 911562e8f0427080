"""
Database path utilities for Advisor CRM services.
"""
from pathlib import Path


def get_crm_db_path() -> str:
    """
    Get the path to the CRM database.

    Creates the parent directory if it doesn't exist.

    Returns:
        Absolute path to the crm.db file
    """
    from config.settings import settings

    db_path = Path(settings.crm_db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return str(db_path)
