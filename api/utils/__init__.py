# Advisor CRM API Utilities
"""
Shared utility functions for Advisor CRM API services.
"""

from api.utils.datetime_utils import make_aware, parse_iso, utc_now
from api.utils.db_paths import get_crm_db_path

__all__ = ["make_aware", "parse_iso", "utc_now", "get_crm_db_path"]
