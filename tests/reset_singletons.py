"""
Centralized singleton reset utilities for testing.

These functions reset global singleton instances to prevent test pollution.
Singletons that persist across tests can cause:
- A StoreAccess bound to another test's database
- Coordinators registered by an earlier app startup
- Settings changes not taking effect

Usage in conftest.py:
    @pytest.fixture(autouse=True)
    def reset_singletons_after_test():
        yield
        reset_lightweight_singletons()
"""


def reset_lightweight_singletons() -> None:
    """
    Reset all module singletons.

    Safe to call after every test. Resets:
    - StoreAccess
    - DuplicatePersonMatcher
    - NoteAnalyzerDispatcher
    - ImportCoordinator registry
    """
    from api.services.duplicate_matcher import reset_duplicate_matcher
    from api.services.import_coordinator import reset_import_coordinators
    from api.services.note_dispatcher import reset_note_dispatcher
    from api.services.store_access import reset_store_access

    reset_store_access()
    reset_note_dispatcher()
    reset_import_coordinators()
    reset_duplicate_matcher()
