"""
Serialized access point for the CRM store.

Every read and write of evidence, people and insights goes through one
StoreAccess instance. A single re-entrant lock means:
- Readers never observe a half-applied upsert batch
- Import cycles and note processing cannot interleave their writes,
  which keeps insight deduplication race-free

A write that hits StoreConflictError is rolled back and retried once; a
second conflict surfaces as StoreWriteError.
"""
import logging
import threading
from typing import Callable, Optional, TypeVar

from api.services.crm_repository import CrmRepository, StoreConflictError
from api.services.resilience import RetryConfig, retry_sync

logger = logging.getLogger(__name__)

T = TypeVar('T')

WRITE_RETRY_CONFIG = RetryConfig(
    max_retries=1,
    base_delay=0.05,
    max_delay=0.05,
    retryable_exceptions=(StoreConflictError,),
)


class StoreWriteError(Exception):
    """Raised when a write still conflicts after its retry."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


class StoreAccess:
    """Serializes all access to a CrmRepository."""

    def __init__(self, repository: CrmRepository, retry_config: Optional[RetryConfig] = None):
        """
        Initialize store access.

        Args:
            repository: The backing repository
            retry_config: Conflict retry policy (default: one retry)
        """
        self.repository = repository
        self._lock = threading.RLock()
        self._retry_config = retry_config or WRITE_RETRY_CONFIG

    def read(self, fn: Callable[[CrmRepository], T]) -> T:
        """
        Run a read-only function against the repository.

        Args:
            fn: Receives the repository; its return value is passed through

        Returns:
            Whatever fn returns
        """
        with self._lock:
            return fn(self.repository)

    def write(self, fn: Callable[[CrmRepository], T], operation: str = "write") -> T:
        """
        Run a mutating function as one transaction.

        Args:
            fn: Receives the repository; may be re-run once on conflict
            operation: Name for logs and errors

        Returns:
            Whatever fn returns

        Raises:
            StoreWriteError: If the write conflicts twice
        """
        @retry_sync(config=self._retry_config)
        def attempt() -> T:
            with self.repository.transaction():
                return fn(self.repository)

        with self._lock:
            try:
                return attempt()
            except StoreConflictError as e:
                logger.error(f"Store {operation} failed after retry: {e}")
                raise StoreWriteError(operation, e) from e


# Singleton instance
_store_access: Optional[StoreAccess] = None
_store_lock = threading.Lock()


def get_store_access(db_path: Optional[str] = None) -> StoreAccess:
    """
    Get or create the process-wide StoreAccess over the SQLite repository.

    Args:
        db_path: Optional database path override

    Returns:
        StoreAccess instance
    """
    global _store_access
    with _store_lock:
        if _store_access is None:
            from api.services.sqlite_repository import SqliteCrmRepository
            _store_access = StoreAccess(SqliteCrmRepository(db_path))
        return _store_access


def reset_store_access() -> None:
    """Drop the shared StoreAccess (tests)."""
    global _store_access
    with _store_lock:
        _store_access = None
