"""
Import Coordinator - one per source.

Runs SourceAdapter -> EvidenceUpsertEngine -> InsightGenerator cycles on
a background thread, triggered by kick(reason).

Scheduling:
- Single-flight: at most one cycle per coordinator at a time
- A kick during a running cycle sets a "run again" flag; any number of
  such kicks produce exactly one trailing cycle
- Non-manual kicks are throttled from the start of the last cycle
- A running cycle is never cancelled; a configuration change takes
  effect on the next cycle

Failures never leave the worker thread. A fetch failure aborts the cycle
before anything is written; every failure ends up in last_result with
status FAILED and is retried on the next kick.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from api.services.evidence import EvidenceSource
from api.services.evidence_upsert import EvidenceUpsertEngine
from api.services.insight_generator import InsightGenerator
from api.services.source_adapters import (
    FetchFailureReason,
    FetchScope,
    SourceAdapter,
    SourceFetchError,
)
from api.services.store_access import StoreAccess, StoreWriteError
from api.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class ImportStatus(str, Enum):
    """Coordinator state as shown to the user."""
    IDLE = "idle"
    IMPORTING = "importing"
    SUCCESS = "success"
    FAILED = "failed"


class KickReason(str, Enum):
    """Why an import was requested."""
    APP_FOREGROUND = "app_foreground"
    PERIODIC = "periodic"
    SOURCE_CHANGED = "source_changed"
    MANUAL = "manual"
    CONFIG_CHANGED = "config_changed"


@dataclass(frozen=True)
class ImportConfig:
    """Read-only import parameters, captured at the start of each cycle."""

    enabled: bool = True
    scope: str = ""
    lookback_days: int = 30
    lookahead_days: int = 30
    periodic_throttle_seconds: float = 300.0
    change_throttle_seconds: float = 10.0

    @classmethod
    def from_settings(cls, source: str, settings) -> "ImportConfig":
        """Build the config for one source from application settings."""
        if source == EvidenceSource.CALENDAR.value:
            enabled, scope = settings.calendar_import_enabled, settings.calendar_identifier
        elif source == EvidenceSource.CONTACTS.value:
            enabled, scope = settings.contacts_import_enabled, settings.contacts_group_identifier
        else:
            raise ValueError(f"No import configuration for source: {source}")
        return cls(
            enabled=enabled,
            scope=scope,
            lookback_days=settings.import_lookback_days,
            lookahead_days=settings.import_lookahead_days,
            periodic_throttle_seconds=settings.periodic_throttle_seconds,
            change_throttle_seconds=settings.change_throttle_seconds,
        )

    def fetch_scope(self, now: Optional[datetime] = None) -> FetchScope:
        """Scope plus the [now - lookback, now + lookahead] window."""
        now = now or utc_now()
        return FetchScope(
            identifier=self.scope,
            start=now - timedelta(days=self.lookback_days),
            end=now + timedelta(days=self.lookahead_days),
        )

    def throttle_for(self, reason: str) -> float:
        """Minimum seconds between cycle starts for a kick reason."""
        if reason in (KickReason.PERIODIC.value, KickReason.APP_FOREGROUND.value):
            return self.periodic_throttle_seconds
        if reason == KickReason.SOURCE_CHANGED.value:
            return self.change_throttle_seconds
        return 0.0


@dataclass
class ImportResult:
    """Summary of the last import cycle."""

    status: str = ImportStatus.IDLE.value
    created: int = 0
    updated: int = 0
    removed: int = 0
    skipped: int = 0
    insights: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    finished_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "status": self.status,
            "created": self.created,
            "updated": self.updated,
            "removed": self.removed,
            "skipped": self.skipped,
            "insights": self.insights,
            "errors": list(self.errors),
            "duration_seconds": round(self.duration_seconds, 3),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class ImportCoordinator:
    """Single-flight import scheduler for one source."""

    def __init__(
        self,
        source: str,
        adapter: SourceAdapter,
        store: StoreAccess,
        engine: Optional[EvidenceUpsertEngine] = None,
        generator: Optional[InsightGenerator] = None,
        config_provider: Optional[Callable[[], ImportConfig]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the coordinator.

        Args:
            source: Source namespace this coordinator owns
            adapter: Adapter supplying records for the source
            store: Serialized store access
            engine: Upsert engine (default: one over `store`)
            generator: Insight generator (default: one over `store`)
            config_provider: Returns the current ImportConfig; called once per cycle
            clock: Monotonic clock used for throttling
        """
        self.source = source
        self.adapter = adapter
        self.store = store
        self.engine = engine or EvidenceUpsertEngine(store)
        self.generator = generator or InsightGenerator(store)
        self.config_provider = config_provider or self._settings_config
        self._clock = clock

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._running = False
        self._pending = False
        self._last_started: Optional[float] = None
        self._status = ImportStatus.IDLE
        self._last_result: Optional[ImportResult] = None
        self._worker: Optional[threading.Thread] = None
        self.cycle_count = 0

    def _settings_config(self) -> ImportConfig:
        from config.settings import settings
        return ImportConfig.from_settings(self.source, settings)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> ImportStatus:
        return self._status

    @property
    def last_result(self) -> Optional[ImportResult]:
        return self._last_result

    @property
    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> dict:
        """Status summary for the API."""
        return {
            "source": self.source,
            "status": self._status.value,
            "running": self._running,
            "pending": self._pending,
            "cycles": self.cycle_count,
            "last_result": self._last_result.to_dict() if self._last_result else None,
        }

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def _is_throttled(self, reason: str) -> bool:
        if self._last_started is None:
            return False
        window = self.config_provider().throttle_for(reason)
        return window > 0 and (self._clock() - self._last_started) < window

    def kick(self, reason: str = KickReason.MANUAL.value) -> bool:
        """
        Request an import cycle.

        Args:
            reason: A KickReason value

        Returns:
            True if a cycle was started or queued, False if throttled
        """
        reason = KickReason(reason).value
        with self._lock:
            # Throttles apply only when idle
            if self._running:
                self._pending = True
                logger.debug(f"{self.source} kick ({reason}) queued behind running cycle")
                return True

            if reason != KickReason.MANUAL.value and self._is_throttled(reason):
                logger.debug(f"{self.source} kick ({reason}) throttled")
                return False

            self._running = True
            self._worker = threading.Thread(
                target=self._run_loop,
                name=f"{self.source}-import",
                daemon=True,
            )
            self._worker.start()

        logger.info(f"{self.source} import kicked ({reason})")
        return True

    def import_now(self, timeout: Optional[float] = None) -> Optional[ImportResult]:
        """
        Run an import on the calling thread, ignoring throttles.

        If a cycle is already running, one trailing cycle is queued and this
        waits for it instead of starting a second concurrent cycle.

        Returns:
            The result of the last cycle run
        """
        with self._lock:
            if self._running:
                self._pending = True
                self._idle.wait_for(lambda: not self._running, timeout)
                return self._last_result
            self._running = True

        self._run_loop()
        return self._last_result

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no cycle is running. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._running, timeout)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Run cycles until no trailing run is pending."""
        while True:
            self._run_cycle()
            with self._lock:
                if self._pending:
                    self._pending = False
                    continue
                self._running = False
                self._idle.notify_all()
                return

    def _run_cycle(self) -> None:
        """Run one cycle and record its result. Never raises."""
        with self._lock:
            self._last_started = self._clock()
            self.cycle_count += 1
        self._status = ImportStatus.IMPORTING
        started = time.monotonic()

        try:
            result = self._import(self.config_provider())
        except SourceFetchError as e:
            logger.warning(f"{self.source} import aborted: {e}")
            result = ImportResult(status=ImportStatus.FAILED.value, errors=[str(e)])
        except StoreWriteError as e:
            logger.error(f"{self.source} import failed writing the store: {e}")
            result = ImportResult(status=ImportStatus.FAILED.value, errors=[str(e)])
        except Exception as e:
            logger.error(f"{self.source} import failed: {e}", exc_info=True)
            result = ImportResult(status=ImportStatus.FAILED.value, errors=[str(e)])

        result.duration_seconds = time.monotonic() - started
        result.finished_at = utc_now()
        self._last_result = result
        self._status = ImportStatus(result.status)

        logger.info(
            f"{self.source} import {result.status}: {result.created} created, {result.updated} updated, "
            f"{result.removed} removed, {result.skipped} skipped, {result.insights} insights "
            f"in {result.duration_seconds:.2f}s"
        )

    def _import(self, config: ImportConfig) -> ImportResult:
        """Fetch, upsert, prune and generate insights for one cycle."""
        if not config.enabled:
            logger.info(f"{self.source} import disabled; skipping")
            return ImportResult(status=ImportStatus.IDLE.value)
        if not config.scope:
            raise SourceFetchError(self.source, FetchFailureReason.NO_SCOPE_SELECTED.value)

        scope = config.fetch_scope()

        # Read everything before writing anything
        records = self.adapter.fetch_records(scope)
        valid_uids = self.adapter.current_valid_external_uids(scope)

        upsert = self.engine.upsert(records, self.source)
        prune = self.engine.prune(valid_uids, self.source)

        changed = list(upsert.changed_ids)
        if self.source == EvidenceSource.CONTACTS.value:
            changed.extend(self.engine.reresolve_unlinked_evidence(EvidenceSource.CALENDAR.value))

        insights = self._generate_insights(changed)

        return ImportResult(
            status=ImportStatus.SUCCESS.value,
            created=upsert.created,
            updated=upsert.updated,
            removed=prune.removed,
            skipped=upsert.skipped,
            insights=insights,
            errors=list(upsert.errors),
        )

    def _generate_insights(self, evidence_ids: list[str]) -> int:
        """Run insight generation for changed evidence in one write."""
        if not evidence_ids:
            return 0

        def _generate(repo) -> int:
            count = 0
            for evidence_id in dict.fromkeys(evidence_ids):
                item = repo.get_evidence(evidence_id)
                if item is not None:
                    count += len(self.generator.from_evidence_in(repo, item))
            return count

        return self.store.write(_generate, f"insights_{self.source}")


# Registry: one coordinator per source
_coordinators: dict[str, ImportCoordinator] = {}
_registry_lock = threading.Lock()


def register_import_coordinator(coordinator: ImportCoordinator) -> ImportCoordinator:
    """Register the coordinator for its source, replacing any previous one."""
    with _registry_lock:
        _coordinators[coordinator.source] = coordinator
    return coordinator


def get_import_coordinator(source: str) -> Optional[ImportCoordinator]:
    """Get the coordinator registered for a source."""
    with _registry_lock:
        return _coordinators.get(source)


def list_import_coordinators() -> list[ImportCoordinator]:
    with _registry_lock:
        return list(_coordinators.values())


def reset_import_coordinators() -> None:
    """Forget all registered coordinators (tests)."""
    with _registry_lock:
        _coordinators.clear()
