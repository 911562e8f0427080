"""
Advisor CRM - Evidence ingestion and insight service
FastAPI Application Entry Point

Run with:

    uvicorn api.main:app --host 0.0.0.0 --port 8000
"""
# Load environment variables from .env file first, before any imports
from dotenv import load_dotenv
load_dotenv()

import logging
import threading
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from api.routes import evidence_router, imports_router, insights_router, notes_router, people_router
from api.services.evidence import EvidenceSource
from api.services.import_coordinator import (
    ImportCoordinator,
    KickReason,
    list_import_coordinators,
    register_import_coordinator,
    reset_import_coordinators,
)
from api.services.source_adapters import ContactsCsvAdapter, SourceAdapter
from api.services.store_access import StoreAccess, StoreWriteError, get_store_access
from config.settings import settings

logger = logging.getLogger(__name__)

# Background periodic kicker (initialized on startup)
_periodic_thread: Optional[threading.Thread] = None
_periodic_stop_event = threading.Event()


def build_import_coordinators(
    store: StoreAccess,
    calendar_adapter: Optional[SourceAdapter] = None,
    contacts_adapter: Optional[SourceAdapter] = None,
) -> list[ImportCoordinator]:
    """
    Create and register one coordinator per source that has an adapter.

    The calendar adapter is supplied by the host environment; without one
    no calendar coordinator is registered (an empty adapter would prune
    every calendar item).

    Args:
        store: Shared serialized store access
        calendar_adapter: Optional calendar adapter
        contacts_adapter: Contacts adapter (default: CSV export from settings)

    Returns:
        The registered coordinators
    """
    adapters = {
        EvidenceSource.CALENDAR.value: calendar_adapter,
        EvidenceSource.CONTACTS.value: contacts_adapter or ContactsCsvAdapter(),
    }
    coordinators = []
    for source, adapter in adapters.items():
        if adapter is None:
            logger.info(f"No {source} adapter configured; {source} import disabled")
            continue
        coordinators.append(register_import_coordinator(ImportCoordinator(source, adapter, store)))
    return coordinators


def _periodic_kick_loop(stop_event: threading.Event, interval_seconds: float):
    """Kick every coordinator periodically until stopped; throttling drops early kicks."""
    while not stop_event.wait(timeout=interval_seconds):
        for coordinator in list_import_coordinators():
            coordinator.kick(KickReason.PERIODIC.value)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    global _periodic_thread

    # Startup: register coordinators and run an initial foreground import
    try:
        coordinators = build_import_coordinators(get_store_access())
        for coordinator in coordinators:
            coordinator.kick(KickReason.APP_FOREGROUND.value)
        logger.info(f"Started {len(coordinators)} import coordinators")
    except Exception as e:
        logger.error(f"Failed to start import coordinators: {e}")

    # Startup: periodic kicks
    _periodic_stop_event.clear()
    _periodic_thread = threading.Thread(
        target=_periodic_kick_loop,
        args=(_periodic_stop_event, settings.periodic_throttle_seconds),
        daemon=True,
        name="PeriodicImportThread"
    )
    _periodic_thread.start()

    yield  # Application runs here

    # Shutdown: stop periodic kicks, let running cycles finish
    _periodic_stop_event.set()
    if _periodic_thread and _periodic_thread.is_alive():
        _periodic_thread.join(timeout=5)
        logger.info("Periodic import scheduler stopped")

    for coordinator in list_import_coordinators():
        if not coordinator.wait_until_idle(timeout=10):
            logger.warning(f"{coordinator.source} import still running at shutdown")
    reset_import_coordinators()


app = FastAPI(
    title="Advisor CRM",
    description="Evidence ingestion, duplicate-safe entity resolution and insights for advisors",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(evidence_router)
app.include_router(people_router)
app.include_router(notes_router)
app.include_router(insights_router)
app.include_router(imports_router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert validation errors to 400 with clear messages."""
    sanitized_errors = []
    for error in exc.errors():
        sanitized = dict(error)
        if "input" in sanitized and isinstance(sanitized["input"], bytes):
            sanitized["input"] = sanitized["input"].decode("utf-8", errors="replace")
        sanitized.pop("ctx", None)
        sanitized_errors.append(sanitized)

    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "detail": sanitized_errors}
    )


@app.exception_handler(StoreWriteError)
async def store_write_exception_handler(request: Request, exc: StoreWriteError):
    """A write that kept conflicting is a retryable server-side failure."""
    logger.error(f"Store write failed for {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "Store busy, please retry", "detail": str(exc)}
    )


@app.get("/health")
def health_check():
    """Health check endpoint that verifies the store is readable."""
    checks = {}
    try:
        get_store_access().read(lambda repo: repo.list_people())
        checks["store"] = True
    except Exception as e:
        logger.error(f"Health check store read failed: {e}")
        checks["store"] = False

    imports = {c.source: c.status.value for c in list_import_coordinators()}

    return {
        "status": "healthy" if all(checks.values()) else "degraded",
        "service": "advisor-crm",
        "checks": checks,
        "imports": imports,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
