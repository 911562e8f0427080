"""
Advisor CRM API Routes Package.

This package contains all FastAPI route handlers organized by domain.
Use this module to import routers for registration with the FastAPI app.

Example:
    from api.routes import evidence_router, people_router

    app.include_router(evidence_router)
    app.include_router(people_router)
"""

# ============================================================================
# Evidence & People Routers
# ============================================================================

from api.routes.evidence import router as evidence_router
from api.routes.people import router as people_router

# ============================================================================
# Analysis Routers
# ============================================================================

from api.routes.notes import router as notes_router
from api.routes.insights import router as insights_router

# ============================================================================
# Import Routers
# ============================================================================

from api.routes.imports import router as imports_router


__all__ = [
    "evidence_router",
    "people_router",
    "notes_router",
    "insights_router",
    "imports_router",
]
