"""FastAPI application for the tracksafe moderation service.

Provides REST API endpoints wrapping the tracksafe Python package for:
- The periodic batch trigger (shared-secret protected)
- Upload intake
- The admin review queue and audit trail
- Public and owner track listings, and appeals
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the tracksafe package is importable by adding the project root to sys.path.
_project_root = str(Path(__file__).resolve().parents[3])
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tracksafe import __version__
from web.backend.app.routers import moderation, tracks

app = FastAPI(
    title="tracksafe API",
    description=(
        "REST API for asynchronous audio moderation. "
        "Provides endpoints for intake, batch processing, review, "
        "appeals and visibility-filtered track listings."
    ),
    version=__version__,
)

# ---------------------------------------------------------------------------
# CORS middleware (allow all origins for development)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(moderation.router)
app.include_router(tracks.router)


# ---------------------------------------------------------------------------
# Root and health-check endpoints
# ---------------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root():
    """Return basic API information."""
    return {
        "name": "tracksafe API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


@app.get("/health", tags=["meta"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
