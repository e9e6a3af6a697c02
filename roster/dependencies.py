"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from roster.db import RiderStore
from roster.persistence import Runtime

UNAVAILABLE_DETAIL = {
    "error": "Service unavailable",
    "details": ["Database connection is not ready. Please try again shortly."],
}


def get_runtime(request: Request) -> Runtime:
    """Return the Runtime the lifespan (or a test) attached to the app."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail=UNAVAILABLE_DETAIL)
    return runtime


def get_rider_store(runtime: Runtime = Depends(get_runtime)) -> RiderStore:
    if not runtime.available:
        raise HTTPException(status_code=503, detail=UNAVAILABLE_DETAIL)
    return runtime.store
