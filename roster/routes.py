"""
HTTP routes for the rider roster API.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Iterable

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from roster.db import (
    DuplicateRiderError,
    InvalidRiderIdError,
    RiderQuery,
    RiderStore,
    RiderStoreError,
)
from roster.dependencies import get_rider_store, get_runtime
from roster.persistence import PersistenceMode, Runtime
from roster.schemas import (
    DatabaseStatus,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    RiderFields,
    RiderListResponse,
    RiderOut,
)
from roster.validation import validate_rider_fields

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def _error(status_code: int, error: str, details: Iterable[str] = ()) -> HTTPException:
    return HTTPException(
        status_code=status_code, detail={"error": error, "details": list(details)}
    )


def _validated_fields(payload: dict[str, Any]) -> RiderFields:
    errors = validate_rider_fields(payload)
    if errors:
        raise _error(400, "Validation failed", errors)
    return RiderFields.from_payload(payload)


@router.get("/riders", response_model=RiderListResponse, responses=ERROR_RESPONSES)
def list_riders(
    search: str = Query("", description="Substring of name, email or NRIC"),
    status: str = Query("all", description="Exact status, or 'all'"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    store: RiderStore = Depends(get_rider_store),
):
    query = RiderQuery(search=search, status=status, page=page, limit=limit)
    try:
        riders, total = store.list_riders(query)
    except RiderStoreError:
        logger.exception("Error fetching riders")
        raise _error(500, "Failed to fetch riders")
    return {"riders": [rider.as_dict() for rider in riders], "total": total}


@router.get("/riders/{rider_id}", response_model=RiderOut, responses=ERROR_RESPONSES)
def get_rider(rider_id: str, store: RiderStore = Depends(get_rider_store)):
    try:
        rider = store.get_rider(rider_id)
    except InvalidRiderIdError as exc:
        logger.warning("Error fetching rider: %s", exc)
        raise _error(500, "Failed to fetch rider", [str(exc)])
    except RiderStoreError:
        logger.exception("Error fetching rider %s", rider_id)
        raise _error(500, "Failed to fetch rider")
    if rider is None:
        raise _error(404, "Rider not found")
    return rider.as_dict()


@router.post(
    "/riders", status_code=201, response_model=RiderOut, responses=ERROR_RESPONSES
)
def create_rider(
    payload: dict[str, Any] = Body(...),
    store: RiderStore = Depends(get_rider_store),
):
    fields = _validated_fields(payload)
    try:
        if store.find_conflict(fields.email, fields.nric):
            raise _error(400, "Rider already exists", ["Email or NRIC already registered"])
        rider = store.create_rider(fields.for_create())
    except DuplicateRiderError:
        # Lost a race with a concurrent create; the store constraint caught it.
        logger.warning("Store rejected duplicate rider %s", fields.email)
        raise _error(400, "Duplicate field", ["Email or NRIC already exists"])
    except RiderStoreError:
        logger.exception("Error creating rider")
        raise _error(500, "Failed to create rider")
    logger.info("Created rider %s", rider.rider_id)
    return rider.as_dict()


@router.put("/riders/{rider_id}", response_model=RiderOut, responses=ERROR_RESPONSES)
def update_rider(
    rider_id: str,
    payload: dict[str, Any] = Body(...),
    store: RiderStore = Depends(get_rider_store),
):
    fields = _validated_fields(payload)
    try:
        if store.find_conflict(fields.email, fields.nric, exclude_id=rider_id):
            raise _error(
                400,
                "Duplicate field",
                ["Email or NRIC already registered by another rider"],
            )
        rider = store.update_rider(rider_id, fields.for_update())
    except InvalidRiderIdError as exc:
        logger.warning("Error updating rider: %s", exc)
        raise _error(400, "Failed to update rider", [str(exc)])
    except DuplicateRiderError:
        logger.warning("Store rejected duplicate update for rider %s", rider_id)
        raise _error(400, "Duplicate field", ["Email or NRIC already exists"])
    except RiderStoreError:
        logger.exception("Error updating rider %s", rider_id)
        raise _error(500, "Failed to update rider")
    if rider is None:
        raise _error(404, "Rider not found")
    logger.info("Updated rider %s", rider.rider_id)
    return rider.as_dict()


@router.delete(
    "/riders/{rider_id}", response_model=MessageResponse, responses=ERROR_RESPONSES
)
def delete_rider(rider_id: str, store: RiderStore = Depends(get_rider_store)):
    try:
        deleted = store.delete_rider(rider_id)
    except InvalidRiderIdError as exc:
        logger.warning("Error deleting rider: %s", exc)
        raise _error(500, "Failed to delete rider", [str(exc)])
    except RiderStoreError:
        logger.exception("Error deleting rider %s", rider_id)
        raise _error(500, "Failed to delete rider")
    if not deleted:
        raise _error(404, "Rider not found")
    logger.info("Deleted rider %s", rider_id)
    return MessageResponse(message="Rider deleted successfully")


@router.get("/health", response_model=HealthResponse)
def health(runtime: Runtime = Depends(get_runtime)):
    """Informational status of the process and its backing store."""
    riders = None
    if not runtime.available:
        status = "unavailable"
    else:
        status = "degraded" if runtime.mode is PersistenceMode.LOCAL else "ok"
        try:
            riders = runtime.store.count_riders()
        except RiderStoreError as exc:
            logger.warning("Health check could not count riders: %s", exc)

    return HealthResponse(
        status=status,
        mode=runtime.mode.value,
        environment=runtime.settings.app_env,
        database=DatabaseStatus(
            connected=runtime.connected, name=runtime.database_name
        ),
        riders=riders,
        uptimeSeconds=round(time.time() - runtime.started_at, 3),
    )
