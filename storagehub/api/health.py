"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from storagehub.api.deps import get_hub
from storagehub.config import VERSION
from storagehub.hub import StorageHub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    syncing: bool


@router.get("/api/health", response_model=HealthResponse)
async def health_check(hub: Annotated[StorageHub, Depends(get_hub)]) -> HealthResponse:
    """Health check endpoint for monitoring."""
    db_status = "ok"
    try:
        await hub.get_file_list()
    except Exception:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    return HealthResponse(
        status="ok" if db_status == "ok" else "degraded",
        version=VERSION,
        database=db_status,
        syncing=hub.is_syncing,
    )
