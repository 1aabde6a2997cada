"""Upload engine API endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status

from storagehub.api.deps import get_hub
from storagehub.hub import StorageHub
from storagehub.schemas.transfer import FileResponse, SyncStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


def _status_of(hub: StorageHub) -> SyncStatusResponse:
    active = hub.syncing_file
    return SyncStatusResponse(
        is_syncing=hub.is_syncing,
        syncing_file=FileResponse.from_record(active) if active is not None else None,
        progress=hub.progress,
    )


@router.post("", response_model=SyncStatusResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_sync(hub: Annotated[StorageHub, Depends(get_hub)]) -> SyncStatusResponse:
    """Start an upload cycle unless one is already running."""
    if not hub.trigger_sync():
        logger.debug("Sync requested while a cycle is running")
    return _status_of(hub)


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(hub: Annotated[StorageHub, Depends(get_hub)]) -> SyncStatusResponse:
    """Report whether an upload is running and how far it got."""
    return _status_of(hub)
