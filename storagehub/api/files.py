"""Upload queue API endpoints."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from storagehub.api.deps import get_hub
from storagehub.hub import StorageHub
from storagehub.schemas.transfer import FileCreate, FileResponse, SyncStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])


def _parse_status(value: str | None) -> SyncStatus | None:
    if value is None:
        return None
    try:
        return SyncStatus[value.strip().upper()]
    except KeyError:
        allowed = ", ".join(s.name.lower() for s in SyncStatus)
        raise HTTPException(
            status_code=422, detail=f"Unknown status {value!r}. Allowed: {allowed}"
        ) from None


@router.post("", response_model=FileResponse, status_code=status.HTTP_201_CREATED)
async def add_file(
    body: FileCreate,
    hub: Annotated[StorageHub, Depends(get_hub)],
) -> FileResponse:
    """Queue a local file for upload."""
    path = Path(body.file_path)
    if not path.is_file():
        raise HTTPException(status_code=422, detail=f"File not found: {body.file_path}")

    total_bytes = path.stat().st_size
    if body.total_bytes is not None and body.total_bytes != total_bytes:
        raise HTTPException(
            status_code=422,
            detail=f"total_bytes is {body.total_bytes} but the file holds {total_bytes} bytes",
        )
    record = await hub.add_file(
        file_path=str(path),
        file_name=body.file_name or path.name,
        total_bytes=total_bytes,
        metadata=body.metadata,
        time=body.time,
    )
    return FileResponse.from_record(record)


@router.get("", response_model=list[FileResponse])
async def list_files(
    hub: Annotated[StorageHub, Depends(get_hub)],
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> list[FileResponse]:
    """List queued files, newest first."""
    records = await hub.get_file_list(status=_parse_status(status_filter))
    return [FileResponse.from_record(r) for r in records]


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    file_id: int,
    hub: Annotated[StorageHub, Depends(get_hub)],
) -> Response:
    """Remove a file from the upload queue."""
    if not await hub.delete_file(file_id):
        raise HTTPException(status_code=404, detail="Queued file not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
