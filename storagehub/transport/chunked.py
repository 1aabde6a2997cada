"""Resumable chunked upload protocol over HTTP.

Two calls make up the protocol. A POST asks the storage endpoint for an
upload session; each PUT then sends one byte range of the file against that
session. The server answers a partial PUT with ``308`` and a ``Range`` header
naming the bytes it holds, and a final PUT with ``200``/``201``.

Both steps take a ``TransferRecord`` and return it with its status and
counters classified from the response. Persisting the result is the caller's
job.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from storagehub.exceptions import InvalidRangeHeaderError
from storagehub.schemas.transfer import SyncStatus, TransferRecord
from storagehub.transport.base import content_type_for

if TYPE_CHECKING:
    from pathlib import Path

    from storagehub.config import Settings

logger = logging.getLogger(__name__)

_RANGE_PATTERN = re.compile(r"^\s*bytes=(\d+)-(\d+)\s*$")
_COMPLETE = frozenset({200, 201})
_RESUME_INCOMPLETE = 308
_SESSION_NOT_FOUND = 404
_RANGE_NOT_SATISFIABLE = 416


def parse_range_upper_bound(header: str | None) -> int:
    """Return the inclusive upper bound of a ``bytes=0-<upper>`` header."""
    if header is None:
        raise InvalidRangeHeaderError("Resume response carries no Range header")
    match = _RANGE_PATTERN.match(header)
    if match is None:
        raise InvalidRangeHeaderError(f"Malformed Range header: {header!r}")
    start, end = int(match.group(1)), int(match.group(2))
    if end < start:
        raise InvalidRangeHeaderError(f"Range header ends before it starts: {header!r}")
    return end


def chunk_bounds(record: TransferRecord, chunk_size: int) -> tuple[int, int]:
    """Half-open byte range of the next chunk to send for ``record``."""
    start = min(record.uploaded_bytes, record.total_bytes)
    return start, min(start + chunk_size, record.total_bytes)


def read_slice(path: str | Path, start: int, end: int) -> bytes:
    """Read ``[start, end)`` from a local file.

    Raises OSError when the file is missing or shorter than ``end``.
    """
    with open(path, "rb") as f:
        f.seek(start)
        data = f.read(end - start)
    if len(data) != end - start:
        msg = f"Expected {end - start} bytes at offset {start} of {path}, read {len(data)}"
        raise OSError(msg)
    return data


def _granted_session_id(response: httpx.Response) -> str | None:
    """Extract the session id from a successful session-initiation body."""
    if response.status_code not in _COMPLETE:
        return None
    try:
        body: Any = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    if body.get("success") is not True or body.get("statusCode") != 200:
        return None
    data = body.get("data")
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        return None
    session_id = data[0].get("id")
    # Some endpoints hand out numeric ids
    if isinstance(session_id, int) and not isinstance(session_id, bool):
        session_id = str(session_id)
    if not isinstance(session_id, str) or not session_id:
        return None
    return session_id


def _mark_failed(record: TransferRecord) -> TransferRecord:
    record.error_count += 1
    record.status = SyncStatus.ERROR
    return record


def _reset_session(record: TransferRecord) -> TransferRecord:
    record.session_id = None
    record.uploaded_bytes = 0
    record.status = SyncStatus.IDLE
    return record


class ChunkTransport:
    """Client for a resumable upload endpoint.

    Args:
        base_url: Endpoint base URL; the path suffixes are appended verbatim.
        api_key: Sent as ``X-Api-Key`` on every request.
        post_path: Suffix for session-initiation, followed by the file name.
        put_path: Suffix for chunk upload, followed by the session id.
        chunk_size: Maximum bytes sent per PUT.
        client: Pre-configured HTTP client; one is created (and owned) if omitted.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        post_path: str = "?uploadType=resumable&name=",
        put_path: str = "?upload_id=",
        chunk_size: int = 1024 * 89,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
        verify: bool = True,
    ) -> None:
        if chunk_size < 1:
            msg = f"chunk_size must be >= 1, got {chunk_size}"
            raise ValueError(msg)
        self._base_url = base_url
        self._api_key = api_key
        self._post_path = post_path
        self._put_path = put_path
        self.chunk_size = chunk_size
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            verify=verify,
            follow_redirects=False,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, client: httpx.AsyncClient | None = None
    ) -> ChunkTransport:
        return cls(
            settings.api_base_url,
            settings.api_key,
            post_path=settings.api_post_path,
            put_path=settings.api_put_path,
            chunk_size=settings.chunk_size_bytes,
            client=client,
            timeout=settings.request_timeout_seconds,
            verify=settings.verify_tls,
        )

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    def session_url(self, file_name: str) -> str:
        return f"{self._base_url}{self._post_path}{quote(file_name, safe='')}"

    def chunk_url(self, session_id: str) -> str:
        return f"{self._base_url}{self._put_path}{quote(session_id, safe='')}"

    async def request_session(self, record: TransferRecord) -> TransferRecord:
        """Ask the endpoint for an upload session for ``record``.

        Sets ``session_id`` and ``IDLE`` on success, ``ERROR`` otherwise.
        Network errors (``httpx.TransportError``) propagate to the caller.
        """
        payload = dict(record.metadata)
        payload["time"] = record.created_at
        payload["fileName"] = record.file_name
        headers = {
            "X-Api-Key": self._api_key,
            "Content-Type": "application/json",
            "X-Upload-Content-Type": content_type_for(record.file_name),
            "X-Upload-Content-Length": str(record.total_bytes),
        }

        response = await self._client.post(
            self.session_url(record.file_name), json=payload, headers=headers
        )

        session_id = _granted_session_id(response)
        if session_id is None:
            logger.warning(
                "Upload session refused for %s: HTTP %d",
                record.file_name,
                response.status_code,
            )
            record.session_id = None
            return _mark_failed(record)

        logger.debug("Upload session %s granted for %s", session_id, record.file_name)
        record.session_id = session_id
        record.status = SyncStatus.IDLE
        return record

    async def upload_chunk(self, record: TransferRecord) -> TransferRecord:
        """Send the next byte range of ``record`` and classify the response."""
        if not record.session_id:
            msg = f"Queued file {record.id} has no upload session"
            raise ValueError(msg)

        start, end = chunk_bounds(record, self.chunk_size)
        try:
            body = await asyncio.to_thread(read_slice, record.file_path, start, end)
        except OSError as exc:
            logger.warning("Cannot read %s for upload: %s", record.file_path, exc)
            return _mark_failed(record)

        headers = {
            "X-Api-Key": self._api_key,
            "Content-Type": content_type_for(record.file_name),
            "Content-Range": "bytes */*",
            "Content-Length": str(len(body)),
        }
        try:
            response = await self._client.put(
                self.chunk_url(record.session_id), content=body, headers=headers
            )
        except httpx.TransportError as exc:
            logger.warning("Chunk upload of %s failed: %s", record.file_name, exc)
            return _mark_failed(record)

        status_code = response.status_code
        if status_code in _COMPLETE:
            record.uploaded_bytes = record.total_bytes
            record.status = SyncStatus.UPLOADED
        elif status_code == _RESUME_INCOMPLETE:
            try:
                upper = parse_range_upper_bound(response.headers.get("Range"))
            except InvalidRangeHeaderError as exc:
                logger.warning("Unusable resume response for %s: %s", record.file_name, exc)
                return _mark_failed(record)
            acknowledged = min(upper + 1, record.total_bytes)
            if acknowledged <= record.uploaded_bytes:
                logger.warning(
                    "Upload of %s stalled at %d bytes", record.file_name, record.uploaded_bytes
                )
                return _mark_failed(record)
            record.uploaded_bytes = acknowledged
            record.status = SyncStatus.IDLE
        elif status_code == _RANGE_NOT_SATISFIABLE:
            logger.warning("Server rejected range of %s, restarting upload", record.file_name)
            _reset_session(record)
        elif status_code == _SESSION_NOT_FOUND:
            logger.warning("Upload session of %s expired, restarting upload", record.file_name)
            _reset_session(record)
        else:
            logger.warning(
                "Chunk upload of %s rejected: HTTP %d", record.file_name, status_code
            )
            _mark_failed(record)
        return record
