"""Tests for the resumable chunk upload protocol."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import httpx
import pytest

from storagehub.exceptions import InvalidRangeHeaderError
from storagehub.schemas.transfer import SyncStatus, TransferRecord
from storagehub.transport.chunked import (
    ChunkTransport,
    chunk_bounds,
    parse_range_upper_bound,
    read_slice,
)
from tests.conftest import (
    TEST_API_KEY,
    TEST_BASE_URL,
    FakeUploadServer,
    resume_incomplete,
    session_granted,
)

if TYPE_CHECKING:
    from pathlib import Path


def _transport(server: FakeUploadServer, chunk_size: int = 89000) -> ChunkTransport:
    return ChunkTransport(
        TEST_BASE_URL,
        TEST_API_KEY,
        chunk_size=chunk_size,
        client=server.client(),
    )


def _record(path: Path, **overrides: object) -> TransferRecord:
    values: dict[str, object] = {
        "id": 1,
        "file_path": str(path),
        "file_name": path.name,
        "created_at": "2026-01-01T00:00:00+00:00",
        "total_bytes": path.stat().st_size,
    }
    values.update(overrides)
    return TransferRecord(**values)  # type: ignore[arg-type]


class TestParseRange:
    @pytest.mark.parametrize(
        ("header", "upper"),
        [("bytes=0-88999", 88999), ("bytes=0-0", 0), (" bytes=0-5 ", 5)],
    )
    def test_valid_headers(self, header: str, upper: int) -> None:
        assert parse_range_upper_bound(header) == upper

    @pytest.mark.parametrize(
        "header",
        [None, "", "bytes=0-", "bytes 0-10", "bytes=10-5", "items=0-10", "bytes=0-1x"],
    )
    def test_invalid_headers(self, header: str | None) -> None:
        with pytest.raises(InvalidRangeHeaderError):
            parse_range_upper_bound(header)


class TestChunkBounds:
    def test_first_chunk(self, sample_file: Path) -> None:
        assert chunk_bounds(_record(sample_file), 89000) == (0, 89000)

    def test_last_chunk_is_clipped(self, sample_file: Path) -> None:
        record = _record(sample_file, uploaded_bytes=178000)
        assert chunk_bounds(record, 89000) == (178000, 200000)

    def test_read_slice_reads_exact_range(self, sample_file: Path) -> None:
        data = read_slice(sample_file, 10, 20)
        assert data == sample_file.read_bytes()[10:20]

    def test_read_slice_rejects_short_file(self, sample_file: Path) -> None:
        with pytest.raises(OSError, match="read"):
            read_slice(sample_file, 199_990, 200_010)


class TestRequestSession:
    async def test_success_sets_session(
        self, upload_server: FakeUploadServer, sample_file: Path
    ) -> None:
        upload_server.post_script.append(session_granted("sess-42"))
        record = _record(sample_file, metadata={"album": "trip"})

        result = await _transport(upload_server).request_session(record)

        assert result.session_id == "sess-42"
        assert result.status == SyncStatus.IDLE
        assert result.error_count == 0

        request = upload_server.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{TEST_BASE_URL}?uploadType=resumable&name=photo.jpg"
        assert request.headers["X-Api-Key"] == TEST_API_KEY
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["X-Upload-Content-Type"] == "image/jpeg"
        assert request.headers["X-Upload-Content-Length"] == "200000"
        assert json.loads(request.content) == {
            "album": "trip",
            "time": "2026-01-01T00:00:00+00:00",
            "fileName": "photo.jpg",
        }

    async def test_metadata_is_not_mutated(
        self, upload_server: FakeUploadServer, sample_file: Path
    ) -> None:
        upload_server.post_script.append(session_granted("s"))
        record = _record(sample_file, metadata={"k": "v"})
        await _transport(upload_server).request_session(record)
        assert record.metadata == {"k": "v"}

    async def test_created_status_is_success(
        self, upload_server: FakeUploadServer, sample_file: Path
    ) -> None:
        upload_server.post_script.append(
            httpx.Response(
                201, json={"success": True, "statusCode": 200, "data": [{"id": "s"}, {"id": "x"}]}
            )
        )
        result = await _transport(upload_server).request_session(_record(sample_file))
        assert result.session_id == "s"

    async def test_numeric_session_id_is_accepted(
        self, upload_server: FakeUploadServer, sample_file: Path
    ) -> None:
        upload_server.post_script.append(
            httpx.Response(200, json={"success": True, "statusCode": 200, "data": [{"id": 12345}]})
        )
        result = await _transport(upload_server).request_session(_record(sample_file))
        assert result.session_id == "12345"
        assert result.status == SyncStatus.IDLE
        assert result.error_count == 0

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, json={"success": False, "statusCode": 200, "data": [{"id": "s"}]}),
            httpx.Response(200, json={"success": True, "statusCode": 500, "data": [{"id": "s"}]}),
            httpx.Response(200, json={"success": True, "statusCode": 200, "data": []}),
            httpx.Response(
                200, json={"success": True, "statusCode": 200, "data": [{"id": True}]}
            ),
            httpx.Response(200, json={"success": True, "statusCode": 200}),
            httpx.Response(200, text="<html>maintenance</html>"),
            httpx.Response(403, json={"success": True, "statusCode": 200, "data": [{"id": "s"}]}),
            httpx.Response(500),
        ],
    )
    async def test_refusals_mark_error(
        self, upload_server: FakeUploadServer, sample_file: Path, response: httpx.Response
    ) -> None:
        upload_server.post_script.append(response)
        result = await _transport(upload_server).request_session(_record(sample_file))
        assert result.status == SyncStatus.ERROR
        assert result.session_id is None
        assert result.error_count == 1

    async def test_network_errors_propagate(
        self, upload_server: FakeUploadServer, sample_file: Path
    ) -> None:
        upload_server.post_script.append(httpx.ConnectError("connection refused"))
        record = _record(sample_file)
        with pytest.raises(httpx.ConnectError):
            await _transport(upload_server).request_session(record)
        assert record.error_count == 0


class TestUploadChunk:
    async def test_partial_chunk_resumes_from_server_offset(
        self, upload_server: FakeUploadServer, sample_file: Path
    ) -> None:
        upload_server.put_script.append(resume_incomplete(88999))
        record = _record(sample_file, session_id="sess-1")

        result = await _transport(upload_server).upload_chunk(record)

        assert result.uploaded_bytes == 89000
        assert result.status == SyncStatus.IDLE
        assert result.session_id == "sess-1"

        request = upload_server.requests[0]
        assert request.method == "PUT"
        assert str(request.url) == f"{TEST_BASE_URL}?upload_id=sess-1"
        assert request.headers["Content-Range"] == "bytes */*"
        assert request.headers["Content-Length"] == "89000"
        assert request.headers["Content-Type"] == "image/jpeg"
        assert request.headers["X-Api-Key"] == TEST_API_KEY
        assert request.content == sample_file.read_bytes()[:89000]

    async def test_sends_slice_from_current_offset(
        self, upload_server: FakeUploadServer, sample_file: Path
    ) -> None:
        upload_server.put_script.append(httpx.Response(200))
        record = _record(sample_file, session_id="s", uploaded_bytes=178000)

        result = await _transport(upload_server).upload_chunk(record)

        assert upload_server.requests[0].content == sample_file.read_bytes()[178000:]
        assert upload_server.requests[0].headers["Content-Length"] == "22000"
        assert result.status == SyncStatus.UPLOADED
        assert result.uploaded_bytes == 200000

    @pytest.mark.parametrize("status_code", [200, 201])
    async def test_complete(
        self, upload_server: FakeUploadServer, sample_file: Path, status_code: int
    ) -> None:
        upload_server.put_script.append(httpx.Response(status_code))
        result = await _transport(upload_server).upload_chunk(_record(sample_file, session_id="s"))
        assert result.status == SyncStatus.UPLOADED
        assert result.uploaded_bytes == result.total_bytes

    async def test_server_offset_is_clamped_to_file_size(
        self, upload_server: FakeUploadServer, sample_file: Path
    ) -> None:
        upload_server.put_script.append(resume_incomplete(500_000))
        result = await _transport(upload_server).upload_chunk(_record(sample_file, session_id="s"))
        assert result.uploaded_bytes == 200000

    async def test_no_progress_is_a_failure(
        self, upload_server: FakeUploadServer, sample_file: Path
    ) -> None:
        upload_server.put_script.append(resume_incomplete(88999))
        record = _record(sample_file, session_id="s", uploaded_bytes=89000)

        result = await _transport(upload_server).upload_chunk(record)

        assert result.status == SyncStatus.ERROR
        assert result.error_count == 1
        assert result.session_id == "s"
        assert result.uploaded_bytes == 89000

    async def test_empty_file_with_resume_reply_is_a_failure(
        self, upload_server: FakeUploadServer, tmp_path: Path
    ) -> None:
        path = tmp_path / "empty.bin"
        path.write_bytes(b"")
        upload_server.put_script.append(resume_incomplete(0))
        record = TransferRecord(
            id=1, file_path=str(path), file_name="empty.bin", total_bytes=0, session_id="s"
        )

        result = await _transport(upload_server).upload_chunk(record)

        assert result.status == SyncStatus.ERROR
        assert result.uploaded_bytes == 0

    async def test_range_not_satisfiable_resets_session(
        self, upload_server: FakeUploadServer, sample_file: Path
    ) -> None:
        upload_server.put_script.append(httpx.Response(416))
        record = _record(sample_file, session_id="s", uploaded_bytes=89000, error_count=1)

        result = await _transport(upload_server).upload_chunk(record)

        assert result.session_id is None
        assert result.uploaded_bytes == 0
        assert result.status == SyncStatus.IDLE
        assert result.error_count == 1

    async def test_session_not_found_resets_session(
        self, upload_server: FakeUploadServer, sample_file: Path
    ) -> None:
        upload_server.put_script.append(httpx.Response(404))
        record = _record(sample_file, session_id="s", uploaded_bytes=89000)

        result = await _transport(upload_server).upload_chunk(record)

        assert result.session_id is None
        assert result.uploaded_bytes == 0
        assert result.status == SyncStatus.IDLE
        assert result.error_count == 0

    @pytest.mark.parametrize(
        "outcome",
        [
            httpx.Response(500),
            httpx.Response(403),
            httpx.Response(308),
            httpx.Response(308, headers={"Range": "garbage"}),
            httpx.ConnectError("reset by peer"),
            httpx.ReadTimeout("timed out"),
        ],
    )
    async def test_failures_keep_resume_point(
        self,
        upload_server: FakeUploadServer,
        sample_file: Path,
        outcome: httpx.Response | Exception,
    ) -> None:
        upload_server.put_script.append(outcome)
        record = _record(sample_file, session_id="s", uploaded_bytes=89000)

        result = await _transport(upload_server).upload_chunk(record)

        assert result.status == SyncStatus.ERROR
        assert result.error_count == 1
        assert result.session_id == "s"
        assert result.uploaded_bytes == 89000

    async def test_missing_local_file_is_a_failure(
        self, upload_server: FakeUploadServer, tmp_path: Path
    ) -> None:
        record = TransferRecord(
            id=1,
            file_path=str(tmp_path / "gone.bin"),
            file_name="gone.bin",
            total_bytes=10,
            session_id="s",
        )
        result = await _transport(upload_server).upload_chunk(record)
        assert result.status == SyncStatus.ERROR
        assert result.error_count == 1
        assert upload_server.requests == []

    async def test_requires_session(
        self, upload_server: FakeUploadServer, sample_file: Path
    ) -> None:
        with pytest.raises(ValueError, match="no upload session"):
            await _transport(upload_server).upload_chunk(_record(sample_file))


class TestTransportLifecycle:
    async def test_injected_client_is_not_closed(self, upload_server: FakeUploadServer) -> None:
        client = upload_server.client()
        transport = ChunkTransport(TEST_BASE_URL, TEST_API_KEY, client=client)
        await transport.close()
        assert client.is_closed is False
        await client.aclose()

    async def test_owned_client_is_closed(self) -> None:
        transport = ChunkTransport(TEST_BASE_URL, TEST_API_KEY)
        await transport.close()
        assert transport._client.is_closed

    def test_rejects_zero_chunk_size(self) -> None:
        with pytest.raises(ValueError, match="chunk_size"):
            ChunkTransport(TEST_BASE_URL, TEST_API_KEY, chunk_size=0)

    async def test_urls_escape_names(self, upload_server: FakeUploadServer) -> None:
        client = upload_server.client()
        transport = ChunkTransport("https://h/u", "k", client=client)
        assert (
            transport.session_url("a b&c.jpg")
            == "https://h/u?uploadType=resumable&name=a%20b%26c.jpg"
        )
        assert transport.chunk_url("x/y") == "https://h/u?upload_id=x%2Fy"
        await client.aclose()
