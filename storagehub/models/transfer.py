"""Upload queue model."""

from __future__ import annotations

from sqlalchemy import Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from storagehub.models.base import Base


class TransferFile(Base):
    """One row per file queued for upload.

    Column names follow the on-disk layout shared with other clients of the
    same queue database, hence the camelCase names.
    """

    __tablename__ = "storage_hub_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    time: Mapped[str | None] = mapped_column("time", Text, nullable=True)
    file_path: Mapped[str | None] = mapped_column("filePath", Text, nullable=True)
    file_name: Mapped[str | None] = mapped_column("fileName", Text, nullable=True)
    total_bytes: Mapped[int] = mapped_column(
        "totalBytes", Integer, nullable=False, default=0, server_default=text("0")
    )
    uploaded_bytes: Mapped[int] = mapped_column(
        "uploadedBytes", Integer, nullable=False, default=0, server_default=text("0")
    )
    sync_status: Mapped[int] = mapped_column(
        "syncStatus", Integer, nullable=False, default=0, server_default=text("0")
    )
    session_id: Mapped[str | None] = mapped_column("sessionId", Text, nullable=True)
    error_count: Mapped[int] = mapped_column(
        "errorCount", Integer, nullable=False, default=0, server_default=text("0")
    )
    process_start_time: Mapped[int] = mapped_column(
        "processStartTime", Integer, nullable=False, default=0, server_default=text("0")
    )
    metadata_json: Mapped[str | None] = mapped_column("metadata", Text, nullable=True)

    def __repr__(self) -> str:
        return f"<TransferFile(id={self.id}, status={self.sync_status})>"
