"""CLI for the StorageHub upload queue."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from storagehub.config import Settings
from storagehub.exceptions import RecordStoreError
from storagehub.hub import StorageHub

if TYPE_CHECKING:
    from storagehub.transport.base import UploadEvent


class PrintSink:
    """Print one line per upload event."""

    def record_event(self, event: UploadEvent) -> None:
        percent = 100 * event.uploaded_bytes // event.total_bytes if event.total_bytes else 0
        print(
            f"  {event.file_name}: {event.status.name.lower()} "
            f"{event.uploaded_bytes}/{event.total_bytes} bytes ({percent}%)"
        )


def parse_metadata(pairs: list[str]) -> dict[str, Any]:
    """Parse repeated KEY=VALUE options into a metadata map."""
    metadata: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Metadata must be KEY=VALUE, got {pair!r}")
        metadata[key.strip()] = value
    return metadata


async def _add(hub: StorageHub, args: argparse.Namespace) -> None:
    path = Path(args.path).resolve()
    if not path.is_file():
        print(f"Error: file not found: {args.path}")
        sys.exit(1)
    try:
        metadata = parse_metadata(args.meta or [])
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    record = await hub.add_file(
        file_path=str(path),
        file_name=args.name or path.name,
        total_bytes=path.stat().st_size,
        metadata=metadata,
    )
    print(f"Queued {record.file_name} ({record.total_bytes} bytes) as #{record.id}")


async def _list(hub: StorageHub) -> None:
    records = await hub.get_file_list()
    if not records:
        print("Upload queue is empty.")
        return
    for r in records:
        print(
            f"  #{r.id} {r.file_name} {r.status.name.lower()} "
            f"{r.uploaded_bytes}/{r.total_bytes} bytes, {r.error_count} error(s)"
        )


async def _delete(hub: StorageHub, record_id: int) -> None:
    if await hub.delete_file(record_id):
        print(f"Removed #{record_id} from the upload queue")
    else:
        print(f"Error: no queued file #{record_id}")
        sys.exit(1)


async def _sync(hub: StorageHub) -> None:
    await hub.engine.sync_now()
    remaining = await hub.get_file_list()
    print(f"Sync complete. {len(remaining)} file(s) still queued.")


async def run(args: argparse.Namespace, settings: Settings) -> None:
    sink = PrintSink() if args.command == "sync" else None
    async with StorageHub(settings, event_sink=sink) as hub:
        if args.command == "add":
            await _add(hub, args)
        elif args.command == "list":
            await _list(hub)
        elif args.command == "delete":
            await _delete(hub, args.id)
        elif args.command == "sync":
            await _sync(hub)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="storagehub-upload",
        description="Queue files for resumable upload and drive the queue",
    )
    parser.add_argument("--database-url", help="Queue database URL (default: from settings)")

    subparsers = parser.add_subparsers(dest="command")
    add_parser = subparsers.add_parser("add", help="Queue a file for upload")
    add_parser.add_argument("path", help="Local file to upload")
    add_parser.add_argument("--name", help="Remote file name (default: base name)")
    add_parser.add_argument(
        "--meta", action="append", metavar="KEY=VALUE", help="Metadata sent with the upload"
    )
    subparsers.add_parser("list", help="Show queued files")
    delete_parser = subparsers.add_parser("delete", help="Remove a file from the queue")
    delete_parser.add_argument("id", type=int, help="Queue id as shown by 'list'")
    subparsers.add_parser("sync", help="Upload every eligible file now")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return

    overrides: dict[str, Any] = {"sync_on_add": False, "sync_interval_seconds": 0}
    if args.database_url:
        overrides["database_url"] = args.database_url
    settings = Settings(**overrides)

    if args.command == "sync":
        try:
            settings.validate_runtime()
        except ValueError as exc:
            print(f"Error: {exc}")
            sys.exit(1)

    try:
        asyncio.run(run(args, settings))
    except RecordStoreError as exc:
        print(f"Error: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
