"""
Command line access to the ingestion reconciler.

Usage:
    python -m kb_ingest.cli stats
    python -m kb_ingest.cli ingest <file_id>
    python -m kb_ingest.cli archive <file_id>
    python -m kb_ingest.cli restore <file_id>
    python -m kb_ingest.cli upload path/to/a.pdf path/to/b.docx
"""

import argparse
import asyncio
import logging
import mimetypes
from pathlib import Path

from kb_ingest.dependencies import apply_schema, build_controller, db_pool_context
from kb_ingest.errors import IngestionStatusError
from kb_ingest.models import UploadSource, UploadTask
from kb_ingest.settings import load_settings


def print_stats(controller) -> None:
    stats = controller.get_dashboard_stats()

    print("\n" + "=" * 50)
    print("KNOWLEDGE BASE")
    print("=" * 50)
    print(f"Active files:       {stats.total_files}")
    print(f"  ingested:         {stats.ingested}")
    print(f"  pending:          {stats.pending}")
    print(f"  failed:           {stats.failed}")
    print(f"  not started:      {stats.not_started}")
    print(f"Archived files:     {stats.archived}")
    print(f"Total vectors:      {stats.total_vectors}")
    print(f"Total chunks:       {stats.total_chunks}")
    print(f"Avg chunk size:     {stats.average_chunk_size}")
    print(f"Storage used:       {stats.storage_used / (1024 * 1024):.2f} MB")
    print(f"Recent uploads:     {stats.recent_uploads}")
    print(f"Success rate:       {stats.success_rate}%")
    if stats.stale_sources:
        print(f"Stale sources:      {', '.join(stats.stale_sources)}")


def print_progress(task: UploadTask) -> None:
    suffix = f" ({task.error})" if task.error else ""
    print(f"  {task.file_name}: {task.progress:3d}% [{task.phase}]{suffix}")


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Inspect and manage knowledge base ingestion status"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("stats", help="Show dashboard statistics")
    for name in ("ingest", "archive", "restore"):
        sub = subparsers.add_parser(name, help=f"{name.capitalize()} a file")
        sub.add_argument("file_id", help="Object store file ID")
    upload = subparsers.add_parser("upload", help="Upload files sequentially")
    upload.add_argument("paths", nargs="+", help="Files to upload")

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    settings = load_settings()

    async with db_pool_context(settings.database_url) as pool:
        await apply_schema(pool)
        controller = build_controller(settings, pool)

        result = await controller.refresh()
        for error in result.errors:
            print(f"Warning: {error.message}")

        try:
            if args.command == "ingest":
                record = await controller.ingest_file(args.file_id)
                print(f"[OK] {record.file_name}: {record.vector_count} vectors, {record.chunk_count} chunks")
            elif args.command == "archive":
                name = await controller.archive_file(args.file_id)
                print(f"[OK] {name} archived")
            elif args.command == "restore":
                record = await controller.restore_file(args.file_id)
                print(f"[OK] {record.file_name or args.file_id} restored")
            elif args.command == "upload":
                controller.uploads.on_progress = print_progress
                sources = [
                    UploadSource(
                        name=Path(path).name,
                        content=Path(path).read_bytes(),
                        mime_type=mimetypes.guess_type(path)[0] or "application/octet-stream",
                    )
                    for path in args.paths
                ]
                summary = await controller.upload_batch(sources)
                print(f"\nUploaded: {summary.succeeded}, failed: {summary.failed}")
                for file_name, reason in summary.failures.items():
                    print(f"  Error: {file_name}: {reason}")

        except IngestionStatusError as e:
            print(f"[FAILED] {e.message}")

        print_stats(controller)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
