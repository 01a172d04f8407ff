#!/usr/bin/env python
"""Ingest PDF documents from the command line.

Usage:
    python scripts/ingest.py report.pdf                # Ingest one file
    python scripts/ingest.py docs/                     # Ingest every PDF in a directory
    python scripts/ingest.py docs/ --user-id alice -v  # Tag the owner, show details
"""
import argparse
import asyncio
import sys
from pathlib import Path
from datetime import datetime
from typing import List

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from docchat import config
from docchat.errors import DocChatError
from docchat.services import get_services
import structlog

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, file_path: Path):
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "#" * filled + "-" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {file_path.name[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, stats: dict):
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Ingestion Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Files ingested:   {stats['files_processed']}")
        print(f"  Files failed:     {stats['files_failed']}")
        print(f"  Chunks stored:    {stats['chunks_created']}")
        print(f"  Time elapsed:     {elapsed_seconds:.1f}s")

        if stats["chunks_created"] > 0 and elapsed_seconds > 0:
            rate = stats["chunks_created"] / elapsed_seconds
            print(f"  Indexing rate:    {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        if stats["files_failed"] > 0:
            print(f"Warning: {stats['files_failed']} file(s) failed to ingest.")
            print("   Check logs for details.\n")

        if stats["files_processed"] > 0:
            print(f"Database at: {config.DB_PATH}\n")


def collect_pdfs(paths: List[Path]) -> List[Path]:
    """Expand directories into the PDFs they contain, sorted by name."""
    files = []
    for path in paths:
        if path.is_dir():
            files.extend(sorted(path.rglob("*.pdf")))
        elif path.exists():
            files.append(path)
        else:
            raise FileNotFoundError(f"No such file or directory: {path}")
    return files


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Ingest PDF documents for chat",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/ingest.py report.pdf
  python scripts/ingest.py docs/ --user-id alice
        """,
    )
    parser.add_argument("paths", nargs="+", type=Path, help="PDF files or directories")
    parser.add_argument("--user-id", default=None, help="Owner recorded on each document")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output",
    )
    args = parser.parse_args()

    progress = ProgressReporter(verbose=args.verbose)
    stats = {"files_processed": 0, "files_failed": 0, "chunks_created": 0}

    try:
        print("\nConfiguration:")
        print(f"   Provider:         {config.LLM_PROVIDER}")
        print(f"   Embedding model:  {config.EMBEDDING_MODEL}")
        print(f"   Dimension:        {config.EMBEDDING_DIMENSION}")
        print(f"   Chunk size:       {config.CHUNK_SIZE} chars")
        print(f"   Chunk overlap:    {config.CHUNK_OVERLAP} chars")

        files = collect_pdfs(args.paths)
        services = await get_services()

        progress.start(f"Ingesting {len(files)} document(s)")

        for current, path in enumerate(files, 1):
            try:
                result = await services.ingest.ingest_pdf(
                    path.read_bytes(), path.name, user_id=args.user_id
                )
                stats["files_processed"] += 1
                stats["chunks_created"] += result.saved_chunks
                if args.verbose:
                    print(f"\n  {path.name}: {result.document_id} ({result.saved_chunks} chunks)")
            except DocChatError as e:
                stats["files_failed"] += 1
                logger.error("document_ingest_failed", path=str(path), error=str(e))
            progress.update(current, len(files), path)

        progress.finish(stats)

        if stats["files_failed"] > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nIngestion cancelled by user.\n")
        sys.exit(1)

    except FileNotFoundError as e:
        print(f"\nError: {e}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\nError: {e}\n")
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
