#!/usr/bin/env python
"""Bulk-ingest documents into the knowledge base.

Usage:
    python scripts/ingest.py ./docs                 # Ingest PDF/DOCX/TXT/MD files
    python scripts/ingest.py ./docs --verbose       # Show detailed progress
    python scripts/ingest.py --rebuild-index        # Recreate FAISS index from SQLite
"""
import argparse
import asyncio
import sys
from pathlib import Path
from datetime import datetime

import structlog

from knowledge_base import config
from knowledge_base.errors import KnowledgeBaseError
from knowledge_base.services import build_services

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        """Start progress reporting."""
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, file_path: Path):
        """Update progress."""
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {file_path.name[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, stats: dict):
        """Finish progress reporting."""
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Ingestion Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Documents processed:  {stats['documents_processed']}")
        print(f"  Documents failed:     {stats['documents_failed']}")
        print(f"  Chunks created:       {stats['chunks_created']}")
        print(f"  Embeddings generated: {stats['embeddings_generated']}")
        print(f"  Time elapsed:         {elapsed_seconds:.1f}s")

        if stats["documents_failed"] > 0:
            print(f"\n  Warning: {stats['documents_failed']} file(s) failed. Check logs for details.")

        print(f"\n{'=' * 60}\n")


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Ingest documents into the knowledge base",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "directory",
        type=Path,
        nargs="?",
        help="Directory containing PDF, DOCX, TXT or MD files",
    )

    parser.add_argument(
        "--rebuild-index",
        action="store_true",
        help="Recreate the vector index from passages stored in SQLite",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output",
    )

    args = parser.parse_args()

    if args.directory is None and not args.rebuild_index:
        parser.error("a directory is required unless --rebuild-index is given")

    services = build_services()
    progress = ProgressReporter(verbose=args.verbose)

    try:
        print("\nConfiguration:")
        print(f"   Embedding model:  {config.EMBEDDING_MODEL} (dim={config.EMBEDDING_DIMENSION})")
        print(f"   Chunk size:       {config.CHUNK_SIZE} chars")
        print(f"   Chunk overlap:    {config.CHUNK_OVERLAP} chars")
        print(f"   Batch size:       {config.EMBED_BATCH_SIZE}")
        print(f"   Database:         {config.DB_PATH}")

        await services.start()

        if args.rebuild_index:
            count = await services.ingest.rebuild_index()
            print(f"\nRebuilt vector index with {count} vectors.\n")
            return

        progress.start(f"Ingesting {args.directory}")

        stats = await services.ingest.ingest_directory(
            args.directory,
            progress_callback=progress.update,
        )

        progress.finish(stats)

        if stats["documents_failed"] > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nIngestion cancelled by user.\n")
        sys.exit(1)

    except (FileNotFoundError, KnowledgeBaseError) as e:
        print(f"\nError: {e}\n")
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
