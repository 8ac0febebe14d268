"""Process a directory of stored WhatsApp webhook payloads.

Usage:
    DATABASE_URL=... WHATSAPP_BUSINESS_NUMBERS=918329446654 python scripts/process_webhooks.py <directory>

STORAGE_BACKEND=memory runs without a database (results are discarded).
Status-only files (name contains "status") are processed after the others.
Ctrl+C stops between files; already processed files stay committed.
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys


async def _run(directory: str) -> int:
    from wainbox.config import IngestSettings
    from wainbox.domain.ingest import build_ingestor

    settings = IngestSettings.from_env()
    ingestor = build_ingestor(settings)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop.set)
    except NotImplementedError:
        pass  # Windows: Ctrl+C raises KeyboardInterrupt instead

    summary = await ingestor.process_directory(directory, stop)

    print()
    print("Processing summary")
    print(f"  files processed:  {summary.files_processed}")
    print(f"  files failed:     {summary.files_failed}")
    print(f"  messages stored:  {summary.messages_stored}")
    print(f"  statuses applied: {summary.statuses_applied}")
    print(f"  item errors:      {summary.item_errors}")
    for name, error in summary.file_errors.items():
        print(f"  ! {name}: {error}")
    if summary.cancelled:
        print("  (stopped before all files were processed)")

    return 1 if summary.files_failed else 0


def main() -> None:
    if len(sys.argv) < 2:
        print("Usage: python scripts/process_webhooks.py <directory>")
        sys.exit(2)

    directory = sys.argv[1]
    if not os.path.isdir(directory):
        print(f"ERROR: not a directory: {directory}")
        sys.exit(2)

    if os.environ.get("STORAGE_BACKEND", "postgres") == "postgres":
        if not os.environ.get("DATABASE_URL"):
            print("ERROR: DATABASE_URL not set (or use STORAGE_BACKEND=memory)")
            sys.exit(1)

        from wainbox.infra.db import ensure_schema

        ensure_schema()

    sys.exit(asyncio.run(_run(directory)))


if __name__ == "__main__":
    main()
