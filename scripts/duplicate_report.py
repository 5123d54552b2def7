#!/usr/bin/env python3
"""
Duplicate Contact Report

Sweeps the whole contact population and prints every likely duplicate pair
as one JSON object per line. Read-only: nothing is merged.

Run with:
  python -m scripts.duplicate_report                   # default threshold
  python -m scripts.duplicate_report --threshold 0.8   # stricter
  python -m scripts.duplicate_report --limit 100       # first 100 pairs
"""

import argparse
import asyncio
import json
import sys
from typing import TextIO

from inbox_identity.config import get_settings
from inbox_identity.db.client import close_db, get_session_factory, init_db
from inbox_identity.identity.candidates import DuplicateFinder
from inbox_identity.identity.store import ContactStore, PostgresContactStore
from inbox_identity.kernel.logging import configure_logging


async def write_report(
    store: ContactStore,
    *,
    threshold: float | None = None,
    limit: int = 0,
    batch_size: int = 500,
    out: TextIO = sys.stdout,
) -> int:
    """Write duplicate pairs as JSON lines; returns the number of pairs written."""
    settings = get_settings()
    if threshold is not None:
        settings = settings.model_copy(update={"duplicate_threshold": threshold})

    finder = DuplicateFinder(store, settings)
    written = 0
    async for contact, candidate in finder.find_duplicate_pairs(batch_size=batch_size):
        record = {
            "contactId": contact.id,
            "duplicateId": candidate.contact_id,
            "similarity": candidate.similarity,
            "matchReason": candidate.match_reason,
        }
        out.write(json.dumps(record) + "\n")
        written += 1
        if limit and written >= limit:
            break
    return written


async def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Report likely duplicate contacts")
    parser.add_argument("--threshold", type=float, default=None, help="Duplicate score threshold (0-1)")
    parser.add_argument("--limit", type=int, default=0, help="Stop after N pairs (0 = no limit)")
    parser.add_argument("--batch-size", type=int, default=500, help="Contacts loaded per page")

    args = parser.parse_args(argv)
    if args.threshold is not None and not 0.0 <= args.threshold <= 1.0:
        parser.error("--threshold must be between 0 and 1")

    configure_logging()
    await init_db()
    try:
        store = PostgresContactStore(get_session_factory())
        written = await write_report(
            store,
            threshold=args.threshold,
            limit=args.limit,
            batch_size=args.batch_size,
        )
    finally:
        await close_db()

    print(f"{written} duplicate pair(s) found", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
