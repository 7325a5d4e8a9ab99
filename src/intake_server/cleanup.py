"""TTL CLI — ``intake-cleanup``.

Connects to the database and permanently deletes stored session documents
that have not been written for longer than the session TTL.  Intended for
cron jobs or one-off maintenance.

Examples::

    # Delete documents untouched for SESSION_TTL_DAYS (default 30)
    uv run intake-cleanup

    # Delete documents untouched for 7 days
    uv run intake-cleanup --days 7

    # Only summaries, everything regardless of age
    uv run intake-cleanup --days 0 --prefix assessment_summary_
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from intake_server.config import DEFAULT_CLEANUP_DAYS

logger = logging.getLogger(__name__)


async def run_cleanup(
    *,
    days: int = DEFAULT_CLEANUP_DAYS,
    prefix: str | None = None,
) -> int:
    """Execute the purge and return the number of deleted rows."""
    # Lazy imports to avoid loading DB machinery at module import time
    from intake_db.engine import dispose_engine, get_session_factory
    from intake_db.repository import EntryRepository

    repo = EntryRepository()
    factory = get_session_factory()

    try:
        async with factory() as db:
            affected = await repo.purge_older_than(
                db, older_than_days=days, prefix=prefix,
            )
            await db.commit()

        logger.info(
            "Cleanup complete: affected_rows=%d, days=%d, prefix=%s",
            affected, days, prefix,
        )
        return affected
    finally:
        await dispose_engine()


def cli() -> None:
    """Console-script entry point: ``intake-cleanup``."""
    parser = argparse.ArgumentParser(
        prog="intake-cleanup",
        description="Delete expired intake session documents from the database.",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=DEFAULT_CLEANUP_DAYS,
        help=(
            "Age threshold in days since the last write (default: "
            "$DEFAULT_CLEANUP_DAYS, falling back to $SESSION_TTL_DAYS). "
            "0 means no age filter."
        ),
    )
    parser.add_argument(
        "--prefix",
        default=None,
        help="Only delete keys starting with this prefix",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    affected = asyncio.run(run_cleanup(days=args.days, prefix=args.prefix))

    print(f"Affected rows: {affected}")
    sys.exit(0)
