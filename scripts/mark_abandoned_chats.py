#!/usr/bin/env python3
"""Mark idle case chats as abandoned.

Runs one abandonment sweep against DATABASE_URL and exits. Suitable for
cron when the in-process sweeper is disabled (ABANDON_SWEEP_ENABLED=false):

    */15 * * * * cd /srv/casechat && python scripts/mark_abandoned_chats.py

Use --dry-run to list the chats that would be abandoned without writing.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path


ROOT_DIR = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT_DIR / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# Import after adjusting sys.path.
from casechat.chat.sweeper import AbandonmentSweeper
from casechat.core.config import get_settings
from casechat.db.base import close_all, get_session_maker


def _parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument(
        "--timeout",
        type=int,
        default=settings.ABANDON_TIMEOUT_MINUTES,
        help=f"Minutes without activity before a chat is abandoned. Default: {settings.ABANDON_TIMEOUT_MINUTES}",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only list chats that would be abandoned.",
    )
    return parser.parse_args()


async def _run(timeout: int, dry_run: bool) -> int:
    sweeper = AbandonmentSweeper(get_session_maker(), timeout_minutes=timeout)
    try:
        return await sweeper.run_once(dry_run=dry_run)
    finally:
        await close_all()


def main() -> int:
    args = _parse_args()
    if args.timeout < 1:
        print("--timeout must be at least 1 minute", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, get_settings().LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    count = asyncio.run(_run(args.timeout, args.dry_run))
    if args.dry_run:
        print(f"[dry-run] {count} chat(s) would be marked as abandoned (timeout={args.timeout} min)")
    else:
        print(f"[ok] Marked {count} chat(s) as abandoned (timeout={args.timeout} min)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
