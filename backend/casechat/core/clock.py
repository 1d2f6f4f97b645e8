"""Wall-clock helper.

Timestamps are stored as naive UTC so MySQL and SQLite compare them the
same way.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
