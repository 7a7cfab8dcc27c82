"""Naive-UTC timestamps: every stored timestamp is UTC without tzinfo (portable across SQLite/Postgres)."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
