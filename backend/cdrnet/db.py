from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .config import get_settings


def _ensure_schema(connection: sqlite3.Connection) -> None:
    cursor = connection.cursor()
    cursor.executescript(
        """
        CREATE TABLE IF NOT EXISTS events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            dataset_id TEXT NOT NULL,
            record_id TEXT UNIQUE,
            event_type TEXT NOT NULL DEFAULT 'unknown',
            timestamp_utc TEXT,
            caller_number TEXT,
            receiver_number TEXT,
            call_duration_seconds REAL NOT NULL DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_events_dataset_time
        ON events(dataset_id, timestamp_utc);

        CREATE INDEX IF NOT EXISTS idx_events_dataset_type
        ON events(dataset_id, event_type);
        """
    )
    connection.commit()


@contextmanager
def get_connection(readonly: bool = False) -> Iterator[sqlite3.Connection]:
    db_path = get_settings().sqlite_path
    # A read-only handle cannot create the schema, so a missing file is opened writable once.
    writable = not (readonly and db_path.exists())
    if writable:
        ensure_parent(db_path)
        connection = sqlite3.connect(db_path, check_same_thread=False)
    else:
        uri = f"file:{db_path}?mode=ro"
        connection = sqlite3.connect(uri, uri=True, check_same_thread=False)
    try:
        if writable:
            _ensure_schema(connection)
        yield connection
    finally:
        connection.close()


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
