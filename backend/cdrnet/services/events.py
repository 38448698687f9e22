from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Tuple

from ..db import get_connection
from ..schemas.events import CallEvent, DatasetSummary
from ..schemas.graph import GraphQuery
from ..utils.phone import canonicalize_number

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_utc_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="microseconds")


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Ignoring unparseable stored timestamp %r", value)
        return None


def record_events(dataset_id: str, events: Iterable[CallEvent]) -> Tuple[int, int]:
    """Store canonical events for a dataset and return (recorded, skipped)."""
    recorded = 0
    skipped = 0
    with get_connection() as conn:
        cursor = conn.cursor()
        for event in events:
            record_id = event.record_id or f"{dataset_id}:{uuid.uuid4().hex}"
            cursor.execute(
                """
                INSERT OR IGNORE INTO events (
                    dataset_id,
                    record_id,
                    event_type,
                    timestamp_utc,
                    caller_number,
                    receiver_number,
                    call_duration_seconds
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    dataset_id,
                    record_id,
                    event.event_type,
                    to_utc_iso(event.timestamp_utc),
                    canonicalize_number(event.caller_number),
                    canonicalize_number(event.receiver_number),
                    float(event.call_duration_seconds or 0.0),
                ),
            )
            if cursor.rowcount > 0:
                recorded += 1
            else:
                skipped += 1
        conn.commit()

    if skipped:
        logger.info("Skipped %d duplicate events for dataset %s", skipped, dataset_id)
    return recorded, skipped


def list_datasets() -> List[DatasetSummary]:
    with get_connection(readonly=True) as conn:
        rows = conn.execute(
            """
            SELECT dataset_id, COUNT(*), MIN(timestamp_utc), MAX(timestamp_utc), MAX(id) AS newest
            FROM events
            GROUP BY dataset_id
            ORDER BY newest DESC
            """
        ).fetchall()

    return [
        DatasetSummary(
            dataset_id=row[0],
            event_count=row[1],
            first_event=_parse_timestamp(row[2]),
            last_event=_parse_timestamp(row[3]),
        )
        for row in rows
    ]


def resolve_dataset(scope: Optional[str]) -> Optional[str]:
    if scope and scope.strip():
        return scope.strip()
    with get_connection(readonly=True) as conn:
        row = conn.execute("SELECT dataset_id FROM events ORDER BY id DESC LIMIT 1").fetchone()
    return row[0] if row else None


def fetch_events(dataset_id: str, query: GraphQuery) -> List[CallEvent]:
    clauses = [
        "dataset_id = ?",
        "caller_number IS NOT NULL AND caller_number != ''",
        "receiver_number IS NOT NULL AND receiver_number != ''",
    ]
    params: List[Any] = [dataset_id]
    if query.from_ is not None:
        clauses.append("timestamp_utc >= ?")
        params.append(to_utc_iso(query.from_))
    if query.to is not None:
        clauses.append("timestamp_utc <= ?")
        params.append(to_utc_iso(query.to))
    if query.event_type != "all":
        clauses.append("event_type = ?")
        params.append(query.event_type)

    sql = (
        "SELECT record_id, event_type, timestamp_utc, caller_number, receiver_number, call_duration_seconds "
        f"FROM events WHERE {' AND '.join(clauses)} ORDER BY timestamp_utc ASC, id ASC"
    )
    with get_connection(readonly=True) as conn:
        rows = conn.execute(sql, params).fetchall()

    return [
        CallEvent(
            record_id=row[0],
            event_type=row[1],
            timestamp_utc=_parse_timestamp(row[2]),
            caller_number=row[3],
            receiver_number=row[4],
            call_duration_seconds=row[5] or 0.0,
        )
        for row in rows
    ]
