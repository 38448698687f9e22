from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Tuple

import pytest

from cdrnet.config import get_settings
from cdrnet.schemas.events import CallEvent
from cdrnet.services.graph_builder import build_graph_payload

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def settings(tmp_path, monkeypatch):
    monkeypatch.setenv("STORAGE_DIR", str(tmp_path))
    monkeypatch.setenv("SQLITE_PATH", str(tmp_path / "events.db"))
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def make_events() -> Callable[..., List[CallEvent]]:
    counter = itertools.count()

    def factory(
        caller: Optional[str],
        receiver: Optional[str],
        count: int = 1,
        event_type: str = "call",
        duration: float = 60.0,
        start: datetime = BASE_TIME,
    ) -> List[CallEvent]:
        events = []
        for offset in range(count):
            index = next(counter)
            events.append(
                CallEvent(
                    record_id=f"evt-{index}",
                    event_type=event_type,
                    timestamp_utc=start + timedelta(minutes=offset),
                    caller_number=caller,
                    receiver_number=receiver,
                    call_duration_seconds=duration if event_type == "call" else 0.0,
                )
            )
        return events

    return factory


@pytest.fixture
def example_events(make_events) -> List[CallEvent]:
    """111-222 twelve times and 222-333 three times."""
    return make_events("111", "222", count=7) + make_events("222", "111", count=5) + make_events("333", "222", count=3)


@pytest.fixture
def example_payload(example_events, settings):
    return build_graph_payload(example_events, min_edge_weight=10, dataset_scope="case-1", settings=settings)


class ManualFrameScheduler:
    """Collects frame callbacks so tests decide when frames run."""

    def __init__(self) -> None:
        self._handles = itertools.count(1)
        self.pending: List[Tuple[int, Callable[[], None]]] = []
        self.requested = 0

    def request_frame(self, callback: Callable[[], None]) -> Any:
        handle = next(self._handles)
        self.pending.append((handle, callback))
        self.requested += 1
        return handle

    def cancel(self, handle: Any) -> None:
        self.pending = [item for item in self.pending if item[0] != handle]

    def run_pending(self) -> int:
        batch, self.pending = self.pending, []
        for _, callback in batch:
            callback()
        return len(batch)

    def run_until_idle(self, max_frames: int = 10_000) -> int:
        frames = 0
        while self.pending and frames < max_frames:
            frames += self.run_pending()
        return frames


@pytest.fixture
def scheduler() -> ManualFrameScheduler:
    return ManualFrameScheduler()
