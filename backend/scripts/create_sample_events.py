"""Utility to write a synthetic call-record dataset for local testing.

Run:
    python backend/scripts/create_sample_events.py [--dataset-id sample] [--seed 7]

Numbers are grouped into a few tightly connected clusters with sparse traffic
between clusters, so community detection has something to find.
"""

from __future__ import annotations

import argparse
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

# Ensure project root is on sys.path when executed directly.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cdrnet.schemas.events import CallEvent  # noqa: E402
from cdrnet.services.events import record_events  # noqa: E402

DEFAULT_DATASET = "sample"


def make_numbers(clusters: int, cluster_size: int) -> List[List[str]]:
    return [
        [f"+1555{cluster:02d}{member:04d}" for member in range(cluster_size)]
        for cluster in range(clusters)
    ]


def build_events(
    dataset_id: str,
    clusters: int,
    cluster_size: int,
    events_per_cluster: int,
    bridge_events: int,
    days: int,
    seed: int,
) -> List[CallEvent]:
    rng = random.Random(seed)
    groups = make_numbers(clusters, cluster_size)
    end = datetime.now(timezone.utc).replace(microsecond=0)
    start = end - timedelta(days=days)
    span = int((end - start).total_seconds())

    def event(index: int, caller: str, receiver: str) -> CallEvent:
        is_call = rng.random() < 0.6
        return CallEvent(
            record_id=f"{dataset_id}:{index}",
            event_type="call" if is_call else "sms",
            timestamp_utc=start + timedelta(seconds=rng.randrange(span)),
            caller_number=caller,
            receiver_number=receiver,
            call_duration_seconds=float(rng.randint(10, 900)) if is_call else 0.0,
        )

    events: List[CallEvent] = []
    for group in groups:
        # A hub per cluster so each community has an obvious top node.
        hub = group[0]
        for _ in range(events_per_cluster):
            caller = hub if rng.random() < 0.4 else rng.choice(group)
            receiver = rng.choice([number for number in group if number != caller])
            events.append(event(len(events), caller, receiver))

    for _ in range(bridge_events):
        first, second = rng.sample(groups, 2) if len(groups) > 1 else (groups[0], groups[0])
        caller = rng.choice(first)
        receiver = rng.choice([number for number in second if number != caller])
        events.append(event(len(events), caller, receiver))

    return events


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a synthetic call-record dataset for testing")
    parser.add_argument("--dataset-id", default=DEFAULT_DATASET, help=f"Dataset id (default: {DEFAULT_DATASET})")
    parser.add_argument("--clusters", type=int, default=4, help="Number of contact clusters")
    parser.add_argument("--cluster-size", type=int, default=8, help="Numbers per cluster")
    parser.add_argument("--events-per-cluster", type=int, default=400, help="Events inside each cluster")
    parser.add_argument("--bridge-events", type=int, default=30, help="Events between clusters")
    parser.add_argument("--days", type=int, default=30, help="Spread events over the last N days")
    parser.add_argument("--seed", type=int, default=7, help="Random seed")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    if args.cluster_size < 2:
        raise SystemExit("--cluster-size must be at least 2")
    events = build_events(
        args.dataset_id,
        args.clusters,
        args.cluster_size,
        args.events_per_cluster,
        args.bridge_events,
        args.days,
        args.seed,
    )
    recorded, skipped = record_events(args.dataset_id, events)
    print(f"Dataset '{args.dataset_id}': recorded {recorded} events ({skipped} duplicates skipped)")


if __name__ == "__main__":
    main()
