from __future__ import annotations

import argparse
import json
from pathlib import Path

import sys

# Ensure project root is on sys.path when executed directly.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cdrnet.config import get_settings  # noqa: E402
from cdrnet.schemas.graph import GraphQuery  # noqa: E402
from cdrnet.services.events import list_datasets  # noqa: E402
from cdrnet.services.graph_builder import DataUnavailable, build_network  # noqa: E402
from cdrnet.services.layout import LayoutEngine  # noqa: E402
from cdrnet.services.render import SvgSurface  # noqa: E402


def _add_query_arguments(parser: argparse.ArgumentParser) -> None:
    settings = get_settings()
    parser.add_argument("--dataset", help="Dataset id (default: most recently recorded)")
    parser.add_argument("--from", dest="from_", help="ISO 8601 lower bound")
    parser.add_argument("--to", help="ISO 8601 upper bound")
    parser.add_argument("--event-type", default="all", choices=["all", "call", "sms", "data", "unknown"])
    parser.add_argument("--min-edge-weight", type=int, default=settings.network_default_min_edge_weight)
    parser.add_argument("--limit-nodes", type=int, default=settings.network_default_limit_nodes)


def _query_from_args(args: argparse.Namespace) -> GraphQuery:
    return GraphQuery(
        dataset_scope=args.dataset,
        from_=args.from_,
        to=args.to,
        event_type=args.event_type,
        min_edge_weight=args.min_edge_weight,
        limit_nodes=args.limit_nodes,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Contact network maintenance helpers")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("datasets", help="List recorded datasets, newest first")

    stats_parser = subparsers.add_parser("stats", help="Build the network graph and print its statistics")
    _add_query_arguments(stats_parser)

    render_parser = subparsers.add_parser("render", help="Stabilize the layout headlessly and write an SVG")
    _add_query_arguments(render_parser)
    render_parser.add_argument("output", type=Path, help="Destination SVG file")
    render_parser.add_argument("--seed", type=int, default=None, help="Seed for initial node positions")

    args = parser.parse_args()

    if args.command == "datasets":
        print(json.dumps([item.model_dump(mode="json") for item in list_datasets()], indent=2))
        return

    try:
        payload = build_network(_query_from_args(args))
    except DataUnavailable as exc:
        raise SystemExit(str(exc)) from exc

    if args.command == "stats":
        summary = {
            "datasetScope": payload.dataset_scope,
            "stats": payload.stats.model_dump(mode="json", by_alias=True),
            "communities": len(payload.communities),
            "truncated": payload.truncated,
            "truncationReason": payload.truncation_reason,
        }
        print(json.dumps(summary, indent=2))
    elif args.command == "render":
        surface = SvgSurface()
        engine = LayoutEngine(surface, seed=args.seed)
        engine.load(payload)
        frames = engine.run_until_stable()
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(surface.to_svg(), encoding="utf-8")
        print(f"Rendered {payload.stats.node_count} nodes after {frames} frames to {args.output.resolve()}")
    else:  # pragma: no cover - argparse guards command set
        parser.error("Unknown command")


if __name__ == "__main__":
    main()
