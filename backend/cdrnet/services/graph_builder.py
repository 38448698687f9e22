from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

import networkx as nx

from ..config import Settings, get_settings
from ..schemas.events import CallEvent
from ..schemas.graph import (
    ISOLATE_COMMUNITY,
    Community,
    CommunityMember,
    GraphData,
    GraphEdge,
    GraphNode,
    GraphPayload,
    GraphQuery,
    GraphStats,
)
from ..utils.identity import normalize
from ..utils.phone import contact_pair
from .events import as_utc, fetch_events, resolve_dataset

logger = logging.getLogger(__name__)

MAX_BUILD_WARNINGS = 10


class DataUnavailable(Exception):
    """Raised when no dataset is selected or no events match the filters."""


class InvalidGraphQuery(ValueError):
    """Raised when graph filters cannot be applied."""


@dataclass
class _PartyStats:
    total_events: int = 0
    total_duration: float = 0.0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    def observe(self, timestamp: Optional[datetime], duration: float) -> None:
        self.total_events += 1
        self.total_duration += duration
        if timestamp is not None:
            if self.first_seen is None or timestamp < self.first_seen:
                self.first_seen = timestamp
            if self.last_seen is None or timestamp > self.last_seen:
                self.last_seen = timestamp


@dataclass
class ContactAggregation:
    pairs: Dict[Tuple[str, str], _PartyStats] = field(default_factory=dict)
    parties: Dict[str, _PartyStats] = field(default_factory=dict)
    self_calls: int = 0
    warnings: List[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        self.warnings.append(message)


def aggregate_contacts(events: Iterable[CallEvent]) -> ContactAggregation:
    """Group events into undirected contact pairs and per-number totals."""
    aggregation = ContactAggregation()
    for event in events:
        caller = normalize(event.caller_number)
        receiver = normalize(event.receiver_number)
        if not caller or not receiver:
            aggregation.warn(f"Skipped event {event.record_id or '?'}: missing caller or receiver")
            continue
        if caller == receiver:
            aggregation.self_calls += 1
            continue

        duration = float(event.call_duration_seconds or 0.0) if event.event_type == "call" else 0.0
        timestamp = as_utc(event.timestamp_utc)
        aggregation.pairs.setdefault(contact_pair(caller, receiver), _PartyStats()).observe(timestamp, duration)
        for party in (caller, receiver):
            aggregation.parties.setdefault(party, _PartyStats()).observe(timestamp, duration)
    return aggregation


def edge_weight(stats: _PartyStats, duration_weight: float = 0.0) -> float:
    weight = float(stats.total_events)
    if duration_weight:
        weight += duration_weight * (stats.total_duration / 60.0)
    return weight


def trim_graph(graph: nx.Graph, limit_nodes: int) -> nx.Graph:
    """Keep the top ``limit_nodes`` nodes by weighted degree, ties by id ascending."""
    if graph.number_of_nodes() <= limit_nodes:
        return graph
    weighted = dict(graph.degree(weight="weight"))
    ranked = sorted(graph.nodes, key=lambda node: (-weighted[node], node))
    keep = set(ranked[:limit_nodes])
    trimmed = nx.Graph()
    trimmed.add_nodes_from((node, graph.nodes[node]) for node in graph.nodes if node in keep)
    trimmed.add_edges_from(
        (source, target, data) for source, target, data in graph.edges(data=True) if source in keep and target in keep
    )
    return trimmed


def detect_communities(graph: nx.Graph, settings: Settings) -> Tuple[Dict[str, str], List[Community]]:
    if graph.number_of_nodes() == 0:
        return {}, []

    connected = [node for node in graph.nodes if graph.degree(node) > 0]
    clusters: List[List[str]] = []
    if connected:
        found = nx.community.louvain_communities(
            graph.subgraph(connected),
            weight="weight",
            resolution=settings.network_louvain_resolution,
            seed=settings.network_louvain_seed,
        )
        clusters = sorted((sorted(members) for members in found), key=lambda members: (-len(members), members[0]))

    assignments: Dict[str, str] = {}
    for index, members in enumerate(clusters):
        for node in members:
            assignments[node] = str(index)
    for node in graph.nodes:
        assignments.setdefault(node, ISOLATE_COMMUNITY)

    grouped: Dict[str, List[str]] = {}
    for node in sorted(graph.nodes):
        grouped.setdefault(assignments[node], []).append(node)

    internal_weight: Dict[str, float] = {}
    for source, target, data in graph.edges(data=True):
        if assignments[source] == assignments[target]:
            community_id = assignments[source]
            internal_weight[community_id] = internal_weight.get(community_id, 0.0) + data.get("weight", 0.0)

    weighted = dict(graph.degree(weight="weight"))
    communities: List[Community] = []
    for community_id, members in grouped.items():
        ranked = sorted(members, key=lambda node: (-weighted[node], node))
        top_nodes = tuple(
            CommunityMember(id=node, weighted_degree=weighted[node], degree=graph.degree(node))
            for node in ranked[: settings.network_community_top_nodes]
        )
        communities.append(
            Community(
                id=community_id,
                size=len(members),
                top_nodes=top_nodes,
                total_edge_weight=internal_weight.get(community_id, 0.0),
            )
        )
    communities.sort(key=lambda community: (-community.size, community.id))
    return assignments, communities


def compute_graph_stats(graph: nx.Graph) -> GraphStats:
    node_count = graph.number_of_nodes()
    if node_count == 0:
        return GraphStats()

    edge_count = graph.number_of_edges()
    degrees = [degree for _, degree in graph.degree()]
    weighted = [degree for _, degree in graph.degree(weight="weight")]
    density = (2 * edge_count) / (node_count * (node_count - 1)) if node_count > 1 else 0.0

    return GraphStats(
        node_count=node_count,
        edge_count=edge_count,
        density=round(density, 4),
        components=nx.number_connected_components(graph),
        isolates=nx.number_of_isolates(graph),
        avg_degree=round(sum(degrees) / node_count, 2),
        max_degree=max(degrees),
        max_weighted_degree=max(weighted),
        avg_weighted_degree=round(sum(weighted) / node_count, 2),
    )


def _node_limit(node_count: int, limit_nodes: Optional[int], settings: Settings) -> Tuple[Optional[int], Optional[str]]:
    ceiling = settings.network_max_nodes_before_trim
    if node_count > ceiling:
        kept = min(limit_nodes or settings.network_forced_trim_limit, ceiling)
        return kept, f"graph exceeded {ceiling} nodes: kept top {kept} of {node_count} by weighted degree"
    if limit_nodes is not None and node_count > limit_nodes:
        return limit_nodes, f"node limit exceeded: kept top {limit_nodes} of {node_count} by weighted degree"
    return None, None


def build_graph_payload(
    events: Iterable[CallEvent],
    *,
    min_edge_weight: int = 1,
    limit_nodes: Optional[int] = None,
    limit_edges: Optional[int] = None,
    dataset_scope: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> GraphPayload:
    settings = settings or get_settings()
    aggregation = aggregate_contacts(events)
    if aggregation.self_calls:
        logger.info("Excluded %d self-calls from graph edges", aggregation.self_calls)

    weighted_pairs = [
        (pair, stats, edge_weight(stats, settings.network_edge_duration_weight))
        for pair, stats in aggregation.pairs.items()
    ]
    surviving = [item for item in weighted_pairs if item[2] >= min_edge_weight]
    surviving.sort(key=lambda item: (-item[2], item[0]))
    if limit_edges is not None:
        surviving = surviving[:limit_edges]

    graph = nx.Graph()
    for (source, target), stats, weight in surviving:
        graph.add_edge(source, target, weight=weight, stats=stats, pair=(source, target))
    if not surviving:
        # Nothing passes the weight threshold: every participant is shown unconnected.
        graph.add_nodes_from(sorted(aggregation.parties))
    for node in graph.nodes:
        graph.nodes[node]["stats"] = aggregation.parties.get(node, _PartyStats())

    kept, truncation_reason = _node_limit(graph.number_of_nodes(), limit_nodes, settings)
    if kept is not None:
        logger.info("Trimming network graph: %s", truncation_reason)
        graph = trim_graph(graph, kept)

    assignments, communities = detect_communities(graph, settings)
    stats = compute_graph_stats(graph).model_copy(
        update={
            "self_calls_excluded": aggregation.self_calls,
            "build_warnings": tuple(aggregation.warnings[:MAX_BUILD_WARNINGS]),
        }
    )
    if aggregation.warnings:
        logger.warning("Network graph build warnings: %s", aggregation.warnings[:MAX_BUILD_WARNINGS])

    nodes = tuple(_to_graph_node(graph, node, assignments) for node in sorted(graph.nodes))
    edges = _to_graph_edges(graph, {node.id for node in nodes})

    return GraphPayload(
        dataset_scope=dataset_scope,
        graph=GraphData(nodes=nodes, edges=edges),
        communities=tuple(communities),
        stats=stats,
        truncated=truncation_reason is not None,
        truncation_reason=truncation_reason,
        clustered=graph.number_of_nodes() > 0,
    )


def build_network(query: GraphQuery, settings: Optional[Settings] = None) -> GraphPayload:
    settings = settings or get_settings()
    if query.from_ is not None and query.to is not None and as_utc(query.from_) > as_utc(query.to):
        raise InvalidGraphQuery("'from' must not be later than 'to'")

    dataset_id = resolve_dataset(query.dataset_scope)
    if dataset_id is None:
        raise DataUnavailable("No dataset selected; record events before requesting a network graph")

    events = fetch_events(dataset_id, query)
    if not events:
        raise DataUnavailable(f"No events match the selected filters for dataset {dataset_id}")

    payload = build_graph_payload(
        events,
        min_edge_weight=query.min_edge_weight,
        limit_nodes=query.limit_nodes,
        limit_edges=query.limit_edges,
        dataset_scope=dataset_id,
        settings=settings,
    )
    logger.info(
        "Built network graph for dataset %s: %d nodes, %d edges, %d communities",
        dataset_id,
        payload.stats.node_count,
        payload.stats.edge_count,
        len(payload.communities),
    )
    return payload


def _to_graph_node(graph: nx.Graph, node: str, assignments: Dict[str, str]) -> GraphNode:
    stats: _PartyStats = graph.nodes[node]["stats"]
    return GraphNode(
        id=node,
        label=node,
        degree=graph.degree(node),
        weighted_degree=graph.degree(node, weight="weight"),
        community=assignments.get(node, ISOLATE_COMMUNITY),
        total_events=stats.total_events,
        total_duration=stats.total_duration,
        first_seen=stats.first_seen,
        last_seen=stats.last_seen,
    )


def _to_graph_edges(graph: nx.Graph, node_ids: set) -> Tuple[GraphEdge, ...]:
    edges: List[GraphEdge] = []
    dropped = 0
    for _, _, data in graph.edges(data=True):
        source, target = data["pair"]
        if source not in node_ids or target not in node_ids:
            dropped += 1
            continue
        stats: _PartyStats = data["stats"]
        edges.append(
            GraphEdge(
                id=f"{source}|{target}",
                source=source,
                target=target,
                weight=data["weight"],
                event_count=stats.total_events,
                total_duration=stats.total_duration,
                first_seen=stats.first_seen,
                last_seen=stats.last_seen,
            )
        )
    if dropped:
        logger.warning("Dropped %d orphan edges from network graph", dropped)
    edges.sort(key=lambda edge: (-edge.weight, edge.source, edge.target))
    return tuple(edges)
