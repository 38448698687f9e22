from datetime import datetime, timedelta, timezone

import pytest

from cdrnet.config import Settings
from cdrnet.schemas.events import CallEvent
from cdrnet.schemas.graph import ISOLATE_COMMUNITY, GraphQuery
from cdrnet.services.events import list_datasets, record_events
from cdrnet.services.graph_builder import (
    DataUnavailable,
    InvalidGraphQuery,
    build_graph_payload,
    build_network,
)

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def test_example_scenario(example_payload):
    nodes = example_payload.graph.nodes
    edges = example_payload.graph.edges

    assert [node.id for node in nodes] == ["111", "222"]
    assert len(edges) == 1
    assert (edges[0].source, edges[0].target, edges[0].weight) == ("111", "222", 12)
    assert edges[0].id == "111|222"
    assert example_payload.stats.node_count == 2
    assert example_payload.stats.edge_count == 1
    assert example_payload.stats.isolates == 0
    assert all(node.community != ISOLATE_COMMUNITY for node in nodes)
    assert example_payload.clustered is True
    assert example_payload.truncated is False


def test_node_and_edge_attributes(example_payload):
    node = {node.id: node for node in example_payload.graph.nodes}["111"]
    edge = example_payload.graph.edges[0]

    assert node.degree == 1
    assert node.weighted_degree == 12
    assert node.total_events == 12
    assert node.total_duration == 12 * 60
    assert node.first_seen == BASE_TIME
    assert edge.event_count == 12
    assert edge.last_seen == BASE_TIME + timedelta(minutes=6)


def test_stats(example_payload):
    stats = example_payload.stats
    assert stats.density == 1.0
    assert stats.components == 1
    assert stats.avg_degree == 1.0
    assert stats.max_weighted_degree == 12


def test_sms_events_count_but_add_no_duration(make_events, settings):
    events = make_events("111", "222", count=2, event_type="sms") + make_events("111", "222", count=1, duration=30)
    payload = build_graph_payload(events, min_edge_weight=1, settings=settings)

    assert payload.graph.edges[0].weight == 3
    assert payload.graph.edges[0].total_duration == 30


def test_self_calls_and_missing_parties_are_excluded(make_events, settings):
    events = make_events("111", "222", count=2) + make_events("111", "111", count=3) + make_events("111", None)
    payload = build_graph_payload(events, min_edge_weight=1, settings=settings)

    assert payload.stats.edge_count == 1
    assert payload.stats.self_calls_excluded == 3
    assert len(payload.stats.build_warnings) == 1
    assert "missing caller or receiver" in payload.stats.build_warnings[0]


def _weighted_star(make_events):
    # Weighted degrees: A=9, B=8, C=7, D=1, E=1
    return (
        make_events("A", "B", count=5)
        + make_events("A", "C", count=4)
        + make_events("B", "C", count=3)
        + make_events("D", "E", count=1)
    )


def test_trimming_keeps_heaviest_nodes(make_events, settings):
    payload = build_graph_payload(_weighted_star(make_events), min_edge_weight=1, limit_nodes=2, settings=settings)

    assert [node.id for node in payload.graph.nodes] == ["A", "B"]
    assert [(edge.source, edge.target) for edge in payload.graph.edges] == [("A", "B")]
    assert payload.truncated is True
    assert payload.truncation_reason == "node limit exceeded: kept top 2 of 5 by weighted degree"
    # Degrees are recomputed on the trimmed graph.
    assert {node.id: node.weighted_degree for node in payload.graph.nodes} == {"A": 5, "B": 5}


def test_trimming_breaks_ties_by_id_and_is_deterministic(make_events, settings):
    events = _weighted_star(make_events)
    first = build_graph_payload(events, min_edge_weight=1, limit_nodes=4, settings=settings)
    second = build_graph_payload(list(reversed(events)), min_edge_weight=1, limit_nodes=4, settings=settings)

    assert [node.id for node in first.graph.nodes] == ["A", "B", "C", "D"]
    assert first.model_dump() == second.model_dump()
    # E was dropped, so the D-E edge goes with it and D becomes an isolate.
    assert {node.id: node.community for node in first.graph.nodes}["D"] == ISOLATE_COMMUNITY


def test_hard_ceiling_forces_trim(make_events):
    settings = Settings(network_max_nodes_before_trim=3)
    payload = build_graph_payload(_weighted_star(make_events), min_edge_weight=1, settings=settings)

    assert payload.stats.node_count == 3
    assert payload.truncation_reason == "graph exceeded 3 nodes: kept top 3 of 5 by weighted degree"


def test_limit_edges_keeps_heaviest(make_events, settings):
    payload = build_graph_payload(_weighted_star(make_events), min_edge_weight=1, limit_edges=2, settings=settings)

    assert [(edge.source, edge.target) for edge in payload.graph.edges] == [("A", "B"), ("A", "C")]
    assert [node.id for node in payload.graph.nodes] == ["A", "B", "C"]


def test_no_orphan_edges(make_events, settings):
    events = _weighted_star(make_events) + make_events("C", "F", count=2) + make_events("F", "G", count=6)
    for limit in (1, 2, 3, 5, 7):
        payload = build_graph_payload(events, min_edge_weight=1, limit_nodes=limit, settings=settings)
        node_ids = {node.id for node in payload.graph.nodes}
        assert payload.stats.node_count == len(payload.graph.nodes)
        for edge in payload.graph.edges:
            assert edge.source in node_ids and edge.target in node_ids


def test_two_clusters_are_detected(make_events, settings):
    events = (
        make_events("a", "b", count=10)
        + make_events("b", "c", count=10)
        + make_events("a", "c", count=10)
        + make_events("d", "e", count=10)
        + make_events("e", "f", count=10)
        + make_events("d", "f", count=10)
        + make_events("c", "d", count=1)
    )
    payload = build_graph_payload(events, min_edge_weight=1, settings=settings)
    assignments = {node.id: node.community for node in payload.graph.nodes}

    assert [community.id for community in payload.communities] == ["0", "1"]
    assert assignments["a"] == assignments["b"] == assignments["c"] == "0"
    assert assignments["d"] == assignments["e"] == assignments["f"] == "1"
    assert payload.communities[0].total_edge_weight == 30
    assert len(payload.communities[0].top_nodes) == 3
    assert payload.communities[0].top_nodes[0].id == "c"


def test_everything_below_threshold_becomes_isolates(example_events, settings):
    payload = build_graph_payload(example_events, min_edge_weight=100, settings=settings)

    assert [node.id for node in payload.graph.nodes] == ["111", "222", "333"]
    assert payload.graph.edges == ()
    assert payload.stats.isolates == 3
    assert payload.stats.components == 3
    assert [(community.id, community.size) for community in payload.communities] == [(ISOLATE_COMMUNITY, 3)]
    assert payload.clustered is True


def test_empty_input_is_not_clustered(settings):
    payload = build_graph_payload([], settings=settings)
    assert payload.graph.nodes == ()
    assert payload.clustered is False


def test_payload_serializes_camel_case(example_payload):
    body = example_payload.model_dump(mode="json", by_alias=True)
    assert body["stats"]["nodeCount"] == 2
    assert body["graph"]["nodes"][0]["weightedDegree"] == 12
    assert body["truncationReason"] is None


def test_build_network_reads_latest_dataset(example_events):
    record_events("older", [CallEvent(caller_number="1", receiver_number="2")])
    recorded, skipped = record_events("case-1", example_events)
    assert (recorded, skipped) == (15, 0)

    payload = build_network(GraphQuery(min_edge_weight=10))

    assert payload.dataset_scope == "case-1"
    assert [node.id for node in payload.graph.nodes] == ["111", "222"]
    assert [summary.dataset_id for summary in list_datasets()] == ["case-1", "older"]


def test_record_events_skips_duplicates(example_events):
    record_events("case-1", example_events)
    assert record_events("case-1", example_events) == (0, 15)


def test_build_network_applies_time_and_type_filters(make_events):
    record_events("case-1", make_events("111", "222", count=5))
    record_events("case-1", make_events("111", "333", count=5, event_type="sms", start=BASE_TIME + timedelta(days=2)))

    calls = build_network(GraphQuery(event_type="call"))
    assert [node.id for node in calls.graph.nodes] == ["111", "222"]

    later = build_network(GraphQuery(**{"from": BASE_TIME + timedelta(days=1)}))
    assert [node.id for node in later.graph.nodes] == ["111", "333"]


def test_build_network_without_data_raises():
    with pytest.raises(DataUnavailable):
        build_network(GraphQuery())


def test_build_network_with_no_matching_events_raises(example_events):
    record_events("case-1", example_events)
    with pytest.raises(DataUnavailable):
        build_network(GraphQuery(event_type="sms"))


def test_build_network_rejects_inverted_window():
    query = GraphQuery(**{"from": BASE_TIME, "to": BASE_TIME - timedelta(days=1)})
    with pytest.raises(InvalidGraphQuery):
        build_network(query)
