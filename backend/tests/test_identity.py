from cdrnet.schemas.graph import GraphData, GraphEdge, GraphNode
from cdrnet.utils.identity import IdentityRegistry, edge_key, normalize
from cdrnet.utils.phone import canonicalize_number, contact_pair, contact_pair_key


def test_normalize_stringifies_and_trims():
    assert normalize(None) == ""
    assert normalize("  111 ") == "111"
    assert normalize(111) == "111"
    assert edge_key(" 111", 222) == "111->222"


def test_canonicalize_number():
    assert canonicalize_number("tel:+1 (555) 010-2000") == "+15550102000"
    assert canonicalize_number(" 555-0100 ") == "5550100"
    assert canonicalize_number("BANK-ALERT") == "bank-alert"
    assert canonicalize_number("   ") is None
    assert canonicalize_number(None) is None


def test_contact_pair_is_order_independent():
    assert contact_pair("222", "111") == ("111", "222")
    assert contact_pair_key("222", "111") == contact_pair_key("111", "222") == "111|222"


def test_registry_resolves_nodes_and_both_edge_keys():
    registry = IdentityRegistry()
    registry.rebuild(
        {
            "nodes": [{"id": " 111 "}, {"id": 222}],
            "edges": [{"id": "111|222", "source": "111", "target": 222, "weight": 4}],
        }
    )

    assert registry.lookup_node("111") == {"id": " 111 "}
    assert registry.lookup_node(222) == {"id": 222}
    assert registry.lookup_edge("111|222")["weight"] == 4
    assert registry.lookup_edge("111->222") is registry.lookup_edge("111|222")
    assert [edge["weight"] for edge in registry.incident_edges("222")] == [4]
    assert len(registry) == 2


def test_registry_returns_none_for_unknown_or_empty_ids():
    registry = IdentityRegistry()
    registry.rebuild({"nodes": [{"id": "111"}], "edges": [{"source": "111", "target": "999"}]})

    assert registry.lookup_node(None) is None
    assert registry.lookup_node("") is None
    assert registry.lookup_node("999") is None
    assert registry.lookup_edge("222->111") is None
    assert registry.lookup_edge("111->999") is not None


def test_rebuild_never_leaks_previous_graph():
    first = GraphData(
        nodes=(GraphNode(id="111"), GraphNode(id="222"), GraphNode(id="333")),
        edges=(GraphEdge(id="111|222", source="111", target="222", weight=12),),
    )
    second = GraphData(
        nodes=(GraphNode(id="111"), GraphNode(id="222")),
        edges=(GraphEdge(id="111|222", source="111", target="222", weight=12),),
    )
    registry = IdentityRegistry()
    registry.rebuild(first)
    old_node = registry.lookup_node("111")

    registry.rebuild(second)

    assert registry.lookup_node("333") is None
    assert registry.lookup_node("111") is second.nodes[0]
    assert registry.lookup_node("111") is not old_node
    assert registry.lookup_edge("111|222") is second.edges[0]


def test_registry_accepts_missing_graph():
    registry = IdentityRegistry()
    registry.rebuild(None)
    assert len(registry) == 0
    assert registry.node_ids() == []
