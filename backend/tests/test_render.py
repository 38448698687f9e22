from cdrnet.services.layout import Canvas, LayoutEdge, LayoutNode, NodePosition
from cdrnet.services.render import (
    COMMUNITY_PALETTE,
    EDGE_COLOR,
    HIGHLIGHT_OUTLINE,
    ISOLATE_COLOR,
    SELECTED_EDGE_COLOR,
    SELECTED_NODE_COLOR,
    SELECTED_OUTLINE,
    Highlight,
    RecordingSurface,
    SvgSurface,
    community_color,
    render_frame,
)

CANVAS = Canvas(400, 300)
NODES = (
    LayoutNode(id="15550001111", radius=10.0, weighted_degree=25.0, community="0", color=community_color("0")),
    LayoutNode(id="222", radius=8.0, weighted_degree=4.0, community="0", color=community_color("0")),
    LayoutNode(id="333", radius=8.0, weighted_degree=0.0, community="isolate", color=community_color("isolate")),
)
EDGES = (
    LayoutEdge(
        key="15550001111|222",
        source="15550001111",
        target="222",
        width=2.0,
        keys=frozenset({"15550001111|222", "15550001111->222"}),
    ),
)
POSITIONS = {
    "15550001111": NodePosition(100, 100),
    "222": NodePosition(200, 100),
    "333": NodePosition(300, 200),
}


def test_community_colors_are_deterministic():
    assert community_color("isolate") == ISOLATE_COLOR
    assert community_color(None) == ISOLATE_COLOR
    assert community_color("0") == COMMUNITY_PALETTE[0]
    assert community_color("12") == COMMUNITY_PALETTE[2]
    assert community_color("north") == community_color("north")
    assert community_color("north") in COMMUNITY_PALETTE


def test_plain_frame():
    surface = RecordingSurface()
    render_frame(surface, CANVAS, NODES, EDGES, POSITIONS, Highlight())

    assert surface.calls[0].kind == "clear"
    assert surface.of_kind("line") == [
        {"x1": 100, "y1": 100, "x2": 200, "y2": 100, "color": EDGE_COLOR, "width": 2.0}
    ]
    circles = surface.of_kind("circle")
    assert [circle["fill"] for circle in circles] == [COMMUNITY_PALETTE[0], COMMUNITY_PALETTE[0], ISOLATE_COLOR]
    assert all(circle["outline"] is None for circle in circles)
    # Only the notable node is labelled, truncated to ten characters.
    assert [text["value"] for text in surface.of_kind("text")] == ["1555000111"]


def test_selected_node_and_edge_are_emphasised():
    surface = RecordingSurface()
    render_frame(surface, CANVAS, NODES, EDGES, POSITIONS, Highlight(selected_node="222", selected_edge="15550001111->222"))

    assert surface.of_kind("line")[0]["color"] == SELECTED_EDGE_COLOR
    selected = surface.of_kind("circle")[1]
    assert selected["fill"] == SELECTED_NODE_COLOR
    assert selected["outline"] == SELECTED_OUTLINE
    assert selected["radius"] == 11.0
    assert "222" in [text["value"] for text in surface.of_kind("text")]


def test_highlighted_community_is_outlined():
    surface = RecordingSurface()
    render_frame(surface, CANVAS, NODES, EDGES, POSITIONS, Highlight(community="0"))

    circles = surface.of_kind("circle")
    assert [circle["outline"] for circle in circles] == [HIGHLIGHT_OUTLINE, HIGHLIGHT_OUTLINE, None]
    assert [circle["radius"] for circle in circles] == [13.0, 11.0, 8.0]


def test_nodes_without_positions_are_skipped():
    surface = RecordingSurface()
    render_frame(surface, CANVAS, NODES, EDGES, {"333": NodePosition(10, 10)}, Highlight())

    assert surface.of_kind("line") == []
    assert len(surface.of_kind("circle")) == 1


def test_svg_surface_writes_document():
    surface = SvgSurface()
    render_frame(surface, CANVAS, NODES, EDGES, POSITIONS, Highlight(selected_node="333"))
    document = surface.to_svg()

    assert document.startswith('<svg xmlns="http://www.w3.org/2000/svg" width="400" height="300">')
    assert document.count("<circle") == 3
    assert document.count("<line") == 1
    assert ">333</text>" in document
