from __future__ import annotations

import zlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple
from xml.sax.saxutils import escape, quoteattr

from ..schemas.graph import ISOLATE_COMMUNITY

if TYPE_CHECKING:
    from .layout import Canvas, LayoutEdge, LayoutNode, NodePosition

COMMUNITY_PALETTE: Tuple[str, ...] = (
    "#FF6B6B",
    "#4ECDC4",
    "#45B7D1",
    "#FFA07A",
    "#98D8C8",
    "#F7DC6F",
    "#BB8FCE",
    "#85C1E2",
    "#F8B739",
    "#52BE80",
)
ISOLATE_COLOR = "#CCCCCC"
EDGE_COLOR = "#cccccc"
SELECTED_EDGE_COLOR = "#ff0000"
SELECTED_NODE_COLOR = "#ff0000"
SELECTED_OUTLINE = "#000000"
HIGHLIGHT_OUTLINE = "#333333"
LABEL_COLOR = "#000000"

NOTABLE_WEIGHTED_DEGREE = 10.0
LABEL_LENGTH = 10
LABEL_OFFSET = 5.0
EMPHASIS_GROWTH = 3.0


def community_color(community_id: Optional[str]) -> str:
    if not community_id or community_id == ISOLATE_COMMUNITY:
        return ISOLATE_COLOR
    if community_id.isdigit():
        index = int(community_id)
    else:
        index = zlib.crc32(community_id.encode("utf-8"))
    return COMMUNITY_PALETTE[index % len(COMMUNITY_PALETTE)]


class Surface(Protocol):
    def clear(self, width: float, height: float) -> None:
        ...

    def line(self, x1: float, y1: float, x2: float, y2: float, color: str, width: float) -> None:
        ...

    def circle(
        self,
        x: float,
        y: float,
        radius: float,
        fill: str,
        outline: Optional[str] = None,
        outline_width: float = 0.0,
    ) -> None:
        ...

    def text(self, x: float, y: float, value: str, color: str) -> None:
        ...


@dataclass
class DrawCall:
    kind: str
    args: Dict[str, Any]


@dataclass
class RecordingSurface:
    """Keeps the draw calls of the latest frame; used by headless clients and tests."""

    calls: List[DrawCall] = field(default_factory=list)
    frames: int = 0

    def clear(self, width: float, height: float) -> None:
        self.calls = [DrawCall("clear", {"width": width, "height": height})]
        self.frames += 1

    def line(self, x1: float, y1: float, x2: float, y2: float, color: str, width: float) -> None:
        self.calls.append(DrawCall("line", {"x1": x1, "y1": y1, "x2": x2, "y2": y2, "color": color, "width": width}))

    def circle(self, x, y, radius, fill, outline=None, outline_width=0.0) -> None:
        self.calls.append(
            DrawCall(
                "circle",
                {"x": x, "y": y, "radius": radius, "fill": fill, "outline": outline, "outline_width": outline_width},
            )
        )

    def text(self, x: float, y: float, value: str, color: str) -> None:
        self.calls.append(DrawCall("text", {"x": x, "y": y, "value": value, "color": color}))

    def of_kind(self, kind: str) -> List[Dict[str, Any]]:
        return [call.args for call in self.calls if call.kind == kind]


class SvgSurface:
    def __init__(self) -> None:
        self._width = 0.0
        self._height = 0.0
        self._elements: List[str] = []

    def clear(self, width: float, height: float) -> None:
        self._width = width
        self._height = height
        self._elements = [f'<rect width="{width:.0f}" height="{height:.0f}" fill="#ffffff"/>']

    def line(self, x1: float, y1: float, x2: float, y2: float, color: str, width: float) -> None:
        self._elements.append(
            f'<line x1="{x1:.2f}" y1="{y1:.2f}" x2="{x2:.2f}" y2="{y2:.2f}" stroke="{color}" stroke-width="{width:.2f}"/>'
        )

    def circle(self, x, y, radius, fill, outline=None, outline_width=0.0) -> None:
        stroke = f' stroke="{outline}" stroke-width="{outline_width:.1f}"' if outline else ""
        self._elements.append(f'<circle cx="{x:.2f}" cy="{y:.2f}" r="{radius:.2f}" fill="{fill}"{stroke}/>')

    def text(self, x: float, y: float, value: str, color: str) -> None:
        self._elements.append(
            f'<text x="{x:.2f}" y="{y:.2f}" fill="{color}" font-family="Arial" font-size="11" '
            f'text-anchor="middle">{escape(value)}</text>'
        )

    def to_svg(self) -> str:
        body = "\n  ".join(self._elements)
        return (
            f'<svg xmlns="http://www.w3.org/2000/svg" width={quoteattr(f"{self._width:.0f}")} '
            f'height={quoteattr(f"{self._height:.0f}")}>\n  {body}\n</svg>\n'
        )


@dataclass(frozen=True)
class Highlight:
    selected_node: Optional[str] = None
    selected_edge: Optional[str] = None
    community: Optional[str] = None


def render_frame(
    surface: Surface,
    canvas: "Canvas",
    nodes: Sequence["LayoutNode"],
    edges: Sequence["LayoutEdge"],
    positions: Mapping[str, "NodePosition"],
    highlight: Highlight,
) -> None:
    surface.clear(canvas.width, canvas.height)

    for edge in edges:
        source = positions.get(edge.source)
        target = positions.get(edge.target)
        if source is None or target is None:
            continue
        selected = highlight.selected_edge is not None and highlight.selected_edge in edge.keys
        surface.line(
            source.x,
            source.y,
            target.x,
            target.y,
            SELECTED_EDGE_COLOR if selected else EDGE_COLOR,
            edge.width,
        )

    for node in nodes:
        position = positions.get(node.id)
        if position is None:
            continue
        selected = node.id == highlight.selected_node
        in_community = highlight.community is not None and node.community == highlight.community
        radius = node.radius + EMPHASIS_GROWTH if (selected or in_community) else node.radius
        if selected:
            surface.circle(position.x, position.y, radius, SELECTED_NODE_COLOR, SELECTED_OUTLINE, 3.0)
        elif in_community:
            surface.circle(position.x, position.y, radius, node.color, HIGHLIGHT_OUTLINE, 2.0)
        else:
            surface.circle(position.x, position.y, radius, node.color)

        if selected or node.weighted_degree > NOTABLE_WEIGHTED_DEGREE:
            surface.text(position.x, position.y - radius - LABEL_OFFSET, node.id[:LABEL_LENGTH], LABEL_COLOR)
