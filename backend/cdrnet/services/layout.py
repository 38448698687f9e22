from __future__ import annotations

import asyncio
import logging
import math
import random
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Protocol, Sequence, Tuple

from ..config import Settings, get_settings
from ..schemas.graph import GraphPayload
from ..utils.identity import edge_key, normalize
from .render import Highlight, Surface, community_color, render_frame

logger = logging.getLogger(__name__)

REPULSION_STRENGTH = 8000.0
ATTRACTION_DIVISOR = 100.0
MAX_FORCE = 50.0
MAX_SPEED = 5.0
ALPHA_MAX = 1.0
ALPHA_MIN = 0.05
BASE_DAMPING = 0.85
STABILIZING_DAMPING_FLOOR = 0.92
MIN_NODE_RADIUS = 8.0
MAX_NODE_RADIUS = 25.0
MIN_EDGE_WIDTH = 1.0
MAX_EDGE_WIDTH = 4.0
HIT_SLOP = 5.0
CELL_SIZE = 200.0
INITIAL_MARGIN = 100.0
COINCIDENT_NUDGE = 0.01


class LayoutPhase(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    STABILIZING = "stabilizing"
    STABILIZED = "stabilized"

    @property
    def ticking(self) -> bool:
        return self in (LayoutPhase.RUNNING, LayoutPhase.STABILIZING)


@dataclass
class NodePosition:
    x: float
    y: float
    vx: float = 0.0
    vy: float = 0.0


PositionState = Dict[str, NodePosition]


@dataclass(frozen=True)
class SimulationState:
    phase: LayoutPhase = LayoutPhase.RUNNING
    alpha: float = ALPHA_MAX
    ticks: int = 0
    tick_budget: int = 500
    degraded: bool = False


@dataclass(frozen=True)
class Canvas:
    width: float
    height: float


@dataclass(frozen=True)
class LayoutNode:
    id: str
    radius: float
    weighted_degree: float
    community: str
    color: str


@dataclass(frozen=True)
class LayoutEdge:
    key: str
    source: str
    target: str
    width: float
    keys: FrozenSet[str]


def node_radius(weighted_degree: float) -> float:
    return max(MIN_NODE_RADIUS, min(MAX_NODE_RADIUS, math.sqrt(max(weighted_degree, 0.0)) * 2))


def edge_width(weight: float) -> float:
    return max(MIN_EDGE_WIDTH, min(MAX_EDGE_WIDTH, math.sqrt(max(weight, 0.0))))


def stabilization_budget(node_count: int) -> int:
    if node_count > 800:
        return 300
    if node_count > 500:
        return 400
    return 500


def layout_nodes(payload: GraphPayload) -> Tuple[LayoutNode, ...]:
    nodes: List[LayoutNode] = []
    seen = set()
    for node in payload.graph.nodes:
        node_id = normalize(node.id)
        if not node_id or node_id in seen:
            continue
        seen.add(node_id)
        nodes.append(
            LayoutNode(
                id=node_id,
                radius=node_radius(node.weighted_degree),
                weighted_degree=node.weighted_degree,
                community=node.community,
                color=community_color(node.community),
            )
        )
    return tuple(nodes)


def layout_edges(payload: GraphPayload) -> Tuple[LayoutEdge, ...]:
    edges: List[LayoutEdge] = []
    for edge in payload.graph.edges:
        pair_key = edge_key(edge.source, edge.target)
        keys = {pair_key}
        if edge.id:
            keys.add(normalize(edge.id))
        edges.append(
            LayoutEdge(
                key=normalize(edge.id) or pair_key,
                source=normalize(edge.source),
                target=normalize(edge.target),
                width=edge_width(edge.weight),
                keys=frozenset(keys),
            )
        )
    return tuple(edges)


def initial_positions(node_ids: Iterable[str], canvas: Canvas, rng: random.Random) -> PositionState:
    margin_x = min(INITIAL_MARGIN, canvas.width / 8)
    margin_y = min(INITIAL_MARGIN, canvas.height / 8)
    return {
        node_id: NodePosition(
            x=rng.uniform(margin_x, canvas.width - margin_x),
            y=rng.uniform(margin_y, canvas.height - margin_y),
        )
        for node_id in node_ids
    }


def clamp_to_canvas(position: NodePosition, radius: float, canvas: Canvas) -> None:
    if canvas.width <= 2 * radius:
        position.x = canvas.width / 2
    else:
        position.x = max(radius, min(canvas.width - radius, position.x))
    if canvas.height <= 2 * radius:
        position.y = canvas.height / 2
    else:
        position.y = max(radius, min(canvas.height - radius, position.y))


def tick(
    positions: PositionState,
    state: SimulationState,
    nodes: Sequence[LayoutNode],
    edges: Sequence[LayoutEdge],
    canvas: Canvas,
    *,
    dragging: Optional[str] = None,
) -> SimulationState:
    """Advance the simulation by one step and return the next simulation state.

    ``positions`` is updated in place. A stabilizing simulation whose tick budget
    is spent moves to ``STABILIZED`` without applying further forces; paused and
    stabilized simulations are returned unchanged.
    """
    if state.phase is LayoutPhase.STABILIZING:
        ticks = state.ticks + 1
        if ticks >= state.tick_budget:
            return replace(state, phase=LayoutPhase.STABILIZED, ticks=ticks, alpha=ALPHA_MIN)
        progress = ticks / state.tick_budget
        alpha = max(ALPHA_MIN, ALPHA_MAX - progress * (ALPHA_MAX - ALPHA_MIN))
        state = replace(state, ticks=ticks, alpha=alpha)
    elif state.phase is LayoutPhase.RUNNING:
        state = replace(state, alpha=ALPHA_MAX)
    else:
        return state

    placed = [(node.id, positions[node.id]) for node in nodes if node.id in positions]
    forces: Dict[str, List[float]] = {node_id: [0.0, 0.0] for node_id, _ in placed}

    if state.degraded:
        _cell_repulsion(placed, forces, state.alpha)
    else:
        _exact_repulsion(placed, forces, state.alpha)
    _attraction(positions, edges, forces, state.alpha)

    if state.phase is LayoutPhase.STABILIZING:
        damping = max(STABILIZING_DAMPING_FLOOR, BASE_DAMPING + 0.1 * state.alpha)
    else:
        damping = BASE_DAMPING

    for node in nodes:
        if node.id == dragging:
            continue
        position = positions.get(node.id)
        if position is None:
            continue
        fx, fy = forces[node.id]
        position.vx = (position.vx + fx) * damping
        position.vy = (position.vy + fy) * damping
        speed = math.hypot(position.vx, position.vy)
        if speed > MAX_SPEED:
            position.vx = position.vx / speed * MAX_SPEED
            position.vy = position.vy / speed * MAX_SPEED
        position.x += position.vx
        position.y += position.vy
        clamp_to_canvas(position, node.radius, canvas)

    return state


def _repel(a: NodePosition, b: NodePosition, fa: List[float], fb: List[float], alpha: float) -> None:
    dx = a.x - b.x
    dy = a.y - b.y
    dist_sq = dx * dx + dy * dy
    if dist_sq == 0.0:
        dx = COINCIDENT_NUDGE
        dist_sq = dx * dx
    dist = math.sqrt(dist_sq)
    force = min(MAX_FORCE, REPULSION_STRENGTH * alpha / dist_sq)
    fx = dx / dist * force
    fy = dy / dist * force
    fa[0] += fx
    fa[1] += fy
    fb[0] -= fx
    fb[1] -= fy


def _exact_repulsion(placed: Sequence[Tuple[str, NodePosition]], forces: Dict[str, List[float]], alpha: float) -> None:
    count = len(placed)
    for i in range(count):
        id_a, pos_a = placed[i]
        force_a = forces[id_a]
        for j in range(i + 1, count):
            id_b, pos_b = placed[j]
            _repel(pos_a, pos_b, force_a, forces[id_b], alpha)


def _cell_repulsion(placed: Sequence[Tuple[str, NodePosition]], forces: Dict[str, List[float]], alpha: float) -> None:
    cells: Dict[Tuple[int, int], List[int]] = {}
    for index, (_, position) in enumerate(placed):
        cells.setdefault((int(position.x // CELL_SIZE), int(position.y // CELL_SIZE)), []).append(index)

    cutoff_sq = CELL_SIZE * CELL_SIZE
    for (cell_x, cell_y), members in cells.items():
        neighbours: List[int] = []
        for offset_x in (-1, 0, 1):
            for offset_y in (-1, 0, 1):
                neighbours.extend(cells.get((cell_x + offset_x, cell_y + offset_y), ()))
        for i in members:
            id_a, pos_a = placed[i]
            for j in neighbours:
                if j <= i:
                    continue
                id_b, pos_b = placed[j]
                dx = pos_a.x - pos_b.x
                dy = pos_a.y - pos_b.y
                if dx * dx + dy * dy > cutoff_sq:
                    continue
                _repel(pos_a, pos_b, forces[id_a], forces[id_b], alpha)


def _attraction(
    positions: PositionState,
    edges: Sequence[LayoutEdge],
    forces: Dict[str, List[float]],
    alpha: float,
) -> None:
    for edge in edges:
        source = positions.get(edge.source)
        target = positions.get(edge.target)
        if source is None or target is None or edge.source == edge.target:
            continue
        dx = target.x - source.x
        dy = target.y - source.y
        dist = math.hypot(dx, dy)
        if dist == 0.0:
            continue
        force = min(MAX_FORCE, dist / ATTRACTION_DIVISOR * alpha)
        fx = dx / dist * force
        fy = dy / dist * force
        forces[edge.source][0] += fx
        forces[edge.source][1] += fy
        forces[edge.target][0] -= fx
        forces[edge.target][1] -= fy


class FrameScheduler(Protocol):
    def request_frame(self, callback: Callable[[], None]) -> Any:
        ...

    def cancel(self, handle: Any) -> None:
        ...


class AsyncioFrameScheduler:
    """Per-frame callbacks on the running event loop."""

    def __init__(self, fps: int = 60, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._interval = 1.0 / max(fps, 1)
        self._loop = loop

    def request_frame(self, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(self._interval, callback)

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()


class LayoutEngine:
    """Interactive force-directed layout for the active network graph.

    The engine exclusively owns node positions. Callers drive it either through a
    ``FrameScheduler`` or by calling :meth:`frame` themselves; everything else
    (selection highlight, pointer input, pause/stabilize controls) is applied
    synchronously between frames.
    """

    def __init__(
        self,
        surface: Surface,
        *,
        canvas: Optional[Canvas] = None,
        scheduler: Optional[FrameScheduler] = None,
        settings: Optional[Settings] = None,
        seed: Optional[int] = None,
        on_stabilized: Optional[Callable[[], None]] = None,
        on_node_press: Optional[Callable[[str], None]] = None,
        on_edge_press: Optional[Callable[[str], None]] = None,
    ) -> None:
        settings = settings or get_settings()
        self._surface = surface
        self._canvas = canvas or Canvas(settings.layout_canvas_width, settings.layout_canvas_height)
        self._scheduler = scheduler
        self._exact_limit = settings.layout_exact_repulsion_limit
        self._frame_budget = settings.layout_frame_budget_ms / 1000.0
        self._rng = random.Random(seed)

        self.on_stabilized = on_stabilized
        self.on_node_press = on_node_press
        self.on_edge_press = on_edge_press

        self._nodes: Tuple[LayoutNode, ...] = ()
        self._edges: Tuple[LayoutEdge, ...] = ()
        self._node_index: Dict[str, LayoutNode] = {}
        self._positions: PositionState = {}
        self._state = SimulationState()
        self._highlight = Highlight()
        self._dragging: Optional[str] = None
        self._frame_handle: Any = None
        self._stopped = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def phase(self) -> LayoutPhase:
        return self._state.phase

    @property
    def simulation(self) -> SimulationState:
        return self._state

    @property
    def canvas(self) -> Canvas:
        return self._canvas

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def dragging(self) -> Optional[str]:
        return self._dragging

    @property
    def frame_scheduled(self) -> bool:
        return self._frame_handle is not None

    def load(self, payload: GraphPayload) -> None:
        self._nodes = layout_nodes(payload)
        self._edges = layout_edges(payload)
        self._node_index = {node.id: node for node in self._nodes}
        self._dragging = None
        self._restart()
        logger.debug("Layout loaded %d nodes and %d edges", len(self._nodes), len(self._edges))

    def clear(self) -> None:
        self._cancel_frame()
        self._nodes = ()
        self._edges = ()
        self._node_index = {}
        self._positions = {}
        self._dragging = None
        self._state = SimulationState()

    def _restart(self) -> None:
        count = len(self._nodes)
        self._positions = initial_positions((node.id for node in self._nodes), self._canvas, self._rng)
        self._state = SimulationState(
            phase=LayoutPhase.RUNNING,
            tick_budget=stabilization_budget(count),
            degraded=count > self._exact_limit,
        )
        self._schedule()

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------
    def pause(self) -> bool:
        if self._state.phase is not LayoutPhase.RUNNING:
            return False
        self._state = replace(self._state, phase=LayoutPhase.PAUSED)
        return True

    def resume(self) -> bool:
        if self._state.phase not in (LayoutPhase.PAUSED, LayoutPhase.STABILIZED):
            return False
        self._state = replace(self._state, phase=LayoutPhase.RUNNING)
        self._schedule()
        return True

    def stabilize(self) -> bool:
        if self._state.phase not in (LayoutPhase.RUNNING, LayoutPhase.PAUSED):
            return False
        if not self._nodes:
            self._state = replace(self._state, phase=LayoutPhase.STABILIZED, ticks=0, alpha=ALPHA_MIN)
            if self.on_stabilized is not None:
                self.on_stabilized()
            return True
        self._state = replace(self._state, phase=LayoutPhase.STABILIZING, ticks=0, alpha=ALPHA_MAX)
        self._schedule()
        return True

    def reset_layout(self) -> None:
        self._dragging = None
        self._restart()

    def set_highlight(
        self,
        selected_node: Optional[str] = None,
        selected_edge: Optional[str] = None,
        community: Optional[str] = None,
    ) -> None:
        self._highlight = Highlight(
            selected_node=normalize(selected_node) or None,
            selected_edge=normalize(selected_edge) or None,
            community=community,
        )
        if not self._state.phase.ticking:
            self.render()

    def resize(self, width: float, height: float) -> None:
        self._canvas = Canvas(width, height)
        for node in self._nodes:
            position = self._positions.get(node.id)
            if position is not None:
                clamp_to_canvas(position, node.radius, self._canvas)
        if not self._state.phase.ticking:
            self.render()

    # ------------------------------------------------------------------
    # Frame loop
    # ------------------------------------------------------------------
    def frame(self) -> bool:
        """Run one animation frame; returns True when another frame is needed."""
        if not self._nodes:
            return False
        if not self._state.phase.ticking:
            self.render()
            return False

        previous = self._state.phase
        started = time.perf_counter()
        self._state = tick(
            self._positions,
            self._state,
            self._nodes,
            self._edges,
            self._canvas,
            dragging=self._dragging,
        )
        elapsed = time.perf_counter() - started
        if not self._state.degraded and elapsed > self._frame_budget:
            logger.debug("Layout tick took %.1fms; switching to cell-based repulsion", elapsed * 1000)
            self._state = replace(self._state, degraded=True)

        self.render()
        if previous is LayoutPhase.STABILIZING and self._state.phase is LayoutPhase.STABILIZED:
            logger.info("Layout stabilized after %d ticks", self._state.ticks)
            if self.on_stabilized is not None:
                self.on_stabilized()
            return False
        return True

    def render(self) -> None:
        if not self._positions:
            return
        render_frame(self._surface, self._canvas, self._nodes, self._edges, self._positions, self._highlight)

    def run_until_stable(self) -> int:
        """Stabilize without a scheduler, returning the number of frames run."""
        self.stabilize()
        frames = 0
        while self._nodes and self._state.phase is LayoutPhase.STABILIZING:
            self.frame()
            frames += 1
        return frames

    def start(self) -> None:
        self._stopped = False
        self._schedule()

    def stop(self) -> None:
        self._stopped = True
        self._cancel_frame()

    def _schedule(self) -> None:
        if self._scheduler is None or self._stopped or self._frame_handle is not None or not self._nodes:
            return
        self._frame_handle = self._scheduler.request_frame(self._on_frame)

    def _on_frame(self) -> None:
        self._frame_handle = None
        if self._stopped:
            return
        if self.frame():
            self._schedule()

    def _cancel_frame(self) -> None:
        if self._frame_handle is not None and self._scheduler is not None:
            self._scheduler.cancel(self._frame_handle)
        self._frame_handle = None

    # ------------------------------------------------------------------
    # Pointer interaction
    # ------------------------------------------------------------------
    def hit_test(self, x: float, y: float) -> Optional[str]:
        candidates: List[Tuple[float, str]] = []
        for node in self._nodes:
            position = self._positions.get(node.id)
            if position is None:
                continue
            dist = math.hypot(x - position.x, y - position.y)
            if dist < node.radius + HIT_SLOP:
                candidates.append((dist, node.id))
        if not candidates:
            return None
        candidates.sort()
        return candidates[0][1]

    def edge_hit_test(self, x: float, y: float) -> Optional[str]:
        best: Optional[Tuple[float, str]] = None
        for edge in self._edges:
            source = self._positions.get(edge.source)
            target = self._positions.get(edge.target)
            if source is None or target is None:
                continue
            dist = _distance_to_segment(x, y, source, target)
            if dist <= edge.width / 2 + HIT_SLOP and (best is None or dist < best[0]):
                best = (dist, edge.key)
        return best[1] if best else None

    def press(self, x: float, y: float) -> Optional[str]:
        node_id = self.hit_test(x, y)
        if node_id is not None:
            self._dragging = node_id
            position = self._positions[node_id]
            position.vx = 0.0
            position.vy = 0.0
            if self.on_node_press is not None:
                self.on_node_press(node_id)
            return node_id

        key = self.edge_hit_test(x, y)
        if key is not None and self.on_edge_press is not None:
            self.on_edge_press(key)
        return None

    def move(self, x: float, y: float) -> bool:
        if self._dragging is None:
            return False
        node = self._node_index.get(self._dragging)
        position = self._positions.get(self._dragging)
        if node is None or position is None:
            self._dragging = None
            return False
        position.x = x
        position.y = y
        position.vx = 0.0
        position.vy = 0.0
        clamp_to_canvas(position, node.radius, self._canvas)
        if not self._state.phase.ticking:
            self.render()
        return True

    def release(self) -> None:
        self._dragging = None


def _distance_to_segment(x: float, y: float, a: NodePosition, b: NodePosition) -> float:
    dx = b.x - a.x
    dy = b.y - a.y
    length_sq = dx * dx + dy * dy
    if length_sq == 0.0:
        return math.hypot(x - a.x, y - a.y)
    t = max(0.0, min(1.0, ((x - a.x) * dx + (y - a.y) * dy) / length_sq))
    return math.hypot(x - (a.x + t * dx), y - (a.y + t * dy))
