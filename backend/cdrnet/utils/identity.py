from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


def normalize(raw_id: Any) -> str:
    if raw_id is None:
        return ""
    return str(raw_id).strip()


def edge_key(source: Any, target: Any) -> str:
    return f"{normalize(source)}->{normalize(target)}"


class IdentityRegistry:
    """Order-independent index of the nodes and edges of the active graph.

    The registry is rebuilt wholesale for every payload and never patched, so
    entries from a previous graph cannot leak into lookups. It never drops or
    repairs input: unresolvable ids simply return ``None``.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, Any] = {}
        self._edges: Dict[str, Any] = {}
        self._adjacency: Dict[str, List[Any]] = {}

    def rebuild(self, graph: Any) -> None:
        nodes: Iterable[Any] = (_get(graph, "nodes") or []) if graph is not None else []
        edges: Iterable[Any] = (_get(graph, "edges") or []) if graph is not None else []

        node_map: Dict[str, Any] = {}
        for node in nodes:
            node_id = normalize(_get(node, "id"))
            if node_id:
                node_map[node_id] = node

        edge_map: Dict[str, Any] = {}
        adjacency: Dict[str, List[Any]] = {}
        for edge in edges:
            source = normalize(_get(edge, "source"))
            target = normalize(_get(edge, "target"))
            edge_map[edge_key(source, target)] = edge
            explicit_id = _get(edge, "id")
            if explicit_id:
                edge_map[normalize(explicit_id)] = edge
            adjacency.setdefault(source, []).append(edge)
            if target != source:
                adjacency.setdefault(target, []).append(edge)

        self._nodes = node_map
        self._edges = edge_map
        self._adjacency = adjacency
        logger.debug("Identity registry rebuilt with %d nodes and %d edge keys", len(node_map), len(edge_map))

    def clear(self) -> None:
        self._nodes = {}
        self._edges = {}
        self._adjacency = {}

    def lookup_node(self, node_id: Any) -> Optional[Any]:
        key = normalize(node_id)
        if not key:
            return None
        return self._nodes.get(key)

    def lookup_edge(self, key: Any) -> Optional[Any]:
        normalized = normalize(key)
        if not normalized:
            return None
        return self._edges.get(normalized)

    def incident_edges(self, node_id: Any) -> List[Any]:
        return list(self._adjacency.get(normalize(node_id), []))

    def has_node(self, node_id: Any) -> bool:
        return self.lookup_node(node_id) is not None

    def node_ids(self) -> List[str]:
        return list(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)


def _get(item: Any, attribute: str) -> Any:
    if isinstance(item, dict):
        return item.get(attribute)
    return getattr(item, attribute, None)
