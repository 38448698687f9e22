from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import Settings, get_settings
from ..schemas.graph import ISOLATE_COMMUNITY, GraphEdge, GraphNode, GraphPayload, GraphQuery
from ..schemas.session import DatePreset, EgoNetwork, FilterState, FocusNotFound, FocusRequest, TopContact
from ..utils.identity import IdentityRegistry, normalize
from ..utils.phone import canonicalize_number
from .graph_builder import DataUnavailable
from .graph_source import FetchToken, GraphSource
from .layout import LayoutEngine

logger = logging.getLogger(__name__)

LARGE_NETWORK_THRESHOLD = 800
UNIFIED_NETWORK_LABEL = "Unified network (no distinct subgroups detected)"


class SessionStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    EMPTY = "empty"
    ERROR = "error"


class FocusInbox:
    """Holds at most one pending focus request until the session drains it."""

    def __init__(self) -> None:
        self._pending: Optional[FocusRequest] = None

    @property
    def pending(self) -> Optional[FocusRequest]:
        return self._pending

    def deliver(self, request: FocusRequest) -> bool:
        if self._pending is not None and self._pending.key() == request.key():
            return False
        self._pending = request
        return True

    def take(self) -> Optional[FocusRequest]:
        request, self._pending = self._pending, None
        return request


class NetworkSession:
    """Owns the filters, the active graph payload and the selection of one network view.

    Every filter or dataset change issues a new fetch and cancels the one in flight;
    responses are applied only while their ``FetchToken`` is still current.
    """

    def __init__(
        self,
        source: GraphSource,
        engine: Optional[LayoutEngine] = None,
        *,
        dataset_scope: Optional[str] = None,
        settings: Optional[Settings] = None,
        keep_stale_on_error: bool = False,
        on_focus_consumed: Optional[Callable[[FocusRequest], None]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._source = source
        self._engine = engine
        self.dataset_scope = dataset_scope
        self.keep_stale_on_error = keep_stale_on_error
        self.on_focus_consumed = on_focus_consumed

        self._filters = self.default_filters()
        self.registry = IdentityRegistry()
        self.payload: Optional[GraphPayload] = None
        self.status = SessionStatus.IDLE
        self.message: Optional[str] = None
        self.notice: Optional[FocusNotFound] = None

        self.selected_node_id: Optional[str] = None
        self.selected_edge_key: Optional[str] = None
        self.highlighted_community: Optional[str] = None

        self.inbox = FocusInbox()
        self._active_focus: Optional[FocusRequest] = None
        self._focus_key: Optional[Tuple] = None

        self._token: Optional[FetchToken] = None
        self._task: Optional[asyncio.Task] = None

        if engine is not None:
            engine.on_node_press = self.toggle_node
            engine.on_edge_press = self.select_edge

    # ------------------------------------------------------------------
    # Filters and fetching
    # ------------------------------------------------------------------
    def default_filters(self) -> FilterState:
        return FilterState(
            min_edge_weight=self._settings.network_default_min_edge_weight,
            limit_nodes=self._settings.network_default_limit_nodes,
        )

    @property
    def filters(self) -> FilterState:
        return self._filters

    @property
    def query(self) -> GraphQuery:
        return self._filters.to_query(self.dataset_scope)

    @property
    def current_token(self) -> Optional[FetchToken]:
        return self._token

    def set_filters(self, filters: FilterState) -> Optional[FetchToken]:
        if filters == self._filters:
            return None
        self._filters = filters
        return self.refresh()

    def update_filters(self, **changes: Any) -> Optional[FetchToken]:
        merged = {**self._filters.model_dump(), **changes}
        return self.set_filters(FilterState.model_validate(merged))

    def apply_date_preset(self, preset: DatePreset, now: Optional[datetime] = None) -> Optional[FetchToken]:
        return self.set_filters(self._filters.with_date_preset(preset, now))

    def set_dataset_scope(self, dataset_scope: Optional[str]) -> Optional[FetchToken]:
        if dataset_scope == self.dataset_scope:
            return None
        self.dataset_scope = dataset_scope
        self.clear_selection()
        return self.refresh()

    def reset_filters(self) -> FetchToken:
        self._filters = self.default_filters()
        self.clear_selection()
        self.notice = None
        if self._engine is not None:
            self._engine.reset_layout()
        return self.refresh()

    def refresh(self) -> FetchToken:
        """Issue a fetch for the current filters, superseding any fetch in flight."""
        self._cancel_inflight()
        token = FetchToken()
        self._token = token
        self.status = SessionStatus.LOADING
        self.message = None
        query = self.query
        self._task = asyncio.get_running_loop().create_task(self._run_fetch(token, query))
        logger.debug("Issued graph fetch %s", token.request_id)
        return token

    def retry(self) -> FetchToken:
        return self.refresh()

    async def wait(self) -> None:
        """Wait until the current fetch (and any fetch that superseded it) settles."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def _run_fetch(self, token: FetchToken, query: GraphQuery) -> None:
        try:
            payload = await self._source.fetch_graph(query)
        except asyncio.CancelledError:
            logger.debug("Graph fetch %s cancelled", token.request_id)
            raise
        except DataUnavailable as exc:
            if token.cancelled:
                logger.debug("Discarding superseded empty result for fetch %s", token.request_id)
                return
            self._apply_empty(str(exc))
            return
        except Exception as exc:  # pylint: disable=broad-except
            if token.cancelled:
                logger.debug("Discarding superseded failure for fetch %s: %s", token.request_id, exc)
                return
            logger.exception("Graph fetch %s failed", token.request_id)
            self._apply_error(str(exc))
            return

        if token.cancelled:
            logger.debug("Discarding superseded response for fetch %s", token.request_id)
            return
        self._apply_payload(payload)

    def _cancel_inflight(self) -> None:
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _apply_payload(self, payload: GraphPayload) -> None:
        self.payload = payload
        self.registry.rebuild(payload.graph)
        self.status = SessionStatus.READY if payload.graph.nodes else SessionStatus.EMPTY
        self.message = payload.message or payload.truncation_reason
        self._prune_selection()
        if self._engine is not None:
            self._engine.load(payload)
            self._sync_highlight()
        logger.info(
            "Applied network graph: %d nodes, %d edges",
            len(payload.graph.nodes),
            len(payload.graph.edges),
        )
        self._apply_focus()

    def _apply_empty(self, message: str) -> None:
        logger.info("No network data: %s", message)
        self._drop_graph()
        self.status = SessionStatus.EMPTY
        self.message = message
        self._apply_focus()

    def _apply_error(self, message: str) -> None:
        if not self.keep_stale_on_error:
            self._drop_graph()
        self.status = SessionStatus.ERROR
        self.message = message

    def _drop_graph(self) -> None:
        self.payload = None
        self.registry.clear()
        self.selected_node_id = None
        self.selected_edge_key = None
        self.highlighted_community = None
        if self._engine is not None:
            self._engine.clear()

    # ------------------------------------------------------------------
    # Deep-link focus
    # ------------------------------------------------------------------
    def deliver_focus(self, request: FocusRequest) -> bool:
        """Queue a drill-down request; duplicates of the request being applied are ignored."""
        if request.key() == self._focus_key:
            logger.debug("Ignoring duplicate focus request for %s", request.focus_phone)
            return False
        if not self.inbox.deliver(request):
            return False
        self._drain_focus()
        return True

    def _drain_focus(self) -> None:
        request = self.inbox.take()
        if request is None:
            return
        self._focus_key = request.key()
        self._active_focus = request
        self.notice = None

        merged = request.merge_into(self._filters)
        if merged != self._filters:
            self._filters = merged
            self.refresh()
        elif self._task is None or self._task.done():
            if self.status in (SessionStatus.READY, SessionStatus.EMPTY):
                self._apply_focus()
            else:
                self.refresh()

    def _apply_focus(self) -> None:
        request = self._active_focus
        if request is None:
            return
        self._active_focus = None
        self._focus_key = None

        node = self.registry.lookup_node(request.focus_phone)
        if node is None:
            node = self.registry.lookup_node(canonicalize_number(request.focus_phone))
        if node is not None:
            self.highlighted_community = None
            self.select_node(node.id)
        else:
            self.notice = FocusNotFound(
                focus_phone=request.focus_phone,
                message=f"The number {request.focus_phone} is not present in the graph under the current filters",
            )
            logger.info("Focus number %s not found in network graph", request.focus_phone)

        if self.on_focus_consumed is not None:
            self.on_focus_consumed(request)

    def dismiss_notice(self) -> None:
        self.notice = None

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------
    def select_node(self, node_id: Any) -> Optional[GraphNode]:
        node = self.registry.lookup_node(node_id)
        if node is None:
            logger.debug("Cannot select unknown node %r", node_id)
            return None
        self.selected_node_id = normalize(node_id)
        self.selected_edge_key = None
        self._sync_highlight()
        return node

    def toggle_node(self, node_id: Any) -> Optional[GraphNode]:
        if normalize(node_id) and normalize(node_id) == self.selected_node_id:
            self.selected_node_id = None
            self.selected_edge_key = None
            self._sync_highlight()
            return None
        return self.select_node(node_id)

    def select_edge(self, key: Any) -> Optional[GraphEdge]:
        edge = self.registry.lookup_edge(key)
        if edge is None:
            logger.debug("Cannot select unknown edge %r", key)
            return None
        self.selected_edge_key = normalize(key)
        self.selected_node_id = None
        self._sync_highlight()
        return edge

    def highlight_community(self, community_id: Optional[str]) -> Optional[str]:
        if community_id is None or community_id == self.highlighted_community:
            self.highlighted_community = None
        else:
            self.highlighted_community = community_id
        self._sync_highlight()
        return self.highlighted_community

    def clear_selection(self) -> None:
        self.selected_node_id = None
        self.selected_edge_key = None
        self.highlighted_community = None
        self._sync_highlight()

    def _prune_selection(self) -> None:
        if self.selected_node_id and not self.registry.has_node(self.selected_node_id):
            self.selected_node_id = None
        if self.selected_edge_key and self.registry.lookup_edge(self.selected_edge_key) is None:
            self.selected_edge_key = None
        if self.highlighted_community is not None:
            known = {community.id for community in self.payload.communities} if self.payload else set()
            if self.highlighted_community not in known:
                self.highlighted_community = None

    def _sync_highlight(self) -> None:
        if self._engine is not None:
            self._engine.set_highlight(
                selected_node=self.selected_node_id,
                selected_edge=self.selected_edge_key,
                community=self.highlighted_community,
            )

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------
    @property
    def selected_node(self) -> Optional[GraphNode]:
        return self.registry.lookup_node(self.selected_node_id)

    @property
    def selected_edge(self) -> Optional[GraphEdge]:
        return self.registry.lookup_edge(self.selected_edge_key)

    def top_contacts(self, limit: Optional[int] = None) -> List[TopContact]:
        if self.selected_node is None:
            return []
        selected = self.selected_node_id
        contacts = []
        for edge in self.registry.incident_edges(selected):
            source = normalize(edge.source)
            target = normalize(edge.target)
            contacts.append(
                TopContact(
                    number=target if source == selected else source,
                    weight=edge.weight,
                    event_count=edge.event_count,
                    total_duration=edge.total_duration,
                )
            )
        contacts.sort(key=lambda contact: -contact.weight)
        return contacts[: limit if limit is not None else self._settings.network_top_contacts]

    def ego_network(self) -> Optional[EgoNetwork]:
        center = self.selected_node
        if center is None:
            return None
        edges = self.registry.incident_edges(self.selected_node_id)
        neighbour_ids: List[str] = []
        for edge in edges:
            for endpoint in (normalize(edge.source), normalize(edge.target)):
                if endpoint != self.selected_node_id and endpoint not in neighbour_ids:
                    neighbour_ids.append(endpoint)
        neighbours = [self.registry.lookup_node(node_id) for node_id in neighbour_ids]
        return EgoNetwork(
            center=center,
            neighbours=tuple(node for node in neighbours if node is not None),
            edges=tuple(edges),
        )

    def community_members(self, community_id: Optional[str] = None) -> List[GraphNode]:
        community_id = community_id if community_id is not None else self.highlighted_community
        if self.payload is None or community_id is None:
            return []
        members = [node for node in self.payload.graph.nodes if node.community == community_id]
        members.sort(key=lambda node: (-node.weighted_degree, node.id))
        return members

    def community_labels(self) -> Dict[str, str]:
        """Display labels for the community list; advisory only."""
        if self.payload is None:
            return {}
        communities = self.payload.communities
        labels: Dict[str, str] = {}
        index = 0
        for community in communities:
            if community.id == ISOLATE_COMMUNITY:
                labels[community.id] = f"Isolated nodes ({community.size} nodes, no connections)"
            elif len(communities) == 1:
                labels[community.id] = UNIFIED_NETWORK_LABEL
            else:
                index += 1
                labels[community.id] = f"Community {index}"
        return labels

    def top_nodes(self, limit: int = 10) -> List[GraphNode]:
        if self.payload is None:
            return []
        ranked = sorted(self.payload.graph.nodes, key=lambda node: (-node.weighted_degree, node.id))
        return ranked[:limit]

    @property
    def large_network_warning(self) -> bool:
        return self.payload is not None and len(self.payload.graph.nodes) > LARGE_NETWORK_THRESHOLD

    # ------------------------------------------------------------------
    # Layout controls
    # ------------------------------------------------------------------
    def pause(self) -> bool:
        return self._engine.pause() if self._engine is not None else False

    def resume(self) -> bool:
        return self._engine.resume() if self._engine is not None else False

    def stabilize(self) -> bool:
        return self._engine.stabilize() if self._engine is not None else False

    def reset_layout(self) -> None:
        if self._engine is not None:
            self._engine.reset_layout()

    def close(self) -> None:
        self._cancel_inflight()
        self._task = None
        if self._engine is not None:
            self._engine.stop()
        logger.debug("Network session closed")
