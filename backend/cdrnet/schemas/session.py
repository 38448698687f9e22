from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Literal, Optional, Tuple

from pydantic import Field

from .graph import CamelModel, GraphEdge, GraphNode, GraphQuery

FilterEventType = Literal["all", "call", "sms"]
DatePreset = Literal["24h", "7d", "30d", "all"]

_PRESET_WINDOWS = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


class FilterState(CamelModel):
    from_: Optional[datetime] = Field(default=None, alias="from")
    to: Optional[datetime] = None
    event_type: FilterEventType = "all"
    min_edge_weight: int = Field(default=10, ge=1)
    limit_nodes: int = Field(default=500, ge=1)

    def to_query(self, dataset_scope: Optional[str]) -> GraphQuery:
        return GraphQuery(
            dataset_scope=dataset_scope,
            from_=self.from_,
            to=self.to,
            event_type=self.event_type,
            min_edge_weight=self.min_edge_weight,
            limit_nodes=self.limit_nodes,
        )

    def with_date_preset(self, preset: DatePreset, now: Optional[datetime] = None) -> "FilterState":
        if preset == "all":
            return self.model_copy(update={"from_": None, "to": None})
        window = _PRESET_WINDOWS.get(preset)
        if window is None:
            raise ValueError(f"Unknown date preset: {preset}")
        now = now or datetime.now(timezone.utc)
        return self.model_copy(update={"from_": now - window, "to": now})


class FocusRequest(CamelModel):
    """Drill-down request from another view: pre-filter, then pre-select ``focus_phone``."""

    focus_phone: str
    filter_from: Optional[datetime] = None
    filter_to: Optional[datetime] = None
    event_type: Optional[FilterEventType] = None
    min_edge_weight: Optional[int] = Field(default=None, ge=1)
    limit_nodes: Optional[int] = Field(default=None, ge=1)

    def key(self) -> Tuple:
        return (
            self.focus_phone.strip(),
            self.filter_from.isoformat() if self.filter_from else None,
            self.filter_to.isoformat() if self.filter_to else None,
            self.event_type,
            self.min_edge_weight,
            self.limit_nodes,
        )

    def merge_into(self, filters: FilterState) -> FilterState:
        update = {}
        if self.filter_from is not None:
            update["from_"] = self.filter_from
        if self.filter_to is not None:
            update["to"] = self.filter_to
        if self.event_type is not None:
            update["event_type"] = self.event_type
        if self.min_edge_weight is not None:
            update["min_edge_weight"] = self.min_edge_weight
        if self.limit_nodes is not None:
            update["limit_nodes"] = self.limit_nodes
        return filters.model_copy(update=update)


class TopContact(CamelModel):
    number: str
    weight: float
    event_count: int = 0
    total_duration: float = 0.0


class FocusNotFound(CamelModel):
    focus_phone: str
    message: str


class EgoNetwork(CamelModel):
    center: GraphNode
    neighbours: Tuple[GraphNode, ...] = ()
    edges: Tuple[GraphEdge, ...] = ()
