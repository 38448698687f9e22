from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ISOLATE_COMMUNITY = "isolate"

EventType = Literal["all", "call", "sms", "data", "unknown"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class GraphNode(CamelModel):
    id: str
    label: Optional[str] = None
    degree: int = 0
    weighted_degree: float = 0.0
    community: str = ISOLATE_COMMUNITY
    total_events: int = 0
    total_duration: float = 0.0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None


class GraphEdge(CamelModel):
    id: Optional[str] = None
    source: str
    target: str
    weight: float = 0.0
    event_count: int = 0
    total_duration: float = 0.0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None


class CommunityMember(CamelModel):
    id: str
    weighted_degree: float = 0.0
    degree: int = 0


class Community(CamelModel):
    id: str
    size: int
    top_nodes: Tuple[CommunityMember, ...] = ()
    total_edge_weight: float = 0.0


class GraphData(CamelModel):
    nodes: Tuple[GraphNode, ...] = ()
    edges: Tuple[GraphEdge, ...] = ()


class GraphStats(CamelModel):
    node_count: int = 0
    edge_count: int = 0
    density: float = 0.0
    components: int = 0
    isolates: int = 0
    avg_degree: float = 0.0
    max_degree: int = 0
    max_weighted_degree: float = 0.0
    avg_weighted_degree: float = 0.0
    self_calls_excluded: int = 0
    build_warnings: Tuple[str, ...] = ()


class GraphPayload(CamelModel):
    dataset_scope: Optional[str] = None
    graph: GraphData = Field(default_factory=GraphData)
    communities: Tuple[Community, ...] = ()
    stats: GraphStats = Field(default_factory=GraphStats)
    truncated: bool = False
    truncation_reason: Optional[str] = None
    clustered: bool = False
    message: Optional[str] = None


class GraphQuery(CamelModel):
    dataset_scope: Optional[str] = None
    from_: Optional[datetime] = Field(default=None, alias="from")
    to: Optional[datetime] = None
    event_type: EventType = "all"
    min_edge_weight: int = Field(default=1, ge=1)
    limit_nodes: Optional[int] = Field(default=None, ge=1)
    limit_edges: Optional[int] = Field(default=None, ge=1)

    def to_params(self) -> Dict[str, Any]:
        params = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        return {key: str(value) for key, value in params.items()}
