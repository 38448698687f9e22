from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, HTTPException, Query
from pydantic import ValidationError

from ..schemas.events import DatasetSummary
from ..schemas.graph import GraphPayload, GraphQuery
from ..services.events import list_datasets
from ..services.graph_builder import DataUnavailable, InvalidGraphQuery, build_network

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/network", tags=["network"])


@router.get("", response_model=GraphPayload)
def get_network(
    dataset_scope: str | None = Query(default=None, alias="datasetScope"),
    from_: str | None = Query(default=None, alias="from", description="ISO 8601 lower bound (inclusive)"),
    to: str | None = Query(default=None, description="ISO 8601 upper bound (inclusive)"),
    event_type: str = Query("all", alias="eventType"),
    min_edge_weight: int | None = Query(default=None, alias="minEdgeWeight"),
    limit_nodes: int | None = Query(default=None, alias="limitNodes"),
    limit_edges: int | None = Query(default=None, alias="limitEdges"),
) -> GraphPayload:
    raw = {
        "datasetScope": dataset_scope,
        "from": from_ or None,
        "to": to or None,
        "eventType": event_type,
        "limitNodes": limit_nodes,
        "limitEdges": limit_edges,
    }
    if min_edge_weight is not None:
        raw["minEdgeWeight"] = min_edge_weight
    try:
        query = GraphQuery.model_validate(raw)
        return build_network(query)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
    except InvalidGraphQuery as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DataUnavailable as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Failed to build network graph")
        raise HTTPException(status_code=500, detail=f"Failed to build network graph: {exc}") from exc


@router.get("/datasets", response_model=List[DatasetSummary])
def get_datasets() -> List[DatasetSummary]:
    return list_datasets()


def _validation_detail(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid graph query"
