from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Optional, Protocol

import httpx

from ..config import Settings, get_settings
from ..schemas.graph import GraphPayload, GraphQuery
from .graph_builder import DataUnavailable, build_network

logger = logging.getLogger(__name__)

_request_ids = itertools.count(1)


class UpstreamError(Exception):
    """Raised when the graph builder could not produce a payload."""


class FetchToken:
    """Cancellation token for one graph request.

    Continuations of a request check ``cancelled`` before touching any state, so a
    superseded response is discarded even if it resolves after its successor.
    """

    def __init__(self) -> None:
        self.request_id = next(_request_ids)
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"FetchToken(request_id={self.request_id}, {state})"


class GraphSource(Protocol):
    async def fetch_graph(self, query: GraphQuery) -> GraphPayload:
        ...


class LocalGraphSource:
    """Builds graphs in-process on a worker thread so the event loop keeps ticking."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    async def fetch_graph(self, query: GraphQuery) -> GraphPayload:
        try:
            return await asyncio.to_thread(build_network, query, self._settings)
        except DataUnavailable:
            raise
        except Exception as exc:
            raise UpstreamError(f"Graph build failed: {exc}") from exc


class HttpGraphSource:
    """Fetches graphs from a running API.

    No timeout is configured: a request that never resolves is ended only by
    cancellation from the session (new fetch or teardown).
    """

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url or get_settings().graph_api_base_url,
            timeout=None,
        )

    async def fetch_graph(self, query: GraphQuery) -> GraphPayload:
        try:
            response = await self._client.get("/api/network", params=query.to_params())
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Graph request failed: {exc}") from exc

        if response.status_code == 404:
            raise DataUnavailable(_detail(response) or "No network data available")
        if response.status_code >= 400:
            raise UpstreamError(f"Graph request failed ({response.status_code}): {_detail(response)}")

        try:
            return GraphPayload.model_validate(response.json())
        except ValueError as exc:
            raise UpstreamError(f"Malformed graph payload: {exc}") from exc

    async def close(self) -> None:
        await self._client.aclose()


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return response.text
