"""Client for the memory graph load/save/publish endpoint."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Literal

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from mission_control.config import settings
from mission_control.exceptions import GraphApiError
from mission_control.models import (
    BootstrapInfo,
    GraphLoadResult,
    GraphPayload,
    GraphTelemetry,
)

logger = logging.getLogger(__name__)

SAVE_ACTION = "save"
PUBLISH_ACTION = "publish-memory-md"


@dataclass
class SaveResult:
    """Response of a save request."""

    graph: GraphPayload | None = None
    indexed: bool = False
    reindex_error: str | None = None


@dataclass
class PublishResult:
    """Response of a publish request."""

    indexed: bool = False
    reindex_error: str | None = None


class GraphClient:
    """Async-wrapped client for the graph endpoint using requests."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        retries: int | None = None,
    ) -> None:
        self.base_url = (base_url or settings.graph_api_base_url).rstrip("/")
        self.timeout = timeout or settings.graph_api_timeout
        self.retries = settings.graph_api_retries if retries is None else retries
        self._session: requests.Session | None = None

    @property
    def graph_url(self) -> str:
        return f"{self.base_url}/graph"

    def _get_session(self) -> requests.Session:
        """Get or create requests session.

        Retries cover idempotent GETs only; a retried POST could double-apply.
        """
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({
                "Content-Type": "application/json",
                "Cache-Control": "no-store",
            })
            adapter = HTTPAdapter(
                max_retries=Retry(
                    total=self.retries,
                    backoff_factor=0.5,
                    allowed_methods=frozenset(["GET"]),
                    status_forcelist=(502, 503, 504),
                    raise_on_status=False,
                ),
            )
            self._session.mount("http://", adapter)
            self._session.mount("https://", adapter)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            self._session.close()
            self._session = None

    @staticmethod
    def _parse(response: requests.Response) -> dict[str, Any]:
        """Decode a response body, raising GraphApiError on contract failures."""
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            if response.ok:
                raise GraphApiError("Graph endpoint returned an unreadable response", response.status_code)
            raise GraphApiError(f"HTTP {response.status_code}", response.status_code)

        error = data.get("error")
        if not response.ok:
            raise GraphApiError(str(error or f"HTTP {response.status_code}"), response.status_code)
        # Save/publish report reindex problems next to ok=true; those are not failures
        if error and not data.get("ok"):
            raise GraphApiError(str(error), response.status_code)
        return data

    def _sync_get(self, params: dict[str, str]) -> dict[str, Any]:
        response = self._get_session().get(self.graph_url, params=params, timeout=self.timeout)
        return self._parse(response)

    def _sync_post(self, body: dict[str, Any]) -> dict[str, Any]:
        response = self._get_session().post(self.graph_url, json=body, timeout=self.timeout)
        return self._parse(response)

    async def _call(self, fn, *args: Any) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(fn, *args)
        except requests.RequestException as e:
            logger.error(f"Graph request failed: {e}")
            raise GraphApiError(f"Graph request failed: {e}") from e

    async def load(self, mode: Literal["bootstrap"] | None = None) -> GraphLoadResult:
        """Fetch the graph and telemetry; mode="bootstrap" rebuilds from source files."""
        params = {"mode": mode} if mode else {}
        data = await self._call(self._sync_get, params)

        graph = GraphPayload.from_dict(data["graph"]) if data.get("graph") else GraphPayload()
        telemetry = (
            GraphTelemetry.from_dict(data["telemetry"]) if data.get("telemetry") else GraphTelemetry()
        )
        bootstrap = BootstrapInfo.from_dict(data["bootstrap"]) if data.get("bootstrap") else None

        logger.info(
            f"Loaded graph ({mode or 'stored'}): {len(graph.nodes)} nodes, "
            f"{len(graph.edges)} edges, {len(telemetry.source_documents)} source documents"
        )
        return GraphLoadResult(graph=graph, telemetry=telemetry, bootstrap=bootstrap)

    async def save(self, graph: GraphPayload, reindex: bool = True) -> SaveResult:
        """Persist the graph. The server may return a normalized copy."""
        data = await self._call(
            self._sync_post,
            {"action": SAVE_ACTION, "graph": graph.to_dict(), "reindex": reindex},
        )
        saved = GraphPayload.from_dict(data["graph"]) if data.get("graph") else None
        logger.info(f"Saved graph: {len(graph.nodes)} nodes (indexed={bool(data.get('indexed'))})")
        return SaveResult(
            graph=saved,
            indexed=bool(data.get("indexed")),
            reindex_error=data.get("error"),
        )

    async def publish(self, graph: GraphPayload, reindex: bool = True) -> PublishResult:
        """Write the snapshot section into MEMORY.md."""
        data = await self._call(
            self._sync_post,
            {"action": PUBLISH_ACTION, "graph": graph.to_dict(), "reindex": reindex},
        )
        logger.info(f"Published snapshot (indexed={bool(data.get('indexed'))})")
        return PublishResult(indexed=bool(data.get("indexed")), reindex_error=data.get("error"))
