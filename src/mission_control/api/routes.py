"""API routes for the memory graph.

Provides:
- GET/POST /graph - the load / save / publish contract
- POST /graph/view - the full view pipeline for one filter configuration
- GET /health
"""

import asyncio
import logging
import time
from typing import Any, Literal

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mission_control.graph.config import DEFAULT_VIEW_CONFIG
from mission_control.graph.pipeline import GraphPipeline
from mission_control.graph.scope import FilterConfig
from mission_control.models import GraphPayload, GraphTelemetry
from mission_control.storage.graph_store import GraphStore

logger = logging.getLogger(__name__)

router = APIRouter()
health_router = APIRouter()


# ============================================================================
# Request / Response Models
# ============================================================================


class GraphActionRequest(BaseModel):
    """Body of POST /graph."""

    action: str = "save"
    graph: dict[str, Any] = Field(default_factory=dict)
    reindex: bool = True


class FilterModel(BaseModel):
    """Wire form of FilterConfig."""

    layer: Literal["overview", "topic", "forensics"] = "topic"
    lens: Literal["topic", "entity", "decision", "file"] = "topic"
    query: str = ""
    confidence_threshold: float = Field(default=0.25, ge=0.0, le=1.0)
    time_range: Literal["7d", "30d", "90d", "all"] = "all"
    used_in_last_n_chats: int = Field(default=0, ge=0)
    conflicts_only: bool = False
    low_provenance_only: bool = False
    show_three_hops: bool = False
    disabled_relations: list[str] = Field(default_factory=list)
    selected_node_id: str | None = None
    selected_topic_id: str | None = None
    pinned_ids: list[str] = Field(default_factory=list)

    def to_config(self, max_pinned: int) -> FilterConfig:
        return FilterConfig(
            layer=self.layer,
            lens=self.lens,
            query=self.query,
            confidence_threshold=self.confidence_threshold,
            time_range=self.time_range,
            used_in_last_n_chats=self.used_in_last_n_chats,
            conflicts_only=self.conflicts_only,
            low_provenance_only=self.low_provenance_only,
            show_three_hops=self.show_three_hops,
            disabled_relations=frozenset(self.disabled_relations),
            selected_node_id=self.selected_node_id,
            selected_topic_id=self.selected_topic_id,
            pinned_ids=tuple(dict.fromkeys(self.pinned_ids))[-max_pinned:],
        )


class ViewRequest(BaseModel):
    """Body of POST /graph/view. Without a graph, the stored one is used."""

    graph: dict[str, Any] | None = None
    telemetry: dict[str, Any] | None = None
    filters: FilterModel = Field(default_factory=FilterModel)
    now_ms: float | None = Field(default=None, alias="nowMs")

    model_config = {"populate_by_name": True}


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    workspace: str
    graph_stored: bool


# ============================================================================
# Helper Functions
# ============================================================================


def get_store(request: Request) -> GraphStore:
    """Get graph store from app state."""
    return request.app.state.store


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# ============================================================================
# Graph Endpoints
# ============================================================================


@router.get("/graph")
async def load_graph(
    request: Request,
    mode: str | None = Query(default=None),
) -> Any:
    """Stored graph plus telemetry; mode=bootstrap rebuilds from markdown."""
    store = get_store(request)
    try:
        result = await store.load("bootstrap" if mode == "bootstrap" else None)
    except Exception as e:
        logger.error(f"Graph load failed: {e}")
        return error_response(str(e), 500)

    body = result.to_dict()
    body["workspace"] = str(store.settings.workspace_dir)
    body["paths"] = {
        "json": str(store.settings.graph_json_path),
        "markdown": str(store.settings.graph_markdown_path),
        "memory": str(store.settings.memory_md_path),
    }
    return body


@router.post("/graph")
async def mutate_graph(request: Request, body: GraphActionRequest) -> Any:
    """Save the graph or publish its snapshot to MEMORY.md."""
    store = get_store(request)
    try:
        if body.action == "save":
            return await store.save(body.graph, reindex=body.reindex)
        if body.action == "publish-memory-md":
            return await store.publish(body.graph, reindex=body.reindex)
    except Exception as e:
        logger.error(f"Graph {body.action} failed: {e}")
        return error_response(str(e), 500)

    return error_response(f"Unknown action: {body.action}", 400)


@router.post("/graph/view")
async def graph_view(request: Request, body: ViewRequest) -> Any:
    """Run the view pipeline and return render nodes, edges, topics and diagnostics."""
    store = get_store(request)

    try:
        if body.graph is None:
            loaded = await store.load()
            graph, telemetry = loaded.graph, loaded.telemetry
        else:
            graph = GraphPayload.from_dict(body.graph)
            telemetry = (
                GraphTelemetry.from_dict(body.telemetry) if body.telemetry else GraphTelemetry()
            )
    except (KeyError, TypeError, ValueError) as e:
        return error_response(f"Invalid graph payload: {e}", 400)
    except Exception as e:
        logger.error(f"Graph view load failed: {e}")
        return error_response(str(e), 500)

    # Layout and scoring are CPU-bound; keep them off the event loop
    pipeline = GraphPipeline(DEFAULT_VIEW_CONFIG)
    now_ms = time.time() * 1000 if body.now_ms is None else body.now_ms
    view, filters = await asyncio.to_thread(
        pipeline.run_with_default_selection,
        graph,
        telemetry,
        body.filters.to_config(DEFAULT_VIEW_CONFIG.max_pinned),
        now_ms,
    )

    result = view.to_dict()
    result["filters"] = {
        "selectedNodeId": filters.selected_node_id,
        "selectedTopicId": view.selected_topic_id,
        "pinnedIds": list(filters.pinned_ids),
    }
    return result


# ============================================================================
# Health
# ============================================================================


@health_router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint."""
    store = get_store(request)
    workspace = store.settings.workspace_dir
    return HealthResponse(
        status="healthy" if workspace.is_dir() else "degraded",
        workspace=str(workspace),
        graph_stored=store.settings.graph_json_path.is_file(),
    )
