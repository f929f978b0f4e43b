"""Graph session - the in-memory payload, its editor operations and round-trips.

The session owns one GraphPayload. Editor operations replace nodes (never
patch derived structures), bump the graph revision and mark the payload
dirty. Load, rebuild, save and publish are the only awaits.

Save and publish both write from the same payload, so they are serialized:
while one is in flight the other is refused with an error notice.
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Literal

from mission_control.client import GraphClient
from mission_control.exceptions import GraphApiError, GraphNotLoadedError, UnknownNodeError
from mission_control.graph.config import DEFAULT_VIEW_CONFIG, GraphViewConfig
from mission_control.graph.insights import TOPIC_KINDS
from mission_control.graph.pipeline import GraphPipeline, GraphView
from mission_control.graph.scope import FilterConfig, Layer
from mission_control.graph.text import clamp01
from mission_control.models import GraphNode, GraphPayload, GraphTelemetry

logger = logging.getLogger(__name__)

CONFIRM_DELTA = 0.08
DEPRECATE_DELTA = -0.2


@dataclass(frozen=True)
class Notice:
    """A dismissible status message."""

    kind: Literal["success", "error"]
    text: str


def _now_ms() -> float:
    return time.time() * 1000


class GraphSession:
    """Single-owner editing session over one memory graph."""

    def __init__(
        self,
        client: GraphClient | None = None,
        pipeline: GraphPipeline | None = None,
        view_config: GraphViewConfig = DEFAULT_VIEW_CONFIG,
        clock: Callable[[], float] = _now_ms,
    ):
        self.client = client or GraphClient()
        self.view_config = view_config
        self.pipeline = pipeline or GraphPipeline(view_config)
        self.clock = clock

        self.graph: GraphPayload | None = None
        self.telemetry = GraphTelemetry()
        self.filters = FilterConfig(confidence_threshold=view_config.default_confidence_threshold)
        self.dirty = False
        self.notice: Notice | None = None

        # In-flight indicators
        self.loading = False
        self.saving = False
        self.publishing = False
        self.rebuilding = False

        self.graph_revision = 0
        self.telemetry_revision = 0

    # =========================================================================
    # State helpers
    # =========================================================================

    @property
    def mutation_in_flight(self) -> bool:
        """True while a save or publish request is running."""
        return self.saving or self.publishing

    @property
    def can_save(self) -> bool:
        return self.graph is not None and self.dirty and not self.mutation_in_flight

    def dismiss_notice(self) -> None:
        self.notice = None

    def _set_graph(self, graph: GraphPayload) -> None:
        self.graph = graph
        self.graph_revision += 1

    def _require_node(self, node_id: str) -> GraphNode:
        if self.graph is None:
            raise GraphNotLoadedError("No graph loaded")
        node = self.graph.node(node_id)
        if node is None:
            raise UnknownNodeError(node_id)
        return node

    def _patch_node(self, node_id: str, **changes: Any) -> GraphNode:
        """Replace one node with a patched copy and mark the payload dirty."""
        node = self._require_node(node_id)
        patched = replace(node, **changes)
        nodes = [patched if n.id == node_id else n for n in self.graph.nodes]
        self._set_graph(replace(self.graph, nodes=nodes))
        self.dirty = True
        return patched

    # =========================================================================
    # Filters and selection
    # =========================================================================

    def update_filters(self, **changes: Any) -> FilterConfig:
        """Replace the filter configuration with some fields changed."""
        self.filters = replace(self.filters, **changes)
        return self.filters

    def reset_filters(self) -> FilterConfig:
        self.filters = self.filters.reset()
        return self.filters

    def set_relation_enabled(self, relation: str, enabled: bool) -> FilterConfig:
        self.filters = self.filters.with_relation(relation, enabled)
        return self.filters

    def select_node(self, node_id: str | None) -> None:
        """Select a node; topics and concepts also become the selected topic."""
        changes: dict[str, Any] = {"selected_node_id": node_id}
        node = self.graph.node(node_id) if self.graph is not None and node_id else None
        if node is not None and str(node.kind or "").lower() in TOPIC_KINDS:
            changes["selected_topic_id"] = node.id
            if self.filters.layer == Layer.OVERVIEW:
                changes["layer"] = Layer.TOPIC
        self.filters = replace(self.filters, **changes)

    def select_topic(self, topic_id: str | None) -> None:
        self.filters = replace(self.filters, selected_topic_id=topic_id)

    # =========================================================================
    # Editor operations
    # =========================================================================

    def confirm(self, node_id: str) -> GraphNode:
        """Raise confidence and tag the node as confirmed."""
        node = self._require_node(node_id)
        tags = list(dict.fromkeys([*node.tags, "confirmed"]))
        patched = self._patch_node(
            node_id, confidence=clamp01(node.confidence + CONFIRM_DELTA), tags=tags
        )
        self.notice = Notice("success", f"Confirmed: {node.label}")
        return patched

    def deprecate(self, node_id: str) -> GraphNode:
        """Lower confidence and tag the node as deprecated."""
        node = self._require_node(node_id)
        tags = list(dict.fromkeys([*node.tags, "deprecated"]))
        patched = self._patch_node(
            node_id, confidence=clamp01(node.confidence + DEPRECATE_DELTA), tags=tags
        )
        self.notice = Notice("success", f"Deprecated: {node.label}")
        return patched

    def edit_summary(self, node_id: str, text: str) -> GraphNode:
        node = self._require_node(node_id)
        patched = self._patch_node(node_id, summary=str(text or "").strip())
        self.notice = Notice("success", f"Updated summary for {node.label}")
        return patched

    def toggle_pin(self, node_id: str) -> bool:
        """Pin or unpin a node. Returns True when the node ends up pinned."""
        self._require_node(node_id)
        self.filters = self.filters.toggle_pin(node_id, self.view_config.max_pinned)
        self.dirty = True
        return node_id in self.filters.pinned_ids

    def move_node(self, node_id: str, x: float, y: float, dragging: bool = False) -> bool:
        """Persist a dragged position once the drag ends.

        Intermediate drag frames and moves in the overview layer are ignored.
        Returns True when the position was stored.
        """
        if dragging or self.filters.layer == Layer.OVERVIEW:
            return False
        self._patch_node(node_id, x=float(x), y=float(y))
        return True

    # =========================================================================
    # Network round-trips
    # =========================================================================

    async def load(self, mode: Literal["bootstrap"] | None = None) -> bool:
        """Load (or rebuild) the graph. On failure the previous graph is kept."""
        self.loading = True
        try:
            result = await self.client.load(mode)
        except GraphApiError as e:
            logger.error(f"Graph load failed: {e}")
            self.notice = Notice("error", str(e) or "Failed to load memory graph.")
            return False
        finally:
            self.loading = False

        self._set_graph(result.graph)
        self.telemetry = result.telemetry
        self.telemetry_revision += 1
        self.dirty = mode == "bootstrap"

        if mode == "bootstrap":
            bootstrap = result.bootstrap
            source = (
                "indexed vectors"
                if bootstrap is not None and bootstrap.source == "indexed"
                else "filesystem markdown"
            )
            files = len(bootstrap.files) if bootstrap is not None else 0
            text = f"Graph rebuilt from {source} ({files} files)."
            if bootstrap is not None and bootstrap.error:
                text = f"{text} {bootstrap.error}"
                logger.warning(f"Bootstrap extraction problem: {bootstrap.error}")
            self.notice = Notice("success", text)
            logger.info(f"Graph rebuilt from {source} ({files} files)")
        else:
            self.notice = None
        return True

    async def rebuild(self) -> bool:
        """Rebuild the graph from source material; the result must be saved explicitly."""
        self.rebuilding = True
        try:
            return await self.load("bootstrap")
        finally:
            self.rebuilding = False

    def _refuse_concurrent_mutation(self) -> bool:
        if not self.mutation_in_flight:
            return False
        self.notice = Notice("error", "Another save or publish is already in progress.")
        logger.warning("Refused graph mutation: another save or publish is in flight")
        return True

    async def save(self, reindex: bool = True) -> bool:
        """Save the dirty payload. Edits made while the request runs stay dirty."""
        if self.graph is None or not self.dirty:
            return False
        if self._refuse_concurrent_mutation():
            return False

        self.saving = True
        sent_revision = self.graph_revision
        try:
            result = await self.client.save(self.graph, reindex=reindex)
        except GraphApiError as e:
            logger.error(f"Graph save failed: {e}")
            self.notice = Notice("error", str(e) or "Failed to save graph.")
            return False
        finally:
            self.saving = False

        if self.graph_revision == sent_revision:
            if result.graph is not None:
                self._set_graph(result.graph)
            self.dirty = False
        self.notice = Notice("success", "Graph saved and indexed." if result.indexed else "Graph saved.")
        return True

    async def publish(self, reindex: bool = True) -> bool:
        """Publish the snapshot section to MEMORY.md."""
        if self.graph is None:
            return False
        if self._refuse_concurrent_mutation():
            return False

        self.publishing = True
        try:
            result = await self.client.publish(self.graph, reindex=reindex)
        except GraphApiError as e:
            logger.error(f"Snapshot publish failed: {e}")
            self.notice = Notice("error", str(e) or "Failed to publish snapshot.")
            return False
        finally:
            self.publishing = False

        self.notice = Notice(
            "success",
            "Snapshot published to MEMORY.md and indexed."
            if result.indexed
            else "Snapshot published to MEMORY.md.",
        )
        return True

    # =========================================================================
    # View
    # =========================================================================

    def view(self, now_ms: float | None = None) -> GraphView:
        """Run the pipeline for the current state.

        With nothing selected, the first collapsed node is selected.
        """
        if self.graph is None:
            raise GraphNotLoadedError("No graph loaded")
        now_ms = self.clock() if now_ms is None else now_ms

        result, self.filters = self.pipeline.run_with_default_selection(
            self.graph,
            self.telemetry,
            self.filters,
            now_ms,
            graph_revision=self.graph_revision,
            telemetry_revision=self.telemetry_revision,
        )
        return result
