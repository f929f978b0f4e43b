"""Memory graph view pipeline.

Provides:
- Relation collapsing (reified relation nodes -> typed, aggregated edges)
- Diagnostics (conflicts, duplicates, merge suggestions)
- Node usefulness scoring and the topic table
- Scope filtering behind an immutable FilterConfig
- Ranked layout with grid and ring fallbacks
"""

from mission_control.graph.collapse import AggregatedEdge, CollapsedGraph, collapse_relations
from mission_control.graph.config import DEFAULT_VIEW_CONFIG, GraphViewConfig
from mission_control.graph.diagnostics import Diagnostics, compute_diagnostics
from mission_control.graph.forensics import Forensics, build_forensics
from mission_control.graph.insights import (
    NodeInsight,
    TopicRow,
    build_topic_rows,
    compute_node_insights,
)
from mission_control.graph.layout import (
    GraphLayout,
    LayoutAlgorithm,
    RankedLayout,
    RenderEdge,
    RenderNode,
    layout_view,
)
from mission_control.graph.pipeline import GraphPipeline, GraphView
from mission_control.graph.scope import FilterConfig, Layer, Lens, ScopeResult, TimeRange, filter_scope

__all__ = [
    # Config
    "GraphViewConfig",
    "DEFAULT_VIEW_CONFIG",
    # Stages
    "AggregatedEdge",
    "CollapsedGraph",
    "collapse_relations",
    "Diagnostics",
    "compute_diagnostics",
    "NodeInsight",
    "TopicRow",
    "compute_node_insights",
    "build_topic_rows",
    "FilterConfig",
    "Layer",
    "Lens",
    "TimeRange",
    "ScopeResult",
    "filter_scope",
    "LayoutAlgorithm",
    "RankedLayout",
    "RenderNode",
    "RenderEdge",
    "GraphLayout",
    "layout_view",
    "Forensics",
    "build_forensics",
    # Pipeline
    "GraphPipeline",
    "GraphView",
]
