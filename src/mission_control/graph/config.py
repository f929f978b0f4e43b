"""Configuration for the memory graph view."""

from dataclasses import dataclass


@dataclass(frozen=True)
class GraphViewConfig:
    """Caps, thresholds and geometry of the graph view."""

    # Scope caps
    max_visible_nodes: int = 20
    max_visible_edges: int = 40
    max_pinned: int = 5  # FIFO eviction beyond this
    forensics_hops: int = 2  # BFS depth of the forensics layer
    trim_hop_distance: int = 3  # Dropped from view unless three-hop mode is on

    # Diagnostics
    merge_similarity_threshold: float = 0.74

    # Insight thresholds
    low_provenance_threshold: float = 0.42
    stale_after_days: float = 45.0

    # Default filter values
    default_confidence_threshold: float = 0.25

    # Layout
    saved_position_max: float = 1800.0  # Saved coordinates beyond this are stale
    node_width: float = 200.0
    node_height: float = 72.0
    node_separation: float = 22.0
    rank_separation: float = 36.0
    margin: float = 16.0
    grid_columns: int = 5
    grid_origin: tuple[float, float] = (200.0, 100.0)
    grid_spacing: tuple[float, float] = (220.0, 140.0)
    ring_center: tuple[float, float] = (200.0, 200.0)
    ring_radii: tuple[float, float] = (280.0, 180.0)
    hop_two_opacity: float = 0.42

    # Time-dependent stages are reused within one bucket of this many ms
    clock_resolution_ms: float = 60_000.0


DEFAULT_VIEW_CONFIG = GraphViewConfig()
