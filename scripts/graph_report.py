#!/usr/bin/env python3
"""Print a diagnostics report for a stored memory graph.

Usage:
    uv run python scripts/graph_report.py
    uv run python scripts/graph_report.py path/to/knowledge-graph.json --telemetry telemetry.json
    uv run python scripts/graph_report.py --from-workspace --top 20
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")

# Add src to path
sys.path.insert(0, str(project_root / "src"))

from mission_control.config import settings
from mission_control.graph import (
    collapse_relations,
    compute_diagnostics,
    compute_node_insights,
    build_topic_rows,
)
from mission_control.models import GraphPayload, GraphTelemetry
from mission_control.storage.graph_store import GraphStore, normalize_graph


def load_json(path: Path) -> dict:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def print_report(
    graph: GraphPayload,
    telemetry: GraphTelemetry,
    top: int,
    used_in_last: int,
) -> None:
    """Collapsed counts, diagnostics and the most useful nodes."""
    now_ms = time.time() * 1000
    collapsed = collapse_relations(graph.nodes, graph.edges, telemetry.document_mtimes())
    diagnostics = compute_diagnostics(collapsed.nodes, telemetry.source_documents)
    insights = compute_node_insights(
        collapsed,
        diagnostics,
        telemetry.source_documents,
        telemetry.recent_chat_messages,
        used_in_last,
        now_ms,
    )

    print("\n=== Memory Graph Report ===\n")
    print(f"Raw graph:       {len(graph.nodes)} nodes, {len(graph.edges)} edges")
    print(f"Collapsed graph: {len(collapsed.nodes)} nodes, {len(collapsed.edges)} edges")
    print(f"Relation nodes removed: {len(collapsed.relation_node_ids)}")
    print(f"Relation types: {', '.join(collapsed.relation_types) or '-'}")
    print(f"Source documents: {len(telemetry.source_documents)}")
    print(f"Recent chat messages: {len(telemetry.recent_chat_messages)}")

    print("\n--- Diagnostics ---")
    print(f"  Conflicts: {len(diagnostics.conflicts)}")
    for group in diagnostics.conflicts[:10]:
        print(f"    [{group.canonical}]")
        for statement in group.statements:
            print(f"      - {statement}")
    print(f"  Duplicate clusters: {len(diagnostics.duplicates)}")
    for cluster in diagnostics.duplicates[:10]:
        print(f"    {', '.join(cluster.labels)}")
    print(f"  Merge suggestions: {len(diagnostics.merge_suggestions)}")
    for suggestion in diagnostics.merge_suggestions[:10]:
        print(f"    {suggestion.a.label} <-> {suggestion.b.label} ({suggestion.similarity:.0%})")

    print("\n--- Topics ---")
    for row in build_topic_rows(collapsed, insights)[:top]:
        print(
            f"  {row.topic:<40} facts={row.facts_count:<3} "
            f"usage={row.usage_count:<3} conflicts={row.conflicts_count:<3} source={row.top_source}"
        )

    print(f"\n--- Top {top} nodes by usefulness ---")
    ranked = sorted(collapsed.nodes, key=lambda n: insights[n.id].usefulness, reverse=True)
    for node in ranked[:top]:
        insight = insights[node.id]
        flags = []
        if insight.conflicts:
            flags.append(f"{insight.conflicts} conflict(s)")
        if insight.low_provenance:
            flags.append("unverified")
        if insight.stale:
            flags.append("stale")
        print(
            f"  {insight.usefulness:.3f}  {node.label[:48]:<48} ({node.kind})"
            + (f"  [{', '.join(flags)}]" if flags else "")
        )


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Diagnostics report for a memory graph"
    )
    parser.add_argument(
        "graph",
        nargs="?",
        type=Path,
        default=None,
        help=f"Graph JSON file (default: {settings.graph_json_path})",
    )
    parser.add_argument(
        "--telemetry",
        type=Path,
        default=None,
        help="Telemetry JSON file (sourceDocuments, recentChatMessages)",
    )
    parser.add_argument(
        "--from-workspace",
        action="store_true",
        help="Collect telemetry from the configured workspace instead of a file",
    )
    parser.add_argument(
        "--top",
        type=int,
        default=15,
        help="Number of nodes and topics to list",
    )
    parser.add_argument(
        "--used-in-last",
        type=int,
        default=0,
        help="Chat window for retrieval-in-window counts",
    )

    args = parser.parse_args()

    graph_path = args.graph or settings.graph_json_path
    if not graph_path.is_file():
        print(f"Graph file not found: {graph_path}")
        sys.exit(1)
    graph = normalize_graph(load_json(graph_path))

    if args.telemetry:
        telemetry = GraphTelemetry.from_dict(load_json(args.telemetry))
    elif args.from_workspace:
        telemetry = await GraphStore(settings).read_telemetry(graph)
    else:
        telemetry = GraphTelemetry()

    print_report(graph, telemetry, args.top, args.used_in_last)


if __name__ == "__main__":
    asyncio.run(main())
