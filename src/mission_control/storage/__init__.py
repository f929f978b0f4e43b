"""Workspace storage for the memory graph."""

from mission_control.storage.bootstrap import BootstrapFile, build_bootstrap_graph
from mission_control.storage.chat_log import read_recent_chat_messages
from mission_control.storage.evidence import extract_evidence, read_source_document
from mission_control.storage.extraction import ExtractionClient, build_llm_graph, extract_graph
from mission_control.storage.graph_store import GraphStore, normalize_graph

__all__ = [
    "GraphStore",
    "normalize_graph",
    "BootstrapFile",
    "build_bootstrap_graph",
    "ExtractionClient",
    "build_llm_graph",
    "extract_graph",
    "extract_evidence",
    "read_source_document",
    "read_recent_chat_messages",
]
