"""Mission Control memory graph: collapse, diagnose, rank, filter and lay out a knowledge graph."""

__version__ = "0.1.0"
