"""HTTP API for the memory graph."""
