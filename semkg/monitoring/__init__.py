"""Operation metrics for the knowledge graph engine."""
