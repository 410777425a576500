"""Console UI implementation using rich."""
