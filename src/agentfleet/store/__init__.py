"""On-disk JSON state."""
