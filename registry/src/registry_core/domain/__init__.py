"""Domain snapshots shared across the registry engine."""
