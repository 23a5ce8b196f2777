"""Schema migrations applied by the embedded migration runner."""
