"""Registry configuration."""
