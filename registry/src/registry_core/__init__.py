"""Storage and metadata engine for a private pub package registry."""

__version__ = "0.1.0"
