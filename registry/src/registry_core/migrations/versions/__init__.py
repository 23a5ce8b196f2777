"""Ordered migration modules; identifiers sort lexically."""
