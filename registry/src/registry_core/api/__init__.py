"""HTTP-facing helpers."""
