"""Authentication and scope authorization."""
