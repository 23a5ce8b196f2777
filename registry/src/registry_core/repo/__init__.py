"""Repositories wrapping SQL access per aggregate."""
