"""Sharded product feed cache with incremental regeneration."""

__version__ = "0.1.0"
