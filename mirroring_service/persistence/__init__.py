"""
Persistence — Durable registry of mirrored chains and target types.
"""

from .tree import Entry, KeyValueTree

__all__ = ["Entry", "KeyValueTree"]
