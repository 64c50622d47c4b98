"""API route modules."""
from __future__ import annotations

from . import bids, cache, health, imports, property

__all__ = [
    "bids",
    "cache",
    "health",
    "imports",
    "property",
]
