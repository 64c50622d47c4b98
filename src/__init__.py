"""Top-level package for the Cook County property aggregator."""
from __future__ import annotations

__version__ = "1.0.0"

__all__ = [
    "api",
    "core",
    "parsers",
    "scrapers",
    "services",
]
