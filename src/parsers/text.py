"""Text normalization and per-field extraction helpers shared by the parsers."""
from __future__ import annotations

import html
import re
from typing import Any, Callable, List, Optional, TypeVar

from bs4 import BeautifulSoup, Tag

from core.logging_config import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")

# \s covers non-breaking and other unicode spaces
_WHITESPACE_RE = re.compile(r"\s+")
_MONEY_RE = re.compile(r"\$[\d,]+\.?\d*")


def clean_text(value: Optional[str]) -> Optional[str]:
    """
    Decode entities, fold all whitespace runs to one space and trim.

    Returns None for missing or blank input.
    """
    if value is None:
        return None
    text = html.unescape(value)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return text or None


def node_text(node: Optional[Tag]) -> Optional[str]:
    if node is None:
        return None
    return clean_text(node.get_text())


def text_by_id(soup: BeautifulSoup | Tag, element_id: str) -> Optional[str]:
    return node_text(soup.find(id=element_id))


def find_money(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = _MONEY_RE.search(text)
    return match.group(0) if match else None


def find_link(
    root: Optional[Tag],
    id_contains: str,
    text_contains: Optional[str] = None,
) -> Optional[Tag]:
    """First ``<a>`` under ``root`` whose id contains ``id_contains`` (case-insensitive)."""
    if root is None:
        return None
    needle = id_contains.lower()
    for link in root.find_all("a"):
        link_id = (link.get("id") or "").lower()
        if needle not in link_id:
            continue
        if text_contains is not None and text_contains not in link.get_text():
            continue
        return link
    return None


class FieldErrors:
    """
    Runs field extractors independently and remembers which ones failed.

    A markup change then costs only the affected fields; the record's
    error names them.
    """

    def __init__(self, source: str):
        self.source = source
        self.failed: List[str] = []

    def capture(self, name: str, extractor: Callable[..., T], *args: Any, default: Any = None) -> T:
        try:
            return extractor(*args)
        except Exception as e:
            LOGGER.warning(f"{self.source}: failed to extract {name}: {e}")
            self.failed.append(name)
            return default

    @property
    def message(self) -> Optional[str]:
        if not self.failed:
            return None
        return f"Failed to extract {', '.join(self.failed)}"


__all__ = [
    "clean_text",
    "node_text",
    "text_by_id",
    "find_money",
    "find_link",
    "FieldErrors",
]
