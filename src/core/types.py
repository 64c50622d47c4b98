"""Shared dataclasses and type helpers."""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol, Tuple

from core.exceptions import PinValidationError
from core.utils import utcnow

PIN_PATTERN = re.compile(r"^\d{2}-\d{2}-\d{3}-\d{3}-\d{4}$")
PIN_GROUPS = (2, 2, 3, 3, 4)


class SourceKind(str, enum.Enum):
    """County sites the aggregator reads. Values are persisted cache keys."""
    TAX_PORTAL = "tax-portal"
    CLERK = "clerk"
    RECORDER = "recorder"
    GIS = "cookviewer"

    @property
    def label(self) -> str:
        return _SOURCE_LABELS[self]


_SOURCE_LABELS = {
    SourceKind.TAX_PORTAL: "Cook County Property Tax Portal",
    SourceKind.CLERK: "Cook County Clerk Tax Delinquency",
    SourceKind.RECORDER: "Cook County Recorder of Deeds",
    SourceKind.GIS: "Cook County GIS Viewer",
}


@dataclass(frozen=True)
class PropertyIdentifier:
    """
    A Cook County PIN in canonical ``XX-XX-XXX-XXX-XXXX`` form.

    Construct through :meth:`parse` (strict, for request input) or
    :meth:`normalize` (also accepts 14 bare digits, for bulk files).
    """

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or not PIN_PATTERN.match(self.value):
            raise PinValidationError()

    @classmethod
    def parse(cls, raw: Optional[str]) -> "PropertyIdentifier":
        """Validate a dashed PIN exactly as given."""
        if raw is None:
            raise PinValidationError()
        return cls(raw)

    @classmethod
    def normalize(cls, raw: Optional[str]) -> "PropertyIdentifier":
        """Accept a dashed PIN or any text whose digits number exactly 14."""
        if raw is None:
            raise PinValidationError()
        text = raw.strip()
        if PIN_PATTERN.match(text):
            return cls(text)
        digits = re.sub(r"\D", "", text)
        if len(digits) != 14:
            raise PinValidationError()
        return cls(format_dashed(digits))

    @classmethod
    def is_valid(cls, raw: Optional[str]) -> bool:
        return isinstance(raw, str) and bool(PIN_PATTERN.match(raw))

    @property
    def digits(self) -> str:
        """The 14 digits without dashes."""
        return self.value.replace("-", "")

    @property
    def parts(self) -> Tuple[str, str, str, str, str]:
        """The five dash-separated sub-fields."""
        a, b, c, d, e = self.value.split("-")
        return a, b, c, d, e

    def __str__(self) -> str:
        return self.value


def format_dashed(digits: str) -> str:
    """Group 14 digits as 2-2-3-3-4."""
    pieces = []
    start = 0
    for size in PIN_GROUPS:
        pieces.append(digits[start:start + size])
        start += size
    return "-".join(pieces)


class SourcePayload(Protocol):
    def to_dict(self) -> Dict[str, Any]: ...


@dataclass
class SourceDocument:
    """
    Raw material a session client hands to a parser.

    ``body`` is HTML text for the scraped sites and a dict for GIS.
    ``variant`` names the page family when a session fell back to another
    page (e.g. ``"assessor"`` for the tax portal fallback).
    """

    kind: SourceKind
    pin: PropertyIdentifier
    body: Any
    url: str
    variant: str = "primary"
    fetched_at: datetime = field(default_factory=utcnow)
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SourceRecord:
    """
    One parsed result for a (PIN, source) pair.

    A record may carry both a payload and an error: the payload holds what
    was extracted, the error names what was not.
    """

    kind: SourceKind
    pin: PropertyIdentifier
    payload: Optional[SourcePayload] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    fetched_at: datetime = field(default_factory=utcnow)
    source_url: Optional[str] = None

    @classmethod
    def failure(
        cls,
        kind: SourceKind,
        pin: PropertyIdentifier,
        message: str,
        code: str,
        source_url: Optional[str] = None,
    ) -> "SourceRecord":
        return cls(kind=kind, pin=pin, error=message, error_code=code, source_url=source_url)

    @property
    def ok(self) -> bool:
        return self.payload is not None and self.error is None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the API and the persistent cache."""
        data: Dict[str, Any] = {"pin": self.pin.value, "source": self.kind.value}
        if self.payload is not None:
            data.update(self.payload.to_dict())
        data["source_url"] = self.source_url
        data["fetched_at"] = self.fetched_at.isoformat()
        if self.error is not None:
            data["error"] = self.error
            data["error_code"] = self.error_code
        return data


__all__ = [
    "PIN_PATTERN",
    "SourceKind",
    "PropertyIdentifier",
    "format_dashed",
    "SourcePayload",
    "SourceDocument",
    "SourceRecord",
]
