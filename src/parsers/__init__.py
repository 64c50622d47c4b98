"""Structural parsers: pure functions from a fetched document to a record.

``parse_document`` is the single entry point. It never raises: a parser
that fails outright yields a record carrying the error, and per-field
failures yield the partial payload plus an error naming the fields.
"""
from __future__ import annotations

from typing import Callable, Dict, Optional, Tuple

from core.exceptions import CookPropertyError
from core.logging_config import get_logger
from core.types import SourceDocument, SourceKind, SourcePayload, SourceRecord
from parsers.assessor import AssessorPayload, parse_assessor
from parsers.clerk import ClerkPayload, parse_clerk
from parsers.gis import GisPayload, parse_gis
from parsers.recorder import RecorderPayload, parse_consideration_amount, parse_recorder
from parsers.tax_portal import TaxPortalPayload, parse_tax_portal

LOGGER = get_logger(__name__)

ParseResult = Tuple[SourcePayload, Optional[str]]
Parser = Callable[[SourceDocument], ParseResult]


def _gis(document: SourceDocument) -> ParseResult:
    return parse_gis(document.body, document.pin), None


PARSERS: Dict[Tuple[SourceKind, str], Parser] = {
    (SourceKind.TAX_PORTAL, "primary"): lambda d: parse_tax_portal(d.body, d.pin),
    (SourceKind.TAX_PORTAL, "assessor"): lambda d: parse_assessor(d.body, d.pin),
    (SourceKind.CLERK, "primary"): lambda d: parse_clerk(d.body, d.pin),
    (SourceKind.RECORDER, "primary"): lambda d: parse_recorder(d.body, d.pin, d.url),
    (SourceKind.RECORDER, "direct"): lambda d: parse_recorder(d.body, d.pin, d.url),
    (SourceKind.GIS, "primary"): _gis,
}


def parse_document(document: SourceDocument) -> SourceRecord:
    """Parse ``document`` into a record for its source."""
    parser = PARSERS.get((document.kind, document.variant)) or PARSERS.get((document.kind, "primary"))
    record = SourceRecord(
        kind=document.kind,
        pin=document.pin,
        fetched_at=document.fetched_at,
        source_url=document.url,
    )
    if parser is None:
        record.error = f"No parser for {document.kind.value} ({document.variant})"
        record.error_code = "PARSE_ERROR"
        return record

    try:
        payload, error = parser(document)
    except CookPropertyError as e:
        LOGGER.warning(f"Failed to parse {document.kind.value} for {document.pin}: {e.message}")
        record.error = e.message
        record.error_code = e.code
        return record
    except Exception as e:
        LOGGER.error(f"Failed to parse {document.kind.value} for {document.pin}: {e}", exc_info=True)
        record.error = f"Failed to parse {document.kind.label} data"
        record.error_code = "PARSE_ERROR"
        return record

    record.payload = payload
    if error:
        record.error = error
        record.error_code = "PARSE_ERROR"
    return record


__all__ = [
    "PARSERS",
    "parse_document",
    "parse_consideration_amount",
    "AssessorPayload",
    "ClerkPayload",
    "GisPayload",
    "RecorderPayload",
    "TaxPortalPayload",
]
