"""Extraction from the assessor page the tax portal falls back to.

The assessor site lays out values as label/detail span pairs inside
``div.detail-row`` and groups sections into bootstrap collapse panels.
"""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from core.types import PropertyIdentifier
from parsers.text import FieldErrors, clean_text, node_text

DETAIL_ROW_SELECTOR = "div.detail-row"
LABEL_SELECTOR = "span.detail-row--label"
DETAIL_SELECTOR = "span.detail-row--detail"
SUMMARY_SELECTOR = "div.property-details-info"
VALUATION_PANEL_ID = "collapseOne"
CHARACTERISTICS_PANEL_ID = "collapseTwo"
EXEMPTION_PANEL_ID = "collapseFour"
APPEALS_PANEL_ID = "collapseFive"
TABLE_HEADER_SELECTOR = "div.pt-header"
TABLE_BODY_SELECTOR = "div.pt-body"

_YEAR_RE = re.compile(r"\b(\d{4})\b")

SUMMARY_LABELS = {
    "pin": "pin",
    "address": "address",
    "city": "city",
    "township": "township",
    "property classification": "property_class",
    "square footage (land)": "land_square_footage",
    "neighborhood": "neighborhood",
    "taxcode": "tax_code",
    "next scheduled reassessment": "next_reassessment",
}

VALUATION_LABELS = {
    "total estimated market value": "estimated_market_value",
    "total assessed value": "total_assessed_value",
    "land assessed value": "land_assessed_value",
    "building assessed value": "building_assessed_value",
}

CHARACTERISTIC_LABELS = {
    "description": "description",
    "residence type": "residence_type",
    "use": "use",
    "apartments": "apartments",
    "exterior construction": "exterior_construction",
    "full baths": "full_baths",
    "half baths": "half_baths",
    "basement": "basement",
    "attic": "attic",
    "central air": "central_air",
    "number of fireplaces": "fireplaces",
    "garage size/type": "garage",
    "age": "age",
    "building square footage": "building_square_footage",
    "assessment phase": "assessment_phase",
}

EXEMPTION_COLUMNS = ("year", "homeowner", "senior", "senior_freeze", "disabled_persons", "disabled_veterans")


@dataclass
class AssessorPayload:
    """Fields recovered from the assessor page."""

    summary: Dict[str, Optional[str]] = field(default_factory=dict)
    valuations: Dict[str, Dict[str, Optional[str]]] = field(default_factory=dict)
    valuation_years: List[str] = field(default_factory=list)
    characteristics: Dict[str, Optional[str]] = field(default_factory=dict)
    exemption_history: List[Dict[str, Optional[str]]] = field(default_factory=list)
    appeals: List[Dict[str, Optional[str]]] = field(default_factory=list)
    variant: str = "assessor"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _normalize_label(text: Optional[str]) -> str:
    return (text or "").rstrip(":").strip().lower()


def detail_rows(root: Optional[Tag], labels: Dict[str, str]) -> Dict[str, Optional[str]]:
    """Map the known labels under ``root`` to their detail text."""
    values: Dict[str, Optional[str]] = {}
    if root is None:
        return values
    for row in root.select(DETAIL_ROW_SELECTOR):
        label = _normalize_label(node_text(row.select_one(LABEL_SELECTOR)))
        key = labels.get(label)
        if key and key not in values:
            values[key] = node_text(row.select_one(DETAIL_SELECTOR))
    return values


def _row_cells(row: Tag) -> List[Optional[str]]:
    cells = row.find_all("div", recursive=False) or row.find_all(["div", "span", "td"])
    return [node_text(cell) for cell in cells]


def extract_summary(soup: BeautifulSoup) -> Dict[str, Optional[str]]:
    return detail_rows(soup.select_one(SUMMARY_SELECTOR), SUMMARY_LABELS)


def extract_valuations(soup: BeautifulSoup) -> tuple[List[str], Dict[str, Dict[str, Optional[str]]]]:
    """
    Current and prior year values from the valuation panel.

    The header row names the years; each body row is a label followed by
    one cell per year.
    """
    panel = soup.find(id=VALUATION_PANEL_ID)
    if panel is None:
        return [], {}
    header = panel.select_one(TABLE_HEADER_SELECTOR)
    years = _YEAR_RE.findall(header.get_text(" ")) if header is not None else []
    valuations: Dict[str, Dict[str, Optional[str]]] = {}
    for row in panel.select(TABLE_BODY_SELECTOR):
        cells = _row_cells(row)
        if not cells:
            continue
        key = VALUATION_LABELS.get(_normalize_label(cells[0]))
        if key is None:
            continue
        values = cells[1:]
        valuations[key] = {
            "current": values[0] if len(values) > 0 else None,
            "prior": values[1] if len(values) > 1 else None,
        }
    return years[:2], valuations


def extract_characteristics(soup: BeautifulSoup) -> Dict[str, Optional[str]]:
    return detail_rows(soup.find(id=CHARACTERISTICS_PANEL_ID), CHARACTERISTIC_LABELS)


def extract_exemption_history(soup: BeautifulSoup) -> List[Dict[str, Optional[str]]]:
    panel = soup.find(id=EXEMPTION_PANEL_ID)
    if panel is None:
        return []
    history = []
    for row in panel.select(TABLE_BODY_SELECTOR):
        cells = _row_cells(row)
        if not cells or not _YEAR_RE.fullmatch(cells[0] or ""):
            continue
        history.append(dict(zip(EXEMPTION_COLUMNS, cells)))
    return history


def extract_appeals(soup: BeautifulSoup) -> List[Dict[str, Optional[str]]]:
    panel = soup.find(id=APPEALS_PANEL_ID)
    if panel is None:
        return []
    appeals = []
    for row in panel.select(TABLE_BODY_SELECTOR):
        cells = [c for c in _row_cells(row) if c]
        if cells:
            appeals.append({"year": cells[0], "details": clean_text(" ".join(cells[1:]))})
    return appeals


def parse_assessor(html_text: str, pin: PropertyIdentifier) -> tuple[AssessorPayload, Optional[str]]:
    soup = BeautifulSoup(html_text, "html.parser")
    errors = FieldErrors("assessor")
    years, valuations = errors.capture("valuations", extract_valuations, soup, default=([], {}))
    payload = AssessorPayload(
        summary=errors.capture("summary", extract_summary, soup, default={}),
        valuations=valuations,
        valuation_years=years,
        characteristics=errors.capture("characteristics", extract_characteristics, soup, default={}),
        exemption_history=errors.capture("exemption_history", extract_exemption_history, soup, default=[]),
        appeals=errors.capture("appeals", extract_appeals, soup, default=[]),
    )
    return payload, errors.message


__all__ = ["AssessorPayload", "detail_rows", "parse_assessor"]
