"""Extraction from the Recorder of Deeds document list.

Two table layouts exist. The wide one adds grantor, grantee, associated
document and cross-reference PIN columns after the four shared ones.
"""
from __future__ import annotations

import html
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from core.logging_config import get_logger
from core.types import PropertyIdentifier
from parsers.text import FieldErrors, node_text

LOGGER = get_logger(__name__)

RESULTS_TABLE_SELECTOR = "table.table"
ADDRESS_FIELDSET_LEGEND = "PIN & Address"
TOTAL_DOCS_SELECTOR = "span.text-big-and-bold"
CONSIDERATION_LABEL = "Consideration Amount"

EXTENDED_MIN_HEADERS = 9
EXTENDED_MIN_CELLS = 10
MIN_ROW_CELLS = 5

ADDRESS_LABELS = {"address:": "address", "city:": "city", "zipcode:": "zipcode"}


@dataclass
class RecordedDocument:
    doc_number: str
    doc_type: str
    date_recorded: Optional[str] = None
    date_executed: Optional[str] = None
    view_url: Optional[str] = None
    first_grantor: Optional[str] = None
    first_grantee: Optional[str] = None
    associated_doc_number: Optional[str] = None
    first_pin: Optional[str] = None
    property_address: Optional[str] = None
    consideration_amount: Optional[str] = None


@dataclass
class RecorderPayload:
    address: Optional[str] = None
    city: Optional[str] = None
    zipcode: Optional[str] = None
    total_documents: Optional[int] = None
    layout: str = "simple"
    documents: List[RecordedDocument] = field(default_factory=list)

    def document_links(self) -> List[Tuple[str, str]]:
        """``(doc_number, view_url)`` for every document with a detail link."""
        return [(d.doc_number, d.view_url) for d in self.documents if d.view_url]

    def apply_considerations(self, amounts: Mapping[str, str]) -> None:
        for document in self.documents:
            if document.doc_number in amounts:
                document.consideration_amount = amounts[document.doc_number]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# Extractors
# =============================================================================


def extract_address(soup: BeautifulSoup) -> Dict[str, Optional[str]]:
    values: Dict[str, Optional[str]] = {}
    for fieldset in soup.find_all("fieldset"):
        legend = node_text(fieldset.find("legend")) or ""
        if ADDRESS_FIELDSET_LEGEND not in legend:
            continue
        for label in fieldset.find_all("label"):
            key = ADDRESS_LABELS.get((node_text(label) or "").lower())
            if key is None:
                continue
            value = label.find_next_sibling("span")
            values[key] = node_text(value)
        break
    return values


def extract_total_documents(soup: BeautifulSoup) -> Optional[int]:
    text = node_text(soup.select_one(TOTAL_DOCS_SELECTOR))
    digits = "".join(ch for ch in (text or "") if ch.isdigit())
    return int(digits) if digits else None


def table_headers(table: Tag) -> List[str]:
    head = table.find("thead")
    if head is None:
        return []
    return [node_text(th) or "" for th in head.find_all("th")]


def is_address_search_table(headers: List[str]) -> bool:
    return any("PIN" in h for h in headers) and any("Address" in h for h in headers)


def is_extended_layout(headers: List[str], cell_count: int) -> bool:
    return len(headers) >= EXTENDED_MIN_HEADERS and cell_count >= EXTENDED_MIN_CELLS


def _span_text(cell: Tag) -> Optional[str]:
    span = cell.find("span")
    return node_text(span if span is not None else cell)


def parse_document_row(cells: List[Tag], extended: bool, base_url: Optional[str] = None) -> Optional[RecordedDocument]:
    """
    Map one results row to a document, or None when it lacks a number or type.

    Raises on unexpected markup; callers skip such rows.
    """
    if len(cells) < MIN_ROW_CELLS:
        return None
    link = cells[1].find("a")
    view_url = None
    if link is not None and link.get("href"):
        view_url = html.unescape(link["href"])
        if base_url:
            view_url = urljoin(base_url, view_url)

    doc_number = _span_text(cells[2])
    doc_type = _span_text(cells[5]) if len(cells) > 5 else None
    if not doc_number or not doc_type:
        return None

    document = RecordedDocument(
        doc_number=doc_number,
        doc_type=doc_type,
        date_recorded=_span_text(cells[3]),
        date_executed=_span_text(cells[4]),
        view_url=view_url,
    )
    if extended:
        document.first_grantor = _span_text(cells[6])
        document.first_grantee = _span_text(cells[7])
        document.associated_doc_number = _span_text(cells[8])
        pin_link = cells[9].find("a")
        document.first_pin = node_text(pin_link) if pin_link is not None else None
        address = cells[9].select_one("span.small span")
        document.property_address = node_text(address)
    return document


def extract_documents(soup: BeautifulSoup, base_url: Optional[str] = None) -> Tuple[str, List[RecordedDocument]]:
    """Detected layout name and the kept document rows."""
    table = soup.select_one(RESULTS_TABLE_SELECTOR)
    if table is None:
        return "simple", []
    headers = table_headers(table)
    if is_address_search_table(headers):
        return "address_search", []

    layout = "simple"
    documents: List[RecordedDocument] = []
    body = table.find("tbody") or table
    for row in body.find_all("tr"):
        cells = row.find_all("td")
        extended = is_extended_layout(headers, len(cells))
        if extended:
            layout = "extended"
        try:
            document = parse_document_row(cells, extended, base_url)
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            LOGGER.debug(f"Skipping malformed recorder row: {e}")
            continue
        if document is not None:
            documents.append(document)
    return layout, documents


def parse_consideration_amount(html_text: str) -> Optional[str]:
    """Consideration amount from a document detail page, or None."""
    try:
        soup = BeautifulSoup(html_text, "html.parser")
        for th in soup.find_all("th"):
            label = th.find("label")
            if label is not None and CONSIDERATION_LABEL in label.get_text():
                return node_text(th.find_next("td"))
        for td in soup.find_all("td"):
            if CONSIDERATION_LABEL in td.get_text():
                return node_text(td.find_next_sibling("td"))
    except Exception as e:
        LOGGER.warning(f"Failed to parse consideration amount: {e}")
    return None


def parse_recorder(
    html_text: str,
    pin: PropertyIdentifier,
    base_url: Optional[str] = None,
) -> tuple[RecorderPayload, Optional[str]]:
    soup = BeautifulSoup(html_text, "html.parser")
    errors = FieldErrors("recorder")
    address = errors.capture("address", extract_address, soup, default={})
    layout, documents = errors.capture(
        "documents", extract_documents, soup, base_url, default=("simple", [])
    )
    payload = RecorderPayload(
        address=address.get("address"),
        city=address.get("city"),
        zipcode=address.get("zipcode"),
        total_documents=errors.capture("total_documents", extract_total_documents, soup),
        layout=layout,
        documents=documents,
    )
    if payload.total_documents is None and documents:
        payload.total_documents = len(documents)
    return payload, errors.message


__all__ = [
    "RecorderPayload",
    "RecordedDocument",
    "is_extended_layout",
    "parse_consideration_amount",
    "parse_document_row",
    "parse_recorder",
]
