"""Extraction from the County Clerk delinquent tax search result."""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from core.types import PropertyIdentifier
from parsers.text import FieldErrors, node_text

SOLD_TABLE_SELECTOR = "div#collapseTwo table"
DELINQUENT_TABLE_SELECTOR = "div#collapseThree table"
SOLD_TABLE_HEADING = "Tax Sale"
DELINQUENT_TABLE_HEADING = "Tax Year"

_DATA_AS_OF_RE = re.compile(r"Data as of[:\s]+([\d/]+)", re.IGNORECASE)
_AMOUNT_RE = re.compile(r"\$?([\d,\.]+)")
_TOTAL_FIRST_RE = re.compile(r"Total Tax Balance Due 1st[^$\d]*" + _AMOUNT_RE.pattern, re.IGNORECASE)
_TOTAL_SECOND_RE = re.compile(r"Total Tax Balance Due 2nd[^$\d]*" + _AMOUNT_RE.pattern, re.IGNORECASE)


@dataclass
class SoldTax:
    tax_sale: Optional[str]
    from_year_to_year: Optional[str]
    status: Optional[str]
    status_doc_number: Optional[str]
    date: Optional[str] = None
    comment: Optional[str] = None


@dataclass
class DelinquentTax:
    tax_year: Optional[str]
    status: Optional[str]
    forfeit_date: Optional[str]
    first_installment_balance: Optional[str] = None
    second_installment_balance: Optional[str] = None
    type: Optional[str] = None
    warrant_year: Optional[str] = None


@dataclass
class ClerkPayload:
    data_as_of: Optional[str] = None
    sold_taxes: List[SoldTax] = field(default_factory=list)
    delinquent_taxes: List[DelinquentTax] = field(default_factory=list)
    total_balance_due_1st: Optional[str] = None
    total_balance_due_2nd: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _table_with_heading(soup: BeautifulSoup, selector: str, heading: str) -> Optional[Tag]:
    table = soup.select_one(selector)
    if table is not None:
        return table
    for candidate in soup.find_all("table"):
        if any(heading in th.get_text() for th in candidate.find_all("th")):
            return candidate
    return None


def _body_rows(table: Tag) -> List[List[Optional[str]]]:
    body = table.find("tbody") or table
    rows = []
    for tr in body.find_all("tr"):
        cells = tr.find_all("td")
        if cells:
            rows.append([node_text(td) for td in cells])
    return rows


def _cell(cells: List[Optional[str]], index: int) -> Optional[str]:
    return cells[index] if len(cells) > index else None


def extract_data_as_of(soup: BeautifulSoup) -> Optional[str]:
    match = _DATA_AS_OF_RE.search(soup.get_text(" "))
    return match.group(1) if match else None


def extract_sold_taxes(soup: BeautifulSoup) -> List[SoldTax]:
    table = _table_with_heading(soup, SOLD_TABLE_SELECTOR, SOLD_TABLE_HEADING)
    if table is None:
        return []
    return [
        SoldTax(
            tax_sale=cells[0],
            from_year_to_year=cells[1],
            status=cells[2],
            status_doc_number=cells[3],
            date=_cell(cells, 4),
            comment=_cell(cells, 5),
        )
        for cells in _body_rows(table)
        if len(cells) >= 4
    ]


def extract_delinquent_taxes(soup: BeautifulSoup) -> List[DelinquentTax]:
    table = _table_with_heading(soup, DELINQUENT_TABLE_SELECTOR, DELINQUENT_TABLE_HEADING)
    if table is None:
        return []
    return [
        DelinquentTax(
            tax_year=cells[0],
            status=cells[1],
            forfeit_date=cells[2],
            first_installment_balance=_cell(cells, 3),
            second_installment_balance=_cell(cells, 4),
            type=_cell(cells, 5),
            warrant_year=_cell(cells, 6),
        )
        for cells in _body_rows(table)
        if len(cells) >= 3
    ]


def extract_totals(soup: BeautifulSoup) -> tuple[Optional[str], Optional[str]]:
    """Outstanding balance totals from the sold table footer, else from page text."""
    table = _table_with_heading(soup, SOLD_TABLE_SELECTOR, SOLD_TABLE_HEADING)
    footer = table.find("tfoot") if table is not None else None
    if footer is not None:
        cells = [node_text(td) for td in footer.find_all("td")]
        if len(cells) >= 4:
            return cells[3], _cell(cells, 4)

    text = soup.get_text(" ")
    first = _TOTAL_FIRST_RE.search(text)
    second = _TOTAL_SECOND_RE.search(text)
    return (first.group(1) if first else None), (second.group(1) if second else None)


def parse_clerk(html_text: str, pin: PropertyIdentifier) -> tuple[ClerkPayload, Optional[str]]:
    soup = BeautifulSoup(html_text, "html.parser")
    errors = FieldErrors("clerk")
    first, second = errors.capture("totals", extract_totals, soup, default=(None, None))
    payload = ClerkPayload(
        data_as_of=errors.capture("data_as_of", extract_data_as_of, soup),
        sold_taxes=errors.capture("sold_taxes", extract_sold_taxes, soup, default=[]),
        delinquent_taxes=errors.capture("delinquent_taxes", extract_delinquent_taxes, soup, default=[]),
        total_balance_due_1st=first,
        total_balance_due_2nd=second,
    )
    return payload, errors.message


__all__ = ["ClerkPayload", "SoldTax", "DelinquentTax", "parse_clerk"]
