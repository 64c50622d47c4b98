"""Structured extraction from the tax portal result page.

The portal renders ASP.NET repeaters, so multi-year data lives under ids
suffixed ``_0`` .. ``_9``. Each walk stops at the first index without a
year label.
"""
from __future__ import annotations

import html
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from core.types import PropertyIdentifier
from parsers.text import FieldErrors, clean_text, find_link, find_money, node_text, text_by_id

# =============================================================================
# Selectors
# =============================================================================

PROPERTY_INFO_PREFIX = "ContentPlaceHolder1_PropertyInfo_"
TAX_YEAR_PREFIX = "ContentPlaceHolder1_TaxYearInfo_"
TAX_CALCULATOR_PREFIX = "ContentPlaceHolder1_TaxCalculator2_"
TAX_BILL_PREFIX = "ContentPlaceHolder1_TaxBillInfo_rptTaxBill_"
EXEMPTION_PREFIX = "ContentPlaceHolder1_ExemptionInfo_rptExemptions_"
APPEAL_PREFIX = "ContentPlaceHolder1_AppealsInfo_rptAppeals_"
REDEMPTION_PREFIX = "ContentPlaceHolder1_RedemptionInfo_rptRedemption_"
REFUND_MESSAGE_IDS = (
    "ContentPlaceHolder1_RefundsInfo_refundMessage",
    "ContentPlaceHolder1_RefundsInfo_refundMessage2",
)
PROPERTY_IMAGE_ID = "ContentPlaceHolder1_PropertyImage_propertyImage"
GIS_LINK_ID = "ContentPlaceHolder1_PropertyImage_gisLink"
ASSESSED_HISTORY_TABLE_ID = "assessdhistorytable"
TAX_RATE_HISTORY_TABLE_ID = "taxratehistorytable"
RECORDED_DOC_SELECTOR = "div.recorddocspace"

REPEATER_MAX = 10

_RECORDED_DOC_RE = re.compile(r"(\d+)\s*-\s*(.+?)\s*-\s*([\d/]+)")
_EXEMPTION_COUNT_RE = re.compile(r"(\d+)\s+Exemption")
_TAX_RATE_HISTORY_RE = re.compile(r"(\d{4})\s+([\d.]+)")


# =============================================================================
# Payload
# =============================================================================


@dataclass
class PropertyInfo:
    address: Optional[str] = None
    city: Optional[str] = None
    zip: Optional[str] = None
    township: Optional[str] = None
    mailing_name: Optional[str] = None
    mailing_address: Optional[str] = None
    mailing_city_state_zip: Optional[str] = None


@dataclass
class Characteristics:
    assessed_value: Optional[str] = None
    estimated_value: Optional[str] = None
    lot_size: Optional[str] = None
    building_size: Optional[str] = None
    property_class: Optional[str] = None
    property_class_description: Optional[str] = None
    tax_rate: Optional[str] = None
    tax_code: Optional[str] = None
    assessment_pass: Optional[str] = None
    assessed_value_history: List[Dict[str, Optional[str]]] = field(default_factory=list)
    tax_rate_history: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class TaxCalculator:
    assessed_value: Optional[str] = None
    state_equalization_factor: Optional[str] = None
    equalized_assessed_value: Optional[str] = None
    local_tax_rate: Optional[str] = None
    total_tax_before_exemptions: Optional[str] = None
    homeowner_exemption: Optional[str] = None
    senior_citizen_exemption: Optional[str] = None
    senior_freeze_exemption: Optional[str] = None
    total_tax_after_exemptions: Optional[str] = None


@dataclass
class TaxBill:
    year: str
    amount: str = ""
    payment_status: Optional[str] = None
    amount_due: Optional[str] = None
    exemptions_received: Optional[int] = None


@dataclass
class Exemption:
    year: str
    exemptions_received: Optional[int] = None


@dataclass
class Appeal:
    year: str
    status: Optional[str] = None


@dataclass
class TaxSaleEntry:
    year: str
    status: str = "Unknown"
    details: Optional[str] = None


@dataclass
class RecordedDocument:
    document_number: str
    document_type: str
    date_recorded: str


@dataclass
class PropertyImage:
    photo: Optional[str] = None
    street_view_url: Optional[str] = None
    cookviewer_url: Optional[str] = None


@dataclass
class TaxPortalPayload:
    """Everything extracted from one tax portal result page."""

    property_info: Optional[PropertyInfo] = None
    characteristics: Optional[Characteristics] = None
    tax_calculator: Optional[TaxCalculator] = None
    tax_bills: List[TaxBill] = field(default_factory=list)
    exemptions: List[Exemption] = field(default_factory=list)
    appeals: List[Appeal] = field(default_factory=list)
    refund: Optional[Dict[str, str]] = None
    tax_sale_delinquencies: List[TaxSaleEntry] = field(default_factory=list)
    recorded_documents: List[RecordedDocument] = field(default_factory=list)
    property_image: Optional[PropertyImage] = None
    variant: str = "tax_portal"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# Extractors
# =============================================================================


def _has_values(obj: Any) -> bool:
    return any(value not in (None, "", []) for value in asdict(obj).values())


def _year(soup: BeautifulSoup, element_id: str) -> Optional[str]:
    value = text_by_id(soup, element_id)
    return value.rstrip(":") if value else None


def extract_property_info(soup: BeautifulSoup) -> Optional[PropertyInfo]:
    p = PROPERTY_INFO_PREFIX
    info = PropertyInfo(
        address=text_by_id(soup, f"{p}propertyAddress"),
        city=text_by_id(soup, f"{p}propertyCity"),
        zip=text_by_id(soup, f"{p}propertyZip"),
        township=text_by_id(soup, f"{p}propertyTownship"),
        mailing_name=text_by_id(soup, f"{p}propertyMailingName"),
        mailing_address=text_by_id(soup, f"{p}propertyMailingAddress"),
        mailing_city_state_zip=text_by_id(soup, f"{p}propertyMailingCityStateZip"),
    )
    return info if _has_values(info) else None


def _assessed_value_history(soup: BeautifulSoup) -> List[Dict[str, Optional[str]]]:
    table = soup.find("table", id=ASSESSED_HISTORY_TABLE_ID)
    if table is None:
        return []
    history = []
    for row in table.find_all("tr"):
        cells = row.find_all("td")
        if len(cells) >= 2:
            history.append({"year": node_text(cells[0]), "value": node_text(cells[1])})
    return history


def _tax_rate_history(soup: BeautifulSoup) -> List[Dict[str, str]]:
    table = soup.find("table", id=TAX_RATE_HISTORY_TABLE_ID)
    if table is None:
        return []
    history = []
    for row in table.find_all("tr"):
        match = _TAX_RATE_HISTORY_RE.search(node_text(row.find("td")) or "")
        if match:
            history.append({"year": match.group(1), "rate": match.group(2)})
    return history


def extract_characteristics(soup: BeautifulSoup) -> Optional[Characteristics]:
    p = TAX_YEAR_PREFIX
    info = Characteristics(
        assessed_value=(
            text_by_id(soup, f"{p}propertyAssessedValue")
            or text_by_id(soup, f"{p}lblTaxYearInfoAssessedValue")
        ),
        estimated_value=text_by_id(soup, f"{p}propertyEstimatedValue"),
        lot_size=text_by_id(soup, f"{p}propertyLotSize"),
        building_size=text_by_id(soup, f"{p}propertyBuildingSize"),
        property_class=text_by_id(soup, f"{p}propertyClass"),
        property_class_description=text_by_id(soup, f"{p}msgPropertyClassDescription"),
        tax_rate=text_by_id(soup, f"{p}propertyTaxRate"),
        tax_code=text_by_id(soup, f"{p}propertyTaxCode"),
        assessment_pass=text_by_id(soup, f"{p}propertyAssessorPass"),
        assessed_value_history=_assessed_value_history(soup),
        tax_rate_history=_tax_rate_history(soup),
    )
    return info if _has_values(info) else None


def extract_tax_calculator(soup: BeautifulSoup) -> Optional[TaxCalculator]:
    p = TAX_CALCULATOR_PREFIX
    info = TaxCalculator(
        assessed_value=text_by_id(soup, f"{p}lblAssessedValue"),
        state_equalization_factor=text_by_id(soup, f"{p}lblEqualizationFactor"),
        equalized_assessed_value=text_by_id(soup, f"{p}lblEqualizedValue"),
        local_tax_rate=text_by_id(soup, f"{p}lblLocalTaxRate"),
        total_tax_before_exemptions=text_by_id(soup, f"{p}lblTaxBeforeExemptions"),
        homeowner_exemption=text_by_id(soup, f"{p}lblHomeownerExemption"),
        senior_citizen_exemption=text_by_id(soup, f"{p}lblSeniorCitizenExemption"),
        senior_freeze_exemption=text_by_id(soup, f"{p}lblSeniorFreezeExemption"),
        total_tax_after_exemptions=text_by_id(soup, f"{p}lblTaxAfterExemptions"),
    )
    return info if _has_values(info) else None


def classify_payment(soup: BeautifulSoup, index: int) -> tuple[Optional[str], Optional[str]]:
    """
    Payment status and amount due for tax bill ``index``.

    A bill panel holds either a pay-online link (balance due) or a paid
    marker; older years show a payment-history panel instead.
    """
    status: Optional[str] = None
    amount_due: Optional[str] = None
    current_panel = soup.find(id=f"{TAX_BILL_PREFIX}Panel1_{index}")
    history_panel = soup.find(id=f"{TAX_BILL_PREFIX}Panel3_{index}")

    if current_panel is not None:
        pay_link = find_link(current_panel, "taxpayonline", text_contains="Pay Online:")
        if pay_link is not None:
            status = "Balance Due"
            amount_due = find_money(pay_link.get_text())
        if find_link(current_panel, "taxpaid") is not None:
            status = "Paid"
    elif history_panel is not None:
        history_link = find_link(history_panel, "taxpaymenthistory")
        if history_link is not None:
            text = clean_text(history_link.get_text()) or ""
            lowered = text.lower()
            if "paid" in lowered:
                status = "Paid"
            elif "balance" in lowered or "due" in lowered:
                status = "Balance Due"
            else:
                status = text or None
    return status, amount_due


def _exemption_count(soup: BeautifulSoup, index: int) -> Optional[int]:
    panel = soup.find(id=f"{EXEMPTION_PREFIX}Panel3_{index}")
    link = find_link(panel, "exemption")
    if link is None:
        return None
    match = _EXEMPTION_COUNT_RE.search(link.get_text())
    return int(match.group(1)) if match else None


def extract_exemptions(soup: BeautifulSoup) -> List[Exemption]:
    exemptions = []
    for i in range(REPEATER_MAX):
        year = _year(soup, f"{EXEMPTION_PREFIX}exemptionTaxYear_{i}")
        if not year:
            break
        exemptions.append(Exemption(year=year, exemptions_received=_exemption_count(soup, i)))
    return exemptions


def extract_tax_bills(soup: BeautifulSoup, exemptions: Optional[List[Exemption]] = None) -> List[TaxBill]:
    by_year = {e.year: e.exemptions_received for e in (exemptions or [])}
    bills = []
    for i in range(REPEATER_MAX):
        year = _year(soup, f"{TAX_BILL_PREFIX}taxBillYear_{i}")
        if not year:
            break
        status, amount_due = classify_payment(soup, i)
        bills.append(
            TaxBill(
                year=year,
                amount=text_by_id(soup, f"{TAX_BILL_PREFIX}taxBillAmount_{i}") or "",
                payment_status=status,
                amount_due=amount_due,
                exemptions_received=by_year.get(year),
            )
        )
    return bills


def extract_appeals(soup: BeautifulSoup) -> List[Appeal]:
    appeals = []
    for i in range(REPEATER_MAX):
        year = _year(soup, f"{APPEAL_PREFIX}appealTaxYear_{i}")
        if not year:
            break
        appeal = Appeal(year=year)
        not_available = soup.find("a", id=f"appealsna2{year}-button")
        not_accepting = soup.find("a", id=f"appealsnotaccepting2{year}-button")
        if not_available is not None and "Not Available" in not_available.get_text():
            appeal.status = "Not Available"
        if not_accepting is not None and "Appeal Information" in not_accepting.get_text():
            appeal.status = "Not Accepting"
        appeals.append(appeal)
    return appeals


def extract_refund(soup: BeautifulSoup) -> Optional[Dict[str, str]]:
    for element_id in REFUND_MESSAGE_IDS:
        message = text_by_id(soup, element_id)
        if message:
            status = "No Refund Available" if "No Refund" in message else "Refund Available"
            return {"status": status, "message": message}
    return None


def classify_tax_sale(soup: BeautifulSoup, index: int) -> tuple[str, Optional[str]]:
    """Status of tax sale row ``index`` from whichever of three panels is present."""
    sold_panel = soup.find(id=f"{REDEMPTION_PREFIX}Panel4_{index}")
    no_sale_panel = soup.find(id=f"{REDEMPTION_PREFIX}Panel8_{index}")
    not_occurred_panel = soup.find(id=f"{REDEMPTION_PREFIX}Panel9_{index}")

    if sold_panel is not None:
        link = find_link(sold_panel, "taxsale")
        if link is not None:
            return "Sold", clean_text(link.get_text())
        return "Unknown", None
    if no_sale_panel is not None:
        return node_text(no_sale_panel.find("a")) or "No Tax Sale", None
    if not_occurred_panel is not None:
        return node_text(not_occurred_panel.find("a")) or "Tax Sale Has Not Occurred", None
    return "Unknown", None


def extract_tax_sale_delinquencies(soup: BeautifulSoup) -> List[TaxSaleEntry]:
    entries = []
    for i in range(REPEATER_MAX):
        year = _year(soup, f"{REDEMPTION_PREFIX}Label2_{i}")
        if not year:
            break
        status, details = classify_tax_sale(soup, i)
        entries.append(TaxSaleEntry(year=year, status=status, details=details))
    return entries


def extract_recorded_documents(soup: BeautifulSoup) -> List[RecordedDocument]:
    documents = []
    for node in soup.select(RECORDED_DOC_SELECTOR):
        match = _RECORDED_DOC_RE.search(node_text(node) or "")
        if match:
            documents.append(
                RecordedDocument(
                    document_number=match.group(1),
                    document_type=match.group(2).strip(),
                    date_recorded=match.group(3),
                )
            )
    return documents


def extract_property_image(soup: BeautifulSoup) -> Optional[PropertyImage]:
    image = PropertyImage()
    img = soup.find("img", id=PROPERTY_IMAGE_ID)
    if isinstance(img, Tag):
        src = img.get("src") or ""
        if src.startswith("data:image"):
            image.photo = src
        elif "maps.googleapis.com" in src:
            image.street_view_url = html.unescape(src)
    gis_link = soup.find("a", id=GIS_LINK_ID)
    if isinstance(gis_link, Tag) and gis_link.get("href"):
        image.cookviewer_url = html.unescape(gis_link["href"])
    return image if _has_values(image) else None


def parse_tax_portal(html_text: str, pin: PropertyIdentifier) -> tuple[TaxPortalPayload, Optional[str]]:
    """
    Extract every section of a tax portal result page.

    Returns:
        The payload and an error naming any sections that failed, or None.
    """
    soup = BeautifulSoup(html_text, "html.parser")
    errors = FieldErrors("tax-portal")

    exemptions = errors.capture("exemptions", extract_exemptions, soup, default=[])
    payload = TaxPortalPayload(
        property_info=errors.capture("property_info", extract_property_info, soup),
        characteristics=errors.capture("characteristics", extract_characteristics, soup),
        tax_calculator=errors.capture("tax_calculator", extract_tax_calculator, soup),
        tax_bills=errors.capture("tax_bills", extract_tax_bills, soup, exemptions, default=[]),
        exemptions=exemptions,
        appeals=errors.capture("appeals", extract_appeals, soup, default=[]),
        refund=errors.capture("refund", extract_refund, soup),
        tax_sale_delinquencies=errors.capture(
            "tax_sale_delinquencies", extract_tax_sale_delinquencies, soup, default=[]
        ),
        recorded_documents=errors.capture(
            "recorded_documents", extract_recorded_documents, soup, default=[]
        ),
        property_image=errors.capture("property_image", extract_property_image, soup),
    )
    return payload, errors.message


__all__ = [
    "TaxPortalPayload",
    "PropertyInfo",
    "Characteristics",
    "TaxCalculator",
    "TaxBill",
    "Exemption",
    "Appeal",
    "TaxSaleEntry",
    "RecordedDocument",
    "PropertyImage",
    "classify_payment",
    "classify_tax_sale",
    "extract_tax_bills",
    "parse_tax_portal",
]
