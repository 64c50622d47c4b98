"""Tests for the structural parsers."""
from __future__ import annotations

from bs4 import BeautifulSoup
import pytest

import parsers.tax_portal as tax_portal_module
from core.exceptions import SourceParseError
from core.types import SourceDocument, SourceKind
from parsers import PARSERS, parse_document
from parsers.assessor import parse_assessor
from parsers.clerk import extract_totals, parse_clerk
from parsers.recorder import is_extended_layout, parse_consideration_amount, parse_recorder
from parsers.tax_portal import classify_payment, parse_tax_portal
from parsers.text import clean_text
import sample_pages as pages

RECORDER_URL = "https://crs.cookcountyclerkil.gov/Search/ResultByPin?id1=01011200060000"


class TestCleanText:
    def test_folds_entities_and_whitespace(self):
        assert clean_text("  123&nbsp;&nbsp;MAIN \n\t ST ") == "123 MAIN ST"
        assert clean_text("123  MAIN") == "123 MAIN"

    def test_blank_is_none(self):
        assert clean_text("   ") is None
        assert clean_text(None) is None


# =============================================================================
# Tax portal
# =============================================================================


class TestTaxPortalParser:
    @pytest.fixture
    def payload(self, pin):
        payload, error = parse_tax_portal(pages.TAX_PORTAL_RESULT_PAGE, pin)
        assert error is None
        return payload

    def test_property_info(self, payload):
        info = payload.property_info
        assert info.address == "123 MAIN ST"
        assert info.city == "CHICAGO"
        assert info.zip == "60601"
        assert info.mailing_name == "JANE Q OWNER"

    def test_characteristics_and_history(self, payload):
        chars = payload.characteristics
        assert chars.assessed_value == "$25,000"
        assert chars.property_class == "2-11"
        assert chars.assessed_value_history == [
            {"year": "2024", "value": "$25,000"},
            {"year": "2023", "value": "$24,000"},
        ]
        assert chars.tax_rate_history == [{"year": "2023", "rate": "6.995"}]

    def test_tax_bills_and_payment_status(self, payload):
        bills = {bill.year: bill for bill in payload.tax_bills}
        assert list(bills) == ["2024", "2023", "2022"]

        assert bills["2024"].amount == "$5,100.00"
        assert bills["2024"].payment_status == "Balance Due"
        assert bills["2024"].amount_due == "$2,550.00"
        assert bills["2024"].exemptions_received == 1

        assert bills["2023"].payment_status == "Paid"
        assert bills["2023"].amount_due is None
        assert bills["2022"].payment_status == "Paid"

    def test_payment_without_panels(self):
        soup = BeautifulSoup("<div></div>", "html.parser")
        assert classify_payment(soup, 0) == (None, None)

    def test_tax_sale_classification(self, payload):
        entries = payload.tax_sale_delinquencies
        assert [(e.year, e.status) for e in entries] == [("2023", "No Tax Sale"), ("2022", "Sold")]
        assert entries[1].details == "Sold at 2024 sale"

    def test_appeals_refund_documents(self, payload):
        assert payload.appeals[0].status == "Not Available"
        assert payload.refund == {"status": "No Refund Available", "message": "No Refund Available"}
        doc = payload.recorded_documents[0]
        assert (doc.document_number, doc.document_type, doc.date_recorded) == (
            "2301512345", "WARRANTY DEED", "01/15/2023",
        )

    def test_property_image(self, payload):
        image = payload.property_image
        assert image.street_view_url.endswith("size=400x300&location=1,2")
        assert image.cookviewer_url.startswith("https://maps.cookcountyil.gov/cookviewer/")
        assert image.photo is None

    def test_empty_page_yields_empty_payload(self, pin):
        payload, error = parse_tax_portal("<html></html>", pin)
        assert error is None
        assert payload.property_info is None
        assert payload.tax_bills == []

    def test_failing_section_is_named(self, pin, monkeypatch):
        def broken(soup):
            raise AttributeError("markup changed")

        monkeypatch.setattr(tax_portal_module, "extract_appeals", broken)
        payload, error = parse_tax_portal(pages.TAX_PORTAL_RESULT_PAGE, pin)

        assert error == "Failed to extract appeals"
        assert payload.appeals == []
        assert payload.property_info.address == "123 MAIN ST"


class TestAssessorParser:
    def test_sections(self, pin):
        payload, error = parse_assessor(pages.ASSESSOR_PAGE, pin)

        assert error is None
        assert payload.variant == "assessor"
        assert payload.summary["address"] == "123 MAIN ST"
        assert payload.summary["property_class"] == "2-03"
        assert payload.valuation_years == ["2025", "2024"]
        assert payload.valuations["estimated_market_value"] == {"current": "$410,000", "prior": "$380,000"}
        assert payload.characteristics == {"age": "54", "full_baths": "2"}
        assert payload.exemption_history[0]["year"] == "2024"
        assert payload.exemption_history[0]["homeowner"] == "Yes"


# =============================================================================
# Clerk
# =============================================================================


class TestClerkParser:
    def test_tables_and_totals(self, pin):
        payload, error = parse_clerk(pages.CLERK_RESULT_PAGE, pin)

        assert error is None
        assert payload.data_as_of == "02/27/2026"
        assert [s.status for s in payload.sold_taxes] == ["Redeemed", "Sold"]
        assert payload.sold_taxes[1].date is None
        delinquent = payload.delinquent_taxes[0]
        assert delinquent.tax_year == "2023"
        assert delinquent.first_installment_balance == "$600.00"
        assert delinquent.warrant_year == "2024"
        assert payload.total_balance_due_1st == "$1,200.00"
        assert payload.total_balance_due_2nd == "$800.00"

    def test_totals_from_page_text(self):
        soup = BeautifulSoup(
            "<p>Total Tax Balance Due 1st Installment: $100.00</p>"
            "<p>Total Tax Balance Due 2nd Installment: $2,000.50</p>",
            "html.parser",
        )
        assert extract_totals(soup) == ("100.00", "2,000.50")

    def test_tables_found_by_heading(self, pin):
        html = (
            "<table><tr><th>Tax Year</th><th>Status</th><th>Forfeit</th></tr>"
            "<tr><td>2020</td><td>Forfeited</td><td>01/01/2022</td></tr></table>"
        )
        payload, _ = parse_clerk(html, pin)
        assert payload.delinquent_taxes[0].status == "Forfeited"
        assert payload.sold_taxes == []


# =============================================================================
# Recorder
# =============================================================================


class TestRecorderParser:
    def test_extended_layout(self, pin):
        payload, error = parse_recorder(pages.RECORDER_EXTENDED_DOCS, pin, RECORDER_URL)

        assert error is None
        assert payload.layout == "extended"
        assert (payload.address, payload.city, payload.zipcode) == ("123 MAIN ST", "CHICAGO", "60601")
        assert payload.total_documents == 2
        assert len(payload.documents) == 1

        doc = payload.documents[0]
        assert doc.doc_number == "2301512345"
        assert doc.doc_type == "WARRANTY DEED"
        assert doc.date_executed == "01/10/2023"
        assert doc.first_grantor == "SMITH JOHN"
        assert doc.first_grantee == "OWNER JANE"
        assert doc.associated_doc_number == "1901299999"
        assert doc.first_pin == "01-01-120-006-0000"
        assert doc.property_address == "123 MAIN ST"
        assert doc.view_url == "https://crs.cookcountyclerkil.gov/Document/Detail?dId=ABC&x=1"

    def test_simple_layout(self, pin):
        payload, _ = parse_recorder(pages.RECORDER_SIMPLE_DOCS, pin, RECORDER_URL)

        assert payload.layout == "simple"
        doc = payload.documents[0]
        assert doc.doc_type == "QUIT CLAIM DEED"
        assert doc.first_grantor is None
        assert payload.total_documents == 1

    def test_address_search_table_has_no_documents(self, pin):
        payload, _ = parse_recorder(pages.RECORDER_ADDRESS_RESULTS, pin)
        assert payload.layout == "address_search"
        assert payload.documents == []

    @pytest.mark.parametrize(
        "headers,cells,expected",
        [(9, 10, True), (10, 10, True), (9, 9, False), (6, 10, False)],
    )
    def test_extended_threshold(self, headers, cells, expected):
        assert is_extended_layout(["h"] * headers, cells) is expected

    def test_considerations_applied(self, pin):
        payload, _ = parse_recorder(pages.RECORDER_EXTENDED_DOCS, pin, RECORDER_URL)
        links = payload.document_links()
        assert links == [("2301512345", "https://crs.cookcountyclerkil.gov/Document/Detail?dId=ABC&x=1")]

        payload.apply_considerations({"2301512345": "$325,000.00", "other": "$1"})
        assert payload.documents[0].consideration_amount == "$325,000.00"

    def test_consideration_amount(self):
        assert parse_consideration_amount(pages.RECORDER_DOCUMENT_DETAIL) == "$325,000.00"
        assert parse_consideration_amount(
            "<table><tr><td>Consideration Amount</td><td>$10.00</td></tr></table>"
        ) == "$10.00"
        assert parse_consideration_amount("<html>nothing</html>") is None


# =============================================================================
# Registry
# =============================================================================


class TestParseDocument:
    def document(self, pin, kind, body, variant="primary"):
        return SourceDocument(kind=kind, pin=pin, body=body, url="https://example.test/", variant=variant)

    def test_variant_selects_parser(self, pin):
        record = parse_document(self.document(pin, SourceKind.TAX_PORTAL, pages.ASSESSOR_PAGE, "assessor"))
        assert record.ok
        assert record.to_dict()["variant"] == "assessor"

    def test_parser_crash_becomes_parse_error(self, pin, monkeypatch):
        def boom(document):
            raise ValueError("unexpected")

        monkeypatch.setitem(PARSERS, (SourceKind.CLERK, "primary"), boom)
        record = parse_document(self.document(pin, SourceKind.CLERK, "<html></html>"))

        assert record.payload is None
        assert record.error_code == "PARSE_ERROR"
        assert record.error == "Failed to parse Cook County Clerk Tax Delinquency data"

    def test_domain_error_keeps_its_code(self, pin):
        record = parse_document(self.document(pin, SourceKind.GIS, {"feature": {"features": []}, "images": {}}))
        assert record.error_code == "NOT_FOUND"
        assert record.error == "No parcel found"

    def test_partial_failure_keeps_payload(self, pin, monkeypatch):
        def partial(document):
            payload, _ = parse_tax_portal(document.body, document.pin)
            return payload, "Failed to extract refund"

        monkeypatch.setitem(PARSERS, (SourceKind.TAX_PORTAL, "primary"), partial)
        record = parse_document(self.document(pin, SourceKind.TAX_PORTAL, pages.TAX_PORTAL_RESULT_PAGE))

        assert record.payload is not None
        assert record.error == "Failed to extract refund"
        assert record.error_code == "PARSE_ERROR"

    def test_gis_payload(self, pin):
        body = {"feature": pages.GIS_FEATURE_JSON, "images": {"map_image": "data:image/jpeg;base64,AA"}}
        record = parse_document(self.document(pin, SourceKind.GIS, body))

        data = record.to_dict()
        assert data["map_image"] == "data:image/jpeg;base64,AA"
        assert len(data["parcel_rings"][0]) == 5
        assert 41 < data["center_lat"] < 42
        assert -88 < data["center_lon"] < -87

    def test_parse_error_class_is_domain_error(self):
        assert SourceParseError("x").code == "PARSE_ERROR"
