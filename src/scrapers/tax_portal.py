"""Cook County property tax portal session client.

The portal is an ASP.NET WebForms site: the search page carries view-state
tokens that must be echoed back with the PIN search POST. The reCAPTCHA
field is only enforced client side and is sent empty.
"""
from __future__ import annotations

import enum
import re
from typing import Dict, FrozenSet, Iterable, Mapping, Optional

import httpx

from core.exceptions import SourceFetchError, SourceNotFoundError, SourceParseError
from core.logging_config import get_logger
from core.types import PropertyIdentifier, SourceDocument, SourceKind
from scrapers.base import SessionMachine, SourceSession, clean_container

LOGGER = get_logger(__name__)

SEARCH_PATH = "/default.aspx"
RESULTS_PATH = "/pinresults.aspx"

REQUIRED_TOKENS = ("__VIEWSTATE", "__EVENTVALIDATION")
OPTIONAL_TOKENS = ("__VIEWSTATEGENERATOR", "__PREVIOUSPAGE")

SEARCH_FIELD_PREFIX = "ctl00$ContentPlaceHolder1$PINAddressSearch$"

RESULT_STRIP_SELECTORS = (
    "header", "footer", "nav", "script", "style", "noscript",
    ".searchcontent2", "#pinsearch2", "#pinsearchaddress2",
    ".modal", ".tophomelayout", ".topmenu",
)
RESULT_CONTAINER_SELECTORS = (
    "#ContentPlaceHolder1_pnlResults",
    ".resultspage",
    "#resultsection",
    ".results",
    "form#form1",
)

ASSESSOR_NOT_FOUND_TEXT = "is not currently a valid PIN"
ASSESSOR_STRIP_SELECTORS = (
    "header", "footer", "nav", "script", "style", "noscript", "link", "aside",
    ".sidebar", ".navbar", ".alert", "form",
)
ASSESSOR_CONTAINER_SELECTORS = (
    ".property-detail",
    ".region-content",
    ".dialog-off-canvas-main-canvas",
)


class TaxPortalState(enum.Enum):
    INIT = "init"
    TOKENS_EXTRACTED = "tokens_extracted"
    SUBMITTED = "submitted"
    VALIDATED = "validated"
    FALLBACK_TRIGGERED = "fallback_triggered"
    DONE = "done"


TAX_PORTAL_TRANSITIONS: Mapping[TaxPortalState, FrozenSet[TaxPortalState]] = {
    TaxPortalState.INIT: frozenset({TaxPortalState.TOKENS_EXTRACTED}),
    TaxPortalState.TOKENS_EXTRACTED: frozenset({TaxPortalState.SUBMITTED}),
    TaxPortalState.SUBMITTED: frozenset(
        {TaxPortalState.VALIDATED, TaxPortalState.FALLBACK_TRIGGERED}
    ),
    TaxPortalState.VALIDATED: frozenset({TaxPortalState.DONE}),
    TaxPortalState.FALLBACK_TRIGGERED: frozenset({TaxPortalState.DONE}),
    TaxPortalState.DONE: frozenset(),
}


def _token_patterns(field: str) -> tuple[re.Pattern, re.Pattern]:
    escaped = re.escape(field)
    return (
        re.compile(rf'id="{escaped}"[^>]*value="([^"]*)"', re.IGNORECASE),
        re.compile(rf'name="{escaped}"[^>]*value="([^"]*)"', re.IGNORECASE),
    )


def extract_form_tokens(html: str) -> Dict[str, str]:
    """
    Pull the WebForms hidden tokens out of the search page.

    Raises:
        SourceFetchError: View-state or event-validation is missing.
    """
    tokens: Dict[str, str] = {}
    for field in REQUIRED_TOKENS + OPTIONAL_TOKENS:
        for pattern in _token_patterns(field):
            match = pattern.search(html)
            if match:
                tokens[field] = match.group(1)
                break

    missing = [field for field in REQUIRED_TOKENS if not tokens.get(field)]
    if missing:
        raise SourceFetchError(
            f"Failed to initialize property search (missing {', '.join(missing)})"
        )
    return tokens


def has_result_markers(html: str, markers: Iterable[str]) -> bool:
    """True when any known result marker appears in the page."""
    return any(marker and marker in html for marker in markers)


def build_search_form(tokens: Dict[str, str], pin: PropertyIdentifier) -> Dict[str, str]:
    form: Dict[str, str] = {
        "__LASTFOCUS": "",
        "__EVENTTARGET": "",
        "__EVENTARGUMENT": "btnPIN",
        "__VIEWSTATE": tokens["__VIEWSTATE"],
        "__VIEWSTATEGENERATOR": tokens.get("__VIEWSTATEGENERATOR", ""),
        "__PREVIOUSPAGE": tokens.get("__PREVIOUSPAGE", ""),
        "__EVENTVALIDATION": tokens["__EVENTVALIDATION"],
    }
    for i in range(1, 6):
        form[f"ctl00$PINAddressSearch2$pin2Box{i}"] = ""
    form["ctl00$HiddenField1"] = ""
    form[f"{SEARCH_FIELD_PREFIX}searchToValidate"] = "PIN"
    for i, part in enumerate(pin.parts, start=1):
        form[f"{SEARCH_FIELD_PREFIX}pinBox{i}"] = part
    form[f"{SEARCH_FIELD_PREFIX}btnSearch"] = "SEARCH"
    form["g-recaptcha-response"] = ""
    form["action"] = "validate_captcha"
    return form


class TaxPortalSession(SourceSession[TaxPortalState]):
    """Session client for the tax portal with the Assessor site as fallback."""

    kind = SourceKind.TAX_PORTAL
    state_enum = TaxPortalState
    transitions = TAX_PORTAL_TRANSITIONS
    initial_state = TaxPortalState.INIT

    def __init__(self, *args, markers: Optional[Iterable[str]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.markers = list(markers) if markers is not None else list(
            self.settings.tax_portal_result_markers
        )

    @property
    def base_url(self) -> str:
        return self.settings.tax_portal_base_url

    async def _run(
        self,
        client: httpx.AsyncClient,
        machine: SessionMachine,
        pin: PropertyIdentifier,
    ) -> SourceDocument:
        search_url = f"{self.base_url}{SEARCH_PATH}"
        results_url = f"{self.base_url}{RESULTS_PATH}"

        search_page = await self._get(client, search_url, "load_search_page")
        tokens = extract_form_tokens(search_page.text)
        machine.advance(TaxPortalState.TOKENS_EXTRACTED)

        response = await self._post(
            client,
            results_url,
            "submit_pin",
            data=build_search_form(tokens, pin),
            headers={"Referer": search_url},
        )
        machine.advance(TaxPortalState.SUBMITTED)
        html = response.text

        if not has_result_markers(html, self.markers):
            machine.advance(TaxPortalState.FALLBACK_TRIGGERED)
            LOGGER.info(f"Tax portal returned no result markers for {pin}; trying assessor")
            document = await self._fetch_assessor(client, pin)
            machine.advance(TaxPortalState.DONE)
            return document

        machine.advance(TaxPortalState.VALIDATED)
        try:
            cleaned = clean_container(
                html,
                strip=RESULT_STRIP_SELECTORS,
                containers=RESULT_CONTAINER_SELECTORS,
                base_url=results_url,
                label="tax portal results",
                hide=True,
            )
        except SourceParseError as e:
            raise SourceNotFoundError("No property data found for this PIN") from e
        machine.advance(TaxPortalState.DONE)
        return self._document(pin, cleaned, results_url)

    async def _fetch_assessor(
        self, client: httpx.AsyncClient, pin: PropertyIdentifier
    ) -> SourceDocument:
        url = f"{self.settings.assessor_base_url}/pin/{pin.digits}"
        response = await self._get(client, url, "assessor_fallback")
        html = response.text
        if ASSESSOR_NOT_FOUND_TEXT in html:
            raise SourceNotFoundError("PIN not found in Cook County Assessor records")

        cleaned = clean_container(
            html,
            strip=ASSESSOR_STRIP_SELECTORS,
            containers=ASSESSOR_CONTAINER_SELECTORS,
            base_url=url,
            label="assessor property",
        )
        return self._document(pin, cleaned, url, variant="assessor")


__all__ = [
    "TaxPortalState",
    "TAX_PORTAL_TRANSITIONS",
    "TaxPortalSession",
    "extract_form_tokens",
    "has_result_markers",
    "build_search_form",
]
