"""Cook County Recorder of Deeds session client.

The recorder search is an address-style search that happens to accept a
PIN. When it finds the property, the "view by PIN" page holds the
authoritative document list. Any failure before the search result falls
back to requesting that page directly.
"""
from __future__ import annotations

import asyncio
import enum
import html as html_lib
import re
from typing import Dict, FrozenSet, Mapping, Optional, Sequence, Tuple

import httpx
from bs4 import BeautifulSoup, Tag

from core.exceptions import SourceFetchError, SourceNotFoundError, SourceParseError
from core.logging_config import get_logger
from core.types import PropertyIdentifier, SourceDocument, SourceKind
from parsers.recorder import parse_consideration_amount
from scrapers.base import (
    SessionMachine,
    SourceSession,
    extract_token,
    make_soup,
    rewrite_relative_urls,
    strip_elements,
)

LOGGER = get_logger(__name__)

TOKEN_RE = re.compile(r'name="__RequestVerificationToken".*?value="([^"]+)"', re.DOTALL)
RESULT_BY_PIN_LINK_RE = re.compile(r'href="(/Search/ResultByPin\?id1=[^"]+)"')
NO_DOCUMENT_MARKERS = ("no document(s) found", "no documents found")

STRIP_SELECTORS = (
    "header", "footer", "script", "style", "noscript",
    "form[action*='Login']", "nav", "a[href*='javascript:']",
)


class RecorderState(enum.Enum):
    INIT = "init"
    TOKEN_EXTRACTED = "token_extracted"
    SEARCH_SUBMITTED = "search_submitted"
    DETAIL_LOADED = "detail_loaded"
    DIRECT_FALLBACK = "direct_fallback"
    DONE = "done"


RECORDER_TRANSITIONS: Mapping[RecorderState, FrozenSet[RecorderState]] = {
    RecorderState.INIT: frozenset({RecorderState.TOKEN_EXTRACTED, RecorderState.DIRECT_FALLBACK}),
    RecorderState.TOKEN_EXTRACTED: frozenset(
        {RecorderState.SEARCH_SUBMITTED, RecorderState.DIRECT_FALLBACK}
    ),
    RecorderState.SEARCH_SUBMITTED: frozenset({RecorderState.DETAIL_LOADED}),
    RecorderState.DETAIL_LOADED: frozenset({RecorderState.DONE}),
    RecorderState.DIRECT_FALLBACK: frozenset({RecorderState.DONE}),
    RecorderState.DONE: frozenset(),
}


def has_address_results(html: str) -> bool:
    lowered = html.lower()
    return "total records" in lowered and "<table" in lowered


def has_no_documents(html: str) -> bool:
    lowered = html.lower()
    return any(marker in lowered for marker in NO_DOCUMENT_MARKERS)


def _find_results_container(soup: BeautifulSoup) -> Optional[Tag]:
    found = soup.select_one("div.container-box")
    if found is not None:
        return found
    result = soup.select_one("div#result")
    if result is not None and isinstance(result.parent, Tag):
        return result.parent
    found = soup.select_one("div.table-responsive")
    if found is not None:
        return found
    table = soup.select_one("table.table")
    if table is not None and table.parent is not None and isinstance(table.parent.parent, Tag):
        return table.parent.parent
    containers = [div for div in soup.find_all("div") if div.get("class") == ["container"]]
    if len(containers) > 1:
        return containers[1]
    return None


def clean_recorder_html(html: str, base_url: str) -> str:
    """
    Reduce a recorder page to its results block with absolute URLs.

    Raises:
        SourceParseError: No results block could be located.
    """
    soup = make_soup(html)
    container = _find_results_container(soup)
    if container is None:
        raise SourceParseError("Failed to parse recorder results")
    strip_elements(container, STRIP_SELECTORS)
    return rewrite_relative_urls(str(container), f"{base_url}/")


class RecorderSession(SourceSession[RecorderState]):
    """Session client for the recorder document search."""

    kind = SourceKind.RECORDER
    state_enum = RecorderState
    transitions = RECORDER_TRANSITIONS
    initial_state = RecorderState.INIT

    @property
    def base_url(self) -> str:
        return self.settings.recorder_base_url

    def result_by_pin_url(self, pin: PropertyIdentifier) -> str:
        return f"{self.base_url}/Search/ResultByPin?id1={pin.digits}"

    async def _run(
        self,
        client: httpx.AsyncClient,
        machine: SessionMachine,
        pin: PropertyIdentifier,
    ) -> SourceDocument:
        try:
            address_html = await self._search(client, machine, pin)
        except (SourceFetchError, SourceParseError) as e:
            LOGGER.warning(f"Recorder search failed for {pin} ({e}); requesting document list directly")
            machine.advance(RecorderState.DIRECT_FALLBACK)
            document = await self._fetch_direct(client, pin)
            machine.advance(RecorderState.DONE)
            return document

        address_found = has_address_results(address_html)
        detail_url = self.result_by_pin_url(pin)
        if address_found:
            link = RESULT_BY_PIN_LINK_RE.search(address_html)
            if link:
                detail_url = f"{self.base_url}{html_lib.unescape(link.group(1))}"

        detail_html: Optional[str] = None
        try:
            detail_html = (await self._get(client, detail_url, "load_documents")).text
        except SourceFetchError as e:
            # With no address results to show, an outage stays a fetch failure
            if not address_found:
                raise
            LOGGER.warning(f"Recorder document list unavailable for {pin}: {e}")
        machine.advance(RecorderState.DETAIL_LOADED)

        has_documents = bool(detail_html) and not has_no_documents(detail_html or "")
        if not has_documents and not address_found:
            raise SourceNotFoundError("No recorded documents found for this PIN")

        if has_documents and detail_html is not None:
            cleaned = clean_recorder_html(detail_html, self.base_url)
            url = detail_url
        else:
            cleaned = clean_recorder_html(address_html, self.base_url)
            url = f"{self.base_url}/Search"
        machine.advance(RecorderState.DONE)
        return self._document(pin, cleaned, url, has_documents=has_documents)

    async def _search(
        self, client: httpx.AsyncClient, machine: SessionMachine, pin: PropertyIdentifier
    ) -> str:
        search_url = f"{self.base_url}/Search"
        search_page = await self._get(client, search_url, "load_search_page")
        token = extract_token(search_page.text, TOKEN_RE)
        if not token:
            raise SourceParseError("Failed to extract recorder anti-forgery token")
        machine.advance(RecorderState.TOKEN_EXTRACTED)

        response = await self._post(
            client,
            f"{self.base_url}/Search?strAction=Search",
            "submit_pin",
            data={
                "__RequestVerificationToken": token,
                "inputField": pin.value,
                "submitButton": "AddressSearch",
            },
            headers={"Referer": search_url},
        )
        machine.advance(RecorderState.SEARCH_SUBMITTED)
        return response.text

    async def _fetch_direct(self, client: httpx.AsyncClient, pin: PropertyIdentifier) -> SourceDocument:
        url = self.result_by_pin_url(pin)
        html = (await self._get(client, url, "load_documents_direct")).text
        if not html:
            raise SourceFetchError("Failed to fetch recorder data")
        if has_no_documents(html):
            raise SourceNotFoundError("No recorded documents found for this PIN")
        cleaned = clean_recorder_html(html, self.base_url)
        return self._document(pin, cleaned, url, variant="direct", has_documents=True)

    # -------------------------------------------------------------------------
    # Consideration amounts
    # -------------------------------------------------------------------------

    async def fetch_considerations(
        self,
        pin: PropertyIdentifier,
        documents: Sequence[Tuple[str, str]],
    ) -> Dict[str, str]:
        """
        Fetch the consideration amount of each recorded document.

        Document detail pages require an established search session, so the
        search is replayed first. Failures never raise: a session failure
        returns an empty mapping and a failed document is skipped.

        Args:
            pin: Property the documents belong to.
            documents: ``(doc_number, view_url)`` pairs.

        Returns:
            Mapping of document number to the amount text.
        """
        result: Dict[str, str] = {}
        if not documents:
            return result

        timeout = float(self.settings.recorder_consideration_timeout)
        semaphore = asyncio.Semaphore(self.settings.recorder_consideration_concurrency)

        async with self.client(timeout=timeout) as client:
            try:
                await self._search(client, self.new_machine(), pin)
            except (SourceFetchError, SourceParseError) as e:
                LOGGER.warning(f"Failed to establish recorder session for considerations: {e}")
                return result

            async def load(doc_number: str, view_url: str) -> None:
                url = html_lib.unescape(view_url)
                if not url.lower().startswith("http"):
                    url = f"{self.base_url}{url}"
                async with semaphore:
                    try:
                        response = await self._get(client, url, "load_document_detail")
                    except SourceFetchError as e:
                        LOGGER.warning(f"Failed to fetch consideration for doc {doc_number}: {e}")
                        return
                amount = parse_consideration_amount(response.text)
                if amount:
                    result[doc_number] = amount

            await asyncio.gather(*(load(number, url) for number, url in documents))

        return result


__all__ = [
    "RecorderState",
    "RECORDER_TRANSITIONS",
    "RecorderSession",
    "clean_recorder_html",
    "has_address_results",
    "has_no_documents",
]
