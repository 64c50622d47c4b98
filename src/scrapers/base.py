"""Shared machinery for the county site session clients.

Each site is driven by a :class:`SessionMachine`: an enum of states plus a
transition table checked on every step. Subclasses of
:class:`SourceSession` implement ``_run`` as a straight sequence of network
steps that advance the machine.
"""
from __future__ import annotations

import enum
import re
import time
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, FrozenSet, Generic, Iterable, List, Mapping, Optional, TypeVar
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup, Tag

from core.config import Settings, get_settings
from core.exceptions import IllegalTransitionError, SourceFetchError, SourceParseError
from core.logging_config import get_context_logger, get_logger, log_external_call
from core.types import PropertyIdentifier, SourceDocument, SourceKind
from services.cache import FetchCache, get_fetch_cache
from services.retry import elapsed_ms, scraper_retry

LOGGER = get_logger(__name__)

HTML_PARSER = "html.parser"

S = TypeVar("S", bound=enum.Enum)


def browser_headers(settings: Optional[Settings] = None) -> Dict[str, str]:
    """Headers every county request carries; some sites reject bare clients."""
    settings = settings or get_settings()
    return {
        "User-Agent": settings.user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
        "Connection": "keep-alive",
    }


# =============================================================================
# State machine
# =============================================================================


class SessionMachine(Generic[S]):
    """
    Tracks one session run through its states.

    Args:
        name: Site name used in errors and logs.
        transitions: Allowed targets per state.
        initial: Starting state.
    """

    def __init__(self, name: str, transitions: Mapping[S, FrozenSet[S]], initial: S):
        self.name = name
        self.transitions = transitions
        self.state = initial
        self.history: List[S] = [initial]

    def can_advance(self, target: S) -> bool:
        return target in self.transitions.get(self.state, frozenset())

    def advance(self, target: S) -> S:
        """Move to ``target`` or raise IllegalTransitionError."""
        if not self.can_advance(target):
            raise IllegalTransitionError(
                f"{self.name}: illegal transition {self.state.name} -> {target.name}"
            )
        self.state = target
        self.history.append(target)
        return target

    @property
    def is_terminal(self) -> bool:
        return not self.transitions.get(self.state)

    @property
    def path(self) -> List[str]:
        return [state.name for state in self.history]


def validate_transition_table(states: Iterable[enum.Enum], table: Mapping) -> None:
    """Every state must appear in the table and every target must be a state."""
    members = set(states)
    missing = members - set(table)
    if missing:
        raise ValueError(f"transition table missing states: {sorted(s.name for s in missing)}")
    for source, targets in table.items():
        unknown = set(targets) - members
        if unknown:
            raise ValueError(f"{source.name} has unknown targets: {unknown}")


# =============================================================================
# HTML helpers
# =============================================================================

_URL_ATTR_RE = re.compile(r"""(\s(?:href|src))=(["'])(.*?)\2""", re.IGNORECASE | re.DOTALL)
_UNREWRITTEN_PREFIXES = ("http://", "https://", "data:", "javascript:", "mailto:", "tel:", "#")


def rewrite_relative_urls(html: str, base_url: str) -> str:
    """
    Make every relative ``href``/``src`` absolute against ``base_url``.

    Absolute, data, script and fragment links are left untouched;
    ``../`` segments are resolved.
    """

    def _replace(match: re.Match) -> str:
        attr, quote, value = match.group(1), match.group(2), match.group(3)
        stripped = value.strip()
        if not stripped or stripped.lower().startswith(_UNREWRITTEN_PREFIXES):
            return match.group(0)
        return f"{attr}={quote}{urljoin(base_url, stripped)}{quote}"

    return _URL_ATTR_RE.sub(_replace, html)


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, HTML_PARSER)


def strip_elements(root: BeautifulSoup | Tag, selectors: Iterable[str]) -> int:
    """Remove every element matching any of ``selectors``. Returns the count."""
    removed = 0
    for selector in selectors:
        for element in root.select(selector):
            element.decompose()
            removed += 1
    return removed


def select_container(root: BeautifulSoup | Tag, selectors: Iterable[str]) -> Optional[Tag]:
    """First element matched by the first selector that matches anything."""
    for selector in selectors:
        found = root.select_one(selector)
        if found is not None:
            return found
    return None


def remove_hidden(root: Tag) -> None:
    """Drop hidden inputs and inline ``display:none`` elements."""
    for element in root.select("input[type=hidden]"):
        element.decompose()
    for element in root.find_all(style=True):
        if element.decomposed:
            continue
        style = element.get("style", "").replace(" ", "").lower()
        if "display:none" in style:
            element.decompose()


def extract_token(html: str, pattern: re.Pattern) -> Optional[str]:
    match = pattern.search(html)
    return match.group(1) if match else None


# =============================================================================
# Session base class
# =============================================================================


class SourceSession(ABC, Generic[S]):
    """
    Base class for a county site session client.

    ``fetch`` consults the in-process FetchCache, runs the site protocol on a
    fresh ``httpx.AsyncClient`` (one cookie jar per run) and caches the
    resulting document only when the run completes without raising.
    """

    kind: ClassVar[SourceKind]
    state_enum: ClassVar[type[enum.Enum]]
    transitions: ClassVar[Mapping[Any, FrozenSet[Any]]]
    initial_state: ClassVar[enum.Enum]

    def __init__(
        self,
        *,
        cache: Optional[FetchCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.cache = cache if cache is not None else get_fetch_cache()
        self._transport = transport
        self.last_machine: Optional[SessionMachine] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "transitions" in cls.__dict__:
            validate_transition_table(cls.state_enum, cls.transitions)

    @property
    def timeout(self) -> float:
        return float(self.settings.scraper_request_timeout)

    @property
    def label(self) -> str:
        return self.kind.label

    def new_machine(self) -> SessionMachine:
        return SessionMachine(self.kind.value, self.transitions, self.initial_state)

    def client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout if timeout is not None else self.timeout,
            headers=browser_headers(self.settings),
            follow_redirects=True,
            transport=self._transport,
        )

    async def fetch(self, pin: PropertyIdentifier) -> SourceDocument:
        """
        Fetch the raw document for ``pin``.

        Raises:
            SourceFetchError: Network failure, timeout or non-2xx response.
            SourceNotFoundError: The site reports no record for the PIN.
            SourceParseError: The site returned a page without the needed structure.
        """
        cached = self.cache.get(self.kind, pin)
        if cached is not None:
            LOGGER.debug(f"Fetch cache hit for {self.kind.value} {pin}")
            return cached

        logger = get_context_logger(__name__, pin=pin.value, source=self.kind.value)
        machine = self.new_machine()
        self.last_machine = machine
        try:
            async with self.client() as client:
                document = await self._run(client, machine, pin)
        finally:
            logger.debug(f"{self.kind.value} session path: {' -> '.join(machine.path)}")

        self.cache.put(self.kind, pin, document)
        return document

    @abstractmethod
    async def _run(
        self,
        client: httpx.AsyncClient,
        machine: SessionMachine,
        pin: PropertyIdentifier,
    ) -> SourceDocument:
        """Drive the site protocol to completion."""

    # -------------------------------------------------------------------------
    # Request helpers
    # -------------------------------------------------------------------------

    async def _get(
        self,
        client: httpx.AsyncClient,
        url: str,
        operation: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Idempotent GET; transport errors are retried."""

        @scraper_retry()
        async def attempt() -> httpx.Response:
            return await client.get(url, **kwargs)

        return await self._send(operation, url, attempt)

    async def _post(
        self,
        client: httpx.AsyncClient,
        url: str,
        operation: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Form POST; never retried because the tokens are single use."""

        async def attempt() -> httpx.Response:
            return await client.post(url, **kwargs)

        return await self._send(operation, url, attempt)

    async def _send(self, operation: str, url: str, attempt) -> httpx.Response:
        start = time.perf_counter()
        try:
            response = await attempt()
        except httpx.TimeoutException as e:
            log_external_call(
                LOGGER, self.kind.value, operation, False,
                elapsed_ms(start), url=url, error="timeout",
            )
            raise SourceFetchError(f"{self.label} timed out during {operation}") from e
        except httpx.HTTPError as e:
            log_external_call(
                LOGGER, self.kind.value, operation, False,
                elapsed_ms(start), url=url, error=str(e),
            )
            raise SourceFetchError(f"{self.label} request failed: {e}") from e

        duration_ms = elapsed_ms(start)
        log_external_call(
            LOGGER, self.kind.value, operation, response.is_success, duration_ms,
            url=url, status_code=response.status_code,
        )
        if not response.is_success:
            raise SourceFetchError(
                f"{self.label} returned HTTP {response.status_code} during {operation}"
            )
        return response

    def _document(
        self,
        pin: PropertyIdentifier,
        body: Any,
        url: str,
        variant: str = "primary",
        **extras: Any,
    ) -> SourceDocument:
        return SourceDocument(
            kind=self.kind, pin=pin, body=body, url=url, variant=variant, extras=extras,
        )


def clean_container(
    html: str,
    *,
    strip: Iterable[str],
    containers: Iterable[str],
    base_url: str,
    label: str,
    hide: bool = False,
) -> str:
    """
    Reduce a result page to its content container with absolute URLs.

    Raises:
        SourceParseError: None of the container selectors matched.
    """
    soup = make_soup(html)
    strip_elements(soup, strip)
    container = select_container(soup, containers)
    if container is None:
        raise SourceParseError(f"Could not find {label} content")
    if hide:
        remove_hidden(container)
    return rewrite_relative_urls(str(container), base_url)


__all__ = [
    "HTML_PARSER",
    "browser_headers",
    "SessionMachine",
    "SourceSession",
    "validate_transition_table",
    "rewrite_relative_urls",
    "make_soup",
    "strip_elements",
    "select_container",
    "remove_hidden",
    "extract_token",
    "clean_container",
]
