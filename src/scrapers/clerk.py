"""Cook County Clerk tax delinquency session client."""
from __future__ import annotations

import enum
import re
from typing import FrozenSet, Mapping, Optional

import httpx

from core.exceptions import SourceParseError
from core.logging_config import get_logger
from core.types import PropertyIdentifier, SourceDocument, SourceKind
from scrapers.base import SessionMachine, SourceSession, clean_container, extract_token

LOGGER = get_logger(__name__)

TOKEN_RE = re.compile(
    r'name="__RequestVerificationToken" type="hidden" value="([^"]+)"'
)

STRIP_SELECTORS = (
    "header", "footer", "nav", "script", "style", "noscript", "form[action*='/']",
)
CONTAINER_SELECTORS = (".container-fluid", ".results", "body")


class ClerkState(enum.Enum):
    INIT = "init"
    TOKEN_EXTRACTED = "token_extracted"
    SUBMITTED = "submitted"
    DONE = "done"


CLERK_TRANSITIONS: Mapping[ClerkState, FrozenSet[ClerkState]] = {
    ClerkState.INIT: frozenset({ClerkState.TOKEN_EXTRACTED}),
    ClerkState.TOKEN_EXTRACTED: frozenset({ClerkState.SUBMITTED}),
    ClerkState.SUBMITTED: frozenset({ClerkState.DONE}),
    ClerkState.DONE: frozenset(),
}


def session_cookie_header(response: httpx.Response) -> Optional[str]:
    """
    Build a ``Cookie`` header from the response's ``Set-Cookie`` values.

    Only the ``name=value`` pair of each cookie is kept.
    """
    pairs = []
    for raw in response.headers.get_list("set-cookie"):
        pair = raw.split(";", 1)[0].strip()
        if pair:
            pairs.append(pair)
    return "; ".join(pairs) if pairs else None


class ClerkSession(SourceSession[ClerkState]):
    """Anti-forgery token plus captured cookie, then a single form POST."""

    kind = SourceKind.CLERK
    state_enum = ClerkState
    transitions = CLERK_TRANSITIONS
    initial_state = ClerkState.INIT

    @property
    def base_url(self) -> str:
        return self.settings.clerk_base_url

    async def _run(
        self,
        client: httpx.AsyncClient,
        machine: SessionMachine,
        pin: PropertyIdentifier,
    ) -> SourceDocument:
        root_url = f"{self.base_url}/"

        landing = await self._get(client, root_url, "load_search_page")
        token = extract_token(landing.text, TOKEN_RE)
        if not token:
            raise SourceParseError("Failed to initialize search")
        machine.advance(ClerkState.TOKEN_EXTRACTED)

        # The cookie travels as an explicit header, not through the jar
        cookie = session_cookie_header(landing)
        client.cookies.clear()
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if cookie:
            headers["Cookie"] = cookie

        response = await self._post(
            client,
            root_url,
            "submit_pin",
            data={"__RequestVerificationToken": token, "Pin": pin.value},
            headers=headers,
        )
        machine.advance(ClerkState.SUBMITTED)

        cleaned = clean_container(
            response.text,
            strip=STRIP_SELECTORS,
            containers=CONTAINER_SELECTORS,
            base_url=root_url,
            label="clerk results",
        )
        machine.advance(ClerkState.DONE)
        return self._document(pin, cleaned, root_url)


__all__ = ["ClerkState", "CLERK_TRANSITIONS", "ClerkSession", "session_cookie_header"]
