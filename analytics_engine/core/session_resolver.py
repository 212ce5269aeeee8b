"""Visitor token resolution used to bucket page views per browser."""

import re
import secrets
from dataclasses import dataclass
from typing import Callable, Optional

from ..models import SESSION_ID_MAX_LENGTH

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9.]+$")
SESSION_TOKEN_BYTES = 32


@dataclass(frozen=True)
class SessionResolution:
    session_id: str
    is_new: bool


def is_valid_session_id(candidate: Optional[str]) -> bool:
    """Tokens are 1-128 characters of letters, digits and dots (e.g. ``abc123xyz.1700000000``)."""
    if not candidate or not isinstance(candidate, str):
        return False
    if len(candidate) > SESSION_ID_MAX_LENGTH:
        return False
    return bool(SESSION_ID_PATTERN.match(candidate))


class SessionResolver:
    """
    Picks the visitor token for a page view.

    The token only correlates page views from one browser for uniqueness
    bucketing; it is not an authentication session and nothing is stored
    server side. When no valid token is offered a new one is minted and the
    caller is expected to hand it back to the browser (cookie).
    """

    def __init__(self, token_bytes: Callable[[int], bytes] = secrets.token_bytes):
        self.token_bytes = token_bytes

    def mint(self) -> str:
        return self.token_bytes(SESSION_TOKEN_BYTES).hex()

    def resolve(self, client_token: Optional[str] = None, cookie_token: Optional[str] = None) -> SessionResolution:
        for candidate in (client_token, cookie_token):
            if is_valid_session_id(candidate):
                return SessionResolution(session_id=candidate, is_new=False)
        return SessionResolution(session_id=self.mint(), is_new=True)
