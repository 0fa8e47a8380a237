"""Credential & token store.

Single source of truth for "do we have a session token". The token is
written to the durable store (authoritative) and mirrored into the HTTP
cookie jar. Only SessionContext writes; everything else reads.
"""

import logging

from requests.cookies import RequestsCookieJar

from clients.durable_store import DurableStore

logger = logging.getLogger(__name__)


class TokenStore:
    """Bearer token persistence with a cookie mirror."""

    TOKEN_KEY = "auth:token"
    TOKEN_COOKIE = "auth_token"

    def __init__(self, store: DurableStore, cookies: RequestsCookieJar | None = None):
        self._store = store
        self._cookies = cookies

    def get_token(self) -> str | None:
        """
        Current token, read from the durable store.

        A cookie left behind without a durable token is stale and dropped.
        """
        token = self._store.get(self.TOKEN_KEY)
        if token is None and self._cookie_value() is not None:
            self._clear_cookie()
        return token

    def is_authenticated(self) -> bool:
        """True when a token is held (the user may not be fetched yet)."""
        return self.get_token() is not None

    def set_token(self, token: str) -> None:
        """
        Persist token to both stores.

        Raises:
            ValueError: If token is empty.
        """
        if not token or not token.strip():
            raise ValueError("token must be a non-empty string")

        self._store.set(self.TOKEN_KEY, token)
        if self._cookies is not None:
            self._cookies.set(self.TOKEN_COOKIE, token)
        logger.info("Session token stored")

    def clear(self) -> None:
        """Remove the token everywhere. Safe to call when no token is held."""
        self._store.delete(self.TOKEN_KEY)
        self._clear_cookie()

    def _cookie_value(self) -> str | None:
        if self._cookies is None:
            return None
        return self._cookies.get(self.TOKEN_COOKIE)

    def _clear_cookie(self) -> None:
        if self._cookies is None:
            return
        # RequestsCookieJar.set(name, None) removes every cookie with that name
        self._cookies.set(self.TOKEN_COOKIE, None)
