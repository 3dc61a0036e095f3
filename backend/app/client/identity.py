"""
Pseudonymous per-session identity.

The token ``{externalId, userId?}`` is kept in two places, a key-value storage
area and a cookie, so it survives reloads when either one is unavailable.
"""

import logging
from http.cookies import CookieError, SimpleCookie
from typing import MutableMapping
from urllib.parse import quote, unquote
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "leancoffee:user:"
COOKIE_MAX_AGE = 365 * 24 * 60 * 60


def storage_key(session_id: str) -> str:
    return f"{STORAGE_PREFIX}{session_id}"


class Identity(BaseModel):
    """Opaque browser identity, optionally bound to a user record."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    external_id: str
    user_id: str | None = None

    @classmethod
    def mint(cls) -> "Identity":
        return cls(external_id=str(uuid4()))

    def to_token(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class IdentityCookies:
    """Cookie channel backed by a ``SimpleCookie`` jar."""

    def __init__(self, header: str | None = None):
        self._jar = SimpleCookie()
        if header:
            self._jar.load(header)

    def get(self, key: str) -> str | None:
        morsel = self._jar.get(key)
        if morsel is None:
            return None
        return unquote(morsel.value)

    def set(self, key: str, value: str) -> None:
        self._jar[key] = quote(value, safe="")
        morsel = self._jar[key]
        morsel["path"] = "/"
        morsel["expires"] = COOKIE_MAX_AGE
        morsel["max-age"] = COOKIE_MAX_AGE

    def output(self) -> str:
        """``Set-Cookie`` headers for every stored identity."""
        return self._jar.output()


class IdentityResolver:
    """Reads, writes and mints identities for sessions."""

    def __init__(
        self,
        storage: MutableMapping[str, str] | None = None,
        cookies: IdentityCookies | None = None,
    ):
        self.storage = storage if storage is not None else {}
        self.cookies = cookies if cookies is not None else IdentityCookies()

    def read(self, session_id: str) -> Identity | None:
        key = storage_key(session_id)
        raw = None
        try:
            raw = self.storage.get(key)
        except OSError as e:
            logger.warning(f"[IDENTITY] Storage unavailable, falling back to cookie: {e}")
        if not raw:
            raw = self.cookies.get(key)
        if not raw:
            return None
        try:
            return Identity.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"[IDENTITY] Ignoring malformed identity for session {session_id}")
            return None

    def write(self, session_id: str, identity: Identity) -> None:
        key = storage_key(session_id)
        token = identity.to_token()
        try:
            self.storage[key] = token
        except OSError as e:
            logger.warning(f"[IDENTITY] Could not persist identity to storage: {e}")
        try:
            self.cookies.set(key, token)
        except CookieError as e:
            logger.warning(f"[IDENTITY] Could not persist identity cookie: {e}")

    def ensure(self, session_id: str, existing: Identity | None = None) -> Identity:
        """Return the known identity for the session, minting one on first visit."""
        identity = existing or self.read(session_id)
        if identity is None or not identity.external_id:
            identity = Identity.mint()
            logger.info(f"[IDENTITY] Minted identity {identity.external_id} for session {session_id}")
        return identity
