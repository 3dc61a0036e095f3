"""Python client for the Lean Coffee board API."""

from backend.app.client.api import ApiClient, ApiError, VoteLimitReachedError, resolve_base_url
from backend.app.client.identity import Identity, IdentityCookies, IdentityResolver
from backend.app.client.store import (
    PollingHandle,
    SessionState,
    SessionStateError,
    SessionStore,
    UserProfile,
)

__all__ = [
    "ApiClient",
    "ApiError",
    "VoteLimitReachedError",
    "resolve_base_url",
    "Identity",
    "IdentityCookies",
    "IdentityResolver",
    "PollingHandle",
    "SessionState",
    "SessionStateError",
    "SessionStore",
    "UserProfile",
]
