"""Unit tests for identity persistence."""

import json

from backend.app.client.identity import (
    COOKIE_MAX_AGE,
    Identity,
    IdentityCookies,
    IdentityResolver,
    storage_key,
)


class BrokenStorage(dict):
    """Storage area that refuses every access, like a locked-down browser."""

    def get(self, key, default=None):
        raise OSError("storage disabled")

    def __setitem__(self, key, value):
        raise OSError("storage disabled")


class TestIdentity:
    def test_token_shape(self):
        """Test the token is camelCase JSON."""
        token = Identity(external_id="ext-1", user_id="recU").to_token()
        assert json.loads(token) == {"externalId": "ext-1", "userId": "recU"}

    def test_token_omits_unbound_user(self):
        """Test an unbound identity has no userId."""
        assert json.loads(Identity(external_id="ext-1").to_token()) == {"externalId": "ext-1"}

    def test_minted_ids_are_unique(self):
        """Test minted identities differ."""
        assert Identity.mint().external_id != Identity.mint().external_id

    def test_storage_key(self):
        """Test the storage key is namespaced per session."""
        assert storage_key("recS") == "leancoffee:user:recS"


class TestIdentityCookies:
    def test_cookie_attributes(self):
        """Test the cookie path and lifetime."""
        cookies = IdentityCookies()
        cookies.set("leancoffee:user:recS", '{"externalId":"ext-1"}')

        header = cookies.output()

        assert "Path=/" in header
        assert f"Max-Age={COOKIE_MAX_AGE}" in header
        assert cookies.get("leancoffee:user:recS") == '{"externalId":"ext-1"}'

    def test_cookie_header_round_trip(self):
        """Test an identity cookie can be read back from a header."""
        writer = IdentityCookies()
        writer.set("leancoffee:user:recS", '{"externalId":"ext-1"}')
        header = writer.output().split(":", 1)[1].split(";", 1)[0].strip()

        reader = IdentityCookies(header)

        assert reader.get("leancoffee:user:recS") == '{"externalId":"ext-1"}'

    def test_missing_cookie(self):
        """Test an absent cookie reads as None."""
        assert IdentityCookies().get("leancoffee:user:recS") is None


class TestIdentityResolver:
    def test_write_then_read(self):
        """Test a written identity can be read back."""
        storage = {}
        resolver = IdentityResolver(storage=storage)

        resolver.write("recS", Identity(external_id="ext-1", user_id="recU"))

        assert json.loads(storage["leancoffee:user:recS"]) == {"externalId": "ext-1", "userId": "recU"}
        assert resolver.read("recS") == Identity(external_id="ext-1", user_id="recU")

    def test_identities_are_per_session(self):
        """Test identities do not leak across sessions."""
        resolver = IdentityResolver(storage={})
        resolver.write("recA", Identity(external_id="ext-a"))

        assert resolver.read("recB") is None

    def test_cookie_used_when_storage_empty(self):
        """Test the cookie is used when storage has nothing."""
        cookies = IdentityCookies()
        IdentityResolver(storage={}, cookies=cookies).write("recS", Identity(external_id="ext-1"))

        resolver = IdentityResolver(storage={}, cookies=cookies)

        assert resolver.read("recS").external_id == "ext-1"

    def test_broken_storage_falls_back_to_cookie(self):
        """Test unavailable storage falls back to the cookie."""
        resolver = IdentityResolver(storage=BrokenStorage())

        resolver.write("recS", Identity(external_id="ext-1"))

        assert resolver.read("recS").external_id == "ext-1"

    def test_malformed_token_ignored(self):
        """Test a malformed token reads as absent."""
        resolver = IdentityResolver(storage={"leancoffee:user:recS": "not json"})
        assert resolver.read("recS") is None

    def test_ensure_mints_on_first_visit(self):
        """Test an identity is minted on the first visit."""
        resolver = IdentityResolver(storage={})

        identity = resolver.ensure("recS")

        assert identity.external_id
        assert identity.user_id is None

    def test_ensure_keeps_known_identity(self):
        """Test a known identity is kept."""
        resolver = IdentityResolver(storage={})
        resolver.write("recS", Identity(external_id="ext-1", user_id="recU"))

        assert resolver.ensure("recS").external_id == "ext-1"
