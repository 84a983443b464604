"""Unit tests for the Plex HTTP client."""

import json

import httpx
import pytest

from plexdonate.adapter.error import (
    AmbiguousServerError,
    NotConfiguredError,
    PlexServerError,
    ProviderNotFoundError,
    RejectedByProviderError,
)
from plexdonate.adapter.plex import RealPlexClient
from plexdonate.domain.value import CancelOutcome, RevokeOutcome

BASE_URL = "https://plex.example.com:32400"
SERVER_HOST = "plex.example.com"
PLEX_TV = "plex.tv"

RESOURCES = [
    {
        "name": "Media Box",
        "provides": "server",
        "clientIdentifier": "machine-1",
        "owned": True,
        "connections": [{"uri": BASE_URL}],
    }
]
SERVERS_XML = (
    '<MediaContainer><Server id="55" machineIdentifier="machine-1"/></MediaContainer>'
)


class FakePlex:
    """Routes requests by (method, host, path) and records them."""

    def __init__(self, routes: dict[tuple[str, str, str], httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.host, request.url.path)
        return self.routes.get(key) or httpx.Response(404, text="Not Found")

    def paths(self, method: str = "GET") -> list[str]:
        return [r.url.path for r in self.requests if r.method == method]

    def last(self, method: str, path: str) -> httpx.Request:
        return [
            r for r in self.requests if r.method == method and r.url.path == path
        ][-1]


def _discovery(legacy: bool = True) -> dict[tuple[str, str, str], httpx.Response]:
    routes = {("GET", PLEX_TV, "/api/resources"): httpx.Response(200, json=RESOURCES)}
    if legacy:
        routes[("GET", PLEX_TV, "/api/servers")] = httpx.Response(200, text=SERVERS_XML)
    return routes


def _client(fake, **kwargs) -> RealPlexClient:
    values = {
        "base_url": BASE_URL,
        "token": "plex-token",
        "library_section_ids": ["1", "2"],
        "transport": httpx.MockTransport(fake),
    }
    values.update(kwargs)
    return RealPlexClient(**values)


class TestCreateInvite:
    """Tests for invite creation on the legacy and v2 endpoints."""

    @pytest.mark.asyncio
    async def test_legacy_endpoint(self):
        """Servers with a numeric id use the legacy shared_servers API."""
        # Arrange
        routes = _discovery()
        routes[("POST", PLEX_TV, "/api/servers/55/shared_servers")] = httpx.Response(
            200,
            json={
                "invitation": {
                    "id": 7,
                    "links": {"invite": "https://app.plex.tv/invite/7"},
                }
            },
        )
        fake = FakePlex(routes)

        # Act
        result = await _client(fake).create_invite("fan@example.com", "Fan")

        # Assert
        assert result.plex_invite_id == "7"
        assert result.invite_url == "https://app.plex.tv/invite/7"
        assert [library.id for library in result.shared_libraries] == ["1", "2"]
        request = fake.last("POST", "/api/servers/55/shared_servers")
        body = json.loads(request.content)
        assert body["server_id"] == "machine-1"
        assert body["shared_server"] == {
            "library_section_ids": ["1", "2"],
            "invited_email": "fan@example.com",
        }
        assert body["friendlyName"] == "Fan"
        assert request.headers["X-Plex-Token"] == "plex-token"

    @pytest.mark.asyncio
    async def test_v2_endpoint(self):
        """Without a legacy id the v2 endpoint is used and may return nothing."""
        routes = _discovery(legacy=False)
        routes[("POST", PLEX_TV, "/api/v2/shared_servers")] = httpx.Response(
            200, json={}
        )
        fake = FakePlex(routes)

        result = await _client(fake).create_invite("fan@example.com", section_ids=["3"])

        assert result.plex_invite_id is None
        assert [library.id for library in result.shared_libraries] == ["3"]
        body = json.loads(fake.last("POST", "/api/v2/shared_servers").content)
        assert body["machineIdentifier"] == "machine-1"
        assert body["librarySectionIds"] == ["3"]

    @pytest.mark.asyncio
    async def test_descriptor_cached(self):
        """Server discovery runs once per client."""
        routes = _discovery()
        routes[("POST", PLEX_TV, "/api/servers/55/shared_servers")] = httpx.Response(
            200, json={"id": 8}
        )
        fake = FakePlex(routes)
        client = _client(fake)

        await client.create_invite("a@example.com")
        await client.create_invite("b@example.com")

        assert fake.paths("GET").count("/api/servers") == 1

    @pytest.mark.asyncio
    async def test_ambiguous_server(self):
        """Several servers without a matching connection cannot be told apart."""
        resources = [
            {"name": "A", "provides": "server", "clientIdentifier": "a"},
            {"name": "B", "provides": "server", "clientIdentifier": "b"},
        ]
        fake = FakePlex(
            {("GET", PLEX_TV, "/api/resources"): httpx.Response(200, json=resources)}
        )

        with pytest.raises(AmbiguousServerError) as exc_info:
            await _client(fake, base_url="https://elsewhere:32400").create_invite(
                "fan@example.com"
            )

        assert isinstance(exc_info.value, PlexServerError)

    @pytest.mark.asyncio
    async def test_token_rejected(self):
        fake = FakePlex({("GET", PLEX_TV, "/api/resources"): httpx.Response(401)})

        with pytest.raises(RejectedByProviderError):
            await _client(fake).create_invite("fan@example.com")

    @pytest.mark.asyncio
    async def test_requires_sections(self):
        fake = FakePlex({})

        with pytest.raises(NotConfiguredError):
            await _client(fake, library_section_ids=[]).create_invite("a@example.com")

        assert fake.requests == []


class TestUsers:
    """Tests for the user list and revocation."""

    @pytest.mark.asyncio
    async def test_endpoint_probing(self):
        """The first non-404 endpoint is remembered."""
        # Arrange
        fake = FakePlex(
            {
                ("GET", SERVER_HOST, "/api/v2/home/users"): httpx.Response(
                    200, json={"users": [{"id": "u-1", "email": "Fan@example.com"}]}
                )
            }
        )
        client = _client(fake)

        # Act
        first = await client.list_users()
        await client.list_users()

        # Assert
        assert "fan@example.com" in first[0].emails
        assert fake.paths("GET") == [
            "/accounts",
            "/api/v2/home/users",
            "/api/v2/home/users",
        ]

    @pytest.mark.asyncio
    async def test_all_endpoints_missing(self):
        fake = FakePlex({})

        with pytest.raises(ProviderNotFoundError) as exc_info:
            await _client(fake).list_users()

        assert "/accounts" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_revoke_by_email(self):
        """The matching user is deleted from the user-list endpoint."""
        fake = FakePlex(
            {
                ("GET", SERVER_HOST, "/accounts"): httpx.Response(
                    200,
                    json={
                        "MediaContainer": {
                            "Account": [
                                {"id": "u-1", "email": "fan@example.com"},
                                {"id": "u-2", "email": "other@example.com"},
                            ]
                        }
                    },
                ),
                ("DELETE", SERVER_HOST, "/accounts/u-1"): httpx.Response(200),
            }
        )

        outcome = await _client(fake).revoke_user(email="FAN@example.com")

        assert outcome == RevokeOutcome.SUCCESS
        assert fake.paths("DELETE") == ["/accounts/u-1"]

    @pytest.mark.asyncio
    async def test_revoke_by_account_id(self):
        fake = FakePlex(
            {
                ("GET", SERVER_HOST, "/accounts"): httpx.Response(
                    200, json=[{"id": "AB-12", "email": "fan@example.com"}]
                ),
                ("DELETE", SERVER_HOST, "/accounts/AB-12"): httpx.Response(204),
            }
        )

        outcome = await _client(fake).revoke_user(plex_account_id="ab12")

        assert outcome == RevokeOutcome.SUCCESS

    @pytest.mark.asyncio
    async def test_revoke_unknown_user(self):
        fake = FakePlex(
            {("GET", SERVER_HOST, "/accounts"): httpx.Response(200, json=[])}
        )

        outcome = await _client(fake).revoke_user(email="ghost@example.com")

        assert outcome == RevokeOutcome.NOT_FOUND
        assert fake.paths("DELETE") == []

    @pytest.mark.asyncio
    async def test_revoke_unconfigured(self):
        fake = FakePlex({})

        outcome = await _client(fake, token="").revoke_user(email="a@example.com")

        assert outcome == RevokeOutcome.SKIPPED
        assert fake.requests == []


class TestShares:
    @pytest.mark.asyncio
    async def test_users_and_pending_shares(self):
        """Current shares combine users with the legacy shared_servers listing."""
        routes = _discovery()
        routes[("GET", SERVER_HOST, "/accounts")] = httpx.Response(
            200, json=[{"id": "u-1", "email": "fan@example.com"}]
        )
        routes[("GET", PLEX_TV, "/api/servers/55/shared_servers")] = httpx.Response(
            200,
            text=(
                '<MediaContainer><SharedServer id="9" email="new@example.com" '
                'acceptedAt="0"/></MediaContainer>'
            ),
        )
        fake = FakePlex(routes)

        shares = await _client(fake).list_current_shares()

        assert [share.pending for share in shares] == [False, True]
        assert "new@example.com" in shares[1].emails


class TestCancelInvite:
    @pytest.mark.asyncio
    async def test_cancel(self):
        routes = _discovery()
        routes[
            ("DELETE", PLEX_TV, "/api/servers/55/shared_servers/7")
        ] = httpx.Response(200)
        fake = FakePlex(routes)

        assert await _client(fake).cancel_invite("7") == CancelOutcome.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_gone(self):
        fake = FakePlex(_discovery())

        assert await _client(fake).cancel_invite("7") == CancelOutcome.NOT_FOUND


class TestVerifyConnection:
    @pytest.mark.asyncio
    async def test_reports_libraries(self):
        routes = _discovery()
        routes[("GET", SERVER_HOST, "/library/sections")] = httpx.Response(
            200,
            json={"MediaContainer": {"Directory": [{"key": "1", "title": "Movies"}]}},
        )
        fake = FakePlex(routes)

        info = await _client(fake).verify_connection()

        assert info.server_identifier == "machine-1"
        assert info.invite_endpoint_version == "legacy"
        assert [library.title for library in info.libraries] == ["Movies"]
