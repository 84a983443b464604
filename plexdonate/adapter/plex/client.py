"""Plex client.

Shares libraries through plex.tv and reads users from the configured Plex
Media Server. Server discovery and user-list endpoint probing are cached per
client instance.
"""

import asyncio
from typing import Any
from urllib.parse import quote

import httpx
import logfire

from plexdonate.adapter.common import check_response, send_request
from plexdonate.adapter.error import (
    AmbiguousServerError,
    NoIdentifierError,
    NoSuchServerError,
    NotConfiguredError,
    PlexServerError,
    ProviderError,
    ProviderNotFoundError,
    ProviderResponseError,
    RejectedByProviderError,
)
from plexdonate.adapter.plex.parsing import (
    ServerDescriptor,
    extract_users,
    host_from_url,
    is_owned,
    legacy_server_id,
    map_invite_response,
    parse_library_sections,
    parse_resources,
    parse_servers,
    parse_shared_servers,
    to_share,
)
from plexdonate.domain.service.matching import share_matches
from plexdonate.domain.service.provider import PlexClient
from plexdonate.domain.value import (
    CancelOutcome,
    PlexConnectionInfo,
    PlexInviteResult,
    PlexShare,
    RevokeOutcome,
    SharedLibrary,
    normalize_email,
    normalize_identifier,
)

PROVIDER = "plex"
PLEX_TV_BASE_URL = "https://plex.tv"
CLIENT_IDENTIFIER = "plex-donate"

# Tried in order; the first non-404 path is remembered per base URL
USER_LIST_ENDPOINTS = ("/accounts", "/api/v2/home/users", "/api/home/users")
LIBRARY_SECTIONS_ENDPOINT = "/library/sections"
RESOURCES_PATH = "/api/resources?includeHttps=1&includeRelay=1"
SERVERS_PATH = "/api/servers"
V2_SHARED_SERVERS_PATH = "/api/v2/shared_servers"


def legacy_shared_servers_path(server_id: str) -> str:
    return f"/api/servers/{quote(str(server_id), safe='')}/shared_servers"


def _flag(value: bool) -> str:
    return "1" if value else "0"


def _join_paths(paths: list[str]) -> str:
    if len(paths) == 1:
        return paths[0]
    return f"{', '.join(paths[:-1])} and {paths[-1]}"


class RealPlexClient(PlexClient):
    """Plex client backed by plex.tv and the Plex Media Server HTTP API."""

    def __init__(
        self,
        base_url: str,
        token: str,
        server_identifier: str = "",
        library_section_ids: list[str] | None = None,
        allow_sync: bool = False,
        allow_camera_upload: bool = False,
        allow_channels: bool = False,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Plex client.

        Args:
            base_url: Plex Media Server URL, e.g. ``https://plex.example.com:32400``
            token: Plex token of the server owner
            server_identifier: 40-char machine identifier; auto-detected when empty
            library_section_ids: Sections shared with new donors
            allow_sync: Allow downloads on shares
            allow_camera_upload: Allow camera upload on shares
            allow_channels: Allow channels on shares
            timeout: Per-request deadline in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.base_url = (base_url or "").strip().rstrip("/")
        self.token = (token or "").strip()
        self.server_identifier = (server_identifier or "").strip()
        self._library_section_ids = list(library_section_ids or [])
        self.allow_sync = allow_sync
        self.allow_camera_upload = allow_camera_upload
        self.allow_channels = allow_channels
        self.timeout = timeout
        self._transport = transport

        self._cache_lock = asyncio.Lock()
        self._user_list_paths: dict[str, str] = {}
        self._descriptors: dict[tuple[str, str], ServerDescriptor] = {}
        self._detected_identifier: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.token)

    @property
    def library_section_ids(self) -> list[str]:
        return list(self._library_section_ids)

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _headers(self, **extra: str) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "X-Plex-Client-Identifier": CLIENT_IDENTIFIER,
            "X-Plex-Product": "Plex Donate",
            **extra,
        }

    def _require_configuration(self) -> None:
        if not self.is_configured:
            raise NotConfiguredError(
                "Plex base URL and token must be configured", PROVIDER
            )

    async def _invalidate_caches(self) -> None:
        async with self._cache_lock:
            self._user_list_paths.clear()
            self._descriptors.clear()
            self._detected_identifier = None

    async def _server_request(
        self, client: httpx.AsyncClient, method: str, path: str, action: str
    ) -> httpx.Response:
        return await send_request(
            client,
            method,
            f"{self.base_url}{path}",
            PROVIDER,
            action,
            params={"X-Plex-Token": self.token},
            headers=self._headers(),
        )

    async def _plex_tv_request(
        self,
        client: httpx.AsyncClient,
        method: str,
        path: str,
        action: str,
        json: Any = None,
    ) -> httpx.Response:
        response = await send_request(
            client,
            method,
            f"{PLEX_TV_BASE_URL}{path}",
            PROVIDER,
            action,
            headers=self._headers(**{"X-Plex-Token": self.token}),
            json=json,
        )
        if response.status_code in (401, 403):
            await self._invalidate_caches()
            raise RejectedByProviderError(
                "Plex rejected the provided token.", PROVIDER, response.status_code
            )
        return response

    # Server discovery

    async def _resolve_server_identifier(self, client: httpx.AsyncClient) -> str:
        """Configured machine identifier, or the one detected from resources.

        Raises:
            NoSuchServerError: If the account publishes no servers
            AmbiguousServerError: If several servers could be the configured one
        """
        if self.server_identifier:
            return self.server_identifier
        async with self._cache_lock:
            if self._detected_identifier:
                return self._detected_identifier

        devices = await self._fetch_resources(client)
        servers = [device for device in devices if device.is_server]
        if not servers:
            raise NoSuchServerError(
                "No Plex servers were returned from /api/resources. Confirm the "
                "token owns the server and that it is published."
            )

        base_host = host_from_url(self.base_url)
        detected = None
        if base_host:
            for device in servers:
                if device.client_identifier and any(
                    host_from_url(uri) == base_host for uri in device.connections
                ):
                    detected = device.client_identifier
                    break
        if detected is None and len(servers) == 1:
            detected = servers[0].client_identifier

        if not detected:
            candidates = [
                f"{device.name} ({device.client_identifier or 'no identifier'})"
                for device in servers
            ]
            raise AmbiguousServerError(
                "Multiple Plex servers found; set the server identifier or a base "
                "URL that matches one of them.",
                candidates,
            )

        logfire.info("Plex server identifier detected", server_identifier=detected)
        async with self._cache_lock:
            self._detected_identifier = detected
        return detected

    async def _fetch_resources(self, client: httpx.AsyncClient):
        response = await self._plex_tv_request(
            client, "GET", RESOURCES_PATH, "Fetch Plex resources"
        )
        check_response(response, PROVIDER, "Fetch Plex resources")
        return parse_resources(response.text)

    async def _fetch_legacy_server_id(
        self, client: httpx.AsyncClient, identifier: str
    ) -> str | None:
        try:
            response = await self._plex_tv_request(
                client, "GET", SERVERS_PATH, "Fetch Plex servers"
            )
            check_response(response, PROVIDER, "Fetch Plex servers")
        except RejectedByProviderError:
            raise
        except ProviderError as e:
            logfire.warn("Unable to read legacy Plex server list", error=str(e))
            return None
        return legacy_server_id(parse_servers(response.text), identifier)

    async def _resolve_descriptor(self, client: httpx.AsyncClient) -> ServerDescriptor:
        """Resolve and cache the server's machine identifier and legacy id.

        Raises:
            NoSuchServerError: If the identifier is not among the account's servers
            PlexServerError: If the token does not own the matched server
            NoIdentifierError: If no machine identifier can be determined
        """
        identifier = await self._resolve_server_identifier(client)
        key = (self.token, identifier)
        async with self._cache_lock:
            cached = self._descriptors.get(key)
        if cached is not None:
            return cached

        with logfire.span("plex_client.resolve_server", server_identifier=identifier):
            servers = [
                device
                for device in await self._fetch_resources(client)
                if device.is_server
            ]
            wanted = normalize_identifier(identifier)
            matched = next(
                (
                    device
                    for device in servers
                    if wanted
                    in (
                        normalize_identifier(device.client_identifier),
                        normalize_identifier(device.machine_identifier),
                    )
                ),
                None,
            )
            if matched is None:
                owned = [device for device in servers if is_owned(device.owned)]
                if len(owned) == 1:
                    matched = owned[0]
            if matched is None:
                raise NoSuchServerError(
                    f'Plex server identifier "{identifier}" was not found in '
                    "/api/resources."
                )
            if matched.owned is not None and not is_owned(matched.owned):
                raise PlexServerError(
                    f'Plex token does not own server "{matched.name}". Ensure the '
                    "server is claimed by this account."
                )

            machine_identifier = matched.client_identifier or identifier
            if not machine_identifier:
                raise NoIdentifierError(
                    "Unable to determine Plex machine identifier for invites"
                )

            descriptor = ServerDescriptor(
                machine_identifier=machine_identifier,
                name=matched.name,
                legacy_server_id=await self._fetch_legacy_server_id(
                    client, machine_identifier
                ),
            )
            logfire.info(
                "Plex server resolved",
                server_identifier=descriptor.machine_identifier,
                invite_endpoint=descriptor.invite_endpoint_version,
            )

        async with self._cache_lock:
            self._descriptors[key] = descriptor
        return descriptor

    # Users

    async def _fetch_users(
        self, client: httpx.AsyncClient
    ) -> tuple[list[dict[str, Any]], str]:
        """Read users from the first user-list endpoint the server supports.

        Returns:
            Tuple of (raw user entries, endpoint base path)

        Raises:
            RejectedByProviderError: On 401/403
            ProviderNotFoundError: If every known endpoint answers 404
        """
        async with self._cache_lock:
            preferred = self._user_list_paths.get(self.base_url)
        endpoints = list(USER_LIST_ENDPOINTS)
        if preferred:
            endpoints.remove(preferred)
            endpoints.insert(0, preferred)

        not_found: list[str] = []
        for path in endpoints:
            response = await self._server_request(
                client, "GET", path, f"Fetch Plex users from {path}"
            )
            if response.status_code in (401, 403):
                await self._invalidate_caches()
                raise RejectedByProviderError(
                    "Plex rejected the provided token.", PROVIDER, response.status_code
                )
            if response.status_code == 404:
                not_found.append(path)
                if path == preferred:
                    async with self._cache_lock:
                        self._user_list_paths.pop(self.base_url, None)
                continue

            check_response(response, PROVIDER, f"Fetch Plex users from {path}")
            try:
                data = response.json()
            except ValueError:
                data = {}
            async with self._cache_lock:
                self._user_list_paths[self.base_url] = path
            return [dict(user) for user in extract_users(data)], path

        raise ProviderNotFoundError(
            f"Plex returned 404 (Not Found) for the supported user list endpoints "
            f"({_join_paths(not_found)}). Confirm the base URL is correct and that "
            "the server supports the Plex accounts or home users API.",
            PROVIDER,
        )

    async def list_users(self) -> list[PlexShare]:
        self._require_configuration()
        with logfire.span("plex_client.list_users"):
            async with self._http() as client:
                users, _ = await self._fetch_users(client)
            return [to_share(user) for user in users]

    async def list_current_shares(self) -> list[PlexShare]:
        """Users of the server plus library shares and pending invitations.

        Shares come from the legacy shared_servers listing when the server
        has a legacy id; otherwise only the user list is available.
        """
        self._require_configuration()
        with logfire.span("plex_client.list_current_shares"):
            async with self._http() as client:
                users, _ = await self._fetch_users(client)
                shares = [to_share(user) for user in users]
                try:
                    descriptor = await self._resolve_descriptor(client)
                except PlexServerError as e:
                    logfire.warn("Plex shares unavailable", error=str(e))
                    return shares
                if not descriptor.legacy_server_id:
                    return shares

                path = legacy_shared_servers_path(descriptor.legacy_server_id)
                response = await self._plex_tv_request(
                    client, "GET", path, "List Plex shared servers"
                )
                check_response(response, PROVIDER, "List Plex shared servers")
                shares.extend(parse_shared_servers(response.text))
            return shares

    async def revoke_user(
        self, plex_account_id: str | None = None, email: str | None = None
    ) -> RevokeOutcome:
        if not self.is_configured:
            logfire.info("Plex revoke skipped: integration disabled")
            return RevokeOutcome.SKIPPED

        with logfire.span(
            "plex_client.revoke_user", plex_account_id=plex_account_id
        ):
            async with self._http() as client:
                users, base_path = await self._fetch_users(client)
                shares = [(to_share(user), user) for user in users]

                target = None
                account_id = normalize_identifier(plex_account_id)
                if account_id:
                    target = next(
                        (s for s in shares if share_matches(s[0], set(), {account_id})),
                        None,
                    )
                normalized_email = normalize_email(email)
                if target is None and normalized_email:
                    target = next(
                        (
                            s
                            for s in shares
                            if share_matches(s[0], {normalized_email}, set())
                        ),
                        None,
                    )
                if target is None:
                    logfire.info("Plex user not found for revocation")
                    return RevokeOutcome.NOT_FOUND

                user_id = target[0].id
                if not user_id:
                    logfire.warn("Unable to determine Plex user id for revocation")
                    return RevokeOutcome.NOT_FOUND

                response = await self._server_request(
                    client,
                    "DELETE",
                    f"{base_path}/{quote(user_id, safe='')}",
                    "Revoke Plex user",
                )
                if response.status_code == 404:
                    return RevokeOutcome.NOT_FOUND
                check_response(response, PROVIDER, "Revoke Plex user")

            logfire.info("Plex user revoked", plex_user_id=user_id)
            return RevokeOutcome.SUCCESS

    # Invites

    async def create_invite(
        self,
        email: str,
        friendly_name: str | None = None,
        section_ids: list[str] | None = None,
    ) -> PlexInviteResult:
        self._require_configuration()
        sections = [str(s).strip() for s in (section_ids or self._library_section_ids)]
        sections = [s for s in sections if s]
        if not sections:
            raise NotConfiguredError(
                "At least one Plex library section must be configured", PROVIDER
            )
        recipient = (email or "").strip()
        if not recipient:
            raise ValueError("Recipient email is required to create Plex invites")

        with logfire.span("plex_client.create_invite", sections=sections):
            async with self._http() as client:
                descriptor = await self._resolve_descriptor(client)
                if descriptor.legacy_server_id:
                    path = legacy_shared_servers_path(descriptor.legacy_server_id)
                    body: dict[str, Any] = {
                        "server_id": descriptor.machine_identifier,
                        "shared_server": {
                            "library_section_ids": sections,
                            "invited_email": recipient,
                        },
                        "sharing_settings": {
                            "allow_sync": _flag(self.allow_sync),
                            "allow_camera_upload": _flag(self.allow_camera_upload),
                            "allow_channels": _flag(self.allow_channels),
                        },
                    }
                else:
                    path = V2_SHARED_SERVERS_PATH
                    body = {
                        "machineIdentifier": descriptor.machine_identifier,
                        "librarySectionIds": sections,
                        "invitedEmail": recipient,
                        "settings": {
                            "allowSync": _flag(self.allow_sync),
                            "allowCameraUpload": _flag(self.allow_camera_upload),
                            "allowChannels": _flag(self.allow_channels),
                        },
                    }
                if friendly_name and friendly_name.strip():
                    body["friendlyName"] = friendly_name.strip()

                response = await self._plex_tv_request(
                    client, "POST", path, "Create Plex invite", json=body
                )
                check_response(response, PROVIDER, "Create Plex invite")
                try:
                    data = response.json()
                except ValueError:
                    data = {}

            result = map_invite_response(data)
            if descriptor.legacy_server_id and not (
                result.plex_invite_id or result.invite_url
            ):
                raise ProviderResponseError(
                    "Plex did not return an invite identifier", PROVIDER
                )
            if not result.shared_libraries:
                result = result.model_copy(
                    update={
                        "shared_libraries": [SharedLibrary(id=s) for s in sections]
                    }
                )

            logfire.info(
                "Plex invite created",
                plex_invite_id=result.plex_invite_id,
                endpoint=descriptor.invite_endpoint_version,
            )
            return result

    async def cancel_invite(self, plex_invite_id: str) -> CancelOutcome:
        self._require_configuration()
        if not plex_invite_id:
            raise ValueError("Invite id is required to cancel Plex invites")

        with logfire.span("plex_client.cancel_invite", plex_invite_id=plex_invite_id):
            async with self._http() as client:
                descriptor = await self._resolve_descriptor(client)
                if not descriptor.legacy_server_id:
                    raise NoIdentifierError(
                        "Plex did not return a legacy numeric server id; cancelling "
                        "invites is not supported via this token."
                    )
                path = (
                    f"{legacy_shared_servers_path(descriptor.legacy_server_id)}/"
                    f"{quote(str(plex_invite_id), safe='')}"
                )
                response = await self._plex_tv_request(
                    client, "DELETE", path, "Cancel Plex invite"
                )
                if response.status_code in (404, 410):
                    return CancelOutcome.NOT_FOUND
                check_response(response, PROVIDER, "Cancel Plex invite")

            logfire.info("Plex invite cancelled", plex_invite_id=plex_invite_id)
            return CancelOutcome.CANCELLED

    async def verify_connection(self) -> PlexConnectionInfo:
        self._require_configuration()
        with logfire.span("plex_client.verify_connection"):
            async with self._http() as client:
                descriptor = await self._resolve_descriptor(client)
                response = await self._server_request(
                    client, "GET", LIBRARY_SECTIONS_ENDPOINT, "Load Plex libraries"
                )
                if response.status_code in (401, 403):
                    raise RejectedByProviderError(
                        "Plex rejected the provided token.",
                        PROVIDER,
                        response.status_code,
                    )
                check_response(response, PROVIDER, "Load Plex libraries")

            libraries = parse_library_sections(response.text)
            if not libraries:
                raise ProviderResponseError(
                    "No Plex libraries were found. Confirm the token has access "
                    "to your server.",
                    PROVIDER,
                )
            return PlexConnectionInfo(
                server_identifier=descriptor.machine_identifier,
                library_section_ids=self.library_section_ids,
                invite_endpoint_version=descriptor.invite_endpoint_version,
                libraries=libraries,
            )


class MockPlexClient(PlexClient):
    """Mock Plex client for testing.

    ``users`` and ``shares`` drive the read model; every mutating call is
    recorded in ``calls``. Configure ``failures[method]`` to raise.
    """

    def __init__(
        self, configured: bool = True, library_section_ids: list[str] | None = None
    ) -> None:
        self.configured = configured
        self.section_ids = list(library_section_ids or ["1", "2"])
        self.users: list[PlexShare] = []
        self.shares: list[PlexShare] = []
        self.invite_url: str | None = "https://app.plex.tv/invite/mock"
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._invite_counter = 0

    @property
    def is_configured(self) -> bool:
        return self.configured

    @property
    def library_section_ids(self) -> list[str]:
        return list(self.section_ids)

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if method in self.failures:
            raise self.failures[method]

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    async def verify_connection(self) -> PlexConnectionInfo:
        self._record("verify_connection")
        return PlexConnectionInfo(
            server_identifier="mock-machine-identifier",
            library_section_ids=self.library_section_ids,
            invite_endpoint_version="legacy",
            libraries=[SharedLibrary(id=s, title=f"Library {s}") for s in self.section_ids],
        )

    async def create_invite(
        self,
        email: str,
        friendly_name: str | None = None,
        section_ids: list[str] | None = None,
    ) -> PlexInviteResult:
        sections = section_ids or self.section_ids
        self._record("create_invite", email, friendly_name, tuple(sections))
        if not self.configured:
            raise NotConfiguredError("Plex is not configured", PROVIDER)
        self._invite_counter += 1
        return PlexInviteResult(
            plex_invite_id=f"mock-invite-{self._invite_counter}",
            invite_url=self.invite_url,
            status="pending",
            shared_libraries=[SharedLibrary(id=s) for s in sections],
        )

    async def cancel_invite(self, plex_invite_id: str) -> CancelOutcome:
        self._record("cancel_invite", plex_invite_id)
        return CancelOutcome.CANCELLED

    async def revoke_user(
        self, plex_account_id: str | None = None, email: str | None = None
    ) -> RevokeOutcome:
        self._record("revoke_user", plex_account_id, email)
        if not self.configured:
            return RevokeOutcome.SKIPPED
        account_id = normalize_identifier(plex_account_id)
        normalized_email = normalize_email(email)
        for user in list(self.users):
            if (account_id and account_id in user.user_ids) or (
                normalized_email and normalized_email in user.emails
            ):
                self.users.remove(user)
                return RevokeOutcome.SUCCESS
        return RevokeOutcome.NOT_FOUND

    async def list_users(self) -> list[PlexShare]:
        self._record("list_users")
        return list(self.users)

    async def list_current_shares(self) -> list[PlexShare]:
        self._record("list_current_shares")
        return list(self.users) + list(self.shares)
