"""Plex payload parsing.

plex.tv and Plex Media Server answer in JSON or XML depending on the
endpoint and server age; every parser here accepts both.
"""

import json
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import urlparse

from plexdonate.adapter.common import parse_timestamp
from plexdonate.domain.value import (
    PlexInviteResult,
    PlexShare,
    SharedLibrary,
    ValueObject,
    normalize_email,
    normalize_identifier,
)

EMAIL_KEYS = (
    "email",
    "username",
    "title",
    "name",
    "friendlyName",
    "displayName",
    "invitedEmail",
)
ID_KEYS = ("id", "uuid", "userID", "machineIdentifier", "accountID")
ACCOUNT_EMAIL_KEYS = ("email", "username", "title")
ACCOUNT_ID_KEYS = ("id", "uuid", "machineIdentifier")
STATUS_KEYS = ("status", "state", "friendStatus", "requestStatus")
PENDING_MARKERS = ("pending", "invited")


class PlexDevice(ValueObject):
    """A device entry from ``/api/resources``."""

    name: str = "unknown"
    provides: str = ""
    client_identifier: str | None = None
    machine_identifier: str | None = None
    owned: str | None = None
    connections: list[str] = []

    @property
    def is_server(self) -> bool:
        return "server" in self.provides


class ServerDescriptor(ValueObject):
    """Resolved identity of the configured Plex server."""

    machine_identifier: str
    name: str = "unknown"
    # Numeric id for the legacy shared_servers API; absent on newer accounts
    legacy_server_id: str | None = None

    @property
    def invite_endpoint_version(self) -> str:
        return "legacy" if self.legacy_server_id else "v2"


def host_from_url(url: str | None) -> str:
    if not url:
        return ""
    try:
        return (urlparse(url).netloc or "").lower()
    except ValueError:
        return ""


def is_owned(value: Any) -> bool:
    if value is True or value == 1:
        return True
    return str(value or "").strip().lower() in ("1", "true", "yes")


def _load(payload: str) -> Any:
    """Decode JSON, returning None when the payload is not JSON."""
    text = (payload or "").strip()
    if not text or text.startswith("<"):
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def _xml_root(payload: str) -> ET.Element | None:
    text = (payload or "").strip()
    if not text.startswith("<"):
        return None
    try:
        return ET.fromstring(text)
    except ET.ParseError:
        return None


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _container(data: Any) -> Any:
    if isinstance(data, Mapping):
        return data.get("MediaContainer") or data.get("mediaContainer") or data
    return data


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# Resources


def _device_from_mapping(entry: Mapping[str, Any]) -> PlexDevice:
    connections = []
    for connection in _as_list(entry.get("connections") or entry.get("Connection")):
        if isinstance(connection, str):
            connections.append(connection)
        elif isinstance(connection, Mapping):
            uri = (
                connection.get("uri")
                or connection.get("address")
                or connection.get("host")
                or connection.get("relay")
            )
            if uri:
                connections.append(str(uri))
    owned = entry.get("owned")
    return PlexDevice(
        name=str(
            entry.get("name")
            or entry.get("product")
            or entry.get("device")
            or "unknown"
        ),
        provides=str(entry.get("provides") or "").lower(),
        client_identifier=_text(entry.get("clientIdentifier")),
        machine_identifier=_text(entry.get("machineIdentifier")),
        owned=str(owned).strip().lower() if owned is not None else None,
        connections=connections,
    )


def parse_resources(payload: str) -> list[PlexDevice]:
    """Parse ``/api/resources`` into devices."""
    data = _load(payload)
    if data is not None:
        devices = data if isinstance(data, list) else _container(data).get("Device")
        return [
            _device_from_mapping(entry)
            for entry in _as_list(devices)
            if isinstance(entry, Mapping)
        ]

    root = _xml_root(payload)
    if root is None:
        return []
    devices = []
    for element in root.iter("Device"):
        attributes = dict(element.attrib)
        attributes["connections"] = [
            dict(connection.attrib) for connection in element.iter("Connection")
        ]
        devices.append(_device_from_mapping(attributes))
    return devices


# Legacy server list


def parse_servers(payload: str) -> list[dict[str, Any]]:
    """Parse ``/api/servers`` into raw server entries."""
    data = _load(payload)
    if data is not None:
        if isinstance(data, list):
            return [entry for entry in data if isinstance(entry, Mapping)]
        container = _container(data)
        entries = []
        for key in ("Server", "server", "Servers", "servers"):
            entries.extend(_as_list(container.get(key)))
        return [entry for entry in entries if isinstance(entry, Mapping)]

    root = _xml_root(payload)
    if root is None:
        return []
    return [dict(element.attrib) for element in root.iter("Server")]


def legacy_server_id(
    servers: Iterable[Mapping[str, Any]], identifier: str
) -> str | None:
    """Numeric id of the server whose identifiers match ``identifier``."""
    wanted = normalize_identifier(identifier)
    for server in servers:
        candidates = (
            server.get("machineIdentifier"),
            server.get("clientIdentifier"),
            server.get("uuid"),
        )
        if not any(normalize_identifier(value) == wanted for value in candidates):
            continue
        for key in ("id", "server_id", "serverId", "serverID"):
            value = _text(server.get(key))
            if value:
                return value
    return None


# Libraries


def _library_from_mapping(entry: Mapping[str, Any]) -> SharedLibrary | None:
    raw_id = entry.get("id")
    if raw_id is None:
        raw_id = entry.get("sectionID")
    if raw_id is None and entry.get("key"):
        key = str(entry["key"]).rstrip("/")
        raw_id = key.rsplit("/", 1)[-1]
    library_id = _text(raw_id)
    if not library_id:
        return None
    title = _text(
        entry.get("title")
        or entry.get("name")
        or entry.get("librarySectionTitle")
        or entry.get("sectionTitle")
    )
    return SharedLibrary(id=library_id, title=title)


def _unique_libraries(entries: Iterable[Any]) -> list[SharedLibrary]:
    libraries: list[SharedLibrary] = []
    seen: set[str] = set()
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        library = _library_from_mapping(entry)
        if library and library.id not in seen:
            seen.add(library.id)
            libraries.append(library)
    return libraries


def parse_library_sections(payload: str) -> list[SharedLibrary]:
    """Parse ``/library/sections`` into libraries."""
    data = _load(payload)
    if data is not None:
        container = _container(data)
        if isinstance(container, Mapping):
            directories = container.get("Directory") or container.get("Metadata")
            return _unique_libraries(_as_list(directories))
        return []

    root = _xml_root(payload)
    if root is None:
        return []
    return _unique_libraries(dict(element.attrib) for element in root.iter("Directory"))


# Invites


def map_invite_response(data: Any) -> PlexInviteResult:
    """Normalize a shared_servers create response."""
    if not isinstance(data, Mapping):
        return PlexInviteResult()
    container = data.get("invitation") or data
    if not isinstance(container, Mapping):
        return PlexInviteResult()

    invite_id = None
    for key in ("id", "uuid", "inviteId", "identifier"):
        invite_id = _text(container.get(key))
        if invite_id:
            break

    links = container.get("links")
    if not isinstance(links, Mapping):
        links = {}
    invite_url = None
    for candidate in (
        container.get("inviteUrl"),
        container.get("shareUrl"),
        container.get("uri"),
        container.get("url"),
        container.get("invite_uri"),
        links.get("invite"),
    ):
        invite_url = _text(candidate)
        if invite_url:
            break

    libraries = container.get("libraries") or container.get("sharedLibraries")
    return PlexInviteResult(
        plex_invite_id=invite_id,
        invite_url=invite_url,
        status=_text(container.get("status") or container.get("state")),
        invited_at=parse_timestamp(
            container.get("created_at")
            or container.get("createdAt")
            or container.get("addedAt")
        ),
        shared_libraries=_unique_libraries(_as_list(libraries)),
    )


# Users and shares


def extract_users(data: Any) -> list[Mapping[str, Any]]:
    """Pull user entries out of a user-list response."""
    if isinstance(data, list):
        entries = data
    elif isinstance(data, Mapping):
        if "users" in data:
            entries = _as_list(data["users"])
        else:
            container = _container(data)
            entries = _as_list(
                container.get("User")
                or container.get("Account")
                or container.get("Metadata")
            )
    else:
        entries = []
    return [entry for entry in entries if isinstance(entry, Mapping)]


def is_pending(entry: Mapping[str, Any]) -> bool:
    if entry.get("pending") is True:
        return True
    for key in STATUS_KEYS:
        value = str(entry.get(key) or "").lower()
        if any(marker in value for marker in PENDING_MARKERS):
            return True
    return False


def to_share(entry: Mapping[str, Any]) -> PlexShare:
    """Normalize a Plex user or share entry for matching."""
    emails: set[str] = set()
    ids: set[str] = set()

    def add_email(value: Any) -> None:
        normalized = normalize_email(value)
        if normalized:
            emails.add(normalized)

    def add_id(value: Any) -> None:
        normalized = normalize_identifier(value)
        if normalized:
            ids.add(normalized)

    for key in EMAIL_KEYS:
        add_email(entry.get(key))
    for key in ID_KEYS:
        add_id(entry.get(key))

    account = entry.get("account")
    if isinstance(account, Mapping):
        for key in ACCOUNT_EMAIL_KEYS:
            add_email(account.get(key))
        for key in ACCOUNT_ID_KEYS:
            add_id(account.get(key))

    for value in _as_list(entry.get("emails")):
        add_email(value)
    for invitation in _as_list(entry.get("invitations")):
        if isinstance(invitation, Mapping):
            add_email(invitation.get("email"))
            add_email(invitation.get("username"))

    share_id = None
    for key in ("id", "uuid", "userID"):
        share_id = _text(entry.get(key))
        if share_id:
            break

    status = None
    for key in STATUS_KEYS:
        status = _text(entry.get(key))
        if status:
            break

    return PlexShare(
        id=share_id,
        emails=frozenset(emails),
        user_ids=frozenset(ids),
        status=status,
        pending=is_pending(entry),
    )


def parse_shared_servers(payload: str) -> list[PlexShare]:
    """Parse the legacy ``shared_servers`` listing.

    A share that has not been accepted yet is reported as pending.
    """
    data = _load(payload)
    if data is not None:
        container = _container(data)
        entries = (
            _as_list(container.get("SharedServer"))
            if isinstance(container, Mapping)
            else _as_list(container)
        )
    else:
        root = _xml_root(payload)
        entries = (
            [] if root is None else [dict(e.attrib) for e in root.iter("SharedServer")]
        )

    shares = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        share = to_share(entry)
        accepted_at = entry.get("acceptedAt")
        unaccepted = accepted_at is not None and str(accepted_at) in ("", "0")
        if not share.pending and unaccepted:
            share = share.model_copy(update={"pending": True})
        shares.append(share)
    return shares
