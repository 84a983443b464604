"""Plex adapter."""

from .client import MockPlexClient, RealPlexClient
from .parsing import parse_shared_servers, to_share

__all__ = [
    "MockPlexClient",
    "RealPlexClient",
    "parse_shared_servers",
    "to_share",
]
