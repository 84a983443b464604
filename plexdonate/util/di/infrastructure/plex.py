"""Plex infrastructure providers."""

from dishka import Scope, provide

from plexdonate.adapter.plex import RealPlexClient
from plexdonate.config import Settings
from plexdonate.domain.service import PlexClient
from plexdonate.util.di.base import ProviderBase


class PlexProvider(ProviderBase):
    """Plex component base."""

    __mock_component__ = "plex"


class ProdPlexProvider(PlexProvider):
    """Production Plex provider.

    APP scope keeps the server descriptor and user-list caches warm across
    requests.
    """

    __is_mock__ = False

    @provide(scope=Scope.APP)
    def get_plex_client(self, settings: Settings) -> PlexClient:
        """Provide Plex client."""
        plex = settings.plex
        return RealPlexClient(
            base_url=plex.base_url,
            token=plex.token,
            server_identifier=plex.server_identifier,
            library_section_ids=plex.section_ids,
            allow_sync=plex.allow_sync,
            allow_camera_upload=plex.allow_camera_upload,
            allow_channels=plex.allow_channels,
            timeout=plex.timeout_seconds,
        )
