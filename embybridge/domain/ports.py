from __future__ import annotations

from typing import Iterable, List, Protocol

from .entities import ExternalTrack, LocalCandidate, SearchPage


class PlaylistSource(Protocol):
    """Port for the upstream service a playlist is imported from."""

    def list_track_ids(self, playlist_id: str) -> List[str]:
        """Return the ordered track IDs of the playlist. Raises UpstreamUnavailableError."""

    def fetch_track_metadata(self, track_ids: Iterable[str]) -> List[ExternalTrack]:
        """Return metadata for the given IDs, fetched in fixed-size batches."""


class CatalogSearch(Protocol):
    """The single capability the import core needs from the local catalog."""

    def search(self, query_text: str, limit: int) -> SearchPage[LocalCandidate]:
        """Return up to `limit` tracks matching the free-text query."""
