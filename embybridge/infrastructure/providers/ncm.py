import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional

import requests

from embybridge.domain.entities import ExternalTrack, UNKNOWN_ALBUM, UNKNOWN_ARTIST, UNKNOWN_TITLE
from embybridge.domain.errors import UpstreamUnavailableError
from embybridge.domain.ports import PlaylistSource

logger = logging.getLogger(__name__)


NCM_BASE_URL = "https://music.163.com"
NCM_HEADERS = {
    "Referer": "https://music.163.com/",
    "Origin": "https://music.163.com/",
    "User-Agent": "Mozilla/5.0",
}
DEFAULT_BATCH_SIZE = 200


def chunk(items: List[str], size: int) -> Iterator[List[str]]:
    """Yield consecutive slices of at most `size` items."""
    if size <= 0:
        raise ValueError("Batch size must be positive")
    for i in range(0, len(items), size):
        yield items[i:i + size]


def ncm_song_to_track(song: Dict[str, Any]) -> ExternalTrack:
    """Convert an NCM song payload into an ExternalTrack."""
    album = song.get("al") or song.get("album") or {}
    artists = song.get("ar") or song.get("artists") or []
    artist_names = [a.get("name") for a in artists if isinstance(a, dict) and a.get("name")]

    duration_ms = song.get("dt") or song.get("duration")
    duration_seconds = int(round(duration_ms / 1000)) if isinstance(duration_ms, (int, float)) and duration_ms else None

    return ExternalTrack(
        external_id=str(song.get("id")),
        title=song.get("name") or UNKNOWN_TITLE,
        artist="/".join(artist_names) or UNKNOWN_ARTIST,
        album=album.get("name") or UNKNOWN_ALBUM,
        artwork_url=album.get("picUrl"),
        duration_seconds=duration_seconds,
    )


class NcmPlaylistClient(PlaylistSource):
    """Read-only client for NetEase Cloud Music playlists.

    Track metadata is fetched in fixed-size batches; a failing batch is
    logged and skipped instead of aborting the whole fetch.
    """

    def __init__(self,
                 session: Optional[requests.Session] = None,
                 base_url: str = NCM_BASE_URL,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 timeout: float = 15.0):
        """Initialize the client.

        Args:
            session: Optional requests session (a new one is created otherwise)
            base_url: NCM API origin
            batch_size: Number of track IDs per detail request
            timeout: Per-request timeout in seconds
        """
        self._session = session or requests.Session()
        self._session.headers.update(NCM_HEADERS)
        self.base_url = base_url.rstrip("/")
        self.batch_size = batch_size
        self.timeout = timeout
        self.last_failed_batches: List[int] = []

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = self._session.get(url, params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def list_track_ids(self, playlist_id: str) -> List[str]:
        """Return the ordered track IDs of an NCM playlist.

        Raises:
            UpstreamUnavailableError: on request failure or malformed payload
        """
        url = f"{self.base_url}/api/v3/playlist/detail"
        try:
            data = self._get_json(url, params={"id": playlist_id, "n": 100000})
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Failed to get track IDs for NCM playlist {playlist_id}: {e}")
            raise UpstreamUnavailableError(f"Failed to fetch NCM playlist {playlist_id}: {e}") from e

        playlist = data.get("playlist") if isinstance(data, dict) else None
        track_ids = playlist.get("trackIds") if isinstance(playlist, dict) else None
        if not isinstance(track_ids, list):
            logger.error(f"Invalid response from playlist detail for {playlist_id}: {data!r:.200}")
            raise UpstreamUnavailableError(f"Failed to fetch NCM playlist {playlist_id}: invalid response")

        return [str(entry["id"]) for entry in track_ids if isinstance(entry, dict) and "id" in entry]

    def _fetch_batch(self, batch_index: int, track_ids: List[str]) -> List[ExternalTrack]:
        url = f"{self.base_url}/api/song/detail/"
        try:
            data = self._get_json(url, params={"ids": f"[{','.join(track_ids)}]"})
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"NCM detail batch {batch_index} failed ({len(track_ids)} ids): {e}")
            self.last_failed_batches.append(batch_index)
            return []

        songs = data.get("songs") if isinstance(data, dict) else None
        if not songs:
            logger.warning(f"NCM detail batch {batch_index} returned no songs")
            self.last_failed_batches.append(batch_index)
            return []

        try:
            return [ncm_song_to_track(song) for song in songs if isinstance(song, dict)]
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"NCM detail batch {batch_index} has a malformed song: {e}")
            self.last_failed_batches.append(batch_index)
            return []

    def fetch_track_metadata(self, track_ids: Iterable[str]) -> List[ExternalTrack]:
        """Fetch metadata for the given IDs, one request per batch, in batch order."""
        ids = [str(track_id) for track_id in track_ids]
        self.last_failed_batches = []
        tracks: List[ExternalTrack] = []

        for batch_index, batch in enumerate(chunk(ids, self.batch_size)):
            logger.debug(f"Fetching NCM detail batch {batch_index} ({len(batch)} ids)")
            tracks.extend(self._fetch_batch(batch_index, batch))

        return tracks
