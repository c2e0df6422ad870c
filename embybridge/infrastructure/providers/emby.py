import logging
import threading
import uuid
from typing import Any, Dict, List, Optional, Tuple

import requests

from embybridge.domain.entities import (
    Album, Artist, LocalCandidate, PlaylistSummary, SearchPage,
    UNKNOWN_ALBUM, UNKNOWN_ARTIST, UNKNOWN_TITLE,
)
from embybridge.domain.errors import AuthenticationError, TemporaryFailure
from embybridge.domain.ports import CatalogSearch
from embybridge.crosscutting.config import ConfigError

logger = logging.getLogger(__name__)


PAGE_SIZE = 50
TICKS_PER_SECOND = 10_000_000
TRACK_FIELDS = "SortName,MediaSources,ProductionYear,PrimaryImageAspectRatio,BasicSyncInfo"
PLAYLIST_FIELDS = "SortName,CanDelete,PrimaryImageAspectRatio,BasicSyncInfo,ChildCount"


def normalize_host(url: str) -> str:
    """Add a scheme when missing and strip trailing slashes."""
    host = url.strip()
    if not host.startswith(("http://", "https://")):
        host = f"http://{host}"
    return host.rstrip("/")


class EmbySession:
    """Authenticated session against an Emby server.

    Authentication is lazy: the first request logs in, and a 401 response
    clears the token and triggers a single re-login before retrying.
    """

    def __init__(self,
                 url: Optional[str],
                 username: Optional[str],
                 password: Optional[str],
                 http: Optional[requests.Session] = None,
                 client: str = "EmbyBridge",
                 device: str = "EmbyBridgePlayer",
                 version: str = "1.0.0",
                 timeout: float = 20.0):
        self.url = url
        self.username = username
        self.password = password
        self._http = http or requests.Session()
        self.client = client
        self.device = device
        self.device_id = f"{device}-{uuid.uuid4().hex[:13]}"
        self.version = version
        self.timeout = timeout

        self.host: Optional[str] = None
        self.access_token: Optional[str] = None
        self.user_id: Optional[str] = None
        self._login_lock = threading.Lock()

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token and self.user_id and self.host)

    def reset(self) -> None:
        self.access_token = None
        self.user_id = None
        self.host = None

    def auth_header(self, token: Optional[str] = None) -> Optional[Dict[str, str]]:
        token = token or self.access_token
        if not token:
            return None
        value = (
            f'MediaBrowser Client="{self.client}", Device="{self.device}", '
            f'DeviceId="{self.device_id}", Version="{self.version}", Token="{token}"'
        )
        return {"X-Emby-Authorization": value}

    def login(self) -> None:
        """Authenticate by name and store the token and user ID.

        Raises:
            ConfigError: if url, username or password is missing
            AuthenticationError: if the server rejects the login or answers unexpectedly
        """
        if not self.url or not self.username or not self.password:
            raise ConfigError("EMBY_URL, EMBY_USERNAME and EMBY_PASSWORD must be configured")

        host = normalize_host(self.url)
        logger.info("Logging in to Emby server...")
        try:
            response = self._http.post(
                f"{host}/Users/AuthenticateByName",
                json={"Username": self.username, "Pw": self.password},
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.HTTPError as e:
            self.reset()
            status = e.response.status_code if e.response is not None else "?"
            raise AuthenticationError(f"Emby login failed ({status}): {e}") from e
        except (requests.RequestException, ValueError) as e:
            self.reset()
            raise AuthenticationError(f"Emby login failed: {e}") from e

        token = data.get("AccessToken") if isinstance(data, dict) else None
        user = data.get("User") if isinstance(data, dict) else None
        user_id = user.get("Id") if isinstance(user, dict) else None
        if not token or not user_id:
            self.reset()
            logger.error("Emby login failed: invalid response structure")
            raise AuthenticationError("Emby login failed: invalid server response")

        self.access_token = token
        self.user_id = str(user_id)
        self.host = host
        logger.info(f"Emby login successful (user {self.user_id})")

    def ensure_login(self) -> None:
        if self.is_authenticated:
            return
        with self._login_lock:
            if not self.is_authenticated:
                self.login()

    def _relogin(self, rejected_token: Optional[str]) -> None:
        """Log in again unless another request already replaced the rejected token."""
        with self._login_lock:
            if self.access_token == rejected_token or not self.is_authenticated:
                self.login()

    def _request(self, path: str, params: Optional[Dict[str, Any]]) -> Tuple[requests.Response, str]:
        """Send a GET with the current token and return the response with the token it used."""
        token, host = self.access_token, self.host
        if not token or not host:
            raise AuthenticationError("Emby session is not authenticated")
        response = self._http.get(f"{host}{path}", params=params or {},
                                  headers=self.auth_header(token), timeout=self.timeout)
        return response, token

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Authenticated GET returning the decoded JSON body.

        Raises:
            AuthenticationError: if re-authentication after a 401 fails
            TemporaryFailure: on any other request failure
        """
        self.ensure_login()
        try:
            response, token = self._request(path, params)
            if response.status_code == 401:
                logger.warning(f"Emby returned 401 for {path}, logging in again")
                self._relogin(token)
                response, _ = self._request(path, params)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Emby GET {path} failed: {e}")
            raise TemporaryFailure(f"Emby API request failed: {e}") from e


class EmbyCatalog(CatalogSearch):
    """Search and browse operations over the Emby music catalog."""

    def __init__(self, session: EmbySession, page_size: int = PAGE_SIZE):
        self.session = session
        self.page_size = page_size

    def artwork_url(self, item_id: Optional[str], image_tag: Optional[str],
                    image_type: str = "Primary", max_width: int = 600, max_height: int = 600) -> Optional[str]:
        if not item_id or not image_tag:
            return None
        if not self.session.host:
            logger.warning("Cannot build artwork URL before the session has a host")
            return None
        return (f"{self.session.host}/Items/{item_id}/Images/{image_type}"
                f"?tag={image_tag}&maxWidth={max_width}&maxHeight={max_height}&quality=90")

    def stream_url(self, track_id: str) -> str:
        self.session.ensure_login()
        return f"{self.session.host}/Audio/{track_id}/stream?static=true&api_key={self.session.access_token}"

    # ---- formatting ----

    def to_candidate(self, item: Dict[str, Any]) -> LocalCandidate:
        image_tag = (item.get("ImageTags") or {}).get("Primary") or item.get("AlbumPrimaryImageTag")
        ticks = item.get("RunTimeTicks")
        return LocalCandidate(
            local_id=str(item.get("Id")),
            title=item.get("Name") or UNKNOWN_TITLE,
            artist=", ".join(item.get("Artists") or []) or UNKNOWN_ARTIST,
            album=item.get("Album") or UNKNOWN_ALBUM,
            duration_seconds=int(round(ticks / TICKS_PER_SECOND)) if ticks else None,
            artwork_url=self.artwork_url(item.get("Id"), image_tag),
        )

    def to_album(self, item: Dict[str, Any]) -> Album:
        artists = item.get("AlbumArtists") or item.get("ArtistItems") or []
        names = [a.get("Name") if isinstance(a, dict) else a for a in artists]
        year = item.get("ProductionYear")
        return Album(
            id=str(item.get("Id")),
            title=item.get("Name") or UNKNOWN_ALBUM,
            artist=", ".join(n for n in names if n) or UNKNOWN_ARTIST,
            artwork_url=self.artwork_url(item.get("Id"), (item.get("ImageTags") or {}).get("Primary")),
            year=year,
            description=f"Year: {year or '?'}",
        )

    def to_artist(self, item: Dict[str, Any]) -> Artist:
        return Artist(
            id=str(item.get("Id")),
            name=item.get("Name") or UNKNOWN_ARTIST,
            avatar_url=self.artwork_url(item.get("Id"), (item.get("ImageTags") or {}).get("Primary")),
        )

    def to_playlist(self, item: Dict[str, Any]) -> PlaylistSummary:
        count = item.get("ChildCount")
        return PlaylistSummary(
            id=str(item.get("Id")),
            title=item.get("Name") or "unknown playlist",
            artwork_url=self.artwork_url(item.get("Id"), (item.get("ImageTags") or {}).get("Primary"),
                                         max_width=200, max_height=200),
            child_count=count,
            description=f"Tracks: {count if count is not None else '?'}",
        )

    # ---- queries ----

    def _items_path(self) -> str:
        self.session.ensure_login()
        return f"/Users/{self.session.user_id}/Items"

    def _paged_params(self, page: int, count: int, **extra: Any) -> Dict[str, Any]:
        params = {
            "UserId": self.session.user_id,
            "Recursive": True,
            "EnableImageTypes": "Primary",
            "ImageTypeLimit": 1,
            "StartIndex": (page - 1) * count,
            "Limit": count,
            "SortBy": "SortName",
            "SortOrder": "Ascending",
        }
        params.update(extra)
        return params

    @staticmethod
    def _is_end(data: Dict[str, Any], start_index: int, received: int) -> bool:
        return start_index + received >= (data.get("TotalRecordCount") or 0)

    def _query(self, path: str, params: Dict[str, Any], convert) -> SearchPage:
        data = self.session.get(path, params) or {}
        items = data.get("Items") or []
        return SearchPage(
            is_end=self._is_end(data, params.get("StartIndex", 0), len(items)),
            items=[convert(item) for item in items],
        )

    def search_tracks(self, query: str, page: int = 1, count: Optional[int] = None) -> SearchPage[LocalCandidate]:
        count = count or self.page_size
        path = self._items_path()
        params = self._paged_params(page, count, SearchTerm=query, IncludeItemTypes="Audio", Fields=TRACK_FIELDS)
        return self._query(path, params, self.to_candidate)

    def search(self, query_text: str, limit: int) -> SearchPage[LocalCandidate]:
        return self.search_tracks(query_text, page=1, count=limit)

    def search_albums(self, query: str, page: int = 1) -> SearchPage[Album]:
        path = self._items_path()
        params = self._paged_params(page, self.page_size, SearchTerm=query, IncludeItemTypes="MusicAlbum",
                                    Fields="SortName,ProductionYear,BasicSyncInfo,ChildCount")
        return self._query(path, params, self.to_album)

    def search_artists(self, query: str, page: int = 1) -> SearchPage[Artist]:
        self.session.ensure_login()
        params = self._paged_params(page, self.page_size, SearchTerm=query,
                                    Fields="SortName,BasicSyncInfo,PrimaryImageAspectRatio")
        try:
            return self._query("/Artists", params, self.to_artist)
        except TemporaryFailure:
            logger.warning("Artist search on /Artists failed, trying /Artists/AlbumArtists")
            return self._query("/Artists/AlbumArtists", params, self.to_artist)

    def search_playlists(self, query: str, page: int = 1) -> SearchPage[PlaylistSummary]:
        path = self._items_path()
        params = self._paged_params(page, self.page_size, SearchTerm=query, IncludeItemTypes="Playlist",
                                    mediaTypes="Audio", Fields=PLAYLIST_FIELDS)
        return self._query(path, params, self.to_playlist)

    def list_playlists(self, page: int = 1) -> SearchPage[PlaylistSummary]:
        path = self._items_path()
        params = self._paged_params(page, self.page_size, IncludeItemTypes="Playlist",
                                    mediaTypes="Audio", Fields=PLAYLIST_FIELDS)
        return self._query(path, params, self.to_playlist)

    def album_tracks(self, album_id: str) -> List[LocalCandidate]:
        """Return every track of an album in disc/track order."""
        path = self._items_path()
        params = {
            "UserId": self.session.user_id,
            "ParentId": album_id,
            "IncludeItemTypes": "Audio",
            "Recursive": True,
            "Fields": TRACK_FIELDS,
            "EnableImageTypes": "Primary",
            "ImageTypeLimit": 1,
            "SortBy": "ParentIndexNumber,IndexNumber,SortName",
            "SortOrder": "Ascending",
        }
        data = self.session.get(path, params) or {}
        return [self.to_candidate(item) for item in data.get("Items") or []]

    def playlist_tracks(self, playlist_id: str, page: int = 1) -> SearchPage[LocalCandidate]:
        path = self._items_path()
        params = self._paged_params(page, self.page_size, ParentId=playlist_id,
                                    IncludeItemTypes="Audio", Fields=TRACK_FIELDS)
        return self._query(path, params, self.to_candidate)

    def all_tracks(self, page: int = 1) -> SearchPage[LocalCandidate]:
        path = self._items_path()
        params = self._paged_params(page, self.page_size, IncludeItemTypes="Audio", Fields=TRACK_FIELDS)
        return self._query(path, params, self.to_candidate)
