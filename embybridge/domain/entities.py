from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, List, Optional, TypeVar


UNKNOWN_TITLE = "unknown title"
UNKNOWN_ARTIST = "unknown artist"
UNKNOWN_ALBUM = "unknown album"

T = TypeVar("T")


@dataclass(frozen=True)
class ExternalTrack:
    """Track metadata retrieved from the upstream (NCM) playlist."""

    external_id: str
    title: str
    artist: str = UNKNOWN_ARTIST
    album: Optional[str] = None
    artwork_url: Optional[str] = None
    duration_seconds: Optional[int] = None


@dataclass(frozen=True)
class LocalCandidate:
    """Track returned by the local catalog search."""

    local_id: str
    title: str
    artist: str = UNKNOWN_ARTIST
    album: Optional[str] = None
    duration_seconds: Optional[int] = None
    artwork_url: Optional[str] = None


@dataclass(frozen=True)
class MatchResult:
    """Merged record: playable identity from the local catalog, artwork from the external track."""

    local_id: str
    title: str
    artist: str
    album: Optional[str]
    artwork_url: Optional[str]
    duration_seconds: Optional[int]
    external_id: Optional[str] = None
    tier: Optional[str] = None
    source: str = "emby_ncm_artwork"

    def to_json(self) -> dict:
        return {
            "id": self.local_id,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "artwork": self.artwork_url,
            "duration": self.duration_seconds,
            "_source": self.source,
        }


@dataclass(frozen=True)
class Album:
    id: str
    title: str
    artist: str
    artwork_url: Optional[str] = None
    year: Optional[int] = None
    description: str = ""


@dataclass(frozen=True)
class Artist:
    id: str
    name: str
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class PlaylistSummary:
    """Playlist as listed by the local media server."""

    id: str
    title: str
    artwork_url: Optional[str] = None
    child_count: Optional[int] = None
    description: str = ""


@dataclass
class SearchPage(Generic[T]):
    """One page of a paginated catalog query."""

    is_end: bool
    items: List[T] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "SearchPage[T]":
        return cls(is_end=True, items=[])
