from typing import Optional, Sequence, Tuple
import logging

from embybridge.domain.entities import ExternalTrack, LocalCandidate, MatchResult


logger = logging.getLogger(__name__)

TIER_PERFECT = "perfect"
TIER_TITLE_ARTIST = "title_artist"
TIER_TITLE_DURATION = "title_duration"

_TIER_SCORES = {
    TIER_TITLE_ARTIST: 15,
    TIER_TITLE_DURATION: 10,
}


def _same_text(a: Optional[str], b: Optional[str]) -> bool:
    return (a or "").lower() == (b or "").lower()


class TrackMatcher:
    """Selects the local catalog track that corresponds to an external track.

    Each candidate is checked for three signals: case-insensitive title
    equality, case-insensitive artist equality and durations within the
    tolerance. Candidates are scanned in the order the catalog returned them:
    
    1. Title + artist + duration: immediate winner, scanning stops
    2. Title + artist: adopted with score 15 unless a score-15 match exists
    3. Title + duration: adopted with score 10 unless a score-10 match exists
    
    Within a tier the first candidate encountered wins.
    """

    def __init__(self, duration_tolerance_seconds: int = 5):
        """Initialize the matcher.

        Args:
            duration_tolerance_seconds: Maximum absolute duration difference for a duration match
        """
        self.duration_tolerance_seconds = duration_tolerance_seconds

    def duration_matches(self, external: ExternalTrack, candidate: LocalCandidate) -> bool:
        if not isinstance(external.duration_seconds, int) or not isinstance(candidate.duration_seconds, int):
            return False
        return abs(candidate.duration_seconds - external.duration_seconds) <= self.duration_tolerance_seconds

    def tier_of(self, external: ExternalTrack, candidate: LocalCandidate) -> Optional[str]:
        """Tier a single candidate qualifies for, or None when it matches no rule."""
        if not _same_text(candidate.title, external.title):
            return None
        artist_match = _same_text(candidate.artist, external.artist)
        duration_match = self.duration_matches(external, candidate)
        if artist_match and duration_match:
            return TIER_PERFECT
        if artist_match:
            return TIER_TITLE_ARTIST
        if duration_match:
            return TIER_TITLE_DURATION
        return None

    def select(self, external: ExternalTrack,
               candidates: Sequence[LocalCandidate]) -> Tuple[Optional[LocalCandidate], Optional[str]]:
        """Return the winning candidate and its tier, or (None, None)."""
        best: Optional[LocalCandidate] = None
        best_tier: Optional[str] = None
        best_score = -1

        for candidate in candidates or []:
            tier = self.tier_of(external, candidate)
            if tier == TIER_PERFECT:
                logger.debug(f"Perfect match for '{external.title}': {candidate.local_id}")
                return candidate, TIER_PERFECT
            if tier is not None and best_score < _TIER_SCORES[tier]:
                best, best_tier = candidate, tier
                best_score = _TIER_SCORES[tier]

        return best, best_tier

    def find_best_match(self, external: ExternalTrack,
                        candidates: Sequence[LocalCandidate]) -> Optional[LocalCandidate]:
        """Return the winning candidate or None when nothing qualifies."""
        candidate, _ = self.select(external, candidates)
        return candidate

    def match(self, external: ExternalTrack, candidates: Sequence[LocalCandidate]) -> Optional[MatchResult]:
        """Score the candidates and merge the winner with the external track."""
        candidate, tier = self.select(external, candidates)
        if candidate is None:
            logger.debug(f"No confident match for '{external.title}' by {external.artist}")
            return None
        return merge(external, candidate, tier)


def merge(external: ExternalTrack, candidate: LocalCandidate, tier: Optional[str] = None) -> MatchResult:
    """Build the playable record: local identity and tags, external artwork."""
    return MatchResult(
        local_id=candidate.local_id,
        title=candidate.title,
        artist=candidate.artist,
        album=candidate.album,
        artwork_url=external.artwork_url,
        duration_seconds=candidate.duration_seconds,
        external_id=external.external_id,
        tier=tier,
    )


def score(external: ExternalTrack, candidates: Sequence[LocalCandidate],
          duration_tolerance_seconds: int = 5) -> Optional[LocalCandidate]:
    """Module-level shortcut for TrackMatcher.find_best_match."""
    return TrackMatcher(duration_tolerance_seconds).find_best_match(external, candidates)
