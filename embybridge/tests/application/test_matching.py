from embybridge.application.matching import (
    TrackMatcher, merge, score, TIER_PERFECT, TIER_TITLE_ARTIST, TIER_TITLE_DURATION,
)
from embybridge.domain.entities import ExternalTrack, LocalCandidate


def external(title="A", artist="B", duration=200, artwork="https://p1.music.126.net/cover.jpg"):
    return ExternalTrack(external_id="ncm-1", title=title, artist=artist,
                         album="NCM Album", artwork_url=artwork, duration_seconds=duration)


def candidate(local_id, title="A", artist="B", duration=200, album="Emby Album"):
    return LocalCandidate(local_id=local_id, title=title, artist=artist, album=album,
                          duration_seconds=duration, artwork_url=f"http://emby/Items/{local_id}/Images/Primary")


class TestTrackMatcher:
    """Tests for the tiered match scorer."""

    def setup_method(self):
        """Set up test fixtures."""
        self.matcher = TrackMatcher()

    def test_perfect_match_within_duration_tolerance(self):
        winner = self.matcher.find_best_match(external(), [candidate("e1", duration=201)])
        assert winner.local_id == "e1"

    def test_title_artist_match_beats_non_matching_candidate(self):
        candidates = [
            candidate("e1", artist="X", duration=500),
            candidate("e2", artist="B", duration=500),
        ]
        winner = self.matcher.find_best_match(external(), candidates)
        assert winner.local_id == "e2"

    def test_no_candidates_returns_none(self):
        assert self.matcher.find_best_match(external(), []) is None
        assert self.matcher.find_best_match(external(), None) is None

    def test_comparison_is_case_insensitive(self):
        winner = self.matcher.find_best_match(external(title="Hello World", artist="Adele"),
                                              [candidate("e1", title="HELLO world", artist="adele")])
        assert winner.local_id == "e1"

    def test_duration_outside_tolerance_is_not_a_duration_match(self):
        candidates = [candidate("e1", artist="Other", duration=206)]
        assert self.matcher.find_best_match(external(), candidates) is None

    def test_duration_boundary_is_inclusive(self):
        candidates = [candidate("e1", artist="Other", duration=205)]
        winner, tier = self.matcher.select(external(), candidates)
        assert winner.local_id == "e1"
        assert tier == TIER_TITLE_DURATION

    def test_missing_duration_never_matches_duration(self):
        candidates = [candidate("e1", artist="Other", duration=None)]
        assert self.matcher.find_best_match(external(), candidates) is None
        assert self.matcher.find_best_match(external(duration=None), [candidate("e2", artist="Other")]) is None

    def test_title_only_match_is_discarded(self):
        candidates = [candidate("e1", artist="Other", duration=900)]
        assert self.matcher.find_best_match(external(), candidates) is None

    def test_artist_and_duration_without_title_is_discarded(self):
        candidates = [candidate("e1", title="Different")]
        assert self.matcher.find_best_match(external(), candidates) is None

    def test_perfect_match_later_in_list_overrides_title_artist(self):
        candidates = [
            candidate("e1", duration=400),   # title + artist
            candidate("e2", duration=199),   # perfect
        ]
        winner, tier = self.matcher.select(external(), candidates)
        assert winner.local_id == "e2"
        assert tier == TIER_PERFECT

    def test_perfect_match_stops_scanning(self):
        candidates = [candidate("e1"), candidate("e2")]
        assert self.matcher.find_best_match(external(), candidates).local_id == "e1"

    def test_title_artist_overrides_earlier_title_duration(self):
        candidates = [
            candidate("e1", artist="Other", duration=200),  # title + duration
            candidate("e2", duration=999),                  # title + artist
        ]
        winner, tier = self.matcher.select(external(), candidates)
        assert winner.local_id == "e2"
        assert tier == TIER_TITLE_ARTIST

    def test_title_duration_never_downgrades_title_artist(self):
        candidates = [
            candidate("e1", duration=999),                  # title + artist
            candidate("e2", artist="Other", duration=200),  # title + duration
        ]
        winner, tier = self.matcher.select(external(), candidates)
        assert winner.local_id == "e1"
        assert tier == TIER_TITLE_ARTIST

    def test_first_candidate_wins_within_same_tier(self):
        candidates = [
            candidate("e1", duration=999),
            candidate("e2", duration=998),
        ]
        assert self.matcher.find_best_match(external(), candidates).local_id == "e1"

        candidates = [
            candidate("e3", artist="X", duration=201),
            candidate("e4", artist="Y", duration=200),
        ]
        assert self.matcher.find_best_match(external(), candidates).local_id == "e3"

    def test_custom_duration_tolerance(self):
        matcher = TrackMatcher(duration_tolerance_seconds=1)
        assert matcher.find_best_match(external(), [candidate("e1", artist="X", duration=202)]) is None
        assert matcher.find_best_match(external(), [candidate("e1", artist="X", duration=201)]).local_id == "e1"

    def test_match_merges_local_identity_with_external_artwork(self):
        result = self.matcher.match(external(), [candidate("e9", duration=203)])

        assert result.local_id == "e9"
        assert result.title == "A"
        assert result.album == "Emby Album"
        assert result.duration_seconds == 203
        assert result.artwork_url == "https://p1.music.126.net/cover.jpg"
        assert result.external_id == "ncm-1"
        assert result.tier == TIER_PERFECT
        assert result.source == "emby_ncm_artwork"

    def test_match_returns_none_without_winner(self):
        assert self.matcher.match(external(), [candidate("e1", title="Z")]) is None

    def test_merge_keeps_external_artwork_even_when_missing(self):
        result = merge(external(artwork=None), candidate("e1"))
        assert result.artwork_url is None
        assert result.local_id == "e1"

    def test_module_level_score(self):
        assert score(external(), [candidate("e1", duration=201)]).local_id == "e1"
        assert score(external(), []) is None

    def test_tier_of_each_rule(self):
        assert self.matcher.tier_of(external(), candidate("e1", duration=203)) == TIER_PERFECT
        assert self.matcher.tier_of(external(), candidate("e1", duration=300)) == TIER_TITLE_ARTIST
        assert self.matcher.tier_of(external(), candidate("e1", artist="X", duration=196)) == TIER_TITLE_DURATION
        assert self.matcher.tier_of(external(), candidate("e1", artist="X", duration=300)) is None
        assert self.matcher.tier_of(external(), candidate("e1", title="Other")) is None

    def test_tier_of_agrees_with_match(self):
        candidates = [candidate("e1", artist="X"), candidate("e2", duration=None), candidate("e3")]
        for c in candidates:
            result = self.matcher.match(external(), [c])
            assert result.tier == self.matcher.tier_of(external(), c)
