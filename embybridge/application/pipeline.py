import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from embybridge.application.matching import TrackMatcher
from embybridge.crosscutting.logging import CorrelationContext, log_error, log_import_complete, log_import_start
from embybridge.domain.entities import ExternalTrack, MatchResult
from embybridge.domain.ports import CatalogSearch, PlaylistSource
from embybridge.domain.references import resolve_playlist_reference


logger = logging.getLogger(__name__)


class RunStage(str, Enum):
    """Lifecycle of one import run."""

    RESOLVING = "resolving"
    FETCHING_IDS = "fetching_ids"
    FETCHING_METADATA = "fetching_metadata"
    MATCHING = "matching"
    DONE = "done"
    FAILED = "failed"


@dataclass
class MatchOutcome:
    """Result of one search-and-score unit of work."""

    track: ExternalTrack
    match: Optional[MatchResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ImportRun:
    """Ephemeral aggregate of one import call. Never persisted."""

    reference: str
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    playlist_id: Optional[str] = None
    stage: RunStage = RunStage.RESOLVING
    external_tracks: List[ExternalTrack] = field(default_factory=list)
    outcomes: List[MatchOutcome] = field(default_factory=list)
    matches: List[MatchResult] = field(default_factory=list)
    failed_batches: List[int] = field(default_factory=list)
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def failed_outcomes(self) -> List[MatchOutcome]:
        return [o for o in self.outcomes if not o.ok]


class ProgressTracker:
    """Tracks matching progress and logs periodic updates."""
    
    def __init__(self, total_tracks: int, log_every: int = 10):
        """Initialize progress tracker.
        
        Args:
            total_tracks: Total number of tracks to match
            log_every: Log a progress line every this many completed tracks
        """
        self.total_tracks = total_tracks
        self.log_every = log_every
        self.completed = 0
        self.matched = 0
        self.not_found = 0
        self.errors = 0
        self.start_time = time.time()
    
    def update(self, outcome: MatchOutcome) -> None:
        self.completed += 1
        if outcome.match is not None:
            self.matched += 1
        elif outcome.ok:
            self.not_found += 1
        else:
            self.errors += 1

        if self.completed % self.log_every == 0 or self.completed == self.total_tracks:
            logger.info(f"Match progress: {self.completed}/{self.total_tracks} "
                        f"(matched: {self.matched}, not found: {self.not_found}, errors: {self.errors})")
    
    def get_final_summary(self) -> Dict[str, Any]:
        total_time = time.time() - self.start_time
        return {
            "total_tracks": self.total_tracks,
            "completed_tracks": self.completed,
            "matched_tracks": self.matched,
            "not_found_tracks": self.not_found,
            "error_tracks": self.errors,
            "match_rate_percent": (self.matched / self.total_tracks) * 100 if self.total_tracks else 0,
            "total_time_seconds": total_time,
        }


class ImportPipeline:
    """Imports an external playlist by matching each track against the local catalog.

    Stages: resolve the reference, list the upstream track IDs, fetch their
    metadata in batches, then search and score every track. Only the first
    three stages can fail the run; matching failures degrade to "no match"
    for the affected track.
    """

    def __init__(self,
                 source: PlaylistSource,
                 catalog: CatalogSearch,
                 matcher: Optional[TrackMatcher] = None,
                 concurrency: int = 5,
                 match_limit: int = 5):
        """Initialize the pipeline.

        Args:
            source: Upstream playlist client
            catalog: Local catalog search gateway
            matcher: Match scorer
            concurrency: Number of search units admitted per batch
            match_limit: Number of catalog candidates requested per track
        """
        if concurrency <= 0:
            raise ValueError("Concurrency must be positive")
        self.source = source
        self.catalog = catalog
        self.matcher = matcher or TrackMatcher()
        self.concurrency = concurrency
        self.match_limit = match_limit

    def _match_one(self, track: ExternalTrack) -> MatchOutcome:
        """Search the catalog for one track and score the candidates (runs in a worker thread)."""
        query = f"{track.title} {track.artist}"
        logger.debug(f"Searching catalog for '{query}' (external id {track.external_id})")
        try:
            page = self.catalog.search(query, self.match_limit)
            candidates = page.items if page else []
            if not candidates:
                logger.debug(f"No catalog results for '{query}'")
                return MatchOutcome(track=track)
            return MatchOutcome(track=track, match=self.matcher.match(track, candidates))
        except Exception as e:
            logger.warning(f"Matching failed for '{track.title}': {e}")
            return MatchOutcome(track=track, error=str(e))

    async def _match_batch(self, batch: List[ExternalTrack]) -> List[MatchOutcome]:
        return await asyncio.gather(*(asyncio.to_thread(self._match_one, track) for track in batch))

    async def match_tracks(self, tracks: List[ExternalTrack]) -> List[MatchOutcome]:
        """Match tracks in strict batches of `concurrency`, waiting for each batch to settle."""
        progress = ProgressTracker(len(tracks))
        outcomes: List[MatchOutcome] = []

        for i in range(0, len(tracks), self.concurrency):
            batch_outcomes = await self._match_batch(tracks[i:i + self.concurrency])
            for outcome in batch_outcomes:
                outcomes.append(outcome)
                progress.update(outcome)

        logger.info(f"Final matching summary: {progress.get_final_summary()}")
        return outcomes

    def _set_stage(self, run: ImportRun, stage: RunStage) -> None:
        run.stage = stage
        logger.debug(f"Import {run.run_id} entered stage {stage.value}")

    async def run_async(self, reference: str) -> ImportRun:
        """Execute one import and return the full run aggregate.

        Raises:
            UnrecognizedReferenceError: if the reference cannot be parsed
            UpstreamUnavailableError: if the upstream track list cannot be fetched
        """
        run = ImportRun(reference=reference)
        log_import_start(logger, run.run_id, reference)

        with CorrelationContext(run_id=run.run_id):
            try:
                with CorrelationContext(stage=RunStage.RESOLVING.value):
                    run.playlist_id = resolve_playlist_reference(reference)

                with CorrelationContext(playlist_id=run.playlist_id, stage=RunStage.FETCHING_IDS.value):
                    self._set_stage(run, RunStage.FETCHING_IDS)
                    track_ids = self.source.list_track_ids(run.playlist_id)
                    logger.info(f"Playlist {run.playlist_id} has {len(track_ids)} tracks")

                if track_ids:
                    with CorrelationContext(playlist_id=run.playlist_id, stage=RunStage.FETCHING_METADATA.value):
                        self._set_stage(run, RunStage.FETCHING_METADATA)
                        run.external_tracks = self.source.fetch_track_metadata(track_ids)
                        run.failed_batches = list(getattr(self.source, "last_failed_batches", []) or [])
            except Exception as e:
                log_error(logger, f"Import failed during {run.stage.value}", e, run_id=run.run_id)
                run.stage = RunStage.FAILED
                run.error = str(e)
                run.finished_at = datetime.now()
                raise

            if run.external_tracks:
                with CorrelationContext(playlist_id=run.playlist_id, stage=RunStage.MATCHING.value):
                    self._set_stage(run, RunStage.MATCHING)
                    run.outcomes = await self.match_tracks(run.external_tracks)
                    run.matches = [o.match for o in run.outcomes if o.match is not None]

        self._set_stage(run, RunStage.DONE)
        run.finished_at = datetime.now()
        log_import_complete(logger, run.run_id, run.playlist_id, len(run.external_tracks), len(run.matches),
                            failed_batches=len(run.failed_batches), failed_tracks=len(run.failed_outcomes))
        return run

    def run(self, reference: str) -> ImportRun:
        return asyncio.run(self.run_async(reference))

    def import_playlist(self, reference: str) -> List[MatchResult]:
        """Import a playlist and return the matched, playable tracks."""
        return self.run(reference).matches
