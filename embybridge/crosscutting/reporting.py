import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Any, Optional


class TrackStatus(str, Enum):
    """Outcome of matching one external track."""
    
    MATCHED = "matched"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class ReportHeader:
    """Header information for an import report."""
    
    run_id: str
    reference: str
    playlist_id: Optional[str]
    started_at: datetime
    finished_at: Optional[datetime] = None
    stage: str = ""

    def to_json(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "reference": self.reference,
            "playlistId": self.playlist_id,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "stage": self.stage,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ReportHeader":
        return cls(
            run_id=data["runId"],
            reference=data.get("reference", ""),
            playlist_id=data.get("playlistId"),
            started_at=datetime.fromisoformat(data["startedAt"]),
            finished_at=datetime.fromisoformat(data["finishedAt"]) if data.get("finishedAt") else None,
            stage=data.get("stage", ""),
        )


@dataclass
class TrackEntry:
    """Per-track line of an import report."""
    
    external_id: str
    title: str
    artist: str
    status: TrackStatus
    local_id: Optional[str] = None
    tier: Optional[str] = None
    error: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "externalId": self.external_id,
            "title": self.title,
            "artist": self.artist,
            "status": self.status.value,
            "localId": self.local_id,
            "tier": self.tier,
            "error": self.error,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "TrackEntry":
        return cls(
            external_id=data["externalId"],
            title=data.get("title", ""),
            artist=data.get("artist", ""),
            status=TrackStatus(data["status"]),
            local_id=data.get("localId"),
            tier=data.get("tier"),
            error=data.get("error"),
        )


@dataclass
class ImportReport:
    """Complete import report."""
    
    header: ReportHeader
    tracks: List[TrackEntry] = field(default_factory=list)
    failed_batches: List[int] = field(default_factory=list)

    @property
    def totals(self) -> Dict[str, int]:
        totals = {status.value: 0 for status in TrackStatus}
        for entry in self.tracks:
            totals[entry.status.value] += 1
        totals["total"] = len(self.tracks)
        return totals

    @property
    def tiers(self) -> Dict[str, int]:
        tiers: Dict[str, int] = {}
        for entry in self.tracks:
            if entry.tier:
                tiers[entry.tier] = tiers.get(entry.tier, 0) + 1
        return tiers

    def to_json(self) -> Dict[str, Any]:
        return {
            "header": self.header.to_json(),
            "totals": self.totals,
            "tiers": self.tiers,
            "failedBatches": list(self.failed_batches),
            "tracks": [t.to_json() for t in self.tracks],
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ImportReport":
        return cls(
            header=ReportHeader.from_json(data["header"]),
            tracks=[TrackEntry.from_json(t) for t in data.get("tracks", [])],
            failed_batches=list(data.get("failedBatches", [])),
        )


def create_report(run) -> ImportReport:
    """Build a report from a finished ImportRun."""
    header = ReportHeader(
        run_id=run.run_id,
        reference=run.reference,
        playlist_id=run.playlist_id,
        started_at=run.started_at,
        finished_at=run.finished_at,
        stage=run.stage.value,
    )

    entries = []
    for outcome in run.outcomes:
        track = outcome.track
        if outcome.match is not None:
            status = TrackStatus.MATCHED
        elif outcome.ok:
            status = TrackStatus.NOT_FOUND
        else:
            status = TrackStatus.ERROR
        entries.append(TrackEntry(
            external_id=track.external_id,
            title=track.title,
            artist=track.artist,
            status=status,
            local_id=outcome.match.local_id if outcome.match else None,
            tier=outcome.match.tier if outcome.match else None,
            error=outcome.error,
        ))

    return ImportReport(header=header, tracks=entries, failed_batches=list(run.failed_batches))


def save_report(report: ImportReport, directory: str) -> str:
    """Write the report as JSON and return its path."""
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, f"import_report_{report.header.run_id}.json")
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(report.to_json(), f, indent=2, ensure_ascii=False)
    return path
