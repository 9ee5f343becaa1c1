"""Archive and pipeline result models for exportpacker."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from exportpacker.errors import BatchFailure
from exportpacker.models.records import RecordState


@dataclass
class SkippedArtifact:
    """An artifact left out of its archive, with the reason code and detail."""

    name: str
    reason: str     # SkipReason constant
    detail: str = ""

    def describe(self) -> str:
        if self.detail:
            return f"{self.name}: {self.reason} ({self.detail})"
        return f"{self.name}: {self.reason}"


@dataclass
class ArchiveResult:
    """Outcome of building one batch's archive."""

    batch_index: int
    archive_path: Optional[str] = None
    entries: List[str] = field(default_factory=list)
    skipped: List[SkippedArtifact] = field(default_factory=list)
    success: bool = False
    failure_reason: Optional[str] = None    # BatchFailure constant
    error: Optional[str] = None
    size_bytes: int = 0
    checksum: str = ""   # SHA-256 hex digest
    elapsed_seconds: float = 0.0

    def skipped_by_name(self) -> Dict[str, SkippedArtifact]:
        return {s.name: s for s in self.skipped}

    def describe_failure(self) -> str:
        """One-line batch failure summary used in record error messages."""
        if self.success:
            return ""
        reason = self.failure_reason or "UNKNOWN"
        if self.error:
            return f"batch {self.batch_index} {reason}: {self.error}"
        return f"batch {self.batch_index} {reason}"


@dataclass
class RecordOutcome:
    """Terminal state derived for one input record."""

    record_id: str
    state: str          # RecordState.PROCESSED or RecordState.ERRORED
    message: Optional[str] = None
    archives: List[str] = field(default_factory=list)   # archive paths holding its artifacts

    @property
    def processed(self) -> bool:
        return self.state == RecordState.PROCESSED


@dataclass
class StoreUpdateFailure:
    """A state transition the record store refused or could not apply."""

    record_id: str
    requested_state: str
    error: str


@dataclass
class PipelineResult:
    """Aggregate outcome of one export run."""

    run_id: str
    output_dir: str
    success: bool = True
    archives: List[ArchiveResult] = field(default_factory=list)    # ordered by batch index
    record_outcomes: Dict[str, RecordOutcome] = field(default_factory=dict)
    store_update_failures: List[StoreUpdateFailure] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    cancelled: bool = False
    manifest_path: Optional[str] = None
    elapsed_seconds: float = 0.0
    phase_timings: Dict[str, float] = field(default_factory=dict)

    @property
    def total_batches(self) -> int:
        return len(self.archives)

    @property
    def succeeded(self) -> int:
        return sum(1 for a in self.archives if a.success)

    @property
    def failed(self) -> int:
        return sum(
            1 for a in self.archives
            if not a.success and a.failure_reason != BatchFailure.NOT_DISPATCHED
        )

    @property
    def not_dispatched(self) -> int:
        return sum(1 for a in self.archives if a.failure_reason == BatchFailure.NOT_DISPATCHED)

    @property
    def archive_paths(self) -> List[str]:
        return [a.archive_path for a in self.archives if a.success and a.archive_path]

    def outcome_for(self, record_id: str) -> Optional[RecordOutcome]:
        return self.record_outcomes.get(str(record_id))

    def summary(self) -> Dict[str, int]:
        """Batch and record counters for logging and the run manifest."""
        processed = sum(1 for o in self.record_outcomes.values() if o.processed)
        return {
            "total_batches": self.total_batches,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "not_dispatched": self.not_dispatched,
            "records_processed": processed,
            "records_errored": len(self.record_outcomes) - processed,
            "store_update_failures": len(self.store_update_failures),
        }
