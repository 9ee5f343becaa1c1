"""Run-state models for the export coordinator.

ExportContext is owned by the coordinator thread. Workers receive a Batch and
hand back an ArchiveResult; they never see the context.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from exportpacker.models.artifacts import ArtifactMap, Batch
from exportpacker.models.records import ExportRecord
from exportpacker.models.results import ArchiveResult


@dataclass
class PhaseRecord:
    """One coordinator phase with a monotonic duration."""

    phase_name: str
    started: float = field(default_factory=lambda: time.monotonic())
    finished: Optional[float] = None
    status: str = "RUNNING"

    @property
    def elapsed_seconds(self) -> float:
        if self.finished is None:
            return 0.0
        return round(self.finished - self.started, 3)


@dataclass
class ExportContext:
    """Everything one export run accumulates, phase by phase."""

    run_id: str
    output_dir: Path
    records: List[ExportRecord] = field(default_factory=list)

    # resolve / partition / dispatch outputs
    artifact_map: Optional[ArtifactMap] = None
    batches: List[Batch] = field(default_factory=list)
    archive_results: List[ArchiveResult] = field(default_factory=list)

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    cancelled: bool = False
    phase_log: List[PhaseRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def log_phase_start(self, phase_name: str) -> PhaseRecord:
        record = PhaseRecord(phase_name=phase_name)
        self.phase_log.append(record)
        return record

    def log_phase_end(self, record: PhaseRecord, status: str = "OK") -> None:
        record.finished = time.monotonic()
        record.status = status

    def add_warning(self, warning: str) -> None:
        if warning not in self.warnings:
            self.warnings.append(warning)

    def phase_timings(self) -> Dict[str, float]:
        """Seconds spent per phase, in execution order."""
        return {p.phase_name: p.elapsed_seconds for p in self.phase_log}

    @property
    def elapsed_seconds(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()
