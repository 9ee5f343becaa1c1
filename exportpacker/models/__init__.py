"""exportpacker data models package.

All pipeline inputs and outputs are defined here as typed dataclasses.
Never pass raw dicts between pipeline stages; always use the typed models.
"""

from exportpacker.models.artifacts import ArtifactConflict, ArtifactMap, Batch, RecordResolution
from exportpacker.models.pipeline import ExportContext, PhaseRecord
from exportpacker.models.records import ExportRecord, RecordState
from exportpacker.models.results import (
    ArchiveResult,
    PipelineResult,
    RecordOutcome,
    SkippedArtifact,
    StoreUpdateFailure,
)

__all__ = [
    # records
    "ExportRecord",
    "RecordState",
    # artifacts
    "ArtifactConflict",
    "ArtifactMap",
    "Batch",
    "RecordResolution",
    # results
    "ArchiveResult",
    "PipelineResult",
    "RecordOutcome",
    "SkippedArtifact",
    "StoreUpdateFailure",
    # pipeline
    "ExportContext",
    "PhaseRecord",
]
