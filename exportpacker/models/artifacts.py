"""Artifact mapping and batch data models for exportpacker.

ArtifactMap and Batch are frozen: they are built once, before any worker
starts, and only read afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class ArtifactConflict:
    """A duplicate artifact name dropped in favour of the first resolution."""

    name: str
    kept_source_dir: str
    dropped_source_dir: str
    record_id: str

    def describe(self) -> str:
        return (
            f"{self.name}: kept {self.kept_source_dir}, "
            f"dropped {self.dropped_source_dir} (record {self.record_id})"
        )


@dataclass(frozen=True)
class RecordResolution:
    """What the resolver learned about one input record."""

    record_id: str
    artifact_names: Tuple[str, ...] = ()
    malformed_paths: Tuple[str, ...] = ()
    fetch_error: Optional[str] = None

    @property
    def resolved(self) -> bool:
        """True if the record's artifact references could be fetched."""
        return self.fetch_error is None


@dataclass(frozen=True)
class ArtifactMap:
    """Deduplicated mapping of artifact base name to source directory.

    Insertion order is first-seen order, but consumers must not rely on it;
    the partitioner sorts by name.
    """

    sources: Mapping[str, str] = field(default_factory=dict)
    records: Mapping[str, RecordResolution] = field(default_factory=dict)
    conflicts: Tuple[ArtifactConflict, ...] = ()

    def __post_init__(self) -> None:
        # Freeze the caller's dicts behind read-only views
        object.__setattr__(self, "sources", MappingProxyType(dict(self.sources)))
        object.__setattr__(self, "records", MappingProxyType(dict(self.records)))

    def __len__(self) -> int:
        return len(self.sources)

    def __contains__(self, name: object) -> bool:
        return name in self.sources

    def __iter__(self) -> Iterator[str]:
        return iter(self.sources)

    def source_of(self, name: str) -> str:
        return self.sources[name]

    def sorted_items(self) -> List[Tuple[str, str]]:
        """(name, source_dir) pairs in ascending name order."""
        return sorted(self.sources.items())


@dataclass(frozen=True)
class Batch:
    """An ordered slice of the artifact map assigned to exactly one archive."""

    index: int
    entries: Tuple[Tuple[str, str], ...]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(self.entries)

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.entries]

    def as_dict(self) -> Dict[str, str]:
        return dict(self.entries)
