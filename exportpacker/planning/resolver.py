"""Artifact resolution for exportpacker.

Turns a list of records into one deduplicated ArtifactMap (base name ->
source directory). Only the record store is consulted; the filesystem is
never touched here, so missing files surface later, in the archive writer.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from config.defaults import ARTIFACT_PATH_FIELDS
from exportpacker.clients.record_store import ArtifactRef, RecordStore
from exportpacker.errors import ExternalStoreError
from exportpacker.models.artifacts import ArtifactConflict, ArtifactMap, RecordResolution
from exportpacker.models.records import ExportRecord
from exportpacker.utils.paths import is_bare_name, split_artifact_path

logger = logging.getLogger(__name__)


def extract_paths(ref: ArtifactRef, path_fields: Sequence[str]) -> List[str]:
    """Pull the path strings out of one artifact sub-entry.

    A plain string is itself the path. For a mapping, every configured path
    field holding a non-empty string contributes one path.

    Returns:
        Path strings in field order; empty if the sub-entry carries none.
    """
    if isinstance(ref, str):
        return [ref]
    if isinstance(ref, Mapping):
        return [
            ref[f] for f in path_fields
            if isinstance(ref.get(f), str) and ref[f].strip()
        ]
    return []


def _locate(path: str, default_source_dir: Optional[str]) -> Optional[Tuple[str, str]]:
    split = split_artifact_path(path)
    if split is not None:
        return split
    if default_source_dir and is_bare_name(path):
        return path.strip(), default_source_dir
    return None


def resolve_artifacts(
    records: Iterable[ExportRecord],
    store: RecordStore,
    path_fields: Sequence[str] = ARTIFACT_PATH_FIELDS,
    default_source_dir: Optional[str] = None,
) -> ArtifactMap:
    """Build the deduplicated artifact map for a set of records.

    Records are visited in input order. The first record to mention an
    artifact name decides its source directory; a later mention from a
    different directory is dropped and noted as a conflict.

    A record whose sub-entries cannot be fetched is noted and skipped.
    Malformed paths (empty, no directory, trailing separator) are noted on
    the record and skipped. Resolution always continues with the next record.

    Args:
        records: Records to resolve.
        store: Record store used to fetch each record's artifact sub-entries.
        path_fields: Fields read from mapping-style sub-entries.
        default_source_dir: Directory assumed for bare file names. When None,
            a bare name is malformed.

    Returns:
        Read-only ArtifactMap with per-record resolutions and conflict notes.
    """
    sources: "OrderedDict[str, str]" = OrderedDict()
    resolutions: Dict[str, RecordResolution] = {}
    conflicts: List[ArtifactConflict] = []

    for record in records:
        record_id = record.record_id
        if record_id in resolutions:
            logger.warning("Resolver: record %s listed more than once; ignoring repeat", record_id)
            continue

        try:
            refs = store.fetch_artifact_refs(record_id)
        except ExternalStoreError as exc:
            logger.error("Resolver: artifact fetch failed for record %s: %s", record_id, exc)
            resolutions[record_id] = RecordResolution(record_id=record_id, fetch_error=str(exc))
            continue

        names: List[str] = []
        malformed: List[str] = []
        for ref in refs:
            paths = extract_paths(ref, path_fields)
            if not paths:
                malformed.append(repr(ref) if not isinstance(ref, str) else ref)
                logger.warning("Resolver: record %s has an entry with no usable path: %r",
                               record_id, ref)
                continue

            for path in paths:
                located = _locate(path, default_source_dir)
                if located is None:
                    malformed.append(path)
                    logger.warning("Resolver: record %s has malformed path %r", record_id, path)
                    continue

                name, source_dir = located
                if name not in names:
                    names.append(name)

                if name not in sources:
                    sources[name] = source_dir
                elif sources[name] != source_dir:
                    conflict = ArtifactConflict(
                        name=name,
                        kept_source_dir=sources[name],
                        dropped_source_dir=source_dir,
                        record_id=record_id,
                    )
                    conflicts.append(conflict)
                    logger.warning("Resolver: duplicate artifact %s", conflict.describe())

        resolutions[record_id] = RecordResolution(
            record_id=record_id,
            artifact_names=tuple(names),
            malformed_paths=tuple(malformed),
        )

    logger.info(
        "Resolver: %d records -> %d unique artifacts (%d conflicts, %d unresolved records)",
        len(resolutions),
        len(sources),
        len(conflicts),
        sum(1 for r in resolutions.values() if not r.resolved),
    )
    return ArtifactMap(sources=sources, records=resolutions, conflicts=tuple(conflicts))
