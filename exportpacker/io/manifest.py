"""Run manifest for exportpacker.

The manifest is a JSON index written next to the archives once a run
finishes: one entry per batch with its archive, entries, size and checksum,
plus the per-record outcomes reported to the store.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from exportpacker.io.persistence import save_json
from exportpacker.models.results import PipelineResult

logger = logging.getLogger(__name__)

MANIFEST_SCHEMA_VERSION = 1


def manifest_file_name(prefix: str) -> str:
    return f"{prefix}_manifest.json"


def build_run_manifest(result: PipelineResult) -> Dict[str, Any]:
    """Build the manifest dict for a finished run.

    Args:
        result: Aggregated pipeline result.

    Returns:
        JSON-serializable manifest.
    """
    archives = []
    total_bytes = 0
    for archive in result.archives:
        total_bytes += archive.size_bytes
        archives.append(
            {
                "batch_index": archive.batch_index,
                "filename": Path(archive.archive_path).name if archive.archive_path else None,
                "path": archive.archive_path,
                "success": archive.success,
                "failure_reason": archive.failure_reason,
                "error": archive.error,
                "entries": list(archive.entries),
                "skipped": [
                    {"name": s.name, "reason": s.reason, "detail": s.detail}
                    for s in archive.skipped
                ],
                "size_bytes": archive.size_bytes,
                "checksum": archive.checksum,
                "elapsed_seconds": archive.elapsed_seconds,
            }
        )

    records = {
        record_id: {"state": outcome.state, "message": outcome.message}
        for record_id, outcome in sorted(result.record_outcomes.items())
    }

    return {
        "schema_version": MANIFEST_SCHEMA_VERSION,
        "run_id": result.run_id,
        "output_dir": result.output_dir,
        "success": result.success,
        "cancelled": result.cancelled,
        "summary": result.summary(),
        "archives": archives,
        "records": records,
        "store_update_failures": [
            {"record_id": f.record_id, "requested_state": f.requested_state, "error": f.error}
            for f in result.store_update_failures
        ],
        "warnings": list(result.warnings),
        "phase_timings": dict(result.phase_timings),
        "total_size_bytes": total_bytes,
        "generation_timestamp": datetime.now(timezone.utc).isoformat(),
    }


def write_run_manifest(result: PipelineResult, path: str | Path) -> Path:
    """Atomically write the run manifest to ``path``.

    Raises:
        OSError: If the file cannot be written.
    """
    path = Path(path)
    save_json(build_run_manifest(result), path)
    logger.info("Run manifest written: %s (%d archives)", path, len(result.archives))
    return path
