"""exportpacker I/O package: archive writing, manifests and JSON persistence."""

from exportpacker.io.archive_writer import ArchiveWriter
from exportpacker.io.manifest import build_run_manifest, manifest_file_name, write_run_manifest
from exportpacker.io.persistence import (
    atomic_write_bytes,
    ensure_output_dir,
    file_checksum,
    fsync_directory,
    load_json,
    save_json,
)

__all__ = [
    "ArchiveWriter",
    "build_run_manifest",
    "manifest_file_name",
    "write_run_manifest",
    "atomic_write_bytes",
    "ensure_output_dir",
    "file_checksum",
    "fsync_directory",
    "load_json",
    "save_json",
]
