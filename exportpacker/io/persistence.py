"""File persistence helpers shared by the archive writer, manifest and stores.

Everything that publishes a file goes through the same sequence: write a
sibling temp file, fsync it, ``os.replace`` it onto the final name, then
fsync the directory. Readers therefore see the old file, or the complete new
one, and never a torn write.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_CHUNK_SIZE = 64 * 1024


def _to_json(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def fsync_directory(directory: PathLike) -> None:
    """Flush a directory entry to stable storage after a rename.

    POSIX only; elsewhere directories cannot be opened and the call is a no-op.
    """
    if os.name != "posix":
        return
    fd = os.open(str(directory), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write_bytes(payload: bytes, path: PathLike, temp_suffix: str = ".tmp") -> Path:
    """Publish ``payload`` at ``path`` via temp file, fsync and rename.

    The temp file is removed if any step fails; the target is either left
    untouched or fully replaced.

    Returns:
        The published path.

    Raises:
        OSError: If the temp file cannot be written or renamed.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f".{path.name}.{os.getpid()}{temp_suffix}")

    try:
        with open(temp_path, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except OSError as exc:
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        logger.error("Atomic write of %s failed: %s", path, exc)
        raise

    try:
        fsync_directory(path.parent)
    except OSError as exc:
        logger.debug("Directory fsync skipped for %s: %s", path.parent, exc)
    return path


def save_json(data: Any, path: PathLike, indent: int = 2) -> Path:
    """Serialize ``data`` and publish it atomically at ``path``.

    Dataclasses, Paths and sets are converted; anything else unknown raises
    TypeError before the target is touched.
    """
    serialized = json.dumps(data, indent=indent, ensure_ascii=False, default=_to_json)
    published = atomic_write_bytes(serialized.encode("utf-8"), path)
    logger.debug("Saved JSON to %s (%d bytes)", published, len(serialized))
    return published


def load_json(path: PathLike) -> Optional[Any]:
    """Parse a JSON file; None when it is absent, unreadable or not JSON."""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        logger.debug("JSON file not found: %s", path)
    except (ValueError, OSError) as exc:
        logger.warning("Ignoring unreadable JSON file %s: %s", path, exc)
    return None


def file_checksum(path: PathLike, algorithm: str = "sha256") -> str:
    """Hex digest of a file's bytes, or "" when the file cannot be read."""
    digest = hashlib.new(algorithm)
    try:
        with open(path, "rb") as f:
            while True:
                chunk = f.read(_CHUNK_SIZE)
                if not chunk:
                    break
                digest.update(chunk)
    except FileNotFoundError:
        return ""
    except OSError as exc:
        logger.warning("Checksum of %s failed: %s", path, exc)
        return ""
    return digest.hexdigest()


def ensure_output_dir(output_dir: PathLike) -> Path:
    """Create the export output directory if absent and confirm it is writable.

    Idempotent: an existing directory is left as is.

    Raises:
        OSError: If the directory cannot be created or is not writable.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    if not output_dir.is_dir():
        raise NotADirectoryError(f"Output path is not a directory: {output_dir}")
    if not os.access(output_dir, os.W_OK | os.X_OK):
        raise PermissionError(f"Output directory is not writable: {output_dir}")
    return output_dir
