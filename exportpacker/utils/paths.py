"""Artifact path helpers for exportpacker.

Pure string manipulation. Nothing here touches the filesystem.
"""

from __future__ import annotations

import re
from typing import Optional, Tuple

_SEPARATORS = ("/", "\\")
_SAFE_PREFIX_RE = re.compile(r"[^A-Za-z0-9._-]+")


def split_artifact_path(path: str) -> Optional[Tuple[str, str]]:
    """Split a stored artifact path into (base name, source directory).

    Both forward and back slashes count as separators, since stores written
    on Windows hosts keep backslash paths. The directory keeps whatever
    separator style the store used.

    Args:
        path: Path string as held by the record store.

    Returns:
        ``(name, directory)`` or None when the path is empty, has no
        separator, or ends in a separator.
    """
    if not path or not path.strip():
        return None
    path = path.strip()
    cut = max(path.rfind(sep) for sep in _SEPARATORS)
    if cut < 0:
        return None
    name = path[cut + 1:]
    if not name or name in (".", ".."):
        return None
    directory = path[:cut] or path[0]   # "/A.bin" lives in "/"
    return name, directory


def is_bare_name(path: str) -> bool:
    """True if the path is a plain file name with no directory component."""
    stripped = (path or "").strip()
    if not stripped or stripped in (".", ".."):
        return False
    return not any(sep in stripped for sep in _SEPARATORS)


def archive_file_name(prefix: str, batch_index: int, extension: str) -> str:
    """Final archive file name: ``<prefix>_<batch_index><extension>``."""
    return f"{prefix}_{batch_index}{extension}"


def sanitize_prefix(prefix: str) -> str:
    """Reduce an export name prefix to characters safe in a file name."""
    cleaned = _SAFE_PREFIX_RE.sub("_", prefix.strip()).strip("_")
    return cleaned or "export"
