"""exportpacker planning package: artifact resolution and batch partitioning.

Pure planning: nothing here reads artifact files or writes output.
"""

from exportpacker.planning.partitioner import partition
from exportpacker.planning.resolver import extract_paths, resolve_artifacts

__all__ = [
    "extract_paths",
    "partition",
    "resolve_artifacts",
]
