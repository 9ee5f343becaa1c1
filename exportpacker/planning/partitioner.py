"""Batch partitioning for exportpacker."""

from __future__ import annotations

from typing import List, Mapping, Union

from exportpacker.errors import ConfigurationError
from exportpacker.models.artifacts import ArtifactMap, Batch


def partition(artifact_map: Union[ArtifactMap, Mapping[str, str]], batch_size: int) -> List[Batch]:
    """Split an artifact map into consecutive, size-bounded batches.

    Names are sorted ascending and cut into windows of ``batch_size``; the
    last window may be shorter. Batch indices start at 1. The same map and
    size always give the same batches.

    Raises:
        ConfigurationError: If ``batch_size`` is not an integer >= 1.
    """
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
        raise ConfigurationError(
            f"batch_size must be an integer >= 1, got {batch_size!r}",
            details={"batch_size": repr(batch_size)},
        )

    if isinstance(artifact_map, ArtifactMap):
        items = artifact_map.sorted_items()
    else:
        items = sorted(artifact_map.items())

    return [
        Batch(index=number, entries=tuple(items[start:start + batch_size]))
        for number, start in enumerate(range(0, len(items), batch_size), start=1)
    ]
