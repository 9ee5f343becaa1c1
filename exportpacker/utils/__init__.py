"""exportpacker utilities package.

Stateless helpers with no external calls.
"""

from exportpacker.utils.logging_utils import configure_logging, get_logger, get_run_logger
from exportpacker.utils.paths import (
    archive_file_name,
    is_bare_name,
    sanitize_prefix,
    split_artifact_path,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "get_run_logger",
    "archive_file_name",
    "is_bare_name",
    "sanitize_prefix",
    "split_artifact_path",
]
