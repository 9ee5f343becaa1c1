"""exportpacker configuration package."""

from config.defaults import (
    ARCHIVE_EXTENSION,
    BATCH_SIZE,
    COMPRESSION_LEVEL,
    EXPORT_NAME_PREFIX,
    MAX_WORKERS,
    OUTPUT_ROOT,
    TEMP_SUFFIX,
)
from config.settings import ExportConfig, load_config

__all__ = [
    "ExportConfig",
    "load_config",
    "ARCHIVE_EXTENSION",
    "BATCH_SIZE",
    "COMPRESSION_LEVEL",
    "EXPORT_NAME_PREFIX",
    "MAX_WORKERS",
    "OUTPUT_ROOT",
    "TEMP_SUFFIX",
]
