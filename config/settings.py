"""exportpacker: ExportConfig and environment-based configuration loading.

All runtime configuration flows through ExportConfig. No module-level globals,
no hard-coded values. Store credentials come exclusively from environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from config.defaults import (
    ARCHIVE_EXTENSION,
    ARTIFACT_PATH_FIELDS,
    BATCH_SIZE,
    BATCH_TIMEOUT_SECONDS,
    COMPRESSION_LEVEL,
    DEFAULT_LOG_LEVEL,
    EXPORT_NAME_PREFIX,
    MAX_WORKERS,
    OUTPUT_ROOT,
    RECORDS_FILE,
    STOP_ON_FIRST_FAILURE,
    STORE_BACKEND,
    STORE_BACKOFF_BASE,
    STORE_MAX_RETRIES,
    STORE_REQUEST_TIMEOUT,
    TEMP_SUFFIX,
    WRITE_MANIFEST,
)

# Load .env file if present; silently skip if missing
load_dotenv()

_STORE_BACKENDS = ("json", "http")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


def _check_positive_int(name: str, value: Any) -> None:
    # bool is an int subclass; YAML "yes" must not become a batch size
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{name} must be an integer >= 1, got {value!r}")


@dataclass
class ExportConfig:
    """Single configuration object threaded through the export pipeline.

    Batching limits, archive format, store connection details and output paths
    all live here. Never read environment variables directly in pipeline code.
    """

    # ── Output ─────────────────────────────────────────────────────────────────
    output_root: str = field(default_factory=lambda: os.getenv("OUTPUT_ROOT", OUTPUT_ROOT))
    # Empty prefix means "generate one per run" (export_YYYYMMDD_HHMMSS)
    export_name_prefix: str = ""

    # ── Batching and concurrency ───────────────────────────────────────────────
    batch_size: int = field(default_factory=lambda: _env_int("EXPORT_BATCH_SIZE", BATCH_SIZE))
    max_workers: int = field(default_factory=lambda: _env_int("EXPORT_MAX_WORKERS", MAX_WORKERS))
    stop_on_first_failure: bool = STOP_ON_FIRST_FAILURE
    batch_timeout_seconds: float = BATCH_TIMEOUT_SECONDS

    # ── Archive format ─────────────────────────────────────────────────────────
    archive_extension: str = ARCHIVE_EXTENSION
    temp_suffix: str = TEMP_SUFFIX
    compression_level: int = COMPRESSION_LEVEL
    write_manifest: bool = WRITE_MANIFEST

    # ── Artifact resolution ────────────────────────────────────────────────────
    path_fields: List[str] = field(default_factory=lambda: list(ARTIFACT_PATH_FIELDS))
    default_source_dir: Optional[str] = None

    # ── Record store ───────────────────────────────────────────────────────────
    store_backend: str = field(
        default_factory=lambda: os.getenv("EXPORT_STORE_BACKEND", STORE_BACKEND)
    )
    records_file: str = field(
        default_factory=lambda: os.getenv("EXPORT_RECORDS_FILE", RECORDS_FILE)
    )
    store_url: Optional[str] = field(default_factory=lambda: os.getenv("EXPORT_STORE_URL"))
    store_api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("EXPORT_STORE_API_KEY")
    )
    store_request_timeout: int = STORE_REQUEST_TIMEOUT
    store_max_retries: int = STORE_MAX_RETRIES
    store_backoff_base: float = STORE_BACKOFF_BASE

    # ── Logging ────────────────────────────────────────────────────────────────
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL))

    def __post_init__(self) -> None:
        _check_positive_int("batch_size", self.batch_size)
        _check_positive_int("max_workers", self.max_workers)
        if not 0 <= self.compression_level <= 9:
            raise ValueError(
                f"compression_level must be between 0 and 9, got {self.compression_level}"
            )
        if self.batch_timeout_seconds < 0:
            raise ValueError(
                f"batch_timeout_seconds must be >= 0, got {self.batch_timeout_seconds}"
            )
        if self.store_backend not in _STORE_BACKENDS:
            raise ValueError(
                f"store_backend must be one of {_STORE_BACKENDS}, got {self.store_backend!r}"
            )
        if not self.archive_extension.startswith("."):
            self.archive_extension = f".{self.archive_extension}"

    @property
    def batch_timeout(self) -> Optional[float]:
        """Per-batch timeout in seconds, or None when disabled."""
        return self.batch_timeout_seconds or None


def load_config(path: Optional[str] = None, **overrides: Any) -> ExportConfig:
    """Build an ExportConfig from an optional YAML file plus explicit overrides.

    Keys in the YAML mapping must match ExportConfig field names. Overrides
    whose value is None are ignored so CLI flags left unset do not clobber
    file values.

    Args:
        path: Path to a YAML file containing a top-level mapping.
        **overrides: Field values that win over the YAML file.

    Returns:
        Validated ExportConfig.

    Raises:
        FileNotFoundError: If ``path`` is given but does not exist.
        ValueError: If the file is not a mapping, names an unknown field,
            or a value fails validation.
    """
    values: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        with open(config_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        values.update(raw)

    values.update({k: v for k, v in overrides.items() if v is not None})

    known = {f.name for f in fields(ExportConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

    return ExportConfig(**values)
