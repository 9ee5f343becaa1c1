"""exportpacker: All default values and configuration constants.

All tuneable values live here. Never hard-code magic numbers in source files.
Import constants from this module; override via ExportConfig at runtime.
"""

# ── Batching ───────────────────────────────────────────────────────────────────
# Maximum number of artifacts packed into a single archive
BATCH_SIZE: int = 500

# Worker threads building archives concurrently (one batch per worker)
MAX_WORKERS: int = 4

# Halt dispatch of remaining batches after the first batch failure
STOP_ON_FIRST_FAILURE: bool = False

# Per-batch deadline in seconds; 0 disables the timeout
BATCH_TIMEOUT_SECONDS: float = 0.0

# ── Archive format ─────────────────────────────────────────────────────────────
# Container extension for finished archives
ARCHIVE_EXTENSION: str = ".zip"

# Suffix of the provisional sibling file an archive is built in
TEMP_SUFFIX: str = ".part"

# Deflate level for archive entries (1 = fastest, lowest CPU)
COMPRESSION_LEVEL: int = 1

# Prefix used for archive names when none is supplied; a UTC timestamp is appended
EXPORT_NAME_PREFIX: str = "export"

# Write <prefix>_manifest.json next to the archives after each run
WRITE_MANIFEST: bool = True

# ── Artifact resolution ────────────────────────────────────────────────────────
# Fields read from mapping-style artifact sub-entries
ARTIFACT_PATH_FIELDS: tuple = ("file_path",)

# ── Record store ───────────────────────────────────────────────────────────────
# Store backend: "json" (local records file) or "http" (REST service)
STORE_BACKEND: str = "json"

# Default JSON records document for the "json" backend
RECORDS_FILE: str = "records.json"

# HTTP request timeout for record store calls (seconds)
STORE_REQUEST_TIMEOUT: int = 30

# Maximum retry attempts on transient record store HTTP failures
STORE_MAX_RETRIES: int = 3

# Base seconds for record store exponential backoff
STORE_BACKOFF_BASE: float = 1.0

# ── Output and logging ─────────────────────────────────────────────────────────
OUTPUT_ROOT: str = "outputs/exports"
DEFAULT_LOG_LEVEL: str = "INFO"
LOG_FORMAT: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
