"""Exception types and reason codes for exportpacker.

Reason codes are plain string constants carried on results; exceptions are
reserved for configuration problems, store failures, and the writer's own
internal control flow.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SkipReason:
    """Per-artifact reasons recorded in ArchiveResult.skipped. Never fail a batch."""

    ARTIFACT_MISSING = "ARTIFACT_MISSING"
    ARTIFACT_EMPTY = "ARTIFACT_EMPTY"
    ARTIFACT_READ_FAILURE = "ARTIFACT_READ_FAILURE"


class BatchFailure:
    """Batch-level failure codes. Fatal to the batch, non-fatal to the pipeline."""

    ARCHIVE_CREATE_FAILURE = "ARCHIVE_CREATE_FAILURE"
    ARCHIVE_WRITE_FAILURE = "ARCHIVE_WRITE_FAILURE"
    ARCHIVE_FINALIZE_FAILURE = "ARCHIVE_FINALIZE_FAILURE"
    ARCHIVE_VERIFICATION_FAILURE = "ARCHIVE_VERIFICATION_FAILURE"
    BATCH_TIMEOUT = "BATCH_TIMEOUT"
    NO_VALID_ARTIFACTS = "NO_VALID_ARTIFACTS"
    NOT_DISPATCHED = "NOT_DISPATCHED"


class RecordProblem:
    """Per-record problems found during resolution or reporting."""

    RECORD_FETCH_FAILURE = "RECORD_FETCH_FAILURE"
    MALFORMED_PATH = "MALFORMED_PATH"
    STORE_UPDATE_FAILURE = "STORE_UPDATE_FAILURE"


class ExportPackerError(Exception):
    """Base exception carrying a machine-readable code and context details."""

    def __init__(
        self,
        message: str,
        error_code: str = "EXPORT_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class ConfigurationError(ExportPackerError, ValueError):
    """Invalid run parameters. Raised at startup, before any archive is written."""

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIG_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class ExternalStoreError(ExportPackerError):
    """A record store call failed (fetch or state update)."""

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        error_code: str = "STORE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        enriched = details or {}
        if record_id is not None:
            enriched["record_id"] = record_id
        super().__init__(message, error_code=error_code, details=enriched)
        self.record_id = record_id


class ArchiveWriteError(ExportPackerError):
    """Unrecoverable failure while building one archive.

    Raised and caught inside the archive writer; ``error_code`` is one of the
    BatchFailure constants and ends up on the batch's ArchiveResult.
    """
