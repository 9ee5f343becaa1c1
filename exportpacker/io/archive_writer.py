"""Crash-safe archive writer for exportpacker.

One batch becomes exactly one zip archive. The archive is assembled in a
provisional sibling file (``<final>.part``), flushed and fsynced, and only
then renamed onto its final name, so a reader of the output directory sees
either no archive or a complete one.

Problems with individual artifacts (missing, empty, unreadable) are recorded
on the result and the batch continues. Problems with the archive itself fail
the batch and leave the final path untouched.
"""

from __future__ import annotations

import logging
import os
import stat
import time
import zipfile
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Tuple, Union

from config.defaults import COMPRESSION_LEVEL, TEMP_SUFFIX
from exportpacker.errors import ArchiveWriteError, BatchFailure, SkipReason
from exportpacker.io.persistence import file_checksum, fsync_directory
from exportpacker.models.artifacts import Batch
from exportpacker.models.results import ArchiveResult, SkippedArtifact

logger = logging.getLogger(__name__)


class ArchiveWriter:
    """Builds one archive per batch.

    Instances hold only settings, so one writer may be shared by every worker
    thread; each call owns its own temporary file.

    Args:
        compression_level: Deflate level for entries (1 = fastest).
        temp_suffix: Suffix of the provisional sibling file.
        timeout: Per-batch deadline in seconds, or None for no limit.
        clock: Monotonic time source used for the deadline.
    """

    def __init__(
        self,
        compression_level: int = COMPRESSION_LEVEL,
        temp_suffix: str = TEMP_SUFFIX,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not 0 <= compression_level <= 9:
            raise ValueError(f"compression_level must be between 0 and 9, got {compression_level}")
        if not temp_suffix:
            raise ValueError("temp_suffix must be non-empty")
        self.compression_level = compression_level
        self.temp_suffix = temp_suffix
        self.timeout = timeout
        self._clock = clock

    def write(
        self,
        batch: Batch,
        output_directory: Union[str, Path],
        archive_name: str,
    ) -> ArchiveResult:
        """Write one batch to ``output_directory/archive_name``.

        Never raises for data-path problems; every failure is reported on the
        returned ArchiveResult.

        Args:
            batch: The batch to pack.
            output_directory: Existing directory to publish into.
            archive_name: Final file name, including extension.

        Returns:
            ArchiveResult with entries, skipped artifacts and, on success,
            the final path, size and SHA-256 checksum.
        """
        started = self._clock()
        deadline = started + self.timeout if self.timeout else None
        final_path = Path(output_directory) / archive_name
        temp_path = final_path.with_name(final_path.name + self.temp_suffix)
        result = ArchiveResult(batch_index=batch.index)
        # Set once this call has created temp_path; a create failure never owns it
        owns_temp = False

        try:
            if final_path.exists():
                raise ArchiveWriteError(
                    f"Final archive path already exists: {final_path}",
                    error_code=BatchFailure.ARCHIVE_CREATE_FAILURE,
                )
            handle = self._create_temp(temp_path)
            owns_temp = True
            self._build(batch, handle, temp_path, result, deadline)
            if not result.entries:
                raise ArchiveWriteError(
                    f"All {len(batch)} artifacts were skipped",
                    error_code=BatchFailure.NO_VALID_ARTIFACTS,
                )
            self._check_deadline(deadline, batch.index)
            self._publish(temp_path, final_path)
            owns_temp = False
            size = self._verify(final_path, result.entries)
        except ArchiveWriteError as exc:
            result.success = False
            result.failure_reason = exc.error_code
            result.error = exc.message
            logger.error(
                "ArchiveWriter: batch %d failed (%s): %s",
                batch.index, exc.error_code, exc.message,
            )
        else:
            result.success = True
            result.archive_path = str(final_path)
            result.size_bytes = size
            result.checksum = file_checksum(final_path)
            logger.info(
                "ArchiveWriter: batch %d published %s (%d entries, %d skipped, %d bytes)",
                batch.index, final_path.name, len(result.entries), len(result.skipped), size,
            )
        finally:
            # Any failure before the rename, including unexpected exceptions
            if owns_temp:
                self._discard(temp_path)
            result.elapsed_seconds = round(self._clock() - started, 3)

        return result

    # ── Build ──────────────────────────────────────────────────────────────────

    @staticmethod
    def _create_temp(temp_path: Path) -> BinaryIO:
        try:
            return open(temp_path, "xb")
        except OSError as exc:
            raise ArchiveWriteError(
                f"Cannot create temporary archive {temp_path}: {exc}",
                error_code=BatchFailure.ARCHIVE_CREATE_FAILURE,
            ) from exc

    def _build(
        self,
        batch: Batch,
        handle: BinaryIO,
        temp_path: Path,
        result: ArchiveResult,
        deadline: Optional[float],
    ) -> None:
        try:
            with handle:
                archive = zipfile.ZipFile(
                    handle,
                    mode="w",
                    compression=zipfile.ZIP_DEFLATED,
                    compresslevel=self.compression_level,
                )
                try:
                    self._add_entries(archive, batch, result, deadline)
                except BaseException:
                    self._abandon(archive)
                    raise

                # Central directory, then data to stable storage
                archive.close()
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as exc:
            raise ArchiveWriteError(
                f"Finalizing {temp_path.name} failed: {exc}",
                error_code=BatchFailure.ARCHIVE_FINALIZE_FAILURE,
            ) from exc

    def _add_entries(
        self,
        archive: zipfile.ZipFile,
        batch: Batch,
        result: ArchiveResult,
        deadline: Optional[float],
    ) -> None:
        for name, source_dir in batch:
            self._check_deadline(deadline, batch.index)
            loaded = self._read_artifact(name, source_dir, result)
            if loaded is None:
                continue
            info, data = loaded
            try:
                archive.writestr(
                    info,
                    data,
                    compress_type=zipfile.ZIP_DEFLATED,
                    compresslevel=self.compression_level,
                )
            except OSError as exc:
                raise ArchiveWriteError(
                    f"Writing entry {name} failed: {exc}",
                    error_code=BatchFailure.ARCHIVE_WRITE_FAILURE,
                ) from exc
            result.entries.append(name)

    @staticmethod
    def _abandon(archive: zipfile.ZipFile) -> None:
        """Close a half-built archive before its file handle closes under it."""
        try:
            archive.close()
        except Exception as exc:
            logger.debug("ArchiveWriter: closing abandoned archive raised %s", exc)

    def _read_artifact(
        self,
        name: str,
        source_dir: str,
        result: ArchiveResult,
    ) -> Optional[Tuple[zipfile.ZipInfo, bytes]]:
        """Load one artifact fully into memory, or record why it was skipped."""
        source = os.path.join(source_dir, name)

        def skip(reason: str, detail: str) -> None:
            result.skipped.append(SkippedArtifact(name=name, reason=reason, detail=detail))
            logger.warning("ArchiveWriter: skipping %s: %s (%s)", name, reason, detail)

        try:
            st = os.stat(source)
        except FileNotFoundError:
            skip(SkipReason.ARTIFACT_MISSING, source)
            return None
        except OSError as exc:
            skip(SkipReason.ARTIFACT_READ_FAILURE, str(exc))
            return None

        if not stat.S_ISREG(st.st_mode):
            skip(SkipReason.ARTIFACT_READ_FAILURE, f"not a regular file: {source}")
            return None
        if st.st_size == 0:
            skip(SkipReason.ARTIFACT_EMPTY, source)
            return None

        try:
            with open(source, "rb") as f:
                data = f.read()
            info = zipfile.ZipInfo.from_file(source, arcname=name, strict_timestamps=False)
        except FileNotFoundError:
            skip(SkipReason.ARTIFACT_MISSING, source)
            return None
        except OSError as exc:
            skip(SkipReason.ARTIFACT_READ_FAILURE, str(exc))
            return None

        if not data:
            skip(SkipReason.ARTIFACT_EMPTY, source)
            return None

        info.compress_type = zipfile.ZIP_DEFLATED
        return info, data

    # ── Publish ────────────────────────────────────────────────────────────────

    def _check_deadline(self, deadline: Optional[float], batch_index: int) -> None:
        if deadline is not None and self._clock() > deadline:
            raise ArchiveWriteError(
                f"Batch {batch_index} exceeded its {self.timeout}s deadline",
                error_code=BatchFailure.BATCH_TIMEOUT,
            )

    def _publish(self, temp_path: Path, final_path: Path) -> None:
        try:
            os.replace(temp_path, final_path)
        except OSError as exc:
            raise ArchiveWriteError(
                f"Renaming {temp_path.name} to {final_path.name} failed: {exc}",
                error_code=BatchFailure.ARCHIVE_FINALIZE_FAILURE,
            ) from exc

        try:
            fsync_directory(final_path.parent)
        except OSError as exc:
            logger.debug("ArchiveWriter: directory fsync skipped for %s: %s", final_path.parent, exc)

    def _verify(self, final_path: Path, expected_entries: list) -> int:
        """Re-check the published archive; remove it if it is not sound."""
        problem = None
        size = 0
        try:
            size = final_path.stat().st_size
        except OSError as exc:
            problem = f"missing after rename: {exc}"
        else:
            if size == 0:
                problem = "archive is empty"
            elif not zipfile.is_zipfile(final_path):
                problem = "archive is not a readable zip"
            else:
                try:
                    with zipfile.ZipFile(final_path) as archive:
                        names = archive.namelist()
                except (OSError, zipfile.BadZipFile) as exc:
                    problem = f"archive cannot be opened: {exc}"
                else:
                    if names != list(expected_entries):
                        problem = (
                            f"archive lists {len(names)} entries, expected {len(expected_entries)}"
                        )

        if problem is not None:
            self._discard(final_path)
            raise ArchiveWriteError(
                f"{final_path.name}: {problem}",
                error_code=BatchFailure.ARCHIVE_VERIFICATION_FAILURE,
            )
        return size

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("ArchiveWriter: could not remove %s: %s", path, exc)
