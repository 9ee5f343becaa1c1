"""exportpacker pipeline coordinator.

Runs one export: resolve artifacts, partition into batches, build one archive
per batch on a bounded worker pool, derive per-record outcomes and report them
to the record store.

Phase order:
  resolve    records -> ArtifactMap (store reads only)
  partition  ArtifactMap -> batches
  prepare    create output directory, refuse name collisions
  dispatch   ArchiveWriter per batch on a ThreadPoolExecutor
  report     Processed / Errored back to the store, run manifest

Usage:
    from config.settings import ExportConfig
    from exportpacker.pipeline import run

    config = ExportConfig(output_root="out", batch_size=200)
    result = run(config)
"""

from __future__ import annotations

import logging
import signal
import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from config.defaults import (
    ARCHIVE_EXTENSION,
    ARTIFACT_PATH_FIELDS,
    BATCH_SIZE,
    COMPRESSION_LEVEL,
    EXPORT_NAME_PREFIX,
    MAX_WORKERS,
    TEMP_SUFFIX,
)
from config.settings import ExportConfig
from exportpacker.clients.http_store import HttpRecordStore
from exportpacker.clients.record_store import JsonFileRecordStore, RecordStore
from exportpacker.errors import BatchFailure, ConfigurationError, ExternalStoreError, RecordProblem
from exportpacker.io.archive_writer import ArchiveWriter
from exportpacker.io.manifest import manifest_file_name, write_run_manifest
from exportpacker.io.persistence import ensure_output_dir
from exportpacker.models.artifacts import ArtifactMap, Batch
from exportpacker.models.pipeline import ExportContext, PhaseRecord
from exportpacker.models.records import ExportRecord, RecordState
from exportpacker.models.results import (
    ArchiveResult,
    PipelineResult,
    RecordOutcome,
    StoreUpdateFailure,
)
from exportpacker.planning.partitioner import partition
from exportpacker.planning.resolver import resolve_artifacts
from exportpacker.utils.logging_utils import get_run_logger
from exportpacker.utils.paths import archive_file_name, sanitize_prefix

logger = logging.getLogger(__name__)


def _sigterm_handler_for(cancel_event: threading.Event) -> Callable[[int, Any], None]:
    def _handler(signum: int, frame: object) -> None:  # pragma: no cover
        logger.warning(
            "exportpacker: SIGTERM received (signal %d); no new batches will be dispatched",
            signum,
        )
        cancel_event.set()

    return _handler


def _make_run_id(prefix: str = EXPORT_NAME_PREFIX) -> str:
    """Generate a sortable run ID: ``<prefix>_YYYYMMDD_HHMMSS`` (UTC)."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{sanitize_prefix(prefix)}_{timestamp}"


def _require_positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(
            f"{name} must be an integer >= 1, got {value!r}",
            details={name: repr(value)},
        )
    return value


def _run_phase(context: ExportContext, phase_name: str, fn: Callable[..., Any], *args: Any) -> Any:
    """Execute one pipeline phase and record its timing.

    Exceptions propagate after the phase is logged as FAILED.
    """
    record: PhaseRecord = context.log_phase_start(phase_name)
    logger.debug("Pipeline: starting %s", phase_name)
    try:
        value = fn(*args)
    except Exception:
        context.log_phase_end(record, status="FAILED")
        raise
    context.log_phase_end(record)
    logger.debug("Pipeline: %s complete (%.3fs)", phase_name, record.elapsed_seconds)
    return value


def _prepare_output(
    output_dir: Path,
    final_paths: Sequence[Path],
) -> None:
    try:
        ensure_output_dir(output_dir)
    except OSError as exc:
        raise ConfigurationError(
            f"Output directory {output_dir} is unusable: {exc}",
            details={"output_directory": str(output_dir)},
        ) from exc

    existing = [str(p) for p in final_paths if p.exists()]
    if existing:
        raise ConfigurationError(
            f"{len(existing)} output file(s) already exist, e.g. {existing[0]}",
            details={"existing": existing},
        )


def _mark_processing(
    store: RecordStore,
    record_ids: Iterable[str],
    failures: List[StoreUpdateFailure],
) -> None:
    for record_id in record_ids:
        try:
            store.mark_processing(record_id)
        except ExternalStoreError as exc:
            logger.warning("Pipeline: could not mark record %s Processing: %s", record_id, exc)
            failures.append(StoreUpdateFailure(record_id, RecordState.PROCESSING, str(exc)))


def _dispatch(
    batches: Sequence[Batch],
    writer: ArchiveWriter,
    output_dir: Path,
    archive_names: Dict[int, str],
    parallelism: int,
    stop_on_first_failure: bool,
    cancel_event: threading.Event,
) -> Dict[int, ArchiveResult]:
    """Build every batch's archive on a bounded pool.

    At most ``parallelism`` batches are in flight; the next batch is handed
    out only when one finishes, so a cancel or a first failure stops new work
    immediately while in-flight batches run to completion.
    """
    results: Dict[int, ArchiveResult] = {}
    pending = deque(batches)
    in_flight: Dict[Future, Batch] = {}
    halted_by_failure = False

    with ThreadPoolExecutor(max_workers=parallelism, thread_name_prefix="exportpacker") as executor:
        while pending or in_flight:
            while (
                pending
                and len(in_flight) < parallelism
                and not halted_by_failure
                and not cancel_event.is_set()
            ):
                batch = pending.popleft()
                future = executor.submit(writer.write, batch, output_dir, archive_names[batch.index])
                in_flight[future] = batch

            if not in_flight:
                break

            done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
            for future in done:
                batch = in_flight.pop(future)
                try:
                    result = future.result()
                except Exception as exc:
                    logger.exception("Pipeline: batch %d raised unexpectedly: %s", batch.index, exc)
                    result = ArchiveResult(
                        batch_index=batch.index,
                        failure_reason=BatchFailure.ARCHIVE_WRITE_FAILURE,
                        error=str(exc),
                    )
                results[batch.index] = result
                if not result.success and stop_on_first_failure and not halted_by_failure:
                    halted_by_failure = True
                    logger.warning(
                        "Pipeline: batch %d failed; halting dispatch of %d remaining batches",
                        batch.index,
                        len(pending),
                    )

    for batch in pending:
        reason = "run cancelled" if cancel_event.is_set() else "halted after an earlier batch failure"
        results[batch.index] = ArchiveResult(
            batch_index=batch.index,
            failure_reason=BatchFailure.NOT_DISPATCHED,
            error=reason,
        )
    return results


def _derive_outcomes(
    artifact_map: ArtifactMap,
    batches: Sequence[Batch],
    results: Dict[int, ArchiveResult],
) -> Dict[str, RecordOutcome]:
    """Decide Processed or Errored for every resolved record.

    A record is Processed only if every artifact it references sits in a
    published archive; anything else makes it Errored with a message listing
    each problem.
    """
    batch_of: Dict[str, int] = {}
    for batch in batches:
        for name in batch.names:
            batch_of[name] = batch.index

    captured: Dict[str, str] = {}
    for result in results.values():
        if result.success and result.archive_path:
            for name in result.entries:
                captured[name] = result.archive_path

    outcomes: Dict[str, RecordOutcome] = {}
    for record_id, resolution in artifact_map.records.items():
        if not resolution.resolved:
            outcomes[record_id] = RecordOutcome(
                record_id=record_id,
                state=RecordState.ERRORED,
                message=f"{RecordProblem.RECORD_FETCH_FAILURE}: {resolution.fetch_error}",
            )
            continue

        problems: List[str] = [
            f"{RecordProblem.MALFORMED_PATH}: {path!r}" for path in resolution.malformed_paths
        ]
        archives: List[str] = []
        failed_batches: List[int] = []
        for name in resolution.artifact_names:
            if name in captured:
                if captured[name] not in archives:
                    archives.append(captured[name])
                continue
            result = results[batch_of[name]]
            if result.success:
                skipped = result.skipped_by_name().get(name)
                problems.append(skipped.describe() if skipped else f"{name}: not archived")
            elif result.batch_index not in failed_batches:
                failed_batches.append(result.batch_index)
                problems.append(result.describe_failure())

        if problems:
            outcomes[record_id] = RecordOutcome(
                record_id=record_id,
                state=RecordState.ERRORED,
                message="; ".join(problems),
                archives=archives,
            )
        else:
            outcomes[record_id] = RecordOutcome(
                record_id=record_id,
                state=RecordState.PROCESSED,
                archives=archives,
            )
    return outcomes


def _report(
    store: RecordStore,
    outcomes: Dict[str, RecordOutcome],
    failures: List[StoreUpdateFailure],
) -> None:
    for record_id, outcome in outcomes.items():
        try:
            if outcome.processed:
                store.mark_processed(record_id)
            else:
                store.mark_errored(record_id, outcome.message or "export failed")
        except ExternalStoreError as exc:
            logger.warning(
                "Pipeline: could not mark record %s %s: %s", record_id, outcome.state, exc
            )
            failures.append(StoreUpdateFailure(record_id, outcome.state, str(exc)))


def run_export(
    records: Iterable[ExportRecord],
    output_directory: Union[str, Path],
    batch_size: int = BATCH_SIZE,
    parallelism: int = MAX_WORKERS,
    stop_on_first_failure: bool = False,
    *,
    store: RecordStore,
    export_name_prefix: Optional[str] = None,
    path_fields: Sequence[str] = ARTIFACT_PATH_FIELDS,
    default_source_dir: Optional[str] = None,
    batch_timeout: Optional[float] = None,
    compression_level: int = COMPRESSION_LEVEL,
    temp_suffix: str = TEMP_SUFFIX,
    archive_extension: str = ARCHIVE_EXTENSION,
    write_manifest: bool = True,
    cancel_event: Optional[threading.Event] = None,
) -> PipelineResult:
    """Export the artifacts of ``records`` into batched archives.

    Data-path problems (missing files, failed batches, store update errors)
    end up in the returned PipelineResult. Only invalid parameters raise,
    and they raise before any archive is written.

    Args:
        records: Records to export, in the order they should be resolved.
        output_directory: Directory for archives; created if absent.
        batch_size: Maximum artifacts per archive.
        parallelism: Worker threads building archives concurrently.
        stop_on_first_failure: Stop dispatching new batches after the first
            batch failure.
        store: Record store for artifact lookups and state transitions.
        export_name_prefix: Archive name prefix; generated when None.
        path_fields: Fields read from mapping-style artifact sub-entries.
        default_source_dir: Directory assumed for bare artifact file names.
        batch_timeout: Per-batch deadline in seconds, or None.
        compression_level: Deflate level for archive entries.
        temp_suffix: Suffix of provisional archive files.
        archive_extension: Extension of published archives.
        write_manifest: Write ``<prefix>_manifest.json`` after the run.
        cancel_event: Set to stop dispatching new batches.

    Returns:
        PipelineResult with per-batch and per-record outcomes.

    Raises:
        ConfigurationError: Invalid batch size or parallelism, unusable
            output directory, or an output name that already exists.
    """
    _require_positive_int("batch_size", batch_size)
    _require_positive_int("parallelism", parallelism)
    if store is None:
        raise ConfigurationError("A record store is required")
    if not str(output_directory).strip():
        raise ConfigurationError("output_directory must be non-empty")
    if batch_timeout is not None and batch_timeout <= 0:
        raise ConfigurationError(f"batch_timeout must be > 0 when set, got {batch_timeout!r}")
    if not archive_extension.startswith("."):
        archive_extension = f".{archive_extension}"
    try:
        writer = ArchiveWriter(
            compression_level=compression_level,
            temp_suffix=temp_suffix,
            timeout=batch_timeout,
        )
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    run_id = sanitize_prefix(export_name_prefix) if export_name_prefix else _make_run_id()
    cancel_event = cancel_event or threading.Event()
    output_dir = Path(output_directory)
    run_log = get_run_logger("pipeline", run_id)

    context = ExportContext(run_id=run_id, output_dir=output_dir, records=list(records))
    context.start_time = datetime.now(timezone.utc)
    run_log.info("Starting export of %d records -> %s", len(context.records), output_dir)

    # ── Plan ──────────────────────────────────────────────────────────────────
    context.artifact_map = _run_phase(
        context, "resolve", resolve_artifacts,
        context.records, store, path_fields, default_source_dir,
    )
    for conflict in context.artifact_map.conflicts:
        context.add_warning(f"duplicate artifact {conflict.describe()}")
    context.batches = _run_phase(context, "partition", partition, context.artifact_map, batch_size)

    archive_names = {
        b.index: archive_file_name(run_id, b.index, archive_extension) for b in context.batches
    }
    manifest_path = output_dir / manifest_file_name(run_id)
    guarded = [output_dir / name for name in archive_names.values()]
    if write_manifest:
        guarded.append(manifest_path)
    _run_phase(context, "prepare", _prepare_output, output_dir, guarded)

    # ── Build ─────────────────────────────────────────────────────────────────
    store_failures: List[StoreUpdateFailure] = []
    _mark_processing(store, context.artifact_map.records.keys(), store_failures)

    run_log.info(
        "Dispatching %d batches (batch_size=%d, parallelism=%d)",
        len(context.batches), batch_size, parallelism,
    )
    results = _run_phase(
        context, "dispatch", _dispatch,
        context.batches, writer, output_dir, archive_names,
        parallelism, stop_on_first_failure, cancel_event,
    )
    context.archive_results = [results[b.index] for b in context.batches]
    context.cancelled = cancel_event.is_set()
    for archive in context.archive_results:
        if not archive.success:
            run_log.for_batch(archive.batch_index).warning(
                "%s: %s", archive.failure_reason, archive.error
            )

    # ── Report ────────────────────────────────────────────────────────────────
    outcomes = _derive_outcomes(context.artifact_map, context.batches, results)
    _run_phase(context, "report", _report, store, outcomes, store_failures)

    result = PipelineResult(
        run_id=run_id,
        output_dir=str(output_dir),
        archives=context.archive_results,
        record_outcomes=outcomes,
        store_update_failures=store_failures,
        warnings=context.warnings,
        cancelled=context.cancelled,
    )
    result.success = (
        all(a.success for a in result.archives)
        and all(o.processed for o in outcomes.values())
        and not store_failures
    )

    result.phase_timings = context.phase_timings()
    if write_manifest:
        try:
            result.manifest_path = str(write_run_manifest(result, manifest_path))
        except (OSError, TypeError, ValueError) as exc:
            run_log.warning("Run manifest could not be written: %s", exc)
            result.warnings.append(f"manifest not written: {exc}")

    _finalise(context, result)
    return result


def _build_store(config: ExportConfig) -> RecordStore:
    if config.store_backend == "http":
        if not config.store_url:
            raise ConfigurationError("store_backend 'http' requires store_url (EXPORT_STORE_URL)")
        return HttpRecordStore(
            config.store_url,
            api_key=config.store_api_key,
            request_timeout=config.store_request_timeout,
            max_retries=config.store_max_retries,
            backoff_base=config.store_backoff_base,
        )
    return JsonFileRecordStore(config.records_file)


def run(
    config: ExportConfig,
    store: Optional[RecordStore] = None,
    records: Optional[Iterable[ExportRecord]] = None,
    cancel_event: Optional[threading.Event] = None,
) -> PipelineResult:
    """Execute one export driven by an ExportConfig.

    When ``records`` is None, every Pending record in the store is exported.
    When called from the main thread, SIGTERM is wired to ``cancel_event`` for
    the duration of the run so a container stop lets in-flight batches finish.

    Args:
        config: Validated ExportConfig.
        store: Record store; built from the config when None.
        records: Records to export; fetched from the store when None.
        cancel_event: Optional external cancellation signal.

    Returns:
        PipelineResult for the run.

    Raises:
        ConfigurationError: Invalid parameters or output collisions.
        ExternalStoreError: The pending-record listing itself failed.
    """
    owns_store = store is None
    if store is None:
        store = _build_store(config)

    cancel_event = cancel_event or threading.Event()
    previous_handler = None
    in_main_thread = threading.current_thread() is threading.main_thread()
    if in_main_thread:
        # Register SIGTERM handler so containerised/batch runs exit cleanly
        previous_handler = signal.signal(signal.SIGTERM, _sigterm_handler_for(cancel_event))

    try:
        if records is None:
            records = store.fetch_pending_records()
            logger.info("Pipeline: %d pending records fetched from store", len(records))
        prefix = config.export_name_prefix or None
        return run_export(
            records,
            config.output_root,
            batch_size=config.batch_size,
            parallelism=config.max_workers,
            stop_on_first_failure=config.stop_on_first_failure,
            store=store,
            export_name_prefix=prefix,
            path_fields=config.path_fields,
            default_source_dir=config.default_source_dir,
            batch_timeout=config.batch_timeout,
            compression_level=config.compression_level,
            temp_suffix=config.temp_suffix,
            archive_extension=config.archive_extension,
            write_manifest=config.write_manifest,
            cancel_event=cancel_event,
        )
    finally:
        if in_main_thread and previous_handler is not None:
            signal.signal(signal.SIGTERM, previous_handler)
        if owns_store:
            store.close()


def _finalise(context: ExportContext, result: PipelineResult) -> None:
    """Record pipeline end time and emit a summary log line."""
    context.end_time = datetime.now(timezone.utc)
    result.elapsed_seconds = context.elapsed_seconds
    summary = result.summary()
    logger.info(
        "Pipeline: run %s complete in %.1fs | batches=%d ok=%d failed=%d not_dispatched=%d "
        "| records processed=%d errored=%d | store_failures=%d | warnings=%d",
        context.run_id,
        result.elapsed_seconds,
        summary["total_batches"],
        summary["succeeded"],
        summary["failed"],
        summary["not_dispatched"],
        summary["records_processed"],
        summary["records_errored"],
        summary["store_update_failures"],
        len(result.warnings),
    )
    if result.cancelled:
        logger.warning("Pipeline: run %s was cancelled before all batches were dispatched",
                       context.run_id)
    for failure in result.store_update_failures:
        logger.error("Pipeline: store update failed for record %s (%s): %s",
                     failure.record_id, failure.requested_state, failure.error)
