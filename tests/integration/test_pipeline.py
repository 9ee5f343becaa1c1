"""Integration tests for the exportpacker pipeline.

These tests drive run_export / run across the resolver, partitioner, archive
writer and record stores together, with real files under tmp_path:

- End-to-end export and record state transitions
- Output identity independent of pool size
- Zero artifacts, missing artifacts, malformed paths, fetch failures
- stop_on_first_failure and cancellation
- Store update failures surfaced without rollback
- Configuration errors raised before any work
- Run manifest
- Config-driven run() over a JSON records file
"""

from __future__ import annotations

import json
import os
import threading

import pytest

from config.settings import ExportConfig
from exportpacker.errors import BatchFailure, ConfigurationError, RecordProblem, SkipReason
from exportpacker.io.archive_writer import ArchiveWriter
from exportpacker.io.persistence import file_checksum
from exportpacker.models.records import RecordState
from exportpacker.pipeline import run, run_export


def _export(store, output_dir, **kwargs):
    kwargs.setdefault("export_name_prefix", "run")
    kwargs.setdefault("batch_size", 10)
    kwargs.setdefault("parallelism", 2)
    return run_export(store.fetch_pending_records(), output_dir, store=store, **kwargs)


def _zip_files(directory):
    return sorted(p.name for p in directory.glob("*.zip"))


# ── End-to-end ────────────────────────────────────────────────────────────────────

class TestEndToEnd:
    def test_single_record_two_artifacts(self, output_dir, make_artifacts, store_factory, zip_entries):
        """Record 1 -> [A.bin, B.bin] with batch_size 10 must give run_1.zip and Processed."""
        make_artifacts("A.bin", "B.bin")
        store = store_factory({"1": ["A.bin", "B.bin"]})

        result = _export(store, output_dir)

        assert result.success is True
        assert _zip_files(output_dir) == ["run_1.zip"]
        assert sorted(zip_entries(output_dir / "run_1.zip")) == ["A.bin", "B.bin"]
        assert result.outcome_for("1").state == RecordState.PROCESSED
        assert store.get("1").state == RecordState.PROCESSED
        assert store.transitions == [("1", RecordState.PROCESSING), ("1", RecordState.PROCESSED)]

    def test_archives_ordered_by_batch_index(self, output_dir, make_artifacts, store_factory):
        """Archive results must be ordered by batch index with contiguous indices."""
        names = [f"f{i}.bin" for i in range(7)]
        make_artifacts(*names)
        store = store_factory({"1": names})

        result = _export(store, output_dir, batch_size=2, parallelism=4)

        assert [a.batch_index for a in result.archives] == [1, 2, 3, 4]
        assert _zip_files(output_dir) == ["run_1.zip", "run_2.zip", "run_3.zip", "run_4.zip"]
        assert result.summary()["succeeded"] == 4

    def test_shared_artifact_archived_once(self, output_dir, make_artifacts, store_factory, zip_entries):
        """An artifact referenced by two records must appear in exactly one archive."""
        make_artifacts("A.bin", "B.bin", "C.bin")
        store = store_factory({"1": ["A.bin", "B.bin"], "2": ["B.bin", "C.bin"]})

        result = _export(store, output_dir, batch_size=1)

        all_entries = [n for p in result.archive_paths for n in zip_entries(p)]
        assert sorted(all_entries) == ["A.bin", "B.bin", "C.bin"]
        assert result.outcome_for("1").processed and result.outcome_for("2").processed

    def test_no_temp_files_remain(self, output_dir, make_artifacts, store_factory):
        """No provisional .part files may remain after a run."""
        make_artifacts("A.bin", "B.bin", "C.bin")
        _export(store_factory({"1": ["A.bin", "B.bin", "C.bin"]}), output_dir, batch_size=1)

        assert list(output_dir.glob("*.part")) == []


# ── Concurrency ───────────────────────────────────────────────────────────────────

class TestPoolSizeIndependence:
    def test_pool_one_vs_four(self, tmp_path, make_artifacts, store_factory, zip_entries):
        """Pool sizes 1 and 4 must produce the same archive files with identical entries."""
        names = [f"doc_{i:02d}.bin" for i in range(11)]
        make_artifacts(*names)
        layout = {"1": names[:6], "2": names[6:]}

        out_one, out_four = tmp_path / "one", tmp_path / "four"
        _export(store_factory(layout), out_one, batch_size=3, parallelism=1)
        _export(store_factory(layout), out_four, batch_size=3, parallelism=4)

        assert _zip_files(out_one) == _zip_files(out_four)
        for name in _zip_files(out_one):
            assert zip_entries(out_one / name) == zip_entries(out_four / name)


# ── Degraded inputs ───────────────────────────────────────────────────────────────

class TestDegradedInputs:
    def test_zero_artifacts(self, output_dir, store_factory):
        """Records with no artifacts must give zero batches, success and no archives."""
        store = store_factory({"1": [], "2": []})

        result = _export(store, output_dir)

        assert result.success is True
        assert result.total_batches == 0
        assert result.failed == 0
        assert _zip_files(output_dir) == []
        assert store.get("1").state == RecordState.PROCESSED

    def test_zero_records(self, output_dir, store_factory):
        """An empty record list must succeed with nothing written but the manifest."""
        result = _export(store_factory({}), output_dir)

        assert result.success is True
        assert result.archives == []
        assert _zip_files(output_dir) == []

    def test_missing_artifact_errors_only_its_record(self, output_dir, make_artifacts, store_factory):
        """A missing artifact must Error its record while the batch still succeeds."""
        make_artifacts("A.bin")
        store = store_factory({"1": ["A.bin"], "2": ["B.bin"]})

        result = _export(store, output_dir)

        assert result.archives[0].success is True
        assert result.outcome_for("1").state == RecordState.PROCESSED
        outcome = result.outcome_for("2")
        assert outcome.state == RecordState.ERRORED
        assert SkipReason.ARTIFACT_MISSING in outcome.message
        assert store.get("2").state == RecordState.ERRORED
        assert result.success is False

    def test_malformed_path_errors_record(self, output_dir, make_artifacts, store_factory):
        """A malformed path must Error its record; its valid artifacts are still archived."""
        make_artifacts("A.bin")
        store = store_factory({"1": ["A.bin", "broken/"]})

        result = _export(store, output_dir)

        assert result.archives[0].entries == ["A.bin"]
        outcome = result.outcome_for("1")
        assert outcome.state == RecordState.ERRORED
        assert RecordProblem.MALFORMED_PATH in outcome.message

    def test_fetch_failure_errors_record(self, output_dir, make_artifacts, store_factory):
        """A record whose refs cannot be fetched must be Errored; others proceed."""
        make_artifacts("A.bin", "B.bin")
        store = store_factory({"1": ["A.bin"], "2": ["B.bin"]}, failing_fetches=["2"])

        result = _export(store, output_dir)

        assert result.archives[0].entries == ["A.bin"]
        assert result.outcome_for("1").processed
        assert RecordProblem.RECORD_FETCH_FAILURE in result.outcome_for("2").message

    def test_conflict_reported_as_warning(self, output_dir, make_artifacts, store_factory, source_dir):
        """A dropped duplicate from another directory must appear in the warnings."""
        make_artifacts("A.bin")
        store = store_factory({"1": ["A.bin"], "2": ["/elsewhere/A.bin"]})

        result = _export(store, output_dir)

        assert any("A.bin" in w for w in result.warnings)
        assert result.archives[0].entries == ["A.bin"]
        # Record 2's artifact name was captured from the kept source
        assert result.outcome_for("2").processed


# ── Batch failures ────────────────────────────────────────────────────────────────

class TestBatchFailures:
    def _layout(self, make_artifacts):
        # Sorted names give batch 1 = [a1, a2] (both missing), batch 2 = [b1, b2], batch 3 = [c1]
        make_artifacts("b1.bin", "b2.bin", "c1.bin")
        return {"1": ["a1.bin", "a2.bin"], "2": ["b1.bin", "b2.bin"], "3": ["c1.bin"]}

    def test_continue_after_failure_by_default(self, output_dir, make_artifacts, store_factory):
        """By default a failed batch must not stop the other batches."""
        store = store_factory(self._layout(make_artifacts))

        result = _export(store, output_dir, batch_size=2, parallelism=1)

        assert [a.success for a in result.archives] == [False, True, True]
        assert result.archives[0].failure_reason == BatchFailure.NO_VALID_ARTIFACTS
        assert result.outcome_for("1").state == RecordState.ERRORED
        assert result.outcome_for("2").processed and result.outcome_for("3").processed
        assert result.success is False

    def test_stop_on_first_failure(self, output_dir, make_artifacts, store_factory):
        """stop_on_first_failure must leave later batches undispatched and their records Errored."""
        store = store_factory(self._layout(make_artifacts))

        result = _export(store, output_dir, batch_size=2, parallelism=1, stop_on_first_failure=True)

        assert result.archives[0].failure_reason == BatchFailure.NO_VALID_ARTIFACTS
        assert [a.failure_reason for a in result.archives[1:]] == [BatchFailure.NOT_DISPATCHED] * 2
        assert result.not_dispatched == 2
        assert result.failed == 1
        assert _zip_files(output_dir) == []
        assert BatchFailure.NOT_DISPATCHED in result.outcome_for("2").message
        assert store.get("3").state == RecordState.ERRORED

    def test_finalize_failure_keeps_other_archives(
        self, output_dir, make_artifacts, store_factory, monkeypatch
    ):
        """A batch failing at publish must not affect archives already published."""
        make_artifacts("a.bin", "b.bin")
        store = store_factory({"1": ["a.bin"], "2": ["b.bin"]})
        real_replace = os.replace

        def replace_failing_for_batch_two(src, dst):
            if str(dst).endswith("run_2.zip"):
                raise OSError("disk error")
            return real_replace(src, dst)

        monkeypatch.setattr(os, "replace", replace_failing_for_batch_two)
        result = _export(store, output_dir, batch_size=1, parallelism=1, write_manifest=False)

        assert _zip_files(output_dir) == ["run_1.zip"]
        assert result.archives[1].failure_reason == BatchFailure.ARCHIVE_FINALIZE_FAILURE
        assert result.outcome_for("1").processed
        assert BatchFailure.ARCHIVE_FINALIZE_FAILURE in result.outcome_for("2").message


# ── Cancellation ──────────────────────────────────────────────────────────────────

class TestCancellation:
    def test_cancel_before_dispatch(self, output_dir, make_artifacts, store_factory):
        """A pre-set cancel event must dispatch nothing and Error every record."""
        make_artifacts("A.bin", "B.bin")
        store = store_factory({"1": ["A.bin"], "2": ["B.bin"]})
        cancel = threading.Event()
        cancel.set()

        result = _export(store, output_dir, batch_size=1, cancel_event=cancel)

        assert result.cancelled is True
        assert result.not_dispatched == 2
        assert _zip_files(output_dir) == []
        assert store.get("1").state == RecordState.ERRORED

    def test_cancel_mid_run_keeps_completed_archives(
        self, output_dir, make_artifacts, store_factory, monkeypatch
    ):
        """Batches finished before cancellation must stay published and be reported."""
        make_artifacts("a.bin", "b.bin", "c.bin")
        store = store_factory({"1": ["a.bin"], "2": ["b.bin"], "3": ["c.bin"]})
        cancel = threading.Event()
        real_write = ArchiveWriter.write

        def write_then_cancel(self, batch, output_directory, archive_name):
            result = real_write(self, batch, output_directory, archive_name)
            cancel.set()
            return result

        monkeypatch.setattr(ArchiveWriter, "write", write_then_cancel)
        result = _export(store, output_dir, batch_size=1, parallelism=1, cancel_event=cancel)

        assert _zip_files(output_dir) == ["run_1.zip"]
        assert result.archives[0].success is True
        assert result.not_dispatched == 2
        assert result.outcome_for("1").processed
        assert result.outcome_for("3").state == RecordState.ERRORED


# ── Store failures ────────────────────────────────────────────────────────────────

class TestStoreUpdateFailures:
    def test_update_failures_collected_not_raised(self, output_dir, make_artifacts, store_factory):
        """Store update failures must be collected and must not roll back archives."""
        make_artifacts("A.bin")
        store = store_factory({"1": ["A.bin"]}, failing_updates=["1"])

        result = _export(store, output_dir)

        assert _zip_files(output_dir) == ["run_1.zip"]
        assert [(f.record_id, f.requested_state) for f in result.store_update_failures] == [
            ("1", RecordState.PROCESSING),
            ("1", RecordState.PROCESSED),
        ]
        assert result.outcome_for("1").processed
        assert result.success is False


# ── Configuration errors ──────────────────────────────────────────────────────────

class TestConfigurationErrors:
    @pytest.mark.parametrize("kwargs", [{"batch_size": 0}, {"parallelism": 0}, {"batch_size": "10"}])
    def test_invalid_parameters_raise_before_work(self, output_dir, store_factory, kwargs):
        """Invalid batch size or parallelism must raise before any store call or output."""
        store = store_factory({"1": ["/data/A.bin"]})

        with pytest.raises(ConfigurationError):
            _export(store, output_dir, **kwargs)

        assert store.transitions == []
        assert not output_dir.exists()

    def test_existing_archive_name_refused(self, output_dir, make_artifacts, store_factory):
        """A pre-existing file at a computed archive path must refuse the run."""
        make_artifacts("A.bin")
        output_dir.mkdir()
        existing = output_dir / "run_1.zip"
        existing.write_bytes(b"earlier export")
        store = store_factory({"1": ["A.bin"]})

        with pytest.raises(ConfigurationError):
            _export(store, output_dir)

        assert existing.read_bytes() == b"earlier export"
        assert store.transitions == []

    def test_output_path_is_a_file(self, tmp_path, store_factory):
        """An output path occupied by a regular file must raise ConfigurationError."""
        blocker = tmp_path / "out"
        blocker.write_text("not a directory")

        with pytest.raises(ConfigurationError):
            _export(store_factory({"1": []}), blocker)


# ── Manifest and naming ───────────────────────────────────────────────────────────

class TestManifest:
    def test_manifest_lists_archives(self, output_dir, make_artifacts, store_factory):
        """The manifest must list each archive with entries and the file's checksum."""
        make_artifacts("A.bin", "B.bin")
        result = _export(store_factory({"1": ["A.bin", "B.bin"]}), output_dir)

        manifest = json.loads((output_dir / "run_manifest.json").read_text(encoding="utf-8"))
        assert result.manifest_path == str(output_dir / "run_manifest.json")
        assert manifest["archives"][0]["entries"] == ["A.bin", "B.bin"]
        assert manifest["archives"][0]["checksum"] == file_checksum(output_dir / "run_1.zip")
        assert manifest["records"]["1"]["state"] == RecordState.PROCESSED

    def test_manifest_can_be_disabled(self, output_dir, make_artifacts, store_factory):
        """write_manifest=False must write no manifest."""
        make_artifacts("A.bin")
        result = _export(store_factory({"1": ["A.bin"]}), output_dir, write_manifest=False)

        assert result.manifest_path is None
        assert list(output_dir.glob("*.json")) == []

    def test_generated_prefix(self, output_dir, make_artifacts, store_factory):
        """Without a prefix, archives must be named export_<timestamp>_<index>.zip."""
        make_artifacts("A.bin")
        result = _export(store_factory({"1": ["A.bin"]}), output_dir, export_name_prefix=None)

        assert result.run_id.startswith("export_")
        assert _zip_files(output_dir) == [f"{result.run_id}_1.zip"]


# ── Config-driven run() ───────────────────────────────────────────────────────────

class TestRunWithConfig:
    def test_json_records_file(self, tmp_path, output_dir, make_artifacts, source_dir, zip_entries):
        """run() must read Pending records from the JSON store and write states back."""
        make_artifacts("A.bin", "B.bin")
        records_file = tmp_path / "records.json"
        records_file.write_text(json.dumps({"records": [
            {"id": 1, "state": "Pending", "artifacts": [str(source_dir / "A.bin")]},
            {"id": 2, "state": "Pending", "artifacts": [{"file_path": str(source_dir / "B.bin")}]},
            {"id": 3, "state": "Processed", "artifacts": [str(source_dir / "A.bin")]},
        ]}), encoding="utf-8")
        config = ExportConfig(
            output_root=str(output_dir),
            export_name_prefix="nightly",
            batch_size=1,
            max_workers=2,
            store_backend="json",
            records_file=str(records_file),
        )

        result = run(config)

        assert result.success is True
        assert _zip_files(output_dir) == ["nightly_1.zip", "nightly_2.zip"]
        saved = {r["record_id"]: r["state"] for r in json.loads(records_file.read_text())["records"]}
        assert saved == {"1": "Processed", "2": "Processed", "3": "Processed"}

    def test_explicit_store_and_records(self, output_dir, make_artifacts, store_factory):
        """run() must use a supplied store and record list as given."""
        make_artifacts("A.bin", "B.bin")
        store = store_factory({"1": ["A.bin"], "2": ["B.bin"]})
        config = ExportConfig(output_root=str(output_dir), export_name_prefix="part", store_backend="json")

        result = run(config, store=store, records=[store.get("2")])

        assert list(result.record_outcomes) == ["2"]
        assert store.get("1").state == RecordState.PENDING

    def test_http_backend_requires_url(self, output_dir):
        """The http backend without a URL must raise ConfigurationError."""
        config = ExportConfig(output_root=str(output_dir), store_backend="http", store_url=None)

        with pytest.raises(ConfigurationError):
            run(config)
