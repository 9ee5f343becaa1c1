"""Unit tests for exportpacker.clients.record_store.

Covers:
- InMemoryRecordStore: pending filter, refs, transitions, injected failures
- JsonFileRecordStore: loading, id normalisation, persisted transitions,
  missing file, write failures
- ExportRecord.from_dict payload handling
"""

from __future__ import annotations

import json
import os

import pytest

from exportpacker.clients.record_store import InMemoryRecordStore, JsonFileRecordStore
from exportpacker.errors import ExternalStoreError, RecordProblem
from exportpacker.models.records import ExportRecord, RecordState


# ── ExportRecord ──────────────────────────────────────────────────────────────────

class TestExportRecord:
    def test_integer_id_normalised(self):
        """Integer identifiers must be stored as strings."""
        assert ExportRecord(record_id=7).record_id == "7"

    def test_from_dict_accepts_id_key(self):
        """from_dict must accept 'id' as the identifier key."""
        record = ExportRecord.from_dict({"id": 3, "record_type": "order", "account_id": 42})
        assert (record.record_id, record.record_type, record.account_id) == ("3", "order", "42")

    def test_from_dict_without_id_raises(self):
        """A payload with no identifier must raise ValueError."""
        with pytest.raises(ValueError):
            ExportRecord.from_dict({"record_type": "order"})

    def test_unknown_state_rejected(self):
        """States outside the lifecycle must raise ValueError."""
        with pytest.raises(ValueError):
            ExportRecord(record_id="1", state="Archived")


# ── InMemoryRecordStore ───────────────────────────────────────────────────────────

class TestInMemoryRecordStore:
    def _store(self, **kwargs):
        records = [
            ExportRecord(record_id="1"),
            ExportRecord(record_id="2", state=RecordState.PROCESSED),
        ]
        refs = {"1": ["/data/A.bin"], "2": ["/data/B.bin"]}
        return InMemoryRecordStore(records=records, artifact_refs=refs, **kwargs)

    def test_fetch_pending_filters_state(self):
        """Only Pending records must be returned."""
        assert [r.record_id for r in self._store().fetch_pending_records()] == ["1"]

    def test_fetch_artifact_refs(self):
        """Refs must be returned as a copy of the stored list."""
        store = self._store()
        refs = store.fetch_artifact_refs("1")
        refs.append("/tampered")

        assert store.fetch_artifact_refs("1") == ["/data/A.bin"]

    def test_transitions_recorded(self):
        """State changes must apply to the record and be logged in order."""
        store = self._store()
        store.mark_processing("1")
        store.mark_errored("1", "ARTIFACT_MISSING")

        assert store.get("1").state == RecordState.ERRORED
        assert store.get("1").error_message == "ARTIFACT_MISSING"
        assert store.transitions == [("1", RecordState.PROCESSING), ("1", RecordState.ERRORED)]

    def test_processed_clears_error_message(self):
        """mark_processed must clear any previous error message."""
        store = self._store()
        store.mark_errored("1", "boom")
        store.mark_processed("1")

        assert store.get("1").error_message is None

    def test_injected_fetch_failure(self):
        """A failing fetch must raise ExternalStoreError with RECORD_FETCH_FAILURE."""
        store = self._store(failing_fetches=["1"])
        with pytest.raises(ExternalStoreError) as exc_info:
            store.fetch_artifact_refs("1")

        assert exc_info.value.error_code == RecordProblem.RECORD_FETCH_FAILURE
        assert exc_info.value.record_id == "1"

    def test_injected_update_failure(self):
        """A failing update must raise ExternalStoreError with STORE_UPDATE_FAILURE."""
        store = self._store(failing_updates=["1"])
        with pytest.raises(ExternalStoreError) as exc_info:
            store.mark_processed("1")

        assert exc_info.value.error_code == RecordProblem.STORE_UPDATE_FAILURE

    def test_unknown_record(self):
        """Unknown record ids must raise ExternalStoreError."""
        with pytest.raises(ExternalStoreError):
            self._store().fetch_artifact_refs("99")

    def test_context_manager(self):
        """The store must be usable as a context manager."""
        with self._store() as store:
            assert store.get("1") is not None


# ── JsonFileRecordStore ───────────────────────────────────────────────────────────

class TestJsonFileRecordStore:
    def _write(self, path, records):
        path.write_text(json.dumps({"records": records}), encoding="utf-8")
        return path

    def test_loads_pending_records_and_refs(self, tmp_path):
        """Records and their artifact lists must be read from the document."""
        path = self._write(tmp_path / "records.json", [
            {"id": 1, "record_type": "order", "account_id": "42", "state": "Pending",
             "artifacts": ["/data/A.bin", {"file_path": "/data/B.bin"}]},
            {"id": 2, "state": "Processed", "artifacts": []},
        ])
        store = JsonFileRecordStore(path)

        assert [r.record_id for r in store.fetch_pending_records()] == ["1"]
        assert store.fetch_artifact_refs("1") == ["/data/A.bin", {"file_path": "/data/B.bin"}]

    def test_bare_list_document(self, tmp_path):
        """A top-level list must be accepted as the record list."""
        path = tmp_path / "records.json"
        path.write_text(json.dumps([{"id": "a", "artifacts": []}]), encoding="utf-8")

        assert [r.record_id for r in JsonFileRecordStore(path).fetch_pending_records()] == ["a"]

    def test_transition_persisted(self, tmp_path):
        """State changes must be written back to the document."""
        path = self._write(tmp_path / "records.json", [{"id": 1, "artifacts": []}])
        store = JsonFileRecordStore(path)

        store.mark_errored("1", "ARTIFACT_MISSING")

        saved = json.loads(path.read_text(encoding="utf-8"))["records"][0]
        assert saved["record_id"] == "1"
        assert saved["state"] == RecordState.ERRORED
        assert saved["error_message"] == "ARTIFACT_MISSING"
        assert JsonFileRecordStore(path).fetch_pending_records() == []

    def test_missing_file_raises(self, tmp_path):
        """A missing records file must raise ExternalStoreError."""
        with pytest.raises(ExternalStoreError):
            JsonFileRecordStore(tmp_path / "absent.json")

    def test_non_list_artifacts_raises(self, tmp_path):
        """A non-list 'artifacts' field must raise ExternalStoreError on fetch."""
        path = self._write(tmp_path / "records.json", [{"id": 1, "artifacts": "/data/A.bin"}])

        with pytest.raises(ExternalStoreError):
            JsonFileRecordStore(path).fetch_artifact_refs("1")

    def test_write_failure_wrapped(self, tmp_path, monkeypatch):
        """A failed document write must surface as STORE_UPDATE_FAILURE."""
        path = self._write(tmp_path / "records.json", [{"id": 1, "artifacts": []}])
        store = JsonFileRecordStore(path)

        def failing_replace(src, dst):
            raise OSError("read-only filesystem")

        monkeypatch.setattr(os, "replace", failing_replace)

        with pytest.raises(ExternalStoreError) as exc_info:
            store.mark_processed("1")

        assert exc_info.value.error_code == RecordProblem.STORE_UPDATE_FAILURE
