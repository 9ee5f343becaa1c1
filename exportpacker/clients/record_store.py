"""Record store interface and local implementations for exportpacker.

The record store is the system of record for export eligibility and outcome.
The pipeline only calls the five methods on RecordStore; no business logic
lives in this layer.

Implementations:
    - InMemoryRecordStore: dict-backed, for tests and embedding
    - JsonFileRecordStore: records held in a local JSON document
    - HttpRecordStore (clients.http_store): REST service
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from exportpacker.errors import ExternalStoreError, RecordProblem
from exportpacker.io.persistence import load_json, save_json
from exportpacker.models.records import ExportRecord, RecordState

logger = logging.getLogger(__name__)

# A sub-entry is either a bare path string or a mapping with path-like fields
ArtifactRef = Union[str, Mapping[str, Any]]


class RecordStore(ABC):
    """Abstract interface to the originating record store."""

    @abstractmethod
    def fetch_pending_records(self) -> List[ExportRecord]:
        """Return every record currently in the Pending state."""

    @abstractmethod
    def fetch_artifact_refs(self, record_id: str) -> List[ArtifactRef]:
        """Return the artifact sub-entries of one record.

        Raises:
            ExternalStoreError: If the sub-entries cannot be fetched.
        """

    @abstractmethod
    def mark_processing(self, record_id: str) -> None:
        """Transition a record to Processing."""

    @abstractmethod
    def mark_processed(self, record_id: str) -> None:
        """Transition a record to Processed and clear its error message."""

    @abstractmethod
    def mark_errored(self, record_id: str, message: str) -> None:
        """Transition a record to Errored with an explanatory message."""

    def close(self) -> None:
        """Release connections or file handles. No-op by default."""

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class InMemoryRecordStore(RecordStore):
    """Dict-backed record store.

    Args:
        records: Initial records.
        artifact_refs: Mapping of record_id to its artifact sub-entries.
        failing_fetches: Record ids whose artifact fetch raises ExternalStoreError.
        failing_updates: Record ids whose state updates raise ExternalStoreError.
    """

    def __init__(
        self,
        records: Iterable[ExportRecord] = (),
        artifact_refs: Optional[Mapping[str, List[ArtifactRef]]] = None,
        failing_fetches: Iterable[str] = (),
        failing_updates: Iterable[str] = (),
    ) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, ExportRecord] = {r.record_id: r for r in records}
        self._refs: Dict[str, List[ArtifactRef]] = {
            str(k): list(v) for k, v in (artifact_refs or {}).items()
        }
        self._failing_fetches = {str(r) for r in failing_fetches}
        self._failing_updates = {str(r) for r in failing_updates}
        # (record_id, state) in the order transitions were applied
        self.transitions: List[tuple] = []

    def add(self, record: ExportRecord, refs: Iterable[ArtifactRef] = ()) -> None:
        with self._lock:
            self._records[record.record_id] = record
            self._refs[record.record_id] = list(refs)

    def get(self, record_id: str) -> Optional[ExportRecord]:
        return self._records.get(str(record_id))

    def fetch_pending_records(self) -> List[ExportRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.state == RecordState.PENDING]

    def fetch_artifact_refs(self, record_id: str) -> List[ArtifactRef]:
        record_id = str(record_id)
        if record_id in self._failing_fetches:
            raise ExternalStoreError(
                f"Artifact fetch failed for record {record_id}",
                record_id=record_id,
                error_code=RecordProblem.RECORD_FETCH_FAILURE,
            )
        with self._lock:
            if record_id not in self._records:
                raise ExternalStoreError(
                    f"Unknown record {record_id}",
                    record_id=record_id,
                    error_code=RecordProblem.RECORD_FETCH_FAILURE,
                )
            return list(self._refs.get(record_id, []))

    def _transition(self, record_id: str, state: str, message: Optional[str]) -> None:
        record_id = str(record_id)
        if record_id in self._failing_updates:
            raise ExternalStoreError(
                f"State update to {state} rejected for record {record_id}",
                record_id=record_id,
                error_code=RecordProblem.STORE_UPDATE_FAILURE,
            )
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise ExternalStoreError(
                    f"Unknown record {record_id}",
                    record_id=record_id,
                    error_code=RecordProblem.STORE_UPDATE_FAILURE,
                )
            record.state = state
            record.error_message = message
            self.transitions.append((record_id, state))

    def mark_processing(self, record_id: str) -> None:
        self._transition(record_id, RecordState.PROCESSING, None)

    def mark_processed(self, record_id: str) -> None:
        self._transition(record_id, RecordState.PROCESSED, None)

    def mark_errored(self, record_id: str, message: str) -> None:
        self._transition(record_id, RecordState.ERRORED, message)


class JsonFileRecordStore(RecordStore):
    """Record store backed by a local JSON document.

    Document layout::

        {
          "records": [
            {"id": 1, "record_type": "order", "account_id": "42",
             "state": "Pending", "artifacts": ["/data/files/A.bin", ...]}
          ]
        }

    Each state transition rewrites the document atomically.

    Args:
        path: Location of the JSON document.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        data = load_json(self.path)
        if data is None:
            raise ExternalStoreError(
                f"Records file {self.path} is missing or unreadable",
                error_code=RecordProblem.RECORD_FETCH_FAILURE,
                details={"path": str(self.path)},
            )
        raw_records = data.get("records", []) if isinstance(data, dict) else data
        if not isinstance(raw_records, list):
            raise ExternalStoreError(
                f"Records file {self.path} must hold a list of records",
                error_code=RecordProblem.RECORD_FETCH_FAILURE,
            )
        self._raw: Dict[str, Dict[str, Any]] = {}
        for entry in raw_records:
            record = ExportRecord.from_dict(entry)
            entry = dict(entry)
            entry["record_id"] = record.record_id
            entry.pop("id", None)
            self._raw[record.record_id] = entry
        logger.info("JsonFileRecordStore: loaded %d records from %s", len(self._raw), self.path)

    def fetch_pending_records(self) -> List[ExportRecord]:
        with self._lock:
            records = [ExportRecord.from_dict(e) for e in self._raw.values()]
        return [r for r in records if r.state == RecordState.PENDING]

    def fetch_artifact_refs(self, record_id: str) -> List[ArtifactRef]:
        entry = self._raw.get(str(record_id))
        if entry is None:
            raise ExternalStoreError(
                f"Unknown record {record_id}",
                record_id=str(record_id),
                error_code=RecordProblem.RECORD_FETCH_FAILURE,
            )
        refs = entry.get("artifacts", [])
        if not isinstance(refs, list):
            raise ExternalStoreError(
                f"Record {record_id} has a non-list 'artifacts' field",
                record_id=str(record_id),
                error_code=RecordProblem.RECORD_FETCH_FAILURE,
            )
        return list(refs)

    def _transition(self, record_id: str, state: str, message: Optional[str]) -> None:
        record_id = str(record_id)
        with self._lock:
            entry = self._raw.get(record_id)
            if entry is None:
                raise ExternalStoreError(
                    f"Unknown record {record_id}",
                    record_id=record_id,
                    error_code=RecordProblem.STORE_UPDATE_FAILURE,
                )
            entry["state"] = state
            entry["error_message"] = message
            try:
                save_json({"records": list(self._raw.values())}, self.path)
            except (OSError, TypeError, ValueError) as exc:
                raise ExternalStoreError(
                    f"Could not persist state {state} for record {record_id}: {exc}",
                    record_id=record_id,
                    error_code=RecordProblem.STORE_UPDATE_FAILURE,
                ) from exc

    def mark_processing(self, record_id: str) -> None:
        self._transition(record_id, RecordState.PROCESSING, None)

    def mark_processed(self, record_id: str) -> None:
        self._transition(record_id, RecordState.PROCESSED, None)

    def mark_errored(self, record_id: str, message: str) -> None:
        self._transition(record_id, RecordState.ERRORED, message)
