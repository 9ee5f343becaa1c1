"""Record data models for exportpacker.

ExportRecord is owned by the external record store; the pipeline only reads it
and requests state transitions through the store interface.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


class RecordState:
    """Lifecycle states of an ExportRecord as tracked by the record store."""

    PENDING = "Pending"
    PROCESSING = "Processing"
    PROCESSED = "Processed"
    ERRORED = "Errored"

    ALL = (PENDING, PROCESSING, PROCESSED, ERRORED)
    TERMINAL = (PROCESSED, ERRORED)


@dataclass
class ExportRecord:
    """A logical record whose referenced artifacts are to be exported."""

    record_id: str
    record_type: str = ""
    account_id: str = ""
    state: str = RecordState.PENDING
    error_message: Optional[str] = None

    def __post_init__(self) -> None:
        # Stores hand back integer keys as often as strings
        self.record_id = str(self.record_id)
        if self.state not in RecordState.ALL:
            raise ValueError(f"Unknown record state {self.state!r}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExportRecord":
        """Build a record from a store payload.

        Accepts both ``record_id`` and ``id`` as the identifier key.
        """
        record_id = data.get("record_id", data.get("id"))
        if record_id is None:
            raise ValueError(f"Record payload has no identifier: {data!r}")
        return cls(
            record_id=record_id,
            record_type=data.get("record_type", ""),
            account_id=str(data.get("account_id", "")),
            state=data.get("state", RecordState.PENDING),
            error_message=data.get("error_message"),
        )
