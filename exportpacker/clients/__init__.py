"""exportpacker clients package.

Record store access only: no business logic in this layer.
Each store handles its own transport, retries and payload parsing.
"""

from exportpacker.clients.http_store import HttpRecordStore
from exportpacker.clients.record_store import (
    ArtifactRef,
    InMemoryRecordStore,
    JsonFileRecordStore,
    RecordStore,
)

__all__ = [
    "ArtifactRef",
    "HttpRecordStore",
    "InMemoryRecordStore",
    "JsonFileRecordStore",
    "RecordStore",
]
