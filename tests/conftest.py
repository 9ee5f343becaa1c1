"""Shared pytest fixtures for exportpacker tests.

- Artifact files are written under tmp_path; nothing outside it is touched
- Record stores are InMemoryRecordStore unless a test needs another backend
- No real HTTP calls are made in any test
"""

from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Callable, Dict, List

import pytest

from exportpacker.clients.record_store import InMemoryRecordStore
from exportpacker.models.artifacts import Batch
from exportpacker.models.records import ExportRecord


@pytest.fixture
def zip_entries() -> Callable[..., List[str]]:
    """Return a helper listing the entry names of a zip archive, in archive order."""

    def _entries(path) -> List[str]:
        with zipfile.ZipFile(path) as archive:
            return archive.namelist()

    return _entries


# ── Filesystem fixtures ──────────────────────────────────────────────────────────

@pytest.fixture
def source_dir(tmp_path) -> Path:
    """Empty directory standing in for the read-only artifact tree."""
    path = tmp_path / "source"
    path.mkdir()
    return path


@pytest.fixture
def output_dir(tmp_path) -> Path:
    """Output directory path (not created; the pipeline creates it)."""
    return tmp_path / "out"


@pytest.fixture
def make_artifacts(source_dir) -> Callable[..., Dict[str, Path]]:
    """Factory writing named artifact files into source_dir.

    Usage: make_artifacts("A.bin", "B.bin", content=b"x")
    Each file gets distinct content derived from its name unless content is given.
    """

    def _make(*names: str, content: bytes = None) -> Dict[str, Path]:
        created = {}
        for name in names:
            path = source_dir / name
            path.write_bytes(content if content is not None else f"payload of {name}\n".encode() * 8)
            created[name] = path
        return created

    return _make


@pytest.fixture
def make_batch(source_dir) -> Callable[..., Batch]:
    """Factory building a Batch whose entries all live in source_dir."""

    def _make(*names: str, index: int = 1) -> Batch:
        return Batch(index=index, entries=tuple((n, str(source_dir)) for n in names))

    return _make


# ── Record store fixtures ────────────────────────────────────────────────────────

@pytest.fixture
def store_factory(source_dir) -> Callable[..., InMemoryRecordStore]:
    """Factory building an InMemoryRecordStore from {record_id: [artifact names]}.

    Names are turned into full paths under source_dir; entries containing a
    separator are passed through unchanged.
    """

    def _make(layout: Dict[str, List[str]], **kwargs) -> InMemoryRecordStore:
        records = [ExportRecord(record_id=rid, record_type="order", account_id="42") for rid in layout]
        refs = {
            rid: [n if ("/" in n or "\\" in n) else str(source_dir / n) for n in names]
            for rid, names in layout.items()
        }
        return InMemoryRecordStore(records=records, artifact_refs=refs, **kwargs)

    return _make
