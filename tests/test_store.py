import os
import time
from pathlib import Path

import pytest

from photoconv_backend.store import DiskTempStore, MemoryTempStore


@pytest.fixture(params=["disk", "memory"])
def any_store(request, tmp_path: Path):
    if request.param == "disk":
        return DiskTempStore(tmp_path / "uploads")
    return MemoryTempStore()


def test_upload_roundtrip_and_delete(any_store):
    stored = any_store.save_upload(b"abc", "holiday.jpg", "image/jpeg")
    assert stored.original_name == "holiday.jpg"
    assert stored.size_bytes == 3
    assert any_store.read_bytes(stored) == b"abc"
    assert any_store.file_ids() == [stored.id]

    any_store.delete(stored)
    assert not any_store.exists(stored)
    # Deleting twice is fine.
    any_store.delete(stored)
    assert any_store.file_ids() == []


def test_same_original_name_gets_distinct_ids(any_store):
    a = any_store.save_upload(b"1", "same.png", "image/png")
    b = any_store.save_upload(b"2", "same.png", "image/png")
    assert a.id != b.id
    assert any_store.read_bytes(a) == b"1"
    assert any_store.read_bytes(b) == b"2"


def test_iter_chunks_streams_whole_artifact(any_store):
    data = bytes(range(256)) * 10
    artifact = any_store.save_artifact(data, "out.pdf")
    chunks = list(any_store.iter_chunks(artifact, chunk_size=100))
    assert len(chunks) == 26
    assert b"".join(chunks) == data


def test_artifact_written_through_a_file_object(any_store):
    def write(fh):
        fh.write(b"%PDF-")
        fh.write(b"1.4")

    artifact = any_store.save_artifact_from("out.pdf", write)
    assert artifact.name == "out.pdf"
    assert artifact.size_bytes == 8
    assert b"".join(any_store.iter_chunks(artifact, chunk_size=3)) == b"%PDF-1.4"


def test_failed_write_leaves_nothing_behind(any_store):
    def write(fh):
        fh.write(b"half a document")
        raise RuntimeError("renderer crashed")

    with pytest.raises(RuntimeError):
        any_store.save_artifact_from("out.pdf", write)
    assert any_store.file_ids() == []


def test_disk_store_names_files_by_id_only(tmp_path: Path):
    store = DiskTempStore(tmp_path)
    stored = store.save_upload(b"x", "../../evil name.png", "image/png")
    assert stored.storage_path.parent == tmp_path.resolve()
    assert stored.storage_path.name == f"{stored.id}.png"
    assert stored.original_name == "evil name.png"


def test_disk_sweep_only_touches_old_store_files(tmp_path: Path):
    store = DiskTempStore(tmp_path)
    old = store.save_upload(b"old", "old.png", "image/png")
    fresh = store.save_upload(b"new", "new.png", "image/png")
    foreign = tmp_path / "keep-me.txt"
    foreign.write_text("not ours")

    past = time.time() - 3600
    os.utime(old.storage_path, (past, past))

    assert store.sweep_expired(60) == 1
    assert not store.exists(old)
    assert store.exists(fresh)
    assert foreign.exists()


def test_memory_sweep(monkeypatch):
    store = MemoryTempStore()
    stored = store.save_upload(b"x", "a.png", "image/png")
    monkeypatch.setattr("photoconv_backend.store._now_epoch", lambda: time.time() + 7200)
    assert store.sweep_expired(60) == 1
    assert not store.exists(stored)
