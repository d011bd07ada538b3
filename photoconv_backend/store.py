"""Temp file store for uploads and intermediate artifacts.

The conversion pipeline only talks to the TempFileStore interface, so it has
no dependency on a fixed upload directory. DiskTempStore backs the server;
MemoryTempStore keeps tests off the filesystem.
"""
from __future__ import annotations

import io
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Callable, Iterator

from .config import ALLOWED_IMAGE_EXTS, STREAM_CHUNK_BYTES, UPLOADS_ROOT
from .logger import get_logger
from .models import InputFile, StoredFile, TempArtifact
from .security import display_name, new_file_id, normalize_file_id, safe_join

logger = get_logger(__name__)


def _now_epoch() -> float:
    return time.time()


def _storage_suffix(name: str) -> str:
    ext = Path(name).suffix.lower()
    if ext in ALLOWED_IMAGE_EXTS or ext in (".pdf", ".zip"):
        return ext
    return ""


class TempFileStore(ABC):
    """Create/read/delete contract for files owned by one conversion request."""

    @abstractmethod
    def save_upload(self, data: bytes, original_name: str, mime_type: str) -> InputFile:
        ...

    @abstractmethod
    def save_artifact(self, data: bytes, name: str) -> TempArtifact:
        ...

    @abstractmethod
    def save_artifact_from(self, name: str, write: Callable[[BinaryIO], None]) -> TempArtifact:
        """Create an artifact by letting write() fill a binary file object.

        Nothing is stored if write() raises.
        """

    @abstractmethod
    def read_bytes(self, stored: StoredFile) -> bytes:
        ...

    @abstractmethod
    def delete(self, stored: StoredFile) -> None:
        """Remove a stored file. Deleting a missing file is not an error."""

    @abstractmethod
    def exists(self, stored: StoredFile) -> bool:
        ...

    @abstractmethod
    def file_ids(self) -> list[str]:
        ...

    @abstractmethod
    def sweep_expired(self, ttl_seconds: float) -> int:
        """Delete files older than ttl_seconds. Returns how many were deleted."""

    def iter_chunks(self, stored: StoredFile, chunk_size: int = STREAM_CHUNK_BYTES) -> Iterator[bytes]:
        data = self.read_bytes(stored)
        for start in range(0, len(data), chunk_size):
            yield data[start:start + chunk_size]


class DiskTempStore(TempFileStore):
    def __init__(self, root: Path = UPLOADS_ROOT) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, file_id: str, name: str) -> Path:
        return safe_join(self.root, f"{normalize_file_id(file_id)}{_storage_suffix(name)}")

    def _write(self, data: bytes, name: str) -> tuple[str, Path]:
        self.root.mkdir(parents=True, exist_ok=True)
        file_id = new_file_id()
        dest = self._path_for(file_id, name)
        dest.write_bytes(data)
        return file_id, dest

    def save_upload(self, data: bytes, original_name: str, mime_type: str) -> InputFile:
        file_id, dest = self._write(data, original_name)
        return InputFile(
            id=file_id,
            original_name=display_name(original_name),
            storage_path=dest,
            size_bytes=len(data),
            declared_mime_type=mime_type or "",
        )

    def save_artifact(self, data: bytes, name: str) -> TempArtifact:
        file_id, dest = self._write(data, name)
        return TempArtifact(id=file_id, name=name, storage_path=dest, size_bytes=len(data))

    def save_artifact_from(self, name: str, write: Callable[[BinaryIO], None]) -> TempArtifact:
        self.root.mkdir(parents=True, exist_ok=True)
        file_id = new_file_id()
        dest = self._path_for(file_id, name)
        try:
            with dest.open("wb") as fh:
                write(fh)
        except BaseException:
            dest.unlink(missing_ok=True)
            raise
        return TempArtifact(id=file_id, name=name, storage_path=dest, size_bytes=dest.stat().st_size)

    def read_bytes(self, stored: StoredFile) -> bytes:
        return safe_join(self.root, stored.storage_path.name).read_bytes()

    def iter_chunks(self, stored: StoredFile, chunk_size: int = STREAM_CHUNK_BYTES) -> Iterator[bytes]:
        with safe_join(self.root, stored.storage_path.name).open("rb") as fh:
            while True:
                chunk = fh.read(chunk_size)
                if not chunk:
                    return
                yield chunk

    def delete(self, stored: StoredFile) -> None:
        safe_join(self.root, stored.storage_path.name).unlink(missing_ok=True)

    def exists(self, stored: StoredFile) -> bool:
        return safe_join(self.root, stored.storage_path.name).is_file()

    def file_ids(self) -> list[str]:
        if not self.root.exists():
            return []
        ids = []
        for child in self.root.iterdir():
            if not child.is_file():
                continue
            try:
                ids.append(normalize_file_id(child.name[:36]))
            except ValueError:
                continue
        return sorted(ids)

    def sweep_expired(self, ttl_seconds: float) -> int:
        """Delete stored files whose mtime is older than the TTL.

        Only files named like store ids are touched.
        """
        deleted = 0
        if not self.root.exists() or ttl_seconds <= 0:
            return 0
        now = _now_epoch()
        for child in self.root.iterdir():
            if not child.is_file():
                continue
            try:
                normalize_file_id(child.name[:36])
            except ValueError:
                continue
            try:
                if now - child.stat().st_mtime > ttl_seconds:
                    child.unlink(missing_ok=True)
                    deleted += 1
            except OSError as exc:
                logger.warning("Could not sweep %s: %s", child.name, exc)
        return deleted


class MemoryTempStore(TempFileStore):
    def __init__(self) -> None:
        self._files: dict[str, tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def _put(self, data: bytes) -> str:
        file_id = new_file_id()
        with self._lock:
            self._files[file_id] = (bytes(data), _now_epoch())
        return file_id

    def save_upload(self, data: bytes, original_name: str, mime_type: str) -> InputFile:
        file_id = self._put(data)
        return InputFile(
            id=file_id,
            original_name=display_name(original_name),
            storage_path=Path("memory") / file_id,
            size_bytes=len(data),
            declared_mime_type=mime_type or "",
        )

    def save_artifact(self, data: bytes, name: str) -> TempArtifact:
        file_id = self._put(data)
        return TempArtifact(id=file_id, name=name, storage_path=Path("memory") / file_id, size_bytes=len(data))

    def save_artifact_from(self, name: str, write: Callable[[BinaryIO], None]) -> TempArtifact:
        buf = io.BytesIO()
        write(buf)
        return self.save_artifact(buf.getvalue(), name)

    def read_bytes(self, stored: StoredFile) -> bytes:
        with self._lock:
            entry = self._files.get(stored.id)
        if entry is None:
            raise FileNotFoundError(f"Stored file {stored.id} not found")
        return entry[0]

    def delete(self, stored: StoredFile) -> None:
        with self._lock:
            self._files.pop(stored.id, None)

    def exists(self, stored: StoredFile) -> bool:
        with self._lock:
            return stored.id in self._files

    def file_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._files)

    def sweep_expired(self, ttl_seconds: float) -> int:
        if ttl_seconds <= 0:
            return 0
        cutoff = _now_epoch() - ttl_seconds
        with self._lock:
            expired = [fid for fid, (_, created) in self._files.items() if created < cutoff]
            for fid in expired:
                del self._files[fid]
        return len(expired)
