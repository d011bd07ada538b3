from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Sequence, Union

from .config import ALLOWED_TARGET_FORMATS, MAX_FILES
from .errors import NoFilesUploaded, TooManyFiles, UnsupportedFormat


class TargetKind(str, Enum):
    ZIP = "zip"
    PDF = "pdf"
    WORD = "word"
    GIF = "gif"
    IMAGE_FORMAT = "image-format"


class ConversionState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class InputFile:
    id: str
    original_name: str
    storage_path: Path
    size_bytes: int
    declared_mime_type: str


@dataclass(frozen=True)
class TempArtifact:
    id: str
    name: str
    storage_path: Path
    size_bytes: int


StoredFile = Union[InputFile, TempArtifact]


def normalize_target_format(target_format: Optional[str]) -> str:
    fmt = (target_format or "").strip().lower()
    if fmt not in ALLOWED_TARGET_FORMATS:
        raise UnsupportedFormat(target_format)
    return fmt


@dataclass(frozen=True)
class ConversionRequest:
    files: tuple[InputFile, ...]
    target_kind: TargetKind
    target_format: Optional[str] = None

    @classmethod
    def build(
        cls,
        files: Sequence[InputFile],
        target_kind: Union[TargetKind, str],
        target_format: Optional[str] = None,
    ) -> "ConversionRequest":
        """Validate the request shape; raises InputValidationError subclasses."""
        try:
            kind = TargetKind(target_kind)
        except ValueError:
            raise UnsupportedFormat(str(target_kind)) from None
        if not files:
            raise NoFilesUploaded()
        if len(files) > MAX_FILES:
            raise TooManyFiles()
        fmt = normalize_target_format(target_format) if kind is TargetKind.IMAGE_FORMAT else None
        return cls(files=tuple(files), target_kind=kind, target_format=fmt)


@dataclass(frozen=True)
class FileResult:
    original_name: str
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.reason is None

    @classmethod
    def ok(cls, original_name: str) -> "FileResult":
        return cls(original_name)

    @classmethod
    def skipped(cls, original_name: str, reason: str) -> "FileResult":
        return cls(original_name, reason or "unknown error")


@dataclass(frozen=True)
class SkippedFile:
    original_name: str
    reason: str


@dataclass(frozen=True)
class Success:
    content_type: str
    filename: str
    body: Union[bytes, Iterator[bytes]]


@dataclass(frozen=True)
class PartialSuccess(Success):
    processed_count: int = 0
    skipped_files: tuple[SkippedFile, ...] = ()


@dataclass(frozen=True)
class Failure:
    reason: str
    status_code: int = 500


ConversionOutcome = Union[Success, PartialSuccess, Failure]


@dataclass
class ComposedOutput:
    content_type: str
    filename: str
    body: Union[bytes, Iterator[bytes]]
    results: list[FileResult] = field(default_factory=list)

    @property
    def processed_count(self) -> int:
        return sum(1 for r in self.results if r.succeeded)

    @property
    def skipped_files(self) -> tuple[SkippedFile, ...]:
        return tuple(SkippedFile(r.original_name, r.reason or "") for r in self.results if not r.succeeded)

    @property
    def is_streamed(self) -> bool:
        return not isinstance(self.body, (bytes, bytearray))

    def outcome(self) -> ConversionOutcome:
        skipped = self.skipped_files
        if not skipped:
            return Success(self.content_type, self.filename, self.body)
        return PartialSuccess(
            self.content_type,
            self.filename,
            self.body,
            processed_count=self.processed_count,
            skipped_files=skipped,
        )
