"""Upload boundary: validate multipart files and put them in the temp store."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Optional, Sequence

from fastapi import UploadFile

from .cleanup import CleanupCoordinator
from .config import ALLOWED_MIME_RE, MAX_FILE_BYTES, MAX_FILES
from .errors import FileTooLarge, InvalidFileType, NoFilesUploaded, TooManyFiles
from .models import InputFile
from .store import TempFileStore

_ALLOWED_TYPES_RE = re.compile(ALLOWED_MIME_RE)


def is_allowed_image(filename: str, content_type: Optional[str]) -> bool:
    """Extension and declared MIME type must both name an accepted image type."""
    ext = Path(filename or "").suffix.lower()
    return bool(_ALLOWED_TYPES_RE.search(ext)) and bool(_ALLOWED_TYPES_RE.search((content_type or "").lower()))


async def store_uploads(
    uploads: Optional[Sequence[UploadFile]],
    store: TempFileStore,
    cleanup: CleanupCoordinator,
) -> list[InputFile]:
    """Validate uploads and store them in order.

    Count and type are checked before anything is written. Every stored file
    is tracked by cleanup, so a failure half way leaves nothing behind once
    the caller releases it.
    """
    # Browsers send an empty part when no file was picked.
    files = [u for u in (uploads or []) if u.filename]
    if len(files) > MAX_FILES:
        raise TooManyFiles()
    if not files:
        raise NoFilesUploaded()
    for upload in files:
        if not is_allowed_image(upload.filename, upload.content_type):
            raise InvalidFileType()

    stored: list[InputFile] = []
    for upload in files:
        # Limit read to one byte past the cap so oversized files are detected cheaply.
        data = await upload.read(MAX_FILE_BYTES + 1)
        if len(data) > MAX_FILE_BYTES:
            raise FileTooLarge()
        input_file = store.save_upload(data, upload.filename, upload.content_type or "")
        stored.append(cleanup.track(input_file))
    return stored
