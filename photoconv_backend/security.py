from __future__ import annotations

import re
import uuid
from pathlib import Path
from urllib.parse import quote


_FILE_ID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}$")
_UNSAFE_HEADER_CHARS_RE = re.compile(r'["\\\r\n]')


def new_file_id() -> str:
    return str(uuid.uuid4())


def normalize_file_id(file_id: str) -> str:
    """Validate and normalize a stored file id.

    Ids double as on-disk names inside the store, so they are validated
    strictly to keep them from carrying path tricks.
    """
    if not isinstance(file_id, str):
        raise ValueError("Invalid file id")
    file_id = file_id.strip()
    if not _FILE_ID_RE.match(file_id):
        raise ValueError("Invalid file id")
    return str(uuid.UUID(file_id))


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir."""
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved


def display_name(original_name: str) -> str:
    """Reduce a client-supplied filename to its last path component."""
    name = (original_name or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    return name or "image"


def content_disposition(filename: str) -> str:
    """Build an attachment header value that survives non-ASCII names.

    Starlette encodes headers as latin-1, so the plain filename= parameter
    gets an ASCII fallback and the real name travels in filename*.
    """
    cleaned = _UNSAFE_HEADER_CHARS_RE.sub("_", filename)
    ascii_name = cleaned.encode("ascii", errors="replace").decode("ascii").replace("?", "_")
    if ascii_name == cleaned:
        return f'attachment; filename="{cleaned}"'
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(cleaned, safe='')}"


def new_job_id() -> str:
    """Short random token used in generated download names."""
    return uuid.uuid4().hex[:12]
