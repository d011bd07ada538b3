from __future__ import annotations

import os
from pathlib import Path


# Root directory of the temp file store.
# Default: project-local ./uploads for easier inspection and cleanup.
# Override with env var PHOTOCONV_UPLOADS_ROOT.
_root_raw = os.environ.get("PHOTOCONV_UPLOADS_ROOT")
if _root_raw and _root_raw.strip():
    UPLOADS_ROOT = Path(_root_raw)
else:
    # photoconv_backend/ -> project root
    UPLOADS_ROOT = Path(__file__).resolve().parent.parent / "uploads"
UPLOADS_ROOT = UPLOADS_ROOT.resolve()

# Upload limits (enforced at the upload boundary, before any conversion).
MAX_FILES = int(os.environ.get("PHOTOCONV_MAX_FILES", "10"))
MAX_FILE_BYTES = int(os.environ.get("PHOTOCONV_MAX_FILE_BYTES", str(50 * 1024 * 1024)))  # 50MB

# Request-scoped deadline for one conversion.
CONVERT_TIMEOUT_SECONDS = float(os.environ.get("PHOTOCONV_CONVERT_TIMEOUT_SECONDS", "120"))

# Files left behind by /upload (or a crash) are swept after this long.
UPLOAD_TTL_MINUTES = float(os.environ.get("PHOTOCONV_UPLOAD_TTL_MINUTES", "30"))

# How often the server scans for orphaned uploads.
CLEANUP_INTERVAL_SECONDS = int(os.environ.get("PHOTOCONV_CLEANUP_INTERVAL_SECONDS", "300"))

# Animated GIF timing.
GIF_FRAME_DELAY_MS = int(os.environ.get("PHOTOCONV_GIF_FRAME_DELAY_MS", "500"))
GIF_LOOP = 0  # loop forever

# Accepted uploads: extension and declared MIME type must both match.
ALLOWED_IMAGE_EXTS = {".jpeg", ".jpg", ".png", ".gif", ".bmp", ".webp", ".tiff"}
ALLOWED_MIME_RE = r"jpeg|jpg|png|gif|bmp|webp|tiff"

# Target formats for /convert/image/{format}.
ALLOWED_TARGET_FORMATS = ("jpeg", "png", "webp", "gif", "bmp", "tiff")

# PDF page geometry in points (US Letter) and how much of it an image may fill.
PDF_PAGE_SIZE = (612.0, 792.0)
PDF_FIT_RATIO = 0.8

# Word pictures are embedded at a fixed size, in pixels.
WORD_IMAGE_SIZE_PX = (400, 300)

# Streaming chunk size for artifacts sent from the store.
STREAM_CHUNK_BYTES = 64 * 1024

ZIP_CONTENT_TYPE = "application/zip"
PDF_CONTENT_TYPE = "application/pdf"
DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
GIF_CONTENT_TYPE = "image/gif"
