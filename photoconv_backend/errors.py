"""Error taxonomy for conversion requests.

Every error carries the HTTP status the server answers with; per-file
processing problems are not errors here, they are recorded as skipped
FileResults by the composers.
"""
from __future__ import annotations

from .config import MAX_FILE_BYTES, MAX_FILES


class ConversionError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InputValidationError(ConversionError):
    status_code = 400


class NoFilesUploaded(InputValidationError):
    def __init__(self) -> None:
        super().__init__("No files uploaded")


class UnsupportedFormat(InputValidationError):
    def __init__(self, fmt: str | None = None) -> None:
        super().__init__("Unsupported format")
        self.format = fmt


class TooManyFiles(InputValidationError):
    def __init__(self) -> None:
        super().__init__(f"Too many files. Maximum is {MAX_FILES} files.")


class FileTooLarge(InputValidationError):
    def __init__(self) -> None:
        super().__init__(f"File too large. Maximum size is {MAX_FILE_BYTES // (1024 * 1024)}MB.")


class InvalidFileType(InputValidationError):
    def __init__(self) -> None:
        super().__init__("Only image files are allowed!")


class NoValidImages(ConversionError):
    def __init__(self, message: str = "No files were successfully converted") -> None:
        super().__init__(message)


class EncodingFailed(ConversionError):
    pass


class ConversionTimeout(ConversionError):
    def __init__(self, seconds: float) -> None:
        super().__init__(f"Conversion timed out after {seconds:g} seconds")
