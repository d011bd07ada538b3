import io
import zipfile


def read_zip_entries(zip_bytes: bytes) -> list[tuple[str, bytes]]:
    """Return (name, data) for every file entry, duplicates included, in archive order."""
    with zipfile.ZipFile(io.BytesIO(zip_bytes)) as zf:
        return [(info.filename, zf.read(info)) for info in zf.infolist() if not info.is_dir()]
