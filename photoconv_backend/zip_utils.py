from __future__ import annotations

import io
import warnings
import zipfile
from typing import Iterable


def build_zip(entries: Iterable[tuple[str, bytes]]) -> bytes:
    """Build a ZIP from (name, data) pairs, in the order given.

    Duplicate names are written as separate entries; nothing is renamed or
    dropped. Image payloads are already compressed, so entries are stored.
    """
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_STORED) as zf:
        with warnings.catch_warnings():
            # zipfile warns on duplicate names; they are kept on purpose.
            warnings.simplefilter("ignore", UserWarning)
            for name, data in entries:
                zf.writestr(name, data)
    return buf.getvalue()

