"""Shared fixtures.

The server module builds its disk store at import time, so the store root is
pointed at a throwaway directory before anything imports it.
"""
from __future__ import annotations

import io
import os
import tempfile
from typing import Callable

import pytest

os.environ.setdefault("PHOTOCONV_UPLOADS_ROOT", tempfile.mkdtemp(prefix="photoconv-tests-"))

from PIL import Image  # noqa: E402

from photoconv_backend.cleanup import CleanupCoordinator  # noqa: E402
from photoconv_backend.composers import ComposeContext  # noqa: E402
from photoconv_backend.models import InputFile  # noqa: E402
from photoconv_backend.store import MemoryTempStore  # noqa: E402


def image_bytes(
    fmt: str = "PNG",
    size: tuple[int, int] = (40, 30),
    color: tuple[int, ...] = (200, 30, 30),
    mode: str = "RGB",
) -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture()
def make_image() -> Callable[..., bytes]:
    return image_bytes


@pytest.fixture()
def store() -> MemoryTempStore:
    return MemoryTempStore()


@pytest.fixture()
def add_input(store: MemoryTempStore) -> Callable[..., InputFile]:
    def _add(name: str, data: bytes, mime: str = "image/png") -> InputFile:
        return store.save_upload(data, name, mime)

    return _add


@pytest.fixture()
def ctx(store: MemoryTempStore) -> ComposeContext:
    return ComposeContext(store=store, cleanup=CleanupCoordinator(store), job_id="testjob")


@pytest.fixture()
def client(store: MemoryTempStore):
    from fastapi.testclient import TestClient

    from server import app

    previous = app.state.store
    app.state.store = store
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.state.store = previous
