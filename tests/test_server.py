import asyncio
import io
import re
import time
import zipfile
from collections import Counter

import pytest
from PIL import Image

import photoconv_backend.dispatch as dispatch
import photoconv_backend.uploads as uploads
import server
from photoconv_backend.dispatch import ConversionJob
from photoconv_backend.models import ConversionRequest, ConversionState, TargetKind
from photoconv_backend.store import MemoryTempStore
from tests.helpers import read_zip_entries


def photo(name, data, mime="image/png"):
    return ("photos", (name, data, mime))


def test_zip_roundtrip_and_cleanup(client, store, make_image):
    a, b = make_image(color=(1, 2, 3)), make_image("JPEG")
    resp = client.post(
        "/convert/zip",
        files=[photo("a.png", a), photo("b.jpg", b, "image/jpeg"), photo("a.png", a)],
    )

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/zip"
    disposition = resp.headers["content-disposition"]
    assert disposition.startswith('attachment; filename="converted-photos-')
    assert disposition.endswith('.zip"')
    assert read_zip_entries(resp.content) == [("a.png", a), ("b.jpg", b), ("a.png", a)]
    assert store.file_ids() == []


def test_pdf_partial_success(client, store, make_image):
    resp = client.post(
        "/convert/pdf",
        files=[
            photo("one.png", make_image()),
            photo("two.jpg", b"corrupt", "image/jpeg"),
            photo("three.png", make_image(size=(10, 50))),
        ],
    )

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert resp.headers["x-processed-count"] == "2"
    assert resp.headers["x-skipped-count"] == "1"
    assert resp.content.startswith(b"%PDF")
    assert len(re.findall(rb"/Type\s*/Page(?![a-zA-Z])", resp.content)) == 2
    assert store.file_ids() == []


def test_pdf_all_bad_is_a_server_error(client, store):
    resp = client.post("/convert/pdf", files=[photo("x.png", b"nope")])
    assert resp.status_code == 500
    assert "error" in resp.json()
    assert store.file_ids() == []


def test_word_document(client, store, make_image):
    resp = client.post("/convert/word", files=[photo("a.png", make_image()), photo("b.png", make_image())])
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    assert resp.headers["content-disposition"].endswith('.docx"')
    assert zipfile.is_zipfile(io.BytesIO(resp.content))
    assert store.file_ids() == []


def test_gif_animation(client, store, make_image):
    resp = client.post(
        "/convert/gif",
        files=[photo("a.png", make_image(color=(255, 0, 0))), photo("b.png", make_image(color=(0, 0, 255)))],
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/gif"
    with Image.open(io.BytesIO(resp.content)) as gif:
        assert gif.n_frames == 2
    assert store.file_ids() == []


def test_gif_with_bad_frame_fails(client, store, make_image):
    resp = client.post("/convert/gif", files=[photo("a.png", make_image()), photo("b.png", b"bad")])
    assert resp.status_code == 500
    assert store.file_ids() == []


def test_single_image_format_conversion(client, store, make_image):
    resp = client.post("/convert/image/png", files=[photo("holiday.jpg", make_image("JPEG"), "image/jpeg")])

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    assert resp.headers["content-disposition"] == 'attachment; filename="holiday.png"'
    with Image.open(io.BytesIO(resp.content)) as img:
        assert img.format == "PNG"
    assert store.file_ids() == []


def test_multi_image_format_conversion(client, store, make_image):
    resp = client.post(
        "/convert/image/JPEG",
        files=[photo("a.png", make_image()), photo("b.png", make_image(mode="RGBA", color=(1, 2, 3, 4)))],
    )

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/zip"
    assert 'filename="converted-images-jpeg-' in resp.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(resp.content)) as zf:
        assert [i.filename for i in zf.infolist()] == ["a.jpeg", "b.jpeg"]
    assert store.file_ids() == []


def test_unsupported_format_is_rejected_before_storing(client, store, make_image):
    resp = client.post("/convert/image/svg", files=[photo("a.png", make_image())])
    assert resp.status_code == 400
    assert resp.json() == {"error": "Unsupported format"}
    assert store.file_ids() == []


@pytest.mark.parametrize("route", ["/convert/zip", "/convert/pdf", "/convert/word", "/convert/gif", "/convert/image/png"])
def test_no_files(client, route):
    resp = client.post(route)
    assert resp.status_code == 400
    assert resp.json() == {"error": "No files uploaded"}


def test_too_many_files_never_reach_the_selector(client, store, make_image, monkeypatch):
    def _unreachable(*args, **kwargs):
        raise AssertionError("selector must not run")

    monkeypatch.setattr(dispatch, "select_composer", _unreachable)
    data = make_image()
    resp = client.post("/convert/zip", files=[photo(f"{i}.png", data) for i in range(11)])

    assert resp.status_code == 400
    assert resp.json() == {"error": "Too many files. Maximum is 10 files."}
    assert store.file_ids() == []


def test_non_image_upload_is_rejected(client, store):
    resp = client.post("/convert/zip", files=[photo("notes.txt", b"hello", "text/plain")])
    assert resp.status_code == 400
    assert resp.json() == {"error": "Only image files are allowed!"}
    assert store.file_ids() == []


def test_oversized_file_is_rejected_and_earlier_files_cleaned(client, store, make_image, monkeypatch):
    small = b"x" * 8
    monkeypatch.setattr(uploads, "MAX_FILE_BYTES", 16)
    resp = client.post(
        "/convert/zip",
        files=[photo("small.png", small), photo("big.png", make_image())],
    )
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("File too large.")
    assert store.file_ids() == []


def test_conversion_deadline(client, store, make_image, monkeypatch):
    original_run = ConversionJob.run

    def slow_run(self):
        time.sleep(0.5)
        return original_run(self)

    monkeypatch.setattr(ConversionJob, "run", slow_run)
    monkeypatch.setattr(server, "CONVERT_TIMEOUT_SECONDS", 0.05)

    started = time.monotonic()
    resp = client.post("/convert/pdf", files=[photo("a.png", make_image())])

    # The response does not wait for the abandoned worker.
    assert time.monotonic() - started < 0.45
    assert resp.status_code == 500
    assert "timed out" in resp.json()["error"]
    assert store.file_ids() == []


def test_upload_endpoint_stores_files(client, store, make_image):
    resp = client.post("/upload", files=[photo("a.png", make_image()), photo("b.png", make_image())])
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert [f["original_name"] for f in body["files"]] == ["a.png", "b.png"]
    assert sorted(f["id"] for f in body["files"]) == store.file_ids()


def test_formats_and_health(client):
    formats = client.get("/api/formats").json()
    assert formats["image_formats"] == ["jpeg", "png", "webp", "gif", "bmp", "tiff"]
    assert "image-format" in formats["kinds"]
    assert formats["max_files"] == 10
    assert client.get("/healthz").json() == {"ok": True}


class DeleteCountingStore(MemoryTempStore):
    def __init__(self):
        super().__init__()
        self.deletes = Counter()

    def delete(self, stored):
        self.deletes[stored.id] += 1
        super().delete(stored)


@pytest.mark.parametrize(
    "route, stored_count",
    [("/convert/zip", 2), ("/convert/pdf", 3), ("/convert/image/png", 4)],
)
def test_each_stored_file_is_deleted_exactly_once(client, make_image, route, stored_count):
    counting = DeleteCountingStore()
    client.app.state.store = counting

    resp = client.post(route, files=[photo("a.png", make_image()), photo("b.png", make_image(size=(9, 9)))])

    assert resp.status_code == 200
    assert counting.file_ids() == []
    assert len(counting.deletes) == stored_count
    assert set(counting.deletes.values()) == {1}


def test_buffered_response_sets_content_length(client, make_image):
    resp = client.post("/convert/word", files=[photo("a.png", make_image())])
    assert resp.headers["content-length"] == str(len(resp.content))


def test_failed_send_still_releases_stored_files(store, make_image):
    upload = store.save_upload(make_image(), "a.png", "image/png")
    job = ConversionJob(ConversionRequest.build([upload], TargetKind.ZIP, None), store)
    response = server.ConversionResponse(job, job.run())

    async def receive():
        await asyncio.sleep(10)
        return {"type": "http.disconnect"}

    async def send(message):
        if message["type"] == "http.response.body":
            raise OSError("connection reset by peer")

    scope = {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.4"},
        "http_version": "1.1",
        "method": "POST",
        "path": "/convert/zip",
        "headers": [],
    }
    with pytest.raises(Exception):
        asyncio.run(response(scope, receive, send))

    assert store.file_ids() == []
    assert job.state is ConversionState.FAILED
