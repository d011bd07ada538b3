from pathlib import Path

import pytest

from photoconv_backend.security import (
    content_disposition,
    display_name,
    new_file_id,
    normalize_file_id,
    safe_join,
)


def test_file_ids_are_canonical_uuid4():
    file_id = new_file_id()
    assert normalize_file_id(file_id.upper()) == file_id


@pytest.mark.parametrize("bad", ["", "../etc/passwd", "1234", "not-a-uuid-at-all-but-long-enough-xx"])
def test_normalize_file_id_rejects_garbage(bad):
    with pytest.raises(ValueError):
        normalize_file_id(bad)


def test_safe_join_blocks_traversal(tmp_path: Path):
    assert safe_join(tmp_path, "a.png") == (tmp_path / "a.png").resolve()
    with pytest.raises(ValueError):
        safe_join(tmp_path, "..", "escape.png")


def test_display_name_keeps_last_component():
    assert display_name("C:\\Users\\me\\photo.jpg") == "photo.jpg"
    assert display_name("") == "image"


def test_content_disposition_ascii_and_unicode():
    assert content_disposition("photo.png") == 'attachment; filename="photo.png"'
    header = content_disposition("фото.png")
    header.encode("latin-1")
    assert "filename*=UTF-8''" in header
    assert '"' not in content_disposition('a"b.png').split("filename=", 1)[1].strip('"')
