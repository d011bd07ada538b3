"""Pillow-backed decode/encode helpers shared by the composers."""
from __future__ import annotations

import io
from typing import Sequence

from PIL import Image

_PIL_FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "gif": "GIF",
    "bmp": "BMP",
    "tiff": "TIFF",
}

# Modes each target can write directly; anything else is converted first.
_WRITABLE_MODES = {
    "JPEG": {"L", "RGB", "CMYK"},
    "PNG": {"1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"},
    "WEBP": {"RGB", "RGBA"},
    "GIF": {"1", "L", "P", "RGB", "RGBA"},
    "BMP": {"1", "L", "P", "RGB", "RGBA"},
    "TIFF": {"1", "L", "LA", "P", "RGB", "RGBA", "CMYK", "I;16"},
}

WHITE = (255, 255, 255)


def get_pil_format(format_str: str) -> str:
    """Convert format string to PIL format name."""
    return _PIL_FORMATS.get(format_str.lower(), format_str.upper())


def decode(data: bytes) -> Image.Image:
    """Fully decode the first frame of an image.

    Truncated or corrupt files raise here rather than later while encoding.
    """
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def image_size(data: bytes) -> tuple[int, int]:
    with Image.open(io.BytesIO(data)) as img:
        return img.size


def has_alpha(img: Image.Image) -> bool:
    if img.mode in ("RGBA", "LA", "PA"):
        return True
    return img.mode == "P" and "transparency" in img.info


def flatten(img: Image.Image, background: tuple[int, int, int] = WHITE) -> Image.Image:
    """Composite an image onto an opaque RGB background."""
    if not has_alpha(img):
        return img.convert("RGB")
    rgba = img.convert("RGBA")
    canvas = Image.new("RGB", rgba.size, background)
    canvas.paste(rgba, mask=rgba.getchannel("A"))
    return canvas


def _prepare_for(img: Image.Image, pil_format: str) -> Image.Image:
    writable = _WRITABLE_MODES.get(pil_format)
    if writable is None or img.mode in writable:
        return img
    if pil_format == "JPEG":
        return flatten(img)
    return img.convert("RGBA" if has_alpha(img) else "RGB")


def encode(img: Image.Image, fmt: str) -> bytes:
    pil_format = get_pil_format(fmt)
    if pil_format == "JPEG" and has_alpha(img):
        # JPEG does not support an alpha channel
        img = flatten(img)
    img = _prepare_for(img, pil_format)

    save_kwargs: dict[str, object] = {}
    if pil_format == "PNG":
        save_kwargs["optimize"] = True
    elif pil_format in ("JPEG", "WEBP"):
        save_kwargs["quality"] = 90

    buf = io.BytesIO()
    img.save(buf, format=pil_format, **save_kwargs)
    return buf.getvalue()


def reencode(data: bytes, fmt: str) -> bytes:
    """Decode an image and encode it into the target still-image format."""
    with decode(data) as img:
        return encode(img, fmt)


def compose_frames(images: Sequence[Image.Image], background: tuple[int, int, int] = WHITE) -> list[Image.Image]:
    """Place every source image on a shared canvas so they form one frame sequence.

    The canvas is as large as the widest and tallest source; each image is
    centered on it over the background colour.
    """
    if not images:
        return []
    width = max(img.width for img in images)
    height = max(img.height for img in images)
    frames = []
    for img in images:
        frame = Image.new("RGB", (width, height), background)
        offset = ((width - img.width) // 2, (height - img.height) // 2)
        if has_alpha(img):
            rgba = img.convert("RGBA")
            frame.paste(rgba, offset, mask=rgba.getchannel("A"))
        else:
            frame.paste(img.convert("RGB"), offset)
        frames.append(frame)
    return frames


def encode_gif(frames: Sequence[Image.Image], delay_ms: int, loop: int = 0) -> bytes:
    """Encode frames as an animated GIF.

    Pillow merges a frame identical to the one before it and adds its
    duration to that frame.
    """
    if not frames:
        raise ValueError("No frames to encode")
    buf = io.BytesIO()
    first, rest = frames[0], list(frames[1:])
    first.save(
        buf,
        format="GIF",
        save_all=True,
        append_images=rest,
        duration=delay_ms,
        loop=loop,
    )
    return buf.getvalue()
