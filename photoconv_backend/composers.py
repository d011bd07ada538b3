"""One composer per output kind.

Each composer turns the ordered list of a request's InputFiles into a single
ComposedOutput. Per-file problems are recorded as skipped FileResults where the
output kind tolerates gaps (pdf, word, image format); zip and gif fail the
whole request instead.
"""
from __future__ import annotations

import io
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Sequence, TypeVar

from docx import Document
from docx.shared import Emu
from PIL import Image
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from . import imaging
from .cleanup import CleanupCoordinator
from .config import (
    DOCX_CONTENT_TYPE,
    GIF_CONTENT_TYPE,
    GIF_FRAME_DELAY_MS,
    GIF_LOOP,
    MAX_FILES,
    PDF_CONTENT_TYPE,
    PDF_PAGE_SIZE,
    WORD_IMAGE_SIZE_PX,
    ZIP_CONTENT_TYPE,
)
from .errors import EncodingFailed, NoValidImages
from .layout import PagePlacement, fit_on_page
from .logger import get_logger
from .models import ComposedOutput, FileResult, InputFile, TargetKind, TempArtifact, normalize_target_format
from .store import TempFileStore
from .zip_utils import build_zip

logger = get_logger(__name__)

T = TypeVar("T")

EMU_PER_PX = 9525

# Formats python-docx can embed as-is; anything else is re-encoded to PNG.
DOCX_NATIVE_FORMATS = {"JPEG", "PNG", "GIF", "BMP", "TIFF"}


@dataclass
class ComposeContext:
    store: TempFileStore
    cleanup: CleanupCoordinator
    job_id: str

    def read(self, input_file: InputFile) -> bytes:
        return self.store.read_bytes(input_file)

    def save_artifact(self, data: bytes, name: str) -> TempArtifact:
        artifact = self.store.save_artifact(data, name)
        self.cleanup.track(artifact)
        return artifact

    def save_artifact_from(self, name: str, write: Callable[[BinaryIO], None]) -> TempArtifact:
        artifact = self.store.save_artifact_from(name, write)
        self.cleanup.track(artifact)
        return artifact


def map_ordered(fn: Callable[[InputFile], T], files: Sequence[InputFile]) -> list[T]:
    """Run fn over files on a bounded thread pool; results keep input order."""
    if len(files) <= 1:
        return [fn(f) for f in files]
    with ThreadPoolExecutor(max_workers=min(len(files), MAX_FILES)) as executor:
        return list(executor.map(fn, files))


def _skip(input_file: InputFile, exc: BaseException) -> FileResult:
    reason = str(exc) or exc.__class__.__name__
    logger.warning("Skipping %s: %s", input_file.original_name, reason)
    return FileResult.skipped(input_file.original_name, reason)


class Composer(ABC):
    kind: TargetKind

    @abstractmethod
    def compose(self, files: Sequence[InputFile], ctx: ComposeContext) -> ComposedOutput:
        ...


class ZipComposer(Composer):
    """Archive the original bytes under their original names. No re-encoding."""

    kind = TargetKind.ZIP

    def compose(self, files: Sequence[InputFile], ctx: ComposeContext) -> ComposedOutput:
        entries: list[tuple[str, bytes]] = []
        for input_file in files:
            try:
                entries.append((input_file.original_name, ctx.read(input_file)))
            except OSError as exc:
                # A partial archive would look like a complete one.
                raise EncodingFailed(f"Could not read {input_file.original_name}: {exc}") from exc

        return ComposedOutput(
            content_type=ZIP_CONTENT_TYPE,
            filename=f"converted-photos-{ctx.job_id}.zip",
            body=build_zip(entries),
            results=[FileResult.ok(f.original_name) for f in files],
        )


class DocumentComposer(Composer):
    """One PDF page per decodable image, scaled to 80% of the page and centered.

    Inputs are measured in parallel from their headers only. Pages are then
    drawn one at a time, each bitmap closed before the next is decoded, and
    the canvas writes straight into a store artifact. reportlab keeps the
    compressed page streams until save(), so the body is streamed from that
    artifact once the last page is drawn.
    """

    kind = TargetKind.PDF

    def __init__(self, page_size: tuple[float, float] = PDF_PAGE_SIZE) -> None:
        self.page_size = page_size

    def _measure(self, ctx: ComposeContext, input_file: InputFile) -> tuple[Optional[PagePlacement], FileResult]:
        try:
            width, height = imaging.image_size(ctx.read(input_file))
            placement = fit_on_page(width, height, self.page_size)
        except Exception as exc:
            return None, _skip(input_file, exc)
        return placement, FileResult.ok(input_file.original_name)

    def _draw_page(self, pdf: canvas.Canvas, ctx: ComposeContext, input_file: InputFile, placement: PagePlacement) -> None:
        with closing(imaging.decode(ctx.read(input_file))) as img, closing(imaging.flatten(img)) as page_image:
            pdf.drawImage(
                ImageReader(page_image),
                placement.x,
                placement.y,
                width=placement.width,
                height=placement.height,
            )

    def compose(self, files: Sequence[InputFile], ctx: ComposeContext) -> ComposedOutput:
        measured = map_ordered(lambda f: self._measure(ctx, f), files)
        results = [result for _, result in measured]
        if all(placement is None for placement, _ in measured):
            raise NoValidImages("No valid images to convert")

        def render(fh: BinaryIO) -> None:
            pdf = canvas.Canvas(fh, pagesize=self.page_size)
            pages = 0
            for index, (placement, _) in enumerate(measured):
                if placement is None:
                    continue
                try:
                    self._draw_page(pdf, ctx, files[index], placement)
                except Exception as exc:
                    results[index] = _skip(files[index], exc)
                    continue
                pdf.showPage()
                pages += 1
            if pages == 0:
                raise NoValidImages("No valid images to convert")
            pdf.save()

        filename = f"converted-photos-{ctx.job_id}.pdf"
        artifact = ctx.save_artifact_from(filename, render)
        return ComposedOutput(
            content_type=PDF_CONTENT_TYPE,
            filename=filename,
            body=ctx.store.iter_chunks(artifact),
            results=results,
        )


class WordComposer(Composer):
    """One paragraph per image, each holding a fixed-size picture."""

    kind = TargetKind.WORD

    def __init__(self, image_size_px: tuple[int, int] = WORD_IMAGE_SIZE_PX) -> None:
        self.image_size_px = image_size_px

    def _prepare(self, ctx: ComposeContext, input_file: InputFile) -> tuple[Optional[bytes], FileResult]:
        try:
            data = ctx.read(input_file)
            with imaging.decode(data) as img:
                if img.format not in DOCX_NATIVE_FORMATS:
                    data = imaging.encode(img, "png")
        except Exception as exc:
            return None, _skip(input_file, exc)
        return data, FileResult.ok(input_file.original_name)

    def compose(self, files: Sequence[InputFile], ctx: ComposeContext) -> ComposedOutput:
        prepared = map_ordered(lambda f: self._prepare(ctx, f), files)
        results = [result for _, result in prepared]
        width, height = (Emu(px * EMU_PER_PX) for px in self.image_size_px)

        document = Document()
        paragraphs = 0
        for index, (data, _) in enumerate(prepared):
            if data is None:
                continue
            paragraph = document.add_paragraph()
            try:
                paragraph.add_run().add_picture(io.BytesIO(data), width=width, height=height)
            except Exception as exc:
                # Drop the empty paragraph again.
                paragraph._p.getparent().remove(paragraph._p)
                results[index] = _skip(files[index], exc)
                continue
            paragraphs += 1

        if paragraphs == 0:
            raise NoValidImages("No valid images to convert")

        buf = io.BytesIO()
        document.save(buf)
        return ComposedOutput(
            content_type=DOCX_CONTENT_TYPE,
            filename=f"converted-photos-{ctx.job_id}.docx",
            body=buf.getvalue(),
            results=results,
        )


class AnimationComposer(Composer):
    """Animated GIF, one frame per input in order.

    Sources are decoded and pre-composed onto one shared canvas before
    encoding, so a single input and many inputs go through the same path.
    A frame that cannot be decoded fails the request; dropping it would
    change the sequence. The GIF encoder folds identical consecutive frames
    into one frame showing for their summed delay, so playback still lasts
    one delay per input.
    """

    kind = TargetKind.GIF

    def __init__(self, delay_ms: int = GIF_FRAME_DELAY_MS, loop: int = GIF_LOOP) -> None:
        self.delay_ms = delay_ms
        self.loop = loop

    def _decode(self, ctx: ComposeContext, input_file: InputFile) -> Image.Image:
        try:
            return imaging.decode(ctx.read(input_file))
        except Exception as exc:
            raise EncodingFailed(f"Could not decode frame {input_file.original_name}: {exc}") from exc

    def compose(self, files: Sequence[InputFile], ctx: ComposeContext) -> ComposedOutput:
        sources = map_ordered(lambda f: self._decode(ctx, f), files)
        try:
            frames = imaging.compose_frames(sources)
            data = imaging.encode_gif(frames, self.delay_ms, self.loop)
        except Exception as exc:
            raise EncodingFailed(f"Could not build animation: {exc}") from exc
        finally:
            for img in sources:
                img.close()

        return ComposedOutput(
            content_type=GIF_CONTENT_TYPE,
            filename=f"converted-photos-{ctx.job_id}.gif",
            body=data,
            results=[FileResult.ok(f.original_name) for f in files],
        )


class FormatComposer(Composer):
    """Re-encode every image into one still-image format.

    One success is sent as the image itself; several are zipped.
    """

    kind = TargetKind.IMAGE_FORMAT

    def __init__(self, target_format: str) -> None:
        self.target_format = normalize_target_format(target_format)

    @property
    def content_type(self) -> str:
        return f"image/{self.target_format}"

    def converted_name(self, input_file: InputFile) -> str:
        return f"{Path(input_file.original_name).stem or 'image'}.{self.target_format}"

    def _convert(self, ctx: ComposeContext, input_file: InputFile) -> tuple[Optional[TempArtifact], FileResult]:
        try:
            data = imaging.reencode(ctx.read(input_file), self.target_format)
            artifact = ctx.save_artifact(data, self.converted_name(input_file))
        except Exception as exc:
            return None, _skip(input_file, exc)
        return artifact, FileResult.ok(input_file.original_name)

    def compose(self, files: Sequence[InputFile], ctx: ComposeContext) -> ComposedOutput:
        converted = map_ordered(lambda f: self._convert(ctx, f), files)
        results = [result for _, result in converted]
        artifacts = [artifact for artifact, _ in converted if artifact is not None]

        if not artifacts:
            raise NoValidImages()

        if len(artifacts) == 1:
            artifact = artifacts[0]
            return ComposedOutput(
                content_type=self.content_type,
                filename=artifact.name,
                body=ctx.store.iter_chunks(artifact),
                results=results,
            )

        try:
            entries = [(artifact.name, ctx.store.read_bytes(artifact)) for artifact in artifacts]
        except OSError as exc:
            raise EncodingFailed(f"Could not read converted image: {exc}") from exc
        return ComposedOutput(
            content_type=ZIP_CONTENT_TYPE,
            filename=f"converted-images-{self.target_format}-{ctx.job_id}.zip",
            body=build_zip(entries),
            results=results,
        )
