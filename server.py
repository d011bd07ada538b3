from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from typing import List, Optional
from pathlib import Path

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from photoconv_backend.cleanup import CleanupCoordinator
from photoconv_backend.config import (
    ALLOWED_TARGET_FORMATS,
    CLEANUP_INTERVAL_SECONDS,
    CONVERT_TIMEOUT_SECONDS,
    MAX_FILE_BYTES,
    MAX_FILES,
    UPLOAD_TTL_MINUTES,
    UPLOADS_ROOT,
)
from photoconv_backend.dispatch import ConversionJob
from photoconv_backend.errors import ConversionError, ConversionTimeout
from photoconv_backend.logger import get_logger
from photoconv_backend.models import ComposedOutput, ConversionRequest, TargetKind, normalize_target_format
from photoconv_backend.security import content_disposition
from photoconv_backend.store import DiskTempStore, TempFileStore
from photoconv_backend.uploads import store_uploads


BASE_DIR = Path(__file__).resolve().parent
PUBLIC_DIR = BASE_DIR / "public"

logger = get_logger("server")


class UploadedFileInfo(BaseModel):
    id: str
    original_name: str
    size_bytes: int
    mime_type: str


class UploadResponse(BaseModel):
    success: bool = True
    message: str = "Files uploaded successfully"
    files: List[UploadedFileInfo]


class FormatsResponse(BaseModel):
    kinds: List[str]
    image_formats: List[str]
    max_files: int
    max_file_bytes: int


async def _cleanup_worker(app: FastAPI) -> None:
    # Periodically delete uploads nobody converted (and crash leftovers).
    while True:
        try:
            deleted = app.state.store.sweep_expired(UPLOAD_TTL_MINUTES * 60.0)
            if deleted:
                logger.info("Swept %d expired upload(s)", deleted)
        except Exception as exc:
            logger.warning("Upload sweep failed: %s", exc)
        await asyncio.sleep(max(30, CLEANUP_INTERVAL_SECONDS))


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(_cleanup_worker(app))
    app.state._cleanup_task = task
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(lifespan=lifespan)
app.state.store = DiskTempStore(UPLOADS_ROOT)

# The upload page may be opened from disk (Origin: null).
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_store(request: Request) -> TempFileStore:
    return request.app.state.store


@app.exception_handler(ConversionError)
async def _conversion_error(request: Request, exc: ConversionError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": str(exc) or "Internal server error"}, status_code=500)


async def _run_with_deadline(job: ConversionJob) -> ComposedOutput:
    try:
        # run_in_executor futures can be abandoned on timeout; the thread is not waited for.
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(loop.run_in_executor(None, job.run), timeout=CONVERT_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        # The worker thread keeps going; anything it stores from now on is deleted on arrival.
        job.fail()
        raise ConversionTimeout(CONVERT_TIMEOUT_SECONDS) from None


class ConversionResponse(StreamingResponse):
    """Sends a composed output and settles its job however the send ends.

    A failed send (client gone mid-body) marks the job failed; either way its
    stored files are released before the ASGI call returns.
    """

    def __init__(self, job: ConversionJob, output: ComposedOutput) -> None:
        headers = {
            "Content-Disposition": content_disposition(output.filename),
            "Cache-Control": "no-store",
            "X-Content-Type-Options": "nosniff",
            "X-Processed-Count": str(output.processed_count),
            "X-Skipped-Count": str(len(output.skipped_files)),
        }
        if not output.is_streamed:
            headers["Content-Length"] = str(len(output.body))
        super().__init__(job.stream(output), media_type=output.content_type, headers=headers)
        self.job = job

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except BaseException:
            self.job.fail()
            raise
        finally:
            self.job.finish()


async def _convert(
    store: TempFileStore,
    photos: Optional[List[UploadFile]],
    target_kind: TargetKind,
    target_format: Optional[str] = None,
) -> Response:
    cleanup = CleanupCoordinator(store)
    handed_off = False
    try:
        if target_kind is TargetKind.IMAGE_FORMAT:
            # Reject a bad format before storing anything.
            target_format = normalize_target_format(target_format)
        inputs = await store_uploads(photos, store, cleanup)
        request = ConversionRequest.build(inputs, target_kind, target_format)
        job = ConversionJob(request, store, cleanup)
        output = await _run_with_deadline(job)
        response = ConversionResponse(job, output)
        handed_off = True
        return response
    finally:
        if not handed_off:
            cleanup.release()


@app.post("/upload", response_model=UploadResponse)
async def upload(
    photos: Optional[List[UploadFile]] = File(None),
    store: TempFileStore = Depends(get_store),
) -> UploadResponse:
    """Store files without converting them; the periodic sweep removes them later."""
    cleanup = CleanupCoordinator(store)
    try:
        inputs = await store_uploads(photos, store, cleanup)
    except Exception:
        cleanup.release()
        raise
    return UploadResponse(
        files=[
            UploadedFileInfo(
                id=f.id,
                original_name=f.original_name,
                size_bytes=f.size_bytes,
                mime_type=f.declared_mime_type,
            )
            for f in inputs
        ]
    )


@app.post("/convert/zip")
async def convert_zip(
    photos: Optional[List[UploadFile]] = File(None),
    store: TempFileStore = Depends(get_store),
) -> Response:
    return await _convert(store, photos, TargetKind.ZIP)


@app.post("/convert/pdf")
async def convert_pdf(
    photos: Optional[List[UploadFile]] = File(None),
    store: TempFileStore = Depends(get_store),
) -> Response:
    return await _convert(store, photos, TargetKind.PDF)


@app.post("/convert/word")
async def convert_word(
    photos: Optional[List[UploadFile]] = File(None),
    store: TempFileStore = Depends(get_store),
) -> Response:
    return await _convert(store, photos, TargetKind.WORD)


@app.post("/convert/gif")
async def convert_gif(
    photos: Optional[List[UploadFile]] = File(None),
    store: TempFileStore = Depends(get_store),
) -> Response:
    return await _convert(store, photos, TargetKind.GIF)


@app.post("/convert/image/{format}")
async def convert_image(
    format: str,
    photos: Optional[List[UploadFile]] = File(None),
    store: TempFileStore = Depends(get_store),
) -> Response:
    return await _convert(store, photos, TargetKind.IMAGE_FORMAT, format)


@app.get("/api/formats", response_model=FormatsResponse)
async def formats() -> FormatsResponse:
    return FormatsResponse(
        kinds=[k.value for k in TargetKind],
        image_formats=list(ALLOWED_TARGET_FORMATS),
        max_files=MAX_FILES,
        max_file_bytes=MAX_FILE_BYTES,
    )


@app.get("/healthz")
async def healthz() -> JSONResponse:
    return JSONResponse({"ok": True})


# Static file hosting for the upload page, if one is shipped next to the server.
# Note: define API routes above, then mount static at '/'.
if PUBLIC_DIR.is_dir():
    app.mount("/", StaticFiles(directory=str(PUBLIC_DIR), html=True), name="static")


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", "5000"))
    uvicorn.run("server:app", host="0.0.0.0", port=port, reload=False)
