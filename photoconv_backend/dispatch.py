"""Strategy selection and the per-request conversion job."""
from __future__ import annotations

import threading
from typing import Iterator, Optional, Union

from .cleanup import CleanupCoordinator
from .composers import (
    AnimationComposer,
    ComposeContext,
    Composer,
    DocumentComposer,
    FormatComposer,
    WordComposer,
    ZipComposer,
)
from .errors import ConversionError, UnsupportedFormat
from .logger import get_logger
from .models import (
    ComposedOutput,
    ConversionOutcome,
    ConversionRequest,
    ConversionState,
    Failure,
    TargetKind,
)
from .security import new_job_id
from .store import TempFileStore

logger = get_logger(__name__)

_TERMINAL_STATES = {ConversionState.DONE, ConversionState.FAILED}


def select_composer(target_kind: Union[TargetKind, str], target_format: Optional[str] = None) -> Composer:
    """Map an output kind to its composer.

    Only the image-format target is checked here; everything else about the
    inputs is the composer's business.
    """
    try:
        kind = TargetKind(target_kind)
    except ValueError:
        raise UnsupportedFormat(str(target_kind)) from None

    if kind is TargetKind.ZIP:
        return ZipComposer()
    if kind is TargetKind.PDF:
        return DocumentComposer()
    if kind is TargetKind.WORD:
        return WordComposer()
    if kind is TargetKind.GIF:
        return AnimationComposer()
    return FormatComposer(target_format or "")


class ConversionJob:
    """Runs one ConversionRequest and owns its state and cleanup.

    State moves pending -> processing -> streaming -> done, or to failed from
    any non-terminal state. Cleanup fires once, when the job reaches a
    terminal state.
    """

    def __init__(
        self,
        request: ConversionRequest,
        store: TempFileStore,
        cleanup: Optional[CleanupCoordinator] = None,
        job_id: Optional[str] = None,
    ) -> None:
        self.request = request
        self.store = store
        self.cleanup = cleanup or CleanupCoordinator(store)
        self.cleanup.track_all(request.files)
        self.job_id = job_id or new_job_id()
        self._state = ConversionState.PENDING
        self._state_lock = threading.Lock()

    @property
    def state(self) -> ConversionState:
        return self._state

    def _transition(self, state: ConversionState) -> bool:
        with self._state_lock:
            if self._state in _TERMINAL_STATES:
                return False
            self._state = state
            return True

    def run(self) -> ComposedOutput:
        self._transition(ConversionState.PROCESSING)
        try:
            composer = select_composer(self.request.target_kind, self.request.target_format)
            ctx = ComposeContext(store=self.store, cleanup=self.cleanup, job_id=self.job_id)
            output = composer.compose(self.request.files, ctx)
        except Exception as exc:
            logger.error("Conversion %s to %s failed: %s", self.job_id, self.request.target_kind.value, exc)
            self.fail()
            raise
        logger.info(
            "Conversion %s to %s: %d processed, %d skipped",
            self.job_id,
            self.request.target_kind.value,
            output.processed_count,
            len(output.skipped_files),
        )
        return output

    def mark_streaming(self) -> None:
        self._transition(ConversionState.STREAMING)

    def fail(self) -> None:
        self._transition(ConversionState.FAILED)
        self.cleanup.release()

    def finish(self) -> None:
        self._transition(ConversionState.DONE)
        self.cleanup.release()

    def stream(self, output: ComposedOutput) -> Iterator[bytes]:
        """Yield the output body, then clean up.

        Headers are committed before the first chunk, so an error while
        streaming only truncates the body.
        """
        body = output.body
        chunks = iter((bytes(body),)) if isinstance(body, (bytes, bytearray)) else body
        try:
            for chunk in chunks:
                if not chunk:
                    continue
                self.mark_streaming()
                yield chunk
        except Exception as exc:
            logger.error("Stream of %s truncated: %s", output.filename, exc)
            self.fail()
        finally:
            self.finish()


def convert(request: ConversionRequest, store: TempFileStore) -> ConversionOutcome:
    """Run a conversion to completion and return its outcome with the body in memory.

    Stored inputs and artifacts are gone when this returns.
    """
    job = ConversionJob(request, store)
    try:
        output = job.run()
        body = b"".join(job.stream(output))
    except ConversionError as exc:
        return Failure(reason=exc.message, status_code=exc.status_code)
    finally:
        job.finish()

    if job.state is ConversionState.FAILED:
        return Failure(reason="Output stream was truncated")
    output.body = body
    return output.outcome()
