"""Three-stage remote classification pipeline.

Architecture:
    classify(image) -> upload -> submit -> fetch -> Success | Failure

Each stage awaits one HTTP call on a shared httpx.AsyncClient. A stage failure
short-circuits the remaining stages and becomes the Failure for that stage.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Self
from urllib.parse import quote

import httpx

from bearclassifier.pipeline.decoding import (
    decode_fetch_structured,
    decode_fetch_verbatim,
    decode_submit,
    decode_upload,
)
from bearclassifier.pipeline.outcome import (
    ClassificationOutcome,
    Failure,
    JobHandle,
    PipelineError,
    PipelineRun,
    PipelineState,
    Stage,
    Success,
    TransportError,
    UploadHandle,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from bearclassifier.config import Settings
    from bearclassifier.pipeline.payload import ImagePayload

logger = logging.getLogger(__name__)

_STAGE_STATES: dict[Stage, PipelineState] = {
    Stage.UPLOAD: PipelineState.UPLOADING,
    Stage.SUBMIT: PipelineState.SUBMITTING,
    Stage.FETCH: PipelineState.FETCHING,
}


class InferenceClient:
    """Turns image bytes into a classification label via the job-based API."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._base_url = settings.base_url.rstrip("/")
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self._active_count: int = 0
        self._counter_lock = threading.Lock()

    # -- Lifecycle ----------------------------------------------------------

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # -- Public API ---------------------------------------------------------

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def active_count(self) -> int:
        """Number of classify calls currently running."""
        with self._counter_lock:
            return self._active_count

    @property
    def in_flight(self) -> bool:
        """True while at least one classify call is running."""
        return self.active_count > 0

    async def classify(
        self,
        image: ImagePayload,
        *,
        on_state: Callable[[PipelineState], None] | None = None,
    ) -> ClassificationOutcome:
        """Run upload -> submit -> fetch and return exactly one outcome.

        Pipeline failures are returned as ``Failure``, never raised. Cancelling
        the awaiting task cancels the pending request.
        """
        run = PipelineRun()
        with self._counter_lock:
            self._active_count += 1
        try:
            outcome = await self._run(run, image, on_state)
        finally:
            with self._counter_lock:
                self._active_count -= 1

        if on_state is not None:
            on_state(PipelineState.DONE)
        return outcome

    async def upload(self, image: ImagePayload) -> UploadHandle:
        """Upload the image as multipart form data and return the server path."""
        image.validate()
        files = {"files": (image.filename, image.content, image.media_type)}
        response = await self._send(
            "POST",
            f"{self._base_url}/upload",
            timeout=self._settings.upload_timeout,
            files=files,
        )
        return decode_upload(response.content)

    async def submit(self, handle: UploadHandle) -> JobHandle:
        """Start a prediction job for an uploaded file and return its event id."""
        response = await self._send(
            "POST",
            f"{self._base_url}/call/predict",
            timeout=self._settings.submit_timeout,
            json={"data": [{"path": handle}]},
        )
        return decode_submit(response.content)

    async def fetch(self, job: JobHandle) -> Success:
        """Read a prediction job's result and decode it into a label."""
        response = await self._send(
            "GET",
            f"{self._base_url}/call/predict/{quote(job, safe='')}",
            timeout=self._settings.fetch_timeout,
        )
        body = response.content
        logger.debug("Result body for %s: %r", job, body[:512])
        if self._settings.fetch_mode == "verbatim":
            text = decode_fetch_verbatim(body)
            return Success(label=text, raw=text)
        return Success(label=decode_fetch_structured(body))

    # -- Internal -----------------------------------------------------------

    async def _run(
        self,
        run: PipelineRun,
        image: ImagePayload,
        on_state: Callable[[PipelineState], None] | None,
    ) -> ClassificationOutcome:
        stage = Stage.UPLOAD
        try:
            self._enter(run, stage, on_state)
            run.upload_handle = await self.upload(image)
            logger.info("Uploaded %s as %s", image.filename, run.upload_handle)

            stage = Stage.SUBMIT
            self._enter(run, stage, on_state)
            run.job_handle = await self.submit(run.upload_handle)
            logger.info("Prediction job started: event_id=%s", run.job_handle)

            stage = Stage.FETCH
            self._enter(run, stage, on_state)
            success = await self.fetch(run.job_handle)
            logger.info("Prediction %s finished: %s", run.job_handle, success.label)
        except PipelineError as exc:
            logger.warning("Classification failed during %s (%s): %s", stage, exc.kind, exc)
            return run.finish(Failure.from_error(stage, exc))
        return run.finish(success)

    @staticmethod
    def _enter(
        run: PipelineRun,
        stage: Stage,
        on_state: Callable[[PipelineState], None] | None,
    ) -> None:
        state = _STAGE_STATES[stage]
        run.advance(state)
        if on_state is not None:
            on_state(state)

    async def _send(self, method: str, url: str, *, timeout: float, **kwargs: object) -> httpx.Response:
        # httpx timeouts bound each read; the deadline bounds the whole stage.
        try:
            async with asyncio.timeout(timeout):
                response = await self._http.request(method, url, timeout=timeout, **kwargs)  # type: ignore[arg-type]
            response.raise_for_status()
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise TransportError(f"Timed out after {timeout:g}s waiting for {url}") from exc
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"HTTP {exc.response.status_code} from {url}: {exc.response.reason_phrase}"
            ) from exc
        except httpx.RequestError as exc:
            raise TransportError(f"Failed to reach {url}: {exc}") from exc
        return response
