"""Display state for the UI collaborator.

The presenter serializes user-visible submissions (one pending classification
at a time) and turns pipeline progress into an idle/loading/result/error
snapshot. Listeners are called from the event loop that runs the pipeline;
marshalling onto a rendering thread is up to the listener.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from bearclassifier.pipeline.outcome import Failure, PipelineState, Success

if TYPE_CHECKING:
    from collections.abc import Callable

    from bearclassifier.pipeline.client import InferenceClient
    from bearclassifier.pipeline.outcome import ClassificationOutcome
    from bearclassifier.pipeline.payload import ImagePayload

logger = logging.getLogger(__name__)


class DisplayState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    RESULT = "result"
    ERROR = "error"


@dataclass(frozen=True)
class DisplaySnapshot:
    state: DisplayState
    label: str | None = None
    message: str | None = None


class SubmissionInProgressError(RuntimeError):
    """Raised when a submission is made while another is still pending."""


class ClassificationPresenter:
    """Owns the user-visible classification state."""

    def __init__(self, client: InferenceClient) -> None:
        self._client = client
        self._snapshot = DisplaySnapshot(state=DisplayState.IDLE)
        self._pending: asyncio.Task[ClassificationOutcome] | None = None
        self._listeners: list[Callable[[DisplaySnapshot], None]] = []

    @property
    def snapshot(self) -> DisplaySnapshot:
        return self._snapshot

    @property
    def busy(self) -> bool:
        """True while a submission is pending; the UI disables its trigger."""
        return self._pending is not None and not self._pending.done()

    def subscribe(self, listener: Callable[[DisplaySnapshot], None]) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def submit(self, image: ImagePayload) -> asyncio.Task[ClassificationOutcome]:
        """Start classifying ``image`` in the background.

        Must be called from within a running event loop.

        Raises:
            SubmissionInProgressError: If a previous submission is still pending.
        """
        if self.busy:
            raise SubmissionInProgressError("A classification is already in progress")

        self._publish(DisplaySnapshot(state=DisplayState.LOADING))
        task = asyncio.create_task(self._client.classify(image, on_state=self._on_state))
        task.add_done_callback(self._on_done)
        self._pending = task
        return task

    # -- Internal -----------------------------------------------------------

    def _on_state(self, state: PipelineState) -> None:
        logger.debug("Pipeline state: %s", state)
        # The final snapshot comes from the task's done callback.
        if state is not PipelineState.DONE:
            self._publish(DisplaySnapshot(state=DisplayState.LOADING, message=state.value))

    def _on_done(self, task: asyncio.Task[ClassificationOutcome]) -> None:
        if task.cancelled():
            self._publish(DisplaySnapshot(state=DisplayState.IDLE))
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Classification task crashed: %s", exc)
            self._publish(DisplaySnapshot(state=DisplayState.ERROR, message=f"Unexpected error: {exc}"))
            return

        outcome = task.result()
        if isinstance(outcome, Success):
            self._publish(DisplaySnapshot(state=DisplayState.RESULT, label=outcome.label))
        elif isinstance(outcome, Failure):
            self._publish(
                DisplaySnapshot(
                    state=DisplayState.ERROR,
                    message=f"{outcome.stage.capitalize()} error: {outcome.message}",
                )
            )

    def _publish(self, snapshot: DisplaySnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            listener(snapshot)
