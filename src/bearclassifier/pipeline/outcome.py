"""Outcome, state, and error types for the classification pipeline.

A single ``classify`` call moves through the states
``idle -> uploading -> submitting -> fetching -> done`` and resolves to exactly
one :data:`ClassificationOutcome`: a :class:`Success` carrying the label, or a
:class:`Failure` naming the stage that failed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TypeAlias

UploadHandle: TypeAlias = str
JobHandle: TypeAlias = str


class Stage(StrEnum):
    UPLOAD = "upload"
    SUBMIT = "submit"
    FETCH = "fetch"


class ErrorKind(StrEnum):
    TRANSPORT = "transport"
    DECODE = "decode"
    PROTOCOL = "protocol"
    EMPTY_INPUT = "empty_input"


class PipelineState(StrEnum):
    IDLE = "idle"
    UPLOADING = "uploading"
    SUBMITTING = "submitting"
    FETCHING = "fetching"
    DONE = "done"


# ---------------------------------------------------------------------------
# Errors raised inside a stage
# ---------------------------------------------------------------------------


class PipelineError(Exception):
    """Base class for failures raised by a pipeline stage."""

    kind: ErrorKind = ErrorKind.PROTOCOL


class TransportError(PipelineError):
    """Network unreachable, timeout, TLS failure, or a non-2xx response."""

    kind = ErrorKind.TRANSPORT


class DecodeError(PipelineError):
    """Response body is not valid JSON or not valid UTF-8 text."""

    kind = ErrorKind.DECODE


class ProtocolError(PipelineError):
    """Response decoded but a required field is missing or has the wrong shape."""

    kind = ErrorKind.PROTOCOL


class EmptyInputError(PipelineError):
    """Caller supplied no image content or no media type."""

    kind = ErrorKind.EMPTY_INPUT


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Success:
    """A classification label returned by the remote service."""

    label: str
    raw: str | None = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """A pipeline failure tagged with the stage where it happened."""

    stage: Stage
    message: str
    kind: ErrorKind = ErrorKind.PROTOCOL

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_error(cls, stage: Stage, error: PipelineError) -> Failure:
        return cls(stage=stage, message=str(error), kind=error.kind)


ClassificationOutcome: TypeAlias = Success | Failure


@dataclass
class PipelineRun:
    """Mutable state owned by exactly one ``classify`` invocation."""

    state: PipelineState = PipelineState.IDLE
    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])
    upload_handle: UploadHandle | None = None
    job_handle: JobHandle | None = None
    outcome: ClassificationOutcome | None = None

    def advance(self, state: PipelineState) -> None:
        if self.state is PipelineState.DONE:
            raise RuntimeError("Pipeline run already finished")
        self.state = state
        self.history.append(state)

    def finish(self, outcome: ClassificationOutcome) -> ClassificationOutcome:
        self.advance(PipelineState.DONE)
        self.outcome = outcome
        return outcome
