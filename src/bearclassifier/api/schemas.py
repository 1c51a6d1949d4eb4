"""Pydantic response schemas for the BearClassifier API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ClassifyResponse(BaseModel):
    """Outcome of one classification request."""

    ok: bool
    label: str | None = Field(default=None, description="Predicted label when ok is true")
    stage: str | None = Field(default=None, description="Failed stage: 'upload', 'submit', or 'fetch'")
    kind: str | None = Field(
        default=None,
        description="Failure kind: 'transport', 'decode', 'protocol', or 'empty_input'",
    )
    message: str | None = None


class StatusResponse(BaseModel):
    """Current display state of the classifier."""

    state: str = Field(description="Display state: 'idle', 'loading', 'result', or 'error'")
    label: str | None = None
    message: str | None = None
    in_flight: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    base_url: str
    fetch_mode: str
    in_flight: bool
    active_requests: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
