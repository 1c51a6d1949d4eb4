"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Request, UploadFile, status
from fastapi.responses import JSONResponse

from bearclassifier.api.schemas import ClassifyResponse, ErrorResponse, HealthResponse, StatusResponse
from bearclassifier.pipeline.outcome import Success
from bearclassifier.pipeline.payload import ImagePayload
from bearclassifier.pipeline.presenter import SubmissionInProgressError

if TYPE_CHECKING:
    from bearclassifier.config import Settings
    from bearclassifier.pipeline.client import InferenceClient
    from bearclassifier.pipeline.presenter import ClassificationPresenter

router = APIRouter(prefix="/api/v1")


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_client(request: Request) -> InferenceClient:
    client: InferenceClient = request.app.state.inference_client
    return client


def _get_presenter(request: Request) -> ClassificationPresenter:
    presenter: ClassificationPresenter = request.app.state.presenter
    return presenter


@router.post(
    "/classify",
    response_model=ClassifyResponse,
    responses={
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    },
    summary="Classify an image with the remote model",
)
async def classify(request: Request, file: UploadFile) -> ClassifyResponse | JSONResponse:
    """Upload an image to the inference service and return its label."""
    settings = _get_settings(request)
    presenter = _get_presenter(request)

    content = await file.read(settings.max_file_size + 1)
    if len(content) > settings.max_file_size:
        return JSONResponse(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            content={"detail": f"Image exceeds {settings.max_file_size} bytes"},
        )

    image = ImagePayload(
        content=content,
        media_type=file.content_type or settings.default_media_type,
        filename=file.filename or settings.upload_filename,
    )
    try:
        task = presenter.submit(image)
    except SubmissionInProgressError as exc:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})

    outcome = await task
    if isinstance(outcome, Success):
        return ClassifyResponse(ok=True, label=outcome.label)
    return ClassifyResponse(
        ok=False,
        stage=outcome.stage.value,
        kind=outcome.kind.value,
        message=outcome.message,
    )


@router.get(
    "/status",
    response_model=StatusResponse,
    summary="Current classification state",
)
async def classification_status(request: Request) -> StatusResponse:
    """Return the display state of the most recent classification."""
    presenter = _get_presenter(request)
    client = _get_client(request)
    snapshot = presenter.snapshot
    return StatusResponse(
        state=snapshot.state.value,
        label=snapshot.label,
        message=snapshot.message,
        in_flight=client.in_flight,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    client = _get_client(request)
    return HealthResponse(
        status="ok",
        base_url=client.base_url,
        fetch_mode=settings.fetch_mode,
        in_flight=client.in_flight,
        active_requests=client.active_count,
    )
