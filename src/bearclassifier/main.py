"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bearclassifier.api.routes import router
from bearclassifier.config import get_settings
from bearclassifier.pipeline.client import InferenceClient
from bearclassifier.pipeline.presenter import ClassificationPresenter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the shared HTTP pool to the inference service; close it on shutdown.

    The presenter is created here so every request sees the same display state
    and at most one user-visible classification runs at a time.
    """
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Using inference service at %s (fetch_mode=%s, timeouts upload=%gs submit=%gs fetch=%gs)",
        settings.base_url,
        settings.fetch_mode,
        settings.upload_timeout,
        settings.submit_timeout,
        settings.fetch_timeout,
    )

    inference_client = InferenceClient(settings)
    app.state.inference_client = inference_client
    app.state.presenter = ClassificationPresenter(inference_client)
    yield

    if inference_client.in_flight:
        logger.warning("Closing with %d classification(s) still in flight", inference_client.active_count)
    await inference_client.aclose()
    logger.info("Inference service connection pool closed")


def create_app() -> FastAPI:
    """Create the classifier front-end: upload a photo, get back the predicted label."""
    application = FastAPI(
        title="BearClassifier",
        description=(
            "Uploads a photo to a Gradio-style prediction API "
            "(upload, call/predict, call/predict/{event_id}) and returns the predicted label"
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
