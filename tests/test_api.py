"""Tests for the BearClassifier HTTP front-end."""

from __future__ import annotations

import asyncio
import io
import os
from typing import TYPE_CHECKING
from unittest.mock import patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import httpx
import pytest
from fastapi import FastAPI, status

from bearclassifier.config import get_settings
from bearclassifier.main import create_app, lifespan
from bearclassifier.pipeline.client import InferenceClient
from bearclassifier.pipeline.presenter import ClassificationPresenter


async def _backend(request: httpx.Request) -> httpx.Response:
    """Fake inference service: fails uploads containing 'corrupt', stalls on 'slow'."""
    if request.url.path.endswith("/upload"):
        if b"slow" in request.content:
            await asyncio.sleep(0.2)
        if b"corrupt" in request.content:
            return httpx.Response(200, json={"error": "bad file"})
        return httpx.Response(200, json=["/tmp/gradio/bear.jpg"])
    if request.method == "POST":
        return httpx.Response(200, json={"event_id": "evt-7"})
    return httpx.Response(200, json={"data": [{"label": "grizzly"}]})


def _init_app_state(app: FastAPI, **env_overrides: str) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan)."""
    env = {"BEARCLASSIFIER_BASE_URL": "http://inference.test/gradio_api", **env_overrides}
    with patch.dict(os.environ, env):
        settings = get_settings()
    app.state.settings = settings
    backend_http = httpx.AsyncClient(transport=httpx.MockTransport(_backend))
    app.state.inference_client = InferenceClient(settings, http_client=backend_http)
    app.state.presenter = ClassificationPresenter(app.state.inference_client)
    app.state.backend_http = backend_http


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    await app.state.backend_http.aclose()


@pytest.fixture()
def app() -> FastAPI:
    """Create a fresh app instance with default settings."""
    application = create_app()
    _init_app_state(application)
    return application


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client for testing the app."""
    async for ac in _make_client(app):
        yield ac


class TestHealthEndpoint:
    async def test_health_returns_ok(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "ok"
        assert data["base_url"] == "http://inference.test/gradio_api"
        assert data["fetch_mode"] == "structured"
        assert data["in_flight"] is False
        assert data["active_requests"] == 0

    async def test_health_reports_verbatim_mode(self) -> None:
        verbatim_app = create_app()
        _init_app_state(verbatim_app, BEARCLASSIFIER_FETCH_MODE="verbatim")
        async for ac in _make_client(verbatim_app):
            response = await ac.get("/api/v1/health")
            assert response.json()["fetch_mode"] == "verbatim"


class TestClassifyEndpoint:
    async def test_classify_returns_label(self, client: httpx.AsyncClient) -> None:
        fake_image = io.BytesIO(b"fake image data")
        response = await client.post(
            "/api/v1/classify",
            files={"file": ("bear.jpg", fake_image, "image/jpeg")},
        )
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["ok"] is True
        assert data["label"] == "grizzly"
        assert data["stage"] is None

    async def test_classify_reports_failed_stage(self, client: httpx.AsyncClient) -> None:
        fake_image = io.BytesIO(b"corrupt image data")
        response = await client.post(
            "/api/v1/classify",
            files={"file": ("bear.jpg", fake_image, "image/jpeg")},
        )
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["ok"] is False
        assert data["stage"] == "upload"
        assert data["kind"] == "protocol"
        assert data["label"] is None

    async def test_classify_empty_file(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/classify",
            files={"file": ("empty.jpg", io.BytesIO(b""), "image/jpeg")},
        )
        data = response.json()
        assert data["ok"] is False
        assert data["kind"] == "empty_input"

    async def test_classify_rejects_oversized_file(self) -> None:
        small_app = create_app()
        _init_app_state(small_app, BEARCLASSIFIER_MAX_FILE_SIZE="8")
        async for ac in _make_client(small_app):
            response = await ac.post(
                "/api/v1/classify",
                files={"file": ("bear.jpg", io.BytesIO(b"0123456789"), "image/jpeg")},
            )
            assert response.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE

    async def test_classify_conflict_while_pending(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        presenter: ClassificationPresenter = app.state.presenter
        first = asyncio.create_task(
            client.post(
                "/api/v1/classify",
                files={"file": ("bear.jpg", io.BytesIO(b"slow image data"), "image/jpeg")},
            )
        )
        for _ in range(100):
            if presenter.busy:
                break
            await asyncio.sleep(0.005)
        assert presenter.busy is True

        second = await client.post(
            "/api/v1/classify",
            files={"file": ("bear.jpg", io.BytesIO(b"fake image data"), "image/jpeg")},
        )
        assert second.status_code == status.HTTP_409_CONFLICT
        assert "in progress" in second.json()["detail"]

        response = await first
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["label"] == "grizzly"
        assert presenter.busy is False


class TestStatusEndpoint:
    async def test_status_idle_initially(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/status")
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"state": "idle", "label": None, "message": None, "in_flight": False}

    async def test_status_after_classification(self, client: httpx.AsyncClient) -> None:
        await client.post(
            "/api/v1/classify",
            files={"file": ("bear.jpg", io.BytesIO(b"fake image data"), "image/jpeg")},
        )
        data = (await client.get("/api/v1/status")).json()
        assert data["state"] == "result"
        assert data["label"] == "grizzly"
        assert data["in_flight"] is False


class TestLifespan:
    async def test_lifespan_wires_state_and_closes_pool(self) -> None:
        app = create_app()
        with patch.dict(os.environ, {"BEARCLASSIFIER_FETCH_TIMEOUT": "12.5"}):
            async with lifespan(app):
                client: InferenceClient = app.state.inference_client
                assert app.state.settings.fetch_timeout == 12.5
                assert isinstance(app.state.presenter, ClassificationPresenter)
                assert client.in_flight is False
                http = client._http
                assert not http.is_closed
        assert http.is_closed
