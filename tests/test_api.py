"""Tests for the NeuroScan HTTP API."""

from __future__ import annotations

import io
import os
from typing import TYPE_CHECKING
from unittest.mock import patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import httpx
import pytest
from fastapi import FastAPI, status

from neuroscan.config import get_settings
from neuroscan.main import attach_pipeline, create_app
from neuroscan.ml.categories import TumorCategory
from neuroscan.ml.inference import InferencePool
from neuroscan.pipeline import PipelineController

TEST_ENV = {"NEUROSCAN_FALLBACK_LATENCY": "0", "NEUROSCAN_FALLBACK_SEED": "42"}


def _init_app_state(app: FastAPI, **env_overrides: str) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan)."""
    with patch.dict(os.environ, {**TEST_ENV, **env_overrides}):
        settings = get_settings()
    attach_pipeline(app, settings)


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    controller: PipelineController = app.state.controller
    await controller.shutdown()
    pool: InferencePool = app.state.inference_pool
    pool.shutdown()


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


def _upload(data: bytes, content_type: str = "image/png") -> dict[str, tuple[str, io.BytesIO, str]]:
    return {"file": ("scan.png", io.BytesIO(data), content_type)}


class TestHealthEndpoint:
    async def test_health_returns_ok(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "ok"
        assert data["gpu"] is False
        assert data["classifier"] is None
        assert data["degraded"] is None
        assert data["models_loaded"] == []
        assert isinstance(data["concurrent_requests"], int)
        assert isinstance(data["queue_depth"], int)

    async def test_health_gpu_true_when_cuda(self) -> None:
        cuda_app = create_app()
        _init_app_state(cuda_app, NEUROSCAN_DEVICE="cuda")
        async for ac in _make_client(cuda_app):
            response = await ac.get("/api/v1/health")
            assert response.status_code == status.HTTP_200_OK
            assert response.json()["gpu"] is True

    async def test_health_reports_fallback_after_selection(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        await app.state.selector.ensure_ready()
        data = (await client.get("/api/v1/health")).json()
        assert data["classifier"] == "fallback"
        assert data["degraded"] is True


class TestAnalyzeEndpoint:
    async def test_initial_state_is_idle(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/analysis")
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"state": "idle", "degraded": None, "result": None, "error": None}

    async def test_analyze_and_wait(self, client: httpx.AsyncClient, noise_png: bytes) -> None:
        response = await client.post("/api/v1/analyze", params={"wait": "true"}, files=_upload(noise_png))

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["state"] == "ready"
        assert data["degraded"] is True
        result = data["result"]
        assert result["label"] in {c.value for c in TumorCategory}
        assert 85.0 <= result["confidence"] <= 95.0
        assert result["degraded"] is True
        assert result["category"]["label"] == result["label"]
        assert result["risk_level"] in {"high", "moderate", "low"}

    async def test_analyze_returns_accepted(self, app: FastAPI, client: httpx.AsyncClient, noise_png: bytes) -> None:
        response = await client.post("/api/v1/analyze", files=_upload(noise_png))

        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.json()["state"] == "awaiting_engine"

        await app.state.controller.wait()
        current = (await client.get("/api/v1/analysis")).json()
        assert current["state"] == "ready"
        assert current["result"] is not None

    async def test_zero_byte_upload_fails(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/analyze", params={"wait": "true"}, files=_upload(b""))

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["state"] == "failed"
        assert data["result"] is None
        assert data["error"]["kind"] == "decode_error"
        assert data["error"]["user_message"]

    async def test_unsupported_type_fails(self, client: httpx.AsyncClient, noise_png: bytes) -> None:
        response = await client.post(
            "/api/v1/analyze",
            params={"wait": "true"},
            files=_upload(noise_png, content_type="application/pdf"),
        )
        assert response.json()["error"]["kind"] == "decode_error"

    async def test_busy_submission_rejected(self, noise_png: bytes) -> None:
        slow_app = create_app()
        _init_app_state(slow_app, NEUROSCAN_FALLBACK_LATENCY="30")
        async for ac in _make_client(slow_app):
            first = await ac.post("/api/v1/analyze", files=_upload(noise_png))
            assert first.status_code == status.HTTP_202_ACCEPTED

            second = await ac.post("/api/v1/analyze", files=_upload(noise_png))

            assert second.status_code == status.HTTP_409_CONFLICT
            assert second.json()["kind"] == "pipeline_busy"
            assert slow_app.state.controller.busy is True

    async def test_oversized_upload_read_is_capped(self, noise_png: bytes) -> None:
        small_app = create_app()
        _init_app_state(small_app, NEUROSCAN_MAX_FILE_SIZE="64")
        controller: PipelineController = small_app.state.controller
        async for ac in _make_client(small_app):
            with patch.object(controller, "submit", wraps=controller.submit) as submit:
                response = await ac.post(
                    "/api/v1/analyze",
                    params={"wait": "true"},
                    files=_upload(noise_png + b"\x00" * 4096),
                )

            asset = submit.call_args.args[0]
            assert len(asset.data) == 65
            assert response.status_code == status.HTTP_200_OK
            assert response.json()["error"]["kind"] == "decode_error"


class TestCategoriesEndpoint:
    async def test_lists_all_categories(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/categories")
        assert response.status_code == status.HTTP_200_OK
        categories = response.json()["categories"]
        assert {c["label"] for c in categories} == {c.value for c in TumorCategory}

    async def test_tumor_categories_have_symptoms(self, client: httpx.AsyncClient) -> None:
        categories = (await client.get("/api/v1/categories")).json()["categories"]
        glioma = next(c for c in categories if c["label"] == "glioma")
        assert glioma["display_name"] == "Glioma"
        assert glioma["symptoms"]
        assert glioma["treatment"]
