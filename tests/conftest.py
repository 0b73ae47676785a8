"""Shared fixtures: settings, worker pool, and in-memory test images."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

from neuroscan.config import Settings
from neuroscan.ml.inference import InferencePool

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "fallback_seed": 1234,
        "fallback_latency": 0.0,
        "models_dir": "/tmp/neuroscan_test_models",
        "max_concurrent": 2,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def encode_image(pixels: np.ndarray, fmt: str = "PNG", mode: str | None = None) -> bytes:
    image = Image.fromarray(pixels)
    if mode is not None:
        image = image.convert(mode)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture()
def settings_factory() -> Callable[..., Settings]:
    return make_settings


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def pool(settings: Settings) -> Iterator[InferencePool]:
    inference_pool = InferencePool(settings)
    yield inference_pool
    inference_pool.shutdown()


@pytest.fixture()
def noise_png() -> bytes:
    """A 10x10 white-noise RGB PNG."""
    rng = np.random.default_rng(0)
    return encode_image(rng.integers(0, 256, size=(10, 10, 3), dtype=np.uint8))
