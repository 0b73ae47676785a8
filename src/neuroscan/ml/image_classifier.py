"""Image classification engines.

Two implementations of the ImageClassifier protocol:

- OnnxImageClassifier runs a trained ONNX model (authoritative).
- FallbackImageClassifier simulates a result when no model is available
  (non-authoritative, "degraded mode").

ClassifierSelector picks one of them once and keeps it for the process
lifetime.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from neuroscan.errors import EngineUnavailable, InferenceError, WorkerUnavailable
from neuroscan.ml.categories import TumorCategory

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from neuroscan.config import Settings
    from neuroscan.ml.inference import InferencePool
    from neuroscan.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

FALLBACK_MODEL_NAME = "fallback"


@dataclass(frozen=True)
class Classification:
    """A single classification prediction. Confidence is a percentage (0-100)."""

    label: str
    confidence: float


class ImageClassifier(Protocol):
    """Protocol for image classification engines."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def input_size(self) -> tuple[int, int]:
        """Return the (height, width) the engine expects."""
        ...

    @property
    def authoritative(self) -> bool:
        """Whether results come from a trained model."""
        ...

    async def classify(self, tensor: NDArray[np.float32]) -> Classification:
        """Classify a preprocessed image.

        Args:
            tensor: HxWx3 float32 array of shape ``(*input_size, 3)``.

        Returns:
            The top label with its confidence.

        Raises:
            InferenceError: If the engine faults during inference.
        """
        ...


# ---------------------------------------------------------------------------
# Model-backed engine
# ---------------------------------------------------------------------------


def _static_input_size(shape: Sequence[object], layout: str) -> tuple[int, int] | None:
    if len(shape) != 4:
        return None
    height, width = (shape[2], shape[3]) if layout == "nchw" else (shape[1], shape[2])
    if isinstance(height, int) and isinstance(width, int) and height > 0 and width > 0:
        return (height, width)
    return None


def _to_probabilities(scores: NDArray[np.float64]) -> NDArray[np.float64]:
    if np.all(scores >= 0.0) and np.isclose(scores.sum(), 1.0, atol=1e-3):
        return scores
    shifted = np.exp(scores - scores.max())
    return shifted / shifted.sum()


class OnnxImageClassifier:
    """Runs a trained classifier through ONNX Runtime in the worker pool."""

    def __init__(
        self,
        session: InferenceSession,
        labels: Sequence[str],
        pool: InferencePool,
        *,
        model_name: str,
        input_size: int,
        layout: str = "nhwc",
    ) -> None:
        if not labels:
            raise ValueError("labels must not be empty")
        self._session = session
        self._labels = tuple(labels)
        self._pool = pool
        self._model_name = model_name
        self._layout = layout

        model_input = session.get_inputs()[0]
        self._input_name: str = model_input.name
        self._input_size = _static_input_size(model_input.shape, layout) or (input_size, input_size)

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def input_size(self) -> tuple[int, int]:
        return self._input_size

    @property
    def authoritative(self) -> bool:
        return True

    async def classify(self, tensor: NDArray[np.float32]) -> Classification:
        return await self._pool.run("inference", self._infer, tensor)

    def _infer(self, tensor: NDArray[np.float32]) -> Classification:
        batch = tensor[np.newaxis]
        if self._layout == "nchw":
            batch = batch.transpose(0, 3, 1, 2)
        batch = np.ascontiguousarray(batch, dtype=np.float32)

        try:
            outputs = self._session.run(None, {self._input_name: batch})
        except Exception as exc:
            raise InferenceError(f"{self._model_name} inference failed: {exc}") from exc

        scores = np.asarray(outputs[0], dtype=np.float64).reshape(-1)
        if scores.size != len(self._labels):
            raise InferenceError(f"Model returned {scores.size} scores for {len(self._labels)} labels")
        if not np.all(np.isfinite(scores)):
            raise InferenceError("Model returned non-finite scores")

        probabilities = _to_probabilities(scores)
        index = int(np.argmax(probabilities))
        confidence = float(np.clip(probabilities[index] * 100.0, 0.0, 100.0))
        return Classification(label=self._labels[index], confidence=confidence)


# ---------------------------------------------------------------------------
# Fallback engine
# ---------------------------------------------------------------------------


class FallbackImageClassifier:
    """Simulated classifier used whenever no trained model is available.

    Picks a category uniformly and a confidence uniformly within the
    configured range. With ``fallback_seed`` set the sequence of results is
    reproducible.
    """

    def __init__(self, settings: Settings) -> None:
        self._rng = random.Random(settings.fallback_seed)  # noqa: S311
        self._labels = tuple(TumorCategory)
        self._min_confidence = settings.fallback_min_confidence
        self._max_confidence = settings.fallback_max_confidence
        self._latency = settings.fallback_latency
        self._input_size = (settings.input_size, settings.input_size)

    @property
    def model_name(self) -> str:
        return FALLBACK_MODEL_NAME

    @property
    def input_size(self) -> tuple[int, int]:
        return self._input_size

    @property
    def authoritative(self) -> bool:
        return False

    async def classify(self, tensor: NDArray[np.float32]) -> Classification:
        if self._latency > 0:
            await asyncio.sleep(self._latency)
        label = self._rng.choice(self._labels)
        confidence = self._rng.uniform(self._min_confidence, self._max_confidence)
        return Classification(label=label.value, confidence=confidence)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class ClassifierSelector:
    """Chooses the classifier on first use and keeps that choice.

    A model that is not configured, fails to load, or takes longer than
    ``model_load_timeout`` to load puts the process in degraded mode. A
    session that finishes loading after that is released again. When no
    worker is free to start the load, nothing is chosen and the next call
    tries again.
    """

    def __init__(self, settings: Settings, model_manager: ModelManager, pool: InferencePool) -> None:
        self._settings = settings
        self._model_manager = model_manager
        self._pool = pool
        self._classifier: ImageClassifier | None = None
        self._lock = asyncio.Lock()

    @property
    def classifier(self) -> ImageClassifier | None:
        """The selected classifier, or None before the first ``ensure_ready``."""
        return self._classifier

    @property
    def degraded(self) -> bool | None:
        if self._classifier is None:
            return None
        return not self._classifier.authoritative

    async def ensure_ready(self) -> ImageClassifier:
        """Return the process-wide classifier, selecting it on first call."""
        if self._classifier is not None:
            return self._classifier
        async with self._lock:
            if self._classifier is None:
                self._classifier = await self._select()
        return self._classifier

    async def _select(self) -> ImageClassifier:
        if not self._settings.has_model_artifact:
            logger.info("No model artifact configured; using the fallback classifier (degraded mode)")
            return FallbackImageClassifier(self._settings)

        load_timeout = self._settings.model_load_timeout
        load = asyncio.ensure_future(self._pool.run("model load", self._model_manager.get_session))
        done, _ = await asyncio.wait({load}, timeout=load_timeout)
        if not done:
            load.add_done_callback(self._discard_late_session)
            logger.warning(
                "Model load did not finish within model_load_timeout=%ss; "
                "using the fallback classifier (degraded mode)",
                load_timeout,
            )
            return FallbackImageClassifier(self._settings)

        try:
            session = load.result()
        except WorkerUnavailable:
            # Nothing is cached, so the next analysis retries the selection
            logger.warning("No worker free to load the model; classifier selection deferred")
            raise
        except EngineUnavailable as exc:
            logger.warning("Model unavailable (%s); using the fallback classifier (degraded mode)", exc)
            return FallbackImageClassifier(self._settings)

        classifier = OnnxImageClassifier(
            session,
            self._settings.model_labels,
            self._pool,
            model_name=self._settings.model_name,
            input_size=self._settings.input_size,
            layout=self._settings.input_layout,
        )
        logger.info("Using model %s (input %sx%s)", classifier.model_name, *classifier.input_size)
        return classifier

    def _discard_late_session(self, load: asyncio.Future[InferenceSession]) -> None:
        if load.cancelled() or load.exception() is not None:
            return
        self._model_manager.shutdown()
        logger.info("Model load finished after the fallback was chosen; session released")
