"""Analysis pipeline: one submitted image through decode, preprocess, classify.

The controller exposes a single tagged state to presentation code::

    Idle --submit--> AwaitingEngineReadiness --> Preprocessing --> Classifying --> Ready
                                                      |                 |
                                                      +----> Failed <---+

Ready and Failed accept a new submission. A submission during a run is
rejected with PipelineBusy; the in-flight run is never cancelled or queued
behind.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

from neuroscan.errors import (
    USER_MESSAGES,
    AnalysisTimeout,
    ErrorKind,
    InferenceError,
    NeuroScanError,
    PipelineBusy,
)
from neuroscan.ml.decoder import ImageDecoder
from neuroscan.ml.preprocessing import TensorPreprocessor
from neuroscan.ml.results import AnalysisResult, assemble_result

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray

    from neuroscan.config import Settings
    from neuroscan.ml.decoder import ImageAsset
    from neuroscan.ml.image_classifier import Classification, ClassifierSelector, ImageClassifier
    from neuroscan.ml.inference import InferencePool

logger = logging.getLogger(__name__)

INFERENCE_RETRIES: int = 1


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Idle:
    name: ClassVar[str] = "idle"


@dataclass(frozen=True)
class AwaitingEngineReadiness:
    name: ClassVar[str] = "awaiting_engine"


@dataclass(frozen=True)
class Preprocessing:
    name: ClassVar[str] = "preprocessing"


@dataclass(frozen=True)
class Classifying:
    name: ClassVar[str] = "classifying"
    degraded: bool = False


@dataclass(frozen=True)
class Ready:
    name: ClassVar[str] = "ready"
    result: AnalysisResult

    @property
    def degraded(self) -> bool:
        return self.result.degraded


@dataclass(frozen=True)
class Failed:
    name: ClassVar[str] = "failed"
    error: ErrorKind
    message: str = ""

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.error]


PipelineState = Idle | AwaitingEngineReadiness | Preprocessing | Classifying | Ready | Failed


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class PipelineController:
    """Runs at most one analysis at a time and publishes its state."""

    def __init__(
        self,
        settings: Settings,
        selector: ClassifierSelector,
        pool: InferencePool,
        decoder: ImageDecoder | None = None,
    ) -> None:
        self._settings = settings
        self._selector = selector
        self._pool = pool
        self._decoder = decoder or ImageDecoder(settings)
        self._state: PipelineState = Idle()
        self._task: asyncio.Task[PipelineState] | None = None
        self._listeners: list[Callable[[PipelineState], None]] = []
        self._runs: int = 0

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def busy(self) -> bool:
        return not isinstance(self._state, Idle | Ready | Failed)

    @property
    def degraded(self) -> bool | None:
        """Whether results come from the fallback classifier (None before selection)."""
        return self._selector.degraded

    def add_listener(self, listener: Callable[[PipelineState], None]) -> None:
        """Register a callback invoked with every new state, in transition order."""
        self._listeners.append(listener)

    def submit(self, asset: ImageAsset) -> asyncio.Task[PipelineState]:
        """Start analysing an image.

        Must be called from a running event loop. Any previous result is
        discarded as soon as the new run starts.

        Returns:
            The task running the analysis; it resolves to the terminal state.

        Raises:
            PipelineBusy: If a run is already in flight. The state is unchanged.
        """
        if self.busy:
            raise PipelineBusy(f"Analysis already in progress (state={self._state.name})")

        self._runs += 1
        self._transition(AwaitingEngineReadiness())
        self._task = asyncio.create_task(self._run(asset), name=f"neuroscan-analysis-{self._runs}")
        return self._task

    async def wait(self) -> PipelineState:
        """Wait for the in-flight run, if any, and return the current state."""
        if self._task is not None:
            await self._task
        return self._state

    async def shutdown(self) -> None:
        """Cancel an in-flight run and return to Idle."""
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.info("Cancelled in-flight analysis")
        self._task = None
        self._transition(Idle())

    # -- Internal -----------------------------------------------------------

    def _transition(self, state: PipelineState) -> None:
        self._state = state
        logger.debug("Pipeline state -> %s", state.name)
        for listener in self._listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("State listener failed on %s", state.name)

    async def _run(self, asset: ImageAsset) -> PipelineState:
        try:
            result = await self._analyze(asset)
        except NeuroScanError as exc:
            logger.warning("Analysis failed (%s): %s", exc.kind, exc)
            self._transition(Failed(error=exc.kind, message=str(exc)))
        except Exception as exc:
            logger.exception("Unexpected error during analysis")
            self._transition(Failed(error=ErrorKind.INTERNAL, message=str(exc)))
        else:
            logger.info(
                "Analysis ready: %s (%.1f%%, degraded=%s)",
                result.label,
                result.confidence,
                result.degraded,
            )
            self._transition(Ready(result=result))
        return self._state

    async def _analyze(self, asset: ImageAsset) -> AnalysisResult:
        classifier = await self._selector.ensure_ready()
        degraded = not classifier.authoritative

        self._transition(Preprocessing())
        image = await self._pool.run("decode", self._decoder.decode, asset)
        preprocessor = TensorPreprocessor(classifier.input_size, self._settings.input_scale)
        tensor = await self._pool.run("preprocess", preprocessor.process, image)

        self._transition(Classifying(degraded=degraded))
        classification = await self._classify(classifier, tensor)
        return assemble_result(classification, degraded=degraded)

    async def _classify(self, classifier: ImageClassifier, tensor: NDArray[np.float32]) -> Classification:
        timeout = self._settings.classify_timeout
        failures = 0
        while True:
            try:
                return await asyncio.wait_for(classifier.classify(tensor), timeout=timeout)
            except TimeoutError as exc:
                raise AnalysisTimeout(f"Classification exceeded {timeout}s") from exc
            except InferenceError as exc:
                failures += 1
                if failures > INFERENCE_RETRIES:
                    raise
                logger.warning("Inference attempt %d failed (%s); retrying", failures, exc)
