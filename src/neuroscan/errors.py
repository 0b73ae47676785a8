"""Error taxonomy shared by the analysis pipeline and the API layer."""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar


class ErrorKind(StrEnum):
    DECODE = "decode_error"
    PREPROCESS = "preprocess_error"
    ENGINE_UNAVAILABLE = "engine_unavailable"
    INFERENCE = "inference_error"
    TIMEOUT = "timeout"
    PIPELINE_BUSY = "pipeline_busy"
    INTERNAL = "internal"


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.DECODE: "Unsupported or unreadable image. Please upload a PNG or JPEG scan.",
    ErrorKind.PREPROCESS: "The image could not be prepared for analysis.",
    ErrorKind.ENGINE_UNAVAILABLE: "The analysis model is unavailable.",
    ErrorKind.INFERENCE: "Analysis failed. Please try again.",
    ErrorKind.TIMEOUT: "Analysis took too long and was stopped. Please try again.",
    ErrorKind.PIPELINE_BUSY: "An analysis is already in progress.",
    ErrorKind.INTERNAL: "Analysis failed unexpectedly. Please try again.",
}


class NeuroScanError(Exception):
    """Base class for pipeline errors. Subclasses set ``kind``."""

    kind: ClassVar[ErrorKind] = ErrorKind.INTERNAL


class DecodeError(NeuroScanError):
    """The byte source is empty, corrupt, or not a supported raster format."""

    kind = ErrorKind.DECODE


class PreprocessError(NeuroScanError):
    """A decoded image could not be turned into a model tensor."""

    kind = ErrorKind.PREPROCESS


class EngineUnavailable(NeuroScanError):
    """No model-backed classifier could be initialized."""

    kind = ErrorKind.ENGINE_UNAVAILABLE


class InferenceError(NeuroScanError):
    """A classification attempt raised an internal fault."""

    kind = ErrorKind.INFERENCE


class AnalysisTimeout(NeuroScanError):
    """A pipeline step exceeded its time budget."""

    kind = ErrorKind.TIMEOUT


class WorkerUnavailable(AnalysisTimeout):
    """No worker thread freed up in time to run a pipeline step."""

    def __init__(self, step: str, waited: float) -> None:
        super().__init__(f"No worker free for {step} within {waited}s")
        self.step = step


class PipelineBusy(NeuroScanError):
    """A submission arrived while another analysis was still running."""

    kind = ErrorKind.PIPELINE_BUSY
