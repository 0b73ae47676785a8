"""Model manager: locate, download, load and cache the classifier ONNX model.

The artifact comes from a local path or from the HuggingFace Hub. Any
failure along the way is reported as EngineUnavailable so callers can fall
back to the simulated classifier.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from neuroscan.errors import EngineUnavailable

if TYPE_CHECKING:
    from neuroscan.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_downloaded(self) -> Path:
        """Ensure the model artifact is available locally and return its path."""
        ...

    def get_session(self) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Artifact location
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelSource:
    """Where the classifier artifact lives."""

    name: str
    path: Path | None
    repo_id: str | None
    filename: str
    subfolder: str | None

    @classmethod
    def from_settings(cls, settings: Settings) -> ModelSource | None:
        if not settings.has_model_artifact:
            return None
        return cls(
            name=settings.model_name,
            path=Path(settings.model_path) if settings.model_path else None,
            repo_id=settings.model_repo_id,
            filename=settings.model_filename,
            subfolder=settings.model_subfolder,
        )


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Downloads, loads and caches the ONNX inference session."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._source = ModelSource.from_settings(settings)
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._sessions: dict[str, InferenceSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    @property
    def model_name(self) -> str:
        return self._settings.model_name

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self) -> Path:
        """Resolve the model artifact, downloading it from the Hub if needed.

        Raises:
            EngineUnavailable: If no artifact is configured, the local file is
                missing, or the download fails.
        """
        source = self._source
        if source is None:
            raise EngineUnavailable("No model artifact configured")

        cached = self._model_paths.get(source.name)
        if cached is not None and cached.exists():
            return cached

        if source.path is not None:
            if not source.path.is_file():
                raise EngineUnavailable(f"Model file not found: {source.path}")
            self._model_paths[source.name] = source.path
            return source.path

        try:
            self._models_dir.mkdir(parents=True, exist_ok=True)
            downloaded = Path(
                hf_hub_download(
                    repo_id=source.repo_id,
                    filename=source.filename,
                    subfolder=source.subfolder,
                    local_dir=str(self._models_dir),
                )
            )
        except Exception as exc:
            raise EngineUnavailable(f"Could not download {source.repo_id}/{source.filename}: {exc}") from exc

        self._model_paths[source.name] = downloaded
        logger.info("Downloaded %s to %s", source.name, downloaded)
        return downloaded

    def get_session(self) -> InferenceSession:
        """Return the cached InferenceSession, creating one if needed.

        Raises:
            EngineUnavailable: If the artifact cannot be resolved or loaded.
        """
        name = self.model_name
        with self._lock:
            cached = self._sessions.get(name)
            if cached is not None:
                return cached

        model_path = self.ensure_downloaded()
        try:
            session = InferenceSession(
                str(model_path),
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:
            raise EngineUnavailable(f"Could not load model {model_path}: {exc}") from exc

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            existing = self._sessions.get(name)
            if existing is not None:
                return existing
            self._sessions[name] = session
            logger.info("Loaded session for %s from %s", name, model_path)
            return session

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            return list(self._sessions.keys())

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        with self._lock:
            self._sessions.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
