"""Environment-based configuration for NeuroScan."""

from __future__ import annotations

from typing import Literal, Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from NEUROSCAN_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="NEUROSCAN_",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    worker_wait_timeout: float = Field(default=5.0, gt=0)

    # Model artifact (neither path nor repo set = fallback classifier only)
    model_name: str = "brain_tumor_classifier"
    model_path: str | None = None
    model_repo_id: str | None = None
    model_filename: str = "model.onnx"
    model_subfolder: str | None = None
    models_dir: str = "models"
    model_labels: list[str] = ["glioma", "meningioma", "no-tumor", "pituitary"]
    model_load_timeout: float = Field(default=120.0, gt=0)

    # Tensor shape
    input_size: int = Field(default=224, ge=1)
    input_layout: Literal["nhwc", "nchw"] = "nhwc"
    input_scale: Literal["unit", "byte"] = "unit"

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)
    accepted_mime_types: list[str] = ["image/png", "image/jpeg", "image/jpg"]

    # Classification
    classify_timeout: float = Field(default=30.0, gt=0)

    # Fallback classifier
    fallback_seed: int | None = None
    fallback_min_confidence: float = Field(default=85.0, ge=0, le=100)
    fallback_max_confidence: float = Field(default=95.0, ge=0, le=100)
    fallback_latency: float = Field(default=2.0, ge=0)

    @model_validator(mode="after")
    def _check_fallback_range(self) -> Self:
        if self.fallback_min_confidence > self.fallback_max_confidence:
            raise ValueError("fallback_min_confidence must not exceed fallback_max_confidence")
        return self

    @property
    def has_model_artifact(self) -> bool:
        """Whether any model artifact location is set."""
        return self.model_path is not None or self.model_repo_id is not None


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
