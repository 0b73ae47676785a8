"""Pydantic response schemas for the NeuroScan API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class CategoryInfo(BaseModel):
    """Descriptive metadata for one tumor category."""

    label: str
    display_name: str
    description: str
    symptoms: list[str]
    treatment: str


class AnalysisResultBody(BaseModel):
    """A finished analysis."""

    label: str
    display_name: str = Field(description="Category display name, or 'Unknown'")
    confidence: float = Field(ge=0.0, le=100.0, description="Confidence of the top label (0-100)")
    degraded: bool = Field(description="True when produced by the fallback classifier")
    tumor_detected: bool | None
    tumor_probability: float | None = Field(default=None, ge=0.0, le=100.0)
    risk_level: str | None = Field(default=None, description="'high', 'moderate' or 'low'")
    category: CategoryInfo | None = None


class ErrorInfo(BaseModel):
    """Why the last analysis failed."""

    kind: str
    message: str
    user_message: str


class AnalysisStateResponse(BaseModel):
    """Current pipeline state."""

    state: str = Field(
        description="'idle', 'awaiting_engine', 'preprocessing', 'classifying', 'ready' or 'failed'"
    )
    degraded: bool | None = Field(default=None, description="None until a classifier has been selected")
    result: AnalysisResultBody | None = None
    error: ErrorInfo | None = None


class CategoriesResponse(BaseModel):
    """Response for the categories listing endpoint."""

    categories: list[CategoryInfo]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    classifier: str | None
    degraded: bool | None
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    kind: str | None = None
