"""Result assembly: join a raw classification with category metadata."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from neuroscan.ml.categories import CategoryMetadata, lookup_category
from neuroscan.ml.image_classifier import Classification

UNKNOWN_DISPLAY_NAME = "Unknown"

# Tumor-probability bands used for the risk indicator.
HIGH_RISK_THRESHOLD: float = 70.0
MODERATE_RISK_THRESHOLD: float = 30.0


class RiskLevel(StrEnum):
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"


@dataclass(frozen=True)
class AnalysisResult:
    """Presentable outcome of one pipeline run.

    ``metadata`` is present iff ``label`` names a known category. ``degraded``
    marks results produced by the non-authoritative fallback classifier.
    """

    label: str
    confidence: float
    metadata: CategoryMetadata | None
    degraded: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 100.0:
            raise ValueError(f"confidence must be within [0, 100], got {self.confidence}")

    @property
    def display_name(self) -> str:
        return self.metadata.display_name if self.metadata is not None else UNKNOWN_DISPLAY_NAME

    @property
    def tumor_detected(self) -> bool | None:
        return self.metadata.is_tumor if self.metadata is not None else None

    @property
    def tumor_probability(self) -> float | None:
        """Probability (0-100) that a tumor is present, derived from the top label."""
        if self.metadata is None:
            return None
        return self.confidence if self.metadata.is_tumor else 100.0 - self.confidence

    @property
    def risk_level(self) -> RiskLevel | None:
        probability = self.tumor_probability
        if probability is None:
            return None
        if probability > HIGH_RISK_THRESHOLD:
            return RiskLevel.HIGH
        if probability > MODERATE_RISK_THRESHOLD:
            return RiskLevel.MODERATE
        return RiskLevel.LOW


def assemble_result(classification: Classification, *, degraded: bool = False) -> AnalysisResult:
    """Build the final result for a classification.

    Unknown labels are not an error: they produce a result without metadata
    whose display name is ``"Unknown"``.
    """
    metadata = lookup_category(classification.label)
    label = metadata.category.value if metadata is not None else classification.label
    return AnalysisResult(
        label=label,
        confidence=classification.confidence,
        metadata=metadata,
        degraded=degraded,
    )
