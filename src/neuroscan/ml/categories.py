"""Static knowledge table: tumor categories and their descriptive metadata.

The table is built once at import and exposed read-only.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping


class TumorCategory(StrEnum):
    NO_TUMOR = "no-tumor"
    GLIOMA = "glioma"
    MENINGIOMA = "meningioma"
    PITUITARY = "pituitary"


@dataclass(frozen=True)
class CategoryMetadata:
    """Descriptive metadata shown alongside a classification."""

    category: TumorCategory
    display_name: str
    description: str
    symptoms: tuple[str, ...]
    treatment: str

    @property
    def is_tumor(self) -> bool:
        return self.category is not TumorCategory.NO_TUMOR


CATEGORY_METADATA: Mapping[TumorCategory, CategoryMetadata] = MappingProxyType(
    {
        TumorCategory.NO_TUMOR: CategoryMetadata(
            category=TumorCategory.NO_TUMOR,
            display_name="No Tumor",
            description="No radiological signs of a tumor were found in the scan.",
            symptoms=(),
            treatment="No tumor-specific treatment is indicated. Persistent symptoms should still be "
            "discussed with a physician.",
        ),
        TumorCategory.GLIOMA: CategoryMetadata(
            category=TumorCategory.GLIOMA,
            display_name="Glioma",
            description="A tumor arising from the glial cells that support neurons in the brain and "
            "spinal cord. Gliomas range from slow-growing to highly aggressive.",
            symptoms=(
                "Persistent headaches, often worse in the morning",
                "Seizures",
                "Nausea or vomiting",
                "Memory loss or confusion",
                "Personality or behavior changes",
                "Weakness on one side of the body",
            ),
            treatment="Surgical resection where feasible, followed by radiation therapy and "
            "chemotherapy (commonly temozolomide) depending on grade.",
        ),
        TumorCategory.MENINGIOMA: CategoryMetadata(
            category=TumorCategory.MENINGIOMA,
            display_name="Meningioma",
            description="A usually benign tumor that forms in the meninges, the membranes surrounding "
            "the brain and spinal cord. Most grow slowly.",
            symptoms=(
                "Headaches",
                "Blurred or double vision",
                "Hearing loss or ringing in the ears",
                "Loss of smell",
                "Seizures",
                "Weakness in the arms or legs",
            ),
            treatment="Small asymptomatic tumors are often monitored with periodic imaging. "
            "Symptomatic tumors are treated with surgery and, if needed, radiation therapy.",
        ),
        TumorCategory.PITUITARY: CategoryMetadata(
            category=TumorCategory.PITUITARY,
            display_name="Pituitary Tumor",
            description="A growth in the pituitary gland at the base of the brain. Most are benign "
            "adenomas but can disrupt hormone production.",
            symptoms=(
                "Vision problems, especially loss of peripheral vision",
                "Headaches",
                "Fatigue",
                "Unexplained weight changes",
                "Irregular menstrual periods or sexual dysfunction",
            ),
            treatment="Medication to control hormone secretion, transsphenoidal surgery, or "
            "radiation therapy, often combined with hormone replacement.",
        ),
    }
)


def normalize_label(label: str) -> str:
    """Fold a model label into category form (``"No Tumor"`` -> ``"no-tumor"``)."""
    return "-".join(label.strip().lower().replace("_", " ").split())


def lookup_category(label: str) -> CategoryMetadata | None:
    """Return metadata for a label, or None when it names no known category."""
    try:
        category = TumorCategory(normalize_label(label))
    except ValueError:
        return None
    return CATEGORY_METADATA[category]
