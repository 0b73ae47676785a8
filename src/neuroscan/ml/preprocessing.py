"""Tensor preprocessing: resize and normalize a pixel grid for the classifier.

Resampling is nearest-neighbour with pixel-centre sampling, computed with
integer index arithmetic so the output is a pure function of the input.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

import numpy as np

from neuroscan.errors import PreprocessError

if TYPE_CHECKING:
    from numpy.typing import NDArray


def _sample_indices(source: int, target: int) -> NDArray[np.intp]:
    centres = (np.arange(target, dtype=np.float64) + 0.5) * (source / target)
    return np.minimum(centres.astype(np.intp), source - 1)


class TensorPreprocessor:
    """Turns decoded images into fixed-shape float32 tensors.

    Args:
        target_size: (height, width) the classifier expects.
        scale: "unit" maps samples to [0, 1], "byte" keeps [0, 255].
    """

    def __init__(self, target_size: tuple[int, int], scale: Literal["unit", "byte"] = "unit") -> None:
        height, width = target_size
        if height < 1 or width < 1:
            raise ValueError(f"target_size must be positive, got {target_size}")
        self._height = height
        self._width = width
        self._scale = scale

    @property
    def output_shape(self) -> tuple[int, int, int]:
        return (self._height, self._width, 3)

    def process(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Resize and scale an image.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            float32 array of shape ``output_shape``.

        Raises:
            PreprocessError: If the image has zero area or is not HxWx3.
        """
        if image.ndim != 3 or image.shape[2] != 3:
            raise PreprocessError(f"Expected an HxWx3 image, got shape {image.shape}")
        src_height, src_width = image.shape[:2]
        if src_height == 0 or src_width == 0:
            raise PreprocessError("Image has zero area")

        rows = _sample_indices(src_height, self._height)
        cols = _sample_indices(src_width, self._width)
        resized = image[rows[:, np.newaxis], cols[np.newaxis, :]]

        tensor = resized.astype(np.float32)
        if self._scale == "unit":
            tensor /= 255.0
        return tensor
