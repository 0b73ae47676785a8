"""Tests for tensor preprocessing."""

from __future__ import annotations

import numpy as np
import pytest

from neuroscan.errors import PreprocessError
from neuroscan.ml.preprocessing import TensorPreprocessor


@pytest.fixture()
def preprocessor() -> TensorPreprocessor:
    return TensorPreprocessor((224, 224))


class TestOutputShape:
    @pytest.mark.parametrize(
        ("height", "width"),
        [(1, 1), (10, 10), (3, 7), (300, 512), (224, 224), (3000, 4000)],
    )
    def test_shape_is_fixed_regardless_of_input(
        self, preprocessor: TensorPreprocessor, height: int, width: int
    ) -> None:
        image = np.zeros((height, width, 3), dtype=np.uint8)
        tensor = preprocessor.process(image)
        assert tensor.shape == (224, 224, 3)
        assert tensor.dtype == np.float32

    def test_non_square_target(self) -> None:
        tensor = TensorPreprocessor((64, 32)).process(np.zeros((10, 10, 3), dtype=np.uint8))
        assert tensor.shape == (64, 32, 3)

    def test_output_shape_property(self, preprocessor: TensorPreprocessor) -> None:
        assert preprocessor.output_shape == (224, 224, 3)


class TestScaling:
    def test_unit_scale(self, preprocessor: TensorPreprocessor) -> None:
        image = np.full((5, 5, 3), 255, dtype=np.uint8)
        image[0, 0] = 0
        tensor = preprocessor.process(image)
        assert tensor.min() == 0.0
        assert tensor.max() == 1.0

    def test_byte_scale(self) -> None:
        image = np.full((5, 5, 3), 255, dtype=np.uint8)
        tensor = TensorPreprocessor((8, 8), scale="byte").process(image)
        assert np.all(tensor == 255.0)

    def test_single_pixel_fills_tensor(self, preprocessor: TensorPreprocessor) -> None:
        image = np.array([[[51, 102, 204]]], dtype=np.uint8)
        tensor = preprocessor.process(image)
        np.testing.assert_allclose(tensor[100, 50], [0.2, 0.4, 0.8], rtol=1e-6)
        assert np.all(tensor == tensor[0, 0])


class TestResampling:
    def test_nearest_neighbour_upscale(self) -> None:
        image = np.array(
            [
                [[10, 10, 10], [20, 20, 20]],
                [[30, 30, 30], [40, 40, 40]],
            ],
            dtype=np.uint8,
        )
        tensor = TensorPreprocessor((4, 4), scale="byte").process(image)
        np.testing.assert_array_equal(
            tensor[:, :, 0],
            [
                [10, 10, 20, 20],
                [10, 10, 20, 20],
                [30, 30, 40, 40],
                [30, 30, 40, 40],
            ],
        )

    def test_nearest_neighbour_downscale_samples_pixel_centres(self) -> None:
        image = np.arange(16, dtype=np.uint8).reshape(4, 4, 1).repeat(3, axis=2)
        tensor = TensorPreprocessor((2, 2), scale="byte").process(image)
        np.testing.assert_array_equal(tensor[:, :, 0], [[5, 7], [13, 15]])

    def test_deterministic(self, preprocessor: TensorPreprocessor) -> None:
        image = np.random.default_rng(3).integers(0, 256, size=(37, 91, 3), dtype=np.uint8)
        np.testing.assert_array_equal(preprocessor.process(image), preprocessor.process(image.copy()))


class TestInvalidInput:
    @pytest.mark.parametrize("shape", [(0, 10, 3), (10, 0, 3), (0, 0, 3)])
    def test_zero_area(self, preprocessor: TensorPreprocessor, shape: tuple[int, int, int]) -> None:
        with pytest.raises(PreprocessError, match="zero area"):
            preprocessor.process(np.zeros(shape, dtype=np.uint8))

    @pytest.mark.parametrize("shape", [(10, 10), (10, 10, 4), (10, 10, 1)])
    def test_wrong_layout(self, preprocessor: TensorPreprocessor, shape: tuple[int, ...]) -> None:
        with pytest.raises(PreprocessError, match="HxWx3"):
            preprocessor.process(np.zeros(shape, dtype=np.uint8))

    def test_invalid_target_size(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            TensorPreprocessor((0, 224))
