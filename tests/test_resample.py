"""
Tests for bilinear and nearest-neighbour resampling.
"""

import numpy as np
import pytest

from src.habitat.grid import BoundingBox
from src.habitat.resample import SourceDataset, sample_bilinear, sample_nearest

SOURCE_BBOX = BoundingBox(-2.0, 51.0, 0.0, 53.0)


class TestConstantRaster:
    """Sampling a constant raster returns the constant everywhere."""

    @pytest.mark.parametrize(
        "bbox,width,height",
        [
            (SOURCE_BBOX, 4, 4),
            (BoundingBox(-1.9, 51.2, -1.1, 52.9), 7, 3),
            (BoundingBox(-1.5, 52.0, -1.4, 52.1), 32, 32),
            (BoundingBox(-3.0, 50.0, 1.0, 54.0), 5, 9),
        ],
    )
    def test_bilinear_constant(self, bbox, width, height):
        dataset = SourceDataset.from_bounds(np.full((10, 12), 6.3, dtype=np.float32), SOURCE_BBOX)
        result = sample_bilinear(dataset, bbox, width, height)

        assert result.shape == (width * height,)
        assert np.all(result == np.float32(6.3))

    @pytest.mark.parametrize("width,height", [(1, 1), (3, 8), (40, 40)])
    def test_nearest_constant(self, width, height):
        dataset = SourceDataset.from_bounds(np.full((10, 12), 30, dtype=np.uint8), SOURCE_BBOX)
        result = sample_nearest(dataset, BoundingBox(-1.7, 51.5, -0.2, 52.5), width, height)

        assert result.dtype == np.uint8
        assert np.all(result == 30)


class TestBilinear:

    def test_identity_grid_reproduces_source(self):
        data = np.arange(16, dtype=np.float64).reshape(4, 4)
        dataset = SourceDataset.from_bounds(data, SOURCE_BBOX)

        result = sample_bilinear(dataset, SOURCE_BBOX, 4, 4)

        np.testing.assert_allclose(result.reshape(4, 4), data)

    def test_interpolates_between_pixels(self):
        data = np.array([[0.0, 10.0]])
        dataset = SourceDataset.from_bounds(data, BoundingBox(0.0, 0.0, 2.0, 1.0))

        # The centre of the box sits halfway between the two pixel centres
        result = sample_bilinear(dataset, BoundingBox(0.5, 0.0, 1.5, 1.0), 1, 1)

        assert result[0] == pytest.approx(5.0)

    def test_nan_neighbour_is_ignored(self):
        data = np.array([[1.0, np.nan], [3.0, 3.0]])
        dataset = SourceDataset.from_bounds(data, BoundingBox(0.0, 0.0, 2.0, 2.0))

        # Equal weights on the three finite pixels
        result = sample_bilinear(dataset, BoundingBox(0.5, 0.5, 1.5, 1.5), 1, 1)

        assert result[0] == pytest.approx(7.0 / 3.0)

    def test_identity_grid_keeps_pixels_beside_nodata(self):
        data = np.array([[6.2, np.nan], [6.2, 6.2]])
        dataset = SourceDataset.from_bounds(data, BoundingBox(0.0, 0.0, 2.0, 2.0))

        result = sample_bilinear(dataset, BoundingBox(0.0, 0.0, 2.0, 2.0), 2, 2)

        np.testing.assert_allclose(result, [6.2, np.nan, 6.2, 6.2])

    def test_off_centre_sample_beside_nodata(self):
        data = np.array([[5.0, np.nan]])
        dataset = SourceDataset.from_bounds(data, BoundingBox(0.0, 0.0, 2.0, 1.0))

        # A quarter pixel towards the nodata column
        result = sample_bilinear(dataset, BoundingBox(0.25, 0.0, 1.25, 1.0), 1, 1)

        assert result[0] == pytest.approx(5.0)

    def test_all_nan_neighbourhood_is_nan(self):
        data = np.full((2, 2), np.nan)
        dataset = SourceDataset.from_bounds(data, BoundingBox(0.0, 0.0, 2.0, 2.0))

        result = sample_bilinear(dataset, BoundingBox(0.5, 0.5, 1.5, 1.5), 1, 1)

        assert np.isnan(result[0])

    def test_empty_grid(self):
        dataset = SourceDataset.from_bounds(np.ones((2, 2)), SOURCE_BBOX)
        assert sample_bilinear(dataset, SOURCE_BBOX, 0, 5).size == 0

    @pytest.mark.filterwarnings("error::DeprecationWarning")
    @pytest.mark.filterwarnings("error::PendingDeprecationWarning")
    def test_affine_application_does_not_warn(self):
        dataset = SourceDataset.from_bounds(np.ones((4, 4)), SOURCE_BBOX)

        assert dataset.bounds.as_tuple() == pytest.approx(SOURCE_BBOX.as_tuple())
        assert sample_bilinear(dataset, BoundingBox(-1.5, 51.5, -0.5, 52.5), 3, 3).size == 9


class TestNearest:

    def test_row_zero_is_north(self):
        data = np.array([[1, 1], [2, 2]], dtype=np.uint8)
        dataset = SourceDataset.from_bounds(data, BoundingBox(0.0, 0.0, 1.0, 1.0))

        result = sample_nearest(dataset, BoundingBox(0.0, 0.0, 1.0, 1.0), 1, 2)

        assert result.tolist() == [1, 2]

    def test_picks_closest_pixel(self):
        data = np.array([[10, 20, 30]], dtype=np.uint8)
        dataset = SourceDataset.from_bounds(data, BoundingBox(0.0, 0.0, 3.0, 1.0))

        result = sample_nearest(dataset, BoundingBox(0.0, 0.0, 3.0, 1.0), 6, 1)

        assert result.tolist() == [10, 10, 20, 20, 30, 30]
