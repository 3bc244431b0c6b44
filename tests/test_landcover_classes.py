"""
Tests for land-cover classification and suitability categories.
"""

import numpy as np
import pytest

from src.scoring.landcover import (
    LandClass,
    classify_land_code,
    derive_land_cover_classes,
    woodland_mask,
)
from src.scoring.suitability import (
    SuitabilityCategory,
    count_categories,
    map_score_to_category,
)


class TestDeriveLandCoverClasses:
    """Initial classification plus woodland edge promotion."""

    def test_shrub_and_grass_ideal_farmland_and_water_poor(self):
        codes = np.array([
            20, 40, 80, 50, 30,
            10, 80, 10, 95, 80,
            60, 90, 20, 60, 10,
        ], dtype=np.uint8)
        classes = derive_land_cover_classes(codes, 5, 3)

        assert classes[0] == LandClass.IDEAL  # shrubland
        assert classes[1] == LandClass.POOR  # cropland
        assert classes[2] == LandClass.POOR  # water
        assert classes[4] == LandClass.IDEAL  # grassland
        assert classes[8] == LandClass.CAUTION  # mangroves

    def test_woodland_bordering_clearing_promoted(self):
        codes = np.array([
            30, 30, 40, 40,
            10, 80, 80, 50,
        ], dtype=np.uint8)
        classes = derive_land_cover_classes(codes, 4, 2)

        assert classes[4] == LandClass.IDEAL

    def test_isolated_woodland_stays_caution(self):
        codes = np.array([
            40, 40, 40,
            40, 10, 40,
            40, 40, 40,
        ], dtype=np.uint8)
        classes = derive_land_cover_classes(codes, 3, 3)

        assert classes[4] == LandClass.CAUTION

    def test_diagonal_neighbour_promotes(self):
        codes = np.array([
            20, 80, 80,
            80, 10, 80,
            80, 80, 80,
        ], dtype=np.uint8)
        classes = derive_land_cover_classes(codes, 3, 3)

        assert classes[4] == LandClass.IDEAL

    def test_promotion_does_not_chain(self):
        """Woodland promoted by a clearing does not promote its own neighbours."""
        codes = np.array([30, 10, 10], dtype=np.uint8)
        classes = derive_land_cover_classes(codes, 3, 1)

        assert classes.tolist() == [LandClass.IDEAL, LandClass.IDEAL, LandClass.CAUTION]

    def test_promotion_does_not_wrap_rows(self):
        codes = np.array([
            80, 80, 30,
            10, 80, 80,
        ], dtype=np.uint8)
        classes = derive_land_cover_classes(codes, 3, 2)

        assert classes[3] == LandClass.CAUTION

    def test_poor_code_always_poor(self):
        for code in (40, 50, 60, 70, 80):
            codes = np.array([30, 30, 30, 30, code, 30, 30, 30, 30], dtype=np.uint8)
            classes = derive_land_cover_classes(codes, 3, 3)
            assert classes[4] == LandClass.POOR

    def test_size_mismatch_raises(self):
        with pytest.raises(ValueError, match="Expected 6"):
            derive_land_cover_classes(np.zeros(5, dtype=np.uint8), 3, 2)

    def test_unknown_code_is_caution(self):
        assert classify_land_code(123) == LandClass.CAUTION
        assert classify_land_code(100) == LandClass.IDEAL

    def test_woodland_mask(self):
        np.testing.assert_array_equal(woodland_mask(np.array([10, 20, 10, 40])), [1, 0, 1, 0])


class TestMapScoreToCategory:
    """Score + land class -> Poor / Caution / Ideal."""

    def test_non_finite_score_is_poor(self):
        for score in (float("nan"), float("inf"), float("-inf")):
            assert map_score_to_category(score, LandClass.IDEAL) == SuitabilityCategory.POOR

    def test_poor_land_forces_poor(self):
        for score in (0, 50, 75, 100):
            assert map_score_to_category(score, LandClass.POOR) == SuitabilityCategory.POOR

    def test_caution_land_is_capped(self):
        assert map_score_to_category(75, LandClass.CAUTION) == SuitabilityCategory.CAUTION
        assert map_score_to_category(75, LandClass.IDEAL) == SuitabilityCategory.IDEAL

    def test_caution_land_penalty(self):
        # 50 - 10 falls below the caution threshold
        assert map_score_to_category(50, LandClass.CAUTION) == SuitabilityCategory.POOR
        assert map_score_to_category(50, LandClass.IDEAL) == SuitabilityCategory.CAUTION

    def test_thresholds_on_ideal_land(self):
        assert map_score_to_category(70, LandClass.IDEAL) == SuitabilityCategory.IDEAL
        assert map_score_to_category(69.9, LandClass.IDEAL) == SuitabilityCategory.CAUTION
        assert map_score_to_category(45, LandClass.IDEAL) == SuitabilityCategory.CAUTION
        assert map_score_to_category(44.9, LandClass.IDEAL) == SuitabilityCategory.POOR

    def test_vectorised(self):
        scores = np.array([80.0, 80.0, 80.0, np.nan])
        land = np.array([LandClass.IDEAL, LandClass.CAUTION, LandClass.POOR, LandClass.IDEAL], dtype=np.uint8)

        result = map_score_to_category(scores, land)

        assert result.dtype == np.uint8
        assert result.tolist() == [
            SuitabilityCategory.IDEAL,
            SuitabilityCategory.CAUTION,
            SuitabilityCategory.POOR,
            SuitabilityCategory.POOR,
        ]

    def test_unknown_land_class_raises(self):
        with pytest.raises(ValueError, match="Unknown land class"):
            map_score_to_category(80, 7)


class TestCountCategories:

    def test_counts(self):
        categories = np.array([2, 2, 1, 0, 0, 0], dtype=np.uint8)
        assert count_categories(categories) == {"ideal": 2, "caution": 1, "poor": 3}

    def test_unknown_value_raises(self):
        with pytest.raises(ValueError):
            count_categories(np.array([0, 9]))
