"""
Unit tests for mask_utils.

Covers connected-component labeling, largest-region filtering, alignment
and mask subtraction.
"""

import numpy as np
import pytest
from PIL import Image

from errors import DimensionMismatchError, FormatError
from mask_utils import (
    RegionRole,
    align_mask,
    align_to_size,
    apply_role,
    filter_to_largest_components,
    foreground,
    foreground_count,
    keep_largest_components,
    label_components,
    mask_coverage,
    mask_intensity,
    subtract_mask,
)


class TestMaskIntensity:
    """Tests for reading masks of different modes."""

    def test_rgb_mask_uses_first_channel(self):
        """Should read channel 0 of a color mask."""
        mask = Image.new("RGB", (4, 4), (200, 10, 10))
        assert mask_intensity(mask).max() == 200

    def test_threshold_is_strictly_above_128(self):
        """Should treat 128 as outside and 129 as inside."""
        mask = Image.new("L", (2, 1), 0)
        mask.putpixel((0, 0), 128)
        mask.putpixel((1, 0), 129)
        assert foreground(mask).tolist() == [[False, True]]

    def test_rejects_non_image(self):
        """Should raise FormatError for things that are not images."""
        with pytest.raises(FormatError):
            mask_intensity(np.zeros((4, 4)))


class TestLabelComponents:
    """Tests for the flood-fill labeler."""

    def test_diagonal_pixels_are_separate(self):
        """Should use 4-adjacency, so diagonal neighbours are different components."""
        region = np.array([[True, False], [False, True]])
        labels, components = label_components(region)

        assert len(components) == 2
        assert labels[0, 0] != labels[1, 1]

    def test_component_attributes(self, make_mask):
        """Should report pixel count and bounding box."""
        mask = make_mask((40, 30), [(5, 10, 15, 14)])
        _, components = label_components(foreground(mask))

        assert len(components) == 1
        assert components[0].pixel_count == 40
        assert components[0].bbox == (5, 10, 14, 13)

    def test_discovery_order_is_row_major(self, make_mask):
        """Should number components in scan order."""
        mask = make_mask((30, 30), [(20, 2, 25, 5), (2, 20, 6, 25)])
        _, components = label_components(foreground(mask))

        assert [c.min_y for c in components] == [2, 20]
        assert [c.label for c in components] == [1, 2]

    def test_large_component_does_not_recurse(self):
        """Should label a frame-sized component without hitting recursion limits."""
        region = np.ones((1000, 1000), dtype=bool)
        _, components = label_components(region)

        assert len(components) == 1
        assert components[0].pixel_count == 1_000_000


class TestFilterToLargestComponents:
    """Tests for keeping the N largest regions."""

    def test_keeps_two_large_blocks_drops_small(self, make_mask):
        """Should keep both 50x50 blocks and zero the 10x10 block."""
        mask = make_mask((200, 100), [(0, 0, 50, 50), (100, 0, 150, 50), (170, 70, 180, 80)])

        result = filter_to_largest_components(mask, 2)
        region = foreground(result)

        assert region[0:50, 0:50].all()
        assert region[0:50, 100:150].all()
        assert not region[70:80, 170:180].any()
        assert foreground_count(result) == 5000

    def test_unchanged_when_components_within_keep(self, make_mask):
        """Should return the same foreground when there are no more components than keep."""
        mask = make_mask((60, 60), [(0, 0, 10, 10), (20, 20, 25, 40), (50, 50, 60, 60)])

        for keep in (3, 4, 10):
            result = filter_to_largest_components(mask, keep)
            assert np.array_equal(foreground(result), foreground(mask))

    def test_never_grows_foreground(self, make_mask):
        """Should keep the foreground count the same or smaller for every keep."""
        rng = np.random.default_rng(7)
        mask = Image.fromarray((rng.random((40, 50)) > 0.6).astype(np.uint8) * 255)
        before = foreground_count(mask)

        for keep in (1, 2, 5, 50, 5000):
            assert foreground_count(filter_to_largest_components(mask, keep)) <= before

    def test_empty_mask_is_all_zero(self):
        """Should return an all-black mask of the same size, without error."""
        mask = Image.new("L", (17, 9), 0)
        result, kept = keep_largest_components(mask, 4)

        assert result.size == (17, 9)
        assert foreground_count(result) == 0
        assert kept == []

    def test_output_is_strictly_binary(self, make_mask):
        """Should write only 0 and 255."""
        mask = make_mask((30, 30), [(0, 0, 10, 10)], value=200)
        values = set(np.unique(np.array(filter_to_largest_components(mask, 1))).tolist())
        assert values <= {0, 255}

    def test_ties_keep_first_discovered(self, make_mask):
        """Should keep the earlier component when sizes are equal."""
        mask = make_mask((40, 40), [(0, 0, 5, 5), (30, 30, 35, 35)])
        result = foreground(filter_to_largest_components(mask, 1))

        assert result[0:5, 0:5].all()
        assert not result[30:35, 30:35].any()

    def test_kept_components_largest_first(self, make_mask):
        """Should return kept components sorted by size."""
        mask = make_mask((100, 20), [(0, 0, 5, 5), (10, 0, 30, 10), (40, 0, 50, 10)])
        _, kept = keep_largest_components(mask, 2)

        assert [c.pixel_count for c in kept] == [200, 100]

    def test_rejects_keep_below_one(self, make_mask):
        """Should refuse keep=0."""
        with pytest.raises(ValueError):
            filter_to_largest_components(make_mask((5, 5), []), 0)


class TestAlignToSize:
    """Tests for stretching rasters onto a target grid."""

    def test_same_size_is_identity(self):
        """Should hand back a pixel-identical raster when sizes already match."""
        rng = np.random.default_rng(1)
        raster = Image.fromarray(rng.integers(0, 256, (30, 40, 3), dtype=np.uint8))

        result = align_to_size(raster, 40, 30, Image.Resampling.LANCZOS)

        assert np.array_equal(np.array(result), np.array(raster))

    def test_stretches_without_preserving_aspect(self, make_mask):
        """Should fill the exact target size."""
        mask = make_mask((800, 600), [(100, 100, 200, 200)])
        assert align_to_size(mask, 1920, 1080).size == (1920, 1080)

    def test_nearest_keeps_mask_binary(self, make_mask):
        """Should not introduce gray values when scaling a mask."""
        mask = make_mask((37, 23), [(3, 4, 20, 19)])
        result = align_mask(mask, (101, 67))
        assert set(np.unique(np.array(result)).tolist()) <= {0, 255}

    def test_rejects_empty_target(self, make_mask):
        """Should refuse a zero-sized target."""
        with pytest.raises(ValueError):
            align_to_size(make_mask((4, 4), []), 0, 4)


class TestSubtractMask:
    """Tests for combining body and wheel masks."""

    def test_no_pixel_in_both_wheel_and_result(self, make_mask):
        """Should never leave a wheel pixel in the paint region."""
        body = make_mask((100, 60), [(10, 10, 90, 50)])
        wheels = make_mask((100, 60), [(15, 35, 35, 60), (65, 35, 85, 60)])

        paint = subtract_mask(body, wheels)

        assert not (foreground(paint) & foreground(wheels)).any()
        assert foreground(paint)[20, 50]

    def test_wheels_covering_body_leave_nothing(self, make_mask):
        """Should produce an empty region when the wheel mask contains the body mask."""
        body = make_mask((50, 50), [(10, 10, 20, 20)])
        wheels = make_mask((50, 50), [(5, 5, 30, 30)])
        assert foreground_count(subtract_mask(body, wheels)) == 0

    def test_size_mismatch_raises(self, make_mask):
        """Should refuse masks on different grids."""
        with pytest.raises(DimensionMismatchError):
            subtract_mask(make_mask((10, 10), []), make_mask((12, 10), []))


class TestApplyRole:
    """Tests for include/exclude roles."""

    def test_exclude_inverts(self, make_mask):
        """Should keep the outside of the mask for EXCLUDE."""
        mask = make_mask((10, 10), [(0, 0, 5, 10)])
        assert foreground_count(apply_role(mask, RegionRole.INCLUDE)) == 50
        assert foreground(apply_role(mask, RegionRole.EXCLUDE))[:, 5:].all()

    def test_coverage(self, make_mask):
        """Should report the in-region fraction."""
        assert mask_coverage(make_mask((10, 10), [(0, 0, 5, 10)])) == pytest.approx(0.5)
