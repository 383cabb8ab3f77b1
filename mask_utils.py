"""
Mask utilities: region filtering, alignment and mask combination.

Masks are PIL Images. A pixel is "in region" when its intensity is above
MASK_THRESHOLD (128 of 255). Multi-channel masks are read from channel 0.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple

import numpy as np
from PIL import Image

from errors import DimensionMismatchError, FormatError

logger = logging.getLogger(__name__)

MASK_THRESHOLD = 128


class RegionRole(str, Enum):
    """How a mask selects pixels: keep the inside, or keep the outside."""

    INCLUDE = "include"
    EXCLUDE = "exclude"


@dataclass
class Component:
    """A 4-connected group of foreground pixels found by one filtering call."""

    label: int
    pixel_count: int
    min_x: int
    max_x: int
    min_y: int
    max_y: int

    @property
    def bbox(self) -> Tuple[int, int, int, int]:
        return (self.min_x, self.min_y, self.max_x, self.max_y)


def mask_intensity(mask: Image.Image) -> np.ndarray:
    """
    Read a mask as a 2-D uint8 intensity array.

    Args:
        mask: PIL Image; 'L' is used as-is, RGB/RGBA/LA use channel 0,
              anything else is converted to 'L' first

    Returns:
        numpy array of shape (height, width), dtype uint8

    Raises:
        FormatError: if the input is not a usable image
    """
    if not isinstance(mask, Image.Image):
        raise FormatError(f"Expected a PIL Image mask, got {type(mask).__name__}")
    if mask.width < 1 or mask.height < 1:
        raise FormatError(f"Mask has no pixels: {mask.width}x{mask.height}")

    if mask.mode == "L":
        return np.array(mask, dtype=np.uint8)
    if mask.mode in ("RGB", "RGBA", "LA"):
        return np.array(mask.getchannel(0), dtype=np.uint8)
    return np.array(mask.convert("L"), dtype=np.uint8)


def foreground(mask: Image.Image) -> np.ndarray:
    """Boolean "in region" array (intensity > 128)."""
    return mask_intensity(mask) > MASK_THRESHOLD


def foreground_count(mask: Image.Image) -> int:
    return int(np.count_nonzero(foreground(mask)))


def binary_to_mask(region: np.ndarray) -> Image.Image:
    """Turn a boolean array into a strict black/white 'L' mask."""
    return Image.fromarray(np.where(region, 255, 0).astype(np.uint8))


def label_components(region: np.ndarray) -> Tuple[np.ndarray, List[Component]]:
    """
    Label 4-connected foreground components with an explicit-stack flood fill.

    Frames run to millions of pixels, so the fill keeps its own work list
    instead of recursing.

    Args:
        region: 2-D boolean array (True = in region)

    Returns:
        (labels, components): int32 label array (0 = background) and the
        components in discovery order (row-major scan)
    """
    height, width = region.shape
    in_region = region.ravel().tolist()
    labels = [0] * (width * height)
    components: List[Component] = []
    next_label = 1

    for start in np.flatnonzero(region).tolist():
        if labels[start]:
            continue

        label = next_label
        next_label += 1
        labels[start] = label
        stack = [start]
        pixels = 0
        min_x = max_x = start % width
        min_y = max_y = start // width

        while stack:
            idx = stack.pop()
            x = idx % width
            y = idx // width
            pixels += 1
            if x < min_x:
                min_x = x
            elif x > max_x:
                max_x = x
            if y < min_y:
                min_y = y
            elif y > max_y:
                max_y = y

            # 4-connectivity: left, right, up, down
            if x > 0:
                n = idx - 1
                if in_region[n] and not labels[n]:
                    labels[n] = label
                    stack.append(n)
            if x < width - 1:
                n = idx + 1
                if in_region[n] and not labels[n]:
                    labels[n] = label
                    stack.append(n)
            if y > 0:
                n = idx - width
                if in_region[n] and not labels[n]:
                    labels[n] = label
                    stack.append(n)
            if y < height - 1:
                n = idx + width
                if in_region[n] and not labels[n]:
                    labels[n] = label
                    stack.append(n)

        components.append(Component(label, pixels, min_x, max_x, min_y, max_y))

    label_array = np.array(labels, dtype=np.int32).reshape(height, width)
    return label_array, components


def keep_largest_components(mask: Image.Image, keep: int) -> Tuple[Image.Image, List[Component]]:
    """
    Keep only the `keep` largest connected regions of a mask.

    Segmentation prompted with "car wheel" or "car" also fires on background
    vehicles, reflections and decals; the subject vehicle dominates the
    frame, so the largest regions are the ones that belong to it.

    Args:
        mask: mask image, any size >= 1x1
        keep: number of largest components to retain (>= 1)

    Returns:
        (filtered, kept): 'L' mask of the same size with retained components
        at 255 and everything else 0, and the retained components largest first
    """
    if keep < 1:
        raise ValueError(f"keep must be >= 1, got {keep}")

    region = foreground(mask)
    height, width = region.shape
    labels, components = label_components(region)

    logger.info(f"[RegionFilter] Mask {width}x{height}: found {len(components)} regions, keeping up to {keep}")
    if not components:
        return Image.new("L", (width, height), 0), []

    # sorted() is stable: equal sizes stay in discovery order
    ranked = sorted(components, key=lambda c: c.pixel_count, reverse=True)
    for i, c in enumerate(ranked[:5]):
        logger.info(f"[RegionFilter] Region {i + 1}: {c.pixel_count} pixels, bounds: ({c.min_x},{c.min_y}) to ({c.max_x},{c.max_y})")

    kept = ranked[:keep]
    filtered = np.isin(labels, [c.label for c in kept])

    dropped = len(components) - len(kept)
    if dropped > 0:
        logger.info(f"[RegionFilter] Dropped {dropped} smaller regions ({int(np.count_nonzero(region & ~filtered))} pixels)")
    return binary_to_mask(filtered), kept


def filter_to_largest_components(mask: Image.Image, keep: int) -> Image.Image:
    """Mask with only the `keep` largest regions left in it."""
    filtered, _ = keep_largest_components(mask, keep)
    return filtered


def align_to_size(
    raster: Image.Image,
    width: int,
    height: int,
    resample: Image.Resampling = Image.Resampling.NEAREST,
) -> Image.Image:
    """
    Stretch a raster to exactly width x height (no crop, no padding).

    Returns the input unchanged when it already has the target size.

    Args:
        raster: PIL Image
        width, height: target size
        resample: NEAREST for masks (keeps hard edges, no gray values),
                  LANCZOS for photographs
    """
    if width < 1 or height < 1:
        raise ValueError(f"Target size must be at least 1x1, got {width}x{height}")
    if raster.size == (width, height):
        return raster

    logger.info(f"[Align] Resizing {raster.width}x{raster.height} -> {width}x{height} ({getattr(resample, 'name', resample)})")
    return raster.resize((width, height), resample)


def align_mask(mask: Image.Image, size: Tuple[int, int]) -> Image.Image:
    return align_to_size(mask, size[0], size[1], Image.Resampling.NEAREST)


def align_photo(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    return align_to_size(image, size[0], size[1], Image.Resampling.LANCZOS)


def require_same_size(*rasters: Image.Image) -> Tuple[int, int]:
    """
    Check that every raster shares one pixel grid.

    Raises:
        DimensionMismatchError: naming the sizes that disagree
    """
    sizes = [r.size for r in rasters]
    if len(set(sizes)) > 1:
        listed = ", ".join(f"{w}x{h}" for w, h in sizes)
        raise DimensionMismatchError(f"Rasters are not aligned: {listed}")
    return sizes[0]


def apply_role(mask: Image.Image, role: RegionRole) -> Image.Image:
    """Binary mask of the pixels a role keeps (inside for INCLUDE, outside for EXCLUDE)."""
    region = foreground(mask)
    if role == RegionRole.EXCLUDE:
        region = ~region
    return binary_to_mask(region)


def subtract_mask(base: Image.Image, exclude: Image.Image) -> Image.Image:
    """
    Pixel-wise: base is in region AND exclude is not.

    Used to take the wheels out of the body mask so paint never lands on a wheel.
    """
    require_same_size(base, exclude)
    combined = foreground(base) & foreground(apply_role(exclude, RegionRole.EXCLUDE))
    return binary_to_mask(combined)


def mask_coverage(mask: Image.Image) -> float:
    """Fraction of pixels in region (0.0 - 1.0)."""
    region = foreground(mask)
    return float(np.count_nonzero(region)) / region.size
