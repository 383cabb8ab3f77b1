"""
Pixel compositor.

Turns a full-frame generative candidate into a transparent modification
layer, and provides the difference and blend operations used for QA and
flattened previews. All inputs must already share one pixel grid
(see mask_utils.align_to_size); nothing here resizes.
"""

import logging
from typing import Optional

import numpy as np
from PIL import Image

from mask_utils import MASK_THRESHOLD, RegionRole, apply_role, foreground, mask_intensity, require_same_size

logger = logging.getLogger(__name__)

DEFAULT_CHANGE_THRESHOLD = 25
DIFFERENCE_COMPOSITE_THRESHOLD = 30


def _rgb(image: Image.Image) -> np.ndarray:
    return np.array(image.convert("RGB"), dtype=np.int16)


def classify_changed(
    original: Image.Image,
    candidate: Image.Image,
    threshold: int = DEFAULT_CHANGE_THRESHOLD,
) -> np.ndarray:
    """
    Per-pixel "the generator touched this" classification.

    A pixel is changed when |R1-R2| + |G1-G2| + |B1-B2| > threshold * 3.

    Returns:
        boolean array of shape (height, width)
    """
    require_same_size(original, candidate)
    diff = np.abs(_rgb(original) - _rgb(candidate)).sum(axis=2)
    return diff > threshold * 3


def change_ratio(
    original: Image.Image,
    candidate: Image.Image,
    threshold: int = DEFAULT_CHANGE_THRESHOLD,
) -> float:
    """Fraction of pixels classified as changed (QA signal)."""
    changed = classify_changed(original, candidate, threshold)
    return float(np.count_nonzero(changed)) / changed.size


def blend(original: Image.Image, modified: Image.Image, mask: Image.Image) -> Image.Image:
    """
    Alpha-blend two photos through a mask into one flattened, opaque RGBA image.

    alpha = mask / 255; out = original * (1 - alpha) + modified * alpha.
    """
    width, height = require_same_size(original, modified, mask)

    alpha = (mask_intensity(mask).astype(np.float32) / 255.0)[:, :, np.newaxis]
    base = np.array(original.convert("RGB"), dtype=np.float32)
    top = np.array(modified.convert("RGB"), dtype=np.float32)

    mixed = np.floor(base * (1.0 - alpha) + top * alpha + 0.5)
    out = np.empty((height, width, 4), dtype=np.uint8)
    out[:, :, :3] = np.clip(mixed, 0, 255).astype(np.uint8)
    out[:, :, 3] = 255
    return Image.fromarray(out)


def cutout(candidate: Image.Image, mask: Image.Image, soft_edges: bool = True) -> Image.Image:
    """
    Copy the candidate's colors into a layer whose alpha is the mask.

    Off-region pixels become fully transparent. The "everything else is
    identical to the original" guarantee comes from compositing this layer
    over the original (see ImageProcessor.compose_preview), not from this function.

    Args:
        candidate: full-frame generative output, aligned to the mask
        mask: region mask, same size
        soft_edges: use the grayscale mask value as alpha; when False,
                    alpha is 255 where mask > 128 and 0 elsewhere

    Returns:
        RGBA layer, same size as the inputs
    """
    width, height = require_same_size(candidate, mask)

    alpha = mask_intensity(mask)
    if not soft_edges:
        alpha = np.where(alpha > MASK_THRESHOLD, 255, 0).astype(np.uint8)

    layer = np.empty((height, width, 4), dtype=np.uint8)
    layer[:, :, :3] = np.array(candidate.convert("RGB"), dtype=np.uint8)
    layer[:, :, 3] = alpha

    visible = int(np.count_nonzero(alpha))
    logger.info(f"[Compositor] Layer {width}x{height}: {visible} visible pixels ({visible / alpha.size * 100:.1f}%)")
    return Image.fromarray(layer)



def difference_layer(
    original: Image.Image,
    candidate: Image.Image,
    threshold: int = DEFAULT_CHANGE_THRESHOLD,
    region_mask: Optional[Image.Image] = None,
    role: RegionRole = RegionRole.INCLUDE,
) -> Image.Image:
    """
    Transparent layer of the pixels the generator changed.

    Changed pixels take the candidate's color at full opacity; unchanged
    pixels are (0, 0, 0, 0). With a region mask, a changed pixel is kept
    only where the mask's role allows it: inside the mask for INCLUDE,
    outside for EXCLUDE.

    Args:
        original: photo the candidate was generated from
        candidate: generative output, aligned to the original
        threshold: per-channel change threshold (see classify_changed)
        region_mask: optional mask, same size
        role: how region_mask selects pixels

    Returns:
        RGBA layer, same size as the inputs
    """
    changed = classify_changed(original, candidate, threshold)
    keep = changed
    if region_mask is not None:
        require_same_size(original, region_mask)
        keep = changed & foreground(apply_role(region_mask, role))
        masked_out = int(np.count_nonzero(changed & ~keep))
        if masked_out:
            logger.info(f"[Compositor] Masked out {masked_out} changed pixels ({role.value} region)")

    height, width = keep.shape
    layer = np.zeros((height, width, 4), dtype=np.uint8)
    layer[keep, :3] = np.array(candidate.convert("RGB"), dtype=np.uint8)[keep]
    layer[keep, 3] = 255

    kept = int(np.count_nonzero(keep))
    logger.info(f"[Compositor] Difference layer: {kept} changed pixels ({kept / keep.size * 100:.1f}%)")
    return Image.fromarray(layer)


def difference_composite(
    original: Image.Image,
    candidate: Image.Image,
    threshold: int = DIFFERENCE_COMPOSITE_THRESHOLD,
) -> Image.Image:
    """
    Flattened merge: changed pixels from the candidate, the rest from the original.

    Returns:
        opaque RGBA image, same size as the inputs
    """
    changed = classify_changed(original, candidate, threshold)
    merged = np.where(
        changed[:, :, np.newaxis],
        np.array(candidate.convert("RGB"), dtype=np.uint8),
        np.array(original.convert("RGB"), dtype=np.uint8),
    )
    height, width = changed.shape
    out = np.empty((height, width, 4), dtype=np.uint8)
    out[:, :, :3] = merged
    out[:, :, 3] = 255
    logger.info(f"[Compositor] Difference composite: {int(np.count_nonzero(changed))} pixels from candidate")
    return Image.fromarray(out)
