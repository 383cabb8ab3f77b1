"""
Image Processor for Car Studio
The operations the API exposes: mask detection at upload time, and
wheel / paint layer generation on selection.

Masks and layers travel to and from the caller as PNG data URIs; inside,
everything is a PIL Image.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from PIL import Image

from compositor import (
    DEFAULT_CHANGE_THRESHOLD,
    DIFFERENCE_COMPOSITE_THRESHOLD,
    blend,
    difference_composite,
    difference_layer,
)
from config import PipelineConfig
from errors import CarStudioError, FormatError
from image_codec import decode_data_uri, decode_image, image_to_data_uri
from layer_pipeline import LayerResult, PaintLayerPipeline, WheelInpaintLayerPipeline, WheelLayerPipeline
from mask_utils import RegionRole, align_mask, align_photo, foreground_count, keep_largest_components

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass
class MaskDetection:
    """A filtered mask aligned to the original photo."""

    mask: Image.Image
    original_size: Tuple[int, int]
    raw_mask_size: Tuple[int, int]
    components: int
    elapsed_ms: int

    def to_dict(self, key: str) -> Dict:
        return {
            "success": True,
            key: image_to_data_uri(self.mask),
            "originalDimensions": {"width": self.original_size[0], "height": self.original_size[1]},
            "maskDimensions": {"width": self.raw_mask_size[0], "height": self.raw_mask_size[1]},
            "components": self.components,
            "elapsed": self.elapsed_ms,
        }


class ImageProcessor:
    """
    Runs detections and layer pipelines against one shared model client.

    Holds no per-request state: every call decodes its own inputs and
    builds a fresh pipeline, so concurrent requests never share rasters.
    """

    def __init__(self, client, config: PipelineConfig):
        """
        Args:
            client: ReplicateClient built at startup
            config: validated pipeline settings
        """
        self.client = client
        self.config = config
        logger.info(
            f"ImageProcessor initialized (wheel keep={config.wheel_keep}, body keep={config.body_keep}, "
            f"generation timeout={config.generation_timeout:.0f}s)"
        )

    @staticmethod
    def load_photo(image_data: bytes) -> Image.Image:
        return decode_image(image_data).convert("RGB")

    @staticmethod
    def load_mask(mask_data: Optional[str]) -> Optional[Image.Image]:
        """Decode an optional mask data URI; blank values mean "no mask"."""
        if mask_data is None or not mask_data.strip():
            return None
        return decode_data_uri(mask_data)

    async def _detect(self, image: Image.Image, part: str) -> MaskDetection:
        started = time.monotonic()
        if part == "wheel":
            raw_mask = await self.client.detect_wheels(image)
            keep = self.config.wheel_keep
        else:
            raw_mask = await self.client.detect_body(image)
            keep = self.config.body_keep

        logger.info(f"[detect-{part}] Raw mask {raw_mask.width}x{raw_mask.height}, photo {image.width}x{image.height}")
        mask, components = await asyncio.to_thread(keep_largest_components, align_mask(raw_mask, image.size), keep)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"[detect-{part}] Kept {len(components)} regions, {foreground_count(mask)} pixels, {elapsed_ms}ms")
        return MaskDetection(
            mask=mask,
            original_size=image.size,
            raw_mask_size=raw_mask.size,
            components=len(components),
            elapsed_ms=elapsed_ms,
        )

    async def detect_wheel_mask(self, image_data: bytes) -> MaskDetection:
        return await self._detect(self.load_photo(image_data), "wheel")

    async def detect_body_mask(self, image_data: bytes) -> MaskDetection:
        return await self._detect(self.load_photo(image_data), "body")

    async def detect_masks(self, image_data: bytes) -> Dict:
        """
        Run wheel and body detection concurrently.

        Each detection succeeds or fails on its own: a failed one is
        reported as an absent mask plus an error entry, never as a failure
        of the whole call.
        """
        image = self.load_photo(image_data)
        results = await asyncio.gather(
            self._detect(image, "wheel"),
            self._detect(image, "body"),
            return_exceptions=True,
        )

        response: Dict = {"success": True, "wheelMask": None, "bodyMask": None, "errors": {}}
        for part, key, result in zip(("wheel", "body"), ("wheelMask", "bodyMask"), results):
            if isinstance(result, MaskDetection):
                response[key] = image_to_data_uri(result.mask)
                continue
            if isinstance(result, CarStudioError):
                logger.warning(f"⚠️  {part} detection failed: {result.message}")
                response["errors"][part] = result.to_dict()
            else:
                logger.error(f"❌ {part} detection crashed", exc_info=result)
                response["errors"][part] = {"error": "internal_error", "message": str(result)}
        return response

    async def generate_wheel_layer(
        self,
        image_data: bytes,
        wheel_mask: Optional[str],
        wheel_selection_id: str,
    ) -> LayerResult:
        """Transparent layer holding only the new wheels."""
        original = self.load_photo(image_data)
        pipeline = WheelLayerPipeline(self.client, self.config)
        return await pipeline.run(original, wheel_selection_id, wheel_mask=self.load_mask(wheel_mask))

    async def generate_inpainted_wheel_layer(
        self,
        image_data: bytes,
        wheel_mask: Optional[str],
        wheel_selection_id: str,
    ) -> LayerResult:
        """Wheel layer from the inpainting model instead of the full-frame editor."""
        original = self.load_photo(image_data)
        pipeline = WheelInpaintLayerPipeline(self.client, self.config)
        return await pipeline.run(original, wheel_selection_id, wheel_mask=self.load_mask(wheel_mask))

    async def generate_paint_layer(
        self,
        image_data: bytes,
        paint_selection_id: str,
        body_mask: Optional[str] = None,
        wheel_mask: Optional[str] = None,
    ) -> LayerResult:
        """Transparent layer holding only the repainted body (never the wheels)."""
        original = self.load_photo(image_data)
        pipeline = PaintLayerPipeline(self.client, self.config)
        return await pipeline.run(
            original,
            paint_selection_id,
            body_mask=self.load_mask(body_mask),
            wheel_mask=self.load_mask(wheel_mask),
        )

    def compose_preview(self, image_data: bytes, layers: List[str]) -> Image.Image:
        """
        Flatten layers over the original, in order, each through its own alpha.

        Pixels every layer leaves transparent come out identical to the original.
        """
        result = self.load_photo(image_data)
        for layer_uri in layers:
            layer = decode_data_uri(layer_uri)
            if layer.mode != "RGBA":
                raise FormatError(f"Layer must be an RGBA PNG, got mode {layer.mode}")
            result = blend(result, layer, layer.getchannel("A"))
        logger.info(f"Composed preview from {len(layers)} layer(s)")
        return result

    def extract_difference_layer(
        self,
        image_data: bytes,
        candidate_data: bytes,
        region_mask: Optional[str] = None,
        mask_mode: str = "include",
        threshold: int = DEFAULT_CHANGE_THRESHOLD,
    ) -> Image.Image:
        """
        Layer of everything a generator changed, for candidates made without a trusted mask.

        The candidate and the optional region mask are stretched onto the
        original first. mask_mode is "include" (keep changes inside the
        mask) or "exclude" (keep changes outside it).
        """
        original = self.load_photo(image_data)
        candidate = align_photo(self.load_photo(candidate_data), original.size)
        try:
            role = RegionRole(mask_mode.strip().lower())
        except ValueError as e:
            raise FormatError(f"maskMode must be \"include\" or \"exclude\", got {mask_mode!r}") from e

        mask = self.load_mask(region_mask)
        if mask is not None:
            mask = align_mask(mask, original.size)
        return difference_layer(original, candidate, threshold, region_mask=mask, role=role)

    def merge_differences(
        self,
        image_data: bytes,
        candidate_data: bytes,
        threshold: int = DIFFERENCE_COMPOSITE_THRESHOLD,
    ) -> Image.Image:
        original = self.load_photo(image_data)
        candidate = align_photo(self.load_photo(candidate_data), original.size)
        return difference_composite(original, candidate, threshold)

    async def analyze_vehicle(self, image_data: bytes) -> str:
        return await self.client.describe_vehicle(self.load_photo(image_data))
