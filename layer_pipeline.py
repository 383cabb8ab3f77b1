"""
Layer pipelines: turn an original photo, a region mask and a generative
edit into a transparent modification layer.

The generative model regenerates the whole frame (no inpainting), so its
output is only used as a texture source: the mask decides which pixels of
it survive, everything else becomes transparent.

Both pipelines walk the same states:
    AWAITING_MASK -> MASK_READY -> GENERATING_CANDIDATE -> CANDIDATE_READY
    -> COMPOSITING -> LAYER_READY
and drop to FAILED from any state. A pipeline object runs exactly once.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from PIL import Image

from catalog import (
    PaintOption,
    WheelOption,
    build_paint_instruction,
    build_wheel_inpaint_prompt,
    build_wheel_instruction,
    get_paint,
    get_wheel,
)
from compositor import change_ratio, cutout
from config import PipelineConfig
from errors import CollaboratorTimeoutError, MissingMaskError
from image_codec import image_to_data_uri
from mask_utils import (
    align_mask,
    align_photo,
    filter_to_largest_components,
    foreground_count,
    mask_coverage,
    subtract_mask,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    AWAITING_MASK = "awaiting_mask"
    MASK_READY = "mask_ready"
    GENERATING_CANDIDATE = "generating_candidate"
    CANDIDATE_READY = "candidate_ready"
    COMPOSITING = "compositing"
    LAYER_READY = "layer_ready"
    FAILED = "failed"


@dataclass
class LayerResult:
    """A finished modification layer plus what we learned producing it."""

    layer: Image.Image
    layer_type: str
    selection_id: str
    mask_coverage: float
    changed_ratio: float
    candidate_size: Tuple[int, int]
    elapsed_ms: int

    def to_dict(self) -> Dict:
        layer_uri = image_to_data_uri(self.layer)
        return {
            "success": True,
            "layerUrl": layer_uri,
            "layerType": self.layer_type,
            "selectionId": self.selection_id,
            "maskCoverage": round(self.mask_coverage, 4),
            "changedRatio": round(self.changed_ratio, 4),
            "candidateDimensions": {"width": self.candidate_size[0], "height": self.candidate_size[1]},
            "elapsed": self.elapsed_ms,
        }


class LayerPipeline:
    """
    Shared state machine. Subclasses provide the selection lookup, how the
    mask is obtained and refined, and the generative call.
    """

    layer_type = "layer"

    def __init__(self, client, config: PipelineConfig, detect_missing: bool = False):
        """
        Args:
            client: ReplicateClient (or anything with the same coroutine methods)
            config: pipeline tunables
            detect_missing: run segmentation when the caller supplies no mask
        """
        self.client = client
        self.config = config
        self.detect_missing = detect_missing
        self.mask: Optional[Image.Image] = None
        self.state = PipelineState.AWAITING_MASK
        self.history: List[PipelineState] = [self.state]

    def _advance(self, state: PipelineState):
        logger.info(f"[{self.layer_type}-pipeline] {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _select(self, selection_id: str):
        raise NotImplementedError

    async def _acquire_mask(self, original: Image.Image) -> Image.Image:
        raise NotImplementedError

    def _prepare_mask(self, mask: Image.Image, size: Tuple[int, int]) -> Image.Image:
        raise NotImplementedError

    async def _generate(self, original: Image.Image, option) -> Image.Image:
        raise NotImplementedError

    async def _generate_with_timeout(self, original: Image.Image, option) -> Image.Image:
        timeout = self.config.generation_timeout
        try:
            return await asyncio.wait_for(self._generate(original, option), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise CollaboratorTimeoutError(
                f"Image generation timed out after {timeout:.0f}s. Please try again."
            ) from e

    async def _execute(self, original: Image.Image, selection_id: str) -> LayerResult:
        if self.state != PipelineState.AWAITING_MASK or len(self.history) > 1:
            raise RuntimeError(f"{type(self).__name__} has already run (state: {self.state.value})")

        started = time.monotonic()
        size = original.size
        try:
            option = self._select(selection_id)
            logger.info(f"[{self.layer_type}-pipeline] Processing {selection_id.strip()} on {size[0]}x{size[1]} photo")

            mask = await self._acquire_mask(original)
            self._advance(PipelineState.MASK_READY)
            # flood fill is CPU-bound; keep the event loop free for other requests
            mask = await asyncio.to_thread(self._prepare_mask, mask, size)
            self.mask = mask
            coverage = mask_coverage(mask)
            logger.info(f"[{self.layer_type}-pipeline] Mask ready: {foreground_count(mask)} pixels ({coverage * 100:.1f}%)")

            self._advance(PipelineState.GENERATING_CANDIDATE)
            candidate = await self._generate_with_timeout(original, option)

            self._advance(PipelineState.CANDIDATE_READY)
            candidate_size = candidate.size
            candidate = align_photo(candidate, size)
            changed = change_ratio(original, candidate)
            logger.info(f"[{self.layer_type}-pipeline] Generator changed {changed * 100:.1f}% of the frame")

            self._advance(PipelineState.COMPOSITING)
            layer = cutout(candidate, mask, soft_edges=self.config.soft_mask_edges)

            self._advance(PipelineState.LAYER_READY)
        except Exception:
            self._advance(PipelineState.FAILED)
            raise

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"[{self.layer_type}-pipeline] Completed in {elapsed_ms}ms")
        return LayerResult(
            layer=layer,
            layer_type=self.layer_type,
            selection_id=selection_id.strip(),
            mask_coverage=coverage,
            changed_ratio=changed,
            candidate_size=candidate_size,
            elapsed_ms=elapsed_ms,
        )


class WheelLayerPipeline(LayerPipeline):
    """Swap the rims: texture from a reference wheel photo, region from the wheel mask."""

    layer_type = "wheel"

    def __init__(self, client, config: PipelineConfig, detect_missing: bool = False):
        super().__init__(client, config, detect_missing)
        self.wheel_mask: Optional[Image.Image] = None

    async def run(
        self,
        original: Image.Image,
        wheel_selection_id: str,
        wheel_mask: Optional[Image.Image] = None,
    ) -> LayerResult:
        self.wheel_mask = wheel_mask
        return await self._execute(original, wheel_selection_id)

    def _select(self, selection_id: str) -> WheelOption:
        return get_wheel(selection_id)

    async def _acquire_mask(self, original: Image.Image) -> Image.Image:
        if self.wheel_mask is not None:
            return self.wheel_mask
        if self.detect_missing:
            logger.info("[wheel-pipeline] No wheel mask supplied, detecting wheels...")
            return await self.client.detect_wheels(original)
        raise MissingMaskError("No wheel mask provided. Wait for wheel detection to complete.")

    def _prepare_mask(self, mask: Image.Image, size: Tuple[int, int]) -> Image.Image:
        return filter_to_largest_components(align_mask(mask, size), self.config.wheel_keep)

    async def _generate(self, original: Image.Image, option: WheelOption) -> Image.Image:
        reference = await self.client.fetch_image(f"{self.config.asset_base_url}{option.reference_image}")
        return await self.client.edit_image(
            original,
            build_wheel_instruction(option),
            reference=reference,
            timeout=self.config.generation_timeout,
        )


class PaintLayerPipeline(LayerPipeline):
    """Recolor the body: region is the body mask minus the wheel mask."""

    layer_type = "paint"

    def __init__(self, client, config: PipelineConfig, detect_missing: bool = True):
        super().__init__(client, config, detect_missing)
        self.body_mask: Optional[Image.Image] = None
        self.wheel_mask: Optional[Image.Image] = None

    async def run(
        self,
        original: Image.Image,
        paint_selection_id: str,
        body_mask: Optional[Image.Image] = None,
        wheel_mask: Optional[Image.Image] = None,
    ) -> LayerResult:
        self.body_mask = body_mask
        self.wheel_mask = wheel_mask
        return await self._execute(original, paint_selection_id)

    def _select(self, selection_id: str) -> PaintOption:
        return get_paint(selection_id)

    async def _acquire_mask(self, original: Image.Image) -> Image.Image:
        if self.body_mask is not None:
            logger.info("[paint-pipeline] Using pre-computed body mask")
            return self.body_mask
        if self.detect_missing:
            logger.info("[paint-pipeline] Detecting body...")
            return await self.client.detect_body(original)
        raise MissingMaskError("No body mask provided. Wait for body detection to complete.")

    def _prepare_mask(self, mask: Image.Image, size: Tuple[int, int]) -> Image.Image:
        body = filter_to_largest_components(align_mask(mask, size), self.config.body_keep)
        if self.wheel_mask is None:
            return body

        logger.info("[paint-pipeline] Subtracting wheels from body mask...")
        paint_region = subtract_mask(body, align_mask(self.wheel_mask, size))
        if foreground_count(paint_region) == 0:
            logger.warning("⚠️  Paint region is empty after removing wheels; layer will be fully transparent")
        return paint_region

    async def _generate(self, original: Image.Image, option: PaintOption) -> Image.Image:
        logger.info(f"[paint-pipeline] Painting: {option.name}")
        return await self.client.edit_image(
            original,
            build_paint_instruction(option),
            timeout=self.config.generation_timeout,
        )


class WheelInpaintLayerPipeline(WheelLayerPipeline):
    """
    Wheel swap through a true inpainting model.

    The model only repaints inside the mask it is given, so no reference
    photo is sent. Its output still goes through the same alignment and
    cutout, which keeps the layer transparent outside the wheels even if
    the model drifts.
    """

    async def _generate(self, original: Image.Image, option: WheelOption) -> Image.Image:
        return await self.client.inpaint_image(
            original,
            self.mask,
            build_wheel_inpaint_prompt(option),
            timeout=self.config.generation_timeout,
        )
