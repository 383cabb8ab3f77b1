"""
Pytest configuration and shared fixtures for Car Studio tests.

Provides mask/photo builders and an in-memory stand-in for the Replicate
client so pipelines run without network access.
"""

import asyncio
import io

import pytest
from PIL import Image

from config import PipelineConfig


def _make_mask(size, rects, value=255, mode="L"):
    mask = Image.new("L", size, 0)
    for left, top, right, bottom in rects:
        mask.paste(value, (left, top, right, bottom))
    return mask.convert(mode) if mode != "L" else mask


class FakeReplicateClient:
    """Records calls and returns canned rasters in place of the hosted models."""

    def __init__(
        self,
        wheel_mask=None,
        body_mask=None,
        candidate=None,
        reference=None,
        wheel_error=None,
        body_error=None,
        edit_error=None,
        edit_delay=0.0,
        description="2021 Volvo XC60, silver, three-quarter front view",
    ):
        self.wheel_mask = wheel_mask
        self.body_mask = body_mask
        self.candidate = candidate
        self.reference = reference or Image.new("RGB", (32, 32), (180, 180, 190))
        self.wheel_error = wheel_error
        self.body_error = body_error
        self.edit_error = edit_error
        self.edit_delay = edit_delay
        self.description = description
        self.calls = []
        self.api_url = "https://api.replicate.test/v1"

    async def detect_wheels(self, image):
        self.calls.append(("detect_wheels", image.size))
        if self.wheel_error:
            raise self.wheel_error
        return self.wheel_mask

    async def detect_body(self, image):
        self.calls.append(("detect_body", image.size))
        if self.body_error:
            raise self.body_error
        return self.body_mask

    async def fetch_image(self, url):
        self.calls.append(("fetch_image", url))
        return self.reference

    async def edit_image(self, image, instruction, reference=None, timeout=None):
        self.calls.append(("edit_image", instruction, reference is not None))
        if self.edit_delay:
            await asyncio.sleep(self.edit_delay)
        if self.edit_error:
            raise self.edit_error
        if self.candidate is not None:
            return self.candidate
        return Image.new("RGB", image.size, (255, 0, 0))

    async def inpaint_image(self, image, mask, prompt, timeout=None):
        self.calls.append(("inpaint_image", prompt, mask))
        if self.edit_error:
            raise self.edit_error
        if self.candidate is not None:
            return self.candidate
        return Image.new("RGB", image.size, (255, 0, 0))

    async def describe_vehicle(self, image):
        self.calls.append(("describe_vehicle", image.size))
        return self.description

    def called(self, name):
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def make_mask():
    """
    Build an 'L' mask with white rectangles.

    Usage: make_mask((width, height), [(left, top, right, bottom), ...])
    """
    return _make_mask


@pytest.fixture
def car_photo():
    """A 200x100 gray "photo" with a darker band where the car sits."""
    photo = Image.new("RGB", (200, 100), (120, 130, 140))
    photo.paste((40, 40, 40), (20, 30, 180, 90))
    return photo


@pytest.fixture
def png_bytes():
    def encode(image):
        buffered = io.BytesIO()
        image.save(buffered, format="PNG")
        return buffered.getvalue()
    return encode


@pytest.fixture
def pipeline_config():
    return PipelineConfig(
        wheel_keep=4,
        body_keep=1,
        generation_timeout=5.0,
        soft_mask_edges=True,
        asset_base_url="http://assets.test",
    )


@pytest.fixture
def fake_client_factory():
    return FakeReplicateClient
