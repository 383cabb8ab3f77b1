"""
Image encoding helpers.
Converts between raw bytes, data URIs and PIL Images. Everything past this
boundary works on PIL Images only.
"""

import base64
import binascii
import io
import logging

from PIL import Image, UnidentifiedImageError

from errors import FormatError

logger = logging.getLogger(__name__)


def decode_image(data: bytes) -> Image.Image:
    """
    Decode image bytes (PNG, JPEG, WEBP...) into a fully loaded PIL Image.

    Raises:
        FormatError: if the bytes are empty or not an image
    """
    if not data:
        raise FormatError("Empty image data")
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise FormatError(f"Unable to decode image: {e}") from e
    if image.width < 1 or image.height < 1:
        raise FormatError(f"Image has no pixels: {image.width}x{image.height}")
    return image


def data_uri_to_bytes(data_uri: str) -> bytes:
    """
    Extract the payload of a base64 data URI. A bare base64 string is accepted too.

    Raises:
        FormatError: if the payload is not valid base64
    """
    if not data_uri or not data_uri.strip():
        raise FormatError("Empty data URI")
    payload = data_uri.strip()
    if payload.startswith("data:"):
        if "," not in payload:
            raise FormatError("Malformed data URI (no comma separator)")
        payload = payload.split(",", 1)[1]
    # line-wrapped base64 (MIME style) is still valid input
    payload = "".join(payload.split())
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"Invalid base64 image payload: {e}") from e


def decode_data_uri(data_uri: str) -> Image.Image:
    return decode_image(data_uri_to_bytes(data_uri))


def bytes_to_data_uri(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


def encode_png(image: Image.Image) -> bytes:
    buffered = io.BytesIO()
    image.save(buffered, format="PNG")
    return buffered.getvalue()


def image_to_data_uri(image: Image.Image) -> str:
    """Encode as PNG (keeps the alpha channel) and wrap in a data URI."""
    return bytes_to_data_uri(encode_png(image), "image/png")
