"""
Replicate API Client
Handles communication with the hosted models (segmentation, image edit,
vehicle description) over Replicate's predictions HTTP API.

This is the only place that knows what shape a model's output takes
(data URI, URL, list, ZIP...). Every public method resolves to a PIL Image
or plain text before returning.
"""

import asyncio
import io
import logging
import zipfile
from typing import Any, Dict, Optional

import aiohttp
from PIL import Image

from config import ReplicateConfig
from errors import (
    CollaboratorAuthError,
    CollaboratorTimeoutError,
    ExternalCollaboratorError,
    FormatError,
)
from image_codec import data_uri_to_bytes, decode_image, image_to_data_uri

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("succeeded", "failed", "canceled")

WHEEL_PROMPT = "car wheel rim tire"
WHEEL_NEGATIVE_PROMPT = "background sky ground building"
BODY_PROMPT = "car"  # SAM3 segments the entire car from this
BODY_NEGATIVE_PROMPT = "wheel tire rim"

VEHICLE_SYSTEM_PROMPT = (
    "You are a car expert and photography analyst. Identify vehicles accurately "
    "and detect problematic camera angles."
)
VEHICLE_PROMPT = (
    "Describe the car in this photo: make, model, year, color, body type, the camera angle "
    "relative to the vehicle, and whether the photo is taken from an elevated position "
    "looking down at the car."
)


class ReplicateClient:
    """
    Client for the Replicate predictions API.

    Built once at startup from a validated ReplicateConfig; holds no
    per-request state, so one instance serves concurrent requests.
    """

    def __init__(self, config: ReplicateConfig, timeout: float = 600):
        """
        Args:
            config: validated connection settings
            timeout: upper bound in seconds for any single HTTP exchange
        """
        self.config = config
        self.api_url = config.api_url.rstrip("/")
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {config.api_token}",
            "Content-Type": "application/json",
        }
        logger.info(f"Initialized Replicate client with API URL: {self.api_url}")
        logger.info(f"Segmentation: {config.segmentation_model}, Generation: {config.generation_model}")

    def _prediction_request(self, model: str, model_input: Dict[str, Any]):
        """
        Endpoint and payload for a model reference.
        "owner/name:version" pins a version, "owner/name" runs the latest.
        """
        if ":" in model:
            version = model.split(":", 1)[1]
            return f"{self.api_url}/predictions", {"version": version, "input": model_input}
        return f"{self.api_url}/models/{model}/predictions", {"input": model_input}

    async def _read_json(self, response: aiohttp.ClientResponse) -> Dict[str, Any]:
        if response.status in (401, 403):
            error_text = await response.text()
            raise CollaboratorAuthError(f"Replicate rejected the API token ({response.status}): {error_text[:200]}")
        if response.status >= 400:
            error_text = await response.text()
            raise ExternalCollaboratorError(f"Replicate API error {response.status}: {error_text[:500]}")
        try:
            return await response.json()
        except (aiohttp.ContentTypeError, ValueError) as e:
            raise ExternalCollaboratorError(f"Invalid JSON response from Replicate: {e}") from e

    async def run_model(self, model: str, model_input: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        """
        Create a prediction and wait for it to finish.

        Args:
            model: model reference ("owner/name" or "owner/name:version")
            model_input: the model's input fields
            timeout: seconds before giving up (defaults to the client timeout)

        Returns:
            The prediction's raw "output" field

        Raises:
            CollaboratorAuthError: on 401/403
            CollaboratorTimeoutError: if the prediction does not finish in time
            ExternalCollaboratorError: on any other failure
        """
        timeout = timeout or self.timeout
        endpoint, payload = self._prediction_request(model, model_input)
        started = asyncio.get_running_loop().time()

        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
                async with session.post(endpoint, json=payload, headers={**self.headers, "Prefer": "wait"}) as response:
                    prediction = await self._read_json(response)

                # Prefer: wait returns early for fast models; slow ones need polling
                while prediction.get("status") not in TERMINAL_STATUSES:
                    if asyncio.get_running_loop().time() - started > timeout:
                        raise CollaboratorTimeoutError(f"{model} did not finish within {timeout:.0f}s")
                    poll_url = (prediction.get("urls") or {}).get("get")
                    if not poll_url:
                        raise ExternalCollaboratorError(f"Prediction for {model} has no polling URL")
                    await asyncio.sleep(self.config.poll_interval)
                    async with session.get(poll_url, headers=self.headers) as response:
                        prediction = await self._read_json(response)

        except asyncio.TimeoutError as e:
            raise CollaboratorTimeoutError(f"{model} did not respond within {timeout:.0f}s") from e
        except aiohttp.ClientError as e:
            raise ExternalCollaboratorError(f"Network error talking to Replicate: {e}") from e

        elapsed = asyncio.get_running_loop().time() - started
        if prediction["status"] != "succeeded":
            raise ExternalCollaboratorError(
                f"{model} prediction {prediction['status']}: {prediction.get('error') or 'no error message'}"
            )
        logger.info(f"✅ {model} completed in {elapsed * 1000:.0f}ms")
        return prediction.get("output")

    async def download(self, url: str) -> bytes:
        """Fetch a URL into memory."""
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise ExternalCollaboratorError(f"Failed to download {url[:80]}: {response.status}")
                    return await response.read()
        except asyncio.TimeoutError as e:
            raise CollaboratorTimeoutError(f"Download timed out: {url[:80]}") from e
        except aiohttp.ClientError as e:
            raise ExternalCollaboratorError(f"Failed to download {url[:80]}: {e}") from e

    async def resolve_output(self, output: Any) -> bytes:
        """
        Normalize a model output into bytes.

        Accepts a data URI, an http(s) URL, a list (first item is used),
        a dict with a "url" key, or raw bytes.
        """
        if isinstance(output, (list, tuple)):
            if not output:
                raise ExternalCollaboratorError("Model returned an empty output list")
            return await self.resolve_output(output[0])
        if isinstance(output, dict) and "url" in output:
            return await self.resolve_output(output["url"])
        if isinstance(output, (bytes, bytearray)):
            return bytes(output)
        if isinstance(output, str):
            if output.startswith("data:"):
                try:
                    return data_uri_to_bytes(output)
                except FormatError as e:
                    raise ExternalCollaboratorError(f"Model returned a malformed data URI: {e.message}") from e
            if output.startswith(("http://", "https://")):
                return await self.download(output)
        raise ExternalCollaboratorError(f"Unexpected model output format: {type(output).__name__} {str(output)[:80]}")

    async def resolve_image(self, output: Any) -> Image.Image:
        data = await self.resolve_output(output)
        try:
            return decode_image(data)
        except FormatError as e:
            raise ExternalCollaboratorError(f"Model returned an undecodable image: {e.message}") from e

    @staticmethod
    def first_png_from_zip(data: bytes) -> bytes:
        """
        Extract the first PNG (by sorted name) from a ZIP archive.
        SAM3 returns frames such as 0000.png, 0001.png; frame 0 is the mask.
        """
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                names = archive.namelist()
                png_files = sorted(name for name in names if name.lower().endswith(".png"))
                if not png_files:
                    raise ExternalCollaboratorError(f"No PNG files found in ZIP. Files: {', '.join(names)}")
                logger.info(f"[SAM3] ZIP contains {len(names)} files, extracting {png_files[0]}")
                return archive.read(png_files[0])
        except zipfile.BadZipFile as e:
            raise ExternalCollaboratorError(f"Segmentation output is not a ZIP archive: {e}") from e

    async def segment(self, image: Image.Image, prompt: str, negative_prompt: Optional[str] = None) -> Image.Image:
        """
        Text-prompted segmentation.

        Retried with linear backoff (attempt * backoff seconds) on generic
        failures; authentication failures are raised immediately.

        Args:
            image: photo to segment
            prompt: what to segment ("car wheel rim tire")
            negative_prompt: what to leave out

        Returns:
            Mask image (white = match) at whatever resolution the model chose
        """
        model_input = {
            "video": image_to_data_uri(image),  # SAM3 accepts still images here
            "prompt": prompt,
            "mask_only": True,
            "mask_opacity": 1.0,
            "return_zip": True,
        }
        if negative_prompt:
            model_input["negative_prompt"] = negative_prompt

        logger.info(f"[SAM3] Segmenting with prompt: \"{prompt}\"")
        max_attempts = self.config.segmentation_max_attempts
        last_error: Optional[ExternalCollaboratorError] = None

        for attempt in range(1, max_attempts + 1):
            try:
                if attempt > 1:
                    logger.info(f"[SAM3] Retry attempt {attempt}/{max_attempts}...")
                    await asyncio.sleep(self.config.segmentation_backoff * attempt)

                output = await self.run_model(
                    self.config.segmentation_model, model_input, timeout=self.config.segmentation_timeout
                )
                zip_data = await self.resolve_output(output)
                mask = decode_image(self.first_png_from_zip(zip_data))
                logger.info(f"[SAM3] Mask received: {mask.width}x{mask.height}")
                return mask

            except CollaboratorAuthError:
                logger.error("[SAM3] Authentication failed, not retrying")
                raise
            except FormatError as e:
                last_error = ExternalCollaboratorError(f"Segmentation mask could not be decoded: {e.message}")
                logger.warning(f"[SAM3] Attempt {attempt} failed: {last_error.message}")
            except ExternalCollaboratorError as e:
                last_error = e
                logger.warning(f"[SAM3] Attempt {attempt} failed: {e.message}")

        logger.error(f"[SAM3] All {max_attempts} attempts failed")
        raise last_error

    async def detect_wheels(self, image: Image.Image) -> Image.Image:
        logger.info("[SAM3] Detecting wheels...")
        return await self.segment(image, WHEEL_PROMPT, WHEEL_NEGATIVE_PROMPT)

    async def detect_body(self, image: Image.Image) -> Image.Image:
        logger.info("[SAM3] Detecting car body...")
        return await self.segment(image, BODY_PROMPT, BODY_NEGATIVE_PROMPT)

    async def edit_image(
        self,
        image: Image.Image,
        instruction: str,
        reference: Optional[Image.Image] = None,
        timeout: Optional[float] = None,
    ) -> Image.Image:
        """
        Run the generative image-edit model. Not retried: calls are slow,
        costly and not idempotent.

        Args:
            image: base photo
            instruction: natural-language edit
            reference: optional texture reference (e.g. a wheel design)
            timeout: seconds before the call is abandoned

        Returns:
            Full-frame candidate image; resolution is whatever the model returned
        """
        images = [image_to_data_uri(image.convert("RGB"))]
        if reference is not None:
            images.append(image_to_data_uri(reference))

        logger.info(f"[Generate] Sending {len(images)} image(s) to {self.config.generation_model}")
        logger.info(f"[Generate] Prompt: {instruction[:100]}...")
        output = await self.run_model(
            self.config.generation_model,
            {"prompt": instruction, "image_input": images, "output_format": "png"},
            timeout=timeout,
        )
        candidate = await self.resolve_image(output)
        logger.info(f"[Generate] Candidate received: {candidate.width}x{candidate.height}")
        return candidate

    async def inpaint_image(
        self,
        image: Image.Image,
        mask: Image.Image,
        prompt: str,
        timeout: Optional[float] = None,
    ) -> Image.Image:
        """
        True inpainting: only pixels inside the white mask area are repainted.
        Not retried, like edit_image.

        Returns:
            Inpainted photo; resolution is whatever the model returned
        """
        logger.info(f"[Inpaint] Sending mask {mask.width}x{mask.height} to {self.config.inpaint_model}")
        logger.info(f"[Inpaint] Prompt: {prompt[:100]}...")
        output = await self.run_model(
            self.config.inpaint_model,
            {
                "image": image_to_data_uri(image.convert("RGB")),
                "mask": image_to_data_uri(mask.convert("L")),
                "prompt": prompt,
                "steps": 25,
                "guidance": 3.0,
                "output_format": "jpg",
                "safety_tolerance": 2,
            },
            timeout=timeout,
        )
        result = await self.resolve_image(output)
        logger.info(f"[Inpaint] Result received: {result.width}x{result.height}")
        return result

    async def fetch_image(self, url: str) -> Image.Image:
        logger.info(f"Fetching reference image: {url}")
        return await self.resolve_image(url)

    async def describe_vehicle(self, image: Image.Image) -> str:
        """Free-text vehicle description from the vision model (display only)."""
        output = await self.run_model(
            self.config.vision_model,
            {
                "prompt": VEHICLE_PROMPT,
                "system_prompt": VEHICLE_SYSTEM_PROMPT,
                "image_input": [image_to_data_uri(image.convert("RGB"))],
            },
        )
        # Language models stream tokens; the finished prediction holds them as a list
        if isinstance(output, (list, tuple)):
            return "".join(str(part) for part in output)
        if isinstance(output, str):
            return output
        raise ExternalCollaboratorError(f"Unexpected vision model output: {type(output).__name__}")
