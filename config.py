"""
Configuration for the Car Studio backend.
Values come from environment variables; nothing here talks to the network.

Numeric settings are kept as the raw strings read from the environment and
parsed by the config objects' from_env(), so a malformed value becomes a
ConfigError at startup instead of an import failure.
"""

import os
from dataclasses import dataclass

from errors import ConfigError


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _parse_number(name: str, raw: str, kind=float):
    try:
        return kind(raw.strip())
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


# Replicate API token
# Quotes and surrounding whitespace are stripped (copy/paste from dashboards
# often leaves them). Tokens issued by Replicate start with "r8_".
#   export REPLICATE_API_TOKEN="r8_..."
REPLICATE_API_TOKEN = os.getenv("REPLICATE_API_TOKEN", "")
REPLICATE_API_URL = os.getenv("REPLICATE_API_URL", "https://api.replicate.com/v1")

# Models
# Segmentation: text-prompted SAM3 (returns a ZIP of PNG mask frames, even for a single image)
SEGMENTATION_MODEL = os.getenv(
    "SEGMENTATION_MODEL",
    "lucataco/sam3-video:8cbab4c2a3133e679b5b863b80527f6b5c751ec7b33681b7e0b7c79c749df961",
)
# Generative image edit: regenerates the whole frame, no inpainting guarantee
GENERATION_MODEL = os.getenv("GENERATION_MODEL", "google/nano-banana")
# Vehicle description (display only)
VISION_MODEL = os.getenv("VISION_MODEL", "openai/gpt-4.1-mini")
# True inpainting: only repaints inside the mask (used by the inpainting wheel route)
INPAINT_MODEL = os.getenv("INPAINT_MODEL", "black-forest-labs/flux-fill-pro")

# Timeouts (seconds)
GENERATION_TIMEOUT = os.getenv("GENERATION_TIMEOUT", "180")  # ~3 minutes, then abort
SEGMENTATION_TIMEOUT = os.getenv("SEGMENTATION_TIMEOUT", "120")
POLL_INTERVAL = os.getenv("POLL_INTERVAL", "1.0")

# Segmentation retry: attempts in total, sleep = attempt * backoff
SEGMENTATION_MAX_ATTEMPTS = os.getenv("SEGMENTATION_MAX_ATTEMPTS", "2")
SEGMENTATION_BACKOFF = os.getenv("SEGMENTATION_BACKOFF", "1.0")

# Region filter: how many of the largest connected components survive
# 4 = a car shows at most 4 wheels, 1 = a single foreground vehicle
WHEEL_COMPONENT_KEEP = os.getenv("WHEEL_COMPONENT_KEEP", "4")
BODY_COMPONENT_KEEP = os.getenv("BODY_COMPONENT_KEEP", "1")

# Use grayscale mask values directly as layer alpha (false = hard 0/255 at >128)
SOFT_MASK_EDGES = _env_bool("SOFT_MASK_EDGES", "true")

# Where the wheel reference images are served from
ASSET_BASE_URL = os.getenv("ASSET_BASE_URL", "http://localhost:3000")

# CORS
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]


@dataclass(frozen=True)
class ReplicateConfig:
    """Connection settings for the Replicate predictions API."""

    api_token: str
    api_url: str = "https://api.replicate.com/v1"
    segmentation_model: str = SEGMENTATION_MODEL
    generation_model: str = GENERATION_MODEL
    vision_model: str = VISION_MODEL
    inpaint_model: str = INPAINT_MODEL
    segmentation_timeout: float = 120.0
    poll_interval: float = 1.0
    segmentation_max_attempts: int = 2
    segmentation_backoff: float = 1.0

    @classmethod
    def from_env(cls) -> "ReplicateConfig":
        return cls(
            api_token=REPLICATE_API_TOKEN.replace('"', "").replace("'", "").strip(),
            api_url=REPLICATE_API_URL.rstrip("/"),
            segmentation_model=SEGMENTATION_MODEL,
            generation_model=GENERATION_MODEL,
            vision_model=VISION_MODEL,
            inpaint_model=INPAINT_MODEL,
            segmentation_timeout=_parse_number("SEGMENTATION_TIMEOUT", SEGMENTATION_TIMEOUT),
            poll_interval=_parse_number("POLL_INTERVAL", POLL_INTERVAL),
            segmentation_max_attempts=_parse_number("SEGMENTATION_MAX_ATTEMPTS", SEGMENTATION_MAX_ATTEMPTS, int),
            segmentation_backoff=_parse_number("SEGMENTATION_BACKOFF", SEGMENTATION_BACKOFF),
        )

    def validate(self) -> "ReplicateConfig":
        """
        Check the settings once, at startup.

        Returns:
            self, so construction and validation chain

        Raises:
            ConfigError: with the reason the configuration is unusable
        """
        if not self.api_token:
            raise ConfigError("REPLICATE_API_TOKEN not set")
        if not self.api_token.startswith("r8_"):
            raise ConfigError("Token should start with r8_")
        if not self.api_url.startswith(("http://", "https://")):
            raise ConfigError(f"REPLICATE_API_URL is not an http(s) URL: {self.api_url}")
        if self.segmentation_max_attempts < 1:
            raise ConfigError("SEGMENTATION_MAX_ATTEMPTS must be at least 1")
        return self


@dataclass(frozen=True)
class PipelineConfig:
    """Tunables for the layer pipelines."""

    wheel_keep: int = 4
    body_keep: int = 1
    generation_timeout: float = 180.0
    soft_mask_edges: bool = True
    asset_base_url: str = "http://localhost:3000"

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        return cls(
            wheel_keep=_parse_number("WHEEL_COMPONENT_KEEP", WHEEL_COMPONENT_KEEP, int),
            body_keep=_parse_number("BODY_COMPONENT_KEEP", BODY_COMPONENT_KEEP, int),
            generation_timeout=_parse_number("GENERATION_TIMEOUT", GENERATION_TIMEOUT),
            soft_mask_edges=SOFT_MASK_EDGES,
            asset_base_url=ASSET_BASE_URL.rstrip("/"),
        )

    def validate(self) -> "PipelineConfig":
        if self.wheel_keep < 1 or self.body_keep < 1:
            raise ConfigError("Component keep counts must be at least 1")
        if self.generation_timeout <= 0:
            raise ConfigError("GENERATION_TIMEOUT must be positive")
        return self
