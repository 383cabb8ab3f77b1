"""
Tests for configuration validation and the wheel/paint catalog.
"""

import pytest

import config
from catalog import build_wheel_inpaint_prompt, build_wheel_instruction, get_paint, get_wheel, list_catalog
from config import PipelineConfig, ReplicateConfig
from errors import ConfigError, UnknownSelectionError


class TestReplicateConfig:
    """Tests for startup validation of the model API settings."""

    def test_valid_token(self):
        cfg = ReplicateConfig(api_token="r8_abc")
        assert cfg.validate() is cfg

    def test_missing_token(self):
        """Should refuse to start without a token."""
        with pytest.raises(ConfigError, match="REPLICATE_API_TOKEN not set"):
            ReplicateConfig(api_token="").validate()

    def test_wrong_token_prefix(self):
        with pytest.raises(ConfigError):
            ReplicateConfig(api_token="sk-abc").validate()

    def test_bad_url(self):
        with pytest.raises(ConfigError):
            ReplicateConfig(api_token="r8_abc", api_url="ftp://example.com").validate()

    def test_zero_attempts(self):
        with pytest.raises(ConfigError):
            ReplicateConfig(api_token="r8_abc", segmentation_max_attempts=0).validate()

    def test_from_env_strips_quotes(self, monkeypatch):
        """Should clean tokens pasted with quotes and whitespace."""
        monkeypatch.setattr(config, "REPLICATE_API_TOKEN", ' "r8_quoted" ')
        monkeypatch.setattr(config, "REPLICATE_API_URL", "https://api.replicate.com/v1/")

        cfg = ReplicateConfig.from_env()

        assert cfg.api_token == "r8_quoted"
        assert cfg.api_url == "https://api.replicate.com/v1"


class TestPipelineConfig:
    def test_defaults(self):
        cfg = PipelineConfig().validate()
        assert (cfg.wheel_keep, cfg.body_keep) == (4, 1)
        assert cfg.generation_timeout == 180.0
        assert cfg.soft_mask_edges is True

    def test_keep_must_be_positive(self):
        with pytest.raises(ConfigError):
            PipelineConfig(wheel_keep=0).validate()

    def test_timeout_must_be_positive(self):
        with pytest.raises(ConfigError):
            PipelineConfig(generation_timeout=0).validate()


class TestCatalog:
    """Tests for catalog lookups."""

    def test_lookup_ignores_whitespace(self):
        assert get_wheel("  19-diamond-cut\n").reference_image == "/wheels/19-diamond.png"
        assert get_paint(" vik-black ").name == "Vik Black"

    def test_unknown_ids(self):
        """Should raise UnknownSelectionError for unknown or empty ids."""
        with pytest.raises(UnknownSelectionError, match="Unknown wheel ID: 21-gold"):
            get_wheel("21-gold")
        with pytest.raises(UnknownSelectionError):
            get_paint("")
        with pytest.raises(UnknownSelectionError):
            get_paint(None)

    def test_wheel_instruction_mentions_reference(self):
        instruction = build_wheel_instruction(get_wheel("20-sputtering"))
        assert "20-inch sputtering finish" in instruction
        assert "foreground" in instruction

    def test_list_catalog(self):
        listing = list_catalog()
        assert len(listing["wheels"]) == 4
        assert len(listing["paints"]) == 8
        assert {"id": "cardiff-green", "name": "Cardiff Green"}.items() <= listing["paints"][3].items()


class TestConfigFromEnv:
    """Tests for turning malformed environment values into ConfigError."""

    def test_bad_generation_timeout(self, monkeypatch):
        """Should name the variable instead of failing with a bare ValueError."""
        monkeypatch.setattr(config, "GENERATION_TIMEOUT", "3min")

        with pytest.raises(ConfigError, match="GENERATION_TIMEOUT"):
            PipelineConfig.from_env()

    def test_bad_keep_count(self, monkeypatch):
        monkeypatch.setattr(config, "WHEEL_COMPONENT_KEEP", "four")

        with pytest.raises(ConfigError, match="WHEEL_COMPONENT_KEEP"):
            PipelineConfig.from_env()

    def test_fractional_attempts(self, monkeypatch):
        """Should refuse a non-integer attempt count."""
        monkeypatch.setattr(config, "REPLICATE_API_TOKEN", "r8_abc")
        monkeypatch.setattr(config, "SEGMENTATION_MAX_ATTEMPTS", "2.5")

        with pytest.raises(ConfigError, match="SEGMENTATION_MAX_ATTEMPTS"):
            ReplicateConfig.from_env()

    def test_numbers_parsed(self, monkeypatch):
        monkeypatch.setattr(config, "GENERATION_TIMEOUT", " 90 ")
        monkeypatch.setattr(config, "BODY_COMPONENT_KEEP", "2")

        cfg = PipelineConfig.from_env()

        assert cfg.generation_timeout == 90.0
        assert cfg.body_keep == 2


class TestInpaintPrompts:
    def test_every_wheel_has_a_prompt(self):
        """Should have an inpainting prompt for each catalog wheel."""
        for wheel in list_catalog()["wheels"]:
            assert build_wheel_inpaint_prompt(get_wheel(wheel["id"])).endswith("photorealistic car wheel")
