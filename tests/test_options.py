"""Tests for options, descriptors and configuration."""

import math

import pytest

from superscale import config as config_module
from superscale.descriptors import BackendDescriptor, scale_hint_from_name
from superscale.errors import GeometryInvalid
from superscale.options import QualityMode, UpscaleOptions


@pytest.mark.parametrize(
    "requested, expected",
    [(0.5, 1.0), (1.0, 1.0), (2.5, 2.5), (6.0, 6.0), (10.0, 6.0)],
)
def test_scale_is_clamped_into_supported_range(requested, expected):
    options = UpscaleOptions(scale=requested).clamped()

    assert options.scale == expected


@pytest.mark.parametrize("bad_scale", [0.0, -2.0, math.nan, math.inf])
def test_non_positive_or_non_finite_scale_is_rejected(bad_scale):
    with pytest.raises(GeometryInvalid):
        UpscaleOptions(scale=bad_scale).clamped()


def test_quality_mode_parsing_is_case_insensitive():
    assert QualityMode.parse(" ULTRA ") is QualityMode.ULTRA
    assert UpscaleOptions(quality_mode="fast").quality_mode is QualityMode.FAST
    assert QualityMode.BALANCED.display_name == "Balanced"


def test_unknown_quality_mode_raises():
    with pytest.raises(ValueError):
        QualityMode.parse("extreme")


def test_descriptor_from_fixed_model_shapes():
    descriptor = BackendDescriptor.from_constraints("SRModel", (64, 64), (256, 256))

    assert descriptor.preferred_tile_size == (64, 64)
    assert descriptor.nominal_scale == 4.0
    assert descriptor.is_fixed_size and descriptor.is_upscaler


def test_descriptor_with_flexible_input_uses_name_hint():
    descriptor = BackendDescriptor.from_constraints("EDSR_x3", (-1, -1), (-1, -1))

    assert descriptor.preferred_tile_size is None
    assert descriptor.nominal_scale == 3.0


def test_descriptor_defaults_to_restoration_scale():
    descriptor = BackendDescriptor.from_constraints("BSRGAN")

    assert descriptor.nominal_scale == 1.0
    assert not descriptor.is_upscaler


def test_descriptor_rejects_invalid_geometry():
    with pytest.raises(GeometryInvalid):
        BackendDescriptor("Broken", preferred_tile_size=(0, 64))
    with pytest.raises(GeometryInvalid):
        BackendDescriptor("Broken", nominal_scale=0.0)
    with pytest.raises(GeometryInvalid):
        BackendDescriptor("")


@pytest.mark.parametrize(
    "name, expected",
    [
        ("RealESRGAN_x4plus", 4.0),
        ("RealESRGAN", 4.0),
        ("LapSRN_x2", 2.0),
        ("3x-anime", 3.0),
        ("BSRGAN", 1.0),
        ("mystery", None),
    ],
)
def test_scale_hint_from_name(name, expected):
    assert scale_hint_from_name(name) == expected


def test_get_config_selects_environment(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "testing")
    assert config_module.get_config() is config_module.TestingConfig

    monkeypatch.setenv("ENVIRONMENT", "production")
    assert config_module.get_config() is config_module.ProductionConfig

    monkeypatch.setenv("ENVIRONMENT", "unknown")
    assert config_module.get_config() is config_module.DevelopmentConfig


def test_config_to_dict_exposes_upscale_settings():
    settings = config_module.TestingConfig.to_dict()

    assert settings["UPSCALE_MAX_SCALE"] == 6.0
    assert settings["NCNN_UPSCALING_ENABLED"] is False
    assert "LOG_LEVEL" in settings


def test_setup_logger_does_not_duplicate_handlers():
    from superscale.logger import setup_logger

    first = setup_logger("superscale.tests.logger")
    handler_count = len(first.handlers)
    second = setup_logger("superscale.tests.logger")

    assert first is second
    assert handler_count >= 1
    assert len(second.handlers) == handler_count
