"""Tests for backend strategy selection."""

import pytest

from superscale.descriptors import BackendDescriptor, PipelineStrategy
from superscale.errors import GeometryInvalid
from superscale.options import QualityMode
from superscale.selector import (
    preferred_restoration_backend,
    preferred_upscale_backend,
    select_strategy,
)


def _d(name, scale):
    return BackendDescriptor(name, nominal_scale=scale)


def test_exact_preferred_name_wins_in_preference_order():
    candidates = [_d("RealESRGANx2", 2.0), _d("RealESRGAN_x4", 4.0), _d("EDSR_x4", 4.0)]

    assert preferred_upscale_backend(candidates).name == "RealESRGAN_x4"


def test_preferred_name_match_is_case_insensitive():
    candidates = [_d("EDSR_x4", 4.0), _d("realesrgan", 4.0)]

    assert preferred_upscale_backend(candidates).name == "realesrgan"


def test_family_substring_beats_higher_scale():
    candidates = [_d("EDSR_x4", 4.0), _d("my-RealESRGAN-anime", 2.0)]

    assert preferred_upscale_backend(candidates).name == "my-RealESRGAN-anime"


def test_highest_nominal_scale_with_first_tie_winning():
    candidates = [_d("ESPCN_x3", 3.0), _d("FSRCNN_x4", 4.0), _d("LapSRN_x4", 4.0)]

    assert preferred_upscale_backend(candidates).name == "FSRCNN_x4"


def test_restoration_prefers_bsrgan_then_first_candidate():
    assert (
        preferred_restoration_backend([_d("Denoise", 1.0), _d("BSRGAN-lite", 1.0)]).name
        == "BSRGAN-lite"
    )
    assert preferred_restoration_backend([_d("Denoise", 1.0), _d("Deblur", 1.0)]).name == "Denoise"
    assert preferred_restoration_backend([]) is None


def test_fast_mode_never_adds_restoration():
    strategy = select_strategy(
        QualityMode.FAST, [_d("BSRGAN", 1.0), _d("RealESRGAN", 4.0)]
    )

    assert strategy.upscale_backend.name == "RealESRGAN"
    assert strategy.restoration_backend is None


@pytest.mark.parametrize("mode", ["balanced", "ultra"])
def test_quality_modes_pair_restoration_with_upscaler(mode):
    strategy = select_strategy(
        mode, [_d("Denoise", 1.0), _d("BSRGAN", 1.0), _d("RealESRGAN", 4.0)]
    )

    assert strategy.upscale_backend.name == "RealESRGAN"
    assert strategy.restoration_backend.name == "BSRGAN"


def test_balanced_without_restorer_still_upscales():
    strategy = select_strategy(QualityMode.BALANCED, [_d("EDSR_x2", 2.0)])

    assert strategy.upscale_backend.name == "EDSR_x2"
    assert strategy.restoration_backend is None


def test_no_strategy_without_an_upscaler():
    assert select_strategy(QualityMode.ULTRA, []) is None
    assert select_strategy(QualityMode.ULTRA, [_d("BSRGAN", 1.0)]) is None


def test_upscale_threshold_separates_restorers_from_upscalers():
    strategy = select_strategy(
        QualityMode.BALANCED, [_d("Sharpen", 1.005), _d("Subtle", 1.02)]
    )

    assert strategy.upscale_backend.name == "Subtle"
    assert strategy.restoration_backend.name == "Sharpen"


def test_strategy_rejects_magnifying_restoration():
    with pytest.raises(GeometryInvalid):
        PipelineStrategy(
            upscale_backend=_d("RealESRGAN", 4.0),
            restoration_backend=_d("EDSR_x2", 2.0),
        )


def test_strategy_rejects_non_magnifying_upscaler():
    with pytest.raises(GeometryInvalid):
        PipelineStrategy(upscale_backend=_d("BSRGAN", 1.0))
