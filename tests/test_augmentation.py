"""Tests for the test-time augmentation ensemble."""

import numpy as np
import pytest

from superscale.augmentation import (
    Augmentation,
    AugmentationEnsemble,
    augmentations_for,
    merge_outputs,
)
from superscale.descriptors import BackendDescriptor
from superscale.errors import OutputUnproducible
from superscale.options import QualityMode
from superscale.tiling import TiledInferenceEngine

UPSCALER = BackendDescriptor("RealESRGAN", nominal_scale=2.0)


def _double(image):
    return np.repeat(np.repeat(image, 2, axis=0), 2, axis=1)


def _sample(height=12, width=10):
    rng = np.random.default_rng(3)
    return rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)


def test_augmentation_sets_per_mode():
    assert augmentations_for(QualityMode.FAST) == (Augmentation.IDENTITY,)
    assert augmentations_for("balanced") == (
        Augmentation.IDENTITY,
        Augmentation.FLIP_HORIZONTAL,
    )
    assert augmentations_for(QualityMode.ULTRA) == (
        Augmentation.IDENTITY,
        Augmentation.FLIP_HORIZONTAL,
        Augmentation.FLIP_VERTICAL,
        Augmentation.ROTATE_180,
    )


@pytest.mark.parametrize("augmentation", list(Augmentation))
def test_each_augmentation_is_its_own_inverse(augmentation):
    image = _sample()

    assert np.array_equal(augmentation.apply(augmentation.apply(image)), image)


def test_rotate_180_reverses_both_axes():
    image = np.arange(6, dtype=np.uint8).reshape(2, 3)

    assert Augmentation.ROTATE_180.apply(image).tolist() == [[5, 4, 3], [2, 1, 0]]


def test_merge_is_progressive_mean():
    outputs = [
        np.full((4, 4, 3), value, dtype=np.uint8) for value in (0, 30, 90)
    ]

    merged = merge_outputs(outputs)

    assert merged.dtype == np.uint8
    assert np.all(merged == 40)


def test_merge_single_output_is_returned_unchanged():
    only = _sample()

    assert merge_outputs([only]) is only


def test_merge_resizes_outputs_to_first_size():
    outputs = [
        np.full((4, 4, 3), 100, dtype=np.uint8),
        np.full((8, 8, 3), 100, dtype=np.uint8),
    ]

    merged = merge_outputs(outputs)

    assert merged.shape == (4, 4, 3)
    assert np.all(np.abs(merged.astype(int) - 100) <= 1)


def test_merge_requires_outputs():
    with pytest.raises(OutputUnproducible):
        merge_outputs([])


def test_ultra_ensemble_with_symmetric_backend_matches_single_pass():
    calls = []

    def infer(image):
        calls.append(image.shape)
        return _double(image)

    ensemble = AugmentationEnsemble(engine=TiledInferenceEngine())
    image = _sample()

    result = ensemble.run_with_augmentations(
        image, UPSCALER, augmentations_for(QualityMode.ULTRA), infer
    )

    assert len(calls) == 4
    assert result.scale_x == 2.0 and result.scale_y == 2.0
    assert np.array_equal(result.image, _double(image))


def test_identity_only_skips_merging():
    ensemble = AugmentationEnsemble(engine=TiledInferenceEngine())
    image = _sample()

    result = ensemble.run_with_augmentations(
        image, UPSCALER, [Augmentation.IDENTITY, Augmentation.IDENTITY], _double
    )

    assert np.array_equal(result.image, _double(image))


def test_reported_scale_is_mean_of_augmented_passes():
    factors = iter([2, 3])

    def infer(image):
        factor = next(factors)
        return np.repeat(np.repeat(image, factor, axis=0), factor, axis=1)

    ensemble = AugmentationEnsemble(engine=TiledInferenceEngine(), workers=1)
    image = _sample(10, 10)

    result = ensemble.run_with_augmentations(
        image, UPSCALER, augmentations_for(QualityMode.BALANCED), infer
    )

    assert result.scale_x == pytest.approx(2.5)
    assert result.scale_y == pytest.approx(2.5)
    assert result.image.shape == (20, 20, 3)


def test_parallel_augmentations_match_sequential():
    image = _sample(16, 16)
    augmentations = augmentations_for(QualityMode.ULTRA)

    sequential = AugmentationEnsemble(workers=1).run_with_augmentations(
        image, UPSCALER, augmentations, _double
    )
    parallel = AugmentationEnsemble(workers=4).run_with_augmentations(
        image, UPSCALER, augmentations, _double
    )

    assert np.array_equal(sequential.image, parallel.image)
