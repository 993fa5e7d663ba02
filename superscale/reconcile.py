"""Residual-scale bookkeeping and size correction between stages."""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from superscale.imaging import (
    LanczosResampler,
    Resampler,
    image_size,
    resample_to,
    scaled_dimension,
)
from superscale.logger import setup_logger
from superscale.tiling import StageResult

logger = setup_logger(__name__)


def target_dimensions(width: int, height: int, scale: float) -> Tuple[int, int]:
    """Exact output size for ``scale``, rounding halves up."""
    return scaled_dimension(width, scale), scaled_dimension(height, scale)


def residual_scale(remaining: float, stage: StageResult) -> float:
    """Scale still owed after ``stage`` ran against ``remaining``."""
    return remaining / stage.effective_scale


class ScaleReconciler:
    """Forces images onto expected dimensions with independent X/Y resampling."""

    def __init__(self, resampler: Optional[Resampler] = None) -> None:
        self.resampler = resampler or LanczosResampler()

    def reconcile(
        self, image: np.ndarray, expected_width: int, expected_height: int
    ) -> np.ndarray:
        width, height = image_size(image)
        if (width, height) == (expected_width, expected_height):
            return image

        logger.debug(
            "Correcting %dx%d drift to %dx%d",
            width,
            height,
            expected_width,
            expected_height,
        )
        return resample_to(self.resampler, image, expected_width, expected_height)

    def normalize(
        self, image: np.ndarray, original_width: int, original_height: int, scale: float
    ) -> np.ndarray:
        """Force ``image`` to the exact size ``scale`` owes the original."""
        expected = target_dimensions(original_width, original_height, scale)
        return self.reconcile(image, *expected)


__all__ = ["ScaleReconciler", "residual_scale", "target_dimensions"]
