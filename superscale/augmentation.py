"""Test-time augmentation ensemble around a tiled inference call."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from superscale.config import get_config
from superscale.descriptors import BackendDescriptor
from superscale.errors import OutputUnproducible
from superscale.imaging import (
    LanczosResampler,
    Resampler,
    blend,
    image_size,
    resample_to,
    to_dtype,
)
from superscale.logger import setup_logger
from superscale.options import QualityMode
from superscale.tiling import InferFn, StageResult, TiledInferenceEngine

logger = setup_logger(__name__)
config = get_config()


class Augmentation(Enum):
    """Symmetry transforms; each one is its own inverse."""

    IDENTITY = "identity"
    FLIP_HORIZONTAL = "flip_horizontal"
    FLIP_VERTICAL = "flip_vertical"
    ROTATE_180 = "rotate_180"

    def apply(self, image: np.ndarray) -> np.ndarray:
        if self is Augmentation.IDENTITY:
            return image
        if self is Augmentation.FLIP_HORIZONTAL:
            transformed = image[:, ::-1]
        elif self is Augmentation.FLIP_VERTICAL:
            transformed = image[::-1, :]
        else:
            transformed = image[::-1, ::-1]
        return np.ascontiguousarray(transformed)


_AUGMENTATIONS_BY_MODE = {
    QualityMode.FAST: (Augmentation.IDENTITY,),
    QualityMode.BALANCED: (Augmentation.IDENTITY, Augmentation.FLIP_HORIZONTAL),
    QualityMode.ULTRA: (
        Augmentation.IDENTITY,
        Augmentation.FLIP_HORIZONTAL,
        Augmentation.FLIP_VERTICAL,
        Augmentation.ROTATE_180,
    ),
}


def augmentations_for(quality_mode: QualityMode | str) -> Tuple[Augmentation, ...]:
    return _AUGMENTATIONS_BY_MODE[QualityMode.parse(quality_mode)]


def _deduplicate(augmentations: Sequence[Augmentation]) -> Tuple[Augmentation, ...]:
    seen: List[Augmentation] = []
    for augmentation in augmentations:
        if augmentation not in seen:
            seen.append(augmentation)
    return tuple(seen)


def merge_outputs(
    outputs: Sequence[np.ndarray], resampler: Optional[Resampler] = None
) -> np.ndarray:
    """Fold outputs into a progressive blend, in list order.

    The first output seeds the composite; output ``i`` (``i >= 1``) is resized
    to the first output's size if needed and dissolved over the composite with
    weight ``1 / (i + 1)``.
    """

    if not outputs:
        raise OutputUnproducible("No augmentation outputs to merge")
    first = outputs[0]
    if len(outputs) == 1:
        return first

    resampler = resampler or LanczosResampler()
    target_width, target_height = image_size(first)
    composite = first.astype(np.float32)

    for index, output in enumerate(outputs[1:], start=1):
        aligned = resample_to(resampler, output, target_width, target_height)
        if aligned.shape != first.shape:
            raise OutputUnproducible(
                f"Augmentation output shape {aligned.shape} cannot merge with {first.shape}"
            )
        composite = blend(composite, aligned, 1.0 / (index + 1))

    return to_dtype(composite, first.dtype)


class AugmentationEnsemble:
    """Runs a backend once per augmentation and merges the restored outputs."""

    def __init__(
        self,
        engine: Optional[TiledInferenceEngine] = None,
        resampler: Optional[Resampler] = None,
        workers: Optional[int] = None,
    ) -> None:
        self.engine = engine or TiledInferenceEngine()
        self.resampler = resampler or LanczosResampler()
        self.workers = max(
            1,
            int(
                workers
                if workers is not None
                else getattr(config, "UPSCALE_AUGMENTATION_WORKERS", 1)
            ),
        )

    def run_with_augmentations(
        self,
        image: np.ndarray,
        backend: BackendDescriptor,
        augmentations: Sequence[Augmentation],
        infer: InferFn,
    ) -> StageResult:
        augmentations = _deduplicate(augmentations) or (Augmentation.IDENTITY,)
        if len(augmentations) == 1 and augmentations[0] is Augmentation.IDENTITY:
            return self.engine.run_tiled(image, backend, infer)

        outputs = self._run_all(image, backend, augmentations, infer)
        width, height = image_size(image)
        scales_x = [image_size(output)[0] / float(width) for output in outputs]
        scales_y = [image_size(output)[1] / float(height) for output in outputs]

        merged = merge_outputs(outputs, self.resampler)
        logger.debug(
            "Merged %d augmented passes of '%s' into %dx%d",
            len(outputs),
            backend.name,
            merged.shape[1],
            merged.shape[0],
        )
        return StageResult(
            merged,
            sum(scales_x) / len(scales_x),
            sum(scales_y) / len(scales_y),
        )

    def _run_one(
        self,
        image: np.ndarray,
        backend: BackendDescriptor,
        augmentation: Augmentation,
        infer: InferFn,
    ) -> np.ndarray:
        transformed = augmentation.apply(image)
        result = self.engine.run_tiled(transformed, backend, infer)
        return augmentation.apply(result.image)

    def _run_all(
        self,
        image: np.ndarray,
        backend: BackendDescriptor,
        augmentations: Tuple[Augmentation, ...],
        infer: InferFn,
    ) -> List[np.ndarray]:
        if self.workers <= 1:
            return [
                self._run_one(image, backend, augmentation, infer)
                for augmentation in augmentations
            ]

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = [
                executor.submit(self._run_one, image, backend, augmentation, infer)
                for augmentation in augmentations
            ]
            # Collected in list order regardless of completion order
            return [future.result() for future in futures]


__all__ = [
    "Augmentation",
    "AugmentationEnsemble",
    "augmentations_for",
    "merge_outputs",
]
