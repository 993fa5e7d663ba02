"""Multi-backend super-resolution pipeline.

:class:`ImageUpscaler` chains the available backends in a fixed order:

1. Neural stage - optional restoration model, then up to ``max_neural_passes``
   passes of the preferred upscale model (tiled and test-time augmented).
2. Hardware stage - fixed integer factors of an accelerated scaler.
3. Classical fallback - a single Lanczos resample at the scale still owed.
4. Normalization - force the exact requested output size.
5. Optional sharpening.

Optional stages degrade to the next one when they fail; only the classical
fallback and normalization can fail an invocation. Every stage that runs is
recorded on the :class:`PipelineTrace` returned with the image.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import Executor
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from superscale.augmentation import AugmentationEnsemble, augmentations_for
from superscale.backends import BackendRegistry
from superscale.config import get_config
from superscale.errors import OutputUnproducible, UpscaleError
from superscale.hardware import HardwareScaler, NCNNHardwareScaler, best_scale_factor
from superscale.imaging import (
    LanczosResampler,
    Resampler,
    Sharpener,
    UnsharpSharpener,
    image_size,
    scaled_dimension,
    validate_image,
)
from superscale.logger import setup_logger
from superscale.options import QualityMode, UpscaleOptions
from superscale.reconcile import ScaleReconciler, residual_scale, target_dimensions
from superscale.selector import select_strategy
from superscale.tiling import HARDWARE_TILE_OVERLAP, TiledInferenceEngine, call_backend

logger = setup_logger(__name__)
config = get_config()

# Remaining scales at or below this are considered reached.
SCALE_EPSILON = 1.01


@dataclass
class PipelineTrace:
    """Append-only record of the stages that ran."""

    labels: List[str] = field(default_factory=list)
    used_ai: bool = False
    inference_pass_count: int = 0
    model_summary: Optional[str] = None

    def append(self, label: str) -> None:
        self.labels.append(label)

    @property
    def summary(self) -> str:
        return " -> ".join(self.labels)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "labels": list(self.labels),
            "summary": self.summary,
            "used_ai": self.used_ai,
            "inference_pass_count": self.inference_pass_count,
            "model_summary": self.model_summary,
        }


@dataclass(frozen=True)
class UpscaleResult:
    """Final image plus the trace of how it was produced."""

    image: np.ndarray
    trace: PipelineTrace

    @property
    def backend_summary(self) -> str:
        return self.trace.summary

    @property
    def used_ai(self) -> bool:
        return self.trace.used_ai

    @property
    def model_summary(self) -> Optional[str]:
        return self.trace.model_summary

    @property
    def inference_pass_count(self) -> int:
        return self.trace.inference_pass_count

    def to_metadata(self) -> Dict[str, Any]:
        """Return a JSON-serialisable representation."""
        height, width = self.image.shape[:2]
        return {"width": width, "height": height, **self.trace.to_dict()}


@dataclass(frozen=True)
class NeuralStageResult:
    image: np.ndarray
    remaining_scale: float
    model_summary: str
    inference_pass_count: int


class ImageUpscaler:
    """Facade sequencing neural, hardware and classical upscaling backends.

    All collaborators are injected; defaults are an empty backend registry,
    the config-gated NCNN hardware scaler, Lanczos resampling and an unsharp
    mask. Instances hold no per-invocation state and may be shared.
    """

    def __init__(
        self,
        registry: Optional[BackendRegistry] = None,
        hardware_scaler: Optional[HardwareScaler] = None,
        resampler: Optional[Resampler] = None,
        sharpener: Optional[Sharpener] = None,
        engine: Optional[TiledInferenceEngine] = None,
        ensemble: Optional[AugmentationEnsemble] = None,
        max_neural_passes: Optional[int] = None,
        nominal_hint_margin: Optional[float] = None,
        hardware_overlap: Optional[int] = None,
    ) -> None:
        self.registry = registry if registry is not None else BackendRegistry()
        self.hardware_scaler = (
            hardware_scaler if hardware_scaler is not None else NCNNHardwareScaler()
        )
        self.resampler = resampler or LanczosResampler()
        self.sharpener = sharpener or UnsharpSharpener()
        self.engine = engine or TiledInferenceEngine()
        self.ensemble = ensemble or AugmentationEnsemble(
            engine=self.engine, resampler=self.resampler
        )
        self.reconciler = ScaleReconciler(self.resampler)
        self.max_neural_passes = max(
            1,
            int(
                max_neural_passes
                if max_neural_passes is not None
                else getattr(config, "UPSCALE_MAX_NEURAL_PASSES", 4)
            ),
        )
        self.nominal_hint_margin = float(
            nominal_hint_margin
            if nominal_hint_margin is not None
            else getattr(config, "UPSCALE_NOMINAL_HINT_MARGIN", 0.05)
        )
        self.hardware_overlap = int(
            hardware_overlap
            if hardware_overlap is not None
            else getattr(config, "UPSCALE_HARDWARE_TILE_OVERLAP", HARDWARE_TILE_OVERLAP)
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def upscale(
        self, image: np.ndarray, options: Optional[UpscaleOptions] = None
    ) -> UpscaleResult:
        """Enlarge ``image`` to exactly ``round(size * options.scale)``.

        Raises:
            GeometryInvalid: for malformed images or non-positive scales.
            OutputUnproducible: when the classical fallback or normalization fails.
        """

        options = (options or UpscaleOptions()).clamped()
        validate_image(image)
        width, height = image_size(image)
        requested_scale = max(options.scale, 1.0)
        remaining = requested_scale
        trace = PipelineTrace()
        current = image

        logger.info(
            "Upscaling %dx%d image by x%.2f (%s mode)",
            width,
            height,
            requested_scale,
            options.quality_mode.value,
        )

        if remaining > SCALE_EPSILON:
            neural = self._attempt_neural_stage(current, remaining, options.quality_mode)
            if neural is not None:
                current = neural.image
                remaining = neural.remaining_scale
                trace.append(f"Neural {neural.model_summary}")
                trace.model_summary = neural.model_summary
                trace.inference_pass_count += neural.inference_pass_count
                trace.used_ai = True

        if remaining > SCALE_EPSILON:
            current, remaining = self._run_hardware_stage(current, remaining, trace)

        if remaining > SCALE_EPSILON:
            current = self._classical_upscale(current, remaining)
            trace.append("Lanczos x%.2f" % remaining)

        target_width, target_height = target_dimensions(width, height, requested_scale)
        if image_size(current) != (target_width, target_height):
            current = self._normalize(current, target_width, target_height)
            trace.append(f"Normalize to {target_width}x{target_height}")

        if not trace.labels:
            trace.append("No processing")

        if options.apply_sharpen:
            current = self._sharpen(current, trace)

        logger.info(
            "Upscaled to %dx%d via %s",
            current.shape[1],
            current.shape[0],
            trace.summary,
        )
        return UpscaleResult(image=current, trace=trace)

    async def upscale_async(
        self,
        image: np.ndarray,
        options: Optional[UpscaleOptions] = None,
        executor: Optional[Executor] = None,
    ) -> UpscaleResult:
        """Run :meth:`upscale` on a background worker and await its result."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, partial(self.upscale, image, options))

    # ------------------------------------------------------------------
    # Neural stage
    # ------------------------------------------------------------------
    def _attempt_neural_stage(
        self, image: np.ndarray, remaining: float, quality_mode: QualityMode
    ) -> Optional[NeuralStageResult]:
        try:
            return self._run_neural_stage(image, remaining, quality_mode)
        except Exception as exc:
            logger.warning("Neural stage failed, falling back: %s", exc, exc_info=True)
            return None

    def _run_neural_stage(
        self, image: np.ndarray, remaining: float, quality_mode: QualityMode
    ) -> Optional[NeuralStageResult]:
        descriptors = self.registry.list_available_backends()
        if not descriptors:
            logger.debug("No neural backends registered")
            return None

        strategy = select_strategy(quality_mode, descriptors)
        if strategy is None:
            logger.debug("No registered backend can upscale; skipping neural stage")
            return None

        augmentations = augmentations_for(quality_mode)
        current = image
        inference_passes = 0
        stage_labels: List[str] = []

        restoration = strategy.restoration_backend
        if restoration is not None:
            restored = self.ensemble.run_with_augmentations(
                current, restoration, augmentations, self.registry.infer_fn(restoration)
            )
            current = self.reconciler.reconcile(restored.image, *image_size(current))
            inference_passes += len(augmentations)
            stage_labels.append(f"{restoration.name} restore")

        upscaler = strategy.upscale_backend
        infer = self.registry.infer_fn(upscaler)
        nominal_hint = max(upscaler.nominal_scale, 1.0)
        passes = 0

        while remaining > SCALE_EPSILON and passes < self.max_neural_passes:
            stage = self.ensemble.run_with_augmentations(
                current, upscaler, augmentations, infer
            )
            effective = stage.effective_scale
            if effective <= SCALE_EPSILON:
                logger.info(
                    "'%s' made no progress (x%.3f); leaving neural stage",
                    upscaler.name,
                    effective,
                )
                break

            width, height = image_size(current)
            current = self.reconciler.reconcile(
                stage.image,
                scaled_dimension(width, effective),
                scaled_dimension(height, effective),
            )
            remaining = residual_scale(remaining, stage)
            passes += 1
            inference_passes += len(augmentations)
            logger.debug(
                "Neural pass %d with '%s': x%.3f, x%.3f remaining",
                passes,
                upscaler.name,
                effective,
                remaining,
            )

            if nominal_hint > SCALE_EPSILON and remaining < nominal_hint - self.nominal_hint_margin:
                break

        if passes == 0:
            return None

        stage_labels.append(upscaler.name)
        summary = "mode %s, pipeline %s, TTA x%d" % (
            quality_mode.display_name,
            " + ".join(stage_labels),
            len(augmentations),
        )
        return NeuralStageResult(
            image=current,
            remaining_scale=remaining,
            model_summary=summary,
            inference_pass_count=inference_passes,
        )

    # ------------------------------------------------------------------
    # Hardware stage
    # ------------------------------------------------------------------
    def _run_hardware_stage(
        self, image: np.ndarray, remaining: float, trace: PipelineTrace
    ) -> Tuple[np.ndarray, float]:
        current = image
        while remaining > SCALE_EPSILON:
            try:
                factor = best_scale_factor(self.hardware_scaler, remaining)
                if factor is None:
                    break
                current = self._hardware_pass(current, factor)
            except Exception as exc:
                logger.warning(
                    "Hardware scaler failed, stopping stage: %s", exc, exc_info=True
                )
                break

            remaining /= factor
            trace.append(f"Hardware SR x{factor}")
            trace.used_ai = True

        return current, remaining

    def _hardware_pass(self, image: np.ndarray, factor: int) -> np.ndarray:
        scaler = self.hardware_scaler
        width, height = image_size(image)
        max_width, max_height = scaler.max_input_size()

        def infer(tile: np.ndarray) -> np.ndarray:
            return scaler.scale(tile, factor)

        if max_width <= 0 or max_height <= 0 or (width <= max_width and height <= max_height):
            output = call_backend(infer, image)
        else:
            output = self.engine.run_tiles(
                image,
                min(width, max_width),
                min(height, max_height),
                self.hardware_overlap,
                infer,
            ).image

        return self.reconciler.reconcile(output, width * factor, height * factor)

    # ------------------------------------------------------------------
    # Terminal stages
    # ------------------------------------------------------------------
    def _classical_upscale(self, image: np.ndarray, scale: float) -> np.ndarray:
        try:
            return self.resampler.resample(image, scale, scale)
        except UpscaleError:
            raise
        except Exception as exc:
            raise OutputUnproducible(f"Lanczos upscale x{scale:.2f} failed: {exc}") from exc

    def _normalize(self, image: np.ndarray, width: int, height: int) -> np.ndarray:
        try:
            return self.reconciler.reconcile(image, width, height)
        except UpscaleError:
            raise
        except Exception as exc:
            raise OutputUnproducible(
                f"Normalizing to {width}x{height} failed: {exc}"
            ) from exc

    def _sharpen(self, image: np.ndarray, trace: PipelineTrace) -> np.ndarray:
        try:
            sharpened = self.sharpener.sharpen(image)
        except Exception as exc:
            logger.warning(
                "Sharpen failed, returning unsharpened image: %s", exc, exc_info=True
            )
            return image

        if sharpened is None or sharpened.shape[:2] != image.shape[:2]:
            logger.warning("Sharpen changed the image geometry; discarding its output")
            return image

        trace.append("Sharpen")
        return sharpened


__all__ = [
    "ImageUpscaler",
    "PipelineTrace",
    "SCALE_EPSILON",
    "UpscaleResult",
]
