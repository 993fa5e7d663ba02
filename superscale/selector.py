"""Pick the restoration/upscale backend pair for a quality mode."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from superscale.descriptors import UPSCALE_THRESHOLD, BackendDescriptor, PipelineStrategy
from superscale.options import QualityMode

PREFERRED_UPSCALE_NAMES = (
    "RealESRGAN",
    "RealESRGAN_x4",
    "RealESRGANx4",
    "RealESRGAN_x2",
    "RealESRGANx2",
)
PREFERRED_UPSCALE_FAMILY = "realesrgan"
PREFERRED_RESTORATION_FAMILY = "bsrgan"


def preferred_upscale_backend(
    candidates: Sequence[BackendDescriptor],
) -> Optional[BackendDescriptor]:
    if not candidates:
        return None

    for preferred in PREFERRED_UPSCALE_NAMES:
        wanted = preferred.lower()
        for candidate in candidates:
            if candidate.name.lower() == wanted:
                return candidate

    for candidate in candidates:
        if PREFERRED_UPSCALE_FAMILY in candidate.name.lower():
            return candidate

    # max() keeps the first of equal keys
    return max(candidates, key=lambda candidate: candidate.nominal_scale)


def preferred_restoration_backend(
    candidates: Sequence[BackendDescriptor],
) -> Optional[BackendDescriptor]:
    for candidate in candidates:
        if PREFERRED_RESTORATION_FAMILY in candidate.name.lower():
            return candidate
    return candidates[0] if candidates else None


def select_strategy(
    quality_mode: QualityMode | str,
    descriptors: Iterable[BackendDescriptor],
) -> Optional[PipelineStrategy]:
    """Return the backend plan for ``quality_mode`` or ``None`` when nothing can upscale."""

    mode = QualityMode.parse(quality_mode)
    available = list(descriptors)

    upscalers = [d for d in available if d.nominal_scale > UPSCALE_THRESHOLD]
    upscale_backend = preferred_upscale_backend(upscalers)
    if upscale_backend is None:
        return None

    if mode is QualityMode.FAST:
        return PipelineStrategy(upscale_backend=upscale_backend)

    restorers = [
        d
        for d in available
        if d.nominal_scale <= UPSCALE_THRESHOLD and d.name != upscale_backend.name
    ]
    return PipelineStrategy(
        upscale_backend=upscale_backend,
        restoration_backend=preferred_restoration_backend(restorers),
    )


__all__ = [
    "PREFERRED_UPSCALE_NAMES",
    "preferred_restoration_backend",
    "preferred_upscale_backend",
    "select_strategy",
]
