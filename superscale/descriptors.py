"""Immutable metadata describing the enhancement backends the pipeline can use."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from superscale.errors import GeometryInvalid

# Descriptors at or below this nominal scale are treated as restoration models.
UPSCALE_THRESHOLD = 1.01

TileSize = Tuple[int, int]


def scale_hint_from_name(name: str) -> Optional[float]:
    """Guess a model's magnification from its file/model name."""
    lowered = name.lower()
    if "x4" in lowered or "4x" in lowered:
        return 4.0
    if "realesrgan" in lowered:
        return 4.0
    if "x3" in lowered or "3x" in lowered:
        return 3.0
    if "x2" in lowered or "2x" in lowered:
        return 2.0
    if "bsrgan" in lowered:
        return 1.0
    return None


@dataclass(frozen=True)
class BackendDescriptor:
    """Name, input-shape constraint and nominal magnification of one backend.

    ``preferred_tile_size`` is ``None`` for backends that accept any input size
    (up to a platform maximum) and ``(width, height)`` for fixed-shape models
    that require exactly that input.
    """

    name: str
    preferred_tile_size: Optional[TileSize] = None
    nominal_scale: float = 1.0

    def __post_init__(self) -> None:
        if not self.name:
            raise GeometryInvalid("Backend descriptors require a name")
        if not (math.isfinite(self.nominal_scale) and self.nominal_scale > 0):
            raise GeometryInvalid(
                f"Backend '{self.name}' has invalid nominal scale {self.nominal_scale}"
            )
        if self.preferred_tile_size is not None:
            width, height = self.preferred_tile_size
            if width < 1 or height < 1:
                raise GeometryInvalid(
                    f"Backend '{self.name}' has invalid tile size {width}x{height}"
                )
            object.__setattr__(self, "preferred_tile_size", (int(width), int(height)))

    @property
    def is_fixed_size(self) -> bool:
        return self.preferred_tile_size is not None

    @property
    def is_upscaler(self) -> bool:
        return self.nominal_scale > UPSCALE_THRESHOLD

    @classmethod
    def from_constraints(
        cls,
        name: str,
        input_size: Optional[TileSize] = None,
        output_size: Optional[TileSize] = None,
    ) -> "BackendDescriptor":
        """Build a descriptor from a model's declared input/output image shapes.

        Shapes with a non-positive dimension count as unconstrained. When both
        shapes are known, the nominal scale is the smaller of the two axis
        ratios; otherwise it falls back to the name hint, then 1.0.
        """

        tile_size = input_size if input_size and min(input_size) > 0 else None
        nominal: Optional[float] = None
        if tile_size and output_size and min(output_size) > 0:
            ratio = min(
                output_size[0] / float(tile_size[0]),
                output_size[1] / float(tile_size[1]),
            )
            if math.isfinite(ratio) and ratio > 0:
                nominal = ratio

        if nominal is None:
            nominal = scale_hint_from_name(name) or 1.0

        return cls(name=name, preferred_tile_size=tile_size, nominal_scale=nominal)


@dataclass(frozen=True)
class PipelineStrategy:
    """Ordered backend plan: optional restoration, then a required upscaler."""

    upscale_backend: BackendDescriptor
    restoration_backend: Optional[BackendDescriptor] = None

    def __post_init__(self) -> None:
        if self.upscale_backend.nominal_scale <= 1.0:
            raise GeometryInvalid(
                f"Upscale backend '{self.upscale_backend.name}' must magnify"
            )
        restoration = self.restoration_backend
        if restoration is None:
            return
        if restoration.nominal_scale > UPSCALE_THRESHOLD:
            raise GeometryInvalid(
                f"Restoration backend '{restoration.name}' must not magnify"
            )
        if restoration.name == self.upscale_backend.name:
            raise GeometryInvalid("Restoration and upscale backends must differ")


__all__ = [
    "BackendDescriptor",
    "PipelineStrategy",
    "UPSCALE_THRESHOLD",
    "scale_hint_from_name",
]
