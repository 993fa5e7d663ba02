"""Caller-facing upscale options."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum

from superscale.config import get_config
from superscale.errors import GeometryInvalid

config = get_config()


class QualityMode(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    ULTRA = "ultra"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def description(self) -> str:
        return {
            QualityMode.FAST: "Single AI upscaling pass for speed.",
            QualityMode.BALANCED: "AI restoration before upscaling for cleaner detail.",
            QualityMode.ULTRA: "Restoration plus multi-view AI inference for maximum quality.",
        }[self]

    @classmethod
    def parse(cls, value: "str | QualityMode") -> "QualityMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown quality mode '{value}'") from exc


def _default_quality_mode() -> QualityMode:
    return QualityMode.parse(getattr(config, "UPSCALE_QUALITY_MODE", "balanced"))


@dataclass(frozen=True)
class UpscaleOptions:
    scale: float = field(
        default_factory=lambda: float(getattr(config, "UPSCALE_DEFAULT_SCALE", 2.0))
    )
    quality_mode: QualityMode = field(default_factory=_default_quality_mode)
    apply_sharpen: bool = field(
        default_factory=lambda: bool(getattr(config, "UPSCALE_APPLY_SHARPEN", True))
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "quality_mode", QualityMode.parse(self.quality_mode))

    def clamped(
        self,
        minimum: float | None = None,
        maximum: float | None = None,
    ) -> "UpscaleOptions":
        """Return a copy with ``scale`` clamped into ``[minimum, maximum]``.

        Non-finite or non-positive scales are rejected rather than clamped.
        """

        scale = float(self.scale)
        if not math.isfinite(scale) or scale <= 0:
            raise GeometryInvalid(f"Scale must be a positive number, got {self.scale}")

        low = float(minimum if minimum is not None else getattr(config, "UPSCALE_MIN_SCALE", 1.0))
        high = float(maximum if maximum is not None else getattr(config, "UPSCALE_MAX_SCALE", 6.0))
        return replace(self, scale=max(low, min(scale, high)))


__all__ = ["QualityMode", "UpscaleOptions"]
