"""
Pixel-buffer primitives shared by the pipeline stages.

Images are ``numpy.ndarray`` buffers of shape ``(H, W)`` or ``(H, W, C)``.
Every helper returns a new array; inputs are never modified in place.
"""

from __future__ import annotations

import math
from typing import Optional, Protocol, Tuple

import cv2
import numpy as np
from PIL import Image, ImageFilter

from superscale.config import get_config
from superscale.errors import GeometryInvalid, OutputUnproducible
from superscale.logger import setup_logger

logger = setup_logger(__name__)
config = get_config()

SUPPORTED_CHANNELS = (1, 3, 4)


def validate_image(image: np.ndarray) -> np.ndarray:
    """Return ``image`` if it is a usable pixel buffer, else raise GeometryInvalid."""
    if not isinstance(image, np.ndarray):
        raise GeometryInvalid(f"Expected a numpy pixel buffer, got {type(image)!r}")
    if image.ndim not in (2, 3):
        raise GeometryInvalid(f"Unsupported image rank {image.ndim}")
    if image.ndim == 3 and image.shape[2] not in SUPPORTED_CHANNELS:
        raise GeometryInvalid(f"Unsupported channel count {image.shape[2]}")
    height, width = image.shape[:2]
    if width < 1 or height < 1:
        raise GeometryInvalid(f"Image dimensions must be positive, got {width}x{height}")
    return image


def is_image(value: object) -> bool:
    try:
        validate_image(value)  # type: ignore[arg-type]
    except GeometryInvalid:
        return False
    return True


def image_size(image: np.ndarray) -> Tuple[int, int]:
    """Return ``(width, height)``."""
    return int(image.shape[1]), int(image.shape[0])


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def scaled_dimension(value: int, scale: float) -> int:
    return max(1, round_half_up(value * scale))


def edge_extend(image: np.ndarray, width: int, height: int) -> np.ndarray:
    """Pad ``image`` to at least ``width`` x ``height`` by repeating its edge pixels."""
    current_width, current_height = image_size(image)
    pad_x = max(0, width - current_width)
    pad_y = max(0, height - current_height)
    if pad_x == 0 and pad_y == 0:
        return image

    padding = [(0, pad_y), (0, pad_x)]
    if image.ndim == 3:
        padding.append((0, 0))
    return np.pad(image, padding, mode="edge")


def blend(composite: np.ndarray, image: np.ndarray, weight: float) -> np.ndarray:
    """Dissolve ``image`` over a float32 ``composite`` with the given weight."""
    return composite * (1.0 - weight) + image.astype(np.float32) * weight


def to_dtype(image: np.ndarray, dtype: np.dtype) -> np.ndarray:
    """Cast a float buffer back to ``dtype``, rounding and clipping integer ranges."""
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return np.clip(np.rint(image), info.min, info.max).astype(dtype)
    return image.astype(dtype)


def to_pil(image: np.ndarray) -> Optional[Image.Image]:
    try:
        if image.ndim == 3 and image.shape[2] == 1:
            return Image.fromarray(image[:, :, 0])
        return Image.fromarray(image)
    except Exception:
        return None


def from_pil(pil_image: Image.Image, like: np.ndarray) -> np.ndarray:
    result = np.array(pil_image)
    if like.ndim == 3 and like.shape[2] == 1 and result.ndim == 2:
        result = result[:, :, np.newaxis]
    return result


class Resampler(Protocol):
    """Pure geometric transform with independent X/Y factors."""

    def resample(self, image: np.ndarray, scale_x: float, scale_y: float) -> np.ndarray:
        ...


class Sharpener(Protocol):
    def sharpen(self, image: np.ndarray) -> np.ndarray:
        ...


def resample_to(resampler: Resampler, image: np.ndarray, width: int, height: int) -> np.ndarray:
    """Resample ``image`` to exactly ``width`` x ``height`` through ``resampler``."""
    current_width, current_height = image_size(image)
    if (current_width, current_height) == (width, height):
        return image

    resized = resampler.resample(
        image, width / float(current_width), height / float(current_height)
    )
    if not is_image(resized) or image_size(resized) != (width, height):
        raise OutputUnproducible(
            f"Resampler did not produce a {width}x{height} image from "
            f"{current_width}x{current_height}"
        )
    return resized


class LanczosResampler:
    """High-quality geometric resampler backed by OpenCV's Lanczos kernel."""

    id = "lanczos"
    label = "Lanczos"

    def resample(self, image: np.ndarray, scale_x: float, scale_y: float) -> np.ndarray:
        if not (scale_x > 0 and scale_y > 0):
            raise GeometryInvalid(
                f"Resample factors must be positive, got {scale_x}x{scale_y}"
            )
        if abs(scale_x - 1.0) < 0.001 and abs(scale_y - 1.0) < 0.001:
            return image

        width, height = image_size(image)
        return self.resize_to(
            image, scaled_dimension(width, scale_x), scaled_dimension(height, scale_y)
        )

    def resize_to(self, image: np.ndarray, width: int, height: int) -> np.ndarray:
        if width < 1 or height < 1:
            raise GeometryInvalid(f"Target size must be positive, got {width}x{height}")
        if image_size(image) == (width, height):
            return image

        try:
            resized = cv2.resize(
                image, (width, height), interpolation=cv2.INTER_LANCZOS4
            )
        except cv2.error as exc:
            raise OutputUnproducible(
                f"Lanczos resample to {width}x{height} failed: {exc}"
            ) from exc

        # OpenCV drops a trailing singleton channel axis
        if image.ndim == 3 and resized.ndim == 2:
            resized = resized[:, :, np.newaxis]
        return resized


class UnsharpSharpener:
    """Post-filter that applies a subtle unsharp mask."""

    def __init__(
        self,
        radius: Optional[float] = None,
        percent: Optional[int] = None,
        threshold: Optional[int] = None,
    ) -> None:
        self.radius = float(
            radius if radius is not None else getattr(config, "SHARPEN_RADIUS", 1.2)
        )
        self.percent = int(
            percent if percent is not None else getattr(config, "SHARPEN_PERCENT", 35)
        )
        self.threshold = int(
            threshold
            if threshold is not None
            else getattr(config, "SHARPEN_THRESHOLD", 2)
        )

    def sharpen(self, image: np.ndarray) -> np.ndarray:
        pil_image = to_pil(image)
        if pil_image is None:
            raise OutputUnproducible(
                f"Cannot sharpen a {image.dtype} buffer with shape {image.shape}"
            )

        sharpened = pil_image.filter(
            ImageFilter.UnsharpMask(
                radius=self.radius, percent=self.percent, threshold=self.threshold
            )
        )
        return from_pil(sharpened, image)


__all__ = [
    "LanczosResampler",
    "Resampler",
    "Sharpener",
    "UnsharpSharpener",
    "blend",
    "edge_extend",
    "image_size",
    "is_image",
    "resample_to",
    "round_half_up",
    "scaled_dimension",
    "to_dtype",
    "validate_image",
]
