"""Exception hierarchy for the upscaling pipeline."""

from __future__ import annotations


class UpscaleError(RuntimeError):
    """Base error for upscaling failures."""


class BackendUnavailable(UpscaleError):
    """Raised when a backend cannot be used (missing library, weights or binary)."""


class InferenceFailed(UpscaleError):
    """Raised when a backend call errors or returns something that is not an image."""


class GeometryInvalid(UpscaleError, ValueError):
    """Raised for non-positive scales or empty/malformed images."""


class OutputUnproducible(UpscaleError):
    """Raised when a stage cannot materialize its output image."""


__all__ = [
    "UpscaleError",
    "BackendUnavailable",
    "InferenceFailed",
    "GeometryInvalid",
    "OutputUnproducible",
]
