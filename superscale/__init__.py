"""
SuperScale: Multi-backend image super-resolution pipeline
Main package initialization
"""

__version__ = "1.0.0"

from superscale.config import Config
from superscale.logger import setup_logger
from superscale.backends import BackendRegistry
from superscale.descriptors import BackendDescriptor, PipelineStrategy
from superscale.errors import (
    BackendUnavailable,
    GeometryInvalid,
    InferenceFailed,
    OutputUnproducible,
    UpscaleError,
)
from superscale.options import QualityMode, UpscaleOptions
from superscale.pipeline import ImageUpscaler, PipelineTrace, UpscaleResult

# Initialize logger
logger = setup_logger(__name__)

__all__ = [
    "BackendDescriptor",
    "BackendRegistry",
    "BackendUnavailable",
    "Config",
    "GeometryInvalid",
    "ImageUpscaler",
    "InferenceFailed",
    "OutputUnproducible",
    "PipelineStrategy",
    "PipelineTrace",
    "QualityMode",
    "UpscaleError",
    "UpscaleOptions",
    "UpscaleResult",
    "logger",
]
