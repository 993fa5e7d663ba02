"""
Configuration management for SuperScale
"""

import os
from pathlib import Path
from typing import Dict, Any
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    """Main configuration class for SuperScale"""

    # Application settings
    APP_NAME = "SuperScale"
    APP_VERSION = "1.0.0"
    DEBUG = _env_flag("DEBUG", "False")

    # Paths
    BASE_DIR = Path(__file__).parent.parent
    MODELS_DIR = Path(os.getenv("MODELS_DIR", str(BASE_DIR / "models")))
    LOGS_DIR = Path(os.getenv("LOGS_DIR", str(BASE_DIR / "logs")))

    # Upscale request defaults
    UPSCALE_DEFAULT_SCALE = float(os.getenv("UPSCALE_DEFAULT_SCALE", "2.0"))
    UPSCALE_MIN_SCALE = float(os.getenv("UPSCALE_MIN_SCALE", "1.0"))
    UPSCALE_MAX_SCALE = float(os.getenv("UPSCALE_MAX_SCALE", "6.0"))
    UPSCALE_QUALITY_MODE = os.getenv("UPSCALE_QUALITY_MODE", "balanced")
    UPSCALE_APPLY_SHARPEN = _env_flag("UPSCALE_APPLY_SHARPEN", "True")

    # Tiling
    UPSCALE_TILE_SIZE = int(os.getenv("UPSCALE_TILE_SIZE", "768"))
    UPSCALE_MIN_TILE_SIZE = int(os.getenv("UPSCALE_MIN_TILE_SIZE", "64"))
    UPSCALE_NEURAL_TILE_OVERLAP = int(os.getenv("UPSCALE_NEURAL_TILE_OVERLAP", "24"))
    UPSCALE_HARDWARE_TILE_OVERLAP = int(
        os.getenv("UPSCALE_HARDWARE_TILE_OVERLAP", "32")
    )
    UPSCALE_MAX_DIRECT_EDGE = int(os.getenv("UPSCALE_MAX_DIRECT_EDGE", "2048"))
    UPSCALE_TILE_WORKERS = int(os.getenv("UPSCALE_TILE_WORKERS", "1"))
    UPSCALE_AUGMENTATION_WORKERS = int(os.getenv("UPSCALE_AUGMENTATION_WORKERS", "1"))

    # Neural pass loop
    UPSCALE_MAX_NEURAL_PASSES = int(os.getenv("UPSCALE_MAX_NEURAL_PASSES", "4"))
    UPSCALE_NOMINAL_HINT_MARGIN = float(
        os.getenv("UPSCALE_NOMINAL_HINT_MARGIN", "0.05")
    )

    # Hardware scaler (Real-ESRGAN NCNN Vulkan executable)
    HARDWARE_MAX_INPUT_WIDTH = int(os.getenv("HARDWARE_MAX_INPUT_WIDTH", "1920"))
    HARDWARE_MAX_INPUT_HEIGHT = int(os.getenv("HARDWARE_MAX_INPUT_HEIGHT", "1920"))
    NCNN_UPSCALING_ENABLED = _env_flag("NCNN_UPSCALING_ENABLED", "False")
    NCNN_EXEC_PATH = os.getenv("NCNN_EXEC_PATH")
    NCNN_MODEL_NAME = os.getenv("NCNN_MODEL_NAME", "realesr-animevideov3")
    NCNN_TIMEOUT = float(os.getenv("NCNN_TIMEOUT", "240"))

    # Real-ESRGAN (PyTorch)
    REALESRGAN_HALF_PRECISION = _env_flag("REALESRGAN_HALF_PRECISION", "False")

    # Post-processing
    SHARPEN_RADIUS = float(os.getenv("SHARPEN_RADIUS", "1.2"))
    SHARPEN_PERCENT = int(os.getenv("SHARPEN_PERCENT", "35"))
    SHARPEN_THRESHOLD = int(os.getenv("SHARPEN_THRESHOLD", "2"))

    # Logging settings
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_TO_FILE = _env_flag("LOG_TO_FILE", "False")

    @classmethod
    def to_dict(cls) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if not key.startswith("_") and key.isupper()
        }


class DevelopmentConfig(Config):
    """Development configuration"""

    DEBUG = True
    LOG_LEVEL = "DEBUG"


class ProductionConfig(Config):
    """Production configuration"""

    DEBUG = False
    LOG_LEVEL = "INFO"


class TestingConfig(Config):
    """Testing configuration"""

    DEBUG = True
    LOG_TO_FILE = False
    NCNN_UPSCALING_ENABLED = False
    UPSCALE_TILE_WORKERS = 1
    UPSCALE_AUGMENTATION_WORKERS = 1


def get_config() -> Config:
    """Get appropriate configuration based on environment"""
    env = os.getenv("ENVIRONMENT", "development").lower()

    config_map = {
        "development": DevelopmentConfig,
        "production": ProductionConfig,
        "testing": TestingConfig,
    }

    return config_map.get(env, DevelopmentConfig)
