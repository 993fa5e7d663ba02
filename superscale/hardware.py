"""Hardware-accelerated frame scaler capability."""

from __future__ import annotations

import subprocess
import tempfile
from pathlib import Path
from typing import Optional, Protocol, Sequence, Tuple

import numpy as np
from PIL import Image

from superscale.config import get_config
from superscale.errors import InferenceFailed
from superscale.imaging import from_pil, to_pil
from superscale.logger import setup_logger

logger = setup_logger(__name__)
config = get_config()


class HardwareScaler(Protocol):
    """Protocol describing a fixed-factor accelerated scaler."""

    def is_supported(self) -> bool:
        ...

    def supported_factors(self) -> Sequence[int]:
        ...

    def max_input_size(self) -> Tuple[int, int]:
        ...

    def scale(self, image: np.ndarray, factor: int) -> np.ndarray:
        ...


def best_scale_factor(scaler: Optional[HardwareScaler], remaining: float) -> Optional[int]:
    """Largest supported integer factor above 1 that does not overshoot ``remaining``."""
    if scaler is None or not scaler.is_supported():
        return None

    factors = sorted({int(f) for f in scaler.supported_factors() if int(f) > 1}, reverse=True)
    for factor in factors:
        if factor <= remaining + 0.001:
            return factor
    return None


class UnsupportedHardwareScaler:
    """Stand-in for platforms without an accelerated scaler."""

    def is_supported(self) -> bool:
        return False

    def supported_factors(self) -> Sequence[int]:
        return ()

    def max_input_size(self) -> Tuple[int, int]:
        return (0, 0)

    def scale(self, image: np.ndarray, factor: int) -> np.ndarray:
        raise InferenceFailed("No hardware scaler available on this platform")


class NCNNHardwareScaler:
    """Wrapper around the Real-ESRGAN NCNN Vulkan executable (GPU via Vulkan)."""

    SUPPORTED_FACTORS: Tuple[int, ...] = (2, 3, 4)

    def __init__(
        self,
        exec_path: Optional[str] = None,
        model_name: Optional[str] = None,
        timeout: Optional[float] = None,
        max_input: Optional[Tuple[int, int]] = None,
        enabled: Optional[bool] = None,
    ) -> None:
        self.enabled = bool(
            enabled
            if enabled is not None
            else getattr(config, "NCNN_UPSCALING_ENABLED", False)
        )
        raw_path = exec_path or getattr(config, "NCNN_EXEC_PATH", None)
        self.exec_path = Path(raw_path).expanduser() if raw_path else None
        self.model_name = model_name or getattr(
            config, "NCNN_MODEL_NAME", "realesr-animevideov3"
        )
        self.timeout = float(
            timeout if timeout is not None else getattr(config, "NCNN_TIMEOUT", 240.0)
        )
        self._max_input = max_input or (
            int(getattr(config, "HARDWARE_MAX_INPUT_WIDTH", 1920)),
            int(getattr(config, "HARDWARE_MAX_INPUT_HEIGHT", 1920)),
        )

        if self.enabled and not self.exec_path:
            logger.warning("NCNN scaler enabled but NCNN_EXEC_PATH is missing")
            self.enabled = False
        if self.enabled and self.exec_path and not self.exec_path.exists():
            logger.warning("NCNN scaler executable not found at %s", self.exec_path)
            self.enabled = False

    def is_supported(self) -> bool:
        return self.enabled and self.exec_path is not None

    def supported_factors(self) -> Sequence[int]:
        return self.SUPPORTED_FACTORS

    def max_input_size(self) -> Tuple[int, int]:
        return self._max_input

    def scale(self, image: np.ndarray, factor: int) -> np.ndarray:
        if not self.is_supported():
            raise InferenceFailed("NCNN scaler is not available")
        if factor not in self.SUPPORTED_FACTORS:
            raise InferenceFailed(f"NCNN scaler does not support x{factor}")

        pil_image = to_pil(image)
        if pil_image is None:
            raise InferenceFailed(f"Cannot encode {image.dtype} buffer for NCNN scaler")

        with tempfile.TemporaryDirectory(prefix="superscale-ncnn-") as workdir:
            src_path = Path(workdir) / "input.png"
            dst_path = Path(workdir) / "output.png"
            pil_image.save(src_path)

            cmd = [
                str(self.exec_path),
                "-i",
                str(src_path),
                "-o",
                str(dst_path),
                "-s",
                str(factor),
                "-n",
                self.model_name,
            ]
            try:
                subprocess.run(
                    cmd,
                    check=True,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    timeout=self.timeout,
                )
            except subprocess.CalledProcessError as exc:
                raise InferenceFailed(
                    "NCNN scaler process failed (code %s): %s"
                    % (exc.returncode, exc.stderr.decode("utf-8", errors="ignore"))
                ) from exc
            except (OSError, subprocess.TimeoutExpired) as exc:
                raise InferenceFailed(f"NCNN scaler error: {exc}") from exc

            if not dst_path.exists():
                raise InferenceFailed("NCNN scaler produced no output file")
            with Image.open(dst_path) as decoded:
                converted = decoded.convert(pil_image.mode)

        return from_pil(converted, image)


__all__ = [
    "HardwareScaler",
    "NCNNHardwareScaler",
    "UnsupportedHardwareScaler",
    "best_scale_factor",
]
