"""Inference backend registry and neural backend adapters.

The registry is the injection point for whatever model discovery/loading the
host application performs: it pairs each :class:`BackendDescriptor` with an
object exposing ``infer(image) -> image``. Adapters for Real-ESRGAN (PyTorch)
and OpenCV's ``dnn_superres`` module are provided; both import their heavy
libraries lazily and raise :class:`BackendUnavailable` when they are missing.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from functools import partial
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Protocol,
    Tuple,
    Union,
)

import numpy as np

from superscale.config import get_config
from superscale.descriptors import BackendDescriptor, scale_hint_from_name
from superscale.errors import BackendUnavailable
from superscale.logger import setup_logger
from superscale.tiling import InferFn

logger = setup_logger(__name__)
config = get_config()


class InferenceBackend(Protocol):
    """Protocol describing one opaque inference capability."""

    def infer(self, image: np.ndarray) -> np.ndarray:
        ...


class CallableBackend:
    """Adapts a plain ``image -> image`` function to :class:`InferenceBackend`."""

    def __init__(self, func: Callable[[np.ndarray], np.ndarray]) -> None:
        self._func = func

    def infer(self, image: np.ndarray) -> np.ndarray:
        return self._func(image)


BackendLike = Union[InferenceBackend, Callable[[np.ndarray], np.ndarray]]


class BackendRegistry:
    """Ordered set of available backends, keyed by descriptor name."""

    def __init__(
        self, backends: Optional[Iterable[Tuple[BackendDescriptor, BackendLike]]] = None
    ) -> None:
        self._descriptors: Dict[str, BackendDescriptor] = {}
        self._backends: Dict[str, InferenceBackend] = {}
        for descriptor, backend in backends or ():
            self.register(descriptor, backend)

    def register(self, descriptor: BackendDescriptor, backend: BackendLike) -> None:
        if not hasattr(backend, "infer"):
            if not callable(backend):
                raise TypeError(f"Backend for '{descriptor.name}' is not callable")
            backend = CallableBackend(backend)
        if descriptor.name in self._descriptors:
            logger.warning("Replacing registered backend '%s'", descriptor.name)
        self._descriptors[descriptor.name] = descriptor
        self._backends[descriptor.name] = backend  # type: ignore[assignment]
        logger.debug(
            "Registered backend '%s' (nominal x%.2f, tile %s)",
            descriptor.name,
            descriptor.nominal_scale,
            descriptor.preferred_tile_size or "any",
        )

    def list_available_backends(self) -> Tuple[BackendDescriptor, ...]:
        return tuple(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    @contextmanager
    def session(self, descriptor: BackendDescriptor) -> Iterator[InferFn]:
        """Scope one inference call; backend sessions are released on every exit path."""
        backend = self._backends.get(descriptor.name)
        if backend is None:
            raise BackendUnavailable(f"Backend '{descriptor.name}' is not registered")

        acquire = getattr(backend, "acquire", None)
        release = getattr(backend, "release", None)
        handle = acquire() if callable(acquire) else None
        try:
            yield backend.infer
        finally:
            if callable(release):
                release(handle)

    def infer(self, image: np.ndarray, descriptor: BackendDescriptor) -> np.ndarray:
        with self.session(descriptor) as run:
            return run(image)

    def infer_fn(self, descriptor: BackendDescriptor) -> InferFn:
        return partial(self._infer_bound, descriptor)

    def _infer_bound(self, descriptor: BackendDescriptor, image: np.ndarray) -> np.ndarray:
        return self.infer(image, descriptor)


class RealESRGANBackend:
    """Real-ESRGAN (RRDBNet) super-resolution via the ``realesrgan`` package.

    The model is loaded on first use. RealESRGANer's own tiler is disabled
    because the pipeline tiles images itself.
    """

    def __init__(
        self,
        model_path: Union[str, Path],
        scale: Optional[int] = None,
        num_block: int = 23,
        num_feat: int = 64,
        num_grow_ch: int = 32,
        device: Optional[str] = None,
        half: Optional[bool] = None,
    ) -> None:
        self.model_path = Path(model_path)
        hint = scale_hint_from_name(self.model_path.stem)
        self.scale = int(scale or hint or 4)
        self.num_block = num_block
        self.num_feat = num_feat
        self.num_grow_ch = num_grow_ch
        self._device_preference = device
        self.use_half = bool(
            half
            if half is not None
            else getattr(config, "REALESRGAN_HALF_PRECISION", False)
        )
        self._device = "cpu"
        self._upsampler: Any = None
        self._lock = threading.Lock()

    @property
    def descriptor(self) -> BackendDescriptor:
        return BackendDescriptor(
            name=self.model_path.stem, nominal_scale=float(self.scale)
        )

    def acquire(self) -> Any:
        if self._upsampler is None:
            with self._lock:
                if self._upsampler is None:
                    self._upsampler = self._build()
        return self._upsampler

    def release(self, _handle: Any) -> None:
        if self._device != "cuda":
            return
        import torch

        torch.cuda.empty_cache()

    def infer(self, image: np.ndarray) -> np.ndarray:
        upsampler = self.acquire()
        output, _ = upsampler.enhance(image, outscale=self.scale)
        return output

    def _build(self) -> Any:
        try:
            import torch
            from basicsr.archs.rrdbnet_arch import RRDBNet  # type: ignore
            from realesrgan import RealESRGANer  # type: ignore
        except Exception as exc:
            raise BackendUnavailable(f"Real-ESRGAN libraries unavailable: {exc}") from exc

        if not self.model_path.exists():
            raise BackendUnavailable(f"Missing Real-ESRGAN weights: {self.model_path}")

        preference = (self._device_preference or "auto").lower()
        if preference == "cpu" or not torch.cuda.is_available():
            self._device = "cpu"
        else:
            self._device = "cuda"

        net = RRDBNet(
            num_in_ch=3,
            num_out_ch=3,
            num_feat=self.num_feat,
            num_block=self.num_block,
            num_grow_ch=self.num_grow_ch,
            scale=self.scale,
        )
        upsampler = RealESRGANer(
            scale=self.scale,
            model_path=str(self.model_path),
            model=net,
            tile=0,
            tile_pad=10,
            pre_pad=0,
            half=self.use_half and self._device == "cuda",
            device=torch.device(self._device),
        )
        logger.info(
            "Real-ESRGAN backend initialized (%s, device=%s)",
            self.model_path.name,
            self._device,
        )
        return upsampler


OPENCV_SUPERRES_ALGORITHMS = ("edsr", "espcn", "fsrcnn", "lapsrn")


class OpenCVSuperResBackend:
    """OpenCV ``dnn_superres`` model (EDSR, ESPCN, FSRCNN or LapSRN)."""

    def __init__(
        self,
        model_path: Union[str, Path],
        algorithm: Optional[str] = None,
        scale: Optional[int] = None,
    ) -> None:
        self.model_path = Path(model_path)
        stem = self.model_path.stem.lower()
        self.algorithm = (algorithm or stem.split("_")[0]).lower()
        if self.algorithm not in OPENCV_SUPERRES_ALGORITHMS:
            raise BackendUnavailable(
                f"Unknown OpenCV super-resolution algorithm '{self.algorithm}'"
            )
        self.scale = int(scale or scale_hint_from_name(stem) or 4)
        self._sr: Any = None
        self._lock = threading.Lock()

    @property
    def descriptor(self) -> BackendDescriptor:
        return BackendDescriptor(
            name=self.model_path.stem, nominal_scale=float(self.scale)
        )

    def acquire(self) -> Any:
        if self._sr is None:
            with self._lock:
                if self._sr is None:
                    self._sr = self._build()
        return self._sr

    def release(self, _handle: Any) -> None:
        return None

    def infer(self, image: np.ndarray) -> np.ndarray:
        return self.acquire().upsample(image)

    def _build(self) -> Any:
        try:
            from cv2 import dnn_superres  # type: ignore
        except Exception as exc:
            raise BackendUnavailable(f"cv2.dnn_superres unavailable: {exc}") from exc

        if not self.model_path.exists():
            raise BackendUnavailable(f"Missing OpenCV model: {self.model_path}")

        sr = dnn_superres.DnnSuperResImpl_create()
        sr.readModel(str(self.model_path))
        sr.setModel(self.algorithm, self.scale)
        logger.info(
            "OpenCV %s super-resolution backend initialized (x%d)",
            self.algorithm.upper(),
            self.scale,
        )
        return sr


def registry_from_adapters(adapters: Iterable[Any]) -> BackendRegistry:
    """Register adapters that expose a ``descriptor`` property, skipping broken ones."""
    registry = BackendRegistry()
    loaded: List[str] = []
    for adapter in adapters:
        try:
            adapter.acquire()
        except BackendUnavailable as exc:
            logger.warning("Skipping backend: %s", exc)
            continue
        registry.register(adapter.descriptor, adapter)
        loaded.append(adapter.descriptor.name)

    if not loaded:
        logger.warning("No neural backend available; classical resampling only")
    return registry


__all__ = [
    "BackendRegistry",
    "CallableBackend",
    "InferenceBackend",
    "OpenCVSuperResBackend",
    "RealESRGANBackend",
    "registry_from_adapters",
]
