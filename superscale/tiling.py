"""Tiled inference: run one backend over an image of arbitrary size.

Images larger than a backend accepts are split into overlapping tiles laid out
on a :class:`TileGrid`. Each tile is inferred independently, the overlapping
margins facing neighbouring tiles are trimmed to hide seams, and the trimmed
tiles are composited in raster order onto an output canvas that is finally
cropped back to the scaled size of the original image.

The first tile in raster order fixes the measured scale of the whole stage, so
results do not depend on the order in which parallel tiles complete.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Tuple

import numpy as np

from superscale.config import get_config
from superscale.descriptors import BackendDescriptor
from superscale.errors import GeometryInvalid, InferenceFailed
from superscale.imaging import (
    edge_extend,
    image_size,
    is_image,
    round_half_up,
    scaled_dimension,
)
from superscale.logger import setup_logger

logger = setup_logger(__name__)
config = get_config()

InferFn = Callable[[np.ndarray], np.ndarray]

DEFAULT_TILE_SIZE = 768
MIN_TILE_SIZE = 64
NEURAL_TILE_OVERLAP = 24
HARDWARE_TILE_OVERLAP = 32


@dataclass(frozen=True)
class StageResult:
    """Output of one stage with its measured output/input scale ratios."""

    image: np.ndarray
    scale_x: float
    scale_y: float

    @property
    def effective_scale(self) -> float:
        return min(self.scale_x, self.scale_y)


def tile_origins(total: int, tile: int, step: int) -> List[int]:
    """Return tile origins along one axis.

    Origins advance by ``step`` while they are short of ``total - tile`` and a
    final origin flush with the far edge is always appended.
    """

    if total < 1 or tile < 1:
        raise GeometryInvalid(f"Invalid tiling axis: total={total}, tile={tile}")
    if total <= tile:
        return [0]

    step = max(1, min(step, tile))
    origins: List[int] = []
    current = 0
    while current < total - tile:
        origins.append(current)
        current += step

    final_origin = max(0, total - tile)
    if not origins or origins[-1] != final_origin:
        origins.append(final_origin)
    return origins


def clamp_overlap(overlap: int, tile_width: int, tile_height: int) -> int:
    return min(max(0, overlap), max(0, min(tile_width, tile_height) // 4))


@dataclass(frozen=True)
class TileGrid:
    """Tile layout over a (padded) working canvas."""

    width: int
    height: int
    tile_width: int
    tile_height: int
    overlap: int
    x_origins: Tuple[int, ...]
    y_origins: Tuple[int, ...]

    @classmethod
    def build(
        cls, width: int, height: int, tile_width: int, tile_height: int, overlap: int
    ) -> "TileGrid":
        overlap = clamp_overlap(overlap, tile_width, tile_height)
        step_x = max(1, tile_width - overlap)
        step_y = max(1, tile_height - overlap)
        return cls(
            width=width,
            height=height,
            tile_width=tile_width,
            tile_height=tile_height,
            overlap=overlap,
            x_origins=tuple(tile_origins(width, tile_width, step_x)),
            y_origins=tuple(tile_origins(height, tile_height, step_y)),
        )

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        for y in self.y_origins:
            for x in self.x_origins:
                yield x, y

    def __len__(self) -> int:
        return len(self.x_origins) * len(self.y_origins)

    def tile_rect(self, x: int, y: int) -> Tuple[int, int, int, int]:
        """Return ``(x, y, width, height)`` of the tile at an origin."""
        return (
            x,
            y,
            min(self.tile_width, self.width - x),
            min(self.tile_height, self.height - y),
        )

    def trims(self, x: int, y: int) -> Tuple[int, int, int, int]:
        """Source pixels to trim as ``(left, top, right, bottom)``.

        Edges touching the canvas boundary are never trimmed.
        """

        _, _, width, height = self.tile_rect(x, y)
        half = self.overlap // 2
        left = 0 if x == 0 else half
        top = 0 if y == 0 else half
        right = 0 if x + width >= self.width else half
        bottom = 0 if y + height >= self.height else half
        return left, top, right, bottom


def call_backend(infer: InferFn, image: np.ndarray) -> np.ndarray:
    """Invoke ``infer`` and make sure it produced a pixel buffer."""
    try:
        output = infer(image)
    except InferenceFailed:
        raise
    except Exception as exc:
        raise InferenceFailed(f"Backend inference failed: {exc}") from exc

    if not is_image(output):
        raise InferenceFailed(
            f"Backend returned {type(output).__name__} instead of an image"
        )
    return output


class TiledInferenceEngine:
    """Runs a backend over whole images or overlapping tiles and stitches the result."""

    def __init__(
        self,
        tile_size: Optional[int] = None,
        min_tile_size: Optional[int] = None,
        overlap: Optional[int] = None,
        max_direct_edge: Optional[int] = None,
        workers: Optional[int] = None,
    ) -> None:
        self.tile_size = int(
            tile_size
            if tile_size is not None
            else getattr(config, "UPSCALE_TILE_SIZE", DEFAULT_TILE_SIZE)
        )
        self.min_tile_size = int(
            min_tile_size
            if min_tile_size is not None
            else getattr(config, "UPSCALE_MIN_TILE_SIZE", MIN_TILE_SIZE)
        )
        self.overlap = int(
            overlap
            if overlap is not None
            else getattr(config, "UPSCALE_NEURAL_TILE_OVERLAP", NEURAL_TILE_OVERLAP)
        )
        self.max_direct_edge = int(
            max_direct_edge
            if max_direct_edge is not None
            else getattr(config, "UPSCALE_MAX_DIRECT_EDGE", 2048)
        )
        self.workers = max(
            1,
            int(
                workers
                if workers is not None
                else getattr(config, "UPSCALE_TILE_WORKERS", 1)
            ),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run_tiled(
        self, image: np.ndarray, backend: BackendDescriptor, infer: InferFn
    ) -> StageResult:
        if self._can_submit_whole(image, backend):
            direct = self._try_direct(image, backend, infer)
            if direct is not None:
                return direct

        tile_width, tile_height = self.tile_dimensions(image, backend)
        return self.run_tiles(image, tile_width, tile_height, self.overlap, infer)

    def tile_dimensions(
        self, image: np.ndarray, backend: BackendDescriptor
    ) -> Tuple[int, int]:
        if backend.preferred_tile_size is not None:
            return backend.preferred_tile_size

        width, height = image_size(image)
        preferred = max(self.min_tile_size, self.tile_size)
        return min(width, preferred), min(height, preferred)

    def run_tiles(
        self,
        image: np.ndarray,
        tile_width: int,
        tile_height: int,
        overlap: int,
        infer: InferFn,
    ) -> StageResult:
        """Split ``image`` into a tile grid, infer every tile and stitch the outputs."""

        width, height = image_size(image)
        source = edge_extend(image, tile_width, tile_height)
        working_width, working_height = image_size(source)
        padded = (working_width, working_height) != (width, height)

        grid = TileGrid.build(
            working_width, working_height, tile_width, tile_height, overlap
        )
        logger.debug(
            "Tiling %dx%d image into %d tiles of %dx%d (overlap %d)",
            width,
            height,
            len(grid),
            tile_width,
            tile_height,
            grid.overlap,
        )

        origins = list(grid)
        first_origin = origins[0]
        first_output = self._infer_tile(source, grid, first_origin, infer)
        _, _, first_width, first_height = grid.tile_rect(*first_origin)
        scale_x = first_output.shape[1] / float(first_width)
        scale_y = first_output.shape[0] / float(first_height)

        if len(origins) == 1 and not padded:
            return StageResult(first_output, scale_x, scale_y)

        canvas = np.zeros(
            (
                scaled_dimension(working_height, scale_y),
                scaled_dimension(working_width, scale_x),
            )
            + first_output.shape[2:],
            dtype=first_output.dtype,
        )
        self._composite(canvas, grid, first_origin, first_output, scale_x, scale_y)

        remaining = origins[1:]
        for origin, output in self._iter_outputs(source, grid, remaining, infer):
            self._composite(canvas, grid, origin, output, scale_x, scale_y)

        stitched = canvas[
            : scaled_dimension(height, scale_y), : scaled_dimension(width, scale_x)
        ]
        return StageResult(np.ascontiguousarray(stitched), scale_x, scale_y)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _can_submit_whole(self, image: np.ndarray, backend: BackendDescriptor) -> bool:
        if backend.preferred_tile_size is not None:
            return backend.preferred_tile_size == image_size(image)
        return max(image_size(image)) <= self.max_direct_edge

    def _try_direct(
        self, image: np.ndarray, backend: BackendDescriptor, infer: InferFn
    ) -> Optional[StageResult]:
        width, height = image_size(image)
        try:
            output = call_backend(infer, image)
        except InferenceFailed as exc:
            logger.debug("Direct pass on '%s' failed, tiling instead: %s", backend.name, exc)
            return None

        out_width, out_height = image_size(output)
        if out_width > width and out_height > height:
            return StageResult(output, out_width / float(width), out_height / float(height))

        logger.debug(
            "Direct pass on '%s' returned %dx%d for %dx%d input; tiling instead",
            backend.name,
            out_width,
            out_height,
            width,
            height,
        )
        return None

    @staticmethod
    def _infer_tile(
        source: np.ndarray, grid: TileGrid, origin: Tuple[int, int], infer: InferFn
    ) -> np.ndarray:
        x, y, width, height = grid.tile_rect(*origin)
        tile = np.ascontiguousarray(source[y : y + height, x : x + width])
        return call_backend(infer, tile)

    def _iter_outputs(
        self,
        source: np.ndarray,
        grid: TileGrid,
        origins: List[Tuple[int, int]],
        infer: InferFn,
    ) -> Iterator[Tuple[Tuple[int, int], np.ndarray]]:
        if self.workers <= 1 or len(origins) <= 1:
            for origin in origins:
                yield origin, self._infer_tile(source, grid, origin, infer)
            return

        executor = ThreadPoolExecutor(max_workers=self.workers)
        try:
            outputs = executor.map(
                lambda origin: self._infer_tile(source, grid, origin, infer), origins
            )
            # map() yields in submission order, keeping raster compositing order
            for origin, output in zip(origins, outputs):
                yield origin, output
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    @staticmethod
    def _composite(
        canvas: np.ndarray,
        grid: TileGrid,
        origin: Tuple[int, int],
        output: np.ndarray,
        scale_x: float,
        scale_y: float,
    ) -> None:
        if output.shape[2:] != canvas.shape[2:]:
            raise InferenceFailed(
                f"Tile output channels {output.shape[2:]} do not match {canvas.shape[2:]}"
            )

        x, y = origin
        _, _, width, height = grid.tile_rect(x, y)
        trim_left, trim_top, trim_right, trim_bottom = grid.trims(x, y)
        canvas_height, canvas_width = canvas.shape[:2]

        # Every edge is one rounding of a source coordinate, so neighbours abut
        origin_x = round_half_up(x * scale_x)
        origin_y = round_half_up(y * scale_y)
        start_x = round_half_up((x + trim_left) * scale_x)
        start_y = round_half_up((y + trim_top) * scale_y)
        end_x = min(canvas_width, round_half_up((x + width - trim_right) * scale_x))
        end_y = min(canvas_height, round_half_up((y + height - trim_bottom) * scale_y))
        if end_x <= start_x or end_y <= start_y:
            return

        # Outputs a pixel short of the rounded tile extent repeat their edge
        output = edge_extend(output, end_x - origin_x, end_y - origin_y)
        canvas[start_y:end_y, start_x:end_x] = output[
            start_y - origin_y : end_y - origin_y,
            start_x - origin_x : end_x - origin_x,
        ]


__all__ = [
    "DEFAULT_TILE_SIZE",
    "HARDWARE_TILE_OVERLAP",
    "NEURAL_TILE_OVERLAP",
    "StageResult",
    "TileGrid",
    "TiledInferenceEngine",
    "call_backend",
    "clamp_overlap",
    "tile_origins",
]
