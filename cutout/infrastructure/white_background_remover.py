from __future__ import annotations

import logging
from collections import deque
from typing import Iterator

import numpy as np

from cutout.domain.background_remover import BackgroundRemover, RemovalOptions
from cutout.domain.image import IconStyle, RasterImage

logger = logging.getLogger("cutout.remover")

OPAQUE = 255

_RING_OFFSETS = tuple((dy, dx) for dy in (-1, 0, 1) for dx in (-1, 0, 1) if (dy, dx) != (0, 0))


class WhiteBackgroundRemover(BackgroundRemover):
    """Cut generated icons out of their white canvas.

    Outlined icons are line art on white, so every near-white pixel is dropped.
    Other styles may contain white or pale areas inside the artwork, so only
    the background connected to the image border is removed, magic-wand style.
    Both modes finish with an edge pass that turns the white-blended
    anti-aliasing ring into real partial transparency.
    """

    def remove(
        self,
        image: RasterImage,
        style: IconStyle,
        options: RemovalOptions | None = None,
    ) -> RasterImage:
        opts = options or RemovalOptions()
        pixels = image.pixels.copy()

        if style is IconStyle.OUTLINED:
            cleared = clear_near_white(pixels, opts.outline_tolerance)
            mode = "threshold"
        else:
            cleared = flood_fill_from_border(pixels, opts.fill_tolerance)
            mode = "flood"

        softened, dropped = soften_edges(pixels, opts.edge_alpha_floor)
        logger.debug(
            "remove style=%s mode=%s size=%dx%d cleared=%d softened=%d dropped=%d",
            style.value,
            mode,
            image.width,
            image.height,
            cleared,
            softened,
            dropped,
        )
        return RasterImage(width=image.width, height=image.height, pixels=pixels)


def clear_near_white(pixels: np.ndarray, tolerance: int) -> int:
    """Make every pixel whose channels all exceed ``255 - tolerance`` transparent."""
    threshold = 255 - tolerance
    near_white = np.all(pixels[..., :3] > threshold, axis=-1)
    pixels[..., 3][near_white] = 0
    return int(near_white.sum())


def flood_fill_from_border(pixels: np.ndarray, tolerance: int) -> int:
    """Clear every region reachable from the border within ``tolerance`` of its seed color."""
    return _BorderFloodFill(pixels, tolerance).run()


class _BorderFloodFill:
    def __init__(self, pixels: np.ndarray, tolerance: int) -> None:
        self._pixels = pixels
        self._height, self._width = pixels.shape[:2]
        self._tolerance = tolerance
        # Plain lists index much faster than numpy scalars inside the BFS loop.
        self._red = pixels[..., 0].ravel().tolist()
        self._green = pixels[..., 1].ravel().tolist()
        self._blue = pixels[..., 2].ravel().tolist()
        self._alpha = bytearray(pixels[..., 3].tobytes())
        self._visited = bytearray(self._width * self._height)

    def run(self) -> int:
        cleared = 0
        for seed in self._border_seeds():
            if self._visited[seed] or self._alpha[seed] != OPAQUE:
                continue
            cleared += self._grow(seed)

        alpha = np.frombuffer(self._alpha, dtype=np.uint8).reshape(self._height, self._width)
        self._pixels[..., 3] = alpha
        return cleared

    def _border_seeds(self) -> Iterator[int]:
        width, height = self._width, self._height
        bottom = (height - 1) * width
        yield from range(width)
        yield from range(bottom, bottom + width)
        yield from range(0, height * width, width)
        yield from range(width - 1, height * width, width)

    def _grow(self, seed: int) -> int:
        red, green, blue = self._red, self._green, self._blue
        tolerance = self._tolerance
        seed_red, seed_green, seed_blue = red[seed], green[seed], blue[seed]

        self._visited[seed] = 1
        worklist = deque([seed])
        cleared = 0
        while worklist:
            index = worklist.popleft()
            if (
                abs(red[index] - seed_red) > tolerance
                or abs(green[index] - seed_green) > tolerance
                or abs(blue[index] - seed_blue) > tolerance
            ):
                continue

            self._alpha[index] = 0
            cleared += 1
            for neighbor in self._neighbors(index):
                if not self._visited[neighbor]:
                    self._visited[neighbor] = 1
                    worklist.append(neighbor)
        return cleared

    def _neighbors(self, index: int) -> Iterator[int]:
        width = self._width
        y, x = divmod(index, width)
        if x + 1 < width:
            yield index + 1
        if x > 0:
            yield index - 1
        if y + 1 < self._height:
            yield index + width
        if y > 0:
            yield index - width


def edge_mask(alpha: np.ndarray) -> np.ndarray:
    """Opaque pixels with at least one fully transparent pixel among their 8 neighbors."""
    height, width = alpha.shape
    transparent = np.pad(alpha == 0, 1, mode="constant", constant_values=False)
    touches_transparent = np.zeros((height, width), dtype=bool)
    for dy, dx in _RING_OFFSETS:
        touches_transparent |= transparent[1 + dy : 1 + dy + height, 1 + dx : 1 + dx + width]
    return (alpha == OPAQUE) & touches_transparent


def soften_edges(pixels: np.ndarray, alpha_floor: float) -> tuple[int, int]:
    """Undo the white blend on edge pixels.

    Each edge pixel is treated as ``color * a + white * (1 - a)`` with
    ``a = 1 - min(r, g, b) / 255``. Pixels with ``a`` at or below
    ``alpha_floor`` are dropped, the rest get the un-blended color and ``a``
    as their alpha. The edge mask is taken once, before any pixel is
    rewritten. Returns ``(softened, dropped)`` counts.
    """
    edges = edge_mask(pixels[..., 3])
    if not edges.any():
        return 0, 0

    ring = pixels[edges]
    rgb = ring[:, :3].astype(np.float64)
    estimated = 1.0 - rgb.min(axis=1) / 255.0
    visible = estimated > alpha_floor

    coverage = estimated[visible][:, None]
    restored = np.clip((rgb[visible] - (1.0 - coverage) * 255.0) / coverage, 0.0, 255.0)
    ring[visible, :3] = np.rint(restored).astype(np.uint8)
    ring[visible, 3] = np.rint(estimated[visible] * 255.0).astype(np.uint8)
    ring[~visible, 3] = 0

    pixels[edges] = ring
    softened = int(visible.sum())
    return softened, len(ring) - softened
