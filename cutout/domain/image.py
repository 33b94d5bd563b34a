from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

import numpy as np

from cutout.domain.errors import InvalidInputError


class IconStyle(str, Enum):
    FLAT = "Flat"
    OUTLINED = "Outlined"
    FILLED = "Filled"
    THREE_D = "3D"
    HAND_DRAWN = "Hand-drawn"

    @classmethod
    def from_label(cls, label: str) -> IconStyle:
        """Resolve a style from its product label ("Hand-drawn") or member name ("HAND_DRAWN")."""
        wanted = _normalize_label(label or "")
        for style in cls:
            if wanted in {_normalize_label(style.value), _normalize_label(style.name)}:
                return style
        allowed = ", ".join(style.value for style in cls)
        raise InvalidInputError(f"Unknown icon style {label!r}. Expected one of: {allowed}")


def _normalize_label(value: str) -> str:
    return re.sub(r"[\s_\-]+", "", value).lower()


@dataclass(eq=False)
class RasterImage:
    """RGBA pixels stored as a ``(height, width, 4)`` uint8 array."""

    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise InvalidInputError(f"Invalid image dimensions {self.width}x{self.height}")
        if self.pixels.dtype != np.uint8:
            raise InvalidInputError(f"Pixel buffer must be uint8, got {self.pixels.dtype}")
        if self.pixels.shape != (self.height, self.width, 4):
            raise InvalidInputError(
                f"Pixel buffer shape {self.pixels.shape} does not match {self.width}x{self.height} RGBA"
            )

    @classmethod
    def from_array(cls, pixels: np.ndarray) -> RasterImage:
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise InvalidInputError(f"Expected an RGBA array of shape (H, W, 4), got {pixels.shape}")
        height, width = pixels.shape[:2]
        return cls(width=width, height=height, pixels=pixels)

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[..., 3]
