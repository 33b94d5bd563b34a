from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from cutout.domain.errors import InvalidInputError
from cutout.domain.image import IconStyle, RasterImage

OUTLINE_TOLERANCE = 40
FILL_TOLERANCE = 20
EDGE_ALPHA_FLOOR = 0.05


@dataclass(frozen=True)
class RemovalOptions:
    outline_tolerance: int = OUTLINE_TOLERANCE
    fill_tolerance: int = FILL_TOLERANCE
    edge_alpha_floor: float = EDGE_ALPHA_FLOOR

    def __post_init__(self) -> None:
        if not 0 <= self.outline_tolerance <= 255:
            raise InvalidInputError("outline_tolerance must be between 0 and 255")
        if not 0 <= self.fill_tolerance <= 255:
            raise InvalidInputError("fill_tolerance must be between 0 and 255")
        if not 0.0 <= self.edge_alpha_floor < 1.0:
            raise InvalidInputError("edge_alpha_floor must be in [0, 1)")


class BackgroundRemover(ABC):
    @abstractmethod
    def remove(
        self,
        image: RasterImage,
        style: IconStyle,
        options: RemovalOptions | None = None,
    ) -> RasterImage:
        """Return a copy of ``image`` with its background made transparent."""
