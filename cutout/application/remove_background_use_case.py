from __future__ import annotations

from cutout.domain.background_remover import BackgroundRemover, RemovalOptions
from cutout.domain.errors import InvalidInputError
from cutout.domain.image import IconStyle, RasterImage
from cutout.infrastructure.metrics import metrics
from cutout.infrastructure.raster_codec import decode_image, encode_data_uri, encode_png


class RemoveBackgroundUseCase:
    def __init__(self, remover: BackgroundRemover) -> None:
        self._remover = remover

    def execute(
        self,
        image_bytes: bytes,
        style: IconStyle | str,
        options: RemovalOptions | None = None,
    ) -> bytes:
        if not image_bytes:
            raise InvalidInputError("Uploaded file is empty")

        return encode_png(self._cut_out(decode_image(image_bytes), style, options))

    def execute_data_uri(
        self,
        data_uri: str,
        style: IconStyle | str,
        options: RemovalOptions | None = None,
    ) -> str:
        if not data_uri:
            raise InvalidInputError("Data URI is empty")

        return encode_data_uri(self._cut_out(decode_image(data_uri), style, options))

    def _cut_out(
        self,
        image: RasterImage,
        style: IconStyle | str,
        options: RemovalOptions | None,
    ) -> RasterImage:
        if not isinstance(style, IconStyle):
            style = IconStyle.from_label(style)

        with metrics.timed("remove_background"):
            result = self._remover.remove(image, style, options)
        metrics.incr("images_processed_total")
        return result
