from __future__ import annotations

import base64
import binascii
import io

import numpy as np
from PIL import Image, UnidentifiedImageError

from cutout.domain.errors import ContextUnavailableError, DecodeError
from cutout.domain.image import RasterImage

DATA_URI_PREFIX = "data:"
PNG_DATA_URI_PREFIX = "data:image/png;base64,"


def data_uri_to_bytes(data_uri: str) -> bytes:
    """Extract the payload of a base64 ``data:`` URI."""
    if not data_uri.startswith(DATA_URI_PREFIX) or "," not in data_uri:
        raise DecodeError("Expected a data URI of the form data:<mime>;base64,<payload>")

    header, payload = data_uri.split(",", 1)
    if not header.endswith(";base64"):
        raise DecodeError("Only base64 encoded data URIs are supported")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError("Invalid base64 payload in data URI") from exc


def bytes_to_png_data_uri(png_bytes: bytes) -> str:
    return PNG_DATA_URI_PREFIX + base64.b64encode(png_bytes).decode("ascii")


def decode_image(source: bytes | str) -> RasterImage:
    """Decode raw image bytes or a data URI into an RGBA raster."""
    image_bytes = data_uri_to_bytes(source) if isinstance(source, str) else source
    if not image_bytes:
        raise DecodeError("Failed to load image for background removal: no data")

    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            image.load()
            try:
                rgba = image.convert("RGBA")
            except (ValueError, OSError) as exc:
                raise ContextUnavailableError(
                    f"Could not build an RGBA surface from {image.mode} image"
                ) from exc
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise DecodeError("Failed to load image for background removal") from exc

    pixels = np.array(rgba, dtype=np.uint8)
    return RasterImage.from_array(pixels)


def encode_png(image: RasterImage) -> bytes:
    output = io.BytesIO()
    Image.fromarray(image.pixels).save(output, format="PNG")
    return output.getvalue()


def encode_data_uri(image: RasterImage) -> str:
    return bytes_to_png_data_uri(encode_png(image))
