from __future__ import annotations

import io

from PIL import Image, ImageDraw
import pytest

from cutout.application.remove_background_use_case import RemoveBackgroundUseCase
from cutout.domain.errors import InvalidInputError
from cutout.infrastructure.metrics import metrics
from cutout.infrastructure.raster_codec import bytes_to_png_data_uri, data_uri_to_bytes
from cutout.infrastructure.white_background_remover import WhiteBackgroundRemover


def _icon_bytes() -> bytes:
    img = Image.new('RGB', (24, 24), 'white')
    draw = ImageDraw.Draw(img)
    draw.rectangle((6, 6, 17, 17), fill=(20, 110, 60))
    out = io.BytesIO()
    img.save(out, format='PNG')
    return out.getvalue()


def _use_case() -> RemoveBackgroundUseCase:
    return RemoveBackgroundUseCase(WhiteBackgroundRemover())


def test_execute_returns_png_with_transparent_background() -> None:
    output = _use_case().execute(_icon_bytes(), 'Flat')

    with Image.open(io.BytesIO(output)) as result:
        assert result.format == 'PNG'
        assert result.getpixel((0, 0))[3] == 0
        assert result.getpixel((12, 12)) == (20, 110, 60, 255)


def test_execute_rejects_empty_input() -> None:
    with pytest.raises(InvalidInputError):
        _use_case().execute(b'', 'Flat')


def test_execute_rejects_unknown_style() -> None:
    with pytest.raises(InvalidInputError):
        _use_case().execute(_icon_bytes(), 'Watercolor')


def test_execute_data_uri_round_trip() -> None:
    output = _use_case().execute_data_uri(bytes_to_png_data_uri(_icon_bytes()), 'Outlined')

    with Image.open(io.BytesIO(data_uri_to_bytes(output))) as result:
        assert result.getpixel((0, 0))[3] == 0


def test_execute_records_timing() -> None:
    before = metrics.snapshot().get('remove_background_seconds_count', 0)

    _use_case().execute(_icon_bytes(), 'Filled')

    assert metrics.snapshot()['remove_background_seconds_count'] == before + 1
