from __future__ import annotations

import io

import pytest
from _digits import draw_digit
from PIL import Image

from digit_identifier.errors import ErrorCode, PreprocessError
from digit_identifier.preprocess import Orientation, RawImage, preview_png, resize_for_display


def test_resize_for_display_is_upright_grayscale_stretch() -> None:
    img = draw_digit(4, 90, 60)
    raw = RawImage.from_pil(img.transpose(Image.Transpose.ROTATE_90), Orientation.right)
    out = resize_for_display(raw, 28, 28)
    assert out.mode == "L"
    assert out.size == (28, 28)
    plain = resize_for_display(RawImage.from_pil(img), 28, 28)
    assert out.tobytes() == plain.tobytes()


def test_preview_png_is_scaled_png() -> None:
    raw = RawImage.from_pil(draw_digit(1, 50, 50))
    png = preview_png(raw, 28, 28, scale=3)
    assert png.startswith(b"\x89PNG")
    with Image.open(io.BytesIO(png)) as decoded:
        assert decoded.size == (84, 84)


def test_from_bytes_rejects_garbage() -> None:
    with pytest.raises(PreprocessError) as ei:
        RawImage.from_bytes(b"definitely not an image")
    assert ei.value.code is ErrorCode.invalid_image


def test_from_pil_converts_palette_images() -> None:
    img = Image.new("P", (5, 5), 3)
    raw = RawImage.from_pil(img)
    assert raw.mode == "RGB"
    assert len(raw.pixels) == 5 * 5 * 3


def test_resize_for_display_invert() -> None:
    raw = RawImage.from_pil(draw_digit(3, 28, 28))
    plain = resize_for_display(raw, 28, 28)
    flipped = resize_for_display(raw, 28, 28, invert=True)
    assert flipped.tobytes() == bytes(255 - b for b in plain.tobytes())
