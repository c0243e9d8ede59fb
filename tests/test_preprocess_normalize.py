from __future__ import annotations

import pytest
import torch
from _digits import draw_digit
from PIL import Image

from digit_identifier.errors import ErrorCode, PreprocessError
from digit_identifier.preprocess import Orientation, RawImage, normalize


def _gradient(width: int, height: int) -> Image.Image:
    img = Image.new("RGBA", (width, height), (0, 0, 0, 255))
    for y in range(height):
        for x in range(width):
            v = (x * 7 + y * 13) % 256
            img.putpixel((x, y), (v, 255 - v, v // 2, 255))
    return img


@pytest.mark.parametrize(("w", "h"), [(1, 1), (13, 7), (640, 480), (28, 28)])
def test_normalize_length_and_range(w: int, h: int) -> None:
    raw = RawImage.from_pil(_gradient(64, 48))
    out = normalize(raw, w, h)
    assert out.ndim == 1
    assert int(out.numel()) == w * h
    assert out.dtype == torch.float32
    assert float(out.min()) >= 0.0
    assert float(out.max()) <= 1.0


def test_normalize_every_orientation_keeps_length() -> None:
    raw = RawImage.from_pil(_gradient(30, 20))
    for orient in Orientation:
        tagged = RawImage(raw.pixels, raw.width, raw.height, raw.mode, orient)
        assert int(normalize(tagged, 28, 28).numel()) == 28 * 28


def test_normalize_scales_bytes_by_255() -> None:
    img = Image.new("L", (4, 1), 0)
    for x, v in enumerate((0, 51, 204, 255)):
        img.putpixel((x, 0), v)
    out = normalize(RawImage.from_pil(img), 4, 1)
    assert out.tolist() == pytest.approx([0.0, 0.2, 0.8, 1.0], abs=1e-6)


def test_normalize_is_row_major() -> None:
    img = Image.new("L", (3, 2), 0)
    img.putpixel((2, 0), 255)
    img.putpixel((0, 1), 255)
    out = normalize(RawImage.from_pil(img), 3, 2)
    assert out.tolist() == [0.0, 0.0, 1.0, 1.0, 0.0, 0.0]


def test_transparent_pixels_read_as_black() -> None:
    img = Image.new("RGBA", (2, 1), (255, 255, 255, 0))
    img.putpixel((1, 0), (255, 255, 255, 255))
    out = normalize(RawImage.from_pil(img), 2, 1)
    assert out.tolist() == [0.0, 1.0]


def test_resample_is_forced_stretch() -> None:
    # Left half white on a wide image stays the left half after squashing to a square
    img = Image.new("L", (200, 50), 0)
    img.paste(255, (0, 0, 100, 50))
    out = normalize(RawImage.from_pil(img), 10, 10).reshape(10, 10)
    assert torch.all(out[:, :4] == 1.0)
    assert torch.all(out[:, 6:] == 0.0)


def test_color_is_reduced_to_single_channel() -> None:
    rgb = draw_digit(8, 56, 56, mode="RGB")
    gray = rgb.convert("L")
    a = normalize(RawImage.from_pil(rgb), 28, 28)
    b = normalize(RawImage.from_pil(gray), 28, 28)
    assert torch.equal(a, b)


def test_unsupported_mode_fails_orientation() -> None:
    raw = RawImage(pixels=b"\x00" * 16, width=2, height=2, mode="CMYK")
    with pytest.raises(PreprocessError) as ei:
        normalize(raw, 28, 28)
    assert ei.value.code is ErrorCode.orientation_failed


def test_short_buffer_fails_orientation() -> None:
    raw = RawImage(pixels=b"\x00" * 5, width=4, height=4, mode="RGBA")
    with pytest.raises(PreprocessError) as ei:
        normalize(raw, 28, 28)
    assert ei.value.code is ErrorCode.orientation_failed


def test_zero_dimension_fails_orientation() -> None:
    raw = RawImage(pixels=b"", width=0, height=10, mode="L")
    with pytest.raises(PreprocessError) as ei:
        normalize(raw, 28, 28)
    assert ei.value.code is ErrorCode.orientation_failed


@pytest.mark.parametrize(("w", "h"), [(0, 28), (28, 0), (-1, 5)])
def test_bad_target_size_fails_resample(w: int, h: int) -> None:
    raw = RawImage.from_pil(Image.new("L", (8, 8), 0))
    with pytest.raises(PreprocessError) as ei:
        normalize(raw, w, h)
    assert ei.value.code is ErrorCode.resample_failed


def test_invert_flips_intensities() -> None:
    raw = RawImage.from_pil(_gradient(28, 28))
    plain = normalize(raw, 28, 28)
    flipped = normalize(raw, 28, 28, invert=True)
    assert torch.allclose(flipped, 1.0 - plain, atol=1e-6)


def test_invert_turns_ink_on_paper_into_light_digit() -> None:
    img = Image.new("RGB", (4, 4), (255, 255, 255))
    img.paste((0, 0, 0), (1, 1, 3, 3))
    out = normalize(RawImage.from_pil(img), 4, 4, invert=True).reshape(4, 4)
    assert float(out[0, 0]) == 0.0
    assert float(out[1:3, 1:3].min()) == 1.0


def test_unknown_orientation_value_fails_orientation() -> None:
    base = RawImage.from_pil(Image.new("L", (4, 4), 0))
    raw = RawImage(base.pixels, base.width, base.height, base.mode, 9)  # type: ignore[arg-type]
    with pytest.raises(PreprocessError) as ei:
        normalize(raw, 28, 28)
    assert ei.value.code is ErrorCode.orientation_failed
