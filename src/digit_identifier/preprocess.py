from __future__ import annotations

import io
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Final

import torch
from PIL import ExifTags, Image, ImageOps, UnidentifiedImageError
from torch import Tensor

from .errors import ErrorCode, PreprocessError

_MAX_BYTE_VALUE: Final[float] = 255.0
_SUPPORTED_MODES: Final[frozenset[str]] = frozenset({"L", "LA", "RGB", "RGBA"})
# Transparent pixels land on a zero-initialised grayscale surface
_BACKGROUND_RGBA: Final[tuple[int, int, int, int]] = (0, 0, 0, 255)
_SURFACE_ERRORS: Final[tuple[type[BaseException], ...]] = (
    ValueError,
    OSError,
    MemoryError,
    TypeError,
)


class Orientation(int, Enum):
    """Canonical capture orientations, valued by their EXIF codes."""

    up = 1
    up_mirrored = 2
    down = 3
    down_mirrored = 4
    left_mirrored = 5
    right = 6
    right_mirrored = 7
    left = 8


# Orientation -> (counter-clockwise rotation in degrees, reflection applied after rotation).
# Mirrored entries reuse the rotation of their plain counterpart.
ORIENTATION_TRANSFORMS: Final[Mapping[Orientation, tuple[int, Image.Transpose | None]]] = {
    Orientation.up: (0, None),
    Orientation.up_mirrored: (0, Image.Transpose.FLIP_LEFT_RIGHT),
    Orientation.down: (180, None),
    Orientation.down_mirrored: (180, Image.Transpose.FLIP_LEFT_RIGHT),
    Orientation.left: (90, None),
    Orientation.left_mirrored: (90, Image.Transpose.FLIP_TOP_BOTTOM),
    Orientation.right: (270, None),
    Orientation.right_mirrored: (270, Image.Transpose.FLIP_TOP_BOTTOM),
}

_ROTATIONS: Final[Mapping[int, Image.Transpose]] = {
    90: Image.Transpose.ROTATE_90,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_270,
}


@dataclass(frozen=True)
class RawImage:
    """Captured pixels exactly as delivered, plus the orientation tag to display them."""

    pixels: bytes
    width: int
    height: int
    mode: str
    orientation: Orientation = Orientation.up

    @staticmethod
    def from_pil(img: Image.Image, orientation: Orientation | None = None) -> RawImage:
        orient = orientation if orientation is not None else _exif_orientation(img)
        src = img
        if src.mode not in _SUPPORTED_MODES:
            src = src.convert("RGBA" if _has_alpha(src) else "RGB")
        return RawImage(
            pixels=src.tobytes(),
            width=src.width,
            height=src.height,
            mode=src.mode,
            orientation=orient,
        )

    @staticmethod
    def from_bytes(data: bytes) -> RawImage:
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
            raise PreprocessError(ErrorCode.invalid_image, "Failed to decode image", exc) from None
        return RawImage.from_pil(img)

    def to_pil(self) -> Image.Image:
        if self.mode not in _SUPPORTED_MODES:
            raise ValueError(f"unsupported color format: {self.mode}")
        if self.width <= 0 or self.height <= 0:
            raise ValueError("image has zero dimension")
        return Image.frombytes(self.mode, (self.width, self.height), self.pixels)


def normalize(
    image: RawImage, target_width: int, target_height: int, invert: bool = False
) -> Tensor:
    """Convert a captured image into the flat model input buffer.

    The result is a 1-D float32 tensor of ``target_width * target_height``
    grayscale intensities in ``[0, 1]``, row-major. The image is stretched to
    the target size; aspect ratio is not preserved. With ``invert`` the grayscale
    intensities are flipped, turning dark ink on light paper into the light-on-dark
    digits MNIST-style models expect.
    """
    gray = _upright_grayscale(image, invert)
    resized = _resample(gray, target_width, target_height)
    buf = bytearray(resized.tobytes())
    if len(buf) != target_width * target_height:
        raise PreprocessError(ErrorCode.resample_failed, "unexpected buffer size")
    return torch.frombuffer(buf, dtype=torch.uint8).to(torch.float32) / _MAX_BYTE_VALUE


def resize_for_display(
    image: RawImage, target_width: int, target_height: int, invert: bool = False
) -> Image.Image:
    """Upright, grayscale, stretched copy of the image for on-screen preview."""
    return _resample(_upright_grayscale(image, invert), target_width, target_height)


def preview_png(
    image: RawImage,
    target_width: int,
    target_height: int,
    scale: int = 4,
    invert: bool = False,
) -> bytes:
    small = resize_for_display(image, target_width, target_height, invert)
    vis = small.resize((target_width * scale, target_height * scale), Image.Resampling.NEAREST)
    out = io.BytesIO()
    vis.save(out, format="PNG", optimize=True)
    return out.getvalue()


def apply_orientation(img: Image.Image, orientation: Orientation) -> Image.Image:
    rotation, reflection = ORIENTATION_TRANSFORMS[Orientation(orientation)]
    out = img
    if rotation:
        out = out.transpose(_ROTATIONS[rotation])
    if reflection is not None:
        out = out.transpose(reflection)
    return out


def _upright_grayscale(image: RawImage, invert: bool = False) -> Image.Image:
    try:
        surface = image.to_pil()
        upright = apply_orientation(surface, image.orientation)
        gray = _reduce_to_gray(upright)
        return ImageOps.invert(gray) if invert else gray
    except _SURFACE_ERRORS as exc:
        raise PreprocessError(ErrorCode.orientation_failed, str(exc), exc) from None


def _reduce_to_gray(img: Image.Image) -> Image.Image:
    if img.mode == "L":
        return img
    if "A" in img.getbands():
        bg = Image.new("RGBA", img.size, _BACKGROUND_RGBA)
        img = Image.alpha_composite(bg, img.convert("RGBA"))
    return img.convert("L")


def _resample(gray: Image.Image, target_width: int, target_height: int) -> Image.Image:
    if target_width <= 0 or target_height <= 0:
        raise PreprocessError(
            ErrorCode.resample_failed, f"invalid target size {target_width}x{target_height}"
        )
    try:
        return gray.resize((target_width, target_height), resample=Image.Resampling.BILINEAR)
    except _SURFACE_ERRORS as exc:
        raise PreprocessError(ErrorCode.resample_failed, str(exc), exc) from None


def _exif_orientation(img: Image.Image) -> Orientation:
    value = img.getexif().get(ExifTags.Base.Orientation, 1)
    try:
        return Orientation(int(value))
    except (TypeError, ValueError):
        return Orientation.up


def _has_alpha(img: Image.Image) -> bool:
    return "A" in img.getbands() or "transparency" in img.info
