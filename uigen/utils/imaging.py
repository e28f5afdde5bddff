"""Pillow helpers for measuring, enhancing, cropping and comparing images."""

from __future__ import annotations

import io
from typing import Iterable, Tuple

from PIL import Image, ImageChops, ImageDraw, ImageFilter, ImageOps, ImageStat

from ..types import Bounds

# Longest edge used when comparing screenshots.
COMPARE_EDGE = 256


def open_image(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return ImageOps.exif_transpose(image)


def to_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def measure(data: bytes) -> Tuple[int, int]:
    """Return ``(width, height)`` of the encoded image, or ``(0, 0)`` if undecodable."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            transposed = ImageOps.exif_transpose(image)
            return transposed.size
    except (OSError, ValueError, Image.DecompressionBombError):
        return 0, 0


def enhance(data: bytes, min_dimension: int) -> Tuple[bytes, bool]:
    """Upscale images whose longest edge is below ``min_dimension``.

    Returns the (possibly new) PNG bytes and whether an upscale happened.
    Images already at or above the threshold are returned untouched.
    """
    image = open_image(data)
    longest = max(image.size)
    if min_dimension <= 0 or longest == 0 or longest >= min_dimension:
        return data, False

    scale = min_dimension / longest
    size = (max(1, round(image.width * scale)), max(1, round(image.height * scale)))
    mode = "RGBA" if image.mode in {"RGBA", "LA", "P"} else "RGB"
    upscaled = image.convert(mode).resize(size, Image.Resampling.LANCZOS)
    sharpened = upscaled.filter(ImageFilter.UnsharpMask(radius=0.8, percent=60, threshold=2))
    return to_png(sharpened), True


def crop(data: bytes, box: Bounds) -> bytes:
    """Crop the canvas-absolute percentage ``box`` out of ``data`` as PNG."""
    image = open_image(data)
    left, top, right, bottom = box.to_pixels(image.width, image.height)
    if right <= left or bottom <= top:
        raise ValueError(f"Crop box collapses to zero area: {box}")
    return to_png(image.crop((left, top, right, bottom)))


def _comparable(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    rgb = image.convert("RGB")
    if rgb.size != size:
        rgb = rgb.resize(size, Image.Resampling.BILINEAR)
    return rgb


def similarity(reference: bytes, candidate: bytes, regions: Iterable[Tuple[str, Bounds]] = ()) -> Tuple[float, dict]:
    """Score ``candidate`` against ``reference`` on a 0-100 scale.

    The candidate is resized to the reference size and both are downsampled
    so the longest edge is at most ``COMPARE_EDGE``.  The score is
    ``100 * (1 - mean_abs_diff / 255)`` over all RGB channels.  Per-region
    scores use the same metric inside each canvas-absolute box.
    """
    ref_image = open_image(reference)
    scale = min(1.0, COMPARE_EDGE / max(ref_image.size))
    size = (max(1, round(ref_image.width * scale)), max(1, round(ref_image.height * scale)))
    ref_small = _comparable(ref_image, size)
    cand_small = _comparable(open_image(candidate), size)

    diff = ImageChops.difference(ref_small, cand_small)
    overall = _score(diff)

    per_region = {}
    for node_id, box in regions:
        pixel_box = box.to_pixels(*size)
        if pixel_box[2] <= pixel_box[0] or pixel_box[3] <= pixel_box[1]:
            continue
        per_region[node_id] = _score(diff.crop(pixel_box))
    return overall, per_region


def _score(diff: Image.Image) -> float:
    channel_means = ImageStat.Stat(diff).mean
    mean = sum(channel_means) / len(channel_means)
    return round(100.0 * (1.0 - mean / 255.0), 2)


def gradient_png(width: int, height: int, start: Tuple[int, int, int], end: Tuple[int, int, int]) -> bytes:
    """Render a vertical gradient; used by offline mocks."""
    image = Image.new("RGB", (width, height), start)
    draw = ImageDraw.Draw(image)
    span = max(1, height - 1)
    for y in range(height):
        ratio = y / span
        color = tuple(round(a + (b - a) * ratio) for a, b in zip(start, end))
        draw.line([(0, y), (width, y)], fill=color)
    return to_png(image)


def color_from_text(text: str) -> Tuple[int, int, int]:
    """Derive a stable RGB colour from arbitrary text."""
    digest = sum((index + 1) * ord(char) for index, char in enumerate(text))
    return (digest * 37) % 256, (digest * 71) % 256, (digest * 113) % 256


def parse_hex_color(value: str) -> Tuple[int, int, int] | None:
    text = value.strip().lstrip("#")
    if len(text) == 3:
        text = "".join(char * 2 for char in text)
    if len(text) != 6:
        return None
    try:
        return int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16)
    except ValueError:
        return None
