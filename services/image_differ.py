"""
Pixel-level screenshot comparison.

A numpy port of the pixelmatch algorithm: pixels are compared with a YIQ
perceptual color delta, and differences caused by anti-aliasing are detected
with the sibling heuristic and left out of the count. Images of different
sizes are padded with transparent pixels to a common canvas first.
"""
import base64
import io
import logging
from typing import Tuple, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import ImageDecodeError
from .models import ImageDiffResult

logger = logging.getLogger(__name__)

ImageInput = Union[bytes, bytearray, Image.Image]

DEFAULT_THRESHOLD = 0.1  # 0 = exact, 1 = very lenient
DEFAULT_ALPHA = 0.1  # opacity of unchanged pixels in the diff image
DIFF_COLOR = (255, 0, 0)
AA_COLOR = (255, 255, 0)

# Maximum possible YIQ delta, scaled by threshold**2
MAX_YIQ_DELTA = 35215

# Neighbor visiting order: column by column, top to bottom
_NEIGHBORS = [(dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if dx or dy]


def decode_image(data: ImageInput) -> Image.Image:
    """Decode raster bytes (any Pillow format, PNG expected) into an RGBA image."""
    if isinstance(data, Image.Image):
        return data.convert("RGBA")
    if not data:
        raise ImageDecodeError("Image data is empty")
    try:
        with Image.open(io.BytesIO(bytes(data))) as image:
            image.load()
            return image.convert("RGBA")
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as e:
        raise ImageDecodeError(f"Could not decode image: {e}") from e


def pad_image(image: Image.Image, width: int, height: int) -> Image.Image:
    """Place image at the top-left of a transparent width x height canvas."""
    if image.size == (width, height):
        return image
    canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    if image.width and image.height:
        canvas.paste(image, (0, 0))
    return canvas


def encode_png(pixels: np.ndarray) -> str:
    buffer = io.BytesIO()
    Image.fromarray(pixels, "RGBA").save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def _blend_white(rgba: np.ndarray) -> np.ndarray:
    """Composite RGBA pixels over a white background."""
    alpha = rgba[..., 3:4] / np.float32(255)
    return np.float32(255) + (rgba[..., :3] - np.float32(255)) * alpha


def _rgb2y(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.29889531 + rgb[..., 1] * 0.58662247 + rgb[..., 2] * 0.11448223


def _rgb2i(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.59597799 - rgb[..., 1] * 0.27417610 - rgb[..., 2] * 0.32180189


def _rgb2q(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.21147017 - rgb[..., 1] * 0.52261711 + rgb[..., 2] * 0.31114694


def _on_edge(xs: np.ndarray, ys: np.ndarray, width: int, height: int) -> np.ndarray:
    return (xs == 0) | (xs == width - 1) | (ys == 0) | (ys == height - 1)


def _neighbor(xs, ys, dx, dy, width, height) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    nx, ny = xs + dx, ys + dy
    valid = (nx >= 0) & (nx < width) & (ny >= 0) & (ny < height)
    return np.clip(nx, 0, width - 1), np.clip(ny, 0, height - 1), valid


def _has_many_siblings(rgba: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    """True where more than two neighbors share the exact pixel value."""
    height, width = rgba.shape[:2]
    siblings = _on_edge(xs, ys, width, height).astype(np.int32)
    center = rgba[ys, xs]
    for dx, dy in _NEIGHBORS:
        nx, ny, valid = _neighbor(xs, ys, dx, dy, width, height)
        siblings += valid & np.all(rgba[ny, nx] == center, axis=-1)
    return siblings > 2


def _antialiased(
    luma: np.ndarray, rgba: np.ndarray, other_rgba: np.ndarray, xs: np.ndarray, ys: np.ndarray
) -> np.ndarray:
    """
    Flag candidate pixels whose difference looks like anti-aliasing.

    A pixel is anti-aliased when it has both a darker and a brighter neighbor
    (at most two identical ones), and the darkest or brightest of those
    neighbors sits in a flat region in both images.
    """
    count = len(xs)
    if count == 0:
        return np.zeros(0, dtype=bool)

    height, width = luma.shape
    zeroes = _on_edge(xs, ys, width, height).astype(np.int32)
    center = luma[ys, xs]

    deltas = np.zeros((len(_NEIGHBORS), count), dtype=np.float32)
    neighbor_xs = np.zeros((len(_NEIGHBORS), count), dtype=np.intp)
    neighbor_ys = np.zeros((len(_NEIGHBORS), count), dtype=np.intp)
    for k, (dx, dy) in enumerate(_NEIGHBORS):
        nx, ny, valid = _neighbor(xs, ys, dx, dy, width, height)
        delta = np.where(valid, center - luma[ny, nx], np.float32(0))
        zeroes += valid & (delta == 0)
        deltas[k] = delta
        neighbor_xs[k] = nx
        neighbor_ys[k] = ny

    columns = np.arange(count)
    min_index = deltas.argmin(axis=0)
    max_index = deltas.argmax(axis=0)
    min_delta = deltas[min_index, columns]
    max_delta = deltas[max_index, columns]

    min_x, min_y = neighbor_xs[min_index, columns], neighbor_ys[min_index, columns]
    max_x, max_y = neighbor_xs[max_index, columns], neighbor_ys[max_index, columns]

    flat_darkest = _has_many_siblings(rgba, min_x, min_y) & _has_many_siblings(other_rgba, min_x, min_y)
    flat_brightest = _has_many_siblings(rgba, max_x, max_y) & _has_many_siblings(other_rgba, max_x, max_y)

    return (zeroes <= 2) & (min_delta < 0) & (max_delta > 0) & (flat_darkest | flat_brightest)


def _gray_background(rgba: np.ndarray, alpha: float) -> np.ndarray:
    rgb = rgba[..., :3].astype(np.float32)
    opacity = alpha * rgba[..., 3].astype(np.float32) / 255
    gray = np.float32(255) + (_rgb2y(rgb) - np.float32(255)) * opacity
    output = np.empty(rgba.shape, dtype=np.uint8)
    output[..., :3] = np.clip(gray, 0, 255).astype(np.uint8)[..., None]
    output[..., 3] = 255
    return output


def compare_images(
    before: ImageInput,
    after: ImageInput,
    threshold: float = DEFAULT_THRESHOLD,
    alpha: float = DEFAULT_ALPHA,
    include_aa: bool = False,
) -> ImageDiffResult:
    """
    Compare two screenshots and generate a diff image.

    Args:
        before: Encoded raster bytes (or a PIL image) of the earlier capture
        after: Encoded raster bytes (or a PIL image) of the later capture
        threshold: Perceptual color sensitivity
        alpha: Opacity of unchanged pixels drawn in the diff image
        include_aa: Count anti-aliased pixels as differences

    Returns:
        ImageDiffResult with a base64 PNG diff image and statistics

    Raises:
        ImageDecodeError: if either input is not a decodable image
    """
    before_image = decode_image(before)
    after_image = decode_image(after)

    width = max(before_image.width, after_image.width)
    height = max(before_image.height, after_image.height)
    total_pixels = width * height

    if total_pixels == 0:
        return ImageDiffResult(
            diff_image="", diff_pixel_count=0, diff_percentage=0.0, width=width, height=height
        )

    before_rgba = np.asarray(pad_image(before_image, width, height), dtype=np.uint8)
    after_rgba = np.asarray(pad_image(after_image, width, height), dtype=np.uint8)

    output = _gray_background(before_rgba, alpha)

    if np.array_equal(before_rgba, after_rgba):
        return ImageDiffResult(
            diff_image=encode_png(output),
            diff_pixel_count=0,
            diff_percentage=0.0,
            width=width,
            height=height,
        )

    before_rgb = _blend_white(before_rgba.astype(np.float32))
    after_rgb = _blend_white(after_rgba.astype(np.float32))
    before_luma = _rgb2y(before_rgb)
    after_luma = _rgb2y(after_rgb)

    y = before_luma - after_luma
    i = _rgb2i(before_rgb) - _rgb2i(after_rgb)
    q = _rgb2q(before_rgb) - _rgb2q(after_rgb)
    delta = 0.5053 * y * y + 0.299 * i * i + 0.1957 * q * q

    ys, xs = np.nonzero(delta > MAX_YIQ_DELTA * threshold * threshold)

    if include_aa:
        antialiased = np.zeros(len(xs), dtype=bool)
    else:
        antialiased = _antialiased(before_luma, before_rgba, after_rgba, xs, ys) | _antialiased(
            after_luma, after_rgba, before_rgba, xs, ys
        )

    output[ys[antialiased], xs[antialiased], :3] = AA_COLOR
    output[ys[~antialiased], xs[~antialiased], :3] = DIFF_COLOR

    diff_pixel_count = int(np.count_nonzero(~antialiased))
    diff_percentage = diff_pixel_count / total_pixels * 100

    logger.debug(f"Image diff {width}x{height}: {diff_pixel_count} pixels ({diff_percentage:.3f}%)")

    return ImageDiffResult(
        diff_image=encode_png(output),
        diff_pixel_count=diff_pixel_count,
        diff_percentage=diff_percentage,
        width=width,
        height=height,
    )
