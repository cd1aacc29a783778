"""
Image processing operations.

Handles geometry on image handles:
- Separable resize
- EXIF auto-rotation
"""

import logging
import math

import cv2
import numpy as np

from core.constants import ErrorMessages, ImageConstants
from core.errors import ImageError
from core.image.handle import ImageHandle

logger = logging.getLogger(__name__)


def _scaled_size(size: int, scale: float) -> int:
    return max(1, int(round(size * scale)))


def resize(image: ImageHandle, xscale: float, *, vscale: float) -> ImageHandle:
    """
    Resize image with independent horizontal and vertical factors.

    Args:
        image: Input image handle
        xscale: Horizontal scale factor (<1 shrinks, >1 enlarges)
        vscale: Vertical scale factor, always given explicitly

    Returns:
        New image handle carrying the source metadata
    """
    if not all(math.isfinite(s) and s > 0 for s in (xscale, vscale)):
        raise ImageError(
            ErrorMessages.BAD_SCALE.format(xscale=xscale, yscale=vscale), domain="resize"
        )

    pixels = image.pixels
    h, w = pixels.shape[:2]
    width = _scaled_size(w, xscale)
    height = _scaled_size(h, vscale)

    if (width, height) == (w, h):
        return image.derive(pixels.copy())

    # Area averaging when shrinking on both axes, Lanczos otherwise
    if xscale < 1 and vscale < 1:
        interpolation = cv2.INTER_AREA
    else:
        interpolation = cv2.INTER_LANCZOS4

    try:
        resized = cv2.resize(
            np.ascontiguousarray(pixels), (width, height), interpolation=interpolation
        )
    except cv2.error as e:
        raise ImageError(f"unable to resize: {e}", domain="resize") from e

    # Lanczos rings past the input range on integer images
    if np.issubdtype(pixels.dtype, np.integer):
        info = np.iinfo(pixels.dtype)
        resized = np.clip(resized, info.min, info.max).astype(pixels.dtype)

    out = image.derive(resized)
    out.xres = image.xres * xscale
    out.yres = image.yres * vscale

    logger.debug(f"Resized {w}x{h} to {width}x{height}")
    return out


def _orient(pixels: np.ndarray, orientation: int) -> np.ndarray:
    """Undo an EXIF orientation, the same transforms as ImageOps.exif_transpose"""
    if orientation == 2:
        return pixels[:, ::-1]
    if orientation == 3:
        return pixels[::-1, ::-1]
    if orientation == 4:
        return pixels[::-1, :]
    if orientation == 5:
        return np.transpose(pixels, (1, 0, 2))
    if orientation == 6:
        return np.rot90(pixels, k=-1)
    if orientation == 7:
        return np.transpose(pixels, (1, 0, 2))[::-1, ::-1]
    if orientation == 8:
        return np.rot90(pixels, k=1)
    return pixels


def autorot(image: ImageHandle) -> ImageHandle:
    """
    Rotate/flip an image upright using its EXIF orientation.

    The orientation fields are removed from the result. Images without an
    orientation come back as an unchanged copy.

    Args:
        image: Input image handle

    Returns:
        New image handle
    """
    if image.get_typeof(ImageConstants.ORIENTATION_FIELD) is None:
        return image.copy()

    try:
        orientation = int(image.get(ImageConstants.ORIENTATION_FIELD))
    except (TypeError, ValueError):
        orientation = ImageConstants.MIN_ORIENTATION

    pixels = np.ascontiguousarray(_orient(image.pixels, orientation))
    out = image.derive(pixels)
    out.remove(ImageConstants.ORIENTATION_FIELD)
    out.remove(ImageConstants.EXIF_ORIENTATION_FIELD)

    if orientation in (5, 6, 7, 8):
        out.xres, out.yres = image.yres, image.xres

    logger.debug(f"Auto-rotated image with orientation {orientation}")
    return out
