"""
ICC colour management.

Converts between device colour (through the profile attached to an image)
and a float CIE Lab working space, using LittleCMS via Pillow's ImageCms.
"""

import io
import logging
from functools import lru_cache
from typing import Optional, Tuple

import numpy as np
from PIL import Image, ImageCms

from core.constants import ColorConstants, EncoderConstants, ErrorMessages, ImageConstants
from core.enums import Intent, Interpretation
from core.errors import ImageError
from core.image.converters import float_to_lab8, lab8_to_float
from core.image.handle import ImageHandle, ProfileBlob

logger = logging.getLogger(__name__)

_PROFILE_ERRORS = (OSError, ValueError, TypeError, ImageCms.PyCMSError)

# ICC colour space signature -> (PIL mode, colour bands)
_COLOR_SPACES = {
    "RGB": ("RGB", 3),
    "GRAY": ("L", 1),
    "CMYK": ("CMYK", 4),
}

_OUTPUT_INTERPRETATIONS = {
    ("RGB", 8): Interpretation.sRGB,
    ("RGB", 16): Interpretation.RGB16,
    ("GRAY", 8): Interpretation.B_W,
    ("GRAY", 16): Interpretation.GREY16,
    ("CMYK", 8): Interpretation.CMYK,
    ("CMYK", 16): Interpretation.CMYK,
}


@lru_cache(maxsize=1)
def builtin_srgb_profile() -> bytes:
    """ICC bytes of the built-in sRGB profile"""
    return ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB")).tobytes()


@lru_cache(maxsize=1)
def _lab_profile() -> ImageCms.ImageCmsProfile:
    return ImageCms.ImageCmsProfile(ImageCms.createProfile("LAB"))


def open_profile(data: bytes, domain: str) -> Tuple[ImageCms.ImageCmsProfile, str]:
    """
    Parse ICC bytes.

    Returns:
        Tuple of (profile, colour space signature such as "RGB")
    """
    try:
        profile = ImageCms.ImageCmsProfile(io.BytesIO(data))
        color_space = profile.profile.xcolor_space.strip()
    except _PROFILE_ERRORS as e:
        raise ImageError(f"corrupt profile: {e}", domain=domain) from e

    if color_space not in _COLOR_SPACES:
        raise ImageError(f"unsupported profile colour space {color_space!r}", domain=domain)
    return profile, color_space


def _embedded_profile(image: ImageHandle, domain: str) -> Tuple[ImageCms.ImageCmsProfile, str]:
    if image.get_typeof(ImageConstants.ICC_PROFILE_FIELD) is None:
        raise ImageError(ErrorMessages.NO_EMBEDDED_PROFILE, domain=domain)
    data = image.get(ImageConstants.ICC_PROFILE_FIELD)
    if not isinstance(data, (bytes, bytearray)) or not data:
        raise ImageError(ErrorMessages.NO_EMBEDDED_PROFILE, domain=domain)
    return open_profile(bytes(data), domain)


def _intent(intent: int, domain: str) -> ImageCms.Intent:
    try:
        return ImageCms.Intent(int(Intent(intent)))
    except ValueError as e:
        raise ImageError(f"unknown rendering intent {intent}", domain=domain) from e


def _to_uchar(pixels: np.ndarray) -> np.ndarray:
    if pixels.dtype == np.uint8:
        return pixels
    if pixels.dtype == np.uint16:
        return (pixels >> 8).astype(np.uint8)
    return np.clip(np.rint(pixels), 0, 255).astype(np.uint8)


def _apply(
    pil_image: Image.Image,
    source: ImageCms.ImageCmsProfile,
    destination: ImageCms.ImageCmsProfile,
    in_mode: str,
    out_mode: str,
    intent: ImageCms.Intent,
    domain: str,
) -> np.ndarray:
    try:
        transform = ImageCms.buildTransform(
            source, destination, in_mode, out_mode, renderingIntent=intent
        )
        result = ImageCms.applyTransform(pil_image, transform)
    except _PROFILE_ERRORS as e:
        raise ImageError(f"unable to build transform: {e}", domain=domain) from e

    array = np.asarray(result)
    if array.ndim == 2:
        array = array[:, :, np.newaxis]
    return array


def icc_import(image: ImageHandle, intent: int) -> ImageHandle:
    """
    Import device colour to float Lab through the embedded profile.

    Extra bands past the profile's colour bands (alpha) are carried over
    unchanged.

    Args:
        image: Input image handle with an "icc-profile-data" field
        intent: Rendering intent

    Returns:
        New LAB image handle
    """
    domain = "icc_import"
    profile, color_space = _embedded_profile(image, domain)
    mode, colour_bands = _COLOR_SPACES[color_space]

    if (image.interpretation == Interpretation.CMYK) != (color_space == "CMYK"):
        raise ImageError(
            f"{color_space} profile does not match "
            f"{image.interpretation.name} image",
            domain=domain,
        )

    pixels = image.pixels
    if pixels.shape[2] < colour_bands:
        raise ImageError(
            f"profile expects {colour_bands} bands, image has {pixels.shape[2]}", domain=domain
        )

    height, width = pixels.shape[:2]
    colour = np.ascontiguousarray(_to_uchar(pixels[:, :, :colour_bands]))
    pil_image = Image.frombytes(mode, (width, height), colour.tobytes())

    lab8 = _apply(pil_image, profile, _lab_profile(), mode, "LAB", _intent(intent, domain), domain)
    lab = lab8_to_float(lab8)

    extra = pixels[:, :, colour_bands:]
    if extra.shape[2]:
        lab = np.concatenate([lab, extra.astype(np.float32)], axis=2)

    logger.debug(f"Imported {color_space} image to Lab with intent {Intent(intent).name}")
    return image.derive(lab, Interpretation.LAB)


def icc_export(image: ImageHandle, intent: int, depth: int) -> ImageHandle:
    """
    Export float Lab to the device space of the embedded profile.

    Args:
        image: LAB image handle with an "icc-profile-data" field
        intent: Rendering intent
        depth: Bits per sample of the result, 8 or 16

    Returns:
        New image handle in the profile's colour space
    """
    domain = "icc_export"
    if depth not in EncoderConstants.SUPPORTED_DEPTHS:
        raise ImageError(
            ErrorMessages.BAD_DEPTH.format(depths=EncoderConstants.SUPPORTED_DEPTHS, depth=depth),
            domain=domain,
        )
    if image.interpretation != Interpretation.LAB or image.bands < 3:
        raise ImageError(
            ErrorMessages.NOT_LAB.format(interpretation=image.interpretation.name), domain=domain
        )

    profile, color_space = _embedded_profile(image, domain)
    out_mode = _COLOR_SPACES[color_space][0]

    pixels = image.pixels
    height, width = pixels.shape[:2]
    pil_image = Image.frombytes("LAB", (width, height), float_to_lab8(pixels).tobytes())

    rendering = _intent(intent, domain)
    out = _apply(pil_image, _lab_profile(), profile, "LAB", out_mode, rendering, domain)

    extra = pixels[:, :, 3:]
    if extra.shape[2]:
        out = np.concatenate([out, _to_uchar(extra)], axis=2)

    if depth == 16:
        # Widened from the 8-bit CMS output
        out = out.astype(np.uint16) * 257

    logger.debug(f"Exported Lab to {color_space} at {depth} bits")
    return image.derive(out, _OUTPUT_INTERPRETATIONS[(color_space, depth)])


def profile_load(name: str) -> Optional[ProfileBlob]:
    """
    Load an ICC profile.

    Args:
        name: "srgb" for the built-in profile, "none" for no profile, or a
            path to an ICC file

    Returns:
        Profile blob, or None for "none"
    """
    domain = "profile_load"
    lowered = name.lower()

    if lowered == ColorConstants.NO_PROFILE:
        return None
    if lowered == ColorConstants.BUILTIN_SRGB:
        return ProfileBlob(builtin_srgb_profile(), name=name)

    try:
        with open(name, "rb") as f:
            data = f.read()
    except OSError as e:
        raise ImageError(ErrorMessages.BAD_PROFILE.format(name=name, error=e), domain=domain) from e

    open_profile(data, domain)
    logger.debug(f"Loaded profile {name} ({len(data)} bytes)")
    return ProfileBlob(data, name=name)
