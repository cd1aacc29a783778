"""
Transform Service - colour-managed resize pipeline.

Imports an image to Lab through its embedded (or a default) ICC profile,
resizes it there and exports it through the output profile at 8 bits.
"""

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Dict

import cv2
import numpy as np

from core.constants import ColorConstants, ImageConstants
from core.enums import Intent, Interpretation
from services.image_service import Image, load_profile

logger = logging.getLogger(__name__)


class TransformError(ValueError):
    """Raised when a transform is configured in a way that cannot run"""


@dataclass
class TransformConfig:
    """Target geometry and profiles; empty profile names pick defaults"""

    width: int = 0
    height: int = 0
    input_profile: str = ""
    output_profile: str = ""


_profile_cache: Dict[str, bytes] = {}
_profile_cache_lock = Lock()


def get_profile(name: str) -> bytes:
    """
    Resolve a profile name to ICC bytes.

    Args:
        name: Profile alias (gray, srgb, srgb-v2, srgb-v4) or path to an ICC file

    Returns:
        Profile bytes
    """
    with _profile_cache_lock:
        if name in _profile_cache:
            return _profile_cache[name]

    if name.lower() in ColorConstants.PROFILE_ALIASES:
        profile = load_profile(ColorConstants.SRGB_PROFILE)
    else:
        profile = load_profile(name)

    with _profile_cache_lock:
        _profile_cache[name] = profile
    return profile


def clear_profile_cache() -> None:
    with _profile_cache_lock:
        _profile_cache.clear()


def _is_gray(name: str) -> bool:
    return name.lower() == ColorConstants.GRAY_PROFILE


def _promote_to_rgb(image: Image) -> Image:
    """Repeat the first band into three colour bands, keeping any alpha"""
    pixels = image.handle.pixels
    colour = np.repeat(pixels[:, :, :1], 3, axis=2)
    promoted = np.concatenate([colour, pixels[:, :, 1:]], axis=2)
    return Image(image.handle.derive(promoted, Interpretation.sRGB))


def _reduce_to_gray(image: Image) -> Image:
    """Collapse the colour bands to luminance, keeping any alpha"""
    pixels = image.handle.pixels
    gray = cv2.cvtColor(np.ascontiguousarray(pixels[:, :, :3]), cv2.COLOR_RGB2GRAY)
    reduced = np.concatenate([gray[:, :, np.newaxis], pixels[:, :, 3:]], axis=2)

    out = Image(image.handle.derive(reduced, Interpretation.B_W))
    # The attached profile describes RGB data
    out.handle.remove(ImageConstants.ICC_PROFILE_FIELD)
    return out


def transform_image(image: Image, cfg: TransformConfig) -> Image:
    """
    Resize an image in Lab between its input and output profiles.

    The input image is not modified.

    Args:
        image: Decoded image
        cfg: Target geometry and profile names

    Returns:
        New 8-bit image in the output profile's colour space
    """
    width = max(cfg.width, 0)
    height = max(cfg.height, 0)
    if width == 0 and height == 0:
        raise TransformError("either width or height should be greater than zero")

    input_profile = cfg.input_profile
    if not input_profile:
        if image.interpretation in (Interpretation.B_W, Interpretation.GREY16):
            input_profile = ColorConstants.GRAY_PROFILE
        else:
            input_profile = ColorConstants.SRGB_PROFILE
    output_profile = cfg.output_profile or input_profile

    source = image.copy()
    try:
        if not source.is_property_set(ImageConstants.ICC_PROFILE_FIELD):
            profile = get_profile(input_profile)
            if source.bands < 3:
                promoted = _promote_to_rgb(source)
                source.destroy()
                source = promoted
            source.set_property_blob(ImageConstants.ICC_PROFILE_FIELD, profile)

        with source.icc_import(Intent.RELATIVE) as imported:
            scale = max(width / image.width, height / image.height)

            with imported.resize(scale, scale) as resized, resized.copy() as resized_copy:
                resized_copy.set_property_blob(
                    ImageConstants.ICC_PROFILE_FIELD, get_profile(output_profile)
                )
                exported = resized_copy.icc_export(Intent.RELATIVE, 8)
    finally:
        source.destroy()

    if _is_gray(output_profile) and exported.bands >= 3:
        reduced = _reduce_to_gray(exported)
        exported.destroy()
        exported = reduced

    logger.debug(
        f"Transformed {image.width}x{image.height} to {exported.width}x{exported.height} "
        f"({input_profile} -> {output_profile})"
    )
    return exported
