"""
Core modules for sharpei
"""

from .enums import BandFormat, Coding, Intent, Interpretation
from .errors import ImageError
from .image import ImageHandle, ProfileBlob

__all__ = [
    "BandFormat",
    "Coding",
    "Intent",
    "Interpretation",
    "ImageError",
    "ImageHandle",
    "ProfileBlob",
]
