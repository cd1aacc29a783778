"""
Centralized enums for the sharpei image tools.

Numeric values follow the wrapped image library so that codes can cross the
flat function surface unchanged.
"""

from enum import Enum, IntEnum


class Interpretation(IntEnum):
    """How the bands of an image should be read."""

    ERROR = -1
    MULTIBAND = 0
    B_W = 1
    HISTOGRAM = 10
    XYZ = 12
    LAB = 13
    CMYK = 15
    LABQ = 16
    RGB = 17
    CMC = 18
    LCH = 19
    LABS = 21
    sRGB = 22
    YXY = 23
    FOURIER = 24
    RGB16 = 25
    GREY16 = 26
    MATRIX = 27
    scRGB = 28
    HSV = 29


class BandFormat(IntEnum):
    """Pixel storage format of a single band."""

    NOTSET = -1
    UCHAR = 0
    CHAR = 1
    USHORT = 2
    SHORT = 3
    UINT = 4
    INT = 5
    FLOAT = 6
    COMPLEX = 7
    DOUBLE = 8
    DPCOMPLEX = 9


class Coding(IntEnum):
    """Pixel coding. Handles produced here are always uncoded."""

    ERROR = -1
    NONE = 0
    LABQ = 2
    RAD = 6


class Intent(IntEnum):
    """ICC rendering intents, numbered as in LittleCMS."""

    PERCEPTUAL = 0
    RELATIVE = 1
    SATURATION = 2
    ABSOLUTE = 3


class Access(str, Enum):
    """Pixel access hint accepted in load option strings."""

    RANDOM = "random"
    SEQUENTIAL = "sequential"
    SEQUENTIAL_UNBUFFERED = "sequential-unbuffered"

