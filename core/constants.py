"""
Constants and configuration values for the sharpei image tools.
Centralizes all magic numbers and configuration constants.
"""


# Image Constants
class ImageConstants:
    """Constants related to image handles and metadata."""

    # Metadata field names
    ICC_PROFILE_FIELD = "icc-profile-data"
    EXIF_FIELD = "exif-data"
    XMP_FIELD = "xmp-data"
    IPTC_FIELD = "iptc-data"
    ORIENTATION_FIELD = "orientation"
    EXIF_ORIENTATION_FIELD = "exif-ifd0-Orientation"
    N_PAGES_FIELD = "n-pages"
    LOADER_FIELD = "loader"

    # Header fields, always present and never removable
    HEADER_FIELDS = (
        "width",
        "height",
        "bands",
        "format",
        "coding",
        "interpretation",
        "xoffset",
        "yoffset",
        "xres",
        "yres",
        "filename",
    )

    # EXIF
    EXIF_ORIENTATION_TAG = 0x0112
    MIN_ORIENTATION = 1
    MAX_ORIENTATION = 8

    # Resolution
    MM_PER_INCH = 25.4
    DEFAULT_RESOLUTION = 1.0  # pixels per millimetre

    # Load shrink factors accepted in option strings
    SHRINK_FACTORS = (1, 2, 4, 8)


# Encoder Constants
class EncoderConstants:
    """Limits and defaults for the buffer encoders."""

    MIN_QUALITY = 0
    MAX_QUALITY = 100
    MIN_COMPRESSION = 0
    MAX_COMPRESSION = 9

    # Saver defaults used by the batch tool
    DEFAULT_QUALITY = 95
    DEFAULT_COMPRESSION = 7
    BATCH_MIN_QUALITY = 1
    BATCH_MIN_COMPRESSION = 1

    # ICC export depths
    SUPPORTED_DEPTHS = (8, 16)


# Color Constants
class ColorConstants:
    """Constants for ICC transforms and the Lab working space."""

    BUILTIN_SRGB = "srgb"
    NO_PROFILE = "none"

    # Lab ranges of the float working space
    LAB_L_MAX = 100.0
    LAB_AB_OFFSET = 128.0

    # Profile aliases understood by the transform service
    PROFILE_ALIASES = ("gray", "srgb", "srgb-v2", "srgb-v4")
    GRAY_PROFILE = "gray"
    SRGB_PROFILE = "srgb"


# Batch Constants
class BatchConstants:
    """Constants for the batch command line tool."""

    DEFAULT_OUTPUT = "."
    DEFAULT_FORMAT = "{name}_{profile}"
    CLI_PROFILE_NAME = "thumbnail"
    SAME_TYPE = "same"

    JPEG_TYPES = ("jpeg", "jpg", "jpe", "jif", "jfif", "jfi")
    PNG_TYPES = ("png",)
    TIFF_TYPES = ("tiff", "tif")
    WEBP_TYPES = ("webp",)

    CONFIG_FILENAMES = ("sharpei.yaml", "sharpei.yml", ".sharpei.yaml", ".sharpei.yml")
    HOME_CONFIG_FILENAMES = (".sharpei.yaml", ".sharpei.yml")

    # Metadata stripped from every output
    STRIPPED_FIELD_PREFIXES = ("exif", "iptc", "xmp")


# System Constants
class SystemConstants:
    """Constants for system operations."""

    # Logging
    LOG_LEVEL_DEFAULT = "INFO"
    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Error buffer
    ERROR_BUFFER_MAX_ENTRIES = 100


# Error Messages
class ErrorMessages:
    """Standard error messages."""

    # Handle errors
    HANDLE_RELEASED = "image handle has been released"
    NOT_A_HANDLE = "expected an image handle, got {type}"

    # Decode errors
    EMPTY_BUFFER = "buffer is empty"
    NOT_AN_IMAGE = "buffer is not in a known format: {error}"
    BAD_OPTION_STRING = "malformed option string {option_string!r}: {error}"
    UNKNOWN_OPTION = "unknown option {name!r}"

    # Encoder errors
    VALUE_OUT_OF_RANGE = "parameter {param} should be in range [{min}, {max}], got {value}"
    NOT_SAVEABLE = "{saver}: unable to save {interpretation} image with {bands} bands"

    # Geometry errors
    BAD_SCALE = "scale factors must be positive and finite, got {xscale} x {yscale}"

    # Color errors
    NO_EMBEDDED_PROFILE = "no embedded profile"
    BAD_PROFILE = "unable to load profile {name!r}: {error}"
    NOT_LAB = "expected a Lab image, got {interpretation}"
    BAD_DEPTH = "depth must be one of {depths}, got {depth}"
