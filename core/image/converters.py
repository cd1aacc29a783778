"""
Image format conversion utilities.

Handles conversions between encoded buffers and image handles:
- Decoding with a load option string ("[page=1,autorotate=true]")
- Metadata extraction (ICC, EXIF, XMP, IPTC, PNG text)
- JPEG, PNG, WebP and TIFF buffer encoders
"""

import io
import logging
import struct
from typing import Any, Callable, Dict, Optional, Tuple

import cv2
import numpy as np
from PIL import ExifTags, Image, PngImagePlugin, UnidentifiedImageError

from core.constants import ColorConstants, EncoderConstants, ErrorMessages, ImageConstants
from core.enums import Access, Interpretation
from core.errors import ImageError
from core.image.handle import ImageHandle

logger = logging.getLogger(__name__)

# Errors Pillow raises for bad or truncated data
_DECODE_ERRORS = (
    OSError,
    ValueError,
    TypeError,
    IndexError,
    KeyError,
    SyntaxError,
    EOFError,
    ZeroDivisionError,
    struct.error,
    Image.DecompressionBombError,
)

# EXIF pointer tags, not reported as fields
_EXIF_POINTER_TAGS = (0x8769, 0x8825, 0xA005)


# ----------------------------------------------------------------------
# Option strings
# ----------------------------------------------------------------------


def _parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in ("true", "yes", "on", "1"):
        return True
    if lowered in ("false", "no", "off", "0"):
        return False
    raise ValueError(f"{value!r} is not a boolean")


def _parse_page(value: str) -> int:
    page = int(value)
    if page < 0:
        raise ValueError(f"page must be >= 0, got {page}")
    return page


def _parse_shrink(value: str) -> int:
    shrink = int(value)
    if shrink not in ImageConstants.SHRINK_FACTORS:
        raise ValueError(f"shrink must be one of {ImageConstants.SHRINK_FACTORS}, got {shrink}")
    return shrink


_LOAD_OPTIONS: Dict[str, Callable[[str], Any]] = {
    "access": Access,
    "page": _parse_page,
    "shrink": _parse_shrink,
    "autorotate": _parse_bool,
    "fail": _parse_bool,
    "memory": _parse_bool,
}


def parse_option_string(option_string: Optional[str]) -> Dict[str, Any]:
    """
    Parse a load option string.

    Args:
        option_string: "[name=value,...]", brackets optional, may be empty.
            A bare name sets a boolean option to true.

    Returns:
        Dict of parsed option values

    Raises:
        ImageError: On unbalanced brackets, empty or unknown names, bad values
    """
    text = (option_string or "").strip()

    def malformed(error: str) -> ImageError:
        return ImageError(
            ErrorMessages.BAD_OPTION_STRING.format(option_string=option_string, error=error),
            domain="image_new_from_buffer",
        )

    if text.startswith("["):
        if not text.endswith("]"):
            raise malformed("missing ']'")
        text = text[1:-1]
    if "[" in text or "]" in text:
        raise malformed("unbalanced brackets")

    options: Dict[str, Any] = {}
    if not text.strip():
        return options

    for item in text.split(","):
        name, sep, value = item.partition("=")
        name = name.strip()
        if not name:
            raise malformed("empty option name")

        parser = _LOAD_OPTIONS.get(name)
        if parser is None:
            raise malformed(ErrorMessages.UNKNOWN_OPTION.format(name=name))

        try:
            options[name] = parser(value.strip() if sep else "true")
        except ValueError as e:
            raise malformed(f"{name}: {e}") from e

    return options


# ----------------------------------------------------------------------
# Pillow <-> NumPy
# ----------------------------------------------------------------------


def lab8_to_float(array: np.ndarray) -> np.ndarray:
    """8-bit CMS Lab (L 0..255, a/b offset by 128) to float Lab"""
    lab = array.astype(np.float32)
    lab[..., 0] *= ColorConstants.LAB_L_MAX / 255.0
    lab[..., 1:3] -= ColorConstants.LAB_AB_OFFSET
    return lab


def float_to_lab8(array: np.ndarray) -> np.ndarray:
    """Float Lab to the 8-bit CMS encoding"""
    lab = np.empty(array.shape[:2] + (3,), dtype=np.float32)
    lab[..., 0] = array[..., 0] * (255.0 / ColorConstants.LAB_L_MAX)
    lab[..., 1:3] = array[..., 1:3] + ColorConstants.LAB_AB_OFFSET
    return np.clip(np.rint(lab), 0, 255).astype(np.uint8)


def pil_to_numpy(image: Image.Image) -> Tuple[np.ndarray, Interpretation]:
    """
    Convert a PIL Image to a 3-D pixel array.

    Args:
        image: Decoded PIL Image in any mode

    Returns:
        Tuple of (height x width x bands array, interpretation)
    """
    mode = image.mode

    if mode == "1":
        image = image.convert("L")
        mode = "L"

    if mode in ("L", "LA"):
        return np.array(image, dtype=np.uint8), Interpretation.B_W

    if mode.startswith("I;16"):
        return np.asarray(image).astype(np.uint16), Interpretation.GREY16

    if mode == "I":
        return np.clip(np.asarray(image), 0, 65535).astype(np.uint16), Interpretation.GREY16

    if mode == "F":
        return np.array(image, dtype=np.float32), Interpretation.B_W

    if mode in ("RGB", "RGBA"):
        return np.array(image, dtype=np.uint8), Interpretation.sRGB

    if mode == "CMYK":
        return np.array(image, dtype=np.uint8), Interpretation.CMYK

    if mode == "LAB":
        return lab8_to_float(np.asarray(image)), Interpretation.LAB

    # Palette and everything else
    has_alpha = "transparency" in image.info or "A" in image.getbands() or "a" in image.getbands()
    converted = image.convert("RGBA" if has_alpha else "RGB")
    return np.array(converted, dtype=np.uint8), Interpretation.sRGB


def numpy_to_pil(array: np.ndarray, interpretation: Interpretation) -> Image.Image:
    """
    Convert a saveable pixel array to a PIL Image.

    Args:
        array: height x width x bands array, uint8 (1-4 bands) or
            uint16 (1 band)
        interpretation: Used to tell CMYK from RGBA

    Returns:
        PIL Image
    """
    height, width, bands = array.shape
    size = (width, height)

    if array.dtype == np.uint16:
        if bands != 1:
            raise ImageError(f"no PIL mode for {bands}-band 16-bit images")
        return Image.frombytes("I;16", size, np.ascontiguousarray(array, dtype="<u2").tobytes())

    if array.dtype != np.uint8:
        raise ImageError(f"no PIL mode for {array.dtype} images")

    if bands == 4 and interpretation == Interpretation.CMYK:
        mode = "CMYK"
    else:
        modes = {1: "L", 2: "LA", 3: "RGB", 4: "RGBA"}
        if bands not in modes:
            raise ImageError(f"no PIL mode for {bands}-band images")
        mode = modes[bands]

    return Image.frombytes(mode, size, np.ascontiguousarray(array).tobytes())


# ----------------------------------------------------------------------
# Metadata
# ----------------------------------------------------------------------


def _exif_value_string(value: Any) -> str:
    if isinstance(value, bytes):
        text = value.rstrip(b"\x00")
        if text.isascii() and text.decode("ascii").isprintable():
            return text.decode("ascii")
        return f"{len(value)} bytes of binary data"
    return str(value)


def _exif_fields(exif: Image.Exif) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}

    for tag, value in exif.items():
        if tag in _EXIF_POINTER_TAGS:
            continue
        name = ExifTags.TAGS.get(tag, f"0x{tag:04x}")
        fields[f"exif-ifd0-{name}"] = _exif_value_string(value)

    sub_ifds = (
        (ExifTags.IFD.Exif, 2, ExifTags.TAGS),
        (ExifTags.IFD.GPSInfo, 3, ExifTags.GPSTAGS),
        (ExifTags.IFD.Interop, 4, ExifTags.TAGS),
    )
    for ifd, index, names in sub_ifds:
        try:
            entries = exif.get_ifd(ifd)
        except (KeyError, ValueError, TypeError, struct.error):
            logger.debug(f"Skipping unreadable EXIF IFD {ifd}")
            continue
        for tag, value in entries.items():
            if tag in _EXIF_POINTER_TAGS:
                continue
            name = names.get(tag, f"0x{tag:04x}")
            fields[f"exif-ifd{index}-{name}"] = _exif_value_string(value)

    return fields


def collect_metadata(image: Image.Image) -> Dict[str, Any]:
    """
    Gather metadata fields from a decoded PIL Image.

    Args:
        image: PIL Image straight from Image.open

    Returns:
        Insertion-ordered field dict
    """
    info = image.info
    fields: Dict[str, Any] = {}

    icc = info.get("icc_profile")
    if icc:
        fields[ImageConstants.ICC_PROFILE_FIELD] = bytes(icc)

    exif_blob = info.get("exif")
    if exif_blob:
        fields[ImageConstants.EXIF_FIELD] = bytes(exif_blob)
        exif = Image.Exif()
        try:
            exif.load(bytes(exif_blob))
        except (SyntaxError, ValueError, struct.error) as e:
            logger.warning(f"Ignoring unreadable EXIF block: {e}")
        else:
            orientation = exif.get(ImageConstants.EXIF_ORIENTATION_TAG)
            if (
                isinstance(orientation, int)
                and ImageConstants.MIN_ORIENTATION <= orientation <= ImageConstants.MAX_ORIENTATION
            ):
                fields[ImageConstants.ORIENTATION_FIELD] = orientation
            fields.update(_exif_fields(exif))

    xmp = info.get("xmp") or info.get("XML:com.adobe.xmp")
    if xmp:
        if isinstance(xmp, str):
            xmp = xmp.encode("utf-8")
        fields[ImageConstants.XMP_FIELD] = bytes(xmp)

    photoshop = info.get("photoshop")
    if isinstance(photoshop, dict) and photoshop.get(0x0404):
        fields[ImageConstants.IPTC_FIELD] = bytes(photoshop[0x0404])

    if image.format == "PNG":
        for index, (key, value) in enumerate(getattr(image, "text", {}).items()):
            if key == "XML:com.adobe.xmp":
                continue
            fields[f"png-comment-{index}-{key}"] = str(value)

    fields[ImageConstants.N_PAGES_FIELD] = int(getattr(image, "n_frames", 1))
    if image.format:
        fields[ImageConstants.LOADER_FIELD] = f"{image.format.lower()}load_buffer"

    return fields


def _resolution(image: Image.Image) -> Tuple[float, float]:
    dpi = image.info.get("dpi")
    if not dpi:
        return ImageConstants.DEFAULT_RESOLUTION, ImageConstants.DEFAULT_RESOLUTION
    try:
        xdpi, ydpi = float(dpi[0]), float(dpi[1])
    except (TypeError, ValueError, IndexError):
        return ImageConstants.DEFAULT_RESOLUTION, ImageConstants.DEFAULT_RESOLUTION
    if xdpi <= 0 or ydpi <= 0:
        return ImageConstants.DEFAULT_RESOLUTION, ImageConstants.DEFAULT_RESOLUTION
    return xdpi / ImageConstants.MM_PER_INCH, ydpi / ImageConstants.MM_PER_INCH


# ----------------------------------------------------------------------
# Decode
# ----------------------------------------------------------------------


def decode_buffer(buf: bytes, option_string: Optional[str] = "") -> ImageHandle:
    """
    Decode an encoded image held in memory.

    Args:
        buf: Encoded bytes (JPEG, PNG, WebP, TIFF or anything Pillow reads)
        option_string: Load options, see parse_option_string

    Returns:
        New image handle

    Raises:
        ImageError: If the options are malformed or the buffer is not a
            decodable image
    """
    options = parse_option_string(option_string)
    data = bytes(buf)
    if not data:
        raise ImageError(ErrorMessages.EMPTY_BUFFER, domain="image_new_from_buffer")

    try:
        if options.get("fail"):
            with Image.open(io.BytesIO(data)) as checked:
                checked.verify()

        pil_image = Image.open(io.BytesIO(data))
        fields = collect_metadata(pil_image)

        page = options.get("page", 0)
        if page >= fields[ImageConstants.N_PAGES_FIELD]:
            raise ImageError(
                f"page {page} out of range, image has "
                f"{fields[ImageConstants.N_PAGES_FIELD]} pages",
                domain="image_new_from_buffer",
            )
        if page:
            pil_image.seek(page)

        pil_image.load()
        xres, yres = _resolution(pil_image)
        pixels, interpretation = pil_to_numpy(pil_image)
    except UnidentifiedImageError as e:
        raise ImageError(
            ErrorMessages.NOT_AN_IMAGE.format(error=e), domain="image_new_from_buffer"
        ) from e
    except _DECODE_ERRORS as e:
        raise ImageError(f"unable to decode image: {e}", domain="image_new_from_buffer") from e

    shrink = options.get("shrink", 1)
    if shrink > 1:
        height, width = pixels.shape[:2]
        size = (max(1, width // shrink), max(1, height // shrink))
        pixels = cv2.resize(pixels, size, interpolation=cv2.INTER_AREA)
        xres, yres = xres / shrink, yres / shrink

    handle = ImageHandle(pixels, interpretation, fields=fields, xres=xres, yres=yres)
    logger.debug(f"Decoded {handle!r} with options {options}")

    if options.get("autorotate"):
        from core.image.processors import autorot

        rotated = autorot(handle)
        handle.unref()
        handle = rotated

    return handle


# ----------------------------------------------------------------------
# Encode
# ----------------------------------------------------------------------


def _check_range(saver: str, param: str, value: int, lower: int, upper: int) -> None:
    if not lower <= value <= upper:
        raise ImageError(
            ErrorMessages.VALUE_OUT_OF_RANGE.format(param=param, min=lower, max=upper, value=value),
            domain=saver,
        )


def to_saveable(
    image: ImageHandle,
    saver: str,
    alpha: bool,
    cmyk: bool,
    sixteen_bit: bool,
) -> np.ndarray:
    """
    Cast an image's pixels to something a saver can write.

    Args:
        image: Source image handle
        saver: Saver name used in error messages
        alpha: Saver keeps an alpha band
        cmyk: Saver writes CMYK
        sixteen_bit: Saver writes 16-bit samples

    Returns:
        height x width x bands array (uint8, or uint16 when allowed)
    """
    array = image.pixels
    interpretation = image.interpretation

    def not_saveable() -> ImageError:
        return ImageError(
            ErrorMessages.NOT_SAVEABLE.format(
                saver=saver, interpretation=interpretation.name, bands=array.shape[2]
            ),
            domain=saver,
        )

    if interpretation in (Interpretation.LAB, Interpretation.LABS, Interpretation.XYZ):
        raise not_saveable()

    if array.dtype in (np.float32, np.float64):
        array = np.clip(np.rint(array), 0, 255).astype(np.uint8)
    elif array.dtype == np.uint16 and not sixteen_bit:
        array = (array >> 8).astype(np.uint8)
    elif array.dtype not in (np.uint8, np.uint16):
        raise not_saveable()

    bands = array.shape[2]
    is_cmyk = interpretation == Interpretation.CMYK and bands >= 4

    if is_cmyk:
        array = array[:, :, :4]
        if array.dtype == np.uint16:
            array = (array >> 8).astype(np.uint8)
        if not cmyk:
            rgb = numpy_to_pil(array, Interpretation.CMYK).convert("RGB")
            array = np.asarray(rgb, dtype=np.uint8)
        return array

    if bands in (2, 4) and not alpha:
        array = array[:, :, : bands - 1]
    elif bands not in (1, 2, 3, 4):
        raise not_saveable()

    return array


def _field_blob(image: ImageHandle, name: str) -> Optional[bytes]:
    if image.get_typeof(name) is None:
        return None
    value = image.get(name)
    return bytes(value) if isinstance(value, (bytes, bytearray)) else None


def _exif_for_save(image: ImageHandle) -> Optional[bytes]:
    """EXIF blob with Orientation synced to the orientation field"""
    blob = _field_blob(image, ImageConstants.EXIF_FIELD)
    if blob is None:
        return None

    exif = Image.Exif()
    try:
        exif.load(blob)
    except (SyntaxError, ValueError, struct.error) as e:
        logger.warning(f"Writing EXIF block unchanged, unable to parse it: {e}")
        return blob

    if image.get_typeof(ImageConstants.ORIENTATION_FIELD) is None:
        exif.pop(ImageConstants.EXIF_ORIENTATION_TAG, None)
    else:
        exif[ImageConstants.EXIF_ORIENTATION_TAG] = int(image.get(ImageConstants.ORIENTATION_FIELD))
    return exif.tobytes()


def _save_kwargs(image: ImageHandle, exif: bool = True) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {}

    icc = _field_blob(image, ImageConstants.ICC_PROFILE_FIELD)
    if icc is not None:
        kwargs["icc_profile"] = icc

    if exif:
        exif_blob = _exif_for_save(image)
        if exif_blob:
            kwargs["exif"] = exif_blob

    return kwargs


def _pil_save(pil_image: Image.Image, saver: str, format: str, **save_kwargs) -> bytes:
    buffer = io.BytesIO()
    try:
        pil_image.save(buffer, format=format, **save_kwargs)
    except (OSError, ValueError, KeyError) as e:
        raise ImageError(f"unable to write {format}: {e}", domain=saver) from e
    return buffer.getvalue()


def _cv2_encode(array: np.ndarray, saver: str, ext: str, params: Optional[list] = None) -> bytes:
    """Encode 16-bit multi-band pixels, which PIL has no mode for"""
    bands = array.shape[2]
    if bands == 2:
        grey, alpha = array[:, :, 0], array[:, :, 1]
        bgr = np.dstack([grey, grey, grey, alpha])
    elif bands == 3:
        bgr = cv2.cvtColor(array, cv2.COLOR_RGB2BGR)
    elif bands == 4:
        bgr = cv2.cvtColor(array, cv2.COLOR_RGBA2BGRA)
    else:
        bgr = array

    try:
        ok, encoded = cv2.imencode(ext, np.ascontiguousarray(bgr), params or [])
    except cv2.error as e:
        raise ImageError(f"unable to write {ext}: {e}", domain=saver) from e
    if not ok:
        raise ImageError(f"unable to write {ext}", domain=saver)
    return encoded.tobytes()


def jpeg_save(image: ImageHandle, quality: int) -> bytes:
    """
    Encode as JPEG with optimized entropy coding.

    Args:
        image: Image handle
        quality: 0..100

    Returns:
        Encoded bytes
    """
    _check_range(
        "jpegsave_buffer", "Q", quality, EncoderConstants.MIN_QUALITY, EncoderConstants.MAX_QUALITY
    )
    array = to_saveable(image, "jpegsave_buffer", alpha=False, cmyk=True, sixteen_bit=False)
    pil_image = numpy_to_pil(array, image.interpretation)

    kwargs = _save_kwargs(image)
    xmp = _field_blob(image, ImageConstants.XMP_FIELD)
    if xmp is not None:
        kwargs["xmp"] = xmp

    return _pil_save(pil_image, "jpegsave_buffer", "JPEG", quality=quality, optimize=True, **kwargs)


def png_save(image: ImageHandle, compression: int) -> bytes:
    """
    Encode as PNG.

    Args:
        image: Image handle
        compression: zlib level 0..9

    Returns:
        Encoded bytes
    """
    _check_range(
        "pngsave_buffer",
        "compression",
        compression,
        EncoderConstants.MIN_COMPRESSION,
        EncoderConstants.MAX_COMPRESSION,
    )
    array = to_saveable(image, "pngsave_buffer", alpha=True, cmyk=False, sixteen_bit=True)

    if array.dtype == np.uint16 and array.shape[2] > 1:
        params = [cv2.IMWRITE_PNG_COMPRESSION, compression]
        return _cv2_encode(array, "pngsave_buffer", ".png", params)

    kwargs = _save_kwargs(image)
    xmp = _field_blob(image, ImageConstants.XMP_FIELD)
    if xmp is not None:
        pnginfo = PngImagePlugin.PngInfo()
        pnginfo.add_itxt("XML:com.adobe.xmp", xmp.decode("utf-8", errors="replace"))
        kwargs["pnginfo"] = pnginfo

    # Pillow chooses row filters itself; optimize would override the level
    pil_image = numpy_to_pil(array, image.interpretation)
    return _pil_save(
        pil_image, "pngsave_buffer", "PNG", compress_level=compression, optimize=False, **kwargs
    )


def webp_save(image: ImageHandle, quality: int, lossless: bool) -> bytes:
    """
    Encode as WebP.

    Args:
        image: Image handle
        quality: 0..100
        lossless: Use lossless compression

    Returns:
        Encoded bytes
    """
    _check_range(
        "webpsave_buffer", "Q", quality, EncoderConstants.MIN_QUALITY, EncoderConstants.MAX_QUALITY
    )
    array = to_saveable(image, "webpsave_buffer", alpha=True, cmyk=False, sixteen_bit=False)

    pil_image = numpy_to_pil(array, image.interpretation)
    if pil_image.mode not in ("RGB", "RGBA"):
        pil_image = pil_image.convert("RGBA" if "A" in pil_image.getbands() else "RGB")

    kwargs = _save_kwargs(image)
    xmp = _field_blob(image, ImageConstants.XMP_FIELD)
    if xmp is not None:
        kwargs["xmp"] = xmp

    return _pil_save(
        pil_image, "webpsave_buffer", "WEBP", quality=quality, lossless=bool(lossless), **kwargs
    )


def tiff_save(image: ImageHandle) -> bytes:
    """Encode as uncompressed TIFF"""
    array = to_saveable(image, "tiffsave_buffer", alpha=True, cmyk=True, sixteen_bit=True)

    if array.dtype == np.uint16 and array.shape[2] > 1:
        return _cv2_encode(array, "tiffsave_buffer", ".tiff")

    pil_image = numpy_to_pil(array, image.interpretation)
    return _pil_save(pil_image, "tiffsave_buffer", "TIFF", **_save_kwargs(image, exif=False))
