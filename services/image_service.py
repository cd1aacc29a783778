"""
Image Service - object API over the flat image function surface.

Wraps handles in Image objects whose methods raise ImageError with the
message taken from the error buffer, instead of returning status codes.
"""

import logging
from typing import BinaryIO, List, Optional

from core import errors, shim
from core.enums import BandFormat, Coding, Interpretation
from core.errors import ImageError
from core.image.handle import ImageHandle

logger = logging.getLogger(__name__)


def init(name: str) -> None:
    """Initialise the image library; pixel work runs single-threaded"""
    if shim.init(name) != shim.SUCCESS:
        shim.shutdown()
        raise RuntimeError("failed to initialize image library")


def shutdown() -> None:
    shim.shutdown()


def get_error(name: str) -> str:
    """
    Take the buffered error text, clearing the buffer.

    Args:
        name: Function name used when nothing was buffered

    Returns:
        Error message
    """
    try:
        message = errors.error_buffer()
        if message:
            return message.rstrip("\n")
        return f"unknown error in function {name}"
    finally:
        errors.error_clear()


class Image:
    """
    An owned image handle.

    Call destroy() (or use the image as a context manager) to release it.
    """

    def __init__(self, handle: ImageHandle):
        self._handle = handle

    def __enter__(self) -> "Image":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()

    @property
    def handle(self) -> ImageHandle:
        return self._handle

    def destroy(self) -> None:
        shim.object_unref(self._handle)

    def copy(self) -> "Image":
        status, out = shim.copy(self._handle)
        if status != shim.SUCCESS:
            raise ImageError(get_error("copy"))
        return Image(out)

    # Header

    @property
    def width(self) -> int:
        """Image width, in pixels"""
        return self._handle.width

    @property
    def height(self) -> int:
        """Image height, in pixels"""
        return self._handle.height

    @property
    def bands(self) -> int:
        return self._handle.bands

    @property
    def format(self) -> BandFormat:
        return self._handle.format

    @property
    def coding(self) -> Coding:
        return self._handle.coding

    @property
    def interpretation(self) -> Interpretation:
        return self._handle.interpretation

    @property
    def xres(self) -> float:
        """Horizontal pixels per millimetre"""
        return self._handle.xres

    @property
    def yres(self) -> float:
        """Vertical pixels per millimetre"""
        return self._handle.yres

    @property
    def xoffset(self) -> int:
        return self._handle.xoffset

    @property
    def yoffset(self) -> int:
        return self._handle.yoffset

    @property
    def filename(self) -> str:
        return self._handle.filename

    # Metadata

    def is_property_set(self, name: str) -> bool:
        return self._handle.get_typeof(name) is not None

    def properties(self) -> List[str]:
        """Names of all header fields and metadata on the image"""
        return shim.image_get_fields(self._handle)

    def remove_property(self, name: str) -> None:
        if shim.image_remove(self._handle, name) == 0:
            raise ImageError(f"no metadata with name {name}")

    def property_string(self, name: str) -> str:
        """String form of a field, empty when it is not set"""
        try:
            return self._handle.get_as_string(name)
        except ImageError:
            return ""

    def set_property_blob(self, name: str, data: bytes) -> None:
        self._handle.set_blob_copy(name, data)

    # Encoders

    def _write(self, w: BinaryIO, result: shim.EncodeResult, name: str) -> None:
        status, data, size = result
        if status != shim.SUCCESS:
            raise ImageError(get_error(name))
        w.write(data[:size])

    def encode_jpeg(self, w: BinaryIO, quality: int) -> None:
        self._write(w, shim.jpegsave_buffer(self._handle, quality), "jpegsave_buffer")

    def encode_png(self, w: BinaryIO, compression: int) -> None:
        self._write(w, shim.pngsave_buffer(self._handle, compression), "pngsave_buffer")

    def encode_tiff(self, w: BinaryIO) -> None:
        self._write(w, shim.tiffsave_buffer(self._handle), "tiffsave_buffer")

    def encode_webp(self, w: BinaryIO, quality: int, lossless: bool) -> None:
        self._write(
            w, shim.webpsave_buffer(self._handle, quality, int(lossless)), "webpsave_buffer"
        )

    # Operations

    def _wrap(self, result: shim.HandleResult, name: str) -> "Image":
        status, out = result
        if status != shim.SUCCESS:
            raise ImageError(get_error(name))
        return Image(out)

    def resize(self, xscale: float, yscale: float) -> "Image":
        return self._wrap(shim.resize(self._handle, xscale, yscale), "resize")

    def icc_import(self, intent: int) -> "Image":
        return self._wrap(shim.icc_import(self._handle, intent), "icc_import")

    def icc_export(self, intent: int, depth: int) -> "Image":
        return self._wrap(shim.icc_export(self._handle, intent, depth), "icc_export")

    def autorot(self) -> "Image":
        return self._wrap(shim.autorot(self._handle), "autorot")

    def __repr__(self) -> str:
        return f"Image({self._handle!r})"


def decode(reader: BinaryIO) -> Image:
    """
    Decode an image from a binary stream.

    Args:
        reader: File-like object opened in binary mode

    Returns:
        Decoded Image
    """
    buf = reader.read()
    handle = shim.image_new_from_buffer(buf, len(buf), "")
    if handle is None:
        raise ImageError(get_error("image_new_from_buffer"))
    return Image(handle)


def load_profile(name: str) -> bytes:
    """
    Load an ICC profile by built-in name or path.

    Args:
        name: "srgb", "none" or a path to an ICC file

    Returns:
        Profile bytes (empty for "none")
    """
    status, blob = shim.profile_load(name)
    if status != shim.SUCCESS:
        raise ImageError(get_error("profile_load"))
    if blob is None:
        return b""

    try:
        return blob.data
    finally:
        shim.object_unref(blob)


def decode_bytes(data: bytes, option_string: Optional[str] = "") -> Image:
    """Decode from memory, with load options"""
    handle = shim.image_new_from_buffer(data, len(data), option_string or "")
    if handle is None:
        raise ImageError(get_error("image_new_from_buffer"))
    return Image(handle)
