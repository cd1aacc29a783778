"""
Flat image function surface.

Fixed-arity functions over the image engine for callers that cannot pass
keyword options or catch exceptions (foreign-function bridges, worker
protocols). Output parameters are returned as tuple members. A failing call
returns a non-zero status (or None / an empty result) and leaves its message
in the error buffer, readable through core.errors.error_buffer().

Every handle or blob returned with a success status belongs to the caller,
who releases it with object_unref().
"""

import functools
import logging
from typing import Any, Callable, List, Optional, Tuple, Union

import cv2

from core import errors
from core.constants import ErrorMessages
from core.errors import ImageError
from core.image import color, converters, processors
from core.image.handle import ImageHandle, ProfileBlob

logger = logging.getLogger(__name__)

SUCCESS = 0
FAILURE = -1

Buffer = Union[bytes, bytearray, memoryview]
EncodeResult = Tuple[int, Optional[bytes], int]
HandleResult = Tuple[int, Optional[ImageHandle]]

_ENCODE_FAILED: EncodeResult = (FAILURE, None, 0)
_HANDLE_FAILED: HandleResult = (FAILURE, None)


def passthrough(domain: str, failure: Any) -> Callable:
    """
    Turn engine errors into a failure value plus an error buffer entry.

    Args:
        domain: Name recorded with errors that carry no domain
        failure: Value returned when the call fails
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except ImageError as e:
                errors.record_exception(domain, e)
            except MemoryError:
                errors.record(domain, "out of memory")
            return list(failure) if isinstance(failure, list) else failure

        return wrapper

    return decorator


def _require(handle: Any) -> ImageHandle:
    if not isinstance(handle, ImageHandle):
        raise ImageError(ErrorMessages.NOT_A_HANDLE.format(type=type(handle).__name__))
    if handle.released:
        raise ImageError(ErrorMessages.HANDLE_RELEASED)
    return handle


def _encoded(data: bytes) -> EncodeResult:
    return SUCCESS, data, len(data)


# ----------------------------------------------------------------------
# Lifecycle
# ----------------------------------------------------------------------


def init(name: str) -> int:
    """Start the library; single-threaded pixel work until told otherwise"""
    concurrency_set(1)
    logger.debug(f"Image library initialised for {name}")
    return SUCCESS


def shutdown() -> None:
    errors.error_clear()


def concurrency_set(threads: int) -> None:
    """Number of worker threads used inside a single operation"""
    cv2.setNumThreads(max(0, int(threads)))


def concurrency_get() -> int:
    return cv2.getNumThreads()


def object_unref(obj: Optional[Union[ImageHandle, ProfileBlob]]) -> None:
    """Release one reference on a handle or profile blob"""
    if obj is not None:
        obj.unref()


# ----------------------------------------------------------------------
# Decode
# ----------------------------------------------------------------------


@passthrough("image_new_from_buffer", None)
def image_new_from_buffer(buf: Buffer, length: int, option_string: str) -> Optional[ImageHandle]:
    """Decode the first length bytes of buf; None on failure"""
    view = memoryview(buf)
    if length < 0 or length > view.nbytes:
        raise ImageError(f"length {length} outside a {view.nbytes} byte buffer")
    return converters.decode_buffer(view.cast("B")[:length], option_string)


# ----------------------------------------------------------------------
# Encoders
# ----------------------------------------------------------------------


@passthrough("jpegsave_buffer", _ENCODE_FAILED)
def jpegsave_buffer(handle: ImageHandle, quality: int) -> EncodeResult:
    return _encoded(converters.jpeg_save(_require(handle), quality))


@passthrough("pngsave_buffer", _ENCODE_FAILED)
def pngsave_buffer(handle: ImageHandle, compression: int) -> EncodeResult:
    return _encoded(converters.png_save(_require(handle), compression))


@passthrough("webpsave_buffer", _ENCODE_FAILED)
def webpsave_buffer(handle: ImageHandle, quality: int, lossless: int) -> EncodeResult:
    return _encoded(converters.webp_save(_require(handle), quality, bool(lossless)))


@passthrough("tiffsave_buffer", _ENCODE_FAILED)
def tiffsave_buffer(handle: ImageHandle) -> EncodeResult:
    return _encoded(converters.tiff_save(_require(handle)))


# ----------------------------------------------------------------------
# Geometry, colour, copy
# ----------------------------------------------------------------------


@passthrough("resize", _HANDLE_FAILED)
def resize(handle: ImageHandle, xscale: float, yscale: float) -> HandleResult:
    return SUCCESS, processors.resize(_require(handle), xscale, vscale=yscale)


@passthrough("icc_import", _HANDLE_FAILED)
def icc_import(handle: ImageHandle, intent: int) -> HandleResult:
    return SUCCESS, color.icc_import(_require(handle), intent)


@passthrough("icc_export", _HANDLE_FAILED)
def icc_export(handle: ImageHandle, intent: int, depth: int) -> HandleResult:
    return SUCCESS, color.icc_export(_require(handle), intent, depth)


@passthrough("copy", _HANDLE_FAILED)
def copy(handle: ImageHandle) -> HandleResult:
    return SUCCESS, _require(handle).copy()


@passthrough("autorot", _HANDLE_FAILED)
def autorot(handle: ImageHandle) -> HandleResult:
    return SUCCESS, processors.autorot(_require(handle))


@passthrough("profile_load", (FAILURE, None))
def profile_load(name: str) -> Tuple[int, Optional[ProfileBlob]]:
    """Load a profile blob; the "none" profile succeeds with no blob"""
    return SUCCESS, color.profile_load(name)


# ----------------------------------------------------------------------
# Metadata
# ----------------------------------------------------------------------


@passthrough("image_get_fields", [])
def image_get_fields(handle: ImageHandle) -> List[str]:
    return _require(handle).get_fields()


@passthrough("image_remove", 0)
def image_remove(handle: ImageHandle, name: str) -> int:
    return int(_require(handle).remove(name))
