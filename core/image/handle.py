"""
Image handles.

An ImageHandle owns a pixel array (height x width x bands), an
interpretation and an insertion-ordered metadata dictionary. Handles are
reference counted and copies share pixel storage until one side writes.
"""

import logging
from threading import RLock
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from core.constants import ErrorMessages, ImageConstants
from core.enums import BandFormat, Coding, Interpretation
from core.errors import ImageError

logger = logging.getLogger(__name__)

# Guards owner counts of storages shared between handles
_storage_lock = RLock()

_DTYPE_FORMATS = {
    np.dtype(np.uint8): BandFormat.UCHAR,
    np.dtype(np.int8): BandFormat.CHAR,
    np.dtype(np.uint16): BandFormat.USHORT,
    np.dtype(np.int16): BandFormat.SHORT,
    np.dtype(np.uint32): BandFormat.UINT,
    np.dtype(np.int32): BandFormat.INT,
    np.dtype(np.float32): BandFormat.FLOAT,
    np.dtype(np.float64): BandFormat.DOUBLE,
}


class _PixelStorage:
    """Pixel array plus the number of handles currently sharing it."""

    __slots__ = ("array", "owners")

    def __init__(self, array: np.ndarray):
        self.array = array
        self.owners = 1


class ImageHandle:
    """Opaque, reference-counted image."""

    def __init__(
        self,
        pixels: np.ndarray,
        interpretation: Interpretation,
        fields: Optional[Dict[str, Any]] = None,
        xres: float = ImageConstants.DEFAULT_RESOLUTION,
        yres: float = ImageConstants.DEFAULT_RESOLUTION,
        xoffset: int = 0,
        yoffset: int = 0,
        filename: str = "",
    ):
        if pixels.ndim == 2:
            pixels = pixels[:, :, np.newaxis]
        if pixels.ndim != 3:
            raise ImageError(f"pixel array must have 2 or 3 dimensions, got {pixels.ndim}")
        if pixels.dtype not in _DTYPE_FORMATS:
            raise ImageError(f"unsupported pixel type {pixels.dtype}")

        self._storage: Optional[_PixelStorage] = _PixelStorage(pixels)
        self._fields: Dict[str, Any] = dict(fields or {})
        self._refcount = 1
        self._lock = RLock()

        self.interpretation = Interpretation(interpretation)
        self.xres = float(xres)
        self.yres = float(yres)
        self.xoffset = int(xoffset)
        self.yoffset = int(yoffset)
        self.filename = filename

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def released(self) -> bool:
        return self._storage is None

    def ref(self) -> "ImageHandle":
        """Take an extra reference; returns self"""
        with self._lock:
            self._check()
            self._refcount += 1
            return self

    def unref(self) -> None:
        """Drop one reference, releasing the pixels when none remain"""
        with self._lock:
            if self._storage is None:
                return
            self._refcount -= 1
            if self._refcount > 0:
                return

            with _storage_lock:
                self._storage.owners -= 1
            self._storage = None
            self._fields = {}
            logger.debug(f"Released image handle {id(self):#x}")

    def _check(self) -> _PixelStorage:
        storage = self._storage
        if storage is None:
            raise ImageError(ErrorMessages.HANDLE_RELEASED)
        return storage

    # ------------------------------------------------------------------
    # Pixels
    # ------------------------------------------------------------------

    @property
    def pixels(self) -> np.ndarray:
        """Read-only view of the pixel array"""
        view = self._check().array.view()
        view.flags.writeable = False
        return view

    def writable_pixels(self) -> np.ndarray:
        """
        Get a writable pixel array private to this handle.

        If the storage is shared with copies, or wraps a read-only buffer,
        it is cloned first so writes never show through other handles.
        """
        with self._lock:
            storage = self._check()
            with _storage_lock:
                if storage.owners > 1:
                    storage.owners -= 1
                    storage = _PixelStorage(storage.array.copy())
                    self._storage = storage
                elif not storage.array.flags.writeable:
                    storage.array = storage.array.copy()
            return storage.array

    def put_pixel(self, x: int, y: int, value: Union[float, Sequence[float]]) -> None:
        """Write one pixel (all bands)"""
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise ImageError(f"pixel ({x}, {y}) is outside a {self.width}x{self.height} image")

        array = self.writable_pixels()
        array[y, x] = value

    def get_pixel(self, x: int, y: int) -> List[float]:
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise ImageError(f"pixel ({x}, {y}) is outside a {self.width}x{self.height} image")
        return self._check().array[y, x].tolist()

    def copy(self) -> "ImageHandle":
        """
        New handle sharing pixel storage with this one.

        Metadata is copied; pixel storage is cloned on the first write by
        either handle.
        """
        with self._lock:
            storage = self._check()
            twin = ImageHandle.__new__(ImageHandle)
            with _storage_lock:
                storage.owners += 1
            twin._storage = storage
            twin._fields = dict(self._fields)
            twin._refcount = 1
            twin._lock = RLock()
            twin.interpretation = self.interpretation
            twin.xres = self.xres
            twin.yres = self.yres
            twin.xoffset = self.xoffset
            twin.yoffset = self.yoffset
            twin.filename = self.filename
            return twin

    def derive(
        self,
        pixels: np.ndarray,
        interpretation: Optional[Interpretation] = None,
        fields: Optional[Dict[str, Any]] = None,
    ) -> "ImageHandle":
        """New handle with new pixels, inheriting header and metadata"""
        storage = self._check()
        # Views of this handle's storage would bypass copy-on-write
        if np.may_share_memory(pixels, storage.array):
            pixels = np.array(pixels, copy=True)
        return ImageHandle(
            pixels,
            interpretation if interpretation is not None else self.interpretation,
            fields=dict(self._fields) if fields is None else fields,
            xres=self.xres,
            yres=self.yres,
            xoffset=self.xoffset,
            yoffset=self.yoffset,
            filename=self.filename,
        )

    # ------------------------------------------------------------------
    # Header
    # ------------------------------------------------------------------

    @property
    def width(self) -> int:
        return int(self._check().array.shape[1])

    @property
    def height(self) -> int:
        return int(self._check().array.shape[0])

    @property
    def bands(self) -> int:
        return int(self._check().array.shape[2])

    @property
    def format(self) -> BandFormat:
        return _DTYPE_FORMATS[self._check().array.dtype]

    @property
    def coding(self) -> Coding:
        return Coding.NONE

    def _header(self, name: str) -> Any:
        return getattr(self, name)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_fields(self) -> List[str]:
        """Header field names followed by metadata names, in insertion order"""
        self._check()
        return list(ImageConstants.HEADER_FIELDS) + list(self._fields)

    def get_typeof(self, name: str) -> Optional[type]:
        """Type of the named field, or None when it is not set"""
        self._check()
        if name in ImageConstants.HEADER_FIELDS:
            return type(self._header(name))
        if name in self._fields:
            return type(self._fields[name])
        return None

    def get(self, name: str) -> Any:
        self._check()
        if name in ImageConstants.HEADER_FIELDS:
            return self._header(name)
        try:
            return self._fields[name]
        except KeyError:
            raise ImageError(f'field "{name}" not found', domain="image_get") from None

    def get_as_string(self, name: str) -> str:
        value = self.get(name)
        if isinstance(value, (bytes, bytearray)):
            return f"{len(value)} bytes of binary data"
        if isinstance(value, (Interpretation, BandFormat, Coding)):
            return value.name
        return str(value)

    def set(self, name: str, value: Any) -> None:
        self._check()
        if name in ImageConstants.HEADER_FIELDS:
            raise ImageError(f'field "{name}" is read only', domain="image_set")
        self._fields[name] = value

    def set_blob_copy(self, name: str, data: Union[bytes, bytearray, memoryview]) -> None:
        self.set(name, bytes(data))

    def remove(self, name: str) -> bool:
        """Delete a metadata field; True if it existed and was removed"""
        self._check()
        if name in self._fields:
            del self._fields[name]
            return True
        return False

    def __repr__(self) -> str:
        if self.released:
            return "<ImageHandle released>"
        return (
            f"<ImageHandle {self.width}x{self.height} {self.bands} bands "
            f"{self.format.name} {self.interpretation.name}>"
        )


class ProfileBlob:
    """Opaque, reference-counted ICC profile bytes."""

    def __init__(self, data: bytes, name: str = ""):
        self._data: Optional[bytes] = bytes(data)
        self._refcount = 1
        self.name = name

    @property
    def data(self) -> bytes:
        if self._data is None:
            raise ImageError("profile blob has been released")
        return self._data

    @property
    def length(self) -> int:
        return len(self.data)

    def ref(self) -> "ProfileBlob":
        if self._data is None:
            raise ImageError("profile blob has been released")
        self._refcount += 1
        return self

    def unref(self) -> None:
        if self._data is None:
            return
        self._refcount -= 1
        if self._refcount <= 0:
            self._data = None

    def __len__(self) -> int:
        return self.length
