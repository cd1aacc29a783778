"""
Image engine - modular architecture.

This package provides the operations behind the flat function surface:
- handle: Reference-counted image handles and profile blobs
- converters: Decoding, metadata extraction and buffer encoders
- processors: Geometry (resize, auto-rotation)
- color: ICC import/export and profile loading
"""

from core.image.handle import ImageHandle, ProfileBlob

__all__ = ["ImageHandle", "ProfileBlob"]
