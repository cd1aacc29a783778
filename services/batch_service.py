"""
Batch Service - renders every configured profile of a set of images.

For each input image:
- Decode and auto-rotate
- Strip EXIF/IPTC/XMP metadata
- Transform and encode once per profile
- Write <output>/<input dir>/<name>.<ext>, skipping existing files unless
  rewriting
"""

import io
import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence

from core.constants import BatchConstants, EncoderConstants, ImageConstants
from core.errors import ImageError
from schemas import Config, ProfileConfig
from services.image_service import Image, decode
from services.transform_service import TransformConfig, TransformError, transform_image

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {
    f".{ext}"
    for ext in BatchConstants.JPEG_TYPES
    + BatchConstants.PNG_TYPES
    + BatchConstants.TIFF_TYPES
    + BatchConstants.WEBP_TYPES
}


@dataclass
class OutputFile:
    """Encoded profile output"""

    data: bytes
    ext: str


@dataclass
class ProcessResult:
    """Outcome of one image/profile pair"""

    input_path: str
    status: str  # "ok", "skipped" or "error"
    message: str = ""
    profile: Optional[str] = None
    output_path: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != "error"


def get_paths_to_process(paths: Sequence[str], recursive: bool) -> List[str]:
    """
    Expand directories into the files they contain.

    Args:
        paths: Files and directories given by the user
        recursive: Descend into subdirectories

    Returns:
        File paths, in the order found
    """
    result = []

    for path in paths:
        if not os.path.exists(path):
            raise FileNotFoundError(f"{path}: no such file or directory")

        if not os.path.isdir(path):
            result.append(path)
            continue

        if recursive:
            for root, dirs, files in os.walk(path):
                dirs.sort()
                result.extend(os.path.join(root, name) for name in sorted(files))
        else:
            for name in sorted(os.listdir(path)):
                full = os.path.join(path, name)
                if not os.path.isdir(full):
                    result.append(full)

    return result


def is_image(filename: str) -> bool:
    return os.path.splitext(os.path.basename(filename))[1].lower() in IMAGE_EXTENSIONS


def _clamp(value: int, default: int, low: int, high: int) -> int:
    if value == 0:
        value = default
    return min(max(value, low), high)


def process_profile(profile: ProfileConfig, image: Image) -> OutputFile:
    """
    Transform and encode an image for one profile.

    Args:
        profile: Profile with a concrete output type
        image: Prepared input image, left unchanged

    Returns:
        Encoded file contents and extension
    """
    file_type = profile.type.lower()
    if f".{file_type}" not in IMAGE_EXTENSIONS:
        raise TransformError(f"unsupported file type {file_type}, use jpg, png, webp or tiff")

    quality = _clamp(
        profile.quality,
        EncoderConstants.DEFAULT_QUALITY,
        EncoderConstants.BATCH_MIN_QUALITY,
        EncoderConstants.MAX_QUALITY,
    )
    compression = _clamp(
        profile.compression,
        EncoderConstants.DEFAULT_COMPRESSION,
        EncoderConstants.BATCH_MIN_COMPRESSION,
        EncoderConstants.MAX_COMPRESSION,
    )

    cfg = TransformConfig(
        width=profile.width,
        height=profile.height,
        input_profile=profile.input_profile,
        output_profile=profile.output_profile,
    )

    buf = io.BytesIO()
    with transform_image(image, cfg) as transformed:
        if file_type in BatchConstants.JPEG_TYPES:
            transformed.encode_jpeg(buf, quality)
        elif file_type in BatchConstants.PNG_TYPES:
            transformed.encode_png(buf, compression)
        elif file_type in BatchConstants.TIFF_TYPES:
            transformed.encode_tiff(buf)
        else:
            transformed.encode_webp(buf, quality, False)

    return OutputFile(data=buf.getvalue(), ext=file_type)


def strip_metadata(image: Image) -> None:
    """Remove EXIF, IPTC and XMP metadata and the orientation tag"""
    for name in image.properties():
        if name.startswith(BatchConstants.STRIPPED_FIELD_PREFIXES) or (
            name == ImageConstants.ORIENTATION_FIELD
        ):
            image.remove_property(name)


def output_directory(output: str, image_path: str) -> str:
    """Mirror the input directory under the output root"""
    input_dir = os.path.dirname(image_path).lstrip(os.sep)
    return os.path.normpath(os.path.join(output, input_dir))


class BatchProcessor:
    """Renders configured profiles for image files"""

    def __init__(self, config: Config):
        """
        Initialize Batch Processor

        Args:
            config: Output settings and profiles
        """
        self.config = config

    def _prepare(self, image_path: str) -> Image:
        with open(image_path, "rb") as f:
            img = decode(f)

        try:
            try:
                rotated = img.autorot()
            except ImageError as e:
                logger.debug(f"{image_path}: autorotate failed, using decoded image: {e}")
                rotated = img.copy()
            with rotated:
                prepared = rotated.copy()
        finally:
            img.destroy()

        strip_metadata(prepared)
        return prepared

    def process_image(self, image_path: str) -> List[ProcessResult]:
        """
        Render every profile of one image.

        Args:
            image_path: Path of the input image

        Returns:
            One result per profile, or a single error result when the image
            could not be read
        """
        try:
            prepared = self._prepare(image_path)
        except (OSError, ImageError) as e:
            logger.error(f"{image_path}: {e}")
            return [ProcessResult(image_path, "error", str(e))]

        basename = os.path.basename(image_path)
        name, ext = os.path.splitext(basename)

        results = []
        with prepared:
            for profile_name, profile in self.config.profiles.items():
                if not profile.type or profile.type == BatchConstants.SAME_TYPE:
                    profile = profile.model_copy(update={"type": ext.lstrip(".")})
                result = self._process_profile(image_path, name, profile_name, profile, prepared)
                results.append(result)

        return results

    def _process_profile(
        self,
        image_path: str,
        name: str,
        profile_name: str,
        profile: ProfileConfig,
        image: Image,
    ) -> ProcessResult:
        try:
            out = process_profile(profile, image)
        except (ImageError, TransformError) as e:
            message = f"error while processing profile {profile_name}: {e}"
            logger.error(f"{image_path}: {message}")
            return ProcessResult(image_path, "error", message, profile=profile_name)

        try:
            filename = self.config.format.format(name=name, profile=profile_name)
        except (KeyError, IndexError, ValueError) as e:
            message = f"error in format string for profile {profile_name}: {e!r}"
            logger.error(f"{image_path}: {message}")
            return ProcessResult(image_path, "error", message, profile=profile_name)

        output_dir = output_directory(self.config.output, image_path)
        if os.path.exists(output_dir) and not os.path.isdir(output_dir):
            message = "exists and not a directory, skipping"
            logger.error(f"{output_dir}: {message}")
            return ProcessResult(image_path, "error", message, profile=profile_name)

        output_path = os.path.join(output_dir, f"{filename}.{out.ext}")

        if os.path.exists(output_path) and not self.config.rewrite:
            logger.warning(f"{output_path}: already exists, skipping")
            return ProcessResult(
                image_path,
                "skipped",
                "already exists",
                profile=profile_name,
                output_path=output_path,
            )

        try:
            os.makedirs(output_dir, exist_ok=True)
            with open(output_path, "wb") as f:
                f.write(out.data)
        except OSError as e:
            logger.error(f"{output_path}: {e}")
            return ProcessResult(
                image_path, "error", str(e), profile=profile_name, output_path=output_path
            )

        logger.info(f"{output_path}: OK")
        return ProcessResult(image_path, "ok", "OK", profile=profile_name, output_path=output_path)
