"""Image decoding: raw upload bytes to an RGB pixel grid.

Handles format detection, size validation, EXIF orientation and color
space conversion. Only PNG and JPEG payloads are accepted.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from neuroscan.errors import DecodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from neuroscan.config import Settings

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS: frozenset[str] = frozenset({"PNG", "JPEG"})


@dataclass(frozen=True)
class ImageAsset:
    """A user submission: opaque bytes plus the declared MIME type."""

    data: bytes
    mime_type: str
    filename: str | None = None


class ImageDecoder:
    """Decodes PNG/JPEG bytes into HxWx3 RGB uint8 arrays."""

    def __init__(self, settings: Settings) -> None:
        self._max_file_size = settings.max_file_size
        self._max_image_pixels = settings.max_image_pixels
        self._accepted_mime_types = frozenset(m.lower() for m in settings.accepted_mime_types)

    def decode(self, asset: ImageAsset) -> NDArray[np.uint8]:
        """Decode an image asset into a pixel grid.

        Args:
            asset: The submitted image.

        Returns:
            HxWx3 RGB uint8 numpy array with positive width and height.

        Raises:
            DecodeError: If the payload is empty, too large, of an unsupported
                type, or cannot be decoded.
        """
        if not asset.data:
            raise DecodeError("Image file is empty")

        mime_type = asset.mime_type.split(";", 1)[0].strip().lower()
        if mime_type not in self._accepted_mime_types:
            raise DecodeError(f"Unsupported image type: {asset.mime_type or 'unknown'}")

        if len(asset.data) > self._max_file_size:
            raise DecodeError(f"Image file exceeds {self._max_file_size} bytes")

        try:
            with Image.open(io.BytesIO(asset.data)) as img:
                if img.format not in SUPPORTED_FORMATS:
                    raise DecodeError(f"Unsupported image format: {img.format}")
                if img.width * img.height > self._max_image_pixels:
                    raise DecodeError(
                        f"Image is {img.width}x{img.height}, exceeding {self._max_image_pixels} pixels"
                    )
                img.load()
                oriented = ImageOps.exif_transpose(img)
                pixels = np.array(oriented.convert("RGB"), dtype=np.uint8)
        except DecodeError:
            raise
        except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
            raise DecodeError("File is not a recognizable image") from exc
        except (OSError, SyntaxError, ValueError) as exc:
            raise DecodeError(f"Image data is corrupt: {exc}") from exc

        if pixels.ndim != 3 or pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise DecodeError("Decoded image has no pixels")

        logger.debug("Decoded %s (%dx%d)", asset.filename or "upload", pixels.shape[1], pixels.shape[0])
        return pixels
