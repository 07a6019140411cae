"""Loading reference images for the Scout and Architect stages."""

from __future__ import annotations

import base64
import binascii
import mimetypes
import re
from pathlib import Path

from .models import ImageRef

SUPPORTED_MIME_TYPES = frozenset({
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/heic",
    "image/heif",
    "image/gif",
})

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)


class ImageLoadError(ValueError):
    """Raised when an image cannot be turned into an ImageRef."""

    pass


def _check_mime_type(mime_type: str, source: str) -> None:
    if mime_type not in SUPPORTED_MIME_TYPES:
        raise ImageLoadError(f"Unsupported image type '{mime_type}' for {source}")


def load_image(path: Path) -> ImageRef:
    """Read an image file and encode it as base64.

    Raises:
        ImageLoadError: If the file is missing or not a supported image type.
    """
    path = Path(path)
    if not path.is_file():
        raise ImageLoadError(f"Image file does not exist: {path}")

    mime_type, _ = mimetypes.guess_type(path.name)
    _check_mime_type(mime_type or "application/octet-stream", str(path))

    data = base64.b64encode(path.read_bytes()).decode("ascii")
    return ImageRef(data=data, mime_type=mime_type)


def image_from_data_url(data_url: str) -> ImageRef:
    """Split a ``data:<mime>;base64,<payload>`` URL into an ImageRef."""
    match = _DATA_URL_RE.match(data_url.strip())
    if not match:
        raise ImageLoadError("Expected a base64 data URL (data:<mime>;base64,<payload>)")
    return image_from_base64(match.group("data"), match.group("mime"))


def image_from_base64(data: str, mime_type: str) -> ImageRef:
    """Validate a base64 payload and wrap it in an ImageRef."""
    _check_mime_type(mime_type, "uploaded image")
    try:
        base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageLoadError("Image data is not valid base64") from exc
    return ImageRef(data=data, mime_type=mime_type)
