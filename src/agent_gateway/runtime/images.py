"""Validation of image attachments sent as ``data:`` URIs.

Each attachment must be a base64 data URI of a supported image type whose
payload actually decodes as that image. Validation runs before a
conversation is created, so a bad attachment never opens a stream.
"""

from __future__ import annotations

import base64
import binascii
import io
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from PIL import Image, UnidentifiedImageError

from agent_gateway.exceptions import ClientInputError

MAX_IMAGE_COUNT = 5
MAX_IMAGE_BYTES = 5 * 1024 * 1024

# MIME type -> Pillow format name
SUPPORTED_IMAGE_TYPES = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/gif": "GIF",
    "image/webp": "WEBP",
}

_DATA_URI_RE = re.compile(
    r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?P<params>(?:;[\w.+-]+=[\w.+-]+)*);base64,(?P<data>.*)$",
    re.DOTALL,
)


@dataclass(frozen=True)
class ImageAttachment:
    """A validated image attachment, ready to hand to the runtime."""
    mime_type: str
    data: bytes
    data_uri: str

    @property
    def size(self) -> int:
        return len(self.data)


def _decode_one(index: int, uri: str) -> ImageAttachment:
    label = f"attachment {index + 1}"
    if not isinstance(uri, str):
        raise ValueError(f"{label} is not a string")

    match = _DATA_URI_RE.match(uri.strip())
    if not match:
        raise ValueError(f"{label} is not a base64 data URI")

    mime = match.group("mime").lower()
    expected_format = SUPPORTED_IMAGE_TYPES.get(mime)
    if expected_format is None:
        raise ValueError(f"{label} has unsupported type '{mime}'")

    encoded = match.group("data")
    if len(encoded) > 4 * math.ceil(MAX_IMAGE_BYTES / 3):
        raise ValueError(f"{label} exceeds the size limit of {MAX_IMAGE_BYTES} bytes")

    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError(f"{label} has invalid base64 data")

    if not raw:
        raise ValueError(f"{label} is empty")
    if len(raw) > MAX_IMAGE_BYTES:
        raise ValueError(f"{label} exceeds the size limit of {MAX_IMAGE_BYTES} bytes")

    try:
        with Image.open(io.BytesIO(raw)) as img:
            actual_format = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ValueError(f"{label} is not a readable image")

    if actual_format != expected_format:
        raise ValueError(
            f"{label} is declared as '{mime}' but contains {actual_format} data"
        )

    canonical_mime = "image/jpeg" if mime == "image/jpg" else mime
    return ImageAttachment(mime_type=canonical_mime, data=raw, data_uri=uri.strip())


def validate_image_attachments(
    image_data_uris: Optional[Sequence[str]],
) -> List[ImageAttachment]:
    """Validate all attachments, raising ``ClientInputError`` on the first problem."""
    if not image_data_uris:
        return []

    if len(image_data_uris) > MAX_IMAGE_COUNT:
        raise ClientInputError(
            f"Invalid image attachments: at most {MAX_IMAGE_COUNT} images are allowed, "
            f"got {len(image_data_uris)}",
            details={"count": len(image_data_uris)},
        )

    attachments = []
    for index, uri in enumerate(image_data_uris):
        try:
            attachments.append(_decode_one(index, uri))
        except ValueError as e:
            raise ClientInputError(
                f"Invalid image attachments: {e}",
                details={"index": index},
            ) from e
    return attachments
