"""Image format detection by leading-byte signature.

The declared Content-Type of a response is never trusted; these signatures
alone decide whether a payload is an image and which media type it carries.
"""

from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class ImageSignature:
    """Leading-byte signature of one image format.

    Attributes:
        media_type: MIME type reported for matching payloads.
        extension: Conventional file extension (no dot).
        min_length: Fewest bytes needed before ``matches`` can say yes.
        matches: Predicate over the payload's leading bytes.
    """

    media_type: str
    extension: str
    min_length: int
    matches: Callable[[bytes], bool]


def _is_webp(data: bytes) -> bool:
    return data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def _is_avif(data: bytes) -> bool:
    return data[4:8] == b"ftyp" and data[8:12] in (b"avif", b"avis")


IMAGE_SIGNATURES: tuple[ImageSignature, ...] = (
    ImageSignature("image/jpeg", "jpg", 3, lambda d: d[:3] == b"\xff\xd8\xff"),
    ImageSignature("image/png", "png", 8, lambda d: d[:8] == b"\x89PNG\r\n\x1a\n"),
    ImageSignature("image/gif", "gif", 6, lambda d: d[:6] in (b"GIF87a", b"GIF89a")),
    ImageSignature("image/webp", "webp", 12, _is_webp),
    ImageSignature("image/avif", "avif", 12, _is_avif),
    ImageSignature("image/bmp", "bmp", 14, lambda d: d[:2] == b"BM"),
)

_EXTENSIONS = {sig.media_type: sig.extension for sig in IMAGE_SIGNATURES}


def detect_image_type(data: bytes) -> Optional[str]:
    """Return the media type whose signature matches ``data``, or None."""
    for signature in IMAGE_SIGNATURES:
        if len(data) >= signature.min_length and signature.matches(data):
            return signature.media_type
    return None


def extension_for(media_type: str) -> str:
    return _EXTENSIONS.get(media_type, "bin")
