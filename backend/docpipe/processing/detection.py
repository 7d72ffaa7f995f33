"""
Content-type detection by magic number.

The declared content type comes from the uploader and is only a hint. The
leading bytes are authoritative; a mismatch is logged and the sniffed type
wins. When the sniff is inconclusive, the declared type is used.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class FileType(str, Enum):
    PDF         = "application/pdf"
    PNG         = "image/png"
    JPEG        = "image/jpeg"
    BMP         = "image/bmp"
    TIFF        = "image/tiff"
    UNSUPPORTED = "application/octet-stream"

    @property
    def is_image(self) -> bool:
        return self in (FileType.PNG, FileType.JPEG, FileType.BMP, FileType.TIFF)

    @property
    def is_supported(self) -> bool:
        return self is not FileType.UNSUPPORTED

    @classmethod
    def from_content_type(cls, content_type: str | None) -> "FileType":
        if not content_type:
            return cls.UNSUPPORTED
        ct = content_type.split(";", 1)[0].strip().lower()
        return _CONTENT_TYPE_ALIASES.get(ct, cls.UNSUPPORTED)


_CONTENT_TYPE_ALIASES: dict[str, FileType] = {
    "application/pdf": FileType.PDF,
    "image/png":       FileType.PNG,
    "image/jpeg":      FileType.JPEG,
    "image/jpg":       FileType.JPEG,
    "image/pjpeg":     FileType.JPEG,
    "image/bmp":       FileType.BMP,
    "image/x-ms-bmp":  FileType.BMP,
    "image/tiff":      FileType.TIFF,
    "image/tif":       FileType.TIFF,
}

SUPPORTED_TYPES_LABEL = "PDF, PNG, JPEG, BMP, TIFF"

# (signature, type), checked in order
_SIGNATURES: tuple[tuple[bytes, FileType], ...] = (
    (b"%PDF",                               FileType.PDF),
    (b"\x89PNG\r\n\x1a\n",                  FileType.PNG),
    (b"\xff\xd8\xff",                       FileType.JPEG),
    (b"II*\x00",                            FileType.TIFF),   # little-endian
    (b"MM\x00*",                            FileType.TIFF),   # big-endian
    (b"BM",                                 FileType.BMP),
)


def detect_file_type(data: bytes) -> FileType:
    """Sniff the leading bytes. Anything shorter than 4 bytes is UNSUPPORTED."""
    if not data or len(data) < 4:
        return FileType.UNSUPPORTED
    for signature, file_type in _SIGNATURES:
        if data.startswith(signature):
            return file_type
    return FileType.UNSUPPORTED


def resolve_file_type(data: bytes, declared_content_type: str | None, document_id: object = None) -> FileType:
    detected = detect_file_type(data)
    declared = FileType.from_content_type(declared_content_type)

    if detected is FileType.UNSUPPORTED:
        if declared.is_supported:
            logger.warning(
                "Magic-number sniff inconclusive, using declared type | doc=%s declared=%s",
                document_id, declared_content_type,
            )
        return declared

    if declared is not detected:
        logger.warning(
            "Content type mismatch, using detected type | doc=%s declared=%s detected=%s",
            document_id, declared_content_type, detected.value,
        )
    return detected
