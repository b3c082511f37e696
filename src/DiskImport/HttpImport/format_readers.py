"""Format reader stack used to classify the head of a remote image stream.

The import pipeline consults the stack once, during ``info()``, and only needs
to know which compression wrapper (if any) the image uses so the matching
nbdkit filter can be layered in.  :class:`FormatReaders` is the contract the
pipeline depends on; :class:`HeaderFormatReaders` is the default
implementation, which peeks at the leading bytes without consuming them.
"""

from __future__ import annotations

import io
import logging
from typing import BinaryIO, Callable, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

__all__ = [
    "FormatReaders",
    "FormatReadersFactory",
    "HeaderFormatReaders",
    "COMPRESSION_GZIP",
    "COMPRESSION_XZ",
    "COMPRESSION_ZSTD",
]

COMPRESSION_GZIP = "gz"
COMPRESSION_XZ = "xz"
COMPRESSION_ZSTD = "zst"

HEADER_SIZE = 512

_COMPRESSION_MAGIC: Tuple[Tuple[str, int, bytes], ...] = (
    (COMPRESSION_GZIP, 0, b"\x1f\x8b"),
    (COMPRESSION_XZ, 0, b"\xfd7zXZ\x00"),
    (COMPRESSION_ZSTD, 0, b"\x28\xb5\x2f\xfd"),
)
_IMAGE_MAGIC: Tuple[Tuple[str, int, bytes], ...] = (
    ("qcow2", 0, b"QFI\xfb"),
    ("vmdk", 0, b"KDMV"),
    ("vhdx", 0, b"vhdxfile"),
    ("tar", 257, b"ustar"),
)


class FormatReaders(Protocol):
    """Classification result of the reader stack plus the resource it holds."""

    @property
    def compression(self) -> Optional[str]: ...

    @property
    def image_format(self) -> Optional[str]: ...

    @property
    def xz(self) -> bool: ...

    @property
    def gz(self) -> bool: ...

    def close(self) -> None: ...


FormatReadersFactory = Callable[[BinaryIO, int], FormatReaders]


def _match(header: bytes, table: Tuple[Tuple[str, int, bytes], ...]) -> Optional[str]:
    for name, offset, magic in table:
        if header[offset : offset + len(magic)] == magic:
            return name
    return None


class HeaderFormatReaders:
    """Classify a stream by magic numbers in its first :data:`HEADER_SIZE` bytes.

    Args:
        stream: Readable binary stream positioned at the start of the image.
        content_length: Advisory length reported by the server; when positive
            and smaller than the header size it bounds the peek.

    Raises:
        ValueError: If the stream yields no bytes at all.
        OSError: Propagated from the underlying stream.
    """

    def __init__(self, stream: BinaryIO, content_length: int = 0) -> None:
        if isinstance(stream, io.BufferedReader):
            self._reader = stream
        else:
            self._reader = io.BufferedReader(stream, buffer_size=HEADER_SIZE)  # type: ignore[arg-type]
        limit = HEADER_SIZE
        if 0 < content_length < HEADER_SIZE:
            limit = content_length
        header = self._reader.peek(limit)[:limit]
        if not header:
            raise ValueError("unable to read image header: stream is empty")
        self._compression = _match(header, _COMPRESSION_MAGIC)
        self._image_format = None if self._compression else _match(header, _IMAGE_MAGIC)
        logger.debug(
            "classified image header",
            extra={
                "stage": "info",
                "extra_fields": {
                    "compression": self._compression,
                    "image_format": self._image_format,
                },
            },
        )

    @property
    def top_reader(self) -> io.BufferedReader:
        """Reader positioned at the start of the stream, header unconsumed."""

        return self._reader

    @property
    def compression(self) -> Optional[str]:
        return self._compression

    @property
    def image_format(self) -> Optional[str]:
        return self._image_format

    @property
    def xz(self) -> bool:
        return self._compression == COMPRESSION_XZ

    @property
    def gz(self) -> bool:
        return self._compression == COMPRESSION_GZIP

    @property
    def archived(self) -> bool:
        return self._image_format == "tar"

    def close(self) -> None:
        self._reader.close()
