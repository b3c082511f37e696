"""Test doubles shared across the http_import suite."""

from __future__ import annotations

from typing import List, Optional

from DiskImport.HttpImport.cancellation import CancellationToken
from DiskImport.HttpImport.nbdkit import NbdkitArgs

QCOW2_HEADER = b"QFI\xfb" + b"\x00" * 196
XZ_HEADER = b"\xfd7zXZ\x00" + b"\x00" * 194
GZIP_HEADER = b"\x1f\x8b\x08\x00" + b"\x00" * 196


class RecordingOperations:
    """Converter double recording every request it receives."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.calls: List[NbdkitArgs] = []
        self.tokens: List[Optional[CancellationToken]] = []
        self.error = error

    def convert_and_write(
        self, args: NbdkitArgs, *, cancellation_token: Optional[CancellationToken] = None
    ) -> None:
        self.calls.append(args)
        self.tokens.append(cancellation_token)
        if self.error is not None:
            raise self.error


class StubReaders:
    """Format reader stack double with a configurable close failure."""

    def __init__(
        self,
        compression: Optional[str] = None,
        image_format: Optional[str] = "qcow2",
        close_error: Optional[Exception] = None,
    ) -> None:
        self.compression = compression
        self.image_format = image_format
        self.close_error = close_error
        self.close_calls = 0

    @property
    def xz(self) -> bool:
        return self.compression == "xz"

    @property
    def gz(self) -> bool:
        return self.compression == "gz"

    def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error
