# === NAVMAP v1 ===
# {
#   "module": "DiskImport.HttpImport.errors",
#   "purpose": "Define the structured error taxonomy raised by the nbdkit HTTP import pipeline",
#   "sections": [
#     {"id": "kinds", "name": "ErrorKind", "anchor": "KND", "kind": "api"},
#     {"id": "base", "name": "Base Exception", "anchor": "BAS", "kind": "api"},
#     {"id": "source", "name": "Endpoint & Transport Errors", "anchor": "SRC", "kind": "api"},
#     {"id": "pipeline", "name": "Phase Errors", "anchor": "PHS", "kind": "api"},
#     {"id": "process", "name": "Process Execution Errors", "anchor": "PRC", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
"""Exception hierarchy shared by the HTTP import pipeline and its converters.

Every failure surfaced by a phase operation is an :class:`ImportPipelineError`
carrying an :class:`ErrorKind` and, when one exists, the underlying exception
as ``__cause__``.  Callers can match on the subclass, on ``exc.kind``, or walk
the cause chain to reach the original transport or subprocess error.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence

from .phases import ProcessingPhase

__all__ = [
    "ErrorKind",
    "ImportPipelineError",
    "InvalidEndpointError",
    "TransportError",
    "InvalidPathError",
    "UnsupportedContentTypeError",
    "ClassificationError",
    "ConversionError",
    "ResourceReleaseError",
    "PhaseOrderError",
    "ProcessExecutionError",
]


class ErrorKind(str, Enum):
    """Programmatic classification of pipeline failures."""

    INVALID_PATH = "InvalidPath"
    UNSUPPORTED_CONTENT_TYPE = "UnsupportedContentType"
    CLASSIFICATION_FAILED = "ClassificationFailed"
    CONVERSION_FAILED = "ConversionFailed"
    RESOURCE_RELEASE_FAILED = "ResourceReleaseFailed"
    INVALID_ENDPOINT = "InvalidEndpoint"
    TRANSPORT_FAILED = "TransportFailed"
    PHASE_ORDER = "PhaseOrder"


class ImportPipelineError(RuntimeError):
    """Base exception for every failure raised across the import pipeline.

    Attributes:
        kind: Taxonomy entry describing the failure.
        phase: Always :attr:`ProcessingPhase.ERROR`; the phase a driver should
            record when it receives this exception.
    """

    kind: ErrorKind = ErrorKind.CONVERSION_FAILED
    phase: ProcessingPhase = ProcessingPhase.ERROR

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> Optional[BaseException]:
        """Return the wrapped underlying exception, if any."""

        return self.__cause__


class InvalidEndpointError(ImportPipelineError):
    """Raised when an endpoint string cannot be parsed into scheme and host."""

    kind = ErrorKind.INVALID_ENDPOINT


class TransportError(ImportPipelineError):
    """Raised when the HTTP-backed reader cannot be opened."""

    kind = ErrorKind.TRANSPORT_FAILED

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.status_code = status_code


class InvalidPathError(ImportPipelineError):
    """Raised when the scratch directory reports no usable space."""

    kind = ErrorKind.INVALID_PATH


class UnsupportedContentTypeError(ImportPipelineError):
    """Raised when the declared content type cannot be handled by this source."""

    kind = ErrorKind.UNSUPPORTED_CONTENT_TYPE


class ClassificationError(ImportPipelineError):
    """Raised when the format reader stack cannot classify the stream."""

    kind = ErrorKind.CLASSIFICATION_FAILED


class ConversionError(ImportPipelineError):
    """Raised when the external converter exits non-zero or fails to launch."""

    kind = ErrorKind.CONVERSION_FAILED


class ResourceReleaseError(ImportPipelineError):
    """Raised by ``close()`` when releasing the format reader stack fails."""

    kind = ErrorKind.RESOURCE_RELEASE_FAILED


class PhaseOrderError(ImportPipelineError):
    """Raised when a conversion phase runs before initialization completed."""

    kind = ErrorKind.PHASE_ORDER


class ProcessExecutionError(RuntimeError):
    """Raised by :func:`~DiskImport.HttpImport.system.exec_with_limits`.

    Attributes:
        command: Argument vector that was executed.
        returncode: Exit status, or ``None`` when the process never started.
        output: Trailing lines of combined stdout/stderr output.
    """

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] = (),
        returncode: Optional[int] = None,
        output: Sequence[str] = (),
    ) -> None:
        super().__init__(message)
        self.command = tuple(command)
        self.returncode = returncode
        self.output = tuple(output)
