"""Public API for the DiskImport nbdkit HTTP import pipeline.

This facade exposes the phase-driven data source, its outer driver, the nbdkit
conversion helpers, and the error taxonomy shared by all of them.
"""

from __future__ import annotations

from .cancellation import CancellationToken, CancelOnce
from .errors import (
    ClassificationError,
    ConversionError,
    ErrorKind,
    ImportPipelineError,
    InvalidEndpointError,
    InvalidPathError,
    PhaseOrderError,
    ProcessExecutionError,
    ResourceReleaseError,
    TransportError,
    UnsupportedContentTypeError,
)
from .nbdkit import NbdkitArgs, NbdkitFilter, NbdkitOperations, NbdkitPlugin, build_nbdkit_args
from .nbdkit_http_source import NbdkitHttpDataSource
from .phases import DataVolumeContentType, ProcessingPhase
from .processor import DataProcessor, ProcessingResult

__version__ = "0.1.0"

__all__ = [
    "CancelOnce",
    "CancellationToken",
    "ClassificationError",
    "ConversionError",
    "DataProcessor",
    "DataVolumeContentType",
    "ErrorKind",
    "ImportPipelineError",
    "InvalidEndpointError",
    "InvalidPathError",
    "NbdkitArgs",
    "NbdkitFilter",
    "NbdkitHttpDataSource",
    "NbdkitOperations",
    "NbdkitPlugin",
    "PhaseOrderError",
    "ProcessExecutionError",
    "ProcessingPhase",
    "ProcessingResult",
    "ResourceReleaseError",
    "TransportError",
    "UnsupportedContentTypeError",
    "__version__",
    "build_nbdkit_args",
]
