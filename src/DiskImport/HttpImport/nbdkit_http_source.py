# === NAVMAP v1 ===
# {
#   "module": "DiskImport.HttpImport.nbdkit_http_source",
#   "purpose": "Phase-driven HTTP data source converting remote images through nbdkit",
#   "sections": [
#     {
#       "id": "nbdkithttpdatasource",
#       "name": "NbdkitHttpDataSource",
#       "anchor": "class-nbdkithttpdatasource",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Phase-driven HTTP data source converting remote images through nbdkit.

An outer driver advances the source one phase at a time:

``info()``
    Classifies the head of the HTTP stream and returns
    :attr:`ProcessingPhase.TRANSFER_DATA_FILE`.
``transfer(scratch_path)`` / ``transfer_file(destination)``
    Runs nbdkit + qemu-img into scratch space or the final destination and
    returns :attr:`ProcessingPhase.RESIZE`.
``process()``
    Returns :attr:`ProcessingPhase.CONVERT`.
``close()``
    Releases the reader stack and cancels the owned token exactly once.

Failures are raised as :class:`~DiskImport.HttpImport.errors.ImportPipelineError`
subclasses whose ``phase`` is :attr:`ProcessingPhase.ERROR`.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import BinaryIO, Callable, Optional

import httpx

from .cancellation import CancelOnce
from .endpoint import parse_endpoint, redact_url, with_credentials
from .errors import (
    ClassificationError,
    ConversionError,
    ImportPipelineError,
    InvalidPathError,
    PhaseOrderError,
    ResourceReleaseError,
    UnsupportedContentTypeError,
)
from .filesystem import get_available_space
from .format_readers import FormatReaders, FormatReadersFactory, HeaderFormatReaders
from .http_reader import open_http_reader
from .nbdkit import ConversionOperations, NbdkitArgs, NbdkitFilter, NbdkitOperations
from .phases import DataVolumeContentType, ProcessingPhase
from .settings import ImporterSettings, get_settings

logger = logging.getLogger(__name__)

__all__ = ["NbdkitHttpDataSource", "SUPPORTED_CONTENT_TYPE"]

SUPPORTED_CONTENT_TYPE = DataVolumeContentType.KUBEVIRT

SpaceProbe = Callable[[str], int]


class NbdkitHttpDataSource:
    """Data source importing a disk image from an HTTP(S) endpoint via nbdkit.

    Args:
        endpoint: Parsed endpoint, with credentials already embedded if any.
        http_reader: Open stream over the endpoint body, used for classification.
        content_length: Length reported by the server; advisory only.
        content_type: Declared content type of the endpoint.
        cert_dir: Directory of custom trust material, or ``None``.
        cancel: Single-fire cancellation owned by this source; it must release
            ``http_reader`` when fired.
        operations: Converter used by the transfer phases.
        format_readers_factory: Builds the format reader stack during ``info()``.
        scratch_file_name: File name written inside the scratch directory.
        space_probe: Returns the usable bytes at a path, ``<= 0`` when unusable.
    """

    def __init__(
        self,
        *,
        endpoint: httpx.URL,
        http_reader: BinaryIO,
        content_length: int,
        content_type: DataVolumeContentType,
        cert_dir: Optional[str] = None,
        cancel: Optional[CancelOnce] = None,
        operations: Optional[ConversionOperations] = None,
        format_readers_factory: FormatReadersFactory = HeaderFormatReaders,
        scratch_file_name: str = "tmpimage",
        space_probe: SpaceProbe = get_available_space,
    ) -> None:
        self._endpoint = endpoint
        self._http_reader = http_reader
        self._content_length = content_length
        self._content_type = content_type
        self._cert_dir = cert_dir or None
        self._cancel = cancel or CancelOnce()
        self._operations: ConversionOperations = operations or NbdkitOperations()
        self._format_readers_factory = format_readers_factory
        self._scratch_file_name = scratch_file_name
        self._space_probe = space_probe

        self._readers: Optional[FormatReaders] = None
        self._url: Optional[httpx.URL] = None
        self._released = False
        self._close_lock = threading.Lock()

    @classmethod
    def from_endpoint(
        cls,
        endpoint: str,
        access_key: Optional[str],
        secret_key: Optional[str],
        cert_dir: Optional[str],
        content_type: DataVolumeContentType,
        *,
        client: Optional[httpx.Client] = None,
        operations: Optional[ConversionOperations] = None,
        settings: Optional[ImporterSettings] = None,
        format_readers_factory: FormatReadersFactory = HeaderFormatReaders,
    ) -> "NbdkitHttpDataSource":
        """Parse ``endpoint``, open the HTTP reader, and build the data source.

        Raises:
            InvalidEndpointError: If the endpoint cannot be parsed.
            TransportError: If the HTTP reader cannot be opened.
        """

        settings = settings or get_settings()
        url = parse_endpoint(endpoint)
        cancel = CancelOnce()
        try:
            http_reader, content_length = open_http_reader(
                url,
                access_key,
                secret_key,
                cert_dir,
                cancellation_token=cancel.token,
                client=client,
                connect_timeout=settings.connect_timeout_sec,
                read_timeout=settings.read_timeout_sec,
            )
        except ImportPipelineError:
            cancel.cancel()
            raise

        return cls(
            endpoint=with_credentials(url, access_key, secret_key),
            http_reader=http_reader,
            content_length=content_length,
            content_type=content_type,
            cert_dir=cert_dir,
            cancel=cancel,
            operations=operations or NbdkitOperations.from_settings(settings),
            format_readers_factory=format_readers_factory,
            scratch_file_name=settings.scratch_file_name,
        )

    @property
    def endpoint(self) -> httpx.URL:
        return self._endpoint

    @property
    def content_length(self) -> int:
        return self._content_length

    @property
    def custom_ca(self) -> bool:
        """True when custom trust material must be passed to the converter."""

        return self._cert_dir is not None

    @property
    def readers(self) -> Optional[FormatReaders]:
        return self._readers

    @property
    def cancel(self) -> CancelOnce:
        return self._cancel

    def info(self) -> ProcessingPhase:
        """Classify the stream and report where the data can be read from.

        Raises:
            UnsupportedContentTypeError: Before classification, when the declared
                content type is not a KubeVirt disk image.
            ClassificationError: When the format reader stack fails, or detects a
                compression no nbdkit filter can undo (for example zstd).
        """

        if self._content_type != SUPPORTED_CONTENT_TYPE:
            raise UnsupportedContentTypeError("This data source only supports kubevirt disk images")
        if self._readers is None:
            try:
                self._readers = self._format_readers_factory(self._http_reader, self._content_length)
            except Exception as exc:  # noqa: BLE001 - collaborator failures are wrapped
                logger.error(
                    "error creating readers",
                    extra={"stage": "info", "extra_fields": {"error": str(exc)}},
                )
                raise ClassificationError(
                    f"unable to classify image stream: {exc}", cause=exc
                ) from exc
        self._decompression_filter()
        if self._url is None:
            self._url = self._endpoint
        logger.info(
            "classified remote image",
            extra={
                "stage": "info",
                "extra_fields": {
                    "url": redact_url(self._endpoint),
                    "compression": self._readers.compression,
                    "content_length": self._content_length,
                },
            },
        )
        return ProcessingPhase.TRANSFER_DATA_FILE

    def transfer(self, path: str) -> ProcessingPhase:
        """Convert the image into the fixed temporary file inside scratch ``path``.

        Raises:
            InvalidPathError: When ``path`` reports no usable space; nothing is run.
            PhaseOrderError: When ``info()`` has not completed.
            ConversionError: When the converter fails.
        """

        size = self._space_probe(path)
        if size <= 0:
            raise InvalidPathError(f"scratch path {path!r} has no usable space")
        dest = os.path.join(path, self._scratch_file_name)
        self._convert(self._conversion_args(dest, "transfer"))
        return ProcessingPhase.RESIZE

    def transfer_file(self, file_name: str) -> ProcessingPhase:
        """Convert the image directly into ``file_name``.

        Available space is not verified: the destination may be a
        pre-provisioned block device.
        """

        self._convert(self._conversion_args(file_name, "transfer_file"))
        return ProcessingPhase.RESIZE

    def process(self) -> ProcessingPhase:
        return ProcessingPhase.CONVERT

    def get_url(self) -> Optional[httpx.URL]:
        """Return the URL the driver should read from, set once ``info()`` succeeds."""

        return self._url

    def close(self) -> None:
        """Release the reader stack and cancel the owned token.

        Safe to call repeatedly and from several threads; a release failure is
        raised once, after cancellation has happened.

        Raises:
            ResourceReleaseError: When closing the reader stack failed.
        """

        error: Optional[ResourceReleaseError] = None
        with self._close_lock:
            if not self._released:
                self._released = True
                resource = self._readers if self._readers is not None else self._http_reader
                try:
                    resource.close()
                except Exception as exc:  # noqa: BLE001 - surfaced as ResourceReleaseError
                    error = ResourceReleaseError(f"failed to close readers: {exc}", cause=exc)
        self._cancel.cancel()
        if error is not None:
            raise error

    def __enter__(self) -> "NbdkitHttpDataSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _decompression_filter(self) -> Optional[NbdkitFilter]:
        assert self._readers is not None
        if self._readers.xz:
            return NbdkitFilter.XZ
        if self._readers.gz:
            return NbdkitFilter.GZIP
        if self._readers.compression:
            raise ClassificationError(
                f"no nbdkit filter decompresses {self._readers.compression!r} images"
            )
        return None

    def _conversion_args(self, dest: str, operation: str) -> NbdkitArgs:
        if self._readers is None:
            raise PhaseOrderError(f"{operation}() called before info() completed")
        args = NbdkitArgs(source_url=self._endpoint, dest=dest)
        nbdkit_filter = self._decompression_filter()
        if nbdkit_filter is not None:
            args.add_filter(nbdkit_filter)
        if self.custom_ca:
            args.cert_dir = self._cert_dir
        return args

    def _convert(self, args: NbdkitArgs) -> None:
        try:
            self._operations.convert_and_write(args, cancellation_token=self._cancel.token)
        except ImportPipelineError:
            raise
        except Exception as exc:  # noqa: BLE001 - injected converters may raise anything
            raise ConversionError(f"conversion failed: {exc}", cause=exc) from exc
