# === NAVMAP v1 ===
# {
#   "module": "DiskImport.HttpImport.nbdkit",
#   "purpose": "Build nbdkit command lines and run the qemu-img conversion through them",
#   "sections": [
#     {"id": "types", "name": "Filter & Plugin Names", "anchor": "TYP", "kind": "api"},
#     {"id": "args", "name": "NbdkitArgs", "anchor": "ARG", "kind": "api"},
#     {"id": "builder", "name": "build_nbdkit_args", "anchor": "BLD", "kind": "api"},
#     {"id": "operations", "name": "NbdkitOperations", "anchor": "OPS", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
"""Convert remote images to raw through an nbdkit-exported block device.

nbdkit serves the remote URL through its read-only curl plugin, optionally
layered with decompression filters, and ``--run`` starts ``qemu-img convert``
against the exported ``$nbd`` device, writing a raw image to the destination.
The command has the shape::

    nbdkit -U - -r curl --verbose [cainfo=<certDir>/tls.crt] <url> \\
        [--filter=<name>]... --run "<qemu-img> convert -p $nbd -t none -O raw <dest>"
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Protocol

import httpx
from prometheus_client import REGISTRY, CollectorRegistry

from .cancellation import CancellationToken
from .endpoint import redact_url, with_credentials
from .errors import ConversionError
from .filesystem import is_regular_file_or_missing
from .metrics import NullProgress, PrometheusProgress, ProgressReporter
from .settings import ImporterSettings
from .system import ProcessLimits, exec_with_limits

logger = logging.getLogger(__name__)

__all__ = [
    "CA_FILE_NAME",
    "NbdkitFilter",
    "NbdkitPlugin",
    "NbdkitArgs",
    "ConversionOperations",
    "NbdkitOperations",
    "build_nbdkit_args",
]

CA_FILE_NAME = "tls.crt"
DEFAULT_QEMU_IMG = "/usr/bin/qemu-img"


class NbdkitFilter(str, Enum):
    """nbdkit filters composed in front of the source plugin."""

    XZ = "xz"
    GZIP = "gzip"


class NbdkitPlugin(str, Enum):
    """nbdkit source plugins."""

    CURL = "curl"


@dataclass
class NbdkitArgs:
    """Conversion request handed to :class:`NbdkitOperations`.

    Attributes:
        source_url: Remote image location, possibly carrying userinfo.
        dest: Destination file or block device; never empty.
        filters: Filters in pipeline order.
        plugins: Source plugin; only the first entry is used, ``curl`` by default.
        cert_dir: Directory holding ``tls.crt`` when custom trust is needed.
        access_key: Username injected into ``source_url`` if it has none.
        secret_key: Password injected together with ``access_key``.
    """

    source_url: httpx.URL
    dest: str
    filters: List[NbdkitFilter] = field(default_factory=list)
    plugins: List[NbdkitPlugin] = field(default_factory=list)
    cert_dir: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.dest:
            raise ValueError("conversion destination must not be empty")
        self.plugins = [NbdkitPlugin(plugin) for plugin in self.plugins]
        self.filters = [NbdkitFilter(nbdkit_filter) for nbdkit_filter in self.filters]

    def add_filter(self, nbdkit_filter: NbdkitFilter) -> "NbdkitArgs":
        self.filters.append(NbdkitFilter(nbdkit_filter))
        return self

    @property
    def effective_url(self) -> httpx.URL:
        if self.source_url.userinfo:
            return self.source_url
        return with_credentials(self.source_url, self.access_key, self.secret_key)


def _append_curl_args(command_args: List[str], args: NbdkitArgs) -> None:
    plugin = args.plugins[0] if args.plugins else NbdkitPlugin.CURL
    # Read-only: the exported device is never written.
    command_args.extend(["-r", NbdkitPlugin(plugin).value, "--verbose"])
    if args.cert_dir:
        command_args.append(f"cainfo={args.cert_dir}/{CA_FILE_NAME}")
    command_args.append(str(args.effective_url))


def _append_run_args(command_args: List[str], args: NbdkitArgs, qemu_img: str) -> None:
    command_args.append("--run")
    command_args.append(f"{qemu_img} convert -p $nbd -t none -O raw {shlex.quote(args.dest)}")


def build_nbdkit_args(args: NbdkitArgs, qemu_img: str = DEFAULT_QEMU_IMG) -> List[str]:
    """Return the nbdkit argument vector for ``args``.

    Examples:
        >>> build_nbdkit_args(NbdkitArgs(httpx.URL("https://example.com/d.img"), "/data/disk.img"))
        ['-U', '-', '-r', 'curl', '--verbose', 'https://example.com/d.img', '--run', '/usr/bin/qemu-img convert -p $nbd -t none -O raw /data/disk.img']
    """

    command_args: List[str] = ["-U", "-"]
    _append_curl_args(command_args, args)
    for nbdkit_filter in args.filters:
        command_args.append(f"--filter={NbdkitFilter(nbdkit_filter).value}")
    _append_run_args(command_args, args, qemu_img)
    return command_args


class ConversionOperations(Protocol):
    """Operations the import pipeline needs from the converter."""

    def convert_and_write(
        self, args: NbdkitArgs, *, cancellation_token: Optional[CancellationToken] = None
    ) -> None: ...


ExecFunction = Callable[..., str]


class NbdkitOperations:
    """Run nbdkit + qemu-img once per call and clean up after failures.

    Args:
        nbdkit_binary: Path to the nbdkit executable.
        qemu_img_binary: Path to qemu-img, embedded in the ``--run`` command.
        limits: Resource caps for the nbdkit process tree.
        progress: Sink receiving every converter output line.
        exec_function: Process runner with the signature of
            :func:`~DiskImport.HttpImport.system.exec_with_limits`.
    """

    def __init__(
        self,
        *,
        nbdkit_binary: str = "/usr/sbin/nbdkit",
        qemu_img_binary: str = DEFAULT_QEMU_IMG,
        limits: Optional[ProcessLimits] = None,
        progress: Optional[ProgressReporter] = None,
        exec_function: ExecFunction = exec_with_limits,
    ) -> None:
        self._nbdkit_binary = nbdkit_binary
        self._qemu_img_binary = qemu_img_binary
        self._limits = limits
        self._progress: ProgressReporter = progress or NullProgress()
        self._exec = exec_function

    @classmethod
    def from_settings(
        cls,
        settings: ImporterSettings,
        *,
        registry: CollectorRegistry = REGISTRY,
        exec_function: ExecFunction = exec_with_limits,
    ) -> "NbdkitOperations":
        return cls(
            nbdkit_binary=settings.nbdkit_binary,
            qemu_img_binary=settings.qemu_img_binary,
            limits=settings.process_limits(),
            progress=PrometheusProgress(settings.owner_uid, registry=registry),
            exec_function=exec_function,
        )

    def convert_and_write(
        self, args: NbdkitArgs, *, cancellation_token: Optional[CancellationToken] = None
    ) -> None:
        """Stream ``args.source_url`` through nbdkit and write a raw image to ``args.dest``.

        Raises:
            ConversionError: If nbdkit fails to launch, exits non-zero, or the run
                is aborted by the progress sink; the destination has been removed
                (regular files only) beforehand.
        """

        command_args = build_nbdkit_args(args, self._qemu_img_binary)
        logger.info(
            "converting image to raw",
            extra={
                "stage": "convert",
                "extra_fields": {
                    "source": redact_url(args.effective_url),
                    "dest": args.dest,
                    "filters": [f.value for f in args.filters],
                },
            },
        )
        try:
            self._exec(
                self._limits,
                self._progress.report,
                self._nbdkit_binary,
                *command_args,
                cancellation_token=cancellation_token,
            )
        except Exception as exc:  # noqa: BLE001 - any failure leaves a partial destination
            _remove_destination(args.dest)
            raise ConversionError("could not stream/convert image to raw", cause=exc) from exc


def _remove_destination(dest: str) -> None:
    try:
        if not is_regular_file_or_missing(dest):
            logger.warning(
                "conversion failed; leaving non-regular destination in place",
                extra={"stage": "convert", "extra_fields": {"dest": dest}},
            )
            return
        Path(dest).unlink(missing_ok=True)
    except OSError:
        logger.debug("failed to remove destination %s", dest, exc_info=True)
