# === NAVMAP v1 ===
# {
#   "module": "DiskImport.HttpImport.metrics",
#   "purpose": "Progress metric sinks fed by converter output",
#   "sections": [
#     {
#       "id": "parse-progress",
#       "name": "parse_progress",
#       "anchor": "function-parse-progress",
#       "kind": "function"
#     },
#     {
#       "id": "progressreporter",
#       "name": "ProgressReporter",
#       "anchor": "class-progressreporter",
#       "kind": "class"
#     },
#     {
#       "id": "prometheusprogress",
#       "name": "PrometheusProgress",
#       "anchor": "class-prometheusprogress",
#       "kind": "class"
#     },
#     {
#       "id": "start-metrics-server",
#       "name": "start_metrics_server",
#       "anchor": "function-start-metrics-server",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Progress metric sinks fed by converter output.

``qemu-img convert -p`` prints its completion as ``(NN.NN/100%)``.  Each line
of converter output is handed to a :class:`ProgressReporter`; the Prometheus
implementation turns increases in that percentage into increments of the
``import_progress`` counter, labelled with the owner identifier, so the counter
value tracks the percentage complete.
"""

import logging
import re
import threading
from typing import Optional, Protocol

from prometheus_client import REGISTRY, CollectorRegistry, Counter, start_http_server

logger = logging.getLogger(__name__)

__all__ = [
    "PROGRESS_METRIC_NAME",
    "ProgressReporter",
    "NullProgress",
    "PrometheusProgress",
    "parse_progress",
    "start_metrics_server",
]

PROGRESS_METRIC_NAME = "import_progress"
_PROGRESS_PATTERN = re.compile(r"\((\d?\d(?:\.\d\d)?|100(?:\.00)?)/100%\)")


def parse_progress(line: str) -> Optional[float]:
    """Return the percentage reported on ``line``, or ``None`` when absent.

    Examples:
        >>> parse_progress("    (45.34/100%)")
        45.34
        >>> parse_progress("nbdkit: curl: debug") is None
        True
    """

    match = _PROGRESS_PATTERN.search(line)
    if match is None:
        return None
    return float(match.group(1))


class ProgressReporter(Protocol):
    """Sink receiving every output line emitted by the converter."""

    def report(self, line: str) -> None: ...


class NullProgress:
    """Reporter that discards progress."""

    def report(self, line: str) -> None:
        return None


class PrometheusProgress:
    """Reporter advancing a Prometheus counter to the converter's percentage."""

    def __init__(self, owner_uid: str, registry: CollectorRegistry = REGISTRY) -> None:
        self._owner_uid = owner_uid
        self._counter = _register_progress_counter(registry)
        self._current = 0.0
        self._lock = threading.Lock()

    @property
    def counter(self) -> Counter:
        return self._counter

    @property
    def current(self) -> float:
        return self._current

    def report(self, line: str) -> None:
        value = parse_progress(line)
        if value is None or not self._owner_uid:
            return
        with self._lock:
            if value <= self._current:
                return
            delta = value - self._current
            self._current = value
        self._counter.labels(self._owner_uid).inc(delta)
        logger.debug("import progress", extra={"stage": "convert", "progress": value})


def _register_progress_counter(registry: CollectorRegistry) -> Counter:
    """Create the progress counter in ``registry`` or reuse the registered one."""

    try:
        return Counter(
            PROGRESS_METRIC_NAME,
            "The import progress in percentage",
            ["ownerUID"],
            registry=registry,
        )
    except ValueError:
        # A counter for that metric has been registered before; use it from now on.
        existing = registry._names_to_collectors.get(PROGRESS_METRIC_NAME)  # noqa: SLF001
        if not isinstance(existing, Counter):
            raise
        return existing


def start_metrics_server(port: int, host: str = "0.0.0.0") -> bool:
    """Expose the default registry on ``http://host:port/metrics``.

    Returns:
        True if the server started, False when the port could not be bound.
    """

    try:
        start_http_server(port, addr=host, registry=REGISTRY)
    except OSError as exc:
        logger.error(f"Failed to start metrics server: {exc}")
        return False
    logger.info(f"Prometheus metrics server started on http://{host}:{port}/metrics")
    return True
