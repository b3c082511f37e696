"""Outer driver advancing a data source through its phases.

The processor owns the phase loop: it calls exactly one data source operation
per phase, follows the phase the operation returns, and always closes the
source when the loop ends.  Size adjustment after conversion and the final
hand-off of the converted image are not part of the source; they are supplied
as callables so deployments can plug in their own resize and registration
steps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Protocol

import httpx

from .errors import ImportPipelineError
from .phases import ProcessingPhase

logger = logging.getLogger(__name__)

__all__ = ["DataSource", "DataProcessor", "ProcessingResult"]


class DataSource(Protocol):
    def info(self) -> ProcessingPhase: ...

    def transfer(self, path: str) -> ProcessingPhase: ...

    def transfer_file(self, file_name: str) -> ProcessingPhase: ...

    def process(self) -> ProcessingPhase: ...

    def get_url(self) -> Optional[httpx.URL]: ...

    def close(self) -> None: ...


ResizeStep = Callable[[str], None]
FinalizeStep = Callable[[Optional[httpx.URL], str], None]


@dataclass
class ProcessingResult:
    """Outcome of a processor run.

    Attributes:
        phases: Every phase visited, in order, ending with ``DONE`` or ``ERROR``.
        image_path: File the converted image was written to.
        error: The pipeline error when the run ended in ``ERROR``.
    """

    phases: List[ProcessingPhase] = field(default_factory=list)
    image_path: Optional[str] = None
    error: Optional[ImportPipelineError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and bool(self.phases) and self.phases[-1] is ProcessingPhase.DONE


def _no_resize(image_path: str) -> None:
    logger.debug("no resize step configured", extra={"stage": "resize"})


def _no_finalize(url: Optional[httpx.URL], image_path: str) -> None:
    logger.debug("no finalize step configured", extra={"stage": "convert"})


class DataProcessor:
    """Drive ``source`` from ``INFO`` to ``DONE``.

    Args:
        source: Data source to advance.
        data_file: Final destination; used by ``transfer_file``.
        scratch_dir: When set, the image is converted into scratch space with
            ``transfer`` instead of directly into ``data_file``.
        resize: Called with the converted image path in the ``RESIZE`` phase.
        finalize: Called with the source URL and image path in the ``CONVERT``
            phase, after ``process()``.
    """

    def __init__(
        self,
        source: DataSource,
        data_file: str,
        *,
        scratch_dir: Optional[str] = None,
        resize: ResizeStep = _no_resize,
        finalize: FinalizeStep = _no_finalize,
        scratch_file_name: str = "tmpimage",
    ) -> None:
        self._source = source
        self._data_file = data_file
        self._scratch_dir = scratch_dir
        self._resize = resize
        self._finalize = finalize
        self._scratch_file_name = scratch_file_name

    def process_data(self) -> ProcessingResult:
        """Run the phase loop and close the source.

        Pipeline failures are recorded on the result rather than raised; a
        release failure from ``close()`` is recorded only when the phases
        themselves succeeded.
        """

        result = ProcessingResult()
        phase = ProcessingPhase.INFO
        try:
            while phase is not ProcessingPhase.DONE:
                result.phases.append(phase)
                logger.debug("entering phase", extra={"stage": phase.value})
                phase = self._advance(phase, result)
            result.phases.append(ProcessingPhase.DONE)
        except ImportPipelineError as exc:
            logger.error(
                "import failed",
                extra={"stage": "error", "extra_fields": {"kind": exc.kind.value, "error": str(exc)}},
            )
            result.phases.append(exc.phase)
            result.error = exc
        finally:
            try:
                self._source.close()
            except ImportPipelineError as exc:
                logger.warning(
                    "failed to release data source",
                    extra={"stage": "close", "extra_fields": {"error": str(exc)}},
                )
                if result.error is None:
                    result.phases.append(exc.phase)
                    result.error = exc
        return result

    def _advance(self, phase: ProcessingPhase, result: ProcessingResult) -> ProcessingPhase:
        if phase is ProcessingPhase.INFO:
            return self._source.info()
        if phase is ProcessingPhase.TRANSFER_DATA_FILE:
            if self._scratch_dir:
                result.image_path = str(Path(self._scratch_dir) / self._scratch_file_name)
                return self._source.transfer(self._scratch_dir)
            result.image_path = self._data_file
            return self._source.transfer_file(self._data_file)
        if phase is ProcessingPhase.RESIZE:
            self._resize(result.image_path or self._data_file)
            return self._source.process()
        if phase is ProcessingPhase.CONVERT:
            self._finalize(self._source.get_url(), result.image_path or self._data_file)
            return ProcessingPhase.DONE
        raise ValueError(f"unexpected phase {phase!r}")
