"""Run external converters under resource limits while streaming their output.

:func:`exec_with_limits` is the single place the importer starts a process.
CPU and address-space limits are applied in the child before ``exec`` via
:mod:`resource`.  The child leads its own session, so the wall-clock limit and
cancellation kill its whole process group from the parent, including the
``qemu-img`` started by ``nbdkit --run``.  Output from stdout and stderr is
merged and split on both ``\\r`` and ``\\n`` because progress-reporting tools
such as ``qemu-img convert -p`` redraw a single line with carriage returns.
"""

from __future__ import annotations

import logging
import os
import resource
import signal
import subprocess
import threading
from collections import deque
from dataclasses import dataclass
from typing import IO, Callable, Deque, Iterator, List, Optional

from .cancellation import CancellationToken
from .errors import ProcessExecutionError

logger = logging.getLogger(__name__)

__all__ = ["ProcessLimits", "ProgressCallback", "exec_with_limits"]

ProgressCallback = Callable[[str], None]

_OUTPUT_TAIL_LINES = 20
_READ_CHUNK = 4096


@dataclass(frozen=True)
class ProcessLimits:
    """Resource caps applied to a converter process.

    Attributes:
        cpu_time_sec: ``RLIMIT_CPU`` applied in the child, in seconds.
        address_space_bytes: ``RLIMIT_AS`` applied in the child.
        wall_time_sec: Elapsed-time budget after which the parent kills the child.
    """

    cpu_time_sec: Optional[int] = None
    address_space_bytes: Optional[int] = None
    wall_time_sec: Optional[float] = None

    @property
    def has_rlimits(self) -> bool:
        return self.cpu_time_sec is not None or self.address_space_bytes is not None

    def apply_in_child(self) -> None:
        """Install rlimits; runs between ``fork`` and ``exec``."""

        if self.cpu_time_sec is not None:
            resource.setrlimit(resource.RLIMIT_CPU, (self.cpu_time_sec, self.cpu_time_sec))
        if self.address_space_bytes is not None:
            resource.setrlimit(
                resource.RLIMIT_AS, (self.address_space_bytes, self.address_space_bytes)
            )


def _iter_output_lines(stream: IO[bytes]) -> Iterator[str]:
    pending = b""
    while True:
        chunk = stream.read1(_READ_CHUNK)  # type: ignore[attr-defined]
        if not chunk:
            break
        pending += chunk.replace(b"\r", b"\n")
        *lines, pending = pending.split(b"\n")
        for raw in lines:
            if raw:
                yield raw.decode("utf-8", errors="replace")
    if pending:
        yield pending.decode("utf-8", errors="replace")


def _kill_process_group(process: subprocess.Popen) -> None:
    """SIGKILL the session started for ``process``, including ``--run`` children."""

    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        process.kill()


def exec_with_limits(
    limits: Optional[ProcessLimits],
    progress_callback: Optional[ProgressCallback],
    command: str,
    *args: str,
    cancellation_token: Optional[CancellationToken] = None,
) -> str:
    """Execute ``command`` with ``args`` and wait for it to exit.

    Args:
        limits: Optional resource caps; ``None`` runs the process unconstrained.
        progress_callback: Invoked with every output line as it is produced.
        command: Executable path.
        *args: Arguments passed verbatim, without a shell.
        cancellation_token: When fired, the running process is killed.

    Returns:
        The trailing lines of combined output joined with newlines.

    Raises:
        ProcessExecutionError: If the process cannot start, exits non-zero, is
            killed by the wall-clock limit, or is cancelled.
    """

    argv: List[str] = [command, *args]
    limits = limits or ProcessLimits()
    if cancellation_token is not None and cancellation_token.is_cancelled():
        raise ProcessExecutionError(f"{command} was cancelled before it started", command=argv)

    try:
        process = subprocess.Popen(  # noqa: S603 - argv is built internally, no shell
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            preexec_fn=limits.apply_in_child if limits.has_rlimits else None,  # noqa: PLW1509
            start_new_session=True,
        )
    except OSError as exc:
        raise ProcessExecutionError(
            f"Failed to launch {command}: {exc}", command=argv
        ) from exc

    logger.debug("started process", extra={"stage": "exec", "pid": process.pid, "command": command})

    kill_reason: List[str] = []

    def _kill(reason: str) -> None:
        if process.poll() is None:
            kill_reason.append(reason)
            _kill_process_group(process)

    def _on_cancel() -> None:
        _kill("cancelled")

    timer: Optional[threading.Timer] = None
    if limits.wall_time_sec is not None:
        timer = threading.Timer(limits.wall_time_sec, _kill, args=("timed out",))
        timer.daemon = True
        timer.start()
    if cancellation_token is not None:
        cancellation_token.add_callback(_on_cancel)

    tail: Deque[str] = deque(maxlen=_OUTPUT_TAIL_LINES)
    try:
        assert process.stdout is not None
        for line in _iter_output_lines(process.stdout):
            tail.append(line)
            if progress_callback is not None:
                progress_callback(line)
        returncode = process.wait()
    finally:
        if timer is not None:
            timer.cancel()
        if cancellation_token is not None:
            cancellation_token.remove_callback(_on_cancel)
        if process.poll() is None:
            _kill_process_group(process)
            process.wait()
        if process.stdout is not None:
            process.stdout.close()

    if kill_reason:
        raise ProcessExecutionError(
            f"{command} {kill_reason[0]}",
            command=argv,
            returncode=returncode,
            output=tail,
        )
    if returncode != 0:
        detail = tail[-1] if tail else "no output"
        raise ProcessExecutionError(
            f"{command} exited with status {returncode}: {detail}",
            command=argv,
            returncode=returncode,
            output=tail,
        )
    return "\n".join(tail)
