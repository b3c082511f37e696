"""Tests for running external processes under limits."""

from __future__ import annotations

import sys
import threading
import time

import pytest

from DiskImport.HttpImport.cancellation import CancellationToken
from DiskImport.HttpImport.errors import ProcessExecutionError
from DiskImport.HttpImport.system import ProcessLimits, exec_with_limits

pytestmark = pytest.mark.posix_only


def _python(code: str) -> tuple[str, ...]:
    return (sys.executable, "-c", code)


def test_output_lines_split_on_carriage_returns() -> None:
    """qemu-img redraws progress with ``\\r``; every redraw is its own line."""

    lines: list[str] = []
    code = (
        "import sys; "
        "sys.stdout.write('    (0.00/100%)\\r    (50.00/100%)\\r    (100.00/100%)\\n'); "
        "sys.stderr.write('done\\n')"
    )

    output = exec_with_limits(None, lines.append, *_python(code))

    assert lines[:3] == ["    (0.00/100%)", "    (50.00/100%)", "    (100.00/100%)"]
    assert "done" in lines
    assert output.endswith("done")


def test_non_zero_exit_raises_with_status_and_output() -> None:
    code = "import sys; print('curl: (22) 404 Not Found'); sys.exit(3)"

    with pytest.raises(ProcessExecutionError) as excinfo:
        exec_with_limits(ProcessLimits(), None, *_python(code))

    assert excinfo.value.returncode == 3
    assert "404 Not Found" in str(excinfo.value)
    assert excinfo.value.output[-1] == "curl: (22) 404 Not Found"


def test_launch_failure_raises_without_returncode(tmp_path) -> None:
    missing = tmp_path / "no-such-binary"

    with pytest.raises(ProcessExecutionError) as excinfo:
        exec_with_limits(None, None, str(missing), "--version")

    assert excinfo.value.returncode is None
    assert isinstance(excinfo.value.__cause__, OSError)


def test_wall_time_limit_kills_the_process() -> None:
    limits = ProcessLimits(wall_time_sec=0.5)
    started = time.monotonic()

    with pytest.raises(ProcessExecutionError, match="timed out"):
        exec_with_limits(limits, None, *_python("import time; time.sleep(30)"))

    assert time.monotonic() - started < 15


def test_cancellation_kills_the_process() -> None:
    token = CancellationToken()
    timer = threading.Timer(0.3, token.cancel)
    timer.start()
    try:
        with pytest.raises(ProcessExecutionError, match="cancelled"):
            exec_with_limits(
                None, None, *_python("import time; time.sleep(30)"), cancellation_token=token
            )
    finally:
        timer.cancel()


def test_already_cancelled_token_prevents_launch() -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(ProcessExecutionError, match="before it started"):
        exec_with_limits(None, None, *_python("print('never')"), cancellation_token=token)


def test_cpu_limit_is_applied_in_child() -> None:
    code = "import resource; print(resource.getrlimit(resource.RLIMIT_CPU)[0])"
    lines: list[str] = []

    exec_with_limits(ProcessLimits(cpu_time_sec=77), lines.append, *_python(code))

    assert lines == ["77"]


def test_wall_time_limit_kills_grandchildren_holding_output() -> None:
    code = (
        "import subprocess, sys, time; "
        "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)']); "
        "time.sleep(30)"
    )
    started = time.monotonic()

    with pytest.raises(ProcessExecutionError, match="timed out"):
        exec_with_limits(ProcessLimits(wall_time_sec=0.5), None, *_python(code))

    assert time.monotonic() - started < 15
