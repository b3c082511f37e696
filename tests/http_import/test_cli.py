"""Typer CLI coverage for the diskimport commands."""

from __future__ import annotations

import logging

import pytest
from typer.testing import CliRunner

from DiskImport.HttpImport.cli import app
from DiskImport.HttpImport.logging_config import LOGGER_NAME

runner = CliRunner()


@pytest.fixture(autouse=True)
def _drop_cli_handlers():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_diskimport_managed", False):
            logger.removeHandler(handler)
            handler.close()


def test_args_prints_nbdkit_command_line(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("DISKIMPORT_NBDKIT_BINARY", "/usr/sbin/nbdkit")
    dest = tmp_path / "disk.img"

    result = runner.invoke(
        app,
        ["args", "https://example.com/disk.img.xz", str(dest), "--filter", "xz", "--cert-dir", "/certs"],
    )

    assert result.exit_code == 0, result.output
    line = result.output.strip()
    assert line.startswith("/usr/sbin/nbdkit -U - -r curl --verbose cainfo=/certs/tls.crt ")
    assert "https://example.com/disk.img.xz --filter=xz --run" in line
    assert f"-O raw {dest}" in line


def test_args_rejects_invalid_endpoint(tmp_path) -> None:
    result = runner.invoke(app, ["args", "ftp://example.com/disk.img", str(tmp_path / "d")])

    assert result.exit_code == 1
    assert "InvalidEndpoint" in result.output


def test_import_reports_invalid_endpoint(tmp_path) -> None:
    result = runner.invoke(app, ["import", "", str(tmp_path / "disk.img")])

    assert result.exit_code == 1
    assert "InvalidEndpoint" in result.output


def test_import_reports_unusable_cert_dir(tmp_path) -> None:
    result = runner.invoke(
        app,
        [
            "import",
            "https://example.com/disk.img",
            str(tmp_path / "disk.img"),
            "--cert-dir",
            str(tmp_path / "missing"),
        ],
    )

    assert result.exit_code == 1
    assert "TransportFailed" in result.output
