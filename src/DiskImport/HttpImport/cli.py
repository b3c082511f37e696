"""Typer CLI driving a single nbdkit HTTP import.

Commands:
- diskimport import URL DEST - fetch, convert to raw, and write ``DEST``
- diskimport args URL DEST - print the nbdkit command line without running it

Example:
    $ diskimport import https://example.com/disk.qcow2.xz /dev/vdb --cert-dir /certs
"""

import logging
import shlex
from pathlib import Path
from typing import Optional

import typer

from DiskImport.HttpImport.endpoint import parse_endpoint
from DiskImport.HttpImport.errors import ImportPipelineError
from DiskImport.HttpImport.logging_config import setup_logging
from DiskImport.HttpImport.metrics import start_metrics_server
from DiskImport.HttpImport.nbdkit import NbdkitArgs, NbdkitFilter, build_nbdkit_args
from DiskImport.HttpImport.nbdkit_http_source import NbdkitHttpDataSource
from DiskImport.HttpImport.phases import DataVolumeContentType
from DiskImport.HttpImport.processor import DataProcessor
from DiskImport.HttpImport.settings import get_settings

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="diskimport",
    help="Import remote disk images as raw images through nbdkit and qemu-img",
    no_args_is_help=True,
)


@app.callback()
def main() -> None:
    """Import remote disk images as raw images."""


@app.command("import")
def import_command(
    endpoint: str = typer.Argument(..., help="HTTP(S) URL of the disk image"),
    destination: Path = typer.Argument(..., help="Raw image file or block device to write"),
    access_key: Optional[str] = typer.Option(
        None, "--access-key", envvar="DISKIMPORT_ACCESS_KEY", help="Username for the endpoint"
    ),
    secret_key: Optional[str] = typer.Option(
        None, "--secret-key", envvar="DISKIMPORT_SECRET_KEY", help="Password for the endpoint"
    ),
    cert_dir: Optional[Path] = typer.Option(
        None, "--cert-dir", help="Directory holding tls.crt for the endpoint"
    ),
    scratch_dir: Optional[Path] = typer.Option(
        None, "--scratch-dir", help="Convert into scratch space instead of the destination"
    ),
    content_type: DataVolumeContentType = typer.Option(
        DataVolumeContentType.KUBEVIRT, "--content-type", help="Declared content type"
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the log level"),
) -> None:
    """Fetch ENDPOINT, convert it to raw, and write DESTINATION."""

    settings = get_settings()
    if log_level:
        settings = settings.model_copy(update={"log_level": log_level.upper()})
    setup_logging(settings)
    if settings.metrics_port is not None:
        start_metrics_server(settings.metrics_port)

    try:
        source = NbdkitHttpDataSource.from_endpoint(
            endpoint,
            access_key,
            secret_key,
            str(cert_dir) if cert_dir else None,
            content_type,
            settings=settings,
        )
    except ImportPipelineError as exc:
        typer.echo(f"❌ {exc.kind.value}: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    processor = DataProcessor(
        source,
        str(destination),
        scratch_dir=str(scratch_dir) if scratch_dir else None,
        scratch_file_name=settings.scratch_file_name,
    )
    result = processor.process_data()
    if not result.succeeded:
        error = result.error
        kind = error.kind.value if error is not None else "Error"
        typer.echo(f"❌ {kind}: {error}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"✅ Imported image to {result.image_path}")


@app.command("args")
def args_command(
    endpoint: str = typer.Argument(..., help="HTTP(S) URL of the disk image"),
    destination: Path = typer.Argument(..., help="Raw image file or block device"),
    nbdkit_filter: Optional[list[NbdkitFilter]] = typer.Option(
        None, "--filter", help="nbdkit filter to layer in front of curl (repeatable)"
    ),
    cert_dir: Optional[Path] = typer.Option(None, "--cert-dir"),
) -> None:
    """Print the nbdkit command line that would convert ENDPOINT."""

    settings = get_settings()
    try:
        source_url = parse_endpoint(endpoint)
    except ImportPipelineError as exc:
        typer.echo(f"❌ {exc.kind.value}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    request = NbdkitArgs(
        source_url=source_url,
        dest=str(destination),
        filters=list(nbdkit_filter or []),
        cert_dir=str(cert_dir) if cert_dir else None,
    )
    command = [settings.nbdkit_binary, *build_nbdkit_args(request, settings.qemu_img_binary)]
    typer.echo(shlex.join(command))


if __name__ == "__main__":  # pragma: no cover
    app()
