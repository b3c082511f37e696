"""Shared fixtures for the http_import test suite."""

from __future__ import annotations

import io
from typing import Optional

import httpx
import pytest
from prometheus_client import CollectorRegistry

from DiskImport.HttpImport.errors import ConversionError
from DiskImport.HttpImport.nbdkit_http_source import NbdkitHttpDataSource
from DiskImport.HttpImport.phases import DataVolumeContentType
from DiskImport.HttpImport.settings import invalidate_settings_cache
from import_doubles import QCOW2_HEADER, RecordingOperations


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    """Isolate every test from ambient importer environment variables."""

    for name in ("OWNER_UID", "DISKIMPORT_OWNER_UID", "DISKIMPORT_LOG_DIR", "DISKIMPORT_METRICS_PORT"):
        monkeypatch.delenv(name, raising=False)
    invalidate_settings_cache()
    yield
    invalidate_settings_cache()


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def operations() -> RecordingOperations:
    return RecordingOperations()


@pytest.fixture
def make_source(operations):
    """Factory building a data source over an in-memory body."""

    def _make(
        *,
        body: bytes = QCOW2_HEADER,
        endpoint: str = "https://example.com/disk.qcow2",
        content_type: DataVolumeContentType = DataVolumeContentType.KUBEVIRT,
        cert_dir: Optional[str] = None,
        ops=None,
        readers_factory=None,
        space: int = 1 << 30,
    ) -> NbdkitHttpDataSource:
        kwargs = {}
        if readers_factory is not None:
            kwargs["format_readers_factory"] = readers_factory
        return NbdkitHttpDataSource(
            endpoint=httpx.URL(endpoint),
            http_reader=io.BytesIO(body),
            content_length=len(body),
            content_type=content_type,
            cert_dir=cert_dir,
            operations=ops if ops is not None else operations,
            space_probe=lambda path: space,
            **kwargs,
        )

    return _make


@pytest.fixture
def failing_operations() -> RecordingOperations:
    return RecordingOperations(error=ConversionError("could not stream/convert image to raw"))
