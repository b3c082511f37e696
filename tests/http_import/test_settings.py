"""Tests for environment-driven importer settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from DiskImport.HttpImport.settings import ImporterSettings, get_settings, invalidate_settings_cache
from DiskImport.HttpImport.system import ProcessLimits


def test_defaults() -> None:
    settings = ImporterSettings()

    assert settings.owner_uid == ""
    assert settings.nbdkit_binary == "/usr/sbin/nbdkit"
    assert settings.qemu_img_binary == "/usr/bin/qemu-img"
    assert settings.scratch_file_name == "tmpimage"
    assert settings.process_limits() == ProcessLimits()


def test_owner_uid_read_from_unprefixed_variable(monkeypatch) -> None:
    monkeypatch.setenv("OWNER_UID", "8f2c-uid")

    assert ImporterSettings().owner_uid == "8f2c-uid"


def test_prefixed_overrides(monkeypatch) -> None:
    monkeypatch.setenv("DISKIMPORT_NBDKIT_BINARY", "/opt/nbdkit")
    monkeypatch.setenv("DISKIMPORT_CPU_TIME_LIMIT_SEC", "30")
    monkeypatch.setenv("DISKIMPORT_WALL_TIME_LIMIT_SEC", "600")
    monkeypatch.setenv("DISKIMPORT_LOG_LEVEL", "debug")

    settings = ImporterSettings()

    assert settings.nbdkit_binary == "/opt/nbdkit"
    assert settings.log_level == "DEBUG"
    assert settings.process_limits() == ProcessLimits(cpu_time_sec=30, wall_time_sec=600.0)


def test_invalid_log_level_rejected() -> None:
    with pytest.raises(ValidationError):
        ImporterSettings(log_level="chatty")


def test_get_settings_is_cached_until_invalidated(monkeypatch) -> None:
    monkeypatch.setenv("OWNER_UID", "first")
    first = get_settings()
    monkeypatch.setenv("OWNER_UID", "second")

    assert get_settings() is first
    assert get_settings().owner_uid == "first"

    invalidate_settings_cache()
    assert get_settings().owner_uid == "second"
