# === NAVMAP v1 ===
# {
#   "module": "DiskImport.HttpImport.settings",
#   "purpose": "Environment-driven importer settings and process limit construction",
#   "sections": [
#     {
#       "id": "importersettings",
#       "name": "ImporterSettings",
#       "anchor": "class-importersettings",
#       "kind": "class"
#     },
#     {
#       "id": "get-settings",
#       "name": "get_settings",
#       "anchor": "function-get-settings",
#       "kind": "function"
#     },
#     {
#       "id": "invalidate-settings-cache",
#       "name": "invalidate_settings_cache",
#       "anchor": "function-invalidate-settings-cache",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Importer configuration sourced from the process environment.

Settings are read once per process through :func:`get_settings`; the owner
identifier used to label the progress metric comes from ``OWNER_UID`` while
every other knob uses the ``DISKIMPORT_`` prefix, for example
``DISKIMPORT_NBDKIT_BINARY`` or ``DISKIMPORT_LOG_LEVEL``.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .system import ProcessLimits

__all__ = ["ImporterSettings", "get_settings", "invalidate_settings_cache"]

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ImporterSettings(BaseSettings):
    """Pydantic settings model for the nbdkit HTTP importer."""

    owner_uid: str = Field(
        default="",
        validation_alias=AliasChoices("OWNER_UID", "DISKIMPORT_OWNER_UID"),
        description="Identifier of the object owning this import; labels the progress metric.",
    )
    nbdkit_binary: str = Field(default="/usr/sbin/nbdkit")
    qemu_img_binary: str = Field(default="/usr/bin/qemu-img")
    scratch_file_name: str = Field(default="tmpimage", min_length=1)

    cpu_time_limit_sec: Optional[int] = Field(default=None, gt=0)
    address_space_limit_bytes: Optional[int] = Field(default=None, gt=0)
    wall_time_limit_sec: Optional[float] = Field(default=None, gt=0)

    connect_timeout_sec: float = Field(default=30.0, gt=0)
    read_timeout_sec: float = Field(default=60.0, gt=0)

    log_level: str = Field(default="INFO")
    log_dir: Optional[Path] = Field(default=None)
    log_max_size_mb: float = Field(default=10.0, gt=0)
    log_retention_days: int = Field(default=7, ge=1)

    metrics_port: Optional[int] = Field(default=None, ge=1, le=65535)

    model_config = SettingsConfigDict(
        env_prefix="DISKIMPORT_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_VALID_LOG_LEVELS)}")
        return level

    def process_limits(self) -> ProcessLimits:
        """Return the converter resource limits described by these settings."""

        return ProcessLimits(
            cpu_time_sec=self.cpu_time_limit_sec,
            address_space_bytes=self.address_space_limit_bytes,
            wall_time_sec=self.wall_time_limit_sec,
        )


_SETTINGS_CACHE: Optional[ImporterSettings] = None
_SETTINGS_LOCK = threading.Lock()


def get_settings() -> ImporterSettings:
    """Return the process-wide settings, reading the environment on first use."""

    global _SETTINGS_CACHE  # noqa: PLW0603

    with _SETTINGS_LOCK:
        if _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = ImporterSettings()
        return _SETTINGS_CACHE


def invalidate_settings_cache() -> None:
    """Drop the cached settings so the next call re-reads the environment."""

    global _SETTINGS_CACHE  # noqa: PLW0603

    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None
