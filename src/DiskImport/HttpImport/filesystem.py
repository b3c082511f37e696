"""Filesystem probes used before writing into scratch space."""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

__all__ = ["get_available_space", "is_regular_file_or_missing"]


def get_available_space(path: Union[str, Path]) -> int:
    """Return the bytes available to unprivileged writers at ``path``.

    Returns ``-1`` when the path cannot be inspected, so callers treat an
    inaccessible path the same as a full one.
    """

    try:
        stats = os.statvfs(path)
    except OSError as exc:
        logger.warning(
            "unable to stat scratch path",
            extra={"stage": "transfer", "extra_fields": {"path": str(path), "error": str(exc)}},
        )
        return -1
    return stats.f_bavail * stats.f_frsize


def is_regular_file_or_missing(path: Union[str, Path]) -> bool:
    """Return True when ``path`` is absent or a regular file (not a device)."""

    try:
        mode = os.stat(path).st_mode
    except FileNotFoundError:
        return True
    return stat.S_ISREG(mode)
