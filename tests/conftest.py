"""Shared test configuration: a stable temp directory on WSL and a clean environment."""

from __future__ import annotations

import os
import platform
import tempfile

import pytest


def _is_wsl() -> bool:
    release = platform.release().lower()
    version = platform.version().lower()
    return "microsoft" in release or "microsoft" in version


if _is_wsl() and os.path.isdir("/tmp"):
    os.environ["TMPDIR"] = "/tmp"
    os.environ["TEMP"] = "/tmp"
    os.environ["TMP"] = "/tmp"
    tempfile.tempdir = "/tmp"


@pytest.fixture(autouse=True)
def clean_logviewer_env(monkeypatch):
    """Keep LOGVIEWER_* variables from the developer shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("LOGVIEWER_"):
            monkeypatch.delenv(key, raising=False)
