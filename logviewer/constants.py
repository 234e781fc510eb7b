"""Constants, exit codes and environment helpers for the LogViewer provisioner."""

from __future__ import annotations

import os


STACK_VERSION = "7.17.20"
JDK_VERSION = "17.0.11"

INSTALL_ROOT_NAME = "LogViewer"
LOG_DIR_NAME = "logs"

ENGINE = "engine"
DASHBOARD = "dashboard"
RUNTIME = "runtime"

ENGINE_URL = "http://localhost:9200"
DASHBOARD_URL = "http://localhost:5601"

ENGINE_READY_TIMEOUT = 120
DASHBOARD_READY_TIMEOUT = 180
DASHBOARD_READY_TIMEOUT_NATIVE_INSTALLER = 300
DEFAULT_PROBE_INTERVAL = 5
# Used when a process has no readiness URL.
PROCESS_ALIVE_GRACE = 10

# Archive-manager junk that never belongs in an install tree.
RESERVED_ZIP_PREFIXES = ("__MACOSX/",)

CHECKSUM_SUFFIX = ".sha512"
DOWNLOAD_TIMEOUT = 30
COPY_CHUNK_SIZE = 1024 * 1024


class ExitCodes:
    """Exit codes for different error conditions."""
    OK = 0
    UNSUPPORTED_PLATFORM = 1
    TRANSFER_FAILED = 2
    EXTRACTION_FAILED = 3
    INSTALLER_FAILED = 4
    ENVIRONMENT_CONFIG_FAILED = 5
    PROCESS_LAUNCH_FAILED = 6
    READINESS_TIMEOUT = 7
    UNEXPECTED_ERROR = 8


def env_bool(key: str, default: bool = False) -> bool:
    value = os.environ.get(key)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(key: str, default: int) -> int:
    value = os.environ.get(key)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default
