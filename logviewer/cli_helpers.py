"""Shared CLI helpers for logviewer commands."""

import sys
from typing import Optional

from .constants import ExitCodes
from .errors import (
    EnvironmentConfigError,
    ExtractionError,
    InstallerError,
    ProcessLaunchError,
    ReadinessTimeoutError,
    TransferError,
    UnsupportedPlatformError,
)


def exit_with_error(message: str, exit_code: int) -> None:
    """Print an error message and exit with the specified code."""
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(exit_code)


def map_exception_to_exit_code(exc: BaseException) -> Optional[int]:
    """Translate known exceptions to logviewer exit codes."""
    if isinstance(exc, UnsupportedPlatformError):
        return ExitCodes.UNSUPPORTED_PLATFORM
    if isinstance(exc, TransferError):
        return ExitCodes.TRANSFER_FAILED
    if isinstance(exc, ExtractionError):
        return ExitCodes.EXTRACTION_FAILED
    if isinstance(exc, InstallerError):
        return ExitCodes.INSTALLER_FAILED
    if isinstance(exc, EnvironmentConfigError):
        return ExitCodes.ENVIRONMENT_CONFIG_FAILED
    if isinstance(exc, ProcessLaunchError):
        return ExitCodes.PROCESS_LAUNCH_FAILED
    if isinstance(exc, ReadinessTimeoutError):
        return ExitCodes.READINESS_TIMEOUT
    return None
