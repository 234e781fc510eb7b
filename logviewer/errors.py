"""
Custom exception classes for the LogViewer provisioner.
"""

from typing import Optional


class ProvisioningError(Exception):
    """Base exception class for provisioning errors."""
    pass


class UnsupportedPlatformError(ProvisioningError):
    """Raised when the running platform has no entry in the strategy table."""

    def __init__(self, system: str) -> None:
        super().__init__(f"Unsupported operating system: {system!r}")
        self.system = system


class TransferError(ProvisioningError):
    """Raised when an artifact cannot be obtained from its source."""

    def __init__(self, message: str, source: Optional[str] = None) -> None:
        super().__init__(message)
        self.source = source


class ExtractionError(ProvisioningError):
    """Base class for archive extraction failures."""

    def __init__(self, message: str, entry: Optional[str] = None) -> None:
        super().__init__(message)
        self.entry = entry


class ArchiveReadError(ExtractionError):
    """Raised when the archive source cannot be opened or read."""
    pass


class MalformedArchiveError(ExtractionError):
    """Raised when zip, gzip or tar structure is invalid or truncated."""
    pass


class PathTraversalError(ExtractionError):
    """Raised when an entry or symlink target would land outside the destination."""
    pass


class FilesystemWriteError(ExtractionError):
    """Raised when writing an extracted entry to disk fails."""
    pass


class InstallerError(ProvisioningError):
    """Raised when a native installer invocation fails."""

    def __init__(self, message: str, component: Optional[str] = None) -> None:
        super().__init__(message)
        self.component = component


class EnvironmentConfigError(ProvisioningError):
    """Raised when the launch environment cannot be derived from the install tree."""
    pass


class ProcessLaunchError(ProvisioningError):
    """Raised when a managed process fails to start or exits before it is ready."""

    def __init__(self, message: str, component: Optional[str] = None) -> None:
        super().__init__(message)
        self.component = component


class ReadinessTimeoutError(ProvisioningError):
    """Raised when a managed process does not become ready in time."""

    def __init__(self, message: str, component: Optional[str] = None) -> None:
        super().__init__(message)
        self.component = component
