"""LogViewer - local Elasticsearch and Kibana provisioner.

Provides:
* Safe zip / tar.gz extraction with path containment checks
* A per-platform strategy table for artifacts, environment and start commands
* A provisioning run that fetches, extracts, launches and waits for the stack
* Thin CLI wrapper (`logviewer`)
"""

from ._version import __version__
from .archive import ArchiveFormat, detect_format, extract_archive  # noqa: F401
from .config import ProvisionSettings  # noqa: F401
from .logging_config import configure_logging  # noqa: F401
from .orchestrator import Provisioner, ProvisioningState  # noqa: F401
from .platforms import PlatformProfile, resolve_platform  # noqa: F401

__all__ = [
	"__version__",
	"ArchiveFormat",
	"detect_format",
	"extract_archive",
	"ProvisionSettings",
	"configure_logging",
	"Provisioner",
	"ProvisioningState",
	"PlatformProfile",
	"resolve_platform",
]
