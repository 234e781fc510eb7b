"""Platform strategy table.

Every platform-conditional decision of a provisioning run is answered here:
which artifacts to fetch, how to install them, which environment the managed
processes need and how to start them.
"""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from .archive import ArchiveFormat
from .constants import (
    DASHBOARD,
    DASHBOARD_READY_TIMEOUT,
    DASHBOARD_READY_TIMEOUT_NATIVE_INSTALLER,
    DASHBOARD_URL,
    ENGINE,
    ENGINE_READY_TIMEOUT,
    ENGINE_URL,
    JDK_VERSION,
    RUNTIME,
    STACK_VERSION,
)
from .errors import UnsupportedPlatformError


class InstallMethod(str, Enum):
    ARCHIVE = "archive"
    NATIVE_INSTALLER = "native-installer"


@dataclass(frozen=True)
class ComponentSpec:
    """An artifact to acquire and install."""

    name: str
    artifact: str
    install: InstallMethod = InstallMethod.ARCHIVE
    archive_format: Optional[ArchiveFormat] = None
    directory: Optional[str] = None


@dataclass(frozen=True)
class LaunchSpec:
    """How to start one managed process and decide that it is ready."""

    component: str
    directory: str
    script: str
    readiness_url: str  # empty: ready once the process stays up
    ready_timeout: float


@dataclass(frozen=True)
class PlatformProfile:
    """Resolved strategy for one operating system."""

    name: str
    shell: Tuple[str, ...]
    components: Tuple[ComponentSpec, ...]
    launches: Tuple[LaunchSpec, ...]
    installer_command: Tuple[str, ...] = ()
    runtime_home: Optional[str] = None
    runtime_home_var: str = "JAVA_HOME"
    path_additions: Tuple[str, ...] = field(default=())
    dashboard_url: str = DASHBOARD_URL

    def component(self, name: str) -> ComponentSpec:
        for spec in self.components:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def launch(self, name: str) -> LaunchSpec:
        for spec in self.launches:
            if spec.component == name:
                return spec
        raise KeyError(name)

    def launch_command(self, launch: LaunchSpec) -> list[str]:
        return [*self.shell, launch.script]

    def install_command(self, artifact_path: Path) -> list[str]:
        return [part.format(artifact=artifact_path) for part in self.installer_command]

    def runtime_home_path(self, install_dir: Path) -> Optional[Path]:
        if self.runtime_home is None:
            return None
        return install_dir / self.runtime_home

    def launch_environment(
        self,
        install_dir: Path,
        base_env: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, str]:
        """Return the environment handed to managed processes.

        The result is a fresh mapping; ``os.environ`` is never modified.
        """
        env = dict(os.environ if base_env is None else base_env)
        home = self.runtime_home_path(install_dir)
        if home is not None:
            env[self.runtime_home_var] = str(home)
        if self.path_additions:
            separator = ";" if self.name == "windows" else os.pathsep
            current = env.get("PATH", "")
            parts = [current] if current else []
            parts.extend(self.path_additions)
            env["PATH"] = separator.join(parts)
        return env


def _engine_launch(script: str) -> LaunchSpec:
    return LaunchSpec(
        component=ENGINE,
        directory=f"elasticsearch-{STACK_VERSION}",
        script=script,
        readiness_url=ENGINE_URL,
        ready_timeout=ENGINE_READY_TIMEOUT,
    )


def _dashboard_launch(os_tag: str, script: str, ready_timeout: float) -> LaunchSpec:
    return LaunchSpec(
        component=DASHBOARD,
        directory=f"kibana-{STACK_VERSION}-{os_tag}-x86_64",
        script=script,
        readiness_url=DASHBOARD_URL,
        ready_timeout=ready_timeout,
    )


def _stack_components(os_tag: str, archive_format: ArchiveFormat) -> Tuple[ComponentSpec, ...]:
    suffix = "zip" if archive_format is ArchiveFormat.ZIP else "tar.gz"
    return (
        ComponentSpec(
            name=ENGINE,
            artifact=f"elasticsearch-{STACK_VERSION}-{os_tag}-x86_64.{suffix}",
            archive_format=archive_format,
            directory=f"elasticsearch-{STACK_VERSION}",
        ),
        ComponentSpec(
            name=DASHBOARD,
            artifact=f"kibana-{STACK_VERSION}-{os_tag}-x86_64.{suffix}",
            archive_format=archive_format,
            directory=f"kibana-{STACK_VERSION}-{os_tag}-x86_64",
        ),
    )


def _darwin_profile() -> PlatformProfile:
    runtime = ComponentSpec(
        name=RUNTIME,
        artifact="jdk-17_macos-x64_bin.tar.gz",
        archive_format=ArchiveFormat.TAR_GZ,
        directory=f"jdk-{JDK_VERSION}.jdk",
    )
    return PlatformProfile(
        name="darwin",
        shell=("bash", "-c"),
        components=(runtime, *_stack_components("darwin", ArchiveFormat.TAR_GZ)),
        launches=(
            _engine_launch("./bin/elasticsearch"),
            _dashboard_launch("darwin", "./bin/kibana", DASHBOARD_READY_TIMEOUT),
        ),
        runtime_home=f"jdk-{JDK_VERSION}.jdk/Contents/Home",
    )


def _linux_profile() -> PlatformProfile:
    # Elasticsearch ships its own JDK on Linux; no separate runtime is needed.
    return PlatformProfile(
        name="linux",
        shell=("sh", "-c"),
        components=_stack_components("linux", ArchiveFormat.TAR_GZ),
        launches=(
            _engine_launch("./bin/elasticsearch"),
            _dashboard_launch("linux", "./bin/kibana", DASHBOARD_READY_TIMEOUT),
        ),
    )


def _windows_profile() -> PlatformProfile:
    runtime = ComponentSpec(
        name=RUNTIME,
        artifact="jdk-17_windows-x64_bin.msi",
        install=InstallMethod.NATIVE_INSTALLER,
    )
    return PlatformProfile(
        name="windows",
        shell=("cmd", "/c"),
        components=(runtime, *_stack_components("windows", ArchiveFormat.ZIP)),
        launches=(
            _engine_launch(r".\bin\elasticsearch.bat"),
            _dashboard_launch(
                "windows", r".\bin\kibana.bat", DASHBOARD_READY_TIMEOUT_NATIVE_INSTALLER
            ),
        ),
        # start takes the first quoted argument as a window title, so pass an empty one.
        installer_command=("cmd", "/c", "start", "", "/wait", "{artifact}"),
        path_additions=(r"C:\Program Files\Common Files\Oracle\Java\javapath",),
    )


_PROFILES = {
    "darwin": _darwin_profile,
    "linux": _linux_profile,
    "windows": _windows_profile,
}


def supported_platforms() -> Tuple[str, ...]:
    return tuple(sorted(_PROFILES))


def resolve_platform(system: Optional[str] = None) -> PlatformProfile:
    """Return the profile for ``system`` (default: the running platform)."""
    name = (system if system is not None else platform.system()).strip().lower()
    factory = _PROFILES.get(name)
    if factory is None:
        raise UnsupportedPlatformError(system if system is not None else platform.system())
    return factory()
