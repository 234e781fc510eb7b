"""Provisioning run: acquire, extract, configure, launch, await, activate."""

from __future__ import annotations

import functools
import logging
import shutil
import subprocess
import tempfile
import webbrowser
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .archive import extract_archive
from .config import ProvisionSettings
from .constants import DASHBOARD, ENGINE, LOG_DIR_NAME, PROCESS_ALIVE_GRACE, RUNTIME
from .errors import EnvironmentConfigError, InstallerError
from .fetch import fetch_artifact
from .platforms import ComponentSpec, InstallMethod, LaunchSpec, PlatformProfile, resolve_platform
from .processes import launch_detached, safe_kill_process
from .readiness import HttpProbe, ProcessAliveProbe, ReadinessProbe, wait_until_ready


class ProvisioningState(str, Enum):
    INIT = "init"
    ACQUIRING = "acquiring"
    EXTRACTING = "extracting"
    CONFIGURING = "configuring"
    LAUNCHING_ENGINE = "launching-engine"
    AWAITING_ENGINE = "awaiting-engine"
    LAUNCHING_DASHBOARD = "launching-dashboard"
    AWAITING_DASHBOARD = "awaiting-dashboard"
    ACTIVATING = "activating"
    DONE = "done"
    FAILED = "failed"


# Runtime first: later steps depend on its environment.
EXTRACTION_ORDER = (RUNTIME, ENGINE, DASHBOARD)

_LAUNCH_STATES = {
    ENGINE: (ProvisioningState.LAUNCHING_ENGINE, ProvisioningState.AWAITING_ENGINE),
    DASHBOARD: (ProvisioningState.LAUNCHING_DASHBOARD, ProvisioningState.AWAITING_DASHBOARD),
}

ProbeFactory = Callable[[LaunchSpec, subprocess.Popen], ReadinessProbe]


def default_probe_factory(launch: LaunchSpec, process: subprocess.Popen) -> ReadinessProbe:
    """Probe the readiness URL, or only watch the process when there is none."""
    if launch.readiness_url:
        return HttpProbe(launch.readiness_url)
    return ProcessAliveProbe(process, grace=PROCESS_ALIVE_GRACE)


class Provisioner:
    """Drives one provisioning run and undoes its effects when it fails."""

    def __init__(
        self,
        settings: ProvisionSettings,
        logger: logging.Logger,
        system: Optional[str] = None,
        probe_factory: ProbeFactory = default_probe_factory,
    ) -> None:
        self.settings = settings
        self.logger = logger
        self.system = system
        self.probe_factory = probe_factory
        self.state = ProvisioningState.INIT
        self.history: List[ProvisioningState] = []
        self.failure: Optional[BaseException] = None
        self.profile: Optional[PlatformProfile] = None
        self.artifacts: Dict[str, Path] = {}
        self.environment: Dict[str, str] = {}
        self.processes: Dict[str, subprocess.Popen] = {}
        self._compensations: List[Tuple[str, Callable[[], None]]] = []

    @property
    def install_dir(self) -> Path:
        return self.settings.install_dir

    def _enter(self, state: ProvisioningState) -> None:
        self.state = state
        self.history.append(state)
        self.logger.debug("Provisioning state -> %s", state.value)

    def _register(self, description: str, action: Callable[[], None]) -> None:
        self._compensations.append((description, action))

    def run(self) -> ProvisioningState:
        try:
            self._init()
            with tempfile.TemporaryDirectory(prefix="logviewer-staging-") as staging:
                self._acquire(Path(staging))
                self._extract()
            self._configure()
            for name in (ENGINE, DASHBOARD):
                self._launch(name)
                self._await(name)
        except (Exception, KeyboardInterrupt) as exc:
            self._fail(exc)
            raise

        self._activate()
        self._compensations.clear()
        self._enter(ProvisioningState.DONE)
        self.logger.info("Provisioning complete; dashboard at %s", self.profile.dashboard_url)
        return self.state

    def _init(self) -> None:
        self._enter(ProvisioningState.INIT)
        # Resolved before touching the filesystem so unsupported platforms leave no trace.
        self.profile = resolve_platform(self.system)
        self.logger.info("Resolved platform profile '%s'.", self.profile.name)
        try:
            self.install_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise EnvironmentConfigError(
                f"Failed to create install directory {self.install_dir}: {exc}"
            ) from exc

    def _ordered_components(self) -> List[ComponentSpec]:
        names = {spec.name for spec in self.profile.components}
        return [self.profile.component(name) for name in EXTRACTION_ORDER if name in names]

    def _acquire(self, staging: Path) -> None:
        self._enter(ProvisioningState.ACQUIRING)
        for spec in self._ordered_components():
            self.artifacts[spec.name] = fetch_artifact(
                self.settings.source,
                spec.artifact,
                staging,
                self.logger,
                verify_checksum=self.settings.verify_checksums,
            )

    def _extract(self) -> None:
        self._enter(ProvisioningState.EXTRACTING)
        for spec in self._ordered_components():
            artifact = self.artifacts[spec.name]
            if spec.install is InstallMethod.NATIVE_INSTALLER:
                self._run_installer(spec, artifact)
            else:
                self._extract_component(spec, artifact)

    def _snapshot(self) -> Set[str]:
        return {entry.name for entry in self.install_dir.iterdir()}

    def _extract_component(self, spec: ComponentSpec, artifact: Path) -> None:
        self.logger.info("Extracting %s into %s", artifact.name, self.install_dir)
        before = self._snapshot()
        try:
            summary = extract_archive(artifact, spec.archive_format, self.install_dir, logger=self.logger)
        finally:
            created = self._snapshot() - before
            if created:
                self._register(
                    f"remove {', '.join(sorted(created))}",
                    functools.partial(self._remove_entries, created),
                )
        self.logger.info(
            "Extracted %s: %d files, %d directories, %d symlinks.",
            spec.name,
            summary.files,
            summary.directories,
            summary.symlinks,
        )

    def _remove_entries(self, names: Iterable[str]) -> None:
        for name in names:
            path = self.install_dir / name
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink(missing_ok=True)

    def _run_installer(self, spec: ComponentSpec, artifact: Path) -> None:
        command = self.profile.install_command(artifact)
        self.logger.info("Running native installer for %s: %s", spec.name, " ".join(command))
        try:
            subprocess.run(command, check=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise InstallerError(f"Installer for {spec.name} failed: {exc}", component=spec.name) from exc

    def _configure(self) -> None:
        self._enter(ProvisioningState.CONFIGURING)
        home = self.profile.runtime_home_path(self.install_dir)
        if home is not None and not home.is_dir():
            raise EnvironmentConfigError(f"Runtime home {home} does not exist after extraction")
        for spec in self._ordered_components():
            if spec.install is not InstallMethod.ARCHIVE or not spec.directory:
                continue
            directory = self.install_dir / spec.directory
            if not directory.is_dir():
                raise EnvironmentConfigError(f"{spec.name} directory {directory} is missing")

        self.environment = self.profile.launch_environment(self.install_dir)
        if home is not None:
            self.logger.info("Using %s=%s", self.profile.runtime_home_var, home)
        for addition in self.profile.path_additions:
            self.logger.info("Appending %s to PATH for managed processes.", addition)

    def _launch(self, name: str) -> None:
        self._enter(_LAUNCH_STATES[name][0])
        launch = self.profile.launch(name)
        process = launch_detached(
            self.profile.launch_command(launch),
            self.install_dir / launch.directory,
            self.environment,
            self.install_dir / LOG_DIR_NAME / f"{name}.log",
            self.logger,
            component=name,
        )
        self.processes[name] = process
        self._register(f"stop {name}", functools.partial(safe_kill_process, process))

    def _ready_timeout(self, launch: LaunchSpec) -> float:
        override = {
            ENGINE: self.settings.engine_timeout,
            DASHBOARD: self.settings.dashboard_timeout,
        }.get(launch.component)
        return override if override else launch.ready_timeout

    def _await(self, name: str) -> None:
        self._enter(_LAUNCH_STATES[name][1])
        launch = self.profile.launch(name)
        process = self.processes[name]
        wait_until_ready(
            self.probe_factory(launch, process),
            self._ready_timeout(launch),
            self.settings.probe_interval,
            self.logger,
            name,
            process=process,
        )

    def _activate(self) -> None:
        self._enter(ProvisioningState.ACTIVATING)
        url = self.profile.dashboard_url
        if not self.settings.open_browser:
            self.logger.info("Dashboard available at %s", url)
            return

        self.logger.info("Opening %s in default browser...", url)
        try:
            opened = webbrowser.open(url)
        except (webbrowser.Error, OSError) as exc:
            self.logger.warning("Failed to open %s in browser: %s", url, exc)
            return
        if not opened:
            self.logger.warning("No browser available; open %s manually.", url)

    def _fail(self, exc: BaseException) -> None:
        failed_in = self.state
        self.failure = exc
        self._enter(ProvisioningState.FAILED)
        self.logger.error("Provisioning failed during %s: %s", failed_in.value, exc)
        if not self.settings.rollback:
            if self._compensations:
                self.logger.warning(
                    "Rollback disabled; leaving %s and started processes in place.", self.install_dir
                )
            return
        self.rollback()

    def rollback(self) -> None:
        """Run registered compensations, newest first."""
        while self._compensations:
            description, action = self._compensations.pop()
            self.logger.info("Rolling back: %s", description)
            try:
                action()
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Rollback step '%s' failed: %s", description, exc)
