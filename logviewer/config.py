"""Typed provisioning settings sourced from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from .constants import DEFAULT_PROBE_INTERVAL, INSTALL_ROOT_NAME, env_bool, env_int


def _env_timeout(key: str) -> Optional[int]:
    value = env_int(key, 0)
    return value if value > 0 else None


@dataclass(frozen=True)
class ProvisionSettings:
    """Settings for one provisioning run.

    ``engine_timeout`` and ``dashboard_timeout`` override the platform
    defaults when set.
    """

    home: Path
    source: str
    open_browser: bool = True
    rollback: bool = True
    verify_checksums: bool = True
    engine_timeout: Optional[int] = None
    dashboard_timeout: Optional[int] = None
    probe_interval: int = DEFAULT_PROBE_INTERVAL

    @property
    def install_dir(self) -> Path:
        return self.home / INSTALL_ROOT_NAME

    @classmethod
    def from_env(cls) -> "ProvisionSettings":
        home = (os.environ.get("LOGVIEWER_HOME") or "").strip()
        source = (os.environ.get("LOGVIEWER_SOURCE") or "").strip()
        return cls(
            home=Path(home).expanduser() if home else Path.home(),
            source=source or os.getcwd(),
            open_browser=env_bool("LOGVIEWER_OPEN_BROWSER", True),
            rollback=env_bool("LOGVIEWER_ROLLBACK", True),
            verify_checksums=env_bool("LOGVIEWER_VERIFY_CHECKSUMS", True),
            engine_timeout=_env_timeout("LOGVIEWER_ENGINE_TIMEOUT"),
            dashboard_timeout=_env_timeout("LOGVIEWER_DASHBOARD_TIMEOUT"),
            probe_interval=max(env_int("LOGVIEWER_PROBE_INTERVAL", DEFAULT_PROBE_INTERVAL), 1),
        )

    def with_overrides(self, **changes) -> "ProvisionSettings":
        """Return a copy with the non-None ``changes`` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
