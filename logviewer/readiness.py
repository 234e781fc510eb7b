"""Readiness probes for managed processes.

The orchestrator probes a process over HTTP when its launch entry names a
readiness URL and falls back to :class:`ProcessAliveProbe` otherwise.
"""

from __future__ import annotations

import logging
import subprocess
import time
import urllib.error
import urllib.request
from typing import Callable, Optional

from .errors import ProcessLaunchError, ReadinessTimeoutError


class ReadinessProbe:
    """Answers whether a managed process accepts work yet."""

    def check(self) -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


class HttpProbe(ReadinessProbe):
    """Ready once ``url`` answers with a non-5xx status."""

    def __init__(self, url: str, timeout: float = 5) -> None:
        self.url = url
        self.timeout = timeout

    def check(self) -> bool:
        try:
            with urllib.request.urlopen(self.url, timeout=self.timeout):  # noqa: S310
                return True
        except urllib.error.HTTPError as exc:
            # Kibana answers 503 until its backing index is reachable.
            return exc.code < 500
        except (urllib.error.URLError, TimeoutError, OSError):
            return False

    def describe(self) -> str:
        return f"HTTP {self.url}"


class ProcessAliveProbe(ReadinessProbe):
    """Ready once ``process`` has stayed alive for ``grace`` seconds."""

    def __init__(
        self,
        process: subprocess.Popen,
        grace: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.process = process
        self.grace = grace
        self._clock = clock
        self._started = clock()

    def check(self) -> bool:
        if self.process.poll() is not None:
            return False
        return self._clock() - self._started >= self.grace

    def describe(self) -> str:
        return f"process {self.process.pid} alive for {self.grace}s"


def wait_until_ready(
    probe: ReadinessProbe,
    timeout: float,
    interval: float,
    logger: logging.Logger,
    component: str,
    process: Optional[subprocess.Popen] = None,
    sleep: Optional[Callable[[float], None]] = None,
    clock: Optional[Callable[[], float]] = None,
) -> int:
    """Poll ``probe`` until it succeeds; return the number of attempts made.

    Polling stops early with :class:`ProcessLaunchError` when ``process`` exits
    and with :class:`ReadinessTimeoutError` once ``timeout`` elapses or the
    attempt budget derived from ``timeout / interval`` is spent.
    """
    sleep = sleep or time.sleep
    clock = clock or time.monotonic
    interval = max(interval, 0.1)
    deadline = clock() + timeout
    max_attempts = max(int(timeout // interval) + 1, 1)
    logger.info("Waiting up to %ss for %s (%s)...", timeout, component, probe.describe())

    attempts = 0
    while True:
        if process is not None:
            code = process.poll()
            if code is not None:
                raise ProcessLaunchError(
                    f"{component} exited with code {code} before becoming ready",
                    component=component,
                )
        attempts += 1
        if probe.check():
            logger.info("%s is ready (attempt %d).", component, attempts)
            return attempts
        remaining = deadline - clock()
        if attempts >= max_attempts or remaining <= 0:
            raise ReadinessTimeoutError(
                f"{component} not ready after {timeout}s ({attempts} attempts)",
                component=component,
            )
        logger.debug("%s not ready yet; retrying in %ss.", component, min(interval, remaining))
        sleep(min(interval, remaining))
