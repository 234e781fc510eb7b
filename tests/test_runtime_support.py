from __future__ import annotations

import hashlib
import io
import logging
import os
import sys
import time
import urllib.error
from pathlib import Path

import pytest

from logviewer import fetch as runtime_fetch
from logviewer import logging_config as runtime_logging
from logviewer import readiness as runtime_readiness
from logviewer.config import ProvisionSettings
from logviewer.errors import ProcessLaunchError, ReadinessTimeoutError, TransferError
from logviewer.processes import launch_detached, safe_kill_process
from logviewer.readiness import HttpProbe, ProcessAliveProbe, ReadinessProbe, wait_until_ready


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class CountingProbe(ReadinessProbe):
    def __init__(self, ready_on):
        self.ready_on = ready_on
        self.calls = 0

    def check(self):
        self.calls += 1
        return self.calls >= self.ready_on


class FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


# Settings


def test_settings_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)

    settings = ProvisionSettings.from_env()

    assert settings.home == Path.home()
    assert settings.install_dir == Path.home() / "LogViewer"
    assert settings.source == os.getcwd()
    assert settings.open_browser is True
    assert settings.rollback is True
    assert settings.verify_checksums is True
    assert settings.engine_timeout is None
    assert settings.probe_interval == 5


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("LOGVIEWER_HOME", str(tmp_path))
    monkeypatch.setenv("LOGVIEWER_SOURCE", "https://mirror.example/elastic")
    monkeypatch.setenv("LOGVIEWER_OPEN_BROWSER", "0")
    monkeypatch.setenv("LOGVIEWER_DASHBOARD_TIMEOUT", "600")
    monkeypatch.setenv("LOGVIEWER_ENGINE_TIMEOUT", "not-a-number")
    monkeypatch.setenv("LOGVIEWER_PROBE_INTERVAL", "0")

    settings = ProvisionSettings.from_env()

    assert settings.install_dir == tmp_path / "LogViewer"
    assert settings.source == "https://mirror.example/elastic"
    assert settings.open_browser is False
    assert settings.dashboard_timeout == 600
    assert settings.engine_timeout is None
    assert settings.probe_interval == 1


def test_settings_overrides_skip_none(tmp_path):
    settings = ProvisionSettings(home=tmp_path, source="/src")

    updated = settings.with_overrides(source=None, rollback=False)

    assert updated.source == "/src"
    assert updated.rollback is False
    assert settings.rollback is True


# Logging


def test_configure_logging_invalid_level_warns(monkeypatch, caplog):
    monkeypatch.setenv("LOGVIEWER_LOG_LEVEL", "VERBOSE")
    caplog.set_level(logging.WARNING, logger="logviewer")

    logger = runtime_logging.configure_logging()

    assert logger is logging.getLogger("logviewer")
    assert "Invalid LOGVIEWER_LOG_LEVEL" in caplog.text


# Fetch


def test_fetch_local_copy_with_checksum(tmp_path):
    source = tmp_path / "src"
    source.mkdir()
    payload = b"archive bytes"
    (source / "a.tar.gz").write_bytes(payload)
    digest = hashlib.sha512(payload).hexdigest()
    (source / "a.tar.gz.sha512").write_text(f"{digest}  a.tar.gz\n", encoding="utf-8")

    path = runtime_fetch.fetch_artifact(str(source), "a.tar.gz", tmp_path / "stage", logging.getLogger("test"))

    assert path == tmp_path / "stage" / "a.tar.gz"
    assert path.read_bytes() == payload


def test_fetch_missing_local_artifact(tmp_path):
    with pytest.raises(TransferError) as excinfo:
        runtime_fetch.fetch_artifact(str(tmp_path), "missing.zip", tmp_path / "stage", logging.getLogger("test"))
    assert excinfo.value.source == str(tmp_path / "missing.zip")


def test_fetch_skips_verification_when_disabled(tmp_path):
    (tmp_path / "a.zip").write_bytes(b"zip")
    (tmp_path / "a.zip.sha512").write_text("deadbeef  a.zip\n", encoding="utf-8")

    path = runtime_fetch.fetch_artifact(
        str(tmp_path), "a.zip", tmp_path / "stage", logging.getLogger("test"), verify_checksum=False
    )

    assert path.read_bytes() == b"zip"


def test_fetch_remote_without_published_checksum(monkeypatch, tmp_path, caplog):
    requested = []

    def fake_urlopen(url, timeout):
        requested.append(url)
        if url.endswith(".sha512"):
            raise urllib.error.HTTPError(url, 404, "Not Found", {}, None)
        return FakeResponse(b"remote payload")

    monkeypatch.setattr(runtime_fetch.urllib.request, "urlopen", fake_urlopen)
    caplog.set_level(logging.INFO, logger="test")

    path = runtime_fetch.fetch_artifact(
        "https://mirror.example/elastic/", "kibana.tar.gz", tmp_path, logging.getLogger("test")
    )

    assert path.read_bytes() == b"remote payload"
    assert requested == [
        "https://mirror.example/elastic/kibana.tar.gz",
        "https://mirror.example/elastic/kibana.tar.gz.sha512",
    ]
    assert "skipping verification" in caplog.text


def test_fetch_remote_failure_is_transfer_error(monkeypatch, tmp_path):
    def fake_urlopen(url, timeout):
        raise urllib.error.URLError("connection refused")

    monkeypatch.setattr(runtime_fetch.urllib.request, "urlopen", fake_urlopen)

    with pytest.raises(TransferError):
        runtime_fetch.fetch_artifact("http://mirror.example", "a.zip", tmp_path, logging.getLogger("test"))


def test_verify_sha512_single_token_file(tmp_path):
    archive = tmp_path / "a.zip"
    archive.write_bytes(b"abc123")
    checksum = tmp_path / "a.zip.sha512"
    checksum.write_text(hashlib.sha512(b"abc123").hexdigest() + "\n", encoding="utf-8")

    assert runtime_fetch._verify_sha512(archive, checksum) is True


# Readiness


def test_wait_until_ready_polls_until_success():
    clock = FakeClock()
    probe = CountingProbe(ready_on=3)

    attempts = wait_until_ready(
        probe, 60, 5, logging.getLogger("test"), "engine", sleep=clock.sleep, clock=clock
    )

    assert attempts == 3
    assert clock.sleeps == [5, 5]


def test_wait_until_ready_times_out():
    clock = FakeClock()

    with pytest.raises(ReadinessTimeoutError) as excinfo:
        wait_until_ready(
            CountingProbe(ready_on=99), 10, 5, logging.getLogger("test"), "dashboard",
            sleep=clock.sleep, clock=clock,
        )

    assert excinfo.value.component == "dashboard"
    assert clock.now <= 10


def test_wait_until_ready_detects_exited_process():
    class Exited:
        pid = 5

        @staticmethod
        def poll():
            return 137

    with pytest.raises(ProcessLaunchError, match="137"):
        wait_until_ready(CountingProbe(ready_on=1), 10, 1, logging.getLogger("test"), "engine", process=Exited())


def test_http_probe(monkeypatch):
    responses = iter(
        [
            urllib.error.URLError("refused"),
            urllib.error.HTTPError("http://x", 503, "Unavailable", {}, None),
            urllib.error.HTTPError("http://x", 401, "Unauthorized", {}, None),
            FakeResponse(b"{}"),
        ]
    )

    def fake_urlopen(url, timeout):
        result = next(responses)
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(runtime_readiness.urllib.request, "urlopen", fake_urlopen)
    probe = HttpProbe("http://localhost:9200")

    assert [probe.check() for _ in range(4)] == [False, False, True, True]
    assert probe.describe() == "HTTP http://localhost:9200"


def test_process_alive_probe():
    clock = FakeClock()

    class Running:
        pid = 9
        returncode = None

        def poll(self):
            return self.returncode

    process = Running()
    probe = ProcessAliveProbe(process, grace=10, clock=clock)

    assert probe.check() is False
    clock.now = 10
    assert probe.check() is True
    process.returncode = 1
    assert probe.check() is False


# Processes


@pytest.mark.skipif(os.name == "nt", reason="POSIX session handling")
def test_launch_detached_writes_log(tmp_path):
    log_path = tmp_path / "logs" / "engine.log"
    process = launch_detached(
        [sys.executable, "-c", "import os; print(os.environ['MARKER'])"],
        tmp_path,
        {**os.environ, "MARKER": "launched"},
        log_path,
        logging.getLogger("test"),
        component="engine",
    )

    assert process.wait(timeout=30) == 0
    assert "launched" in log_path.read_text(encoding="utf-8")
    assert os.getpgid(os.getpid()) != process.pid


@pytest.mark.skipif(os.name == "nt", reason="POSIX session handling")
def test_safe_kill_process_terminates_session(tmp_path):
    process = launch_detached(
        [sys.executable, "-c", "import time; time.sleep(60)"],
        tmp_path,
        dict(os.environ),
        tmp_path / "sleep.log",
        logging.getLogger("test"),
    )
    time.sleep(0.2)

    safe_kill_process(process)

    assert process.poll() is not None


def test_launch_missing_directory_is_launch_error(tmp_path):
    with pytest.raises(ProcessLaunchError) as excinfo:
        launch_detached(
            ["sh", "-c", "true"],
            tmp_path / "does-not-exist",
            dict(os.environ),
            tmp_path / "out.log",
            logging.getLogger("test"),
            component="dashboard",
        )
    assert excinfo.value.component == "dashboard"


def test_safe_kill_process_ignores_none():
    safe_kill_process(None)
