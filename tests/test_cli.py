from __future__ import annotations

import io
import zipfile

import pytest

from logviewer import cli as runtime_cli
from logviewer.cli import create_parser, main
from logviewer.cli_helpers import map_exception_to_exit_code
from logviewer.constants import ExitCodes
from logviewer.errors import (
    EnvironmentConfigError,
    MalformedArchiveError,
    ProcessLaunchError,
    ReadinessTimeoutError,
    TransferError,
    UnsupportedPlatformError,
)


def _write_zip(path, entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    path.write_bytes(buffer.getvalue())
    return path


class FakeProvisioner:
    outcome = None
    settings = None

    def __init__(self, settings, logger):
        FakeProvisioner.settings = settings
        self.processes = {}

    def run(self):
        if FakeProvisioner.outcome is not None:
            raise FakeProvisioner.outcome

        class _Proc:
            def __init__(self, pid):
                self.pid = pid

        self.processes = {"engine": _Proc(11), "dashboard": _Proc(12)}


@pytest.fixture
def fake_provisioner(monkeypatch):
    FakeProvisioner.outcome = None
    FakeProvisioner.settings = None
    monkeypatch.setattr(runtime_cli, "Provisioner", FakeProvisioner)
    return FakeProvisioner


def test_no_arguments_prints_help(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == ExitCodes.OK
    assert "install" in capsys.readouterr().out


def test_parser_lists_commands():
    parser = create_parser()
    args = parser.parse_args(["install", "--no-browser", "--source", "/artifacts"])
    assert args.command == "install"
    assert args.no_browser is True
    assert args.source == "/artifacts"


def test_platform_command_prints_profile(capsys):
    main(["platform", "--system", "windows"])
    out = capsys.readouterr().out

    assert "Platform: windows" in out
    assert "runtime: jdk-17_windows-x64_bin.msi (native-installer)" in out
    assert "engine: elasticsearch-7.17.20-windows-x86_64.zip (zip)" in out
    assert r"PATH += C:\Program Files\Common Files\Oracle\Java\javapath" in out
    assert "within 300s" in out


def test_platform_command_unsupported_host(monkeypatch, capsys):
    monkeypatch.setattr(runtime_cli, "resolve_platform", _raise(UnsupportedPlatformError("Haiku")))

    with pytest.raises(SystemExit) as excinfo:
        main(["platform"])

    assert excinfo.value.code == ExitCodes.UNSUPPORTED_PLATFORM
    assert "Haiku" in capsys.readouterr().err


def test_extract_command(tmp_path, capsys):
    archive = _write_zip(tmp_path / "bundle.zip", {"a/b.txt": b"b", "c.txt": b"c"})

    main(["extract", str(archive), str(tmp_path / "out")])

    assert (tmp_path / "out" / "a" / "b.txt").read_bytes() == b"b"
    assert "Extracted 2 files" in capsys.readouterr().out


def test_extract_command_rejects_traversal(tmp_path, capsys):
    archive = _write_zip(tmp_path / "evil.zip", {"../outside.txt": b"x"})

    with pytest.raises(SystemExit) as excinfo:
        main(["extract", str(archive), str(tmp_path / "out"), "--format", "zip"])

    assert excinfo.value.code == ExitCodes.EXTRACTION_FAILED
    assert not (tmp_path / "outside.txt").exists()
    assert "Error:" in capsys.readouterr().err


def test_install_prints_pids(fake_provisioner, tmp_path, capsys):
    main(["install", "--home", str(tmp_path), "--source", str(tmp_path), "--no-browser"])

    assert capsys.readouterr().out.splitlines() == ["engine: PID 11", "dashboard: PID 12"]
    assert fake_provisioner.settings.home == tmp_path
    assert fake_provisioner.settings.open_browser is False
    assert fake_provisioner.settings.rollback is True


@pytest.mark.parametrize(
    "error, code",
    [
        (UnsupportedPlatformError("plan9"), ExitCodes.UNSUPPORTED_PLATFORM),
        (TransferError("gone", source="/x"), ExitCodes.TRANSFER_FAILED),
        (ReadinessTimeoutError("slow", component="engine"), ExitCodes.READINESS_TIMEOUT),
        (OSError("disk full"), ExitCodes.UNEXPECTED_ERROR),
    ],
)
def test_install_failure_exit_codes(fake_provisioner, tmp_path, error, code):
    fake_provisioner.outcome = error

    with pytest.raises(SystemExit) as excinfo:
        main(["install", "--home", str(tmp_path), "--no-rollback"])

    assert excinfo.value.code == code
    assert fake_provisioner.settings.rollback is False


def test_map_exception_to_exit_code():
    assert map_exception_to_exit_code(MalformedArchiveError("bad")) == ExitCodes.EXTRACTION_FAILED
    assert map_exception_to_exit_code(EnvironmentConfigError("no home")) == ExitCodes.ENVIRONMENT_CONFIG_FAILED
    assert map_exception_to_exit_code(ProcessLaunchError("died")) == ExitCodes.PROCESS_LAUNCH_FAILED
    assert map_exception_to_exit_code(ValueError("other")) is None


def _raise(exc):
    def _inner(*args, **kwargs):
        raise exc

    return _inner
