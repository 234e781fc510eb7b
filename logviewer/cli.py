"""
Command Line Interface for the LogViewer provisioner.

Provides commands to run a full provisioning, to extract a single archive and
to inspect the platform profile.
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from .archive import ArchiveFormat, detect_format, extract_archive
from .cli_helpers import exit_with_error, map_exception_to_exit_code
from .config import ProvisionSettings
from .constants import ExitCodes
from .errors import ProvisioningError
from .logging_config import configure_logging, get_logger
from .orchestrator import Provisioner
from .platforms import resolve_platform, supported_platforms


def _fail(exc: BaseException) -> None:
    code = map_exception_to_exit_code(exc)
    exit_with_error(str(exc), ExitCodes.UNEXPECTED_ERROR if code is None else code)


class InstallCommand:
    """Runs a full provisioning."""

    @staticmethod
    def add_parser(subparsers) -> None:
        parser = subparsers.add_parser(
            'install', help='Install and start Elasticsearch and Kibana, then open the dashboard'
        )
        parser.add_argument('--source', help='Directory or http(s) base URL holding the artifacts')
        parser.add_argument('--home', type=Path, help='Directory under which LogViewer/ is created')
        parser.add_argument('--no-browser', action='store_true',
                            help='Do not open the dashboard in a browser')
        parser.add_argument('--no-rollback', action='store_true',
                            help='Leave extracted files and started processes in place on failure')
        parser.set_defaults(func=InstallCommand.execute)

    @staticmethod
    def execute(args) -> None:
        logger = get_logger("logviewer")
        settings = ProvisionSettings.from_env().with_overrides(
            source=args.source,
            home=args.home,
            open_browser=False if args.no_browser else None,
            rollback=False if args.no_rollback else None,
        )
        provisioner = Provisioner(settings, logger)
        try:
            provisioner.run()
        except (ProvisioningError, OSError) as exc:
            _fail(exc)
        except KeyboardInterrupt:
            exit_with_error("Interrupted.", ExitCodes.UNEXPECTED_ERROR)

        for name, process in provisioner.processes.items():
            print(f"{name}: PID {process.pid}")


class ExtractCommand:
    """Extracts a single archive with the safe extractor."""

    @staticmethod
    def add_parser(subparsers) -> None:
        parser = subparsers.add_parser('extract', help='Safely extract a zip or tar.gz archive')
        parser.add_argument('archive', type=Path, help='Archive to extract')
        parser.add_argument('destination', type=Path, help='Destination directory')
        parser.add_argument('--format', dest='archive_format',
                            choices=[fmt.value for fmt in ArchiveFormat],
                            help='Archive format (detected from the file when omitted)')
        parser.set_defaults(func=ExtractCommand.execute)

    @staticmethod
    def execute(args) -> None:
        try:
            archive_format = args.archive_format or detect_format(args.archive)
            summary = extract_archive(
                args.archive, archive_format, args.destination, logger=get_logger(__name__)
            )
        except ProvisioningError as exc:
            _fail(exc)
            return
        print(
            f"Extracted {summary.files} files, {summary.directories} directories and "
            f"{summary.symlinks} symlinks into {args.destination}"
        )


class PlatformCommand:
    """Prints the resolved platform profile."""

    @staticmethod
    def add_parser(subparsers) -> None:
        parser = subparsers.add_parser('platform', help='Show the platform profile in use')
        parser.add_argument('--system', choices=supported_platforms(),
                            help='Show the profile of another platform')
        parser.set_defaults(func=PlatformCommand.execute)

    @staticmethod
    def execute(args) -> None:
        try:
            profile = resolve_platform(args.system)
        except ProvisioningError as exc:
            _fail(exc)
            return

        print(f"Platform: {profile.name}")
        print("Components:")
        for spec in profile.components:
            detail = spec.archive_format.value if spec.archive_format else spec.install.value
            print(f"  {spec.name}: {spec.artifact} ({detail})")
        print("Processes:")
        for launch in profile.launches:
            command = " ".join(profile.launch_command(launch))
            print(f"  {launch.component}: {command} in {launch.directory} "
                  f"(ready at {launch.readiness_url} within {launch.ready_timeout:g}s)")
        if profile.runtime_home:
            print(f"{profile.runtime_home_var}: <install>/{profile.runtime_home}")
        for addition in profile.path_additions:
            print(f"PATH += {addition}")
        print(f"Dashboard: {profile.dashboard_url}")


COMMANDS = (InstallCommand, ExtractCommand, PlatformCommand)


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser."""
    parser = argparse.ArgumentParser(
        prog='logviewer',
        description='Provision a local Elasticsearch and Kibana stack'
    )
    subparsers = parser.add_subparsers(dest='command', help='Available commands')
    for command in COMMANDS:
        command.add_parser(subparsers)
    return parser


def main(args: Optional[List[str]] = None) -> None:
    """
    Main entry point for the CLI.

    Args:
        args: Command line arguments (uses sys.argv if None)
    """
    configure_logging()
    parser = create_parser()

    if args is None:
        args = sys.argv[1:]

    if not args:
        parser.print_help()
        sys.exit(ExitCodes.OK)

    parsed_args = parser.parse_args(args)
    if hasattr(parsed_args, 'func'):
        parsed_args.func(parsed_args)
    else:
        parser.print_help()
        sys.exit(ExitCodes.OK)


if __name__ == '__main__':
    main()
