"""
Command line entry point.

``releasekit [global options] COMMAND [options]``; each COMMAND lives in
``releasekit.cli.commands.<name>`` and exposes ``run(args) -> int``.
"""

import argparse
import importlib
import logging
import sys
from pathlib import Path
from typing import List, Optional

from releasekit.core.exceptions import ConfigError

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("releasekit")
except PackageNotFoundError:
    __version__ = "0.1.0"

logger = logging.getLogger(__name__)

# sysexits.h EX_CONFIG
EXIT_CONFIG_ERROR = 78
EXIT_INTERRUPTED = 130

COMMANDS = {
    name: f"releasekit.cli.commands.{name}"
    for name in ("run", "targets", "verify", "cleanup")
}


class CLI:
    """Argument parsing and command dispatch."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="releasekit",
            description="Build, verify and package one project for many targets.",
            epilog='Run "releasekit COMMAND --help" for the options of a command',
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )

        parser.add_argument(
            "--version", action="version", version=f"ReleaseKit {__version__}"
        )
        parser.add_argument(
            "-v", "--verbose", action="store_true", help="Debug logging"
        )
        parser.add_argument(
            "--quiet",
            "-q",
            action="store_true",
            help="Only log errors",
        )
        parser.add_argument(
            "--config",
            type=Path,
            metavar="PATH",
            help="Release configuration (default: releasekit.yaml in the project root)",
        )
        parser.add_argument(
            "--project-root",
            type=Path,
            metavar="PATH",
            default=None,
            help="Directory builds run in (default: the config file's directory)",
        )

        commands = parser.add_subparsers(dest="command", metavar="COMMAND")
        for name in COMMANDS:
            getattr(self, f"_add_{name}_command")(commands)

        return parser

    def _add_run_command(self, subparsers):
        parser = subparsers.add_parser(
            "run",
            help="Build, verify and package every target",
            description="Build, verify and package the target matrix",
        )
        parser.add_argument(
            "--target",
            action="append",
            metavar="TRIPLE",
            help="Only build this target (can be used multiple times)",
        )
        parser.add_argument(
            "--concurrency",
            "-j",
            type=int,
            metavar="N",
            help="Maximum targets built at once (default: CPU count)",
        )
        parser.add_argument(
            "--timeout",
            type=float,
            metavar="SECONDS",
            help="Per-target build timeout (default: none)",
        )
        parser.add_argument(
            "--output-dir",
            type=Path,
            metavar="DIR",
            help="Artifact output directory (default: from config, or dist)",
        )
        parser.add_argument(
            "--cache-dir",
            type=Path,
            metavar="DIR",
            help="Toolchain cache directory (default: ~/.releasekit)",
        )
        parser.add_argument(
            "--all-hosts",
            action="store_true",
            help="Build entries declared for other host platforms too",
        )

    def _add_targets_command(self, subparsers):
        parser = subparsers.add_parser(
            "targets",
            help="List targets",
            description="List the configured target matrix or the known triples",
        )
        parser.add_argument(
            "--known",
            action="store_true",
            help="List built-in known triples instead of the configured matrix",
        )

    def _add_verify_command(self, subparsers):
        parser = subparsers.add_parser(
            "verify",
            help="Check a binary's architecture",
            description="Check that a binary was built for a target triple",
        )
        parser.add_argument("binary", type=Path, help="Binary to inspect")
        parser.add_argument(
            "--target",
            required=True,
            metavar="TRIPLE",
            help="Expected target triple",
        )

    def _add_cleanup_command(self, subparsers):
        parser = subparsers.add_parser(
            "cleanup",
            help="Clean up the toolchain cache",
            description="Remove stale cache locks and, optionally, toolchains",
        )
        parser.add_argument(
            "--max-lock-age",
            type=float,
            default=24.0,
            metavar="HOURS",
            help="Remove lock files older than this (default: 24)",
        )
        parser.add_argument(
            "--toolchains",
            action="store_true",
            help="Also remove all cached toolchains",
        )
        parser.add_argument(
            "--cache-dir",
            type=Path,
            metavar="DIR",
            help="Toolchain cache directory (default: ~/.releasekit)",
        )

    def parse_args(self, args: Optional[List[str]] = None):
        return self.parser.parse_args(args)

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Parse args, execute the selected command and map errors to exit codes.

        Returns:
            The command's own exit code (for ``run``, the number of failed
            targets), EXIT_CONFIG_ERROR for invalid configuration,
            EXIT_INTERRUPTED on Ctrl-C and 1 for anything unexpected
        """
        options = self.parse_args(args)
        self._configure_logging(options)

        if options.command is None:
            self.parser.print_help()
            return 1

        try:
            return self._dispatch_command(options)
        except ConfigError as e:
            logger.error(f"Invalid configuration: {e}")
            return EXIT_CONFIG_ERROR
        except KeyboardInterrupt:
            logger.warning("Interrupted")
            return EXIT_INTERRUPTED
        except Exception as e:
            logger.error(f"{options.command} failed: {e}", exc_info=options.verbose)
            return 1

    def _configure_logging(self, args):
        if args.verbose:
            level = logging.DEBUG
            fmt = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        elif args.quiet:
            level = logging.ERROR
            fmt = "%(levelname)s: %(message)s"
        else:
            level = logging.INFO
            fmt = "%(message)s"
        logging.basicConfig(level=level, format=fmt, force=True)

    def _dispatch_command(self, args) -> int:
        """Import ``releasekit.cli.commands.<command>`` and call its run(args)."""
        module_name = COMMANDS.get(args.command)
        if module_name is None:
            logger.error(f"Unknown command: {args.command}")
            return 1
        return importlib.import_module(module_name).run(args)


def main():
    sys.exit(CLI().run())


if __name__ == "__main__":
    main()
