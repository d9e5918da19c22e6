#!/usr/bin/env python3
"""
Command Line Interface for Mini-Runc.

Commands:
    mini-runc run <image> <sha256> <command>   - Run a command from an image archive
    mini-runc digest <image>                   - Print an archive's content digest
    mini-runc rm <name>                        - Tear down a reentrant container
    mini-runc version                          - Version information

Examples:
    mini-runc run alpine.tar.gz c0d141e2... 'cat /etc/alpine-release'
    mini-runc -v run --reentrant --name test2 alpine.tar.gz c0d141e2... 'echo foo'
    mini-runc run --output out.tar.gz alpine.tar.gz skip-sha256-validation 'touch /x'
"""

import argparse
import json
import platform
import sys
from typing import List, Optional

from mini_runc import __version__
from mini_runc.config import RunConfig
from mini_runc.container import Container, teardown
from mini_runc.digest import SKIP_VALIDATION, tar_sha256
from mini_runc.exceptions import MiniRuncError, RuntimeCommandError
from mini_runc.logger import configure_logging
from mini_runc.runtime import RuntimeClient
from mini_runc.utils import DEFAULT_RUNTIME, MINI_RUNC_ROOT


def _add_verbose(parser: argparse.ArgumentParser, dest: str = "verbose") -> None:
    parser.add_argument(
        "--verbose",
        "-v",
        dest=dest,
        action="count",
        default=0,
        help="Show verbose debug information (repeat for more)",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser with all commands and options."""
    parser = argparse.ArgumentParser(
        prog="mini-runc",
        description="Mini-Runc: run commands from image archives under an OCI runtime",
    )

    # Global options
    _add_verbose(parser)
    parser.add_argument("--debug", action="store_true", help="Show tracebacks on errors")
    parser.add_argument(
        "--runtime",
        default=DEFAULT_RUNTIME,
        help=f"Container runtime binary (default: {DEFAULT_RUNTIME})",
    )
    parser.add_argument(
        "--root",
        default=MINI_RUNC_ROOT,
        help=f"Directory for reentrant containers (default: {MINI_RUNC_ROOT})",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Run a command from an image archive")
    _add_verbose(run_parser, dest="run_verbose")
    run_parser.add_argument("image", help="Image archive (.tar.gz)")
    run_parser.add_argument(
        "sha256",
        help=f"Expected sha256 of the decompressed archive, or {SKIP_VALIDATION}",
    )
    run_parser.add_argument("cmd", metavar="command", help="Shell command to run")
    run_parser.add_argument("--name", help="Container name (random if omitted)")
    run_parser.add_argument(
        "--keep", action="store_true", help="Keep temporary working directory"
    )
    run_parser.add_argument(
        "--host-network", action="store_true", help="Allow host network access"
    )
    run_parser.add_argument(
        "--bind-local-dir",
        action="store_true",
        help="Bind current working directory to /local-dir",
    )
    run_parser.add_argument(
        "--reentrant",
        action="store_true",
        help="Keep container filesystem intact and allow multiple runs (needs --name)",
    )
    run_parser.add_argument(
        "--interactive", "-i", action="store_true", help="Attach stdin and a terminal"
    )
    run_parser.add_argument("--output", "-o", help="Output image after execution")
    run_parser.add_argument(
        "--tag", action="append", default=[], help="Repo tag for the output image"
    )
    run_parser.add_argument(
        "--arch", help="Architecture recorded in the output image (default: host)"
    )
    run_parser.add_argument(
        "--whiteouts",
        action="store_true",
        help="Honour .wh.* deletion markers when applying layers",
    )
    run_parser.add_argument(
        "--template", help="Runtime config.json template (default: built-in)"
    )

    # digest command
    digest_parser = subparsers.add_parser(
        "digest", help="Print the sha256 of an archive's decompressed content"
    )
    digest_parser.add_argument("image", help="Archive (.tar.gz)")

    # rm command
    rm_parser = subparsers.add_parser(
        "rm", help="Delete a reentrant container and its working directory"
    )
    rm_parser.add_argument("name", help="Container name")

    # version command
    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )

    return parser


def verbosity(args: argparse.Namespace) -> int:
    """Total -v count, given before and after the subcommand."""
    return args.verbose + getattr(args, "run_verbose", 0)


def build_run_config(args: argparse.Namespace) -> RunConfig:
    """Translate parsed `run` arguments into a RunConfig."""
    return RunConfig(
        image=args.image,
        expected_digest=args.sha256,
        command=args.cmd,
        name=args.name,
        keep=args.keep,
        reentrant=args.reentrant,
        state_root=args.root,
        host_network=args.host_network,
        bind_local_dir=args.bind_local_dir,
        interactive=args.interactive,
        template=args.template,
        whiteouts=args.whiteouts,
        output=args.output,
        architecture=args.arch,
        tags=tuple(args.tag),
        runtime=args.runtime,
    )


def cmd_run(args: argparse.Namespace) -> int:
    """Handle run command."""
    container = Container(build_run_config(args))
    return container.run()


def cmd_digest(args: argparse.Namespace) -> int:
    """Handle digest command."""
    print(tar_sha256(args.image))
    return 0


def cmd_rm(args: argparse.Namespace) -> int:
    """Handle rm command."""
    removed = teardown(args.name, RuntimeClient(args.runtime), state_root=args.root)
    if not removed:
        print(f"Error: No such container: {args.name}", file=sys.stderr)
        return 1
    print(args.name)
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    """Handle version command."""
    version_info = {
        "version": __version__,
        "python": platform.python_version(),
        "platform": f"{platform.system()}/{platform.machine()}",
    }

    if args.format == "json":
        print(json.dumps(version_info, indent=2))
    else:
        print(f"Mini-Runc version {__version__}")
        print(f"Python version {version_info['python']}")
        print(f"OS/Arch: {version_info['platform']}")

    return 0


# =============================================================================
# Main Entry Point
# =============================================================================


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(verbosity(args))

    handlers = {
        "run": cmd_run,
        "digest": cmd_digest,
        "rm": cmd_rm,
        "version": cmd_version,
    }

    handler = handlers.get(args.command)
    if handler:
        try:
            return handler(args)
        except KeyboardInterrupt:
            print("\nInterrupted", file=sys.stderr)
            return 130
        except RuntimeCommandError as e:
            if args.debug:
                raise
            print(f"Error: {e}", file=sys.stderr)
            return e.returncode if e.returncode and e.returncode > 0 else 1
        except MiniRuncError as e:
            if args.debug:
                raise
            print(f"Error: {e}", file=sys.stderr)
            return 1
    else:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
