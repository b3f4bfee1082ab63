"""
Command-line interface for capbridge.

This module provides the `capb` CLI tool for generating and building native
capability bridges.
"""

import argparse
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from capbridge import __version__
from capbridge.build import BuildOrchestrator
from capbridge.cli_utils import ErrorFormatter, PathValidator, setup_logging
from capbridge.config import TargetResolver


@dataclass
class BuildArgs:
    """Arguments for the build command."""

    project_dir: Path
    modules: List[str] = field(default_factory=list)
    jobs: Optional[int] = None
    out_dir: Optional[Path] = None
    json_output: bool = False
    verbose: bool = False


@dataclass
class GenerateArgs:
    """Arguments for the generate command."""

    project_dir: Path
    modules: List[str] = field(default_factory=list)
    out_dir: Optional[Path] = None
    verbose: bool = False


@dataclass
class TargetArgs:
    """Arguments for the target command."""

    json_output: bool = False


def build_command(args: BuildArgs) -> None:
    """Generate, compile and link every bridge module.

    Examples:
        capb build                     # Build all modules in the current project
        capb build examples/demo       # Build a specific project
        capb build -m clipboard        # Build one module
        capb build -j 4 --json         # Four parallel jobs, JSON report
    """
    if not args.json_output:
        print(f"capbridge Build System v{__version__}")
        print()

    try:
        orchestrator = BuildOrchestrator(jobs=args.jobs, verbose=args.verbose and not args.json_output)

        if not args.json_output:
            platform = orchestrator.context.platform.value
            if args.verbose:
                print(f"Building project: {args.project_dir}")
                print(f"Target: {platform}")
                print()
            else:
                print(f"Building for {platform}...")

        result = orchestrator.build(
            project_dir=args.project_dir,
            modules=args.modules or None,
            out_dir=args.out_dir,
        )

        if args.json_output:
            print(json.dumps(result.to_dict(), indent=2))
            sys.exit(0 if result.success else 1)

        if result.success:
            ErrorFormatter.print_success("Build successful!")
            print()
            for artifact in result.artifacts:
                print(f"  {artifact.module}: {artifact.path} ({len(artifact.exported_symbols)} symbols)")
            if result.link_file:
                print(f"Link plans: {result.link_file}")
            else:
                print(result.message)
            print(f"Build time: {result.build_time:.2f}s")
            sys.exit(0)
        else:
            if result.error is not None:
                ErrorFormatter.print_build_error("Build failed!", result.error)
            else:
                ErrorFormatter.print_error("Build failed!", result.message)
            sys.exit(1)

    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def generate_command(args: GenerateArgs) -> None:
    """Generate bridge sources without compiling.

    Examples:
        capb generate                  # Generate for every module
        capb generate -m biometric     # Generate one module
    """
    try:
        orchestrator = BuildOrchestrator(verbose=args.verbose)
        result = orchestrator.generate(
            project_dir=args.project_dir,
            modules=args.modules or None,
            out_dir=args.out_dir,
        )

        if result.success:
            ErrorFormatter.print_success(result.message)
            for module, files in result.files.items():
                print(f"  {module} [{result.hashes[module][:12]}]")
                for path in files:
                    print(f"    {path}")
            sys.exit(0)
        else:
            if result.error is not None:
                ErrorFormatter.print_build_error("Generation failed!", result.error)
            else:
                ErrorFormatter.print_error("Generation failed!", result.message)
            sys.exit(1)

    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def target_command(args: TargetArgs) -> None:
    """Print the resolved build target.

    Examples:
        capb target                    # Human-readable
        capb target --json             # Machine-readable
    """
    context = TargetResolver.build_context()
    info = context.to_dict()
    info["requires_bridge"] = context.platform.requires_bridge

    if args.json_output:
        print(json.dumps(info, indent=2))
    else:
        for key, value in info.items():
            print(f"{key:<16} {value}")
    sys.exit(0)


def _add_project_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "project_dir",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "-m",
        "--module",
        dest="modules",
        action="append",
        default=[],
        help="Module to process (repeatable; default: all modules in capbridge.ini)",
    )
    parser.add_argument(
        "-o",
        "--out-dir",
        type=Path,
        default=None,
        help="Build output directory (default: <project>/.capbridge/build)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )


def main() -> None:
    """capbridge - Native capability bridge builder."""
    parser = argparse.ArgumentParser(
        prog="capb",
        description="capbridge - Native capability bridge builder",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"capb {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Build command
    build_parser = subparsers.add_parser(
        "build",
        help="Generate, compile and link bridge modules",
    )
    _add_project_arguments(build_parser)
    build_parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Parallel module builds (default: logical CPU count)",
    )
    build_parser.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Print the build result as JSON",
    )

    # Generate command
    generate_parser = subparsers.add_parser(
        "generate",
        help="Generate bridge sources without compiling",
    )
    _add_project_arguments(generate_parser)

    # Target command
    target_parser = subparsers.add_parser(
        "target",
        help="Show the resolved build target",
    )
    target_parser.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Print the target as JSON",
    )

    # Parse arguments
    parsed_args = parser.parse_args()

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    setup_logging(getattr(parsed_args, "verbose", False))

    # Validate project directory exists
    if hasattr(parsed_args, "project_dir"):
        PathValidator.validate_project_dir(parsed_args.project_dir)

    # Execute command
    if parsed_args.command == "build":
        build_command(
            BuildArgs(
                project_dir=parsed_args.project_dir,
                modules=parsed_args.modules,
                jobs=parsed_args.jobs,
                out_dir=parsed_args.out_dir,
                json_output=parsed_args.json_output,
                verbose=parsed_args.verbose,
            )
        )
    elif parsed_args.command == "generate":
        generate_command(
            GenerateArgs(
                project_dir=parsed_args.project_dir,
                modules=parsed_args.modules,
                out_dir=parsed_args.out_dir,
                verbose=parsed_args.verbose,
            )
        )
    elif parsed_args.command == "target":
        target_command(TargetArgs(json_output=parsed_args.json_output))


if __name__ == "__main__":
    main()
