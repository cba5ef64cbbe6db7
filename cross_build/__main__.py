#!/usr/bin/env python3
"""
Cross-compilation build CLI.

Usage:
    python -m cross_build [--targets FILE] [--manifest-path PATH] [--driver NAME]
                          <command> [options]

Commands:
    build-linux       Build for linux
    build-linux-musl  Build for linux (static)
    build <target>    Build any registered target by name
    build-all         Build every registered target concurrently
    list              List registered targets
    help              Show this help

Examples:
    python -m cross_build build-linux
    python -m cross_build build linux-musl --debug
    python -m cross_build --targets targets.yaml build-all
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Callable

# Ensure cross_build is importable
CROSS_BUILD_DIR = Path(__file__).parent
if str(CROSS_BUILD_DIR.parent) not in sys.path:
    sys.path.insert(0, str(CROSS_BUILD_DIR.parent))

from cross_build.driver import (  # noqa: E402
    CANCELLED_EXIT_CODE,
    DEFAULT_DRIVER,
    BuildProfile,
    InvocationDriver,
    build_many,
    shell_exit_code,
    summarize,
)
from cross_build.registry import TargetRegistry, TargetSpec, load_registry  # noqa: E402
from cross_build.shared.errors import (  # noqa: E402
    BuildCancelledError,
    CrossBuildError,
)

Handler = Callable[[TargetRegistry, InvocationDriver, list[str]], int]


def parse_profile(
    prog: str, description: str, args: list[str], *, with_target: bool = False
) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog=prog, description=description)
    if with_target:
        parser.add_argument("target", help="Logical target name (see 'list')")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Build without release optimizations",
    )
    return parser.parse_args(args)


def run_build(driver: InvocationDriver, spec: TargetSpec, profile: BuildProfile) -> int:
    """Build one target and map the outcome to an exit code."""
    try:
        result = driver.build(spec, profile)
    except BuildCancelledError:
        print("\n\nBuild interrupted.")
        return CANCELLED_EXIT_CODE
    except CrossBuildError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    status = "[OK]" if result.success else "[FAIL]"
    print(
        f"\n{status} {spec.name} ({spec.platform_triple}) "
        f"exited with {result.exit_code} after {result.duration:.2f}s"
    )
    return shell_exit_code(result.exit_code)


def make_target_command(spec: TargetSpec) -> Handler:
    """Create the handler for a command bound to a target in the target file."""

    def handler(registry: TargetRegistry, driver: InvocationDriver, args: list[str]) -> int:
        parsed = parse_profile(spec.command or spec.name, spec.description, args)
        profile = BuildProfile.DEBUG if parsed.debug else BuildProfile.RELEASE
        return run_build(driver, registry.resolve(spec.name), profile)

    return handler


def cmd_build(registry: TargetRegistry, driver: InvocationDriver, args: list[str]) -> int:
    """Build a registered target by name."""
    parsed = parse_profile("build", "Build a registered target", args, with_target=True)
    profile = BuildProfile.DEBUG if parsed.debug else BuildProfile.RELEASE
    try:
        spec = registry.resolve(parsed.target)
    except CrossBuildError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return run_build(driver, spec, profile)


def cmd_build_all(registry: TargetRegistry, driver: InvocationDriver, args: list[str]) -> int:
    """Build every registered target concurrently."""
    parsed = parse_profile("build-all", "Build every registered target", args)
    profile = BuildProfile.DEBUG if parsed.debug else BuildProfile.RELEASE
    outcomes = build_many(driver, registry, profile)
    return summarize(outcomes)


def cmd_list(registry: TargetRegistry, driver: InvocationDriver, args: list[str]) -> int:
    """List registered targets."""
    argparse.ArgumentParser(prog="list", description="List registered targets").parse_args(args)
    print("Registered targets:")
    for spec in registry:
        print(
            f"  {spec.name:16} {spec.platform_triple:28} "
            f"{spec.linker_binary} ({spec.link_mode.value})"
        )
    return 0


COMMANDS: dict[str, tuple[Handler, str]] = {
    "build": (cmd_build, "Build a registered target by name"),
    "build-all": (cmd_build_all, "Build every registered target concurrently"),
    "list": (cmd_list, "List registered targets"),
}


def available_commands(registry: TargetRegistry | None) -> dict[str, tuple[Handler, str]]:
    """Target-bound commands first, then the built-in ones."""
    commands: dict[str, tuple[Handler, str]] = {}
    if registry is not None:
        for command, spec in registry.commands().items():
            commands[command] = (make_target_command(spec), spec.description)
    commands.update(COMMANDS)
    return commands


def print_help(registry: TargetRegistry | None) -> None:
    print(__doc__)
    print("Available commands:")
    for name, (_, desc) in available_commands(registry).items():
        print(f"  {name:18} {desc}")
    print(f"  {'help':18} Show this help")
    print("\nUse '<command> --help' for command-specific options.")


GLOBAL_OPTIONS = ("--targets", "--manifest-path", "--driver")
HELP_COMMANDS = ("help", "-h", "--help")


def split_global_options(argv: list[str]) -> tuple[dict[str, str], list[str]]:
    """Split leading ``--option value`` pairs from the command and its args."""
    options: dict[str, str] = {}
    rest = list(argv)
    while rest and rest[0].startswith("--"):
        key, sep, value = rest[0].partition("=")
        if key not in GLOBAL_OPTIONS:
            break
        if sep:
            rest = rest[1:]
        elif len(rest) > 1:
            value, rest = rest[1], rest[2:]
        else:
            raise ValueError(f"Option {key} requires a value")
        options[key] = value
    return options, rest


def main(argv: list[str] | None = None) -> int:
    try:
        options, rest = split_global_options(sys.argv[1:] if argv is None else argv)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    command = rest[0] if rest else None
    args = rest[1:]
    wants_help = command is None or command in HELP_COMMANDS
    targets_file = Path(options["--targets"]) if "--targets" in options else None

    try:
        registry = load_registry(targets_file)
    except CrossBuildError as e:
        if wants_help:
            print_help(None)
        print(f"Error: {e}", file=sys.stderr)
        return 0 if wants_help else 1

    if wants_help:
        print_help(registry)
        return 0

    commands = available_commands(registry)
    if command not in commands:
        print(f"Unknown command: {command}")
        print(f"Available commands: {', '.join([*commands, 'help'])}")
        return 1

    manifest_path = options.get("--manifest-path")
    driver = InvocationDriver(
        options.get("--driver", DEFAULT_DRIVER),
        manifest_path=Path(manifest_path) if manifest_path else None,
    )
    handler, _ = commands[command]
    try:
        return handler(registry, driver, args)
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 1


if __name__ == "__main__":
    sys.exit(main())
