# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Command-line entry point for copilot-here.

Provides subcommands:

- ``copilot-here run``: Run the Copilot CLI in an Airlock session
- ``copilot-here cleanup``: Remove resources left by crashed sessions
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys
from pathlib import Path

from copilot_here.airlock.compose import build_agent_invocation
from copilot_here.airlock.orphans import reclaim_orphans
from copilot_here.airlock.runner import AirlockRunner
from copilot_here.airlock.runtime import (
    ContainerRuntime,
    RuntimeNotFoundError,
    detect_runtime,
)
from copilot_here.config import (
    AppEnvironment,
    AppPaths,
    ConfigError,
    HereConfig,
)
from copilot_here.logging import configure_logging, is_debug_enabled
from copilot_here.mounts import MountSource, MountSpec


logger = logging.getLogger(__name__)

# Known subcommand names.
_SUBCOMMANDS = frozenset({"run", "cleanup"})

_USAGE = """\
usage: copilot-here <command> [args]

commands:
  run       Run the Copilot CLI behind the Airlock proxy
  cleanup   Remove containers and networks left by crashed sessions

Arguments after '--' are passed to the Copilot CLI.
Set COPILOT_HERE_DEBUG=1 for debug output.\
"""


# ── Terminal colors ─────────────────────────────────────────────────


def _use_color() -> bool:
    """Determine whether to use ANSI color codes in output.

    Returns True when stdout is a TTY and the ``NO_COLOR`` environment
    variable is not set.  ``TERM=dumb`` also disables color.
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("TERM") == "dumb":
        return False
    return sys.stdout.isatty()


class _Style:
    """ANSI escape helpers.  All methods return plain text when color is off."""

    def __init__(self, color: bool) -> None:
        self._on = color

    def _wrap(self, code: str, text: str) -> str:
        if not self._on:
            return text
        return f"\033[{code}m{text}\033[0m"

    def bold(self, text: str) -> str:
        return self._wrap("1", text)

    def green(self, text: str) -> str:
        return self._wrap("32", text)

    def red(self, text: str) -> str:
        return self._wrap("31", text)

    def dim(self, text: str) -> str:
        return self._wrap("2", text)


def _split_agent_args(argv: list[str]) -> tuple[list[str], list[str]]:
    """Split *argv* at the first ``--`` into own and agent arguments."""
    if "--" in argv:
        idx = argv.index("--")
        return argv[:idx], argv[idx + 1 :]
    return argv, []


def _resolve_runtime(preference: str) -> ContainerRuntime | None:
    try:
        return detect_runtime(preference)
    except (RuntimeNotFoundError, ValueError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return None


def _confirm_sensitive_mount(path: Path) -> bool:
    """Ask on the terminal whether a sensitive host path may be mounted."""
    print(f"⚠️  Mounting sensitive system path: {path}", file=sys.stderr)
    try:
        answer = input("Mount it anyway? [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


# ── run subcommand ──────────────────────────────────────────────────


def _run_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="copilot-here run",
        description="Run the Copilot CLI behind the Airlock proxy.",
        epilog="Arguments after '--' are passed to the Copilot CLI.",
    )
    parser.add_argument(
        "--yolo",
        action="store_true",
        help="Allow all tools and paths without confirmation",
    )
    parser.add_argument(
        "--image-tag",
        default=None,
        metavar="TAG",
        help="App image tag (default: from config, else 'latest')",
    )
    parser.add_argument(
        "--mount",
        action="append",
        default=[],
        metavar="PATH",
        help="Mount PATH read-only (repeatable; ':rw' suffix allowed)",
    )
    parser.add_argument(
        "--mount-rw",
        action="append",
        default=[],
        metavar="PATH",
        help="Mount PATH read-write (repeatable)",
    )
    parser.add_argument(
        "--runtime",
        choices=["auto", "docker", "podman"],
        default=None,
        help="Container runtime (default: from config, else auto)",
    )
    return parser


def cmd_run(argv: list[str]) -> int:
    """Run one Airlock session.

    Args:
        argv: Subcommand arguments; anything after ``--`` goes to the
            agent.

    Returns:
        The agent's exit code, or 1 if the session could not start.
    """
    own, agent_args = _split_agent_args(argv)
    args = _run_parser().parse_args(own)

    paths = AppPaths.resolve()
    try:
        config = HereConfig.load(paths)
    except ConfigError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    runtime = _resolve_runtime(args.runtime or config.runtime)
    if runtime is None:
        return 1

    mounts = [MountSpec.parse(p, MountSource.COMMAND_LINE) for p in args.mount]
    mounts += [
        dataclasses.replace(
            MountSpec.parse(p, MountSource.COMMAND_LINE), is_read_write=True
        )
        for p in args.mount_rw
    ]

    runner = AirlockRunner(
        config,
        runtime=runtime,
        environment=AppEnvironment.resolve(),
        logger=logging.getLogger("copilot_here.airlock"),
        confirm_mount=(
            _confirm_sensitive_mount if sys.stdin.isatty() else None
        ),
    )
    return runner.run(
        image_tag=args.image_tag,
        is_yolo=args.yolo,
        mounts=mounts,
        agent_args=build_agent_invocation(args.yolo, agent_args),
    )


# ── cleanup subcommand ──────────────────────────────────────────────


def cmd_cleanup(argv: list[str]) -> int:
    """Remove orphaned Airlock proxies and networks.

    Args:
        argv: Optional ``--runtime`` selection.

    Returns:
        Exit code (0 on success, 1 if no runtime or a removal failed).
    """
    parser = argparse.ArgumentParser(
        prog="copilot-here cleanup",
        description="Remove resources left by crashed Airlock sessions.",
    )
    parser.add_argument(
        "--runtime",
        choices=["auto", "docker", "podman"],
        default="auto",
        help="Container runtime (default: auto)",
    )
    args = parser.parse_args(argv)

    runtime = _resolve_runtime(args.runtime)
    if runtime is None:
        return 1

    s = _Style(_use_color())
    report = reclaim_orphans(runtime)
    for name in report.containers:
        print(f"  {s.green('removed')} container {name}")
    for name in report.networks:
        print(f"  {s.green('removed')} network {name}")
    for name in report.failures:
        print(f"  {s.red('failed')}  {name}")
    if not report.removed and not report.failures:
        print(f"  {s.dim('Nothing to clean up.')}")
    return 1 if report.failures else 0


# ── CLI plumbing ────────────────────────────────────────────────────


_DISPATCH: dict[str, str] = {
    "run": "cmd_run",
    "cleanup": "cmd_cleanup",
}


def cli() -> None:
    """Entry point for ``copilot-here``.

    Logging is configured once here; ``COPILOT_HERE_DEBUG`` selects debug
    output for the whole process.
    """
    argv = sys.argv[1:]

    if not argv or argv[0] in ("-h", "--help"):
        print(_USAGE)
        sys.exit(0)

    if argv[0] not in _SUBCOMMANDS:
        print(f"copilot-here: unknown command '{argv[0]}'", file=sys.stderr)
        print(_USAGE, file=sys.stderr)
        sys.exit(2)

    configure_logging(debug=is_debug_enabled())

    # Look up handler by name so tests can mock individual commands.
    import copilot_here.cli as _self

    handler = getattr(_self, _DISPATCH[argv[0]])
    sys.exit(handler(argv[1:]))
