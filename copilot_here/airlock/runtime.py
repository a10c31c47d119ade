# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Container runtime command wrapper.

Everything the Airlock runner does to containers goes through a
``ContainerRuntime``: compose invocations for the session itself, and
plain ``ps`` / ``rm`` / ``network`` / ``volume`` commands for teardown and
orphan reclamation.  Docker and Podman accept the same subcommands here;
only the compose entry point differs (``docker compose``,
``podman compose`` or the standalone ``podman-compose``).
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path


logger = logging.getLogger(__name__)

_SUPPORTED = ("docker", "podman")

#: Timeout for short management commands (ps, rm, network ls, ...).
_COMMAND_TIMEOUT = 60


class RuntimeNotFoundError(Exception):
    """Raised when no usable container runtime is installed."""


@dataclass(frozen=True)
class ContainerRuntime:
    """A container runtime and its compose entry point.

    Attributes:
        command: Runtime executable (``docker`` or ``podman``).
        compose: Argument prefix invoking compose, e.g.
            ``("docker", "compose")`` or ``("podman-compose",)``.
    """

    command: str
    compose: tuple[str, ...]

    def compose_args(
        self, compose_file: Path, project_name: str, *args: str
    ) -> list[str]:
        """Build a compose command line for *project_name*."""
        return [
            *self.compose,
            "-f",
            str(compose_file),
            "-p",
            project_name,
            *args,
        ]

    def capture(self, *args: str) -> str | None:
        """Run a runtime command and return its stdout.

        Returns:
            Stdout on success, None if the command failed or could not be
            started.
        """
        cmd = [self.command, *args]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=_COMMAND_TIMEOUT,
            )
        except subprocess.CalledProcessError as e:
            logger.debug(
                "Command failed (%d): %s: %s",
                e.returncode,
                " ".join(cmd),
                (e.stderr or "").strip(),
            )
            return None
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("Command could not run: %s: %s", " ".join(cmd), e)
            return None
        return result.stdout

    def run_quiet(self, *args: str) -> bool:
        """Run a runtime command, discarding output.

        Idempotent removals rely on this: removing something that does not
        exist simply returns False.

        Returns:
            True if the command exited with status 0.
        """
        return self.capture(*args) is not None

    def list_names(self, *args: str) -> list[str]:
        """Run a listing command and return its non-empty output lines."""
        output = self.capture(*args)
        if output is None:
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]

    def run_compose(
        self,
        compose_file: Path,
        project_name: str,
        args: Sequence[str],
        env: Mapping[str, str],
        *,
        interactive: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Run a compose command for a session.

        Args:
            compose_file: Generated compose file.
            project_name: Session project name.
            args: Compose subcommand and its arguments.
            env: Full environment for the child process.
            interactive: Inherit stdin/stdout/stderr instead of capturing.

        Returns:
            The completed process (stdout/stderr are None when
            *interactive*).

        Raises:
            OSError: If the compose executable cannot be started.
        """
        cmd = self.compose_args(compose_file, project_name, *args)
        logger.debug("Running: %s", " ".join(cmd))
        if interactive:
            return subprocess.run(cmd, env=dict(env), check=False)
        return subprocess.run(
            cmd, env=dict(env), capture_output=True, text=True, check=False
        )


def _is_available(cmd: list[str]) -> bool:
    try:
        result = subprocess.run(cmd, capture_output=True, timeout=10)
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0


def _podman_compose() -> tuple[str, ...]:
    """Pick the compose entry point for Podman."""
    if _is_available(["podman", "compose", "version"]):
        return ("podman", "compose")
    if shutil.which("podman-compose"):
        return ("podman-compose",)
    # podman compose may still work once a provider is installed
    return ("podman", "compose")


def detect_runtime(preference: str = "auto") -> ContainerRuntime:
    """Resolve the container runtime to use.

    Args:
        preference: ``docker``, ``podman`` or ``auto`` (docker first, then
            podman).

    Returns:
        The resolved runtime.

    Raises:
        RuntimeNotFoundError: If the requested runtime (or, for ``auto``,
            any runtime) is not on ``PATH``.
        ValueError: If *preference* is not a supported value.
    """
    preference = preference.lower()
    if preference == "auto":
        candidates: Sequence[str] = _SUPPORTED
    elif preference in _SUPPORTED:
        candidates = (preference,)
    else:
        raise ValueError(
            f"Unknown container runtime: {preference}. "
            "Supported values: auto, docker, podman"
        )

    for name in candidates:
        if shutil.which(name) is None:
            continue
        if name == "docker":
            runtime = ContainerRuntime("docker", ("docker", "compose"))
        else:
            runtime = ContainerRuntime("podman", _podman_compose())
        logger.debug(
            "Using container runtime %s (compose: %s)",
            runtime.command,
            " ".join(runtime.compose),
        )
        return runtime

    raise RuntimeNotFoundError(
        f"No container runtime found (looked for: {', '.join(candidates)})"
    )
