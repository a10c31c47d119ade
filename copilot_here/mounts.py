# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Host directory mounts for the agent container.

Mounts come from three places (global config, local config, command line)
and are merged additively; when two mounts target the same container
path the later one wins.  Host paths are resolved the way a shell would
see them: ``~`` is expanded, relative paths are anchored at the current
directory, and symlinks are followed.  The in-container path mirrors the
host layout under ``/home/appuser`` for anything inside the user's home.

Before a session, mounts of missing paths are reported and mounts of
sensitive system paths (``/``, ``/etc``, ``/root``, ``~/.ssh``) are
skipped unless the user confirms them.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath


logger = logging.getLogger(__name__)

#: Home directory of the unprivileged user inside the container images.
CONTAINER_HOME = "/home/appuser"

#: Host paths that are never mounted without explicit confirmation.  Entries
#: other than ``/`` also cover everything below them.
SENSITIVE_PATHS = ("/", "/etc", "/root", "~/.ssh")


class MountSource(Enum):
    """Where a mount was configured."""

    GLOBAL = "global"
    LOCAL = "local"
    COMMAND_LINE = "command_line"


def resolve_host_path(path: str, user_home: Path) -> Path:
    """Resolve a configured mount path to an absolute host path.

    Args:
        path: Path as written in config or on the command line.
        user_home: The user's home directory (``~`` expansion target).

    Returns:
        Absolute path with symlinks followed where the path exists.
    """
    if path == "~" or path.startswith("~/"):
        path = str(user_home) + path[1:]
    absolute = Path(os.path.abspath(path))
    if absolute.exists():
        resolved = absolute.resolve()
        if resolved != absolute:
            logger.debug("Following symlink: %s -> %s", absolute, resolved)
        return resolved
    return absolute


def container_path_for(host_path: Path, user_home: Path) -> str:
    """Derive the in-container path for *host_path*.

    Paths under *user_home* map below :data:`CONTAINER_HOME`; anything
    else keeps its absolute host path.
    """
    try:
        relative = host_path.relative_to(user_home)
    except ValueError:
        return host_path.as_posix()
    if relative == Path("."):
        return CONTAINER_HOME
    return str(PurePosixPath(CONTAINER_HOME, *relative.parts))


@dataclass(frozen=True)
class MountSpec:
    """A single extra mount.

    Attributes:
        host_path: Path as configured (may contain ``~`` or be relative).
        is_read_write: Mount read-write instead of read-only.
        source: Which config layer the mount came from.
        container_path: Explicit in-container path, or None to derive it.
    """

    host_path: str
    is_read_write: bool = False
    source: MountSource = MountSource.COMMAND_LINE
    container_path: str | None = None

    @classmethod
    def parse(
        cls, entry: str, source: MountSource = MountSource.COMMAND_LINE
    ) -> MountSpec:
        """Parse a ``path[:ro|:rw]`` config entry.

        The suffix is matched case-insensitively; without a suffix the
        mount is read-only.
        """
        entry = entry.strip()
        lowered = entry.lower()
        if lowered.endswith(":rw"):
            return cls(entry[:-3], is_read_write=True, source=source)
        if lowered.endswith(":ro"):
            return cls(entry[:-3], is_read_write=False, source=source)
        return cls(entry, is_read_write=False, source=source)

    @property
    def mode(self) -> str:
        """Compose volume mode suffix (``rw`` or ``ro``)."""
        return "rw" if self.is_read_write else "ro"

    def resolve(self, user_home: Path) -> Path:
        """Return the absolute host path for this mount."""
        return resolve_host_path(self.host_path, user_home)

    def target(self, user_home: Path) -> str:
        """Return the in-container path for this mount."""
        if self.container_path:
            return self.container_path
        return container_path_for(self.resolve(user_home), user_home)

    def to_volume(self, user_home: Path) -> str:
        """Return the ``host:container:mode`` volume string."""
        return f"{self.resolve(user_home)}:{self.target(user_home)}:{self.mode}"


def merge_mounts(
    mounts: Sequence[MountSpec], user_home: Path
) -> list[MountSpec]:
    """Drop mounts that target an already used container path.

    Compose rejects duplicate mount points.  *mounts* is ordered from
    lowest to highest priority (global, local, command line); for each
    container path the highest-priority entry wins and keeps the position
    of the first one.
    """
    merged: dict[str, MountSpec] = {}
    for mount in mounts:
        target = mount.target(user_home)
        if target in merged:
            logger.debug(
                "Mount %s overrides %s for %s",
                mount.host_path,
                merged[target].host_path,
                target,
            )
        merged[target] = mount
    return list(merged.values())


def sensitive_path_for(host_path: Path, user_home: Path) -> str | None:
    """Return the entry of :data:`SENSITIVE_PATHS` that covers *host_path*.

    Matching is case-insensitive.  ``/`` only matches the root itself.
    """
    candidate = host_path.as_posix().lower()
    for entry in SENSITIVE_PATHS:
        expanded = entry.replace("~", user_home.as_posix(), 1).lower()
        if candidate == expanded:
            return entry
        if expanded != "/" and candidate.startswith(expanded + "/"):
            return entry
    return None


def validate_mounts(
    mounts: Sequence[MountSpec],
    user_home: Path,
    confirm: Callable[[Path], bool] | None = None,
) -> list[MountSpec]:
    """Check mounts before they are handed to the container.

    Missing host paths are kept with a warning; the runtime would create
    them as empty directories.  Mounts of sensitive paths (see
    :data:`SENSITIVE_PATHS`) are dropped unless *confirm* approves them.

    Args:
        mounts: Mounts in priority order.
        user_home: The user's home directory.
        confirm: Asked with the resolved path of each sensitive mount;
            None means no one can be asked and the mount is skipped.

    Returns:
        The mounts to use, in input order.
    """
    kept: list[MountSpec] = []
    for mount in mounts:
        host_path = mount.resolve(user_home)
        if not host_path.exists():
            logger.warning("Mount path does not exist: %s", host_path)
        if sensitive_path_for(host_path, user_home) is not None:
            if confirm is None or not confirm(host_path):
                logger.warning(
                    "Skipping mount of sensitive path: %s", host_path
                )
                continue
        kept.append(mount)
    return kept
