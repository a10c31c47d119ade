# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""GitHub repository detection from the local git remote.

Used to fill the ``{{GITHUB_OWNER}}`` / ``{{GITHUB_REPO}}`` placeholders
of the network policy so a single rule file can allow "this repo" without
hard-coding it.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path


logger = logging.getLogger(__name__)

_GITHUB_PREFIXES = (
    "git@github.com:",
    "ssh://git@github.com/",
    "https://github.com/",
    "http://github.com/",
)


@dataclass(frozen=True)
class GitHubRepo:
    """Owner and name of a GitHub repository."""

    owner: str
    repo: str


def parse_github_url(url: str) -> GitHubRepo | None:
    """Parse owner/repo from a GitHub remote URL.

    Supported shapes::

        git@github.com:owner/repo.git
        ssh://git@github.com/owner/repo.git
        https://github.com/owner/repo.git
        https://github.com/owner/repo

    Args:
        url: Remote URL as printed by ``git remote get-url``.

    Returns:
        Parsed repository, or None for non-GitHub or malformed URLs.
    """
    url = url.strip()
    lowered = url.lower()
    for prefix in _GITHUB_PREFIXES:
        if lowered.startswith(prefix):
            path = url[len(prefix) :]
            break
    else:
        return None

    if path.lower().endswith(".git"):
        path = path[:-4]

    parts = path.split("/")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None
    return GitHubRepo(owner=parts[0], repo=parts[1])


def get_github_repo(cwd: Path | None = None) -> GitHubRepo | None:
    """Resolve the GitHub repository of the ``origin`` remote.

    Args:
        cwd: Working tree to inspect. Defaults to the process cwd.

    Returns:
        Parsed repository, or None if git is missing, the directory is not
        a repository, or ``origin`` does not point at GitHub.
    """
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("Cannot query git remote: %s", e)
        return None

    if result.returncode != 0 or not result.stdout.strip():
        logger.debug("No origin remote configured")
        return None
    return parse_github_url(result.stdout)
