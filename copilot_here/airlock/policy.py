# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Network policy processing for the Airlock proxy.

The policy file (``network.json``) is owned by the user; this module never
modifies it.  Each session gets a processed copy with the repository
placeholders filled in, written below the global config directory because
Docker Desktop and Podman machines do not always share the host's temp
directory with the VM.

Policy format::

    {
      "enabled": true,
      "enable_logging": false,
      "inherit_default_rules": true,
      "mode": "enforce",
      "allowed_rules": [
        {"host": "api.github.com",
         "allowed_paths": ["/repos/{{GITHUB_OWNER}}/{{GITHUB_REPO}}/*"]}
      ]
    }
"""

from __future__ import annotations

import json
import logging
import re
import secrets
from dataclasses import dataclass
from pathlib import Path

from copilot_here.airlock.identity import utc_ticks
from copilot_here.git_info import GitHubRepo, get_github_repo


logger = logging.getLogger(__name__)

OWNER_PLACEHOLDER = "{{GITHUB_OWNER}}"
REPO_PLACEHOLDER = "{{GITHUB_REPO}}"

MODE_ENFORCE = "enforce"
MODE_MONITOR = "monitor"

#: Subdirectory of the global config dir for per-session scratch files.
TMP_DIRNAME = "tmp"

#: Subdirectory of the local config dir receiving proxy logs.
LOGS_DIRNAME = "logs"

LOGS_GITIGNORE = """\
# Ignore all log files - may contain sensitive information
*
!.gitignore
"""

# Textual markers, for policy files that are not (yet) valid JSON.
_LOGGING_MARKER = re.compile(r'"enable_logging"\s*:\s*true')
_MONITOR_MARKER = re.compile(r'"mode"\s*:\s*"monitor"')


@dataclass(frozen=True)
class NetworkRule:
    """A single allowed host.

    Attributes:
        host: Hostname (may contain wildcards understood by the proxy).
        allowed_paths: Path patterns; empty means every path.
        pattern: Alternative single pattern form used by some rule files.
    """

    host: str
    allowed_paths: tuple[str, ...] = ()
    pattern: str | None = None


@dataclass(frozen=True)
class NetworkRuleSet:
    """Typed view of ``network.json``."""

    enabled: bool = False
    mode: str = MODE_ENFORCE
    enable_logging: bool = False
    inherit_default_rules: bool = True
    rules: tuple[NetworkRule, ...] = ()

    @property
    def logging_requested(self) -> bool:
        """True when the proxy will write request logs."""
        return self.enable_logging or self.mode == MODE_MONITOR


def parse_rule_set(content: str) -> NetworkRuleSet:
    """Parse policy JSON into a :class:`NetworkRuleSet`.

    Args:
        content: Raw file content (placeholders may still be present).

    Returns:
        Parsed rule set.

    Raises:
        ValueError: If the content is not a JSON object or a rule is
            malformed.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid network policy JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Network policy must be a JSON object")

    mode = data.get("mode", MODE_ENFORCE)
    if mode not in (MODE_ENFORCE, MODE_MONITOR):
        raise ValueError(f"Unknown network policy mode: {mode!r}")

    raw_rules = data.get("allowed_rules", data.get("rules", []))
    if not isinstance(raw_rules, list):
        raise ValueError("allowed_rules must be a list")

    rules: list[NetworkRule] = []
    for entry in raw_rules:
        if not isinstance(entry, dict) or not entry.get("host"):
            raise ValueError(f"Rule without host: {entry!r}")
        rules.append(
            NetworkRule(
                host=str(entry["host"]),
                allowed_paths=tuple(entry.get("allowed_paths") or ()),
                pattern=entry.get("pattern"),
            )
        )

    return NetworkRuleSet(
        enabled=bool(data.get("enabled", False)),
        mode=mode,
        enable_logging=bool(data.get("enable_logging", False)),
        inherit_default_rules=bool(data.get("inherit_default_rules", True)),
        rules=tuple(rules),
    )


def logging_requested(content: str) -> bool:
    """Decide from raw policy content whether proxy logging is enabled.

    Parsed JSON is authoritative; malformed content falls back to looking
    for the ``"enable_logging": true`` / ``"mode": "monitor"`` markers.
    """
    try:
        return parse_rule_set(content).logging_requested
    except ValueError:
        return bool(
            _LOGGING_MARKER.search(content) or _MONITOR_MARKER.search(content)
        )


def resolve_placeholders(content: str, github: GitHubRepo | None) -> str:
    """Fill the repository placeholders; unknown repos become empty."""
    owner = github.owner if github else ""
    repo = github.repo if github else ""
    return content.replace(OWNER_PLACEHOLDER, owner).replace(
        REPO_PLACEHOLDER, repo
    )


def process_policy(
    rules_path: Path,
    global_config_dir: Path,
    github: GitHubRepo | None = None,
) -> Path | None:
    """Write a placeholder-resolved copy of the policy for this session.

    Args:
        rules_path: Active ``network.json``.
        global_config_dir: Global config dir; the copy goes to its ``tmp``
            subdirectory.
        github: Repository for the placeholders. Looked up from the
            ``origin`` remote of the current directory when None.

    Returns:
        Path of the processed copy, or None if the policy cannot be read
        (including undecodable content) or the copy cannot be written.
    """
    try:
        content = rules_path.read_text(encoding="utf-8")
        if github is None:
            github = get_github_repo()
        processed = resolve_placeholders(content, github)

        tmp_dir = global_config_dir / TMP_DIRNAME
        tmp_dir.mkdir(parents=True, exist_ok=True)
        target = tmp_dir / f"network-{utc_ticks()}-{secrets.token_hex(4)}.json"
        target.write_text(processed)
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Cannot process network policy %s: %s", rules_path, e)
        return None

    logger.debug(
        "Processed network policy %s -> %s (owner=%r, repo=%r)",
        rules_path,
        target,
        github.owner if github else "",
        github.repo if github else "",
    )
    return target


def prepare_logs_dir(content: str, local_config_dir: Path) -> Path | None:
    """Create the proxy log directory when the policy asks for logging.

    The directory gets a ``.gitignore`` that ignores everything, so
    captured traffic is never committed by accident.

    Args:
        content: Raw policy content.
        local_config_dir: Project-local config directory.

    Returns:
        The log directory, or None if logging is off.  Setup failures are
        logged and the directory is still returned so the mount can be
        wired; the container runtime creates missing bind sources.
    """
    if not logging_requested(content):
        return None

    logs_dir = local_config_dir / LOGS_DIRNAME
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        gitignore = logs_dir / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text(LOGS_GITIGNORE)
    except OSError as e:
        logger.warning("Cannot set up proxy log directory %s: %s", logs_dir, e)
    return logs_dir
