# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""``SANDBOX_FLAGS`` support for Airlock sessions.

``SANDBOX_FLAGS`` holds extra ``docker run`` style flags (the Gemini CLI
convention).  In Airlock mode there is no ``docker run`` command line, so
the flags are translated into compose keys for the app service.  A
``--network`` flag selects the external network the proxy uses for
egress instead of the per-session bridge network.
"""

from __future__ import annotations

import logging
import shlex
from collections.abc import Mapping
from dataclasses import dataclass


logger = logging.getLogger(__name__)

ENV_VAR = "SANDBOX_FLAGS"
DEFAULT_NETWORK = "bridge"

_NETWORK_FLAGS = frozenset({"--network", "--net"})

# Flags whose values become list items under a compose key.
_LIST_FLAGS = {
    "--env": "environment",
    "-e": "environment",
    "--cap-add": "cap_add",
    "--cap-drop": "cap_drop",
}

# Flags whose value becomes a scalar compose key.
_SCALAR_FLAGS = {
    "--memory": "mem_limit",
    "-m": "mem_limit",
    "--cpus": "cpus",
}

_SERVICE_INDENT = "    "
_ITEM_INDENT = "      "


@dataclass(frozen=True)
class SandboxFlags:
    """Parsed ``SANDBOX_FLAGS``.

    Attributes:
        network: External network for proxy egress.
        app_flags: Remaining flags, applied to the app service.
    """

    network: str = DEFAULT_NETWORK
    app_flags: tuple[str, ...] = ()

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> SandboxFlags:
        """Parse ``SANDBOX_FLAGS`` from *environ*."""
        return cls.parse(environ.get(ENV_VAR, ""))

    @classmethod
    def parse(cls, raw: str) -> SandboxFlags:
        """Parse a shell-quoted flag string.

        Unbalanced quotes make the whole value unusable; it is ignored with
        a warning rather than failing the session.
        """
        if not raw.strip():
            return cls()
        try:
            flags = shlex.split(raw)
        except ValueError as e:
            logger.warning("Ignoring malformed %s: %s", ENV_VAR, e)
            return cls()

        network = DEFAULT_NETWORK
        app_flags: list[str] = []
        i = 0
        while i < len(flags):
            flag = flags[i]
            if flag in _NETWORK_FLAGS:
                if i + 1 < len(flags):
                    network = flags[i + 1]
                i += 2
                continue
            if flag.startswith("--network=") or flag.startswith("--net="):
                network = flag.split("=", 1)[1]
                i += 1
                continue
            app_flags.append(flag)
            i += 1

        if flags:
            logger.debug("%s detected: %d flags", ENV_VAR, len(flags))
        return cls(network=network, app_flags=tuple(app_flags))

    @property
    def uses_external_network(self) -> bool:
        """True when egress goes through a user-supplied network."""
        return self.network != DEFAULT_NETWORK

    def networks_yaml(self) -> str:
        """Top-level ``networks:`` section for the compose document."""
        lines = ["networks:", "  airlock:", "    internal: true"]
        if self.uses_external_network:
            lines += [f"  {self.network}:", "    external: true"]
        else:
            lines.append("  bridge:")
        return "\n".join(lines)

    def compose_lines(self) -> list[str]:
        """Translate the app flags into app-service compose lines.

        Values of the same kind are grouped under one key, in order of
        first appearance.  Flags without a compose equivalent become
        comments so the rendered file documents what was dropped.
        """
        lists: dict[str, list[str]] = {}
        ulimits: list[str] = []
        scalars: list[str] = []
        unsupported: list[str] = []

        flags = self.app_flags
        i = 0
        while i < len(flags):
            flag = flags[i]
            has_value = i + 1 < len(flags)
            if flag in _LIST_FLAGS and has_value:
                key = _LIST_FLAGS[flag]
                lists.setdefault(key, []).append(flags[i + 1])
                i += 2
            elif flag == "--ulimit" and has_value:
                name, sep, value = flags[i + 1].partition("=")
                if sep:
                    ulimits.append(f"{_ITEM_INDENT}{name}: {value}")
                i += 2
            elif flag in _SCALAR_FLAGS and has_value:
                key = _SCALAR_FLAGS[flag]
                scalars.append(f"{_SERVICE_INDENT}{key}: {flags[i + 1]}")
                i += 2
            else:
                if flag.startswith("-"):
                    logger.debug("Unsupported sandbox flag: %s", flag)
                    unsupported.append(
                        f"{_SERVICE_INDENT}# Unsupported flag: {flag}"
                    )
                i += 1

        lines: list[str] = []
        for key, values in lists.items():
            lines.append(f"{_SERVICE_INDENT}{key}:")
            lines.extend(f"{_ITEM_INDENT}- {v}" for v in values)
        if ulimits:
            lines.append(f"{_SERVICE_INDENT}ulimits:")
            lines.extend(ulimits)
        lines.extend(scalars)
        lines.extend(unsupported)
        return lines
