# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Session identity and resource naming.

Every resource an Airlock session creates is named from a single root,
the compose project name ``{directory}-{session_id}``.  Orphan
reclamation relies on the suffixes defined here, so they must stay in
sync with the compose template (compose derives network and volume names
as ``{project}_{name}``).
"""

from __future__ import annotations

import hashlib
import os
import re
import time
from dataclasses import dataclass


PROXY_SUFFIX = "-proxy"
APP_SUFFIX = "-app"
AIRLOCK_NETWORK_SUFFIX = "_airlock"
BRIDGE_NETWORK_SUFFIX = "_bridge"
PROXY_CA_VOLUME_SUFFIX = "_proxy-ca"

#: 100 ns ticks between 0001-01-01 and the Unix epoch.
_EPOCH_TICKS = 621_355_968_000_000_000

_UNSAFE_CHARS = re.compile(r"[^a-z0-9_-]")
_LEADING_JUNK = re.compile(r"^[^a-z0-9]+")
_FALLBACK_NAME = "copilot_here"


def utc_ticks() -> int:
    """Current UTC time in 100 ns ticks since 0001-01-01."""
    return _EPOCH_TICKS + time.time_ns() // 100


def generate_session_id(
    pid: int | None = None, ticks: int | None = None
) -> str:
    """Derive a short session token from the process id and a timestamp.

    Only needs to avoid collisions between sessions on the same host.

    Args:
        pid: Process id. Defaults to the current process.
        ticks: Timestamp in 100 ns ticks. Defaults to now.

    Returns:
        8 lowercase hex characters (first 4 bytes of a SHA-256 digest).
    """
    if pid is None:
        pid = os.getpid()
    if ticks is None:
        ticks = utc_ticks()
    digest = hashlib.sha256(f"{pid}-{ticks}".encode()).digest()
    return digest[:4].hex()


def sanitize_name(name: str) -> str:
    """Make a directory name usable as a compose project name prefix."""
    cleaned = _LEADING_JUNK.sub("", _UNSAFE_CHARS.sub("-", name.lower()))
    return cleaned or _FALLBACK_NAME


def make_project_name(directory_name: str, session_id: str) -> str:
    """Compose the project name ``{sanitized-dir}-{session_id}``."""
    return f"{sanitize_name(directory_name)}-{session_id}".lower()


@dataclass(frozen=True)
class SessionIdentity:
    """Naming root for one Airlock session.

    Attributes:
        session_id: Short hex token for this invocation.
        project_name: Compose project name; prefix of every resource.
    """

    session_id: str
    project_name: str

    @classmethod
    def create(
        cls, directory_name: str, session_id: str | None = None
    ) -> SessionIdentity:
        """Create an identity for *directory_name*.

        Args:
            directory_name: Base name of the working directory.
            session_id: Fixed token (tests); generated when omitted.
        """
        sid = session_id or generate_session_id()
        return cls(
            session_id=sid,
            project_name=make_project_name(directory_name, sid),
        )

    @property
    def proxy_container(self) -> str:
        return f"{self.project_name}{PROXY_SUFFIX}"

    @property
    def app_container(self) -> str:
        return f"{self.project_name}{APP_SUFFIX}"

    @property
    def airlock_network(self) -> str:
        return f"{self.project_name}{AIRLOCK_NETWORK_SUFFIX}"

    @property
    def bridge_network(self) -> str:
        return f"{self.project_name}{BRIDGE_NETWORK_SUFFIX}"

    @property
    def proxy_ca_volume(self) -> str:
        return f"{self.project_name}{PROXY_CA_VOLUME_SUFFIX}"
