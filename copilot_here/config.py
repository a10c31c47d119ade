# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Layered configuration for copilot-here.

Configuration is read from two YAML files:

    global: ``$XDG_CONFIG_HOME/copilot_here/config.yaml``
            (typically ``~/.config/copilot_here/config.yaml``)
    local:  ``./.copilot_here/config.yaml``

Scalar settings in the local file override the global file.  Mounts are
additive: global, then local, then command line.

The Airlock network policy lives next to the config files as
``network.json``.  A local policy file replaces the global one entirely;
the two are never merged.

Example ``config.yaml``::

    image_tag: dotnet
    runtime: podman
    mounts:
      - ~/notes
      - ~/scratch:rw
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from platformdirs import user_config_path

from copilot_here.mounts import CONTAINER_HOME, MountSource, MountSpec


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "copilot_here"

#: Config directory of the Copilot CLI state mounted into the container.
_COPILOT_CONFIG_NAME = "copilot-cli-docker"

#: Local config directory name, relative to the working directory.
LOCAL_CONFIG_DIRNAME = ".copilot_here"

CONFIG_FILENAME = "config.yaml"
RULES_FILENAME = "network.json"

#: Image repository for both the app and proxy images.
IMAGE_PREFIX = "ghcr.io/gordonbeeming/copilot_here"
DEFAULT_IMAGE_TAG = "latest"
PROXY_IMAGE_TAG = "proxy"

#: Default location of the compose template in the upstream repository.
DEFAULT_TEMPLATE_URL = (
    "https://raw.githubusercontent.com/GordonBeeming/copilot_here/main/"
    "docker-compose.airlock.yml.template"
)

_RUNTIME_CHOICES = frozenset({"auto", "docker", "podman"})

#: Fallback numeric IDs where the host has no POSIX user database.
_DEFAULT_ID = "1000"


class ConfigError(Exception):
    """Raised when a config file cannot be parsed or has invalid values."""


@dataclass(frozen=True)
class AppPaths:
    """All resolved filesystem paths for one invocation.

    Attributes:
        current_dir: Working directory on the host.
        user_home: User's home directory.
        global_config_dir: ``~/.config/copilot_here``.
        local_config_dir: ``./.copilot_here``.
        copilot_config_dir: Copilot CLI state directory on the host.
        container_work_dir: Path of *current_dir* inside the container.
    """

    current_dir: Path
    user_home: Path
    global_config_dir: Path
    local_config_dir: Path
    copilot_config_dir: Path
    container_work_dir: str

    @classmethod
    def resolve(
        cls,
        current_dir: Path | None = None,
        user_home: Path | None = None,
        global_config_dir: Path | None = None,
    ) -> AppPaths:
        """Resolve paths for *current_dir* (defaults to the process cwd).

        No directories are created here; components that write create what
        they need.
        """
        cwd = current_dir or Path.cwd()
        home = user_home or Path.home()
        global_dir = global_config_dir or user_config_path(_APP_NAME)
        copilot_dir = (
            global_dir.parent / _COPILOT_CONFIG_NAME
            if global_config_dir is not None
            else user_config_path(_COPILOT_CONFIG_NAME)
        )
        return cls(
            current_dir=cwd,
            user_home=home,
            global_config_dir=global_dir,
            local_config_dir=cwd / LOCAL_CONFIG_DIRNAME,
            copilot_config_dir=copilot_dir,
            container_work_dir=_container_work_dir(cwd, home),
        )

    @property
    def directory_name(self) -> str:
        """Base name of the working directory (``copilot_here`` at ``/``)."""
        return self.current_dir.name or _APP_NAME


def _container_work_dir(current_dir: Path, user_home: Path) -> str:
    try:
        relative = current_dir.relative_to(user_home)
    except ValueError:
        return current_dir.as_posix()
    if relative == Path("."):
        return CONTAINER_HOME
    return f"{CONTAINER_HOME}/{relative.as_posix()}"


@dataclass(frozen=True)
class AppEnvironment:
    """Runtime facts about the host user.

    Attributes:
        github_token: Token handed to the containers (may be empty).
        user_id: Numeric user ID for file ownership inside containers.
        group_id: Numeric group ID for file ownership inside containers.
    """

    github_token: str
    user_id: str
    group_id: str

    @classmethod
    def resolve(cls) -> AppEnvironment:
        """Resolve the token and numeric IDs for the current user."""
        return cls(
            github_token=get_github_token(),
            user_id=str(os.getuid()) if hasattr(os, "getuid") else _DEFAULT_ID,
            group_id=str(os.getgid()) if hasattr(os, "getgid") else _DEFAULT_ID,
        )


def get_github_token() -> str:
    """Return a GitHub token for the Copilot CLI.

    ``GITHUB_TOKEN`` or ``GH_TOKEN`` win when set; otherwise the token is
    read from ``gh auth token``.  Returns an empty string when neither
    source yields a token.
    """
    for var in ("GITHUB_TOKEN", "GH_TOKEN"):
        value = os.environ.get(var, "").strip()
        if value:
            return value
    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("gh auth token unavailable: %s", e)
        return ""
    if result.returncode != 0:
        logger.debug("gh auth token failed: %s", result.stderr.strip())
        return ""
    return result.stdout.strip()


@dataclass(frozen=True)
class ConfigLayer:
    """Settings from a single config file. None means "not set"."""

    image_tag: str | None = None
    runtime: str | None = None
    template_url: str | None = None
    mounts: tuple[MountSpec, ...] = ()

    @classmethod
    def from_yaml(cls, path: Path, source: MountSource) -> ConfigLayer:
        """Load a layer from *path*. A missing file yields an empty layer.

        Raises:
            ConfigError: If the YAML is invalid or a value has the wrong
                type.
        """
        if not path.exists():
            return cls()
        try:
            raw = yaml.safe_load(path.read_text())
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise ConfigError(f"{path}: expected a mapping at top level")

        runtime = _optional_str(raw, "runtime", path)
        if runtime is not None:
            runtime = runtime.lower()
            if runtime not in _RUNTIME_CHOICES:
                choices = ", ".join(sorted(_RUNTIME_CHOICES))
                raise ConfigError(
                    f"{path}: runtime must be one of {choices}, got {runtime!r}"
                )

        raw_mounts = raw.get("mounts") or []
        if not isinstance(raw_mounts, list) or not all(
            isinstance(m, str) for m in raw_mounts
        ):
            raise ConfigError(f"{path}: mounts must be a list of strings")

        return cls(
            image_tag=_optional_str(raw, "image_tag", path),
            runtime=runtime,
            template_url=_optional_str(raw, "template_url", path),
            mounts=tuple(
                MountSpec.parse(m, source) for m in raw_mounts if m.strip()
            ),
        )


def _optional_str(raw: dict[str, Any], key: str, path: Path) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        raise ConfigError(f"{path}: {key} must be a string")
    return value.strip() or None


@dataclass(frozen=True)
class HereConfig:
    """Effective configuration after merging global and local layers.

    Attributes:
        paths: Resolved filesystem paths.
        image_tag: App image tag.
        runtime: ``auto``, ``docker`` or ``podman``.
        template_url: Where to fetch the compose template from.
        mounts: Config mounts, global first then local.
        rules_path: Active network policy file, or None if neither the
            local nor the global one exists.
    """

    paths: AppPaths
    image_tag: str = DEFAULT_IMAGE_TAG
    runtime: str = "auto"
    template_url: str = DEFAULT_TEMPLATE_URL
    mounts: tuple[MountSpec, ...] = field(default_factory=tuple)
    rules_path: Path | None = None

    @classmethod
    def load(cls, paths: AppPaths) -> HereConfig:
        """Load and merge the global and local config files.

        Raises:
            ConfigError: If either file is invalid.
        """
        global_layer = ConfigLayer.from_yaml(
            paths.global_config_dir / CONFIG_FILENAME, MountSource.GLOBAL
        )
        local_layer = ConfigLayer.from_yaml(
            paths.local_config_dir / CONFIG_FILENAME, MountSource.LOCAL
        )

        def pick(name: str, default: str) -> str:
            for layer in (local_layer, global_layer):
                value = getattr(layer, name)
                if value is not None:
                    return value
            return default

        return cls(
            paths=paths,
            image_tag=pick("image_tag", DEFAULT_IMAGE_TAG),
            runtime=pick("runtime", "auto"),
            template_url=pick("template_url", DEFAULT_TEMPLATE_URL),
            mounts=global_layer.mounts + local_layer.mounts,
            rules_path=find_rules_path(paths),
        )

    @property
    def proxy_image(self) -> str:
        """Fully qualified proxy image reference."""
        return f"{IMAGE_PREFIX}:{PROXY_IMAGE_TAG}"

    def app_image(self, image_tag: str | None = None) -> str:
        """Fully qualified app image reference for *image_tag*."""
        return f"{IMAGE_PREFIX}:{image_tag or self.image_tag}"


def find_rules_path(paths: AppPaths) -> Path | None:
    """Return the active network policy file (local wins over global)."""
    for candidate in (
        paths.local_config_dir / RULES_FILENAME,
        paths.global_config_dir / RULES_FILENAME,
    ):
        if candidate.is_file():
            return candidate
    return None
