# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test packages."""

import subprocess
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from unittest.mock import patch

import pytest

from copilot_here.airlock.template import TEMPLATE_FILENAME
from copilot_here.config import AppPaths
from copilot_here.logging import SecretFilter


#: Compose template in the shape of the published Airlock template.
COMPOSE_TEMPLATE = """\
# copilot-here Airlock topology
name: {{PROJECT_NAME}}

services:
  proxy:
    image: {{PROXY_IMAGE}}
    container_name: {{PROJECT_NAME}}-proxy
    networks:
      - airlock
      - {{EXTERNAL_NETWORK}}
    volumes:
      - {{NETWORK_CONFIG}}:/config/network.json:ro
      - proxy-ca:/ca
{{LOGS_MOUNT}}

  app:
    image: {{APP_IMAGE}}
    working_dir: {{CONTAINER_WORK_DIR}}
    networks:
      - airlock
    environment:
      - PUID={{PUID}}
      - PGID={{PGID}}
      - GITHUB_TOKEN
    volumes:
      - {{WORK_DIR}}:{{CONTAINER_WORK_DIR}}
      - {{COPILOT_CONFIG}}:/home/appuser/.copilot
      - proxy-ca:/ca:ro
{{EXTRA_MOUNTS}}
{{EXTRA_SANDBOX_FLAGS}}
    command: {{COPILOT_ARGS}}

{{NETWORKS}}

volumes:
  proxy-ca:
"""

RULES_JSON = """\
{
  "enabled": true,
  "enable_logging": false,
  "mode": "enforce",
  "allowed_rules": [
    {
      "host": "api.github.com",
      "allowed_paths": ["/repos/{{GITHUB_OWNER}}/{{GITHUB_REPO}}/*"]
    }
  ]
}
"""


@pytest.fixture
def compose_template() -> str:
    """Compose template text with every placeholder."""
    return COMPOSE_TEMPLATE


@pytest.fixture
def rules_json() -> str:
    """Network policy using the repository placeholders."""
    return RULES_JSON


@pytest.fixture(autouse=True)
def _clear_secrets() -> Iterator[None]:
    """Keep registered secrets from leaking between tests."""
    SecretFilter.clear_secrets()
    yield
    SecretFilter.clear_secrets()


@pytest.fixture
def app_paths(tmp_path: Path) -> AppPaths:
    """Paths for a project directory named ``demo`` under a fake home."""
    home = tmp_path / "home"
    work = home / "src" / "demo"
    work.mkdir(parents=True)
    return AppPaths.resolve(
        current_dir=work,
        user_home=home,
        global_config_dir=tmp_path / "config" / "copilot_here",
    )


@pytest.fixture
def airlock_paths(app_paths: AppPaths) -> AppPaths:
    """Like ``app_paths`` with a cached template and a global policy."""
    app_paths.global_config_dir.mkdir(parents=True)
    (app_paths.global_config_dir / TEMPLATE_FILENAME).write_text(
        COMPOSE_TEMPLATE
    )
    (app_paths.global_config_dir / "network.json").write_text(RULES_JSON)
    return app_paths


@dataclass
class FakeRuntimeHost:
    """In-memory container host answering docker CLI invocations.

    Containers map to their running flag, networks to their attached
    container count.  Every command line received is kept in ``calls``.
    """

    containers: dict[str, bool] = field(default_factory=dict)
    networks: dict[str, int] = field(default_factory=dict)
    volumes: set[str] = field(default_factory=set)
    calls: list[list[str]] = field(default_factory=list)
    envs: list[dict[str, str] | None] = field(default_factory=list)
    up_returncode: int = 0
    up_stderr: str = ""
    app_returncode: int = 0
    fail_commands: set[str] = field(default_factory=set)
    compose_files: list[str] = field(default_factory=list)
    on_app_run: Callable[[], None] | None = None

    def __call__(
        self, cmd: list[str], **kwargs: object
    ) -> subprocess.CompletedProcess:
        self.calls.append(list(cmd))
        self.envs.append(kwargs.get("env"))  # type: ignore[arg-type]
        if cmd[:2] == ["docker", "compose"]:
            return self._compose(cmd)
        rc, out = self._docker(cmd[1:])
        if rc != 0 and kwargs.get("check"):
            raise subprocess.CalledProcessError(rc, cmd, out, "error")
        return subprocess.CompletedProcess(cmd, rc, out, "")

    def commands(self, *prefix: str) -> list[list[str]]:
        """Recorded docker (non-compose) calls starting with *prefix*."""
        return [
            c[1:]
            for c in self.calls
            if c[0] == "docker" and c[1 : 1 + len(prefix)] == list(prefix)
        ]

    def _compose(self, cmd: list[str]) -> subprocess.CompletedProcess:
        compose_file = cmd[cmd.index("-f") + 1]
        project = cmd[cmd.index("-p") + 1]
        rest = cmd[cmd.index("-p") + 2 :]
        if rest[:1] == ["up"]:
            self.compose_files.append(Path(compose_file).read_text())
            if self.up_returncode != 0:
                return subprocess.CompletedProcess(
                    cmd, self.up_returncode, "", self.up_stderr
                )
            self.containers[f"{project}-proxy"] = True
            self.networks[f"{project}_airlock"] = 1
            self.networks[f"{project}_bridge"] = 1
            self.volumes.add(f"{project}_proxy-ca")
            return subprocess.CompletedProcess(cmd, 0, "", "")
        if rest[:1] == ["run"]:
            if self.on_app_run is not None:
                self.on_app_run()
            return subprocess.CompletedProcess(cmd, self.app_returncode)
        return subprocess.CompletedProcess(cmd, 1, "", "unknown")

    def _docker(self, args: list[str]) -> tuple[int, str]:
        if args[0] in self.fail_commands:
            return 1, ""
        if args[:1] == ["ps"]:
            if "-a" in args:
                names = list(self.containers)
            else:
                names = [n for n, up in self.containers.items() if up]
            return 0, "".join(f"{n}\n" for n in names)
        if args[:1] == ["stop"]:
            if args[1] not in self.containers:
                return 1, ""
            self.containers[args[1]] = False
            self._detach(args[1])
            return 0, args[1]
        if args[:1] == ["rm"]:
            name = args[-1]
            if name not in self.containers:
                return 1, ""
            if self.containers[name] and "-f" not in args:
                return 1, ""
            if self.containers[name]:
                self._detach(name)
            del self.containers[name]
            return 0, name
        if args[:2] == ["network", "ls"]:
            return 0, "".join(f"{n}\n" for n in self.networks)
        if args[:2] == ["network", "inspect"]:
            if args[2] not in self.networks:
                return 1, ""
            return 0, f"{self.networks[args[2]]}\n"
        if args[:2] == ["network", "rm"]:
            if self.networks.get(args[2], -1) != 0:
                return 1, ""
            del self.networks[args[2]]
            return 0, args[2]
        if args[:2] == ["volume", "rm"]:
            if args[2] not in self.volumes:
                return 1, ""
            self.volumes.discard(args[2])
            return 0, args[2]
        return 1, ""

    def _detach(self, container: str) -> None:
        project = container.rsplit("-", 1)[0]
        for network in (f"{project}_airlock", f"{project}_bridge"):
            if self.networks.get(network, 0) > 0:
                self.networks[network] -= 1


@pytest.fixture
def fake_host() -> Iterator[FakeRuntimeHost]:
    """Route runtime subprocess calls to an in-memory container host."""
    host = FakeRuntimeHost()
    with patch(
        "copilot_here.airlock.runtime.subprocess.run", side_effect=host
    ):
        yield host
