# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for layered configuration."""

import os
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from copilot_here.config import (
    DEFAULT_IMAGE_TAG,
    DEFAULT_TEMPLATE_URL,
    AppEnvironment,
    AppPaths,
    ConfigError,
    ConfigLayer,
    HereConfig,
    find_rules_path,
    get_github_token,
)
from copilot_here.mounts import CONTAINER_HOME, MountSource


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestAppPaths:
    """Tests for AppPaths.resolve()."""

    def test_work_dir_under_home(self, app_paths: AppPaths) -> None:
        """A directory under home mirrors below the container home."""
        assert app_paths.container_work_dir == f"{CONTAINER_HOME}/src/demo"

    def test_work_dir_is_home(self, tmp_path: Path) -> None:
        """Running from home maps to the container home."""
        paths = AppPaths.resolve(
            current_dir=tmp_path,
            user_home=tmp_path,
            global_config_dir=tmp_path / "cfg",
        )
        assert paths.container_work_dir == CONTAINER_HOME

    def test_work_dir_outside_home(self, tmp_path: Path) -> None:
        """Other directories keep their host path."""
        paths = AppPaths.resolve(
            current_dir=Path("/opt/project"),
            user_home=tmp_path,
            global_config_dir=tmp_path / "cfg",
        )
        assert paths.container_work_dir == "/opt/project"

    def test_config_dirs(self, app_paths: AppPaths, tmp_path: Path) -> None:
        """Local config sits in the work dir, Copilot state beside global."""
        assert app_paths.local_config_dir == (
            app_paths.current_dir / ".copilot_here"
        )
        assert app_paths.copilot_config_dir == (
            tmp_path / "config" / "copilot-cli-docker"
        )

    def test_directory_name(self, app_paths: AppPaths) -> None:
        """Directory name is the work dir's base name."""
        assert app_paths.directory_name == "demo"

    def test_directory_name_at_root(self, tmp_path: Path) -> None:
        """The filesystem root falls back to the app name."""
        paths = AppPaths.resolve(
            current_dir=Path("/"),
            user_home=tmp_path,
            global_config_dir=tmp_path / "cfg",
        )
        assert paths.directory_name == "copilot_here"

    @patch("copilot_here.config.user_config_path")
    def test_default_global_dir(
        self, mock_ucp: MagicMock, tmp_path: Path
    ) -> None:
        """Without overrides the platform config dir is used."""
        mock_ucp.side_effect = lambda name: tmp_path / name
        paths = AppPaths.resolve(current_dir=tmp_path, user_home=tmp_path)
        assert paths.global_config_dir == tmp_path / "copilot_here"
        assert paths.copilot_config_dir == tmp_path / "copilot-cli-docker"


class TestConfigLayer:
    """Tests for ConfigLayer.from_yaml()."""

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file yields an empty layer."""
        layer = ConfigLayer.from_yaml(tmp_path / "x.yaml", MountSource.LOCAL)
        assert layer == ConfigLayer()

    def test_empty_file(self, tmp_path: Path) -> None:
        """An empty document is an empty layer."""
        path = _write(tmp_path / "c.yaml", "")
        assert ConfigLayer.from_yaml(path, MountSource.LOCAL) == ConfigLayer()

    def test_values(self, tmp_path: Path) -> None:
        """Scalars and mounts are read."""
        path = _write(
            tmp_path / "c.yaml",
            "image_tag: dotnet\n"
            "runtime: Podman\n"
            "template_url: https://example.com/t.yml\n"
            "mounts:\n"
            "  - ~/notes\n"
            "  - ~/scratch:rw\n"
            "  - ''\n",
        )
        layer = ConfigLayer.from_yaml(path, MountSource.GLOBAL)
        assert layer.image_tag == "dotnet"
        assert layer.runtime == "podman"
        assert layer.template_url == "https://example.com/t.yml"
        assert [m.host_path for m in layer.mounts] == ["~/notes", "~/scratch"]
        assert [m.is_read_write for m in layer.mounts] == [False, True]
        assert all(m.source is MountSource.GLOBAL for m in layer.mounts)

    def test_numeric_tag(self, tmp_path: Path) -> None:
        """Numeric tags are accepted as strings."""
        path = _write(tmp_path / "c.yaml", "image_tag: 8\n")
        layer = ConfigLayer.from_yaml(path, MountSource.LOCAL)
        assert layer.image_tag == "8"

    @pytest.mark.parametrize(
        ("text", "match"),
        [
            ("runtime: lxc\n", "runtime must be one of"),
            ("mounts: ~/notes\n", "mounts must be a list"),
            ("mounts:\n  - 3\n", "mounts must be a list"),
            ("image_tag: [a]\n", "image_tag must be a string"),
            ("- a\n- b\n", "mapping at top level"),
            ("image_tag: [unclosed\n", "Cannot read"),
        ],
    )
    def test_invalid(self, tmp_path: Path, text: str, match: str) -> None:
        """Invalid files raise ConfigError."""
        path = _write(tmp_path / "c.yaml", text)
        with pytest.raises(ConfigError, match=match):
            ConfigLayer.from_yaml(path, MountSource.LOCAL)


class TestHereConfig:
    """Tests for HereConfig.load()."""

    def test_defaults(self, app_paths: AppPaths) -> None:
        """No files means defaults and no rules."""
        config = HereConfig.load(app_paths)
        assert config.image_tag == DEFAULT_IMAGE_TAG
        assert config.runtime == "auto"
        assert config.template_url == DEFAULT_TEMPLATE_URL
        assert config.mounts == ()
        assert config.rules_path is None

    def test_local_overrides_global(self, app_paths: AppPaths) -> None:
        """Local scalars win; mounts are global then local."""
        _write(
            app_paths.global_config_dir / "config.yaml",
            "image_tag: dotnet\nruntime: docker\nmounts: [~/g]\n",
        )
        _write(
            app_paths.local_config_dir / "config.yaml",
            "image_tag: rust\nmounts: [~/l]\n",
        )
        config = HereConfig.load(app_paths)
        assert config.image_tag == "rust"
        assert config.runtime == "docker"
        assert [m.host_path for m in config.mounts] == ["~/g", "~/l"]
        assert [m.source for m in config.mounts] == [
            MountSource.GLOBAL,
            MountSource.LOCAL,
        ]

    def test_invalid_local(self, app_paths: AppPaths) -> None:
        """Errors in either layer propagate."""
        _write(app_paths.local_config_dir / "config.yaml", "runtime: x\n")
        with pytest.raises(ConfigError):
            HereConfig.load(app_paths)

    def test_images(self, app_paths: AppPaths) -> None:
        """Image references share one repository."""
        config = HereConfig.load(app_paths)
        assert config.proxy_image == "ghcr.io/gordonbeeming/copilot_here:proxy"
        assert config.app_image() == (
            "ghcr.io/gordonbeeming/copilot_here:latest"
        )
        assert config.app_image("dotnet") == (
            "ghcr.io/gordonbeeming/copilot_here:dotnet"
        )


class TestFindRulesPath:
    """Tests for find_rules_path()."""

    def test_none(self, app_paths: AppPaths) -> None:
        """Neither file exists."""
        assert find_rules_path(app_paths) is None

    def test_global(self, app_paths: AppPaths) -> None:
        """The global file is used when there is no local one."""
        path = _write(app_paths.global_config_dir / "network.json", "{}")
        assert find_rules_path(app_paths) == path

    def test_local_wins(self, app_paths: AppPaths) -> None:
        """A local file replaces the global one."""
        _write(app_paths.global_config_dir / "network.json", "{}")
        local = _write(app_paths.local_config_dir / "network.json", "{}")
        assert find_rules_path(app_paths) == local


class TestGetGithubToken:
    """Tests for get_github_token()."""

    def test_github_token_first(self) -> None:
        """GITHUB_TOKEN wins over GH_TOKEN."""
        env = {"GITHUB_TOKEN": "ghp_a", "GH_TOKEN": "ghp_b"}
        with patch.dict(os.environ, env, clear=True):
            assert get_github_token() == "ghp_a"

    def test_gh_token(self) -> None:
        """GH_TOKEN is used when GITHUB_TOKEN is unset or blank."""
        env = {"GITHUB_TOKEN": " ", "GH_TOKEN": "ghp_b"}
        with patch.dict(os.environ, env, clear=True):
            assert get_github_token() == "ghp_b"

    @patch("copilot_here.config.subprocess.run")
    def test_gh_cli(self, mock_run: MagicMock) -> None:
        """Falls back to ``gh auth token``."""
        mock_run.return_value = subprocess.CompletedProcess(
            [], 0, "gho_cli\n", ""
        )
        with patch.dict(os.environ, {}, clear=True):
            assert get_github_token() == "gho_cli"
        assert mock_run.call_args.args[0] == ["gh", "auth", "token"]

    @patch("copilot_here.config.subprocess.run")
    def test_gh_cli_logged_out(self, mock_run: MagicMock) -> None:
        """A failing ``gh`` yields an empty token."""
        mock_run.return_value = subprocess.CompletedProcess(
            [], 1, "", "not logged in"
        )
        with patch.dict(os.environ, {}, clear=True):
            assert get_github_token() == ""

    @patch(
        "copilot_here.config.subprocess.run",
        side_effect=FileNotFoundError("gh"),
    )
    def test_gh_missing(self, mock_run: MagicMock) -> None:
        """No ``gh`` executable yields an empty token."""
        with patch.dict(os.environ, {}, clear=True):
            assert get_github_token() == ""


class TestAppEnvironment:
    """Tests for AppEnvironment.resolve()."""

    @patch("copilot_here.config.get_github_token", return_value="ghp_x")
    def test_resolve(self, mock_token: MagicMock) -> None:
        """Token and numeric IDs are collected."""
        env = AppEnvironment.resolve()
        assert env.github_token == "ghp_x"
        assert env.user_id.isdigit()
        assert env.group_id.isdigit()
