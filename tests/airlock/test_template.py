# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for compose template acquisition."""

import urllib.error
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from copilot_here.airlock.template import (
    TEMPLATE_FILENAME,
    TemplateError,
    get_or_fetch_template,
)
from copilot_here.config import DEFAULT_TEMPLATE_URL


def _response(data: bytes) -> MagicMock:
    """Build a urlopen() result usable as a context manager."""
    resp = MagicMock()
    resp.read.return_value = data
    cm = MagicMock()
    cm.__enter__.return_value = resp
    cm.__exit__.return_value = False
    return cm


class TestGetOrFetchTemplate:
    """Tests for get_or_fetch_template()."""

    @patch("copilot_here.airlock.template.urllib.request.urlopen")
    def test_cached_template_is_reused(
        self, mock_urlopen: MagicMock, tmp_path: Path
    ) -> None:
        """An existing cached file is returned without a download."""
        cached = tmp_path / TEMPLATE_FILENAME
        cached.write_text("name: cached\n")

        assert get_or_fetch_template(tmp_path) == cached
        mock_urlopen.assert_not_called()

    @patch("copilot_here.airlock.template.urllib.request.urlopen")
    def test_downloads_and_caches(
        self, mock_urlopen: MagicMock, tmp_path: Path
    ) -> None:
        """A missing template is downloaded into the cache directory."""
        mock_urlopen.return_value = _response(b"name: {{PROJECT_NAME}}\n")
        cache_dir = tmp_path / "config"

        path = get_or_fetch_template(cache_dir)

        assert path == cache_dir / TEMPLATE_FILENAME
        assert path.read_text() == "name: {{PROJECT_NAME}}\n"
        # No temp files left behind by the atomic write
        assert sorted(p.name for p in cache_dir.iterdir()) == [
            TEMPLATE_FILENAME
        ]

    @patch("copilot_here.airlock.template.urllib.request.urlopen")
    def test_uses_url_and_timeout(
        self, mock_urlopen: MagicMock, tmp_path: Path
    ) -> None:
        """Download goes to the given URL with a 10 second timeout."""
        mock_urlopen.return_value = _response(b"x: 1\n")
        url = "https://example.com/template.yml"

        get_or_fetch_template(tmp_path, url)

        request = mock_urlopen.call_args.args[0]
        assert request.full_url == url
        assert mock_urlopen.call_args.kwargs["timeout"] == 10

    @patch("copilot_here.airlock.template.urllib.request.urlopen")
    def test_default_url(
        self, mock_urlopen: MagicMock, tmp_path: Path
    ) -> None:
        """Without a URL the published template is fetched."""
        mock_urlopen.return_value = _response(b"x: 1\n")
        get_or_fetch_template(tmp_path)
        request = mock_urlopen.call_args.args[0]
        assert request.full_url == DEFAULT_TEMPLATE_URL

    @patch(
        "copilot_here.airlock.template.urllib.request.urlopen",
        side_effect=urllib.error.URLError("no route"),
    )
    def test_network_failure(
        self, mock_urlopen: MagicMock, tmp_path: Path
    ) -> None:
        """Network errors raise TemplateError and cache nothing."""
        with pytest.raises(
            TemplateError, match="failed to download topology template"
        ):
            get_or_fetch_template(tmp_path)
        assert not (tmp_path / TEMPLATE_FILENAME).exists()

    @patch("copilot_here.airlock.template.urllib.request.urlopen")
    def test_empty_response(
        self, mock_urlopen: MagicMock, tmp_path: Path
    ) -> None:
        """An empty body is treated as a failed download."""
        mock_urlopen.return_value = _response(b"  \n")
        with pytest.raises(TemplateError, match="empty response"):
            get_or_fetch_template(tmp_path)
        assert not (tmp_path / TEMPLATE_FILENAME).exists()

    @patch("copilot_here.airlock.template.urllib.request.urlopen")
    def test_write_failure(
        self, mock_urlopen: MagicMock, tmp_path: Path
    ) -> None:
        """An unwritable cache directory raises TemplateError."""
        mock_urlopen.return_value = _response(b"x: 1\n")
        blocker = tmp_path / "file"
        blocker.write_text("")

        with pytest.raises(TemplateError, match="cannot write"):
            get_or_fetch_template(blocker / "config")
