# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Compose template acquisition.

The compose template is downloaded once into the global config directory
and reused by every later session.  Concurrent first runs may both
download; each writes through a temp file and an atomic rename, so a
reader never sees a partial template.
"""

from __future__ import annotations

import logging
import os
import tempfile
import urllib.error
import urllib.request
from pathlib import Path

from copilot_here.config import DEFAULT_TEMPLATE_URL


logger = logging.getLogger(__name__)

TEMPLATE_FILENAME = "docker-compose.airlock.yml.template"

_DOWNLOAD_TIMEOUT = 10


class TemplateError(Exception):
    """Raised when the compose template cannot be obtained."""


def get_or_fetch_template(
    cache_dir: Path, url: str = DEFAULT_TEMPLATE_URL
) -> Path:
    """Return the cached compose template, downloading it if missing.

    Args:
        cache_dir: Global config directory holding the cached template.
        url: Remote location of the template.

    Returns:
        Path to the template file.

    Raises:
        TemplateError: If the download or the write fails.
    """
    path = cache_dir / TEMPLATE_FILENAME
    if path.is_file():
        logger.debug("Using cached compose template: %s", path)
        return path

    logger.info("Downloading compose template from %s", url)
    try:
        req = urllib.request.Request(url, method="GET")
        with urllib.request.urlopen(req, timeout=_DOWNLOAD_TIMEOUT) as resp:
            data = resp.read()
    except (urllib.error.URLError, OSError, ValueError) as e:
        raise TemplateError(
            f"failed to download topology template: {e}"
        ) from e

    if not data.strip():
        raise TemplateError(
            f"failed to download topology template: empty response from {url}"
        )

    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(
            dir=cache_dir, prefix=".template-", suffix=".tmp"
        )
        try:
            with open(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise TemplateError(
            f"failed to download topology template: cannot write {path}: {e}"
        ) from e

    logger.debug("Cached compose template at %s (%d bytes)", path, len(data))
    return path
