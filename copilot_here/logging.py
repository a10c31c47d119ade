# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Centralized logging configuration with secret redaction.

Debug output is opt-in: the CLI reads ``COPILOT_HERE_DEBUG`` once at
process start, configures the root logger accordingly, and hands an
explicit logger to the Airlock runner.  Library modules never consult the
environment themselves.

Usage:
    # In entry points
    from copilot_here.logging import configure_logging, is_debug_enabled
    configure_logging(debug=is_debug_enabled())

    # In library modules
    import logging
    logger = logging.getLogger(__name__)
    logger.debug("Compose file: %s", path)
"""

import logging
import os
import re
from collections.abc import Mapping
from typing import ClassVar


#: Environment variable that switches on debug output.
DEBUG_ENV_VAR = "COPILOT_HERE_DEBUG"

_DEBUG_VALUES = frozenset({"1", "true"})


class SecretFilter(logging.Filter):
    """Logging filter that redacts registered secrets from log output.

    The GitHub token handed to the compose invocation is registered here
    so that debug dumps of commands and environments never leak it.

    Example:
        SecretFilter.register_secret("ghp_abc123")
        logger.debug("token=%s", "ghp_abc123")
        # Output: "token=[REDACTED]"
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact any registered secrets from *record*.

        Args:
            record: The log record to filter.

        Returns:
            Always True (records are modified, never suppressed).
        """
        if self._pattern is not None:
            record.msg = self._pattern.sub("[REDACTED]", str(record.msg))
            if record.args:
                record.args = tuple(
                    self._pattern.sub("[REDACTED]", str(arg))
                    if isinstance(arg, str)
                    else arg
                    for arg in record.args
                )
        return True

    @classmethod
    def register_secret(cls, secret: str) -> None:
        """Register a secret to be redacted from all log output.

        Args:
            secret: The secret string to redact. Empty strings are ignored.
        """
        if secret:
            cls._secrets.add(secret)
            cls._rebuild_pattern()

    @classmethod
    def clear_secrets(cls) -> None:
        """Clear all registered secrets. Primarily for testing."""
        cls._secrets.clear()
        cls._pattern = None

    @classmethod
    def _rebuild_pattern(cls) -> None:
        if cls._secrets:
            # Longest first so overlapping secrets are fully masked
            ordered = sorted(cls._secrets, key=len, reverse=True)
            escaped = [re.escape(s) for s in ordered]
            cls._pattern = re.compile("|".join(escaped))
        else:
            cls._pattern = None


def is_debug_enabled(environ: Mapping[str, str] | None = None) -> bool:
    """Return True when ``COPILOT_HERE_DEBUG`` is ``1`` or ``true``.

    Args:
        environ: Environment mapping to consult. Defaults to ``os.environ``.
    """
    env = os.environ if environ is None else environ
    return env.get(DEBUG_ENV_VAR, "").strip().lower() in _DEBUG_VALUES


def configure_logging(
    debug: bool = False,
    format_string: str | None = None,
    add_secret_filter: bool = True,
) -> None:
    """Configure logging for the application.

    Log records go to stderr so they never interleave with the agent's
    own stdout.  Without *debug* only warnings and errors are shown; the
    user-facing progress lines are printed directly by the runner.

    Args:
        debug: Enable DEBUG level output.
        format_string: Custom format string. If None, uses the default
            ``[LEVEL] name: message`` format.
        add_secret_filter: Whether to add the SecretFilter.
    """
    if format_string is None:
        format_string = "[%(levelname)s] %(name)s: %(message)s"

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string))

    if add_secret_filter:
        handler.addFilter(SecretFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.WARNING)

    # Remove existing handlers to avoid duplicates
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)

    root_logger.addHandler(handler)
