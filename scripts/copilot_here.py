#!/usr/bin/env python3
# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""copilot-here script entry point.

Delegates to :func:`copilot_here.cli.cli`.  Equivalent to ``copilot-here``
after installation.
"""

import sys
from pathlib import Path


# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from copilot_here.cli import cli


if __name__ == "__main__":
    cli()
