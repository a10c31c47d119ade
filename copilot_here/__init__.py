# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""copilot-here: run the GitHub Copilot CLI inside disposable containers.

The ``airlock`` subpackage launches the agent behind an egress-filtering
proxy container; the rest of the package holds the shared configuration,
path and logging plumbing.
"""
