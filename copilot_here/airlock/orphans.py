# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Reclamation of resources left behind by dead Airlock sessions.

A session that is killed (or whose host crashes) never reaches teardown
and leaves its proxy container and networks behind.  Before each new
session the runner sweeps them, using only the naming convention from
:mod:`copilot_here.airlock.identity`:

- A container named ``*-proxy`` is an orphan unless a running container
  named ``{prefix}-app*`` still uses it.
- A network named ``*_airlock`` or ``*_bridge`` is an orphan when no
  container is attached to it.

Every listing and removal is independent; a failure is logged and the
sweep continues.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from copilot_here.airlock.identity import (
    AIRLOCK_NETWORK_SUFFIX,
    APP_SUFFIX,
    BRIDGE_NETWORK_SUFFIX,
    PROXY_SUFFIX,
)
from copilot_here.airlock.runtime import ContainerRuntime


logger = logging.getLogger(__name__)

_NETWORK_SUFFIXES = (AIRLOCK_NETWORK_SUFFIX, BRIDGE_NETWORK_SUFFIX)


@dataclass
class ReclaimReport:
    """What a reclamation sweep removed (or failed to remove).

    Attributes:
        containers: Orphaned proxy containers that were removed.
        networks: Orphaned session networks that were removed.
        failures: Resources that were identified but could not be removed.
    """

    containers: list[str] = field(default_factory=list)
    networks: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    @property
    def removed(self) -> int:
        """Number of resources removed."""
        return len(self.containers) + len(self.networks)


def _has_running_app(prefix: str, running: list[str]) -> bool:
    app_prefix = f"{prefix}{APP_SUFFIX}".lower()
    return any(name.lower().startswith(app_prefix) for name in running)


def reclaim_containers(
    runtime: ContainerRuntime, report: ReclaimReport
) -> None:
    """Force-remove proxy containers whose app container is not running."""
    running = runtime.list_names("ps", "--format", "{{.Names}}")
    all_names = runtime.list_names("ps", "-a", "--format", "{{.Names}}")

    for name in all_names:
        if not name.endswith(PROXY_SUFFIX):
            continue
        prefix = name[: -len(PROXY_SUFFIX)]
        if _has_running_app(prefix, running):
            logger.debug("Proxy %s still serves a running app", name)
            continue
        try:
            removed = runtime.run_quiet("rm", "-f", name)
        except Exception:
            logger.debug("Error removing container %s", name, exc_info=True)
            removed = False
        if removed:
            logger.info("Removed orphaned proxy: %s", name)
            report.containers.append(name)
        else:
            report.failures.append(name)


def _attached_containers(runtime: ContainerRuntime, network: str) -> int | None:
    output = runtime.capture(
        "network", "inspect", network, "--format", "{{len .Containers}}"
    )
    if output is None:
        return None
    try:
        return int(output.strip())
    except ValueError:
        logger.debug("Unexpected inspect output for %s: %r", network, output)
        return None


def reclaim_networks(runtime: ContainerRuntime, report: ReclaimReport) -> None:
    """Remove session networks that have no attached containers."""
    networks = runtime.list_names("network", "ls", "--format", "{{.Name}}")
    for network in networks:
        if not network.endswith(_NETWORK_SUFFIXES):
            continue
        try:
            count = _attached_containers(runtime, network)
            # Unknown counts are treated as in use
            if count != 0:
                continue
            removed = runtime.run_quiet("network", "rm", network)
        except Exception:
            logger.debug("Error reclaiming network %s", network, exc_info=True)
            removed = False
        if removed:
            logger.info("Removed orphaned network: %s", network)
            report.networks.append(network)
        else:
            report.failures.append(network)


def reclaim_orphans(runtime: ContainerRuntime) -> ReclaimReport:
    """Sweep orphaned proxy containers, then orphaned networks.

    Containers go first so that networks they held are empty by the time
    the network pass inspects them.

    Args:
        runtime: Container runtime to query.

    Returns:
        Report of removed resources. Never raises for runtime failures.
    """
    report = ReclaimReport()
    sweeps = (
        ("containers", reclaim_containers),
        ("networks", reclaim_networks),
    )
    for kind, sweep in sweeps:
        try:
            sweep(runtime, report)
        except Exception:
            logger.warning("Orphan sweep of %s failed", kind, exc_info=True)
    return report
