# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Airlock mode: the agent behind an egress-filtering proxy.

Each session is a disposable two-container compose project (proxy and
app) with its own networks and scratch volume, all named after the
session's project name so leftovers from crashed sessions can be found
and reclaimed.
"""

from copilot_here.airlock.compose import (
    ComposeContext,
    build_agent_command,
    build_agent_invocation,
    encode_agent_command,
    escape_interpolation,
    generate_compose_file,
    render_template,
)
from copilot_here.airlock.identity import (
    SessionIdentity,
    generate_session_id,
    make_project_name,
)
from copilot_here.airlock.orphans import ReclaimReport, reclaim_orphans
from copilot_here.airlock.policy import (
    NetworkRule,
    NetworkRuleSet,
    parse_rule_set,
    prepare_logs_dir,
    process_policy,
)
from copilot_here.airlock.runner import AirlockRunner, SessionState
from copilot_here.airlock.runtime import (
    ContainerRuntime,
    RuntimeNotFoundError,
    detect_runtime,
)
from copilot_here.airlock.sandbox_flags import SandboxFlags
from copilot_here.airlock.template import TemplateError, get_or_fetch_template


__all__ = [
    # compose
    "ComposeContext",
    "build_agent_command",
    "build_agent_invocation",
    "encode_agent_command",
    "escape_interpolation",
    "generate_compose_file",
    "render_template",
    # identity
    "SessionIdentity",
    "generate_session_id",
    "make_project_name",
    # orphans
    "ReclaimReport",
    "reclaim_orphans",
    # policy
    "NetworkRule",
    "NetworkRuleSet",
    "parse_rule_set",
    "prepare_logs_dir",
    "process_policy",
    # runner
    "AirlockRunner",
    "SessionState",
    # runtime
    "ContainerRuntime",
    "RuntimeNotFoundError",
    "detect_runtime",
    # sandbox_flags
    "SandboxFlags",
    # template
    "TemplateError",
    "get_or_fetch_template",
]
