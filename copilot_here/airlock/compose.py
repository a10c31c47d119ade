# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Compose file generation for Airlock sessions.

The compose template uses two kinds of placeholders:

- **Value tokens** (``{{PROJECT_NAME}}``, ``{{APP_IMAGE}}``, ...) are
  replaced in place.
- **Block tokens** (``{{EXTRA_MOUNTS}}``, ``{{LOGS_MOUNT}}``,
  ``{{EXTRA_SANDBOX_FLAGS}}``) stand alone on a line.  The whole line is
  replaced by zero or more lines; with no lines it is deleted, because an
  empty ``- `` entry is invalid in a compose volume list.

Rendering is a pure function over strings (``render_template``) so it can
be tested against literal templates.  ``generate_compose_file`` builds the
token tables for a session and writes the result to a temp file.
Host paths and the agent command are escaped for compose's ``$VAR``
interpolation, so a literal ``$`` reaches the container unchanged.
"""

from __future__ import annotations

import json
import logging
import re
import tempfile
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from copilot_here.airlock.identity import SessionIdentity
from copilot_here.airlock.sandbox_flags import SandboxFlags
from copilot_here.mounts import MountSpec


logger = logging.getLogger(__name__)

#: In-container invocation token of the agent.
AGENT_COMMAND = "copilot"
BANNER_FLAG = "--banner"
YOLO_FLAGS = ("--allow-all-tools", "--allow-all-paths")
ADD_DIR_FLAG = "--add-dir"

EXTRA_MOUNTS = "EXTRA_MOUNTS"
LOGS_MOUNT = "LOGS_MOUNT"
EXTRA_SANDBOX_FLAGS = "EXTRA_SANDBOX_FLAGS"

#: Where the proxy writes its request log inside the container.
CONTAINER_LOGS_DIR = "/logs"

_TOKEN = re.compile(r"\{\{([A-Z][A-Z0-9_]*)\}\}")
_VOLUME_INDENT = "      "


def render_template(
    template: str,
    values: Mapping[str, str],
    blocks: Mapping[str, Sequence[str]],
) -> str:
    """Render *template* with value and block substitutions.

    Args:
        template: Template text.
        values: Token name (without braces) to replacement text.
        blocks: Block token name to the lines replacing its line. An empty
            sequence deletes the line.

    Returns:
        Rendered text. Unknown tokens are left untouched.
    """
    out: list[str] = []
    for line in template.split("\n"):
        block = _block_on_line(line, blocks)
        if block is not None:
            out.extend(blocks[block])
            continue
        out.append(
            _TOKEN.sub(lambda m: values.get(m.group(1), m.group(0)), line)
        )
    return "\n".join(out)


def _block_on_line(
    line: str, blocks: Mapping[str, Sequence[str]]
) -> str | None:
    for name in blocks:
        if f"{{{{{name}}}}}" in line:
            return name
    return None


def unresolved_tokens(text: str) -> list[str]:
    """Return placeholder names still present in *text*, in order."""
    return list(dict.fromkeys(_TOKEN.findall(text)))


def build_agent_invocation(
    is_yolo: bool, user_args: Sequence[str] = ()
) -> list[str]:
    """Build the agent invocation as the user asked for it.

    This is the vector :func:`build_agent_command` expects: the agent name,
    the yolo permission flags when enabled, then the user's own arguments.
    """
    invocation = [AGENT_COMMAND]
    if is_yolo:
        invocation += YOLO_FLAGS
    invocation += user_args
    return invocation


def build_agent_command(
    agent_args: Sequence[str],
    is_yolo: bool,
    container_work_dir: str,
) -> list[str]:
    """Build the in-container command vector for the agent.

    *agent_args* is the invocation from :func:`build_agent_invocation`,
    its first element being the agent's own name (replaced by
    :data:`AGENT_COMMAND`).  With nothing beyond the name (and, in yolo
    mode, the two permission flags) the session is interactive and gets the
    banner; otherwise everything after the name is passed through verbatim.

    Args:
        agent_args: Agent invocation as supplied by the caller.
        is_yolo: Grant unrestricted tool and path permissions.
        container_work_dir: Working directory inside the container.

    Returns:
        The command vector.
    """
    command = [AGENT_COMMAND]
    if is_yolo:
        command += [*YOLO_FLAGS, ADD_DIR_FLAG, container_work_dir]

    if len(agent_args) <= 1 or (is_yolo and len(agent_args) <= 3):
        command.append(BANNER_FLAG)
    else:
        command.extend(agent_args[1:])
    return command


def encode_agent_command(command: Sequence[str]) -> str:
    """Encode the command vector as a JSON array (valid YAML flow list)."""
    return json.dumps(list(command))


@dataclass(frozen=True)
class ComposeContext:
    """Everything the template needs for one session.

    Attributes:
        identity: Session naming root.
        app_image: App container image reference.
        proxy_image: Proxy container image reference.
        work_dir: Host working directory.
        container_work_dir: Working directory inside the app container.
        copilot_config_dir: Host directory with Copilot CLI state.
        network_config: Processed policy file.
        user_home: Host home directory (for mount path mapping).
        puid: Numeric user ID.
        pgid: Numeric group ID.
        agent_args: Caller's agent invocation.
        is_yolo: Unrestricted agent permissions.
        mounts: Extra mounts, in order.
        logs_dir: Host proxy log directory, or None when logging is off.
        sandbox_flags: Parsed ``SANDBOX_FLAGS``.
    """

    identity: SessionIdentity
    app_image: str
    proxy_image: str
    work_dir: Path
    container_work_dir: str
    copilot_config_dir: Path
    network_config: Path
    user_home: Path
    puid: str
    pgid: str
    agent_args: tuple[str, ...] = ()
    is_yolo: bool = False
    mounts: tuple[MountSpec, ...] = ()
    logs_dir: Path | None = None
    sandbox_flags: SandboxFlags = field(default_factory=SandboxFlags)


def escape_interpolation(text: str) -> str:
    """Escape ``$`` so compose does not treat it as variable interpolation."""
    return text.replace("$", "$$")


def mount_lines(mounts: Sequence[MountSpec], user_home: Path) -> list[str]:
    """Render extra mounts as compose volume list entries."""
    return [
        f"{_VOLUME_INDENT}- {escape_interpolation(m.to_volume(user_home))}"
        for m in mounts
    ]


def logs_mount_lines(logs_dir: Path | None) -> list[str]:
    """Render the proxy log bind mount, or nothing when logging is off."""
    if logs_dir is None:
        return []
    volume = escape_interpolation(f"{logs_dir}:{CONTAINER_LOGS_DIR}")
    return [f"{_VOLUME_INDENT}- {volume}"]


def template_tables(
    context: ComposeContext,
) -> tuple[dict[str, str], dict[str, list[str]]]:
    """Build the value and block tables for *context*."""
    command = build_agent_command(
        context.agent_args, context.is_yolo, context.container_work_dir
    )
    values = {
        "PROJECT_NAME": context.identity.project_name,
        "APP_IMAGE": context.app_image,
        "PROXY_IMAGE": context.proxy_image,
        "WORK_DIR": escape_interpolation(str(context.work_dir)),
        "CONTAINER_WORK_DIR": escape_interpolation(
            context.container_work_dir
        ),
        "COPILOT_CONFIG": escape_interpolation(
            str(context.copilot_config_dir)
        ),
        "NETWORK_CONFIG": escape_interpolation(str(context.network_config)),
        "PUID": context.puid,
        "PGID": context.pgid,
        "COPILOT_ARGS": escape_interpolation(encode_agent_command(command)),
        "NETWORKS": context.sandbox_flags.networks_yaml(),
        "EXTERNAL_NETWORK": context.sandbox_flags.network,
    }
    blocks = {
        EXTRA_MOUNTS: mount_lines(context.mounts, context.user_home),
        LOGS_MOUNT: logs_mount_lines(context.logs_dir),
        EXTRA_SANDBOX_FLAGS: context.sandbox_flags.compose_lines(),
    }
    return values, blocks


def generate_compose_file(
    template: str,
    context: ComposeContext,
    output_dir: Path | None = None,
) -> Path | None:
    """Render the template for *context* into a new temp file.

    Args:
        template: Compose template text.
        context: Session values.
        output_dir: Directory for the file. Defaults to the system temp
            directory.

    Returns:
        Path to the ``.yml`` file, or None if it could not be built or
        written.
    """
    try:
        values, blocks = template_tables(context)
        rendered = render_template(template, values, blocks)

        leftover = unresolved_tokens(rendered)
        if leftover:
            logger.warning(
                "Compose template has unresolved placeholders: %s",
                ", ".join(leftover),
            )

        directory = output_dir or Path(tempfile.gettempdir())
        # Compose requires a .yml/.yaml extension
        path = directory / f"copilot-airlock-{uuid.uuid4().hex}.yml"
        path.write_text(rendered)
    except OSError as e:
        logger.error("Cannot write compose file: %s", e)
        return None

    logger.debug("Generated compose file: %s", path)
    return path
