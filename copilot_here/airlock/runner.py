# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Airlock session lifecycle.

One ``AirlockRunner.run()`` call is one session::

    RECLAIM_ORPHANS -> GENERATE -> START_PROXY -> RUN_APP -> TEARDOWN -> DONE

Any stage may jump straight to TEARDOWN.  Teardown always runs and never
raises: every action (stop/remove the proxy, remove both networks, remove
the scratch volume, delete the temp files) is attempted independently, and
its failure is logged and collected.  Runtime resources are only touched
once proxy startup has been attempted; before that, only temp files can
exist.

While the app container runs, SIGINT belongs to the agent: the runner
swallows it until teardown has finished, so Ctrl+C inside the agent cannot
abort the cleanup.  The runner installs a no-op handler rather than
``SIG_IGN``: an ignored signal stays ignored in exec'd children, which
would leave the compose client deaf to Ctrl+C.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, TextIO

from copilot_here.airlock.compose import ComposeContext, generate_compose_file
from copilot_here.airlock.identity import SessionIdentity
from copilot_here.airlock.orphans import ReclaimReport, reclaim_orphans
from copilot_here.airlock.policy import (
    parse_rule_set,
    prepare_logs_dir,
    process_policy,
)
from copilot_here.airlock.runtime import ContainerRuntime
from copilot_here.airlock.sandbox_flags import SandboxFlags
from copilot_here.airlock.template import TemplateError, get_or_fetch_template
from copilot_here.config import AppEnvironment, HereConfig
from copilot_here.logging import SecretFilter
from copilot_here.mounts import MountSpec, merge_mounts, validate_mounts


NO_RULES_MESSAGE = (
    "❌ No Airlock rules file found. Enable it first with --enable-airlock"
)

_TITLE_RESET = "\x1b]0;\x07"


def _swallow_sigint(signum: int, frame: object) -> None:
    """SIGINT handler that does nothing; the foreground child gets it."""


class SessionState(Enum):
    """Lifecycle stage of an Airlock session."""

    IDLE = "idle"
    RECLAIM_ORPHANS = "reclaim_orphans"
    GENERATE = "generate"
    START_PROXY = "start_proxy"
    RUN_APP = "run_app"
    TEARDOWN = "teardown"
    DONE = "done"


@dataclass
class _Session:
    """Resources owned by one session, for teardown."""

    identity: SessionIdentity
    files: list[Path] = field(default_factory=list)
    proxy_attempted: bool = False
    title_set: bool = False


def terminal_title(directory_name: str, is_yolo: bool) -> str:
    """OSC escape setting the terminal title for a session."""
    icon = "🤖⚡️" if is_yolo else "🤖"
    return f"\x1b]0;{icon} {directory_name} 🛡️\x07"


class AirlockRunner:
    """Runs one Airlock session at a time.

    Args:
        config: Effective configuration.
        runtime: Container runtime to drive.
        environment: Token and numeric IDs of the host user.
        logger: Logger for diagnostics. Debug output (including the
            generated compose file) is emitted when it is enabled for
            DEBUG.
        environ: Base environment for compose child processes and
            ``SANDBOX_FLAGS``. Defaults to ``os.environ``.
        out: Stream for the session banner and terminal title.
        err: Stream for user-facing errors.
        session_id: Fixed session token; generated per run when None.
        temp_dir: Directory for the generated compose file; defaults to
            the system temp directory.
        confirm_mount: Asked whether a mount of a sensitive host path may
            proceed; such mounts are skipped when None.
    """

    def __init__(
        self,
        config: HereConfig,
        *,
        runtime: ContainerRuntime,
        environment: AppEnvironment,
        logger: logging.Logger | None = None,
        environ: Mapping[str, str] | None = None,
        out: TextIO | None = None,
        err: TextIO | None = None,
        session_id: str | None = None,
        temp_dir: Path | None = None,
        confirm_mount: Callable[[Path], bool] | None = None,
    ) -> None:
        self._config = config
        self._runtime = runtime
        self._environment = environment
        self._log = logger or logging.getLogger(__name__)
        self._environ = dict(os.environ if environ is None else environ)
        self._out = out or sys.stdout
        self._err = err or sys.stderr
        self._session_id = session_id
        self._temp_dir = temp_dir
        self._confirm_mount = confirm_mount
        self._previous_sigint: Any = None
        self._sigint_ignored = False

        self.state = SessionState.IDLE
        self.identity: SessionIdentity | None = None
        self.reclaim_report: ReclaimReport | None = None
        self.teardown_failures: list[str] = []

        if environment.github_token:
            SecretFilter.register_secret(environment.github_token)

    def run(
        self,
        image_tag: str | None = None,
        is_yolo: bool = False,
        mounts: Sequence[MountSpec] = (),
        agent_args: Sequence[str] = (),
    ) -> int:
        """Run a full session and return its exit code.

        Args:
            image_tag: App image tag; the configured tag when None.
            is_yolo: Give the agent unrestricted tool and path access.
            mounts: Command-line mounts, added after the config mounts.
            agent_args: Agent invocation; the first element is the agent's
                own name.

        Returns:
            The app container's exit code, or 1 if the session failed
            before the app ran.
        """
        self.teardown_failures = []
        self.state = SessionState.RECLAIM_ORPHANS
        self.reclaim_report = reclaim_orphans(self._runtime)
        if self.reclaim_report.removed:
            self._log.debug(
                "Reclaimed %d orphaned resources",
                self.reclaim_report.removed,
            )

        self.state = SessionState.GENERATE
        if self._config.rules_path is None:
            self._error(NO_RULES_MESSAGE)
            self.state = SessionState.DONE
            return 1

        paths = self._config.paths
        session = _Session(
            SessionIdentity.create(paths.directory_name, self._session_id)
        )
        self.identity = session.identity

        exit_code = 1
        try:
            exit_code = self._run_session(
                session,
                image_tag,
                is_yolo,
                self._session_mounts(mounts),
                tuple(agent_args),
            )
        finally:
            self.state = SessionState.TEARDOWN
            self.teardown_failures = self._teardown(session)
            if session.title_set:
                self._write_title(_TITLE_RESET)
            self._restore_sigint()
            self.state = SessionState.DONE
        return exit_code

    def _session_mounts(
        self, mounts: Sequence[MountSpec]
    ) -> tuple[MountSpec, ...]:
        """Config mounts then *mounts*, validated and deduplicated."""
        home = self._config.paths.user_home
        checked = validate_mounts(
            (*self._config.mounts, *mounts), home, self._confirm_mount
        )
        return tuple(merge_mounts(checked, home))

    def _run_session(
        self,
        session: _Session,
        image_tag: str | None,
        is_yolo: bool,
        mounts: tuple[MountSpec, ...],
        agent_args: tuple[str, ...],
    ) -> int:
        compose_file = self._generate(
            session, image_tag, is_yolo, mounts, agent_args
        )
        if compose_file is None:
            return 1

        self.state = SessionState.START_PROXY
        session.proxy_attempted = True
        self._write_title(
            terminal_title(self._config.paths.directory_name, is_yolo)
        )
        session.title_set = True
        if not self._start_proxy(session, compose_file):
            return 1

        self.state = SessionState.RUN_APP
        return self._run_app(session, compose_file)

    def _generate(
        self,
        session: _Session,
        image_tag: str | None,
        is_yolo: bool,
        mounts: tuple[MountSpec, ...],
        agent_args: tuple[str, ...],
    ) -> Path | None:
        """Fetch the template, process the policy and write compose file."""
        config = self._config
        paths = config.paths
        rules_path = config.rules_path
        assert rules_path is not None

        try:
            template_path = get_or_fetch_template(
                paths.global_config_dir, config.template_url
            )
            template = template_path.read_text(encoding="utf-8")
        except TemplateError as e:
            self._error(f"❌ {e}")
            return None
        except (OSError, UnicodeDecodeError) as e:
            self._error(f"❌ Failed to read compose template: {e}")
            return None

        network_config = process_policy(rules_path, paths.global_config_dir)
        if network_config is None:
            self._error("❌ Failed to process network config")
            return None
        session.files.append(network_config)

        try:
            rules_content = rules_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            self._log.warning("Cannot re-read %s: %s", rules_path, e)
            rules_content = ""
        logs_dir = prepare_logs_dir(rules_content, paths.local_config_dir)

        sandbox_flags = SandboxFlags.from_env(self._environ)
        app_image = config.app_image(image_tag)
        context = ComposeContext(
            identity=session.identity,
            app_image=app_image,
            proxy_image=config.proxy_image,
            work_dir=paths.current_dir,
            container_work_dir=paths.container_work_dir,
            copilot_config_dir=paths.copilot_config_dir,
            network_config=network_config,
            user_home=paths.user_home,
            puid=self._environment.user_id,
            pgid=self._environment.group_id,
            agent_args=agent_args,
            is_yolo=is_yolo,
            mounts=mounts,
            logs_dir=logs_dir,
            sandbox_flags=sandbox_flags,
        )
        compose_file = generate_compose_file(
            template, context, self._temp_dir
        )
        if compose_file is None:
            self._error("❌ Failed to generate compose file")
            return None
        session.files.append(compose_file)

        if self._log.isEnabledFor(logging.DEBUG):
            self._log.debug(
                "Compose file %s:\n%s", compose_file, compose_file.read_text()
            )

        self._print_banner(
            session, app_image, rules_path, rules_content, sandbox_flags
        )
        return compose_file

    def _print_banner(
        self,
        session: _Session,
        app_image: str,
        rules_path: Path,
        rules_content: str,
        sandbox_flags: SandboxFlags,
    ) -> None:
        lines = [
            f"🛡️  Airlock session {session.identity.project_name}",
            f"   App image:      {app_image}",
            f"   Proxy image:    {self._config.proxy_image}",
            f"   Network config: {rules_path}",
        ]
        try:
            rule_set = parse_rule_set(rules_content)
        except ValueError as e:
            self._log.debug("Cannot summarize network policy: %s", e)
        else:
            lines.append(
                f"   Mode:           {rule_set.mode} "
                f"({len(rule_set.rules)} rules)"
            )
        if sandbox_flags.uses_external_network:
            lines.append(f"   Network:        {sandbox_flags.network}")
        print("\n".join(lines), file=self._out)

    def _compose_env(self) -> dict[str, str]:
        env = dict(self._environ)
        env["GITHUB_TOKEN"] = self._environment.github_token
        env["COMPOSE_MENU"] = "0"
        return env

    def _start_proxy(self, session: _Session, compose_file: Path) -> bool:
        project = session.identity.project_name
        self._log.debug("Starting proxy for %s", project)
        try:
            result = self._runtime.run_compose(
                compose_file,
                project,
                ["up", "-d", "proxy"],
                self._compose_env(),
            )
        except OSError as e:
            self._error(f"❌ Failed to start proxy container: {e}")
            return False
        if result.returncode != 0:
            self._error("❌ Failed to start proxy container")
            if result.stderr:
                print(result.stderr, end="", file=self._err)
            return False
        return True

    def _run_app(self, session: _Session, compose_file: Path) -> int:
        self._ignore_sigint()
        try:
            result = self._runtime.run_compose(
                compose_file,
                session.identity.project_name,
                ["run", "-i", "--rm", "app"],
                self._compose_env(),
                interactive=True,
            )
        except OSError as e:
            self._error(f"❌ Failed to run app container: {e}")
            return 1
        self._log.debug("App container exited with %d", result.returncode)
        return result.returncode

    def _teardown(self, session: _Session) -> list[str]:
        """Release everything the session may have created.

        Returns:
            Descriptions of the actions that failed.
        """
        identity = session.identity
        runtime = self._runtime
        actions: list[tuple[str, Callable[[], object]]] = []
        if session.proxy_attempted:
            actions += [
                (
                    f"stop {identity.proxy_container}",
                    lambda: runtime.run_quiet("stop", identity.proxy_container),
                ),
                (
                    f"remove {identity.proxy_container}",
                    lambda: runtime.run_quiet("rm", identity.proxy_container),
                ),
                (
                    f"remove network {identity.airlock_network}",
                    lambda: runtime.run_quiet(
                        "network", "rm", identity.airlock_network
                    ),
                ),
                (
                    f"remove network {identity.bridge_network}",
                    lambda: runtime.run_quiet(
                        "network", "rm", identity.bridge_network
                    ),
                ),
                (
                    f"remove volume {identity.proxy_ca_volume}",
                    lambda: runtime.run_quiet(
                        "volume", "rm", identity.proxy_ca_volume
                    ),
                ),
            ]
        for path in session.files:
            actions.append(
                (f"delete {path}", lambda p=path: p.unlink(missing_ok=True))
            )

        failures: list[str] = []
        for description, action in actions:
            try:
                ok = action()
            except Exception as e:
                self._log.debug("Teardown: %s failed: %s", description, e)
                failures.append(description)
                continue
            if ok is False:
                self._log.debug("Teardown: %s failed", description)
                failures.append(description)
        return failures

    def _ignore_sigint(self) -> None:
        try:
            self._previous_sigint = signal.signal(
                signal.SIGINT, _swallow_sigint
            )
        except ValueError:
            # Not the main thread; signals cannot be handled here
            self._log.debug("Cannot ignore SIGINT outside the main thread")
            return
        self._sigint_ignored = True

    def _restore_sigint(self) -> None:
        if not self._sigint_ignored:
            return
        previous = self._previous_sigint
        if previous is None:
            previous = signal.SIG_DFL
        signal.signal(signal.SIGINT, previous)
        self._sigint_ignored = False
        self._previous_sigint = None

    def _write_title(self, sequence: str) -> None:
        try:
            self._out.write(sequence)
            self._out.flush()
        except (OSError, ValueError) as e:
            self._log.debug("Cannot set terminal title: %s", e)

    def _error(self, message: str) -> None:
        print(message, file=self._err)
