"""``up`` and ``down``: drive the process runner against persisted state.

``up`` for one environment:

1. resolve the plan and build every kubectl argv (no side effects yet)
2. load state and reject ports held by other live sessions
3. replace pass: stop the previous session for the same config/environment
4. bind-probe the target ports
5. start each forward port in declaration order, rolling back on failure
6. persist the new session

Once the replace pass has stopped an old session, its removal is written to
state even if a later step fails, so no record points at dead process groups.

``down`` stops every matching session and always persists what it achieved;
a session that could not be fully stopped stays recorded for a retry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path
from typing import Any, TypeVar

from kubeforward.config.models import Config, PortMapping
from kubeforward.issues import Issue
from kubeforward.runtime.kubectl import ForwardCommandError, build_port_forward_argv
from kubeforward.runtime.paths import (
    build_forward_log_path,
    default_logs_dir_for_config,
    default_state_path_for_config,
    normalize_config_path,
)
from kubeforward.runtime.plan import ResolvedEnvironment, ResolvedForward, build_resolved_plan
from kubeforward.runtime.preflight import PortProbe, find_claimed_ports, find_unavailable_ports, probe_port
from kubeforward.runtime.process_runner import (
    ProcessRunner,
    ProcessStartError,
    ProcessStopError,
    StartProcessRequest,
)
from kubeforward.runtime.state_store import (
    ManagedForwardProcess,
    ManagedSession,
    RuntimeState,
    StateStoreError,
    load_state,
    save_state,
)

logger = logging.getLogger(__name__)

__all__ = ["DownResult", "LaunchSpec", "Outcome", "SessionOrchestrator", "UpResult"]

STARTED_AT_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
SESSION_STAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class Outcome(StrEnum):
    OK = "ok"
    CONFIG_ERROR = "config_error"
    STATE_ERROR = "state_error"
    REPLACE_FAILED = "replace_failed"
    PREFLIGHT_FAILED = "preflight_failed"
    ROLLED_BACK = "rolled_back"
    PARTIAL_FAILURE = "partial_failure"


@dataclass(frozen=True)
class LaunchSpec:
    """A single ``kubectl port-forward`` process to start."""

    forward: ResolvedForward
    port: PortMapping
    argv: list[str]
    log_path: Path

    @property
    def context(self) -> str:
        return f"environments.{self.forward.environment}.forwards.{self.forward.name}.ports.{self.port.local}"


@dataclass
class UpResult:
    outcome: Outcome
    config_path: str
    state_path: Path
    environment: str | None = None
    daemon: bool = False
    logs_dir: Path | None = None
    session: ManagedSession | None = None
    replaced: list[ManagedSession] = field(default_factory=list)
    issues: list[Issue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": str(self.outcome),
            "configPath": self.config_path,
            "statePath": str(self.state_path),
            "environment": self.environment,
            "daemon": self.daemon,
            "logsDir": str(self.logs_dir) if self.logs_dir else None,
            "session": self.session.model_dump(by_alias=True) if self.session else None,
            "replaced": [session.id for session in self.replaced],
            "issues": [issue.to_dict() for issue in self.issues],
        }


@dataclass
class DownResult:
    outcome: Outcome
    config_path: str
    state_path: Path
    environment: str | None = None
    stopped: list[ManagedSession] = field(default_factory=list)
    retained: list[ManagedSession] = field(default_factory=list)
    issues: list[Issue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @property
    def stopped_forwards(self) -> int:
        return sum(len(session.forwards) for session in self.stopped)

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": str(self.outcome),
            "configPath": self.config_path,
            "statePath": str(self.state_path),
            "environment": self.environment,
            "stopped": [session.id for session in self.stopped],
            "retained": [session.id for session in self.retained],
            "issues": [issue.to_dict() for issue in self.issues],
        }


_Result = TypeVar("_Result", UpResult, DownResult)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionOrchestrator:
    """Compose plan resolution, state and the process runner into up/down."""

    def __init__(
        self,
        runner: ProcessRunner,
        *,
        state_path: Path | None = None,
        logs_dir: Path | None = None,
        kubectl: str | None = None,
        port_probe: PortProbe = probe_port,
        clock: Callable[[], datetime] = _utc_now,
        cwd: Path | None = None,
    ) -> None:
        self._runner = runner
        self._state_path = state_path
        self._logs_dir = logs_dir
        self._kubectl = kubectl
        self._port_probe = port_probe
        self._clock = clock
        self._cwd = cwd

    @property
    def runner(self) -> ProcessRunner:
        return self._runner

    def state_path_for(self, config_path: Path | str) -> Path:
        return default_state_path_for_config(config_path, self._state_path)

    def logs_dir_for(self, config_path: Path | str) -> Path:
        return self._logs_dir or default_logs_dir_for_config(config_path)

    # ------------------------------------------------------------------ up

    def up(
        self,
        config: Config,
        config_path: Path | str,
        environment_filter: str | None = None,
        daemon: bool = False,
    ) -> UpResult:
        normalized = normalize_config_path(config_path)
        result = UpResult(
            outcome=Outcome.OK,
            config_path=normalized,
            state_path=self.state_path_for(normalized),
            daemon=daemon,
        )

        target = environment_filter or config.first_environment()
        if target is None:
            return self._fail(result, Outcome.CONFIG_ERROR, [Issue("environments", "no environments defined")])
        if target not in config.environments:
            return self._fail(result, Outcome.CONFIG_ERROR, [Issue(f"environments.{target}", "unknown environment")])
        result.environment = target

        build = build_resolved_plan(config, normalized, target)
        if not build.ok or build.plan is None:
            return self._fail(result, Outcome.CONFIG_ERROR, build.errors)
        environment = build.plan.environment(target)
        if environment is None:
            return self._fail(result, Outcome.CONFIG_ERROR, [Issue(f"environments.{target}", "unknown environment")])

        result.logs_dir = self.logs_dir_for(normalized)
        launches, launch_issues = self._launch_specs(environment, result.logs_dir)
        if launch_issues:
            return self._fail(result, Outcome.CONFIG_ERROR, launch_issues)

        loaded = load_state(result.state_path)
        if not loaded.ok:
            return self._fail(result, Outcome.STATE_ERROR, loaded.errors)
        state = loaded.state

        if not self._runner.simulated:
            claimed = find_claimed_ports(state, normalized, environment, self._runner.is_alive)
            if not claimed.passed:
                return self._fail(result, Outcome.PREFLIGHT_FAILED, claimed.errors)

        result.replaced, replace_issues = self._replace_pass(state, normalized, target)
        if replace_issues:
            issues = replace_issues + self._persist_replacements(result, state)
            return self._fail(result, Outcome.REPLACE_FAILED, issues)

        if not self._runner.simulated:
            available = find_unavailable_ports(environment, self._port_probe)
            if not available.passed:
                issues = available.errors + self._persist_replacements(result, state)
                return self._fail(result, Outcome.PREFLIGHT_FAILED, issues)

        session = self._new_session(normalized, target, daemon)
        for launch in launches:
            try:
                process = self._runner.start(
                    StartProcessRequest(
                        argv=launch.argv,
                        log_path=launch.log_path,
                        cwd=self._cwd,
                        daemon=daemon,
                    )
                )
            except ProcessStartError as exc:
                logger.warning("Start failed for %s; rolling back %d process(es)", launch.context, len(session.forwards))
                issues = [Issue(launch.context, str(exc))]
                issues += self._rollback(session)
                issues += self._persist_replacements(result, state)
                return self._fail(result, Outcome.ROLLED_BACK, issues)
            session.forwards.append(
                ManagedForwardProcess(
                    environment=target,
                    forward_name=launch.forward.name,
                    local_port=launch.port.local,
                    remote_port=launch.port.remote,
                    pid=process.pid,
                )
            )

        state.sessions.append(session)
        try:
            save_state(result.state_path, state)
        except StateStoreError as exc:
            state.sessions.remove(session)
            issues = [Issue(str(result.state_path), str(exc))] + self._rollback(session)
            return self._fail(result, Outcome.STATE_ERROR, issues)

        result.session = session
        logger.info("Started session %s with %d process(es)", session.id, len(session.forwards))
        return result

    def _launch_specs(
        self, environment: ResolvedEnvironment, logs_dir: Path
    ) -> tuple[list[LaunchSpec], list[Issue]]:
        launches: list[LaunchSpec] = []
        issues: list[Issue] = []
        for forward in environment.forwards:
            for port in forward.ports:
                try:
                    argv = build_port_forward_argv(forward, port, environment.settings, binary=self._kubectl)
                except ForwardCommandError as exc:
                    issues.append(
                        Issue(f"environments.{environment.name}.forwards.{forward.name}.ports.{port.local}", str(exc))
                    )
                    continue
                log_path = build_forward_log_path(logs_dir, environment.name, forward.name, port.local)
                launches.append(LaunchSpec(forward=forward, port=port, argv=argv, log_path=log_path))
        return launches, issues

    def _new_session(self, config_path: str, environment: str, daemon: bool) -> ManagedSession:
        now = self._clock()
        return ManagedSession(
            id=f"{config_path}::{environment}::{now.strftime(SESSION_STAMP_FORMAT)}",
            config_path=config_path,
            environment=environment,
            daemon=daemon,
            started_at_utc=now.strftime(STARTED_AT_FORMAT),
        )

    def _replace_pass(
        self, state: RuntimeState, config_path: str, environment: str
    ) -> tuple[list[ManagedSession], list[Issue]]:
        replaced: list[ManagedSession] = []
        for session in state.sessions_for(config_path, environment):
            logger.info("Replacing session %s", session.id)
            issues = self._stop_session(session)
            if issues:
                self._drop_sessions(state, replaced)
                return replaced, issues
            replaced.append(session)
        self._drop_sessions(state, replaced)
        return replaced, []

    def _persist_replacements(self, result: UpResult, state: RuntimeState) -> list[Issue]:
        """Record replace-pass removals on a failure path; nothing to do if none."""
        if not result.replaced:
            return []
        try:
            save_state(result.state_path, state)
        except StateStoreError as exc:
            return [Issue(str(result.state_path), str(exc))]
        return []

    def _rollback(self, session: ManagedSession) -> list[Issue]:
        issues: list[Issue] = []
        for process in reversed(session.forwards):
            try:
                self._runner.stop(process.pid)
            except ProcessStopError as exc:
                issues.append(Issue(f"rollback.{process.forward_name}.{process.local_port}", str(exc)))
        return issues

    # ---------------------------------------------------------------- down

    def down(self, config_path: Path | str, environment_filter: str | None = None) -> DownResult:
        normalized = normalize_config_path(config_path)
        result = DownResult(
            outcome=Outcome.OK,
            config_path=normalized,
            state_path=self.state_path_for(normalized),
            environment=environment_filter,
        )

        loaded = load_state(result.state_path)
        if not loaded.ok:
            return self._fail(result, Outcome.STATE_ERROR, loaded.errors)
        state = loaded.state

        remaining: list[ManagedSession] = []
        for session in state.sessions:
            if not session.matches(normalized, environment_filter):
                remaining.append(session)
                continue
            issues = self._stop_session(session)
            if issues:
                logger.warning("Session %s only partially stopped; keeping it for retry", session.id)
                result.retained.append(session)
                result.issues.extend(issues)
                remaining.append(session)
            else:
                result.stopped.append(session)
        state.sessions = remaining

        try:
            save_state(result.state_path, state)
        except StateStoreError as exc:
            return self._fail(result, Outcome.STATE_ERROR, result.issues + [Issue(str(result.state_path), str(exc))])

        if result.retained:
            result.outcome = Outcome.PARTIAL_FAILURE
        return result

    # ------------------------------------------------------------- helpers

    def _stop_session(self, session: ManagedSession) -> list[Issue]:
        issues: list[Issue] = []
        for process in session.forwards:
            try:
                self._runner.stop(process.pid)
            except ProcessStopError as exc:
                issues.append(
                    Issue(f"sessions.{session.environment}.{process.forward_name}.{process.local_port}", str(exc))
                )
        return issues

    @staticmethod
    def _drop_sessions(state: RuntimeState, sessions: list[ManagedSession]) -> None:
        dropped = {id(session) for session in sessions}
        state.sessions = [session for session in state.sessions if id(session) not in dropped]

    @staticmethod
    def _fail(result: _Result, outcome: Outcome, issues: list[Issue]) -> _Result:
        result.outcome = outcome
        result.issues = list(issues)
        return result
