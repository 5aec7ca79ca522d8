"""Persisted bookkeeping of running forward sessions.

One YAML document per normalized config path records which process groups
belong to which session, so that ``down`` in a later invocation can find what
``up`` started. Reads take a shared ``flock`` on the sibling ``.lock`` file,
writes take it exclusively for the whole write-then-rename sequence.
"""

from __future__ import annotations

import fcntl
import io
import logging
import os
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from kubeforward.issues import Issue
from kubeforward.runtime.paths import default_state_path_for_config

logger = logging.getLogger(__name__)

__all__ = [
    "ManagedForwardProcess",
    "ManagedSession",
    "RuntimeState",
    "StateLoadResult",
    "StateStoreError",
    "default_state_path_for_config",
    "load_state",
    "lock_path_for",
    "save_state",
]


class StateStoreError(RuntimeError):
    """Raised when the state file cannot be written."""


class _StateModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True, extra="ignore")


class ManagedForwardProcess(_StateModel):
    """One running ``kubectl port-forward`` group."""

    environment: str = ""
    forward_name: str = Field(default="", alias="name")
    local_port: int = Field(default=0, alias="localPort")
    remote_port: int = Field(default=0, alias="remotePort")
    pid: int = 0


class ManagedSession(_StateModel):
    """Forwards started together by one ``up`` for one environment."""

    id: str = ""
    config_path: str = Field(default="", alias="configPath")
    environment: str = ""
    daemon: bool = False
    started_at_utc: str = Field(default="", alias="startedAtUtc")
    forwards: list[ManagedForwardProcess] = Field(default_factory=list)

    def matches(self, config_path: str, environment: str | None = None) -> bool:
        if self.config_path != config_path:
            return False
        return environment is None or self.environment == environment


class RuntimeState(_StateModel):
    sessions: list[ManagedSession] = Field(default_factory=list)

    def sessions_for(self, config_path: str, environment: str | None = None) -> list[ManagedSession]:
        return [session for session in self.sessions if session.matches(config_path, environment)]


@dataclass
class StateLoadResult:
    state: RuntimeState = field(default_factory=RuntimeState)
    errors: list[Issue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def lock_path_for(state_path: Path) -> Path:
    return state_path.with_name(state_path.name + ".lock")


def _temp_path_for(state_path: Path) -> Path:
    return state_path.with_name(f"{state_path.name}.tmp.{os.getpid()}")


@contextmanager
def _state_lock(state_path: Path, *, exclusive: bool) -> Iterator[None]:
    with open(lock_path_for(state_path), "a+b") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def _yaml() -> YAML:
    yaml = YAML(typ="safe", pure=True)
    yaml.default_flow_style = False
    return yaml


def _without_nulls(entry: Mapping[Any, Any]) -> dict[str, Any]:
    return {str(key): value for key, value in entry.items() if value is not None}


def _describe(exc: ValidationError) -> str:
    fields = sorted({".".join(str(part) for part in error["loc"]) for error in exc.errors()})
    return f"invalid scalar type ({', '.join(fields)})"


def _parse_session(index: int, entry: Any, errors: list[Issue]) -> ManagedSession | None:
    context = f"sessions[{index}]"
    if not isinstance(entry, Mapping):
        errors.append(Issue(context, "expected mapping"))
        return None

    fields = _without_nulls(entry)
    raw_forwards = fields.pop("forwards", [])
    try:
        session = ManagedSession.model_validate(fields)
    except ValidationError as exc:
        errors.append(Issue(context, _describe(exc)))
        return None

    if not isinstance(raw_forwards, list):
        errors.append(Issue(f"{context}.forwards", "expected list"))
        return session
    for forward_index, raw_forward in enumerate(raw_forwards):
        forward_context = f"{context}.forwards[{forward_index}]"
        if not isinstance(raw_forward, Mapping):
            errors.append(Issue(forward_context, "expected mapping"))
            continue
        try:
            session.forwards.append(ManagedForwardProcess.model_validate(_without_nulls(raw_forward)))
        except ValidationError as exc:
            errors.append(Issue(forward_context, _describe(exc)))
    return session


def parse_state(document: Any) -> StateLoadResult:
    """Build :class:`RuntimeState` from a decoded document, collecting problems."""
    result = StateLoadResult()
    if document is None:
        return result
    if not isinstance(document, Mapping):
        result.errors.append(Issue("root", "expected mapping"))
        return result

    sessions = document.get("sessions")
    if sessions is None:
        return result
    if not isinstance(sessions, list):
        result.errors.append(Issue("sessions", "expected list"))
        return result

    for index, entry in enumerate(sessions):
        session = _parse_session(index, entry, result.errors)
        if session is not None:
            result.state.sessions.append(session)
    return result


def load_state(state_path: Path | str) -> StateLoadResult:
    """Load runtime state; a missing directory or file is an empty state."""
    path = Path(state_path)
    if not path.parent.is_dir():
        return StateLoadResult()

    try:
        with _state_lock(path, exclusive=False):
            if not path.exists():
                return StateLoadResult()
            raw = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        return StateLoadResult(errors=[Issue(str(path), f"state parse error: {exc}")])
    except OSError as exc:
        return StateLoadResult(errors=[Issue(str(path), f"failed to read state file: {exc}")])

    try:
        document = _yaml().load(raw)
    except YAMLError as exc:
        return StateLoadResult(errors=[Issue(str(path), f"state parse error: {exc}")])

    result = parse_state(document)
    logger.debug("Loaded %d session(s) from %s", len(result.state.sessions), path)
    return result


def dump_state(state: RuntimeState) -> str:
    buffer = io.StringIO()
    _yaml().dump(state.model_dump(by_alias=True, mode="json"), buffer)
    return buffer.getvalue()


def save_state(state_path: Path | str, state: RuntimeState) -> None:
    """Atomically replace the state file while holding the exclusive lock.

    On failure the previous file content is untouched and the temporary
    staging file is removed.
    """
    path = Path(state_path)
    payload = dump_state(state)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StateStoreError(f"failed to create state directory {path.parent}: {exc}") from exc

    tmp_path = _temp_path_for(path)
    try:
        with _state_lock(path, exclusive=True):
            try:
                with open(tmp_path, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_path, path)
            except OSError:
                tmp_path.unlink(missing_ok=True)
                raise
    except OSError as exc:
        raise StateStoreError(f"failed to save state file {path}: {exc}") from exc
    logger.debug("Saved %d session(s) to %s", len(state.sessions), path)
