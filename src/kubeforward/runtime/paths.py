"""Filesystem locations derived from the normalized config path."""

from __future__ import annotations

import hashlib
import os
import re
import tempfile
from pathlib import Path

STATE_FILE_ENV = "KUBEFORWARD_STATE_FILE"
RUNTIME_DIR_NAME = "kubeforward"

_UNSAFE_TOKEN_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def normalize_config_path(config_path: Path | str) -> str:
    """Absolute, ``..``-collapsed form used as the identity of a config file."""
    return os.path.abspath(os.fspath(config_path))


def config_path_hash(normalized_path: str) -> str:
    return hashlib.sha256(normalized_path.encode("utf-8", errors="replace")).hexdigest()[:16]


def runtime_dir() -> Path:
    return Path(tempfile.gettempdir()) / RUNTIME_DIR_NAME


def default_state_path_for_config(config_path: Path | str, override: Path | str | None = None) -> Path:
    """Return the state file shared by every invocation against ``config_path``.

    Resolution order: explicit ``override``, then ``KUBEFORWARD_STATE_FILE``,
    then ``<tempdir>/kubeforward/state-<hash>.yaml``.
    """
    if override:
        return Path(override)
    from_env = os.environ.get(STATE_FILE_ENV, "").strip()
    if from_env:
        return Path(from_env)
    normalized = normalize_config_path(config_path)
    return runtime_dir() / f"state-{config_path_hash(normalized)}.yaml"


def default_logs_dir_for_config(config_path: Path | str) -> Path:
    normalized = normalize_config_path(config_path)
    return runtime_dir() / f"logs-{config_path_hash(normalized)}"


def sanitize_path_token(value: str) -> str:
    token = _UNSAFE_TOKEN_CHARS.sub("_", value)
    return token or "forward"


def build_forward_log_path(logs_dir: Path, environment: str, forward_name: str, local_port: int) -> Path:
    name = "-".join(
        [sanitize_path_token(environment), sanitize_path_token(forward_name), str(local_port)]
    )
    return logs_dir / f"{name}.log"
