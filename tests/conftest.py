from __future__ import annotations

from pathlib import Path

import pytest

from kubeforward.runtime.kubectl import KUBECTL_BIN_ENV
from kubeforward.runtime.paths import STATE_FILE_ENV
from kubeforward.runtime.process_runner import NOOP_RUNNER_ENV
from tests.utils import DEMO_CONFIG


@pytest.fixture()
def demo_config_file(tmp_path: Path) -> Path:
    path = tmp_path / "kubeforward.yaml"
    path.write_text(DEMO_CONFIG, encoding="utf-8")
    return path


@pytest.fixture()
def isolated_runtime(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point state at a per-test file and make the CLI use the no-op runner."""
    state_path = tmp_path / "runtime" / "state.yaml"
    monkeypatch.setenv(STATE_FILE_ENV, str(state_path))
    monkeypatch.setenv(NOOP_RUNNER_ENV, "1")
    monkeypatch.delenv(KUBECTL_BIN_ENV, raising=False)
    return state_path
