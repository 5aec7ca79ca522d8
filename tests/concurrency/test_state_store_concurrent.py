"""Concurrent writers must never leave a torn state file behind."""

from __future__ import annotations

import multiprocessing
from concurrent.futures import ProcessPoolExecutor
from pathlib import Path

import pytest

from kubeforward.runtime.state_store import (
    ManagedForwardProcess,
    ManagedSession,
    RuntimeState,
    load_state,
    save_state,
)

WRITERS = 4
ROUNDS = 25


def _state_for(writer: int) -> RuntimeState:
    return RuntimeState(
        sessions=[
            ManagedSession(
                id=f"/work/kubeforward.yaml::env{writer}::{index}",
                config_path="/work/kubeforward.yaml",
                environment=f"env{writer}",
                forwards=[
                    ManagedForwardProcess(
                        environment=f"env{writer}",
                        forward_name=f"svc{index}",
                        local_port=7000 + index,
                        remote_port=80,
                        pid=1000 * (writer + 1) + index,
                    )
                ],
            )
            for index in range(20)
        ]
    )


def _write_repeatedly(path: str, writer: int) -> int:
    state = _state_for(writer)
    for _ in range(ROUNDS):
        save_state(Path(path), state)
    return writer


def _read_repeatedly(path: str) -> list[str]:
    problems: list[str] = []
    expected = {writer: _state_for(writer) for writer in range(WRITERS)}
    for _ in range(ROUNDS * 2):
        result = load_state(Path(path))
        if not result.ok:
            problems.extend(str(error) for error in result.errors)
        elif result.state.sessions and result.state not in expected.values():
            problems.append("state does not match any single writer")
    return problems


@pytest.mark.slow
def test_concurrent_saves_are_atomic(tmp_path: Path) -> None:
    path = tmp_path / "state.yaml"
    save_state(path, _state_for(0))
    context = multiprocessing.get_context("spawn")

    with ProcessPoolExecutor(max_workers=WRITERS + 1, mp_context=context) as pool:
        reader = pool.submit(_read_repeatedly, str(path))
        writers = [pool.submit(_write_repeatedly, str(path), writer) for writer in range(WRITERS)]
        assert sorted(future.result() for future in writers) == list(range(WRITERS))
        assert reader.result() == []

    final = load_state(path)
    assert final.ok
    assert final.state in [_state_for(writer) for writer in range(WRITERS)]
