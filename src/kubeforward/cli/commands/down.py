"""``kubeforward down``: stop recorded sessions for one or all environments."""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path

import typer

from kubeforward.cli.helpers import (
    configure_logging,
    env_option,
    file_option,
    json_option,
    load_config_or_exit,
    print_issues,
    print_json,
    run_or_exit,
    verbose_option,
)
from kubeforward.runtime.orchestrator import SessionOrchestrator
from kubeforward.runtime.process_runner import make_process_runner

logger = logging.getLogger(__name__)


def down(
    file: Path = file_option(),
    env: str | None = env_option("Environment to stop (defaults to all environments)"),
    verbose: bool = verbose_option(),
    as_json: bool = json_option(),
) -> None:
    """Stop port-forwards started by earlier ``up`` invocations."""
    configure_logging(verbose)
    config = load_config_or_exit("down", file)
    if env is not None and env not in config.environments:
        logger.warning("Environment '%s' is not defined in %s; stopping recorded sessions anyway", env, file)

    orchestrator = SessionOrchestrator(make_process_runner())
    result = run_or_exit(lambda: orchestrator.down(file, env))

    if as_json:
        print_json(result.to_dict())
        if not result.ok:
            raise typer.Exit(1)
        return

    if not result.ok:
        print_issues(f"down: failed ({result.outcome}).", result.issues)
        if result.stopped:
            typer.echo(f"down: stopped {len(result.stopped)} session(s) before failing")
        raise typer.Exit(1)

    typer.echo(f"down: stopped {len(result.stopped)} session(s) ({result.stopped_forwards} forward(s))")
    typer.echo(f"- config: {result.config_path}")
    if env is not None:
        typer.echo("- scope: environment")
        typer.echo(f"- environment: {env}")
    else:
        typer.echo("- scope: all environments")
        typer.echo(f"- environments: {len(config.environments)}")
    if verbose:
        typer.echo(f"- state: {result.state_path}")
        per_environment: Counter[str] = Counter()
        for session in result.stopped:
            per_environment[session.environment] += len(session.forwards)
        typer.echo("environment breakdown:")
        for name, count in sorted(per_environment.items()):
            typer.echo(f"- {name} ({count} forward(s))")
