"""``kubeforward up``: start the forwards of one environment."""

from __future__ import annotations

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
from kubeforward.runtime.kubectl import kubectl_binary
from kubeforward.runtime.orchestrator import SessionOrchestrator
from kubeforward.runtime.process_runner import make_process_runner


def up(
    file: Path = file_option(),
    env: str | None = env_option("Environment to start (defaults to the first one declared)"),
    daemon: bool = typer.Option(False, "--daemon", "-d", help="Run in daemon mode (logs hidden)"),
    verbose: bool = verbose_option(),
    as_json: bool = json_option(),
) -> None:
    """Start port-forwards for an environment, replacing any previous session."""
    configure_logging(verbose)
    config = load_config_or_exit("up", file)
    orchestrator = SessionOrchestrator(make_process_runner())
    result = run_or_exit(lambda: orchestrator.up(config, file, env, daemon=daemon))

    if as_json:
        print_json(result.to_dict())
        if not result.ok:
            raise typer.Exit(1)
        return

    if not result.ok:
        print_issues(f"up: failed ({result.outcome}).", result.issues)
        raise typer.Exit(1)

    session = result.session
    forwards = session.forwards if session is not None else []
    typer.echo(f"up: started {len(forwards)} forward process(es)")
    typer.echo(f"- config: {result.config_path}")
    typer.echo(f"- environment: {result.environment}")
    typer.echo(f"- mode: {'daemon' if result.daemon else 'foreground'}")
    typer.echo(f"- session: {session.id if session is not None else '-'}")
    typer.echo(f"- replaced: {len(result.replaced)}")
    if verbose:
        typer.echo(f"- state: {result.state_path}")
        typer.echo(f"- kubectl: {kubectl_binary()}")
        typer.echo(f"- logs: {result.logs_dir}")
        typer.echo("forward names:")
        for process in forwards:
            typer.echo(
                f"- {process.forward_name} ({process.local_port} -> {process.remote_port}, pid {process.pid})"
            )
