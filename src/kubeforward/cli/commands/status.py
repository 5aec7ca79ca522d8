"""``kubeforward status``: list recorded sessions and whether they still run."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from kubeforward.cli.helpers import (
    configure_logging,
    console,
    file_option,
    json_option,
    print_issues,
    print_json,
    run_or_exit,
    verbose_option,
)
from kubeforward.runtime.paths import default_state_path_for_config, normalize_config_path
from kubeforward.runtime.process_runner import make_process_runner
from kubeforward.runtime.state_store import load_state


def status(
    file: Path = file_option(),
    verbose: bool = verbose_option(),
    as_json: bool = json_option(),
) -> None:
    """Show sessions recorded for the config file."""
    configure_logging(verbose)
    normalized = normalize_config_path(file)
    state_path = default_state_path_for_config(normalized)
    loaded = run_or_exit(lambda: load_state(state_path))
    if not loaded.ok:
        print_issues(f"status: failed to load runtime state '{state_path}'.", loaded.errors)
        raise typer.Exit(1)

    runner = make_process_runner()
    sessions = loaded.state.sessions_for(normalized)

    if as_json:
        print_json(
            {
                "statePath": str(state_path),
                "sessions": [
                    {
                        **session.model_dump(by_alias=True),
                        "alive": {str(p.pid): runner.is_alive(p.pid) for p in session.forwards},
                    }
                    for session in sessions
                ],
            }
        )
        return

    if not sessions:
        console.print(f"[yellow]No sessions recorded for {normalized}[/yellow]")
        return

    table = Table(title=f"Sessions ({state_path})" if verbose else "Sessions")
    table.add_column("Environment", style="cyan")
    table.add_column("Mode", style="magenta")
    table.add_column("Started (UTC)")
    table.add_column("Forward", style="bold")
    table.add_column("Ports")
    table.add_column("PID", justify="right")
    table.add_column("State")

    for session in sessions:
        mode = "daemon" if session.daemon else "foreground"
        for process in session.forwards:
            alive = runner.is_alive(process.pid)
            table.add_row(
                session.environment,
                mode,
                session.started_at_utc,
                process.forward_name,
                f"{process.local_port} -> {process.remote_port}",
                str(process.pid),
                "[green]running[/green]" if alive else "[red]stopped[/red]",
            )
    console.print(table)
