"""kubeforward - supervise ``kubectl port-forward`` sessions from a declarative config.

Usage:
    kubeforward plan [-f kubeforward.yaml] [-e ENV] [-v]
    kubeforward up   [-f kubeforward.yaml] [-e ENV] [-d] [-v]
    kubeforward down [-f kubeforward.yaml] [-e ENV] [-v]
    kubeforward status [-f kubeforward.yaml]
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as _package_version
from pathlib import Path

import typer

from kubeforward.cli.commands import down, plan, status, up
from kubeforward.cli.commands.plan import run_plan
from kubeforward.cli.helpers import DEFAULT_CONFIG_FILE

try:
    __version__ = _package_version("kubeforward")
except PackageNotFoundError:  # running from a source checkout
    __version__ = "0.0.0"

app = typer.Typer(
    name="kubeforward",
    help="Manage kubectl port-forward sessions defined in kubeforward.yaml",
    add_completion=False,
    invoke_without_command=True,
)

app.command("plan")(plan)
app.command("up")(up)
app.command("down")(down)
app.command("status")(status)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"kubeforward {__version__}")
        raise typer.Exit()


@app.callback()
def callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit",
    ),
) -> None:
    """Run ``plan`` against kubeforward.yaml when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        run_plan(Path(DEFAULT_CONFIG_FILE), None, verbose=False, as_json=False)


def main() -> None:
    app()


__all__ = ["__version__", "app", "main"]
