"""Shared plumbing for kubeforward commands."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler

from kubeforward.config import Config, ConfigLoadError, load_config
from kubeforward.issues import Issue

DEFAULT_CONFIG_FILE = "kubeforward.yaml"

T = TypeVar("T")

console = Console()
err_console = Console(stderr=True)


def configure_logging(verbose: bool) -> None:
    """Route logging to stderr; ``--verbose`` enables DEBUG for kubeforward only."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False, show_time=False)],
        force=True,
    )
    logging.getLogger("kubeforward").setLevel(logging.DEBUG if verbose else logging.WARNING)


def print_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


def print_issues(header: str, issues: list[Issue]) -> None:
    typer.secho(header, fg=typer.colors.RED, err=True)
    for issue in issues:
        typer.secho(f"  - {issue}", fg=typer.colors.RED, err=True)


def run_or_exit(fn: Callable[[], T]) -> T:
    try:
        return fn()
    except (RuntimeError, ValueError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from exc


def load_config_or_exit(command: str, path: Path) -> Config:
    try:
        return load_config(path)
    except ConfigLoadError as exc:
        print_issues(f"{command}: failed to load config '{path}'.", exc.issues)
        raise typer.Exit(1) from exc


def file_option() -> Any:
    return typer.Option(
        Path(DEFAULT_CONFIG_FILE),
        "--file",
        "-f",
        help="Path to config file (defaults to kubeforward.yaml in the current directory)",
    )


def env_option(help_text: str) -> Any:
    return typer.Option(None, "--env", "-e", help=help_text)


def verbose_option() -> Any:
    return typer.Option(False, "--verbose", "-v", help="Show detailed output")


def json_option() -> Any:
    return typer.Option(False, "--json", help="Render output as JSON")
