"""``kubeforward plan``: show the resolved forward plan without starting anything."""

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
    verbose_option,
)
from kubeforward.config import Config, HealthCheck
from kubeforward.runtime.paths import normalize_config_path
from kubeforward.runtime.plan import ResolvedEnvironment, ResolvedPlan, build_resolved_plan


def _describe_port(port_local: int, port_remote: int, bind_address: str | None, protocol: str) -> str:
    text = f"{port_local} -> {port_remote} ({protocol})"
    if bind_address:
        text += f" on {bind_address}"
    return text


def _describe_health_check(health_check: HealthCheck | None) -> str:
    if health_check is None:
        return "none"
    return f"{' '.join(health_check.exec)} (timeout {health_check.timeout_ms}ms)"


def _echo_environment(env: ResolvedEnvironment, verbose: bool) -> None:
    typer.echo(f"Environment: {env.name}")
    if verbose:
        settings = env.settings
        typer.echo("  settings:")
        typer.echo(f"    namespace: {settings.namespace or '-'}")
        typer.echo(f"    context: {settings.context or '-'}")
        typer.echo(f"    kubeconfig: {settings.kubeconfig or '-'}")
        typer.echo(f"    bindAddress: {settings.bind_address or '-'}")
        typer.echo(f"    allowProduction: {'yes' if env.guards.allow_production else 'no'}")
    typer.echo(f"  forwards: {len(env.forwards)}")
    for forward in env.forwards:
        typer.echo(f"  - {forward.name} -> {forward.resource.target} (namespace {forward.namespace})")
        if verbose:
            if forward.container:
                typer.echo(f"    container: {forward.container}")
            typer.echo(f"    detach: {'true' if forward.detach else 'false'}")
            typer.echo(f"    restartPolicy: {forward.restart_policy}")
            typer.echo(f"    healthCheck: {_describe_health_check(forward.health_check)}")
            typer.echo("    ports:")
            for port in forward.ports:
                description = _describe_port(port.local, port.remote, port.bind_address, str(port.protocol))
                typer.echo(f"      - {description}")


def render_plan(config: Config, plan: ResolvedPlan, verbose: bool) -> None:
    if verbose:
        typer.echo(f"Config file: {plan.config_path}")
        metadata = config.metadata
        typer.echo("Metadata:")
        typer.echo(f"  project: {metadata.project}")
        if metadata.owner:
            typer.echo(f"  owner: {metadata.owner}")
        typer.echo("Defaults:")
        for key, value in config.defaults.to_dict().items():
            typer.echo(f"  {key}: {value}")
    for env in plan.environments:
        _echo_environment(env, verbose)


def run_plan(file: Path, env: str | None, verbose: bool, as_json: bool) -> None:
    configure_logging(verbose)
    config = load_config_or_exit("plan", file)
    build = build_resolved_plan(config, normalize_config_path(file), env)
    if not build.ok or build.plan is None:
        print_issues("plan: failed to resolve environments.", build.errors)
        raise typer.Exit(1)
    if as_json:
        print_json(build.plan.to_dict())
        return
    render_plan(config, build.plan, verbose)


def plan(
    file: Path = file_option(),
    env: str | None = env_option("Environment to display"),
    verbose: bool = verbose_option(),
    as_json: bool = json_option(),
) -> None:
    """Render the resolved port-forward plan from kubeforward.yaml."""
    run_plan(file, env, verbose, as_json)
