"""Resolve environment inheritance into a concrete, executable plan."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from kubeforward.config.models import (
    Config,
    EnvironmentGuards,
    ForwardDefinition,
    HealthCheck,
    PortMapping,
    ResourceSelector,
    RestartPolicy,
    TargetDefaults,
)
from kubeforward.issues import Issue

__all__ = [
    "PlanBuildError",
    "PlanBuildResult",
    "ResolvedEnvironment",
    "ResolvedForward",
    "ResolvedPlan",
    "build_resolved_plan",
]

EMPTY_NAMESPACE_MESSAGE = (
    "resolved namespace is empty (set resource.namespace, environment namespace, or defaults.namespace)"
)

# Plan errors share the generic issue shape.
PlanBuildError = Issue


@dataclass(slots=True)
class ResolvedForward:
    environment: str
    name: str
    resource: ResourceSelector
    namespace: str
    ports: list[PortMapping] = field(default_factory=list)
    container: str | None = None
    detach: bool = False
    restart_policy: RestartPolicy = RestartPolicy.FAIL_FAST
    health_check: HealthCheck | None = None
    env: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "environment": self.environment,
            "name": self.name,
            "resource": self.resource.to_dict(),
            "namespace": self.namespace,
            "ports": [port.to_dict() for port in self.ports],
            "detach": self.detach,
            "restartPolicy": str(self.restart_policy),
        }
        if self.container:
            payload["container"] = self.container
        if self.health_check is not None:
            payload["healthCheck"] = self.health_check.to_dict()
        if self.env:
            payload["env"] = dict(self.env)
        if self.annotations:
            payload["annotations"] = dict(self.annotations)
        return payload


@dataclass(slots=True)
class ResolvedEnvironment:
    name: str
    settings: TargetDefaults
    guards: EnvironmentGuards
    forwards: list[ResolvedForward] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "settings": self.settings.to_dict(),
            "guards": self.guards.to_dict(),
            "forwards": [forward.to_dict() for forward in self.forwards],
        }


@dataclass(slots=True)
class ResolvedPlan:
    config_path: str
    environments: list[ResolvedEnvironment] = field(default_factory=list)

    def environment(self, name: str) -> ResolvedEnvironment | None:
        for env in self.environments:
            if env.name == name:
                return env
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "configPath": self.config_path,
            "environments": [env.to_dict() for env in self.environments],
        }


@dataclass
class PlanBuildResult:
    """Outcome of plan resolution; ``plan`` is only set when nothing failed."""

    plan: ResolvedPlan | None = None
    errors: list[Issue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.plan is not None and not self.errors


class _Mark(Enum):
    VISITING = "visiting"
    VISITED = "visited"


def _resolve_forward(
    env_name: str,
    index: int,
    source: ForwardDefinition,
    settings: TargetDefaults,
    errors: list[Issue],
) -> ResolvedForward:
    namespace = source.resource.namespace if source.resource.namespace is not None else settings.namespace
    if not namespace:
        errors.append(
            Issue(f"environments.{env_name}.forwards[{index}].resource.namespace", EMPTY_NAMESPACE_MESSAGE)
        )
    ports = [
        port
        if port.bind_address is not None
        else dataclasses.replace(port, bind_address=settings.bind_address)
        for port in source.ports
    ]
    return ResolvedForward(
        environment=env_name,
        name=source.name,
        resource=source.resource,
        namespace=namespace or "",
        ports=ports,
        container=source.container,
        detach=source.detach,
        restart_policy=source.restart_policy,
        health_check=source.health_check,
        env=dict(source.env),
        annotations=dict(source.annotations),
    )


def _inherit_forward(forward: ResolvedForward, env_name: str) -> ResolvedForward:
    return dataclasses.replace(
        forward,
        environment=env_name,
        ports=[dataclasses.replace(port) for port in forward.ports],
        env=dict(forward.env),
        annotations=dict(forward.annotations),
    )


class _PlanResolver:
    """Memoized, iterative resolution of ``extends`` chains."""

    def __init__(self, config: Config, errors: list[Issue]) -> None:
        self._config = config
        self._errors = errors
        self._marks: dict[str, _Mark] = {}
        self._resolved: dict[str, ResolvedEnvironment] = {}
        self._failed: set[str] = set()

    def resolve(self, name: str) -> ResolvedEnvironment | None:
        environments = self._config.environments
        if name not in environments:
            self._errors.append(Issue(f"environments.{name}", "unknown environment"))
            return None

        pending = [name]
        # Environments currently being visited, root first; used to name cycles.
        path: list[str] = []
        while pending:
            current = pending[-1]
            if current in self._resolved or current in self._failed:
                pending.pop()
                continue

            parent = environments[current].extends
            if self._marks.get(current) is not _Mark.VISITING:
                self._marks[current] = _Mark.VISITING
                path.append(current)
                problem = self._parent_problem(current, parent, path)
                if problem is not None:
                    self._errors.append(Issue(f"environments.{current}.extends", problem))
                    self._finish(current, None, pending, path)
                    continue
                if parent is not None and parent not in self._resolved and parent not in self._failed:
                    pending.append(parent)
                    continue

            if parent is not None and parent in self._failed:
                # The parent already reported why it failed.
                self._finish(current, None, pending, path)
                continue
            parent_env = self._resolved[parent] if parent is not None else None
            self._finish(current, self._build(current, parent_env), pending, path)

        return self._resolved.get(name)

    def _parent_problem(self, current: str, parent: str | None, path: list[str]) -> str | None:
        if parent is None:
            return None
        if parent == current:
            return "environment cannot extend itself"
        if parent not in self._config.environments:
            return f"references unknown environment '{parent}'"
        if self._marks.get(parent) is _Mark.VISITING:
            cycle = path[path.index(parent) :] + [parent]
            return f"cyclic environment inheritance: {' -> '.join(cycle)}"
        return None

    def _finish(
        self,
        name: str,
        resolved: ResolvedEnvironment | None,
        pending: list[str],
        path: list[str],
    ) -> None:
        self._marks[name] = _Mark.VISITED
        if resolved is None:
            self._failed.add(name)
        else:
            self._resolved[name] = resolved
        path.pop()
        pending.pop()

    def _build(self, name: str, parent: ResolvedEnvironment | None) -> ResolvedEnvironment:
        env = self._config.environments[name]
        base_settings = parent.settings if parent is not None else self._config.defaults
        settings = base_settings.merged_with(env.settings)
        allow_production = env.guards.allow_production or (
            parent is not None and parent.guards.allow_production
        )
        guards = EnvironmentGuards(allow_production=allow_production)

        if env.forwards:
            forwards = [
                _resolve_forward(name, index, forward, settings, self._errors)
                for index, forward in enumerate(env.forwards)
            ]
        elif parent is not None:
            forwards = [_inherit_forward(forward, name) for forward in parent.forwards]
        else:
            forwards = []
        return ResolvedEnvironment(name=name, settings=settings, guards=guards, forwards=forwards)


def build_resolved_plan(
    config: Config,
    config_path: str,
    environment_filter: str | None = None,
) -> PlanBuildResult:
    """Resolve ``config`` into a :class:`ResolvedPlan`.

    With ``environment_filter`` only that environment (and its ancestors) is
    resolved. Every error is collected before concluding; a plan is returned
    only when the list stays empty.
    """
    errors: list[Issue] = []
    resolver = _PlanResolver(config, errors)
    targets = [environment_filter] if environment_filter is not None else list(config.environments)

    plan = ResolvedPlan(config_path=config_path)
    for target in targets:
        resolved = resolver.resolve(target)
        if resolved is not None:
            plan.environments.append(resolved)

    if errors:
        return PlanBuildResult(plan=None, errors=errors)
    return PlanBuildResult(plan=plan, errors=[])
