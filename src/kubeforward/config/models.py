"""Validated configuration tree for kubeforward.

The loader in :mod:`kubeforward.config.loader` is the only producer of these
objects; everything downstream (plan resolution, orchestration) trusts that
scalar types and required fields were already checked.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ResourceKind(StrEnum):
    """Kubernetes workload kinds that ``kubectl port-forward`` accepts."""

    POD = "pod"
    DEPLOYMENT = "deployment"
    SERVICE = "service"
    STATEFULSET = "statefulset"


class PortProtocol(StrEnum):
    TCP = "tcp"
    UDP = "udp"


class RestartPolicy(StrEnum):
    FAIL_FAST = "fail-fast"
    REPLACE = "replace"


def _drop_empty(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if value not in (None, {}, [])}


@dataclass(slots=True)
class Metadata:
    project: str
    owner: str | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_empty(
            {"project": self.project, "owner": self.owner, "description": self.description}
        )


@dataclass(slots=True)
class TargetDefaults:
    """Cluster targeting settings that environments inherit and override."""

    kubeconfig: str | None = None
    context: str | None = None
    namespace: str | None = None
    bind_address: str | None = None
    labels: dict[str, str] = field(default_factory=dict)

    def merged_with(self, override: TargetDefaults) -> TargetDefaults:
        """Return a copy where every field set on ``override`` wins."""
        labels = dict(self.labels)
        labels.update(override.labels)
        return TargetDefaults(
            kubeconfig=override.kubeconfig if override.kubeconfig is not None else self.kubeconfig,
            context=override.context if override.context is not None else self.context,
            namespace=override.namespace if override.namespace is not None else self.namespace,
            bind_address=(
                override.bind_address if override.bind_address is not None else self.bind_address
            ),
            labels=labels,
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_empty(
            {
                "kubeconfig": self.kubeconfig,
                "context": self.context,
                "namespace": self.namespace,
                "bindAddress": self.bind_address,
                "labels": dict(self.labels),
            }
        )


@dataclass(slots=True)
class EnvironmentGuards:
    allow_production: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"allowProduction": self.allow_production}


@dataclass(slots=True)
class ResourceSelector:
    kind: ResourceKind
    name: str | None = None
    selector: dict[str, str] = field(default_factory=dict)
    namespace: str | None = None

    @property
    def target(self) -> str:
        """``kind/name`` reference, or ``kind[k=v,...]`` for selector resources."""
        if self.name:
            return f"{self.kind}/{self.name}"
        pairs = ",".join(f"{key}={value}" for key, value in sorted(self.selector.items()))
        return f"{self.kind}[{pairs}]"

    def to_dict(self) -> dict[str, Any]:
        return _drop_empty(
            {
                "kind": str(self.kind),
                "name": self.name,
                "selector": dict(self.selector),
                "namespace": self.namespace,
            }
        )


@dataclass(slots=True)
class PortMapping:
    local: int
    remote: int
    bind_address: str | None = None
    protocol: PortProtocol = PortProtocol.TCP

    def to_dict(self) -> dict[str, Any]:
        return _drop_empty(
            {
                "local": self.local,
                "remote": self.remote,
                "bindAddress": self.bind_address,
                "protocol": str(self.protocol),
            }
        )


@dataclass(slots=True)
class HealthCheck:
    exec: list[str]
    timeout_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {"exec": list(self.exec), "timeoutMs": self.timeout_ms}


@dataclass(slots=True)
class ForwardDefinition:
    name: str
    resource: ResourceSelector
    container: str | None = None
    ports: list[PortMapping] = field(default_factory=list)
    detach: bool = False
    restart_policy: RestartPolicy = RestartPolicy.FAIL_FAST
    health_check: HealthCheck | None = None
    env: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class EnvironmentDefinition:
    name: str
    extends: str | None = None
    description: str | None = None
    settings: TargetDefaults = field(default_factory=TargetDefaults)
    guards: EnvironmentGuards = field(default_factory=EnvironmentGuards)
    forwards: list[ForwardDefinition] = field(default_factory=list)


@dataclass(slots=True)
class Config:
    """Root of a loaded ``kubeforward.yaml``.

    ``environments`` preserves declaration order; the first entry is the
    default target when no environment is named on the command line.
    """

    version: int
    metadata: Metadata
    defaults: TargetDefaults = field(default_factory=TargetDefaults)
    environments: dict[str, EnvironmentDefinition] = field(default_factory=dict)

    def first_environment(self) -> str | None:
        return next(iter(self.environments), None)
