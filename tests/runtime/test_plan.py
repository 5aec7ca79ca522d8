"""Tests for environment inheritance resolution."""

from __future__ import annotations

from kubeforward.config import (
    Config,
    EnvironmentDefinition,
    EnvironmentGuards,
    ForwardDefinition,
    Metadata,
    PortMapping,
    ResourceKind,
    ResourceSelector,
    TargetDefaults,
)
from kubeforward.runtime.plan import build_resolved_plan
from tests.utils import build_config, forward


def _forward(name: str, local: int, namespace: str | None = None) -> ForwardDefinition:
    return ForwardDefinition(
        name=name,
        resource=ResourceSelector(kind=ResourceKind.SERVICE, name=name, namespace=namespace),
        ports=[PortMapping(local=local, remote=80)],
    )


def _config(environments: list[EnvironmentDefinition], defaults: TargetDefaults | None = None) -> Config:
    return Config(
        version=1,
        metadata=Metadata(project="demo"),
        defaults=defaults or TargetDefaults(namespace="default"),
        environments={env.name: env for env in environments},
    )


def _messages(result) -> list[str]:
    return [str(issue) for issue in result.errors]


def test_child_inherits_parent_forwards_with_environment_rewritten() -> None:
    config = build_config(
        {
            "base": {"forwards": [forward("api", 7000)]},
            "child": {"extends": "base"},
        }
    )

    result = build_resolved_plan(config, "/work/kubeforward.yaml", "child")

    assert result.ok
    assert result.plan is not None
    assert [env.name for env in result.plan.environments] == ["child"]
    (child_forward,) = result.plan.environments[0].forwards
    assert child_forward.name == "api"
    assert child_forward.environment == "child"
    assert child_forward.namespace == "default"
    assert child_forward.ports[0].local == 7000


def test_inherited_forwards_do_not_alias_parent_records() -> None:
    config = build_config(
        {
            "base": {
                "forwards": [
                    forward("api", 7000, env={"MODE": "base"}, annotations={"owner": "team-a"})
                ]
            },
            "child": {"extends": "base"},
        }
    )

    result = build_resolved_plan(config, "/work/kubeforward.yaml")

    assert result.plan is not None
    base, child = result.plan.environments
    base_forward, child_forward = base.forwards[0], child.forwards[0]
    assert base_forward.environment == "base"
    assert child_forward.environment == "child"
    assert child_forward.ports == base_forward.ports
    assert child_forward.ports is not base_forward.ports
    assert child_forward.ports[0] is not base_forward.ports[0]
    assert child_forward.env is not base_forward.env
    assert child_forward.annotations is not base_forward.annotations

    child_forward.ports[0].local = 7100
    child_forward.env["MODE"] = "child"
    child_forward.annotations["owner"] = "team-b"

    assert base_forward.ports[0].local == 7000
    assert base_forward.env == {"MODE": "base"}
    assert base_forward.annotations == {"owner": "team-a"}


def test_settings_merge_defaults_then_parent_then_self() -> None:
    config = _config(
        [
            EnvironmentDefinition(
                name="base",
                settings=TargetDefaults(context="kind-base", labels={"team": "a", "tier": "base"}),
                forwards=[_forward("api", 7000)],
            ),
            EnvironmentDefinition(
                name="child",
                extends="base",
                settings=TargetDefaults(namespace="child-ns", labels={"tier": "child"}),
            ),
        ],
        defaults=TargetDefaults(namespace="default", kubeconfig="/etc/kube", labels={"owner": "ops"}),
    )

    result = build_resolved_plan(config, "/work/kubeforward.yaml", "child")

    assert result.plan is not None
    settings = result.plan.environments[0].settings
    assert settings.namespace == "child-ns"
    assert settings.context == "kind-base"
    assert settings.kubeconfig == "/etc/kube"
    assert settings.labels == {"owner": "ops", "team": "a", "tier": "child"}


def test_inherited_forward_keeps_parent_namespace() -> None:
    # Forwards are inherited verbatim; the child's namespace applies only to its own forwards.
    config = build_config(
        {
            "base": {"namespace": "base-ns", "forwards": [forward("api", 7000)]},
            "child": {"extends": "base", "namespace": "child-ns"},
        }
    )

    result = build_resolved_plan(config, "/work/kubeforward.yaml", "child")

    assert result.plan is not None
    env = result.plan.environments[0]
    assert env.settings.namespace == "child-ns"
    assert env.forwards[0].namespace == "base-ns"


def test_production_guard_cannot_be_weakened() -> None:
    config = _config(
        [
            EnvironmentDefinition(
                name="prod",
                guards=EnvironmentGuards(allow_production=True),
                forwards=[_forward("api", 7000)],
            ),
            EnvironmentDefinition(name="prod-eu", extends="prod"),
        ]
    )

    result = build_resolved_plan(config, "/work/kubeforward.yaml", "prod-eu")

    assert result.plan is not None
    assert result.plan.environments[0].guards.allow_production is True


def test_resource_namespace_override_wins() -> None:
    config = _config(
        [EnvironmentDefinition(name="dev", forwards=[_forward("db", 5432, namespace="data")])],
    )

    result = build_resolved_plan(config, "/work/kubeforward.yaml")

    assert result.plan is not None
    assert result.plan.environments[0].forwards[0].namespace == "data"


def test_ports_inherit_environment_bind_address() -> None:
    source = _forward("api", 7000)
    source.ports.append(PortMapping(local=7001, remote=81, bind_address="0.0.0.0"))
    config = _config(
        [EnvironmentDefinition(name="dev", settings=TargetDefaults(bind_address="127.0.0.2"), forwards=[source])]
    )

    result = build_resolved_plan(config, "/work/kubeforward.yaml")

    assert result.plan is not None
    ports = result.plan.environments[0].forwards[0].ports
    assert [port.bind_address for port in ports] == ["127.0.0.2", "0.0.0.0"]
    assert source.ports[0].bind_address is None


def test_empty_namespace_fails_closed() -> None:
    config = _config(
        [EnvironmentDefinition(name="dev", forwards=[_forward("api", 7000)])],
        defaults=TargetDefaults(),
    )

    result = build_resolved_plan(config, "/work/kubeforward.yaml")

    assert result.plan is None
    assert _messages(result) == [
        "environments.dev.forwards[0].resource.namespace: resolved namespace is empty "
        "(set resource.namespace, environment namespace, or defaults.namespace)"
    ]


def test_unknown_environment_filter() -> None:
    config = _config([EnvironmentDefinition(name="dev", forwards=[_forward("api", 7000)])])

    result = build_resolved_plan(config, "/work/kubeforward.yaml", "qa")

    assert result.plan is None
    assert _messages(result) == ["environments.qa: unknown environment"]


def test_cycle_is_rejected_without_partial_plan() -> None:
    config = _config(
        [
            EnvironmentDefinition(name="a", extends="b"),
            EnvironmentDefinition(name="b", extends="a"),
        ]
    )

    result = build_resolved_plan(config, "/work/kubeforward.yaml", "a")

    assert result.plan is None
    assert len(result.errors) == 1
    assert "cyclic environment inheritance: a -> b -> a" in result.errors[0].message


def test_self_extend_is_an_error() -> None:
    config = _config([EnvironmentDefinition(name="loop", extends="loop")])

    result = build_resolved_plan(config, "/work/kubeforward.yaml")

    assert result.plan is None
    assert _messages(result) == ["environments.loop.extends: environment cannot extend itself"]


def test_unrelated_failures_are_all_reported() -> None:
    config = _config(
        [
            EnvironmentDefinition(name="ok", forwards=[_forward("api", 7000)]),
            EnvironmentDefinition(name="a", extends="b"),
            EnvironmentDefinition(name="b", extends="a"),
            EnvironmentDefinition(name="orphan", extends="ghost"),
        ]
    )

    result = build_resolved_plan(config, "/work/kubeforward.yaml")

    assert result.plan is None
    messages = _messages(result)
    assert any("cyclic environment inheritance" in message for message in messages)
    assert "environments.orphan.extends: references unknown environment 'ghost'" in messages


def test_long_chain_resolves_iteratively() -> None:
    environments = [EnvironmentDefinition(name="env0", forwards=[_forward("api", 7000)])]
    environments += [EnvironmentDefinition(name=f"env{i}", extends=f"env{i - 1}") for i in range(1, 1500)]
    config = _config(environments)

    result = build_resolved_plan(config, "/work/kubeforward.yaml", "env1499")

    assert result.plan is not None
    assert result.plan.environments[0].forwards[0].environment == "env1499"
