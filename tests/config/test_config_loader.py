"""Tests for kubeforward.yaml loading and validation."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from kubeforward.config import (
    ConfigLoadError,
    PortProtocol,
    ResourceKind,
    RestartPolicy,
    load_config,
    parse_config,
)
from kubeforward.config.loader import find_inheritance_cycles
from tests.utils import base_document, forward


def _messages(exc: ConfigLoadError) -> list[str]:
    return [str(issue) for issue in exc.issues]


def test_load_demo_config(demo_config_file: Path) -> None:
    config = load_config(demo_config_file)

    assert config.version == 1
    assert config.metadata.project == "demo"
    assert config.metadata.owner == "platform"
    assert list(config.environments) == ["dev", "staging"]
    assert config.defaults.namespace == "default"
    assert config.defaults.labels == {"team": "platform"}

    dev = config.environments["dev"]
    assert [f.name for f in dev.forwards] == ["api", "db"]
    assert dev.forwards[0].resource.kind is ResourceKind.DEPLOYMENT
    assert dev.forwards[1].resource.namespace == "data"
    assert dev.forwards[0].ports[0].protocol is PortProtocol.TCP

    staging = config.environments["staging"]
    assert staging.extends == "dev"
    assert staging.settings.namespace == "staging"
    assert staging.forwards == []


def test_load_json_config(tmp_path: Path) -> None:
    path = tmp_path / "kubeforward.json"
    path.write_text(json.dumps(base_document()), encoding="utf-8")

    config = load_config(path)

    assert config.environments["dev"].forwards[0].ports[0].local == 7000


def test_missing_file_reports_path(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError) as excinfo:
        load_config(tmp_path / "absent.yaml")

    assert "unable to open config file" in str(excinfo.value)


def test_yaml_syntax_error(tmp_path: Path) -> None:
    path = tmp_path / "kubeforward.yaml"
    path.write_text("version: [1\n", encoding="utf-8")

    with pytest.raises(ConfigLoadError) as excinfo:
        load_config(path)

    assert "YAML parse error" in str(excinfo.value)


def test_invalid_utf8_is_reported_as_issue(tmp_path: Path) -> None:
    path = tmp_path / "kubeforward.yaml"
    path.write_bytes(b"version: 1\nmetadata:\n  project: \xff\xfe\n")

    with pytest.raises(ConfigLoadError) as excinfo:
        load_config(path)

    (issue,) = excinfo.value.issues
    assert issue.context == str(path)
    assert issue.message.startswith("unable to read config file:")


def test_top_level_must_be_mapping() -> None:
    with pytest.raises(ConfigLoadError) as excinfo:
        parse_config(["not", "a", "mapping"])

    assert "expected top-level mapping" in str(excinfo.value)


def test_errors_are_collected_together() -> None:
    document = base_document()
    document["version"] = 2
    document["metadata"] = {"owner": "someone"}
    document["surprise"] = True

    with pytest.raises(ConfigLoadError) as excinfo:
        parse_config(document)

    messages = _messages(excinfo.value)
    assert "version: only schema version 1 is supported" in messages
    assert "metadata.project: project is required" in messages
    assert "root: unknown key 'surprise'" in messages


def test_port_range_and_protocol_validation() -> None:
    document = base_document()
    document["environments"]["dev"]["forwards"][0]["ports"] = [
        {"local": 0, "remote": 70000, "protocol": "sctp"},
    ]

    with pytest.raises(ConfigLoadError) as excinfo:
        parse_config(document)

    messages = _messages(excinfo.value)
    prefix = "environments.dev.forwards[0].ports[0]"
    assert f"{prefix}.local: port must be between 1 and 65535" in messages
    assert f"{prefix}.remote: port must be between 1 and 65535" in messages
    assert f"{prefix}.protocol: invalid protocol 'sctp'" in messages


def test_bind_address_must_be_ipv4() -> None:
    document = base_document()
    document["defaults"]["bindAddress"] = "localhost"

    with pytest.raises(ConfigLoadError) as excinfo:
        parse_config(document)

    assert "defaults.bindAddress: must be an IPv4 literal" in _messages(excinfo.value)


def test_resource_name_and_selector_are_exclusive() -> None:
    document = base_document()
    document["environments"]["dev"]["forwards"][0]["resource"] = {
        "kind": "service",
        "name": "api",
        "selector": {"app": "api"},
    }

    with pytest.raises(ConfigLoadError) as excinfo:
        parse_config(document)

    assert (
        "environments.dev.forwards[0].resource: name and selector are mutually exclusive"
        in _messages(excinfo.value)
    )


def test_selector_resource_is_accepted() -> None:
    document = base_document()
    document["environments"]["dev"]["forwards"][0]["resource"] = {
        "kind": "pod",
        "selector": {"app": "api"},
    }

    config = parse_config(document)

    resource = config.environments["dev"].forwards[0].resource
    assert resource.name is None
    assert resource.selector == {"app": "api"}
    assert resource.target == "pod[app=api]"


def test_annotations_are_parsed() -> None:
    document = base_document()
    document["environments"]["dev"]["forwards"][0]["annotations"] = {
        "detach": True,
        "restartPolicy": "replace",
        "healthCheck": {"exec": ["./scripts/check.sh", "--quick"], "timeoutMs": 500},
        "owner": "team-a",
        "retries": 3,
    }

    config = parse_config(document)

    api = config.environments["dev"].forwards[0]
    assert api.detach is True
    assert api.restart_policy is RestartPolicy.REPLACE
    assert api.health_check is not None
    assert api.health_check.exec == ["./scripts/check.sh", "--quick"]
    assert api.annotations == {"owner": "team-a", "retries": "3"}


def test_health_check_requires_path_and_positive_timeout() -> None:
    document = base_document()
    document["environments"]["dev"]["forwards"][0]["annotations"] = {
        "healthCheck": {"exec": ["curl"], "timeoutMs": 0},
    }

    with pytest.raises(ConfigLoadError) as excinfo:
        parse_config(document)

    messages = _messages(excinfo.value)
    prefix = "environments.dev.forwards[0].annotations.healthCheck"
    assert f"{prefix}.exec[0]: command must be absolute or repo-relative (contains '/')" in messages
    assert f"{prefix}.timeoutMs: must be positive" in messages


def test_duplicate_names_and_ports_within_environment() -> None:
    document = base_document()
    document["environments"]["dev"]["forwards"] = [forward("api", 7000), forward("api", 7000)]

    with pytest.raises(ConfigLoadError) as excinfo:
        parse_config(document)

    messages = _messages(excinfo.value)
    assert "environments.dev.forwards[1].name: duplicate forward name within environment" in messages
    assert "environments.dev.forwards[1].ports[0].local: duplicate local port within environment" in messages


def test_forward_names_are_unique_across_environments() -> None:
    document = base_document()
    document["environments"]["qa"] = {"forwards": [forward("api", 7100)]}

    with pytest.raises(ConfigLoadError) as excinfo:
        parse_config(document)

    assert "environments: forward name 'api' used in environments: dev, qa" in _messages(excinfo.value)


def test_production_requires_detach() -> None:
    document = base_document()
    document["environments"]["prod"] = {
        "guards": {"allowProduction": True},
        "forwards": [forward("prod-api", 7100)],
    }

    with pytest.raises(ConfigLoadError) as excinfo:
        parse_config(document)

    assert (
        "environments.prod.forwards[0].annotations.detach: "
        "production environment requires detach=true for every forward"
    ) in _messages(excinfo.value)


def test_environment_without_forwards_must_extend() -> None:
    document = base_document()
    document["environments"]["empty"] = {"namespace": "x"}

    with pytest.raises(ConfigLoadError) as excinfo:
        parse_config(document)

    assert "environments.empty: environment must define 'forwards'" in _messages(excinfo.value)


@pytest.mark.parametrize(
    ("environments", "expected"),
    [
        (
            {"a": {"extends": "a"}},
            "environments.a.extends: environment cannot extend itself",
        ),
        (
            {"a": {"extends": "ghost"}},
            "environments.a.extends: references unknown environment 'ghost'",
        ),
        (
            {"a": {"extends": "b"}, "b": {"extends": "a"}},
            "environments.b.extends: cyclic environment inheritance: a -> b -> a",
        ),
    ],
)
def test_extends_validation(environments: dict, expected: str) -> None:
    document = base_document()
    document["environments"].update(environments)

    with pytest.raises(ConfigLoadError) as excinfo:
        parse_config(document)

    assert expected in _messages(excinfo.value)


def test_find_inheritance_cycles_reports_each_cycle_once() -> None:
    parents = {
        "a": "b",
        "b": "c",
        "c": "a",
        "d": "a",
        "solo": None,
        "self": "self",
        "orphan": "ghost",
    }

    assert find_inheritance_cycles(parents) == [("c", ["a", "b", "c", "a"])]


def test_find_inheritance_cycles_handles_long_chains() -> None:
    parents = {f"env{i}": f"env{i - 1}" if i else None for i in range(5000)}

    assert find_inheritance_cycles(parents) == []
