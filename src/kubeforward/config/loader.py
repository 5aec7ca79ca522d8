"""Load and validate ``kubeforward.yaml`` (YAML or JSON) into a :class:`Config`.

Validation never stops at the first problem: every issue is collected with a
dotted context path so the CLI can print them all at once.
"""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from kubeforward.config.models import (
    Config,
    EnvironmentDefinition,
    EnvironmentGuards,
    ForwardDefinition,
    HealthCheck,
    Metadata,
    PortMapping,
    PortProtocol,
    ResourceKind,
    ResourceSelector,
    RestartPolicy,
    TargetDefaults,
)
from kubeforward.issues import Issue, format_issues

logger = logging.getLogger(__name__)

__all__ = ["ConfigLoadError", "load_config", "parse_config", "find_inheritance_cycles"]

ROOT_KEYS = {"version", "metadata", "defaults", "environments"}
METADATA_KEYS = {"project", "owner", "description"}
SETTINGS_KEYS = {"kubeconfig", "context", "namespace", "bindAddress", "labels"}
ENVIRONMENT_KEYS = SETTINGS_KEYS | {"extends", "description", "guards", "forwards"}
FORWARD_KEYS = {"name", "resource", "container", "ports", "annotations", "env"}
RESOURCE_KEYS = {"kind", "name", "selector", "namespace"}
PORT_KEYS = {"local", "remote", "bindAddress", "protocol"}
RESERVED_ANNOTATIONS = {"detach", "restartPolicy", "healthCheck"}

_E = TypeVar("_E", bound=Enum)


class ConfigLoadError(RuntimeError):
    """Raised when a configuration file cannot be read or fails validation."""

    def __init__(self, issues: list[Issue]) -> None:
        self.issues = list(issues)
        super().__init__(format_issues(self.issues))


class _Reader:
    """Typed accessors that record an issue instead of raising."""

    def __init__(self) -> None:
        self.issues: list[Issue] = []

    def error(self, context: str, message: str) -> None:
        self.issues.append(Issue(context, message))

    def check_keys(self, node: Mapping[Any, Any], context: str, allowed: set[str]) -> None:
        for key in node:
            if not isinstance(key, str):
                self.error(context, "encountered non-string key")
            elif key not in allowed:
                self.error(context, f"unknown key '{key}'")

    def mapping(self, value: Any, context: str) -> Mapping[Any, Any] | None:
        if value is None:
            return None
        if not isinstance(value, Mapping):
            self.error(context, "expected mapping")
            return None
        return value

    def string(self, value: Any, context: str) -> str | None:
        if value is None:
            return None
        if not isinstance(value, str):
            self.error(context, "expected string")
            return None
        return value

    def boolean(self, value: Any, context: str) -> bool | None:
        if value is None:
            return None
        if not isinstance(value, bool):
            self.error(context, "expected boolean")
            return None
        return value

    def integer(self, value: Any, context: str) -> int | None:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int):
            self.error(context, "expected integer")
            return None
        return value

    def string_map(self, value: Any, context: str) -> dict[str, str]:
        node = self.mapping(value, context)
        if node is None:
            return {}
        result: dict[str, str] = {}
        for key, item in node.items():
            if not isinstance(key, str) or not isinstance(item, (str, int, float, bool)):
                self.error(context, "expected string keys and values")
                continue
            result[key] = str(item).lower() if isinstance(item, bool) else str(item)
        return result

    def ipv4(self, value: Any, context: str) -> str | None:
        text = self.string(value, context)
        if text is None:
            return None
        try:
            ipaddress.IPv4Address(text)
        except ValueError:
            self.error(context, "must be an IPv4 literal")
            return None
        return text

    def port(self, value: Any, context: str, label: str) -> int:
        if value is None:
            self.error(context, f"{label} port is required")
            return 0
        number = self.integer(value, context)
        if number is None:
            return 0
        if not 1 <= number <= 65535:
            self.error(context, "port must be between 1 and 65535")
            return 0
        return number

    def choice(self, value: Any, context: str, enum_type: type[_E], label: str) -> _E | None:
        text = self.string(value, context)
        if text is None:
            return None
        try:
            return enum_type(text)
        except ValueError:
            self.error(context, f"invalid {label} '{text}'")
            return None


def _parse_settings(reader: _Reader, node: Mapping[Any, Any], context: str) -> TargetDefaults:
    return TargetDefaults(
        kubeconfig=reader.string(node.get("kubeconfig"), f"{context}.kubeconfig"),
        context=reader.string(node.get("context"), f"{context}.context"),
        namespace=reader.string(node.get("namespace"), f"{context}.namespace"),
        bind_address=reader.ipv4(node.get("bindAddress"), f"{context}.bindAddress"),
        labels=reader.string_map(node.get("labels"), f"{context}.labels"),
    )


def _parse_resource(reader: _Reader, value: Any, context: str) -> ResourceSelector:
    resource = ResourceSelector(kind=ResourceKind.POD)
    if value is None:
        reader.error(context, "resource block missing")
        return resource
    node = reader.mapping(value, context)
    if node is None:
        return resource
    reader.check_keys(node, context, RESOURCE_KEYS)

    if node.get("kind") is None:
        reader.error(f"{context}.kind", "resource kind is required")
    else:
        kind = reader.choice(node.get("kind"), f"{context}.kind", ResourceKind, "resource.kind")
        if kind is not None:
            resource.kind = kind

    resource.name = reader.string(node.get("name"), f"{context}.name")
    has_selector = node.get("selector") is not None
    if resource.name and has_selector:
        reader.error(context, "name and selector are mutually exclusive")
    elif has_selector:
        resource.selector = reader.string_map(node.get("selector"), f"{context}.selector")
        if not resource.selector:
            reader.error(f"{context}.selector", "selector cannot be empty")
    elif not resource.name:
        reader.error(context, "resource requires name or selector")

    resource.namespace = reader.string(node.get("namespace"), f"{context}.namespace")
    return resource


def _parse_port(reader: _Reader, value: Any, context: str) -> PortMapping:
    mapping = PortMapping(local=0, remote=0)
    node = reader.mapping(value, context)
    if node is None:
        if value is None:
            reader.error(context, "expected mapping")
        return mapping
    reader.check_keys(node, context, PORT_KEYS)
    mapping.local = reader.port(node.get("local"), f"{context}.local", "local")
    mapping.remote = reader.port(node.get("remote"), f"{context}.remote", "remote")
    mapping.bind_address = reader.ipv4(node.get("bindAddress"), f"{context}.bindAddress")
    protocol = reader.choice(node.get("protocol"), f"{context}.protocol", PortProtocol, "protocol")
    if protocol is not None:
        mapping.protocol = protocol
    return mapping


def _parse_health_check(reader: _Reader, value: Any, context: str) -> HealthCheck | None:
    node = reader.mapping(value, context)
    if node is None:
        return None
    reader.check_keys(node, context, {"exec", "timeoutMs"})

    command: list[str] = []
    raw_exec = node.get("exec")
    if not isinstance(raw_exec, list) or not raw_exec:
        reader.error(f"{context}.exec", "expected non-empty list")
    else:
        for index, item in enumerate(raw_exec):
            item_context = f"{context}.exec[{index}]"
            if not isinstance(item, str):
                reader.error(item_context, "expected string")
            elif not item:
                reader.error(item_context, "command arguments cannot be empty")
            else:
                command.append(item)
        if command and "/" not in command[0]:
            reader.error(f"{context}.exec[0]", "command must be absolute or repo-relative (contains '/')")

    timeout_ms = reader.integer(node.get("timeoutMs"), f"{context}.timeoutMs")
    if timeout_ms is None:
        reader.error(f"{context}.timeoutMs", "timeoutMs is required")
        timeout_ms = 0
    elif timeout_ms <= 0:
        reader.error(f"{context}.timeoutMs", "must be positive")
    return HealthCheck(exec=command, timeout_ms=timeout_ms)


def _annotation_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_forward(reader: _Reader, value: Any, context: str) -> ForwardDefinition:
    forward = ForwardDefinition(name="", resource=ResourceSelector(kind=ResourceKind.POD))
    node = reader.mapping(value, context)
    if node is None:
        if value is None:
            reader.error(context, "expected mapping")
        return forward
    reader.check_keys(node, context, FORWARD_KEYS)

    name = reader.string(node.get("name"), f"{context}.name")
    if name is None:
        reader.error(f"{context}.name", "forward requires a name")
    else:
        forward.name = name
    forward.resource = _parse_resource(reader, node.get("resource"), f"{context}.resource")
    forward.container = reader.string(node.get("container"), f"{context}.container")

    ports = node.get("ports")
    if not isinstance(ports, list) or not ports:
        reader.error(f"{context}.ports", "expected non-empty list")
    else:
        forward.ports = [
            _parse_port(reader, item, f"{context}.ports[{index}]") for index, item in enumerate(ports)
        ]

    annotations = reader.mapping(node.get("annotations"), f"{context}.annotations")
    if annotations is not None:
        annotations_context = f"{context}.annotations"
        detach = reader.boolean(annotations.get("detach"), f"{annotations_context}.detach")
        if detach is not None:
            forward.detach = detach
        policy = reader.choice(
            annotations.get("restartPolicy"),
            f"{annotations_context}.restartPolicy",
            RestartPolicy,
            "restartPolicy",
        )
        if policy is not None:
            forward.restart_policy = policy
        forward.health_check = _parse_health_check(
            reader, annotations.get("healthCheck"), f"{annotations_context}.healthCheck"
        )
        for key, item in annotations.items():
            if not isinstance(key, str) or key in RESERVED_ANNOTATIONS:
                continue
            if isinstance(item, (Mapping, list)) or item is None:
                reader.error(f"{annotations_context}.{key}", "expected scalar annotation value")
                continue
            forward.annotations[key] = _annotation_text(item)

    forward.env = reader.string_map(node.get("env"), f"{context}.env")
    return forward


def _parse_environment(reader: _Reader, name: str, value: Any) -> EnvironmentDefinition:
    context = f"environments.{name}"
    env = EnvironmentDefinition(name=name)
    node = reader.mapping(value, context)
    if node is None:
        if value is None:
            reader.error(context, "expected mapping")
        return env
    reader.check_keys(node, context, ENVIRONMENT_KEYS)

    env.extends = reader.string(node.get("extends"), f"{context}.extends")
    env.description = reader.string(node.get("description"), f"{context}.description")
    env.settings = _parse_settings(reader, node, context)

    guards = reader.mapping(node.get("guards"), f"{context}.guards")
    if guards is not None:
        reader.check_keys(guards, f"{context}.guards", {"allowProduction"})
        allow = reader.boolean(guards.get("allowProduction"), f"{context}.guards.allowProduction")
        env.guards = EnvironmentGuards(allow_production=bool(allow))

    forwards = node.get("forwards")
    if forwards is None:
        if env.extends is None:
            reader.error(context, "environment must define 'forwards'")
    elif not isinstance(forwards, list):
        reader.error(f"{context}.forwards", "expected list")
    else:
        env.forwards = [
            _parse_forward(reader, item, f"{context}.forwards[{index}]")
            for index, item in enumerate(forwards)
        ]
    return env


def _validate_environment(reader: _Reader, env: EnvironmentDefinition) -> None:
    seen_names: set[str] = set()
    seen_ports: set[int] = set()
    for index, forward in enumerate(env.forwards):
        context = f"environments.{env.name}.forwards[{index}]"
        if forward.name:
            if forward.name in seen_names:
                reader.error(f"{context}.name", "duplicate forward name within environment")
            seen_names.add(forward.name)
        for port_index, port in enumerate(forward.ports):
            if not port.local:
                continue
            if port.local in seen_ports:
                reader.error(
                    f"{context}.ports[{port_index}].local", "duplicate local port within environment"
                )
            seen_ports.add(port.local)
        if env.guards.allow_production and not forward.detach:
            reader.error(
                f"{context}.annotations.detach",
                "production environment requires detach=true for every forward",
            )


def _validate_global_forward_names(reader: _Reader, config: Config) -> None:
    occurrences: dict[str, list[str]] = {}
    for env_name, env in config.environments.items():
        for forward in env.forwards:
            if not forward.name:
                continue
            env_names = occurrences.setdefault(forward.name, [])
            if env_name not in env_names:
                env_names.append(env_name)
    for forward_name, env_names in occurrences.items():
        if len(env_names) > 1:
            reader.error(
                "environments",
                f"forward name '{forward_name}' used in environments: {', '.join(env_names)}",
            )


def find_inheritance_cycles(parents: Mapping[str, str | None]) -> list[tuple[str, list[str]]]:
    """Return ``(environment, cycle_path)`` for every ``extends`` cycle.

    Walks each chain with an explicit stack and visiting marks. Self-extends
    and unknown parents are ignored here; they are reported separately.
    """
    visited: set[str] = set()
    cycles: list[tuple[str, list[str]]] = []
    for start in parents:
        if start in visited:
            continue
        stack: list[str] = []
        on_stack: set[str] = set()
        current: str | None = start
        while current is not None and current not in visited:
            stack.append(current)
            on_stack.add(current)
            parent = parents.get(current)
            if parent is None or parent == current or parent not in parents:
                break
            if parent in on_stack:
                cycles.append((current, stack[stack.index(parent) :] + [parent]))
                break
            current = parent
        visited.update(stack)
    return cycles


def _validate_extends(reader: _Reader, config: Config) -> None:
    envs = config.environments
    for name, env in envs.items():
        if env.extends is None:
            continue
        context = f"environments.{name}.extends"
        if env.extends == name:
            reader.error(context, "environment cannot extend itself")
        elif env.extends not in envs:
            reader.error(context, f"references unknown environment '{env.extends}'")

    parents = {name: env.extends for name, env in envs.items()}
    for name, cycle in find_inheritance_cycles(parents):
        reader.error(
            f"environments.{name}.extends", f"cyclic environment inheritance: {' -> '.join(cycle)}"
        )


def parse_config(root: Any, source: str = "config") -> Config:
    """Validate an already-decoded document and build the :class:`Config`."""
    reader = _Reader()
    if not isinstance(root, Mapping):
        raise ConfigLoadError([Issue(source, "expected top-level mapping")])
    reader.check_keys(root, "root", ROOT_KEYS)

    version = reader.integer(root.get("version"), "version")
    if version is None:
        if root.get("version") is None:
            reader.error("version", "schema version is required")
        version = 0
    elif version != 1:
        reader.error("version", "only schema version 1 is supported")

    metadata = Metadata(project="")
    metadata_node = reader.mapping(root.get("metadata"), "metadata")
    if metadata_node is None:
        reader.error("metadata", "metadata block is required")
    else:
        reader.check_keys(metadata_node, "metadata", METADATA_KEYS)
        project = reader.string(metadata_node.get("project"), "metadata.project")
        if not project:
            reader.error("metadata.project", "project is required")
        else:
            metadata.project = project
        metadata.owner = reader.string(metadata_node.get("owner"), "metadata.owner")
        metadata.description = reader.string(metadata_node.get("description"), "metadata.description")

    defaults = TargetDefaults()
    defaults_node = reader.mapping(root.get("defaults"), "defaults")
    if defaults_node is not None:
        reader.check_keys(defaults_node, "defaults", SETTINGS_KEYS)
        defaults = _parse_settings(reader, defaults_node, "defaults")

    config = Config(version=version, metadata=metadata, defaults=defaults)
    environments = root.get("environments")
    if not isinstance(environments, Mapping):
        reader.error("environments", "environments block is required and must be a mapping")
    else:
        for env_name, value in environments.items():
            if not isinstance(env_name, str):
                reader.error("environments", "environment name must be a string")
                continue
            if not env_name:
                reader.error("environments", "environment name cannot be empty")
                continue
            config.environments[env_name] = _parse_environment(reader, env_name, value)

    for env in config.environments.values():
        _validate_environment(reader, env)
    _validate_global_forward_names(reader, config)
    _validate_extends(reader, config)

    if reader.issues:
        raise ConfigLoadError(reader.issues)
    return config


def load_config(path: Path | str) -> Config:
    """Read ``path`` and return the validated configuration.

    JSON documents are valid YAML, so one safe loader serves both formats.
    """
    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ConfigLoadError([Issue(str(config_path), f"unable to read config file: {exc}")]) from exc
    except OSError as exc:
        raise ConfigLoadError([Issue(str(config_path), f"unable to open config file: {exc}")]) from exc

    yaml = YAML(typ="safe", pure=True)
    try:
        root = yaml.load(text)
    except YAMLError as exc:
        raise ConfigLoadError([Issue(str(config_path), f"YAML parse error: {exc}")]) from exc

    config = parse_config(root, source=str(config_path))
    logger.debug(
        "Loaded %s: project=%s environments=%s",
        config_path,
        config.metadata.project,
        ", ".join(config.environments),
    )
    return config
