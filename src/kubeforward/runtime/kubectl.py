"""Argument vectors for ``kubectl port-forward``."""

from __future__ import annotations

import os

from kubeforward.config.models import PortMapping, PortProtocol, TargetDefaults
from kubeforward.runtime.plan import ResolvedForward

KUBECTL_BIN_ENV = "KUBEFORWARD_KUBECTL_BIN"
DEFAULT_KUBECTL_BIN = "kubectl"


class ForwardCommandError(ValueError):
    """Raised when a forward cannot be expressed as a kubectl invocation."""


def kubectl_binary() -> str:
    return os.environ.get(KUBECTL_BIN_ENV, "").strip() or DEFAULT_KUBECTL_BIN


def build_port_forward_argv(
    forward: ResolvedForward,
    port: PortMapping,
    settings: TargetDefaults,
    *,
    binary: str | None = None,
) -> list[str]:
    """Build ``kubectl port-forward`` argv for one port of ``forward``."""
    if port.protocol is not PortProtocol.TCP:
        raise ForwardCommandError(
            f"{forward.environment}/{forward.name}: unsupported protocol for kubectl port-forward "
            f"(only tcp is supported), got '{port.protocol}' on local port {port.local}"
        )
    if not forward.resource.name:
        raise ForwardCommandError(
            f"{forward.environment}/{forward.name}: resource.name is required for kubectl port-forward"
        )

    argv = [
        binary or kubectl_binary(),
        "port-forward",
        f"{forward.resource.kind}/{forward.resource.name}",
        f"{port.local}:{port.remote}",
        "--namespace",
        forward.namespace,
    ]
    if settings.context:
        argv.extend(["--context", settings.context])
    if settings.kubeconfig:
        argv.extend(["--kubeconfig", settings.kubeconfig])
    if port.bind_address:
        argv.extend(["--address", port.bind_address])
    return argv
