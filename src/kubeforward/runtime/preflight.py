"""Port conflict checks run before any forward process is started."""

from __future__ import annotations

import errno
import logging
import socket
from collections.abc import Callable
from dataclasses import dataclass, field

from kubeforward.config.models import PortMapping, PortProtocol
from kubeforward.issues import Issue
from kubeforward.runtime.plan import ResolvedEnvironment
from kubeforward.runtime.state_store import RuntimeState

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_BIND_ADDRESS",
    "PortProbe",
    "PreflightResult",
    "find_claimed_ports",
    "find_unavailable_ports",
    "probe_port",
]

DEFAULT_BIND_ADDRESS = "127.0.0.1"

# Sandboxes may forbid socket probes entirely; such failures prove nothing.
_INCONCLUSIVE_ERRNOS = {errno.EACCES, errno.EPERM}

PortProbe = Callable[[PortMapping], str | None]


@dataclass
class PreflightResult:
    """Result envelope for port preflight checks."""

    errors: list[Issue] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.errors

    @property
    def first_error(self) -> Issue | None:
        return self.errors[0] if self.errors else None


def find_claimed_ports(
    state: RuntimeState,
    config_path: str,
    environment: ResolvedEnvironment,
    is_alive: Callable[[int], bool],
) -> PreflightResult:
    """Reject local ports held by a live forward of another session.

    Sessions for the same config and environment are excluded; the replace
    pass owns those.
    """
    wanted = {port.local for forward in environment.forwards for port in forward.ports}
    result = PreflightResult()
    for session in state.sessions:
        if session.config_path == config_path and session.environment == environment.name:
            continue
        for process in session.forwards:
            if process.local_port not in wanted or not is_alive(process.pid):
                continue
            result.errors.append(
                Issue(
                    f"ports.{process.local_port}",
                    f"local port {process.local_port} is already claimed by running session "
                    f"'{session.id}' (environment {session.environment}, forward "
                    f"{process.forward_name}, pid {process.pid})",
                )
            )
    return result


def probe_port(port: PortMapping) -> str | None:
    """Bind and immediately release ``port``; return an error message or None."""
    address = port.bind_address or DEFAULT_BIND_ADDRESS
    kind = socket.SOCK_DGRAM if port.protocol is PortProtocol.UDP else socket.SOCK_STREAM
    try:
        socket.inet_aton(address)
    except OSError:
        return f"invalid bind address '{address}'"

    try:
        with socket.socket(socket.AF_INET, kind) as probe:
            if kind == socket.SOCK_STREAM:
                probe.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            probe.bind((address, port.local))
    except OSError as exc:
        if exc.errno in _INCONCLUSIVE_ERRNOS:
            logger.debug("Port probe for %s:%s not permitted: %s", address, port.local, exc)
            return None
        if exc.errno == errno.EADDRINUSE:
            return f"local port {port.local} is already in use on {address}"
        return f"unable to bind local port {port.local} on {address}: {exc.strerror or exc}"
    return None


def find_unavailable_ports(environment: ResolvedEnvironment, probe: PortProbe = probe_port) -> PreflightResult:
    result = PreflightResult()
    for forward in environment.forwards:
        for port in forward.ports:
            message = probe(port)
            if message is not None:
                result.errors.append(
                    Issue(f"environments.{environment.name}.forwards.{forward.name}", message)
                )
    return result
