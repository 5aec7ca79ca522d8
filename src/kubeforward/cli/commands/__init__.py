"""kubeforward command implementations."""

from kubeforward.cli.commands.down import down
from kubeforward.cli.commands.plan import plan, render_plan
from kubeforward.cli.commands.status import status
from kubeforward.cli.commands.up import up

__all__ = ["down", "plan", "render_plan", "status", "up"]
