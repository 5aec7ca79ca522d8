"""Structured (context, message) problem reports shared across kubeforward."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["Issue", "format_issues"]


@dataclass(frozen=True)
class Issue:
    """Single problem located by a dotted context path."""

    context: str
    message: str

    def __str__(self) -> str:
        if not self.context:
            return self.message
        return f"{self.context}: {self.message}"

    def to_dict(self) -> dict[str, str]:
        return {"context": self.context, "message": self.message}


def format_issues(issues: list[Issue]) -> str:
    return "\n".join(str(issue) for issue in issues)
