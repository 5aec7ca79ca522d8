"""Shared helpers for kubeforward tests."""

from __future__ import annotations

import copy
import textwrap
from typing import Any

from kubeforward.config import Config, parse_config

DEMO_CONFIG = textwrap.dedent(
    """\
    version: 1
    metadata:
      project: demo
      owner: platform
    defaults:
      namespace: default
      context: kind-dev
      bindAddress: 127.0.0.1
      labels:
        team: platform
    environments:
      dev:
        description: Local development
        forwards:
          - name: api
            resource:
              kind: deployment
              name: api
            ports:
              - local: 7000
                remote: 80
          - name: db
            resource:
              kind: statefulset
              name: postgres
              namespace: data
            ports:
              - local: 7432
                remote: 5432
      staging:
        extends: dev
        namespace: staging
        context: kind-staging
    """
)

BASE_DOCUMENT: dict[str, Any] = {
    "version": 1,
    "metadata": {"project": "demo"},
    "defaults": {"namespace": "default"},
    "environments": {
        "dev": {
            "forwards": [
                {
                    "name": "api",
                    "resource": {"kind": "deployment", "name": "api"},
                    "ports": [{"local": 7000, "remote": 80}],
                }
            ]
        }
    },
}


def base_document() -> dict[str, Any]:
    return copy.deepcopy(BASE_DOCUMENT)


def forward(name: str, local: int, remote: int = 80, **extra: Any) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "name": name,
        "resource": {"kind": "deployment", "name": name},
        "ports": [{"local": local, "remote": remote}],
    }
    entry.update(extra)
    return entry


def build_config(environments: dict[str, Any], **root: Any) -> Config:
    document = base_document()
    document["environments"] = environments
    document.update(root)
    return parse_config(document)
